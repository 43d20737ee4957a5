# app/logging_config.py

import logging
import os
import sys
from datetime import datetime

from app.config import Settings

_settings = Settings()

os.makedirs(_settings.LOG_DIR, exist_ok=True)

log_file = os.path.join(_settings.LOG_DIR, f"leveling_{datetime.now().strftime('%Y-%m-%d')}.log")

logger = logging.getLogger("leveling-logger")
logger.setLevel(_settings.LOG_LEVEL)

formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")

# Avoid duplicate logs if re-run
if not logger.handlers:
    file_handler = logging.FileHandler(log_file)
    file_handler.setFormatter(formatter)
    logger.addHandler(file_handler)

    stream_handler = logging.StreamHandler(sys.stderr)
    stream_handler.setFormatter(formatter)
    logger.addHandler(stream_handler)

logger.propagate = False  # prevent Uvicorn from hijacking


def get_logger(name: str) -> logging.Logger:
    """Child of the application logger, e.g. ``leveling-logger.write_steps``."""
    return logger.getChild(name)
