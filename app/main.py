# app/main.py
from contextlib import asynccontextmanager
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.config import Settings
from app.db import get_engine, Base
from app.logging_config import logger
from database.models import missing_enhanced_tables

settings = Settings()


async def check_leveling_schema(engine, require_enhanced: bool = False) -> list:
    """
    Report enhanced tables that are not provisioned yet. The engine runs
    legacy-only for those; with ``require_enhanced`` startup fails instead.
    """
    async with engine.connect() as conn:
        missing = await conn.run_sync(missing_enhanced_tables)
    if missing:
        if require_enhanced:
            raise RuntimeError(f"enhanced leveling tables missing: {', '.join(missing)}")
        logger.warning("Enhanced leveling tables missing, running legacy-only for: %s", ", ".join(missing))
    return missing


@asynccontextmanager
async def lifespan(app: FastAPI):
    engine = get_engine()
    try:
        async with engine.connect() as conn:
            await conn.exec_driver_sql("select 1")
    except Exception:
        logger.exception(
            "DB startup ping failed (url_scheme=%s, DB_SSLMODE=%s, rootcert_set=%s)",
            str(engine.url).split("://", 1)[0],
            settings.DB_SSLMODE,
            bool(settings.DB_SSLROOTCERT or settings.DB_CA_PEM),
        )
        raise
    # dev-only: create tables
    if settings.STAGE == "dev":
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
    app.state.missing_enhanced_tables = await check_leveling_schema(engine, settings.REQUIRE_ENHANCED_SCHEMA)
    yield


app = FastAPI(title=settings.APP_NAME, lifespan=lifespan)

# Routers import AFTER app exists; they must not create engines or sessions at import time.
from app.routers import leveling

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS or ["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(leveling.router)


@app.get("/")
def read_root():
    return {"status": "backend is live"}


@app.get("/routes")
def show_routes():
    out = []
    for r in app.routes:
        path = getattr(r, "path", None)
        methods = sorted(getattr(r, "methods", []) or [])
        out.append({"path": path, "methods": methods})
    return out


@app.get("/health")
def health():
    missing = getattr(app.state, "missing_enhanced_tables", None)
    return {
        "ok": True,
        "stage": settings.STAGE,
        "enhanced_schema": "unknown" if missing is None else ("partial" if missing else "ready"),
        "missing_tables": missing or [],
    }
