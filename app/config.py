# app/config.py
from __future__ import annotations

import json
import os
from typing import Annotated, Any, Dict, List, Optional

import boto3
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict
from urllib.parse import quote_plus


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    APP_NAME: str = "Bid Leveling API"
    STAGE: str = "prod"

    # ---- Database ----
    DATABASE_URL: Optional[str] = None
    SECRET_NAME: Optional[str] = None           # if set, fetch creds from AWS SM
    AWS_REGION: str = os.getenv("AWS_REGION", "us-east-1")
    DB_SSLMODE: str = "verify-full"
    DB_SSLROOTCERT: Optional[str] = None
    DB_CA_PEM: Optional[str] = None
    DB_CONNECT_TIMEOUT: float = 10.0
    DB_POOL_SIZE: int = 10
    DB_MAX_OVERFLOW: int = 20
    DB_STATEMENT_TIMEOUT_MS: int = 5000         # postgres only; 0 disables

    # ---- Leveling ----
    # Refuse to start while trade_bid & co. are missing instead of running legacy-only.
    REQUIRE_ENHANCED_SCHEMA: bool = False

    # ---- Logging ----
    LOG_LEVEL: str = "INFO"
    LOG_DIR: str = "logs"

    # ---- CORS ----
    CORS_ORIGINS: Annotated[List[str], NoDecode] = Field(default_factory=list)

    @field_validator("CORS_ORIGINS", mode="before")
    @classmethod
    def _parse_cors(cls, v):
        """
        Accept either JSON (e.g. '["https://a","https://b"]')
        or comma-separated string (e.g. 'https://a, https://b')
        """
        if not v:
            return []
        if isinstance(v, str):
            v = v.strip()
            if v.startswith("["):
                try:
                    return json.loads(v)
                except ValueError:
                    pass
            return [s.strip() for s in v.split(",") if s.strip()]
        return v

    @field_validator("LOG_LEVEL")
    @classmethod
    def _upper_level(cls, v: str) -> str:
        return (v or "INFO").upper()


def url_from_secret(secret: Dict[str, Any]) -> str:
    """asyncpg URL from a Secrets Manager payload (host, port, username, password, dbname)."""
    pwd = quote_plus(secret["password"])  # encode @ : / etc.
    port = secret.get("port", 5432)
    return f"postgresql+asyncpg://{secret['username']}:{pwd}@{secret['host']}:{port}/{secret['dbname']}"


def get_db_url(settings: Settings) -> str:
    """Return a SQLAlchemy URL. If SECRET_NAME is set, read from AWS SM."""
    if settings.DATABASE_URL:
        return settings.DATABASE_URL

    if not settings.SECRET_NAME:
        raise RuntimeError("No DATABASE_URL or SECRET_NAME provided.")

    sm = boto3.client("secretsmanager", region_name=settings.AWS_REGION)
    secret = sm.get_secret_value(SecretId=settings.SECRET_NAME)["SecretString"]
    return url_from_secret(json.loads(secret))
