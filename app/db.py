# app/db.py
import ssl
import certifi
from typing import Optional, AsyncGenerator
from sqlalchemy import event
from sqlalchemy.orm import DeclarativeBase
from sqlalchemy.ext.asyncio import create_async_engine, AsyncEngine, async_sessionmaker, AsyncSession
from app.config import Settings, get_db_url

class Base(DeclarativeBase):
    pass

_engine: Optional[AsyncEngine] = None
_SessionLocal: Optional[async_sessionmaker] = None

def normalize_url(url: str) -> str:
    if url.startswith("postgresql://"):
        url = url.replace("postgresql://", "postgresql+asyncpg://", 1)
    if url.startswith("sqlite://") and "+aiosqlite" not in url:
        url = url.replace("sqlite://", "sqlite+aiosqlite://", 1)
    return url

def _ssl_args_for_postgres(settings: Settings) -> dict:
    mode = settings.DB_SSLMODE.lower()
    if mode == "disable":
        return {}

    ctx = ssl.create_default_context()

    # Priority: PEM string → explicit PEM path → certifi bundle
    if settings.DB_CA_PEM:
        ctx.load_verify_locations(cadata=settings.DB_CA_PEM)
    elif settings.DB_SSLROOTCERT:
        ctx.load_verify_locations(cafile=settings.DB_SSLROOTCERT)
    else:
        ctx.load_verify_locations(cafile=certifi.where())

    if mode == "verify-ca":
        ctx.check_hostname = False
        ctx.verify_mode = ssl.CERT_REQUIRED
    elif mode == "require":
        ctx.check_hostname = False
        ctx.verify_mode = ssl.CERT_NONE
    else:
        ctx.check_hostname = True
        ctx.verify_mode = ssl.CERT_REQUIRED

    return {"ssl": ctx}

def _install_sqlite_hooks(engine: AsyncEngine) -> None:
    # pysqlite defers BEGIN on its own, which breaks SAVEPOINT; take over
    # transaction start and turn on FK enforcement per connection.
    @event.listens_for(engine.sync_engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    @event.listens_for(engine.sync_engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN")

def make_engine(url: str, settings: Optional[Settings] = None, echo: bool = False) -> AsyncEngine:
    url = normalize_url(url)
    kwargs = {}
    if url.startswith("postgresql+asyncpg://"):
        settings = settings or Settings()
        # fail faster if network is wrong
        connect_args = _ssl_args_for_postgres(settings)
        connect_args.setdefault("timeout", settings.DB_CONNECT_TIMEOUT)
        if settings.DB_STATEMENT_TIMEOUT_MS:
            connect_args["server_settings"] = {"statement_timeout": str(settings.DB_STATEMENT_TIMEOUT_MS)}
        kwargs.update(pool_size=settings.DB_POOL_SIZE, max_overflow=settings.DB_MAX_OVERFLOW, connect_args=connect_args)

    engine = create_async_engine(url, echo=echo, **kwargs)
    if url.startswith("sqlite+aiosqlite://"):
        _install_sqlite_hooks(engine)
    return engine

def get_engine() -> AsyncEngine:
    global _engine
    if _engine:
        return _engine
    settings = Settings()
    _engine = make_engine(get_db_url(settings), settings)
    return _engine

def get_sessionmaker() -> async_sessionmaker:
    global _SessionLocal
    if _SessionLocal:
        return _SessionLocal
    _SessionLocal = async_sessionmaker(bind=get_engine(), expire_on_commit=False)
    return _SessionLocal

async def get_db() -> AsyncGenerator[AsyncSession, None]:
    async_session = get_sessionmaker()
    async with async_session() as session:
        try:
            yield session
        finally:
            await session.close()
