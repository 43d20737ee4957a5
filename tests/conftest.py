import os
import tempfile
from types import SimpleNamespace

os.environ.setdefault("LOG_DIR", os.path.join(tempfile.gettempdir(), "leveling-test-logs"))
os.environ.setdefault("LOG_LEVEL", "WARNING")

import pytest
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import async_sessionmaker

from app.db import make_engine
from database.bidding_crud import BiddingCRUD
from managers.leveling_manager import LevelingManager
from reset_db import create_schema


async def _engine_with_schema(path, legacy_only=False):
    engine = make_engine(f"sqlite:///{path}")
    async with engine.begin() as conn:
        await conn.run_sync(create_schema, legacy_only)
    return engine


@pytest.fixture
async def engine(tmp_path):
    engine = await _engine_with_schema(tmp_path / "leveling.db")
    yield engine
    await engine.dispose()


@pytest.fixture
async def legacy_engine(tmp_path):
    """A deployment where the enhanced leveling tables were never created."""
    engine = await _engine_with_schema(tmp_path / "legacy.db", legacy_only=True)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(bind=engine, expire_on_commit=False)


@pytest.fixture
async def session(session_factory):
    async with session_factory() as s:
        yield s


@pytest.fixture
async def legacy_session(legacy_engine):
    async with async_sessionmaker(bind=legacy_engine, expire_on_commit=False)() as s:
        yield s


@pytest.fixture
def manager(session):
    return LevelingManager(session)


async def seed_project(session):
    crud = BiddingCRUD(session)
    project = await crud.create_project("Harbor Point Clinic", location="Portland, OR")
    pid = project["id"]
    electrical = await crud.create_trade(pid, "Electrical", 1)
    plumbing = await crud.create_trade(pid, "Plumbing", 2)
    acme = await crud.create_subcontractor("Acme Electric", primary_contact="Dana Ruiz")
    bolt = await crud.create_subcontractor("Bolt Power")
    volt = await crud.create_subcontractor("Volt Brothers")
    link_acme = await crud.invite_sub(pid, acme["id"], 1)
    link_bolt = await crud.invite_sub(pid, bolt["id"], 2)
    link_volt = await crud.invite_sub(pid, volt["id"], 3)
    link_volt_again = await crud.invite_sub(pid, volt["id"], 4)
    # refresh() leaves a read transaction open; other connections need the write lock
    await session.commit()
    return SimpleNamespace(
        project_id=pid,
        electrical=electrical["id"],
        plumbing=plumbing["id"],
        acme=link_acme["id"],
        bolt=link_bolt["id"],
        volt=link_volt["id"],
        volt_again=link_volt_again["id"],
        volt_company=volt["id"],
    )


@pytest.fixture
async def seed(session):
    return await seed_project(session)


async def table_rows(session, model, **where):
    """Plain column rows straight from the database, bypassing the identity map."""
    stmt = select(*model.__table__.columns)
    for key, value in where.items():
        stmt = stmt.where(model.__table__.c[key] == value)
    return [dict(row) for row in (await session.execute(stmt)).mappings().all()]


async def count_rows(session, model, **where):
    stmt = select(func.count()).select_from(model.__table__)
    for key, value in where.items():
        stmt = stmt.where(model.__table__.c[key] == value)
    return (await session.execute(stmt)).scalar_one()
