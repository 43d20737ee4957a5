# reset_db.py
import argparse
import asyncio
import os

from dotenv import load_dotenv

from app.db import make_engine
from database.models import Base, ENHANCED_TABLES, LEGACY_TABLES


def create_schema(sync_conn, legacy_only: bool = False) -> None:
    tables = list(LEGACY_TABLES) if legacy_only else list(LEGACY_TABLES) + list(ENHANCED_TABLES)
    Base.metadata.create_all(sync_conn, tables=tables)


def drop_enhanced_schema(sync_conn) -> None:
    Base.metadata.drop_all(sync_conn, tables=list(ENHANCED_TABLES))


async def reset_database(url: str, drop: bool = False, legacy_only: bool = False):
    engine = make_engine(url, echo=True)

    async with engine.begin() as conn:
        if drop:
            print("Dropping all tables...")
            await conn.run_sync(Base.metadata.drop_all)

        print("Creating legacy tables..." if legacy_only else "Creating all tables...")
        await conn.run_sync(create_schema, legacy_only)

    await engine.dispose()
    print("Database reset complete.")


if __name__ == "__main__":
    load_dotenv()
    parser = argparse.ArgumentParser(description="Create the bid leveling tables.")
    parser.add_argument("--drop", action="store_true", help="drop every table first")
    parser.add_argument("--legacy-only", action="store_true", help="skip the enhanced leveling tables")
    args = parser.parse_args()

    DATABASE_URL = os.getenv("DATABASE_URL")
    if not DATABASE_URL:
        raise SystemExit("DATABASE_URL is not set")
    print("Using DB URL scheme:", DATABASE_URL.split("://", 1)[0])
    asyncio.run(reset_database(DATABASE_URL, drop=args.drop, legacy_only=args.legacy_only))
