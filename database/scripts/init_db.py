#!/usr/bin/env python3
"""
Initialize the database schema

Usage:
    python database/scripts/init_db.py [--env-file .env]
"""

import argparse
import asyncio
import sys
from pathlib import Path

# Add project root to sys.path
PROJECT_ROOT = Path(__file__).resolve().parents[2]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from database.connection import create_database
from helpers.unified_logger import get_core_logger
from trading_config.settings import Settings, load_settings


logger = get_core_logger("init_db")

SCHEMA_PATH = PROJECT_ROOT / "database" / "schema.sql"


def split_statements(schema_sql: str):
    """Split the schema file into executable statements."""
    return [s.strip() for s in schema_sql.split(';') if s.strip()]


async def init_database(settings: Settings) -> bool:
    """Initialize database with schema"""

    logger.info("Initializing database...")
    logger.info(f"Database URL: {settings.database_url.split('@')[1] if '@' in settings.database_url else 'localhost'}")

    if not SCHEMA_PATH.exists():
        logger.error(f"Schema file not found: {SCHEMA_PATH}")
        return False

    db = create_database(settings)
    await db.connect()

    try:
        logger.info(f"Reading schema from: {SCHEMA_PATH}")
        statements = split_statements(SCHEMA_PATH.read_text())

        for i, statement in enumerate(statements, 1):
            try:
                await db.execute(statement)
                logger.debug(f"Executed statement {i}/{len(statements)}")
            except Exception as e:
                logger.warning(f"Statement {i} failed (may already exist): {e}")

        tables = await db.fetch_all("""
            SELECT table_name
            FROM information_schema.tables
            WHERE table_schema = 'public'
            ORDER BY table_name
        """)

        logger.info(f"Tables: {', '.join([t['table_name'] for t in tables])}")
        logger.info("✅ Database schema initialized successfully!")
        return True

    except Exception as e:
        logger.exception(f"Error initializing database: {e}")
        return False

    finally:
        await db.disconnect()


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Create the funding arbitrage tables")
    parser.add_argument("--env-file", type=str, default=None, help="Optional .env file with DATABASE_URL")
    args = parser.parse_args()

    success = asyncio.run(init_database(load_settings(args.env_file)))
    sys.exit(0 if success else 1)
