"""Create the pushworker database and its tables for local development.

The database name is validated before it is used in SQL because
CREATE DATABASE cannot be parameterized in PostgreSQL.
"""

import asyncio
import logging
import os
import re
import sys

from sqlalchemy import text
from sqlalchemy.engine.url import URL, make_url
from sqlalchemy.ext.asyncio import create_async_engine

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

logger = logging.getLogger("scripts.init_db")

_DB_NAME_PATTERN = re.compile(r"^[A-Za-z0-9_]+$")


def _validate_database_name(db_name: str) -> str:
  """Allow only identifier-safe database names."""
  if not db_name:
    raise ValueError("Target database name is empty.")
  if not _DB_NAME_PATTERN.fullmatch(db_name):
    raise ValueError("Target database name contains invalid characters (allowed: A-Z, a-z, 0-9, _).")
  return db_name


def _async_url(url: URL) -> URL:
  if url.drivername.startswith("postgresql") and "+asyncpg" not in url.drivername:
    return url.set(drivername="postgresql+asyncpg")
  return url


async def create_database_if_not_exists(dsn: str) -> None:
  url = _async_url(make_url(dsn))
  target_db = _validate_database_name(url.database or "")
  # CREATE DATABASE needs a connection to another database in autocommit mode.
  engine = create_async_engine(url.set(database="postgres"), isolation_level="AUTOCOMMIT")
  try:
    async with engine.connect() as conn:
      result = await conn.execute(text("SELECT 1 FROM pg_database WHERE datname = :name"), {"name": target_db})
      if result.scalar() == 1:
        logger.info("Database '%s' already exists.", target_db)
        return
      await conn.execute(text(f'CREATE DATABASE "{target_db}"'))
      logger.info("Database '%s' created.", target_db)
  finally:
    await engine.dispose()


async def create_tables(dsn: str) -> None:
  # Import models so their tables register on the shared metadata.
  from pushworker.core.database import Base
  from pushworker.schema import notifications  # noqa: F401

  engine = create_async_engine(_async_url(make_url(dsn)))
  try:
    async with engine.begin() as conn:
      await conn.run_sync(Base.metadata.create_all)
    logger.info("Tables ensured: %s", ", ".join(sorted(Base.metadata.tables)))
  finally:
    await engine.dispose()


async def main() -> None:
  from pushworker.config import get_settings
  from pushworker.core.logging import initialize_logging

  settings = get_settings()
  initialize_logging(settings)
  if not settings.pg_dsn:
    logger.error("PUSHWORKER_PG_DSN is not set.")
    sys.exit(1)

  await create_database_if_not_exists(settings.pg_dsn)
  await create_tables(settings.pg_dsn)


if __name__ == "__main__":
  if sys.platform == "win32":
    asyncio.set_event_loop_policy(asyncio.WindowsSelectorEventLoopPolicy())
  asyncio.run(main())
