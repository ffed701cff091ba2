import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI

from pushworker.config import get_settings
from pushworker.core.database import get_db_engine
from pushworker.core.firebase import initialize_firebase
from pushworker.core.logging import initialize_logging


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
  """Set up logging and Firebase once uvicorn has started."""
  settings = get_settings()
  logger = logging.getLogger("pushworker.core.lifespan")

  try:
    initialize_logging(settings)
    logger.info("Startup complete - logging verified.")
    # Sends re-check credentials per run; an early failure here is only a warning.
    if not initialize_firebase(settings):
      logger.warning("Firebase is not initialized; notification sends will fail until credentials are provided.")
  except Exception:  # noqa: BLE001
    logger.warning("Startup initialization failed; continuing.", exc_info=True)

  yield

  engine = get_db_engine()
  if engine is not None:
    await engine.dispose()
    logger.info("Database engine disposed.")
