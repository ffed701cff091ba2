"""Shared FastAPI dependencies for auth and the send service."""

from __future__ import annotations

import logging
import secrets
from functools import lru_cache
from typing import Annotated

from fastapi import Depends, Header, HTTPException, status

from pushworker.config import Settings, get_settings
from pushworker.dispatch.factory import build_send_service
from pushworker.dispatch.service import NotificationSendService

logger = logging.getLogger(__name__)


@lru_cache
def _cached_send_service() -> NotificationSendService:
  return build_send_service(get_settings())


def get_send_service() -> NotificationSendService:
  """Return the process-wide send service."""
  return _cached_send_service()


def require_admin_key(settings: Annotated[Settings, Depends(get_settings)], x_admin_key: str | None = Header(default=None)) -> None:
  """Reject admin calls without the configured API key."""
  # No configured key means no admin access.
  if not settings.admin_api_key:
    raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Admin authentication is not configured.")
  if not secrets.compare_digest(x_admin_key or "", settings.admin_api_key):
    logger.warning("Rejected admin request with an invalid API key")
    raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")


def require_task_secret(
  settings: Annotated[Settings, Depends(get_settings)], authorization: str | None = Header(default=None), x_pushworker_task_secret: str | None = Header(default=None)
) -> None:
  """Authenticate scheduler calls by bearer token or the dedicated secret header."""
  if not settings.task_secret:
    raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Task authentication is not configured.")
  expected_auth = f"Bearer {settings.task_secret}"
  shared_secret_valid = secrets.compare_digest(x_pushworker_task_secret or "", settings.task_secret)
  bearer_valid = secrets.compare_digest(authorization or "", expected_auth)
  if not shared_secret_valid and not bearer_valid:
    logger.warning("Unauthorized access attempt to an internal task route")
    raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Invalid task secret.")
