"""Internal scheduler routes for stalled-send recovery and log retention."""

from __future__ import annotations

import logging
from typing import Annotated

from fastapi import APIRouter, BackgroundTasks, Depends, status

from pushworker.api.deps import get_send_service, require_task_secret
from pushworker.config import Settings, get_settings
from pushworker.dispatch.service import NotificationSendService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/cron", dependencies=[Depends(require_task_secret)])


@router.post("/resume-notifications", status_code=status.HTTP_202_ACCEPTED)
async def resume_notifications(background_tasks: BackgroundTasks, service: Annotated[NotificationSendService, Depends(get_send_service)], settings: Annotated[Settings, Depends(get_settings)]) -> dict[str, str]:
  """Resume sends whose heartbeat is older than the lease."""
  logger.info("Scheduling stalled notification sweep lease=%ss", settings.send_lease_seconds)
  # Respond before the sweep so schedulers are not held open by long sends.
  background_tasks.add_task(service.resume_stalled, settings.send_lease_seconds)
  return {"status": "accepted"}


@router.post("/cleanup-push-logs", status_code=status.HTTP_200_OK)
async def cleanup_push_logs(service: Annotated[NotificationSendService, Depends(get_send_service)], settings: Annotated[Settings, Depends(get_settings)]) -> dict[str, int | str]:
  deleted = await service.cleanup_push_logs(settings.push_log_retention_days)
  return {"status": "ok", "deleted": deleted, "retentionDays": settings.push_log_retention_days}
