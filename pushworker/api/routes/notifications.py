"""Admin routes that start notification sends and report their progress."""

from __future__ import annotations

import datetime
import logging
from typing import Annotated

from fastapi import APIRouter, BackgroundTasks, Depends, status
from pydantic import BaseModel, ConfigDict, Field

from pushworker.api.deps import get_send_service, require_admin_key
from pushworker.dispatch.progress import JobStatusView
from pushworker.dispatch.service import NotificationSendService

logger = logging.getLogger(__name__)

router = APIRouter(dependencies=[Depends(require_admin_key)])


class NotificationProgressResponse(BaseModel):
  """Polling payload for one notification send run."""

  model_config = ConfigDict(populate_by_name=True)

  id: str
  send_status: str = Field(alias="sendStatus")
  send_progress: int = Field(alias="sendProgress")
  send_total: int = Field(alias="sendTotal")
  success_count: int = Field(alias="successCount")
  failure_count: int = Field(alias="failureCount")
  receiver_count: int = Field(alias="receiverCount")
  send_errors: list[str] = Field(default_factory=list, alias="sendErrors")
  send_started_at: datetime.datetime | None = Field(default=None, alias="sendStartedAt")
  send_completed_at: datetime.datetime | None = Field(default=None, alias="sendCompletedAt")
  percent_complete: int = Field(alias="percentComplete")
  is_polling: bool = Field(alias="isPolling")

  @classmethod
  def from_view(cls, view: JobStatusView) -> NotificationProgressResponse:
    return cls.model_validate(view.to_payload())


class SendAcceptedResponse(BaseModel):
  success: bool
  message: str
  progress: NotificationProgressResponse


@router.post("/{notification_id}/send", status_code=status.HTTP_202_ACCEPTED, response_model=SendAcceptedResponse)
async def send_notification(notification_id: str, background_tasks: BackgroundTasks, service: Annotated[NotificationSendService, Depends(get_send_service)]) -> SendAcceptedResponse:
  """Queue a send and process it after the response is returned."""
  view = await service.enqueue(notification_id)
  background_tasks.add_task(service.run, notification_id)
  logger.info("Accepted send request for notification %s", notification_id)
  return SendAcceptedResponse(success=True, message="Push notification queued for sending", progress=NotificationProgressResponse.from_view(view))


@router.get("/{notification_id}/progress", response_model=NotificationProgressResponse)
async def get_notification_progress(notification_id: str, service: Annotated[NotificationSendService, Depends(get_send_service)]) -> NotificationProgressResponse:
  view = await service.get_job_status(notification_id)
  return NotificationProgressResponse.from_view(view)
