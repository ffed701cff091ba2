"""Caller-facing facade over the notification send runner."""

from __future__ import annotations

import asyncio
import datetime
import logging
from collections.abc import Callable
from dataclasses import dataclass

from pushworker.dispatch.errors import JobNotEnqueueableError, JobNotFoundError
from pushworker.dispatch.progress import JobStatusView
from pushworker.dispatch.runner import NotificationSendRunner
from pushworker.dispatch.state import enqueue
from pushworker.storage.job_store import JobStore, PushLogRepository

logger = logging.getLogger(__name__)


def _utcnow() -> datetime.datetime:
  return datetime.datetime.now(datetime.UTC)


@dataclass(frozen=True)
class ResumeSummary:
  found: int
  resumed: list[str]
  failed: list[str]


class NotificationSendService:
  """Enqueue sends, report their status, and recover stalled runs."""

  def __init__(self, *, store: JobStore, runner: NotificationSendRunner, push_logs: PushLogRepository | None = None, clock: Callable[[], datetime.datetime] = _utcnow) -> None:
    self._store = store
    self._runner = runner
    self._push_logs = push_logs
    self._clock = clock
    self._tasks: set[asyncio.Task[object]] = set()

  async def enqueue(self, job_id: str) -> JobStatusView:
    """Queue a job for sending.

    Raises JobNotFoundError for unknown ids and JobNotEnqueueableError when
    the job is inactive or already queued/sending.
    """
    moved = await enqueue(self._store, job_id)
    job = await self._store.get_job(job_id)
    if job is None:
      raise JobNotFoundError(f"Notification {job_id} not found")
    if not moved:
      raise JobNotEnqueueableError(job_id, f"send already {job.send_status.value}")
    return JobStatusView.from_job(job)

  async def run(self, job_id: str) -> None:
    await self._runner.run(job_id)

  def start_in_background(self, job_id: str) -> asyncio.Task[object]:
    """Schedule a run on the current event loop and keep a reference to it."""
    task: asyncio.Task[object] = asyncio.create_task(self._runner.run(job_id))
    self._tasks.add(task)
    task.add_done_callback(self._tasks.discard)
    task.add_done_callback(self._log_task_error)
    return task

  async def get_job_status(self, job_id: str) -> JobStatusView:
    job = await self._store.get_job(job_id)
    if job is None:
      raise JobNotFoundError(f"Notification {job_id} not found")
    return JobStatusView.from_job(job)

  async def resume_stalled(self, stale_after_seconds: int = 300) -> ResumeSummary:
    """Run every queued or sending job whose heartbeat is older than the threshold."""
    stale_before = self._clock() - datetime.timedelta(seconds=stale_after_seconds)
    stalled = await self._store.find_stalled(stale_before)
    if not stalled:
      logger.info("No stalled notifications found")
      return ResumeSummary(found=0, resumed=[], failed=[])

    logger.info("Found %d stalled notification(s) to resume", len(stalled))
    resumed: list[str] = []
    failed: list[str] = []
    for job in stalled:
      try:
        status = await self._runner.run(job.id)
      except Exception as exc:  # noqa: BLE001
        logger.error("Failed to resume notification %s: %s", job.id, exc, exc_info=True)
        failed.append(job.id)
        continue
      if status is None:
        logger.info("Notification %s was picked up elsewhere", job.id)
        continue
      resumed.append(job.id)
    return ResumeSummary(found=len(stalled), resumed=resumed, failed=failed)

  async def cleanup_push_logs(self, retention_days: int = 90) -> int:
    """Delete push audit logs older than the retention window."""
    if self._push_logs is None:
      return 0
    cutoff = self._clock() - datetime.timedelta(days=retention_days)
    deleted = await self._push_logs.delete_push_logs_before(cutoff)
    logger.info("Deleted %d push log(s) older than %d days", deleted, retention_days)
    return deleted

  @staticmethod
  def _log_task_error(task: asyncio.Task[object]) -> None:
    """Log background task exceptions to avoid silent send failures."""
    if task.cancelled():
      logger.warning("Background notification send task was cancelled")
      return
    try:
      _ = task.result()
    except Exception as exc:  # noqa: BLE001
      logger.error("Background notification send task failed: %s", exc, exc_info=True)
