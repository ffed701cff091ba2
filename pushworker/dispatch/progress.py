"""Persisted send progress and the polling view of a job."""

from __future__ import annotations

import datetime
import logging
from collections.abc import Sequence
from dataclasses import dataclass

from pushworker.dispatch.errors import LeaseLostError
from pushworker.dispatch.models import MAX_SEND_ERRORS, POLLING_STATUSES, NotificationJob, SendStatus
from pushworker.storage.job_store import JobStore

logger = logging.getLogger(__name__)


def cap_errors(errors: Sequence[str], limit: int = MAX_SEND_ERRORS) -> list[str]:
  """Keep only the most recent `limit` error strings."""
  if limit <= 0:
    return []
  return list(errors)[-limit:]


class ProgressTracker:
  """Writes cumulative send counters for a running job."""

  def __init__(self, store: JobStore) -> None:
    self._store = store

  async def record_progress(self, job_id: str, processed: int, success: int, failure: int, recent_errors: Sequence[str], *, claim_id: str | None = None) -> None:
    """Persist cumulative progress.

    Callers pass monotonically non-decreasing `processed` values; the write
    also refreshes the job heartbeat. With `claim_id`, raises LeaseLostError
    when another runner has taken the job over.
    """
    if success + failure > processed:
      raise ValueError("success + failure cannot exceed processed.")
    fields = {"send_progress": processed, "success_count": success, "failure_count": failure, "receiver_count": success, "send_errors": cap_errors(recent_errors)}
    affected = await self._store.write_progress(job_id, fields, claim_id=claim_id)
    if claim_id is not None and not affected:
      raise LeaseLostError(job_id)
    logger.debug("Progress recorded job=%s processed=%d success=%d failure=%d", job_id, processed, success, failure)


@dataclass(frozen=True)
class JobStatusView:
  """What a polling client sees for one job."""

  id: str
  send_status: SendStatus
  send_progress: int
  send_total: int
  success_count: int
  failure_count: int
  receiver_count: int
  send_errors: list[str]
  send_started_at: datetime.datetime | None
  send_completed_at: datetime.datetime | None

  @property
  def percent_complete(self) -> int:
    if self.send_total <= 0:
      return 0
    return round(self.send_progress / self.send_total * 100)

  @property
  def is_polling_state(self) -> bool:
    return self.send_status in POLLING_STATUSES

  @classmethod
  def from_job(cls, job: NotificationJob) -> JobStatusView:
    return cls(
      id=job.id,
      send_status=job.send_status,
      send_progress=job.send_progress,
      send_total=job.send_total,
      success_count=job.success_count,
      failure_count=job.failure_count,
      receiver_count=job.receiver_count,
      send_errors=cap_errors(job.send_errors),
      send_started_at=job.send_started_at,
      send_completed_at=job.send_completed_at,
    )

  def to_payload(self) -> dict[str, object]:
    return {
      "id": self.id,
      "sendStatus": self.send_status.value,
      "sendProgress": self.send_progress,
      "sendTotal": self.send_total,
      "successCount": self.success_count,
      "failureCount": self.failure_count,
      "receiverCount": self.receiver_count,
      "sendErrors": list(self.send_errors),
      "sendStartedAt": self.send_started_at.isoformat() if self.send_started_at else None,
      "sendCompletedAt": self.send_completed_at.isoformat() if self.send_completed_at else None,
      "percentComplete": self.percent_complete,
      "isPolling": self.is_polling_state,
    }
