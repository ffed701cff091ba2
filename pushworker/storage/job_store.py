"""Storage interfaces for notification send jobs."""

from __future__ import annotations

import datetime
from collections.abc import Collection, Mapping, Sequence
from dataclasses import dataclass
from typing import Any, Protocol

from pushworker.dispatch.models import NotificationJob, SendStatus


@dataclass(frozen=True)
class PushLogRecord:
  """Audit row describing one broadcast."""

  id: str
  source: str
  source_id: str | None
  title: str
  body: str
  recipient_count: int
  status: str
  success_count: int = 0
  failure_count: int = 0
  error_message: str | None = None
  image_url: str | None = None
  data_payload: dict[str, str] | None = None
  sent_at: datetime.datetime | None = None
  created_at: datetime.datetime | None = None


class JobStore(Protocol):
  """Repository contract for notification job state."""

  async def get_job(self, job_id: str) -> NotificationJob | None:
    """Fetch a notification job by identifier."""

  async def try_transition(self, job_id: str, from_states: Collection[SendStatus], to_state: SendStatus, reset_fields: Mapping[str, Any] | None = None) -> int:
    """Move the row to `to_state` only if it is currently in `from_states`; return affected rows."""

  async def try_reclaim_stale(self, job_id: str, stale_before: datetime.datetime, claim_id: str) -> int:
    """Hand a `sending` row whose heartbeat is older than `stale_before` to `claim_id`."""

  async def write_progress(self, job_id: str, fields: Mapping[str, Any], *, claim_id: str | None = None) -> int:
    """Apply a partial update and refresh the heartbeat; return affected rows.

    With `claim_id` the update only applies while the row is `sending` and
    still held by that claim.
    """

  async def clear_tokens(self, tokens: Sequence[str]) -> int:
    """Remove the given push tokens from the user and device stores."""

  async def find_stalled(self, stale_before: datetime.datetime) -> list[NotificationJob]:
    """Return queued or sending jobs whose heartbeat is older than `stale_before`."""


class PushLogRepository(Protocol):
  """Repository contract for the push audit log."""

  async def create_push_log(self, record: PushLogRecord) -> None:
    """Persist a new audit row."""

  async def update_push_log(self, log_id: str, *, status: str, success_count: int, failure_count: int, error_message: str | None) -> None:
    """Record the outcome of a broadcast."""

  async def delete_push_logs_before(self, cutoff: datetime.datetime) -> int:
    """Delete audit rows created before `cutoff`; return the deleted count."""
