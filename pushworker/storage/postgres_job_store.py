"""Postgres-backed notification job store using SQLAlchemy."""

from __future__ import annotations

import datetime
import json
import logging
import uuid
from collections.abc import Collection, Mapping, Sequence
from typing import Any

from sqlalchemy import delete, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from pushworker.core.database import get_session_factory
from pushworker.dispatch.models import POLLING_STATUSES, NotificationJob, SendStatus
from pushworker.schema.notifications import AppUser, Notification, PushNotificationLog, UserDevice
from pushworker.storage.job_store import JobStore, PushLogRecord, PushLogRepository

logger = logging.getLogger(__name__)

_WRITABLE_FIELDS = frozenset({"send_status", "send_progress", "send_total", "success_count", "failure_count", "receiver_count", "send_errors", "send_started_at", "send_completed_at", "send_claim_id"})


def _now() -> datetime.datetime:
  return datetime.datetime.now(datetime.UTC)


def encode_send_errors(errors: Sequence[str] | None) -> str | None:
  if not errors:
    return None
  return json.dumps(list(errors))


def decode_send_errors(raw: str | None) -> list[str]:
  """Read stored errors tolerantly; a non-JSON value becomes a single item."""
  if not raw:
    return []
  try:
    parsed = json.loads(raw)
  except json.JSONDecodeError:
    return [raw]
  if isinstance(parsed, list):
    return [str(item) for item in parsed]
  return [str(parsed)]


def _column_values(fields: Mapping[str, Any]) -> dict[str, Any]:
  unknown = set(fields) - _WRITABLE_FIELDS
  if unknown:
    raise ValueError(f"Unsupported notification fields: {sorted(unknown)}")
  values: dict[str, Any] = {}
  for name, value in fields.items():
    if name == "send_errors":
      values[name] = encode_send_errors(value)
    elif name == "send_status" and isinstance(value, SendStatus):
      values[name] = value.value
    else:
      values[name] = value
  return values


def _row_to_job(row: Notification) -> NotificationJob:
  return NotificationJob(
    id=row.id,
    title=row.title,
    body=row.description,
    send_status=SendStatus(row.send_status),
    image_url=row.image,
    deep_link_url=row.url,
    is_active=row.is_active,
    send_progress=row.send_progress,
    send_total=row.send_total,
    success_count=row.success_count,
    failure_count=row.failure_count,
    send_errors=decode_send_errors(row.send_errors),
    send_started_at=row.send_started_at,
    send_completed_at=row.send_completed_at,
    updated_at=row.updated_at,
    send_claim_id=row.send_claim_id,
  )


class PostgresJobStore(JobStore, PushLogRepository):
  """Persist notification send state and push audit logs to Postgres."""

  def __init__(self, session_factory: async_sessionmaker[AsyncSession] | None = None) -> None:
    self._session_factory = session_factory or get_session_factory()
    if self._session_factory is None:
      raise RuntimeError("Database not initialized")

  async def get_job(self, job_id: str) -> NotificationJob | None:
    async with self._session_factory() as session:
      row = await session.get(Notification, job_id)
      if row is None:
        return None
      return _row_to_job(row)

  async def try_transition(self, job_id: str, from_states: Collection[SendStatus], to_state: SendStatus, reset_fields: Mapping[str, Any] | None = None) -> int:
    values = _column_values(reset_fields or {})
    values["send_status"] = to_state.value
    values["updated_at"] = _now()
    async with self._session_factory() as session:
      stmt = update(Notification).where(Notification.id == job_id, Notification.send_status.in_([state.value for state in from_states])).values(**values)
      result = await session.execute(stmt)
      await session.commit()
      return result.rowcount or 0

  async def try_reclaim_stale(self, job_id: str, stale_before: datetime.datetime, claim_id: str) -> int:
    async with self._session_factory() as session:
      stmt = (
        update(Notification)
        .where(Notification.id == job_id, Notification.send_status == SendStatus.SENDING.value, or_(Notification.updated_at.is_(None), Notification.updated_at < stale_before))
        .values(updated_at=_now(), send_claim_id=claim_id)
      )
      result = await session.execute(stmt)
      await session.commit()
      return result.rowcount or 0

  async def write_progress(self, job_id: str, fields: Mapping[str, Any], *, claim_id: str | None = None) -> int:
    values = _column_values(fields)
    values["updated_at"] = _now()
    conditions = [Notification.id == job_id]
    if claim_id is not None:
      conditions += [Notification.send_status == SendStatus.SENDING.value, Notification.send_claim_id == claim_id]
    async with self._session_factory() as session:
      result = await session.execute(update(Notification).where(*conditions).values(**values))
      await session.commit()
      return result.rowcount or 0

  async def clear_tokens(self, tokens: Sequence[str]) -> int:
    if not tokens:
      return 0
    token_list = list(tokens)
    async with self._session_factory() as session:
      legacy = await session.execute(update(AppUser).where(AppUser.fcm_token.in_(token_list)).values(fcm_token=None))
      devices = await session.execute(delete(UserDevice).where(UserDevice.fcm_token.in_(token_list)))
      await session.commit()
      cleared = (legacy.rowcount or 0) + (devices.rowcount or 0)
    logger.info("Cleared %d stored token row(s) for %d invalid token(s)", cleared, len(token_list))
    return cleared

  async def find_stalled(self, stale_before: datetime.datetime) -> list[NotificationJob]:
    async with self._session_factory() as session:
      stmt = select(Notification).where(Notification.send_status.in_([state.value for state in POLLING_STATUSES]), Notification.updated_at < stale_before).order_by(Notification.updated_at.asc())
      rows = (await session.execute(stmt)).scalars().all()
      return [_row_to_job(row) for row in rows]

  async def create_push_log(self, record: PushLogRecord) -> None:
    async with self._session_factory() as session:
      session.add(
        PushNotificationLog(
          id=uuid.UUID(record.id),
          source=record.source,
          source_id=record.source_id,
          type="notification",
          title=record.title,
          body=record.body,
          image_url=record.image_url,
          data_payload=record.data_payload,
          recipient_count=record.recipient_count,
          status=record.status,
        )
      )
      await session.commit()

  async def update_push_log(self, log_id: str, *, status: str, success_count: int, failure_count: int, error_message: str | None) -> None:
    async with self._session_factory() as session:
      stmt = (
        update(PushNotificationLog)
        .where(PushNotificationLog.id == uuid.UUID(log_id))
        .values(status=status, success_count=success_count, failure_count=failure_count, error_message=error_message, sent_at=_now())
      )
      await session.execute(stmt)
      await session.commit()

  async def delete_push_logs_before(self, cutoff: datetime.datetime) -> int:
    async with self._session_factory() as session:
      result = await session.execute(delete(PushNotificationLog).where(PushNotificationLog.created_at < cutoff))
      await session.commit()
      return result.rowcount or 0
