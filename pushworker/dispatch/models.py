"""Domain records for notification send runs."""

from __future__ import annotations

import datetime
from dataclasses import dataclass, field
from enum import Enum
from typing import Literal

MAX_SEND_ERRORS = 10


class SendStatus(str, Enum):
  IDLE = "idle"
  QUEUED = "queued"
  SENDING = "sending"
  SENT = "sent"
  PARTIAL = "partial"
  FAILED = "failed"


POLLING_STATUSES = frozenset({SendStatus.QUEUED, SendStatus.SENDING})
ENQUEUEABLE_STATUSES = frozenset({SendStatus.IDLE, SendStatus.FAILED, SendStatus.PARTIAL})


@dataclass(frozen=True)
class NotificationJob:
  """Snapshot of a persisted notification row and its send progress."""

  id: str
  title: str
  body: str
  send_status: SendStatus
  image_url: str | None = None
  deep_link_url: str | None = None
  is_active: bool = True
  send_progress: int = 0
  send_total: int = 0
  success_count: int = 0
  failure_count: int = 0
  send_errors: list[str] = field(default_factory=list)
  send_started_at: datetime.datetime | None = None
  send_completed_at: datetime.datetime | None = None
  updated_at: datetime.datetime | None = None
  send_claim_id: str | None = None

  @property
  def receiver_count(self) -> int:
    return self.success_count


@dataclass(frozen=True)
class DeviceToken:
  """A push address and the app user that owns it."""

  token: str
  owner_id: str


@dataclass(frozen=True)
class DeliveryOk:
  token: str
  message_id: str | None = None
  skipped: bool = False
  kind: Literal["ok"] = "ok"


@dataclass(frozen=True)
class DeliveryTransientError:
  token: str
  code: str
  message: str
  kind: Literal["transient-error"] = "transient-error"

  def describe(self) -> str:
    return format_error(self.code, self.message)


@dataclass(frozen=True)
class DeliveryInvalidToken:
  token: str
  code: str
  message: str
  kind: Literal["invalid-token"] = "invalid-token"

  def describe(self) -> str:
    return format_error(self.code, self.message)


DeliveryOutcome = DeliveryOk | DeliveryTransientError | DeliveryInvalidToken


def format_error(code: str, message: str) -> str:
  """Render a diagnostic string the way the admin UI displays send errors."""
  if code and code != "unknown":
    return f"{code}: {message}"
  return message
