"""FCM message building and single-token delivery."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Protocol
from urllib.parse import urlparse

from firebase_admin import exceptions as firebase_exceptions
from firebase_admin import messaging
from starlette.concurrency import run_in_threadpool

from pushworker.config import Settings
from pushworker.core.firebase import get_firebase_app, initialize_firebase
from pushworker.core.logging import token_preview
from pushworker.dispatch.models import DeliveryInvalidToken, DeliveryOk, DeliveryOutcome, DeliveryTransientError, NotificationJob
from pushworker.utils.ttl_cache import TTLCache

logger = logging.getLogger(__name__)

# Error codes that mean the registration is permanently dead.
INVALID_TOKEN_CODES = frozenset({"messaging/invalid-registration-token", "messaging/registration-token-not-registered", "NOT_FOUND", "UNREGISTERED", "SENDER_ID_MISMATCH"})


@dataclass(frozen=True)
class PushMessage:
  """Platform-neutral content shared by every token of one send run."""

  title: str
  body: str
  collapse_key: str
  image_url: str | None = None
  data: dict[str, str] = field(default_factory=dict)
  # Identifies one send run; never sent to devices.
  dedup_scope: str = ""


class MessagingPlatform(Protocol):
  """Capability contract for the push messaging SDK."""

  def initialize(self) -> bool:
    """Authenticate against the platform; False when credentials are missing or invalid."""

  async def send(self, message: messaging.Message) -> str:
    """Deliver one message and return the platform message id."""


class FirebaseMessagingPlatform(MessagingPlatform):
  """Firebase Admin SDK backed messaging platform."""

  def __init__(self, settings: Settings) -> None:
    self._settings = settings

  def initialize(self) -> bool:
    return initialize_firebase(self._settings) and get_firebase_app() is not None

  async def send(self, message: messaging.Message) -> str:
    # The Admin SDK is blocking; keep the event loop free while the HTTP call runs.
    return await run_in_threadpool(messaging.send, message, False, get_firebase_app())


def collapse_key_for(job_id: str) -> str:
  return f"notif_{job_id}"


def resolve_image_url(raw: str | None, public_base_url: str | None) -> str | None:
  """Turn a stored image path into an absolute URL candidate."""
  if raw is None or not raw.strip():
    return None
  value = raw.strip()
  if value.startswith("http://") or value.startswith("https://"):
    return value
  if public_base_url and value.startswith("/"):
    return f"{public_base_url.rstrip('/')}{value}"
  return value


def validate_image_url(raw: str | None) -> str | None:
  """Return the URL when it is a well-formed http(s) URL, otherwise None."""
  if raw is None or not raw.strip():
    return None
  candidate = raw.strip()
  try:
    parsed = urlparse(candidate)
  except ValueError:
    logger.warning("Dropping malformed image URL: %.50s", candidate)
    return None
  if parsed.scheme not in {"http", "https"} or not parsed.netloc:
    logger.warning("Dropping image URL without http/https host: %.50s", candidate)
    return None
  return candidate


def build_push_message(job: NotificationJob, *, public_base_url: str | None = None) -> PushMessage:
  """Build the shared message for a notification job."""
  data = {"notificationId": job.id, "type": "notification"}
  if job.deep_link_url:
    data["url"] = job.deep_link_url
  image_url = validate_image_url(resolve_image_url(job.image_url, public_base_url))
  dedup_scope = job.send_started_at.isoformat() if job.send_started_at else ""
  return PushMessage(title=job.title, body=job.body, collapse_key=collapse_key_for(job.id), image_url=image_url, data=data, dedup_scope=dedup_scope)


def build_fcm_message(token: str, message: PushMessage, *, timestamp_ms: int) -> messaging.Message:
  """Build the platform-aware FCM message for one device token."""
  image = message.image_url
  data = {key: str(value) for key, value in message.data.items()}
  data["_dedupKey"] = message.collapse_key
  data["_timestamp"] = str(timestamp_ms)

  android = messaging.AndroidConfig(
    priority="high",
    collapse_key=message.collapse_key,
    notification=messaging.AndroidNotification(channel_id="default", sound="default", priority="high", tag=message.collapse_key, image=image),
  )
  apns = messaging.APNSConfig(
    headers={"apns-collapse-id": message.collapse_key, "apns-priority": "10", "apns-push-type": "alert"},
    payload=messaging.APNSPayload(aps=messaging.Aps(sound="default", thread_id=message.collapse_key, content_available=True, mutable_content=True if image else None)),
    fcm_options=messaging.APNSFCMOptions(image=image) if image else None,
  )
  return messaging.Message(token=token, notification=messaging.Notification(title=message.title, body=message.body, image=image), data=data, android=android, apns=apns)


def _error_code(exc: BaseException) -> str:
  code = getattr(exc, "code", None)
  if code is None:
    return "unknown"
  return str(code)


def _error_message(exc: BaseException) -> str:
  return str(exc) or type(exc).__name__


def classify_failure(token: str, exc: BaseException) -> DeliveryInvalidToken | DeliveryTransientError:
  """Map a send exception onto invalid-token or transient-error."""
  code = _error_code(exc)
  message = _error_message(exc)

  if isinstance(exc, (messaging.UnregisteredError, messaging.SenderIdMismatchError)):
    return DeliveryInvalidToken(token=token, code=code, message=message)

  if code in INVALID_TOKEN_CODES:
    return DeliveryInvalidToken(token=token, code=code, message=message)

  # The SDK reports malformed tokens as a generic INVALID_ARGUMENT.
  if isinstance(exc, firebase_exceptions.InvalidArgumentError) and "registration token" in message.lower():
    return DeliveryInvalidToken(token=token, code=code, message=message)

  return DeliveryTransientError(token=token, code=code, message=message)


class DeliveryClient:
  """Sends one message to one token and classifies the result."""

  def __init__(self, *, platform: MessagingPlatform, dedup_cache: TTLCache[float] | None = None, clock: Callable[[], float] = time.time) -> None:
    self._platform = platform
    self._dedup_cache = dedup_cache
    self._clock = clock

  async def deliver(self, token: str, message: PushMessage) -> DeliveryOutcome:
    """Attempt exactly one delivery; per-token failures are returned, never raised.

    A token already delivered by the same send run within the dedup window
    is reported as a skipped success. Failed attempts are not remembered, so
    a retry always reaches the platform.
    """
    now = self._clock()
    dedup_key = (token, message.collapse_key, message.dedup_scope)
    if self._dedup_cache is not None and self._dedup_cache.get(dedup_key) is not None:
      logger.debug("Duplicate push suppressed token=%s collapse_key=%s", token_preview(token), message.collapse_key)
      return DeliveryOk(token=token, skipped=True)

    try:
      fcm_message = build_fcm_message(token, message, timestamp_ms=int(now * 1000))
      message_id = await self._platform.send(fcm_message)
    except Exception as exc:  # noqa: BLE001
      outcome = classify_failure(token, exc)
      if isinstance(outcome, DeliveryInvalidToken):
        logger.warning("Invalid FCM token will be pruned token=%s code=%s", token_preview(token), outcome.code)
      else:
        logger.warning("FCM send failed token=%s code=%s message=%s has_image=%s", token_preview(token), outcome.code, outcome.message, bool(message.image_url))
      return outcome

    if self._dedup_cache is not None:
      self._dedup_cache.set(dedup_key, now)
    return DeliveryOk(token=token, message_id=message_id)
