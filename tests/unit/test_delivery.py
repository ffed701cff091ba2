from __future__ import annotations

import datetime

import pytest
from firebase_admin import exceptions as firebase_exceptions
from firebase_admin import messaging

from pushworker.dispatch.delivery import DeliveryClient, PushMessage, build_fcm_message, build_push_message, classify_failure, validate_image_url
from pushworker.dispatch.models import DeliveryInvalidToken, DeliveryOk, DeliveryTransientError, NotificationJob, SendStatus
from pushworker.utils.ttl_cache import TTLCache
from tests.fakes import CodedError, FakeMessagingPlatform


def _job(**overrides) -> NotificationJob:
  values = {"id": "abc123", "title": "Hydrate", "body": "Drink water", "send_status": SendStatus.SENDING}
  values.update(overrides)
  return NotificationJob(**values)


def _message(image_url: str | None = None) -> PushMessage:
  return PushMessage(title="Hydrate", body="Drink water", collapse_key="notif_abc123", image_url=image_url, data={"notificationId": "abc123", "type": "notification"})


@pytest.mark.parametrize(
  ("raw", "expected"),
  [
    ("https://cdn.example.com/a.png", "https://cdn.example.com/a.png"),
    ("http://cdn.example.com/a.png", "http://cdn.example.com/a.png"),
    ("  https://cdn.example.com/a.png  ", "https://cdn.example.com/a.png"),
    ("ftp://cdn.example.com/a.png", None),
    ("/uploads/a.png", None),
    ("not a url", None),
    ("https://", None),
    ("", None),
    (None, None),
  ],
)
def test_validate_image_url(raw, expected):
  assert validate_image_url(raw) == expected


def test_build_push_message_sets_collapse_key_and_data():
  message = build_push_message(_job(deep_link_url="app://water"))

  assert message.collapse_key == "notif_abc123"
  assert message.data == {"notificationId": "abc123", "type": "notification", "url": "app://water"}
  assert message.image_url is None


def test_build_push_message_prefixes_relative_image_with_public_base_url():
  message = build_push_message(_job(image_url="/uploads/a.png"), public_base_url="https://admin.example.com/")

  assert message.image_url == "https://admin.example.com/uploads/a.png"


def test_build_push_message_drops_invalid_image_without_failing():
  message = build_push_message(_job(image_url="javascript:alert(1)"))

  assert message.image_url is None
  assert message.title == "Hydrate"


def test_build_fcm_message_sets_platform_delivery_hints():
  fcm_message = build_fcm_message("tok-1", _message(image_url="https://cdn.example.com/a.png"), timestamp_ms=1700000000000)

  assert fcm_message.token == "tok-1"
  assert fcm_message.notification.image == "https://cdn.example.com/a.png"
  assert fcm_message.data["_dedupKey"] == "notif_abc123"
  assert fcm_message.data["_timestamp"] == "1700000000000"
  assert fcm_message.android.priority == "high"
  assert fcm_message.android.collapse_key == "notif_abc123"
  assert fcm_message.android.notification.channel_id == "default"
  assert fcm_message.android.notification.tag == "notif_abc123"
  assert fcm_message.apns.headers == {"apns-collapse-id": "notif_abc123", "apns-priority": "10", "apns-push-type": "alert"}
  aps = fcm_message.apns.payload.aps
  assert aps.thread_id == "notif_abc123"
  assert aps.content_available is True
  assert aps.mutable_content is True
  assert fcm_message.apns.fcm_options.image == "https://cdn.example.com/a.png"


def test_build_fcm_message_without_image_leaves_mutable_content_unset():
  fcm_message = build_fcm_message("tok-1", _message(), timestamp_ms=1)

  assert fcm_message.apns.payload.aps.mutable_content is None
  assert fcm_message.apns.fcm_options is None
  assert fcm_message.notification.image is None


@pytest.mark.parametrize(
  "exc",
  [
    messaging.UnregisteredError("Requested entity was not found."),
    messaging.SenderIdMismatchError("SenderId mismatch"),
    CodedError("messaging/registration-token-not-registered", "not registered"),
    CodedError("messaging/invalid-registration-token", "bad token"),
    firebase_exceptions.InvalidArgumentError("The registration token is not a valid FCM registration token"),
  ],
)
def test_classify_failure_invalid_token(exc):
  outcome = classify_failure("tok-1", exc)

  assert isinstance(outcome, DeliveryInvalidToken)
  assert outcome.token == "tok-1"


def test_classify_failure_unavailable_is_transient_with_code():
  outcome = classify_failure("tok-1", firebase_exceptions.UnavailableError("backend down"))

  assert isinstance(outcome, DeliveryTransientError)
  assert outcome.code == "UNAVAILABLE"
  assert outcome.describe() == "UNAVAILABLE: backend down"


def test_classify_failure_unrelated_invalid_argument_is_transient():
  outcome = classify_failure("tok-1", firebase_exceptions.InvalidArgumentError("Message payload too large"))

  assert isinstance(outcome, DeliveryTransientError)


def test_classify_failure_without_code_uses_unknown():
  outcome = classify_failure("tok-1", RuntimeError("socket closed"))

  assert isinstance(outcome, DeliveryTransientError)
  assert outcome.code == "unknown"
  assert outcome.describe() == "socket closed"


@pytest.mark.anyio
async def test_deliver_returns_ok_with_message_id():
  platform = FakeMessagingPlatform()
  client = DeliveryClient(platform=platform, clock=lambda: 1000.0)

  outcome = await client.deliver("tok-1", _message())

  assert outcome == DeliveryOk(token="tok-1", message_id="projects/demo/messages/1")
  assert platform.sent_messages[0].data["_timestamp"] == "1000000"


@pytest.mark.anyio
async def test_deliver_never_raises_on_platform_failure():
  platform = FakeMessagingPlatform(failures={"tok-1": messaging.UnregisteredError("gone")})
  client = DeliveryClient(platform=platform)

  outcome = await client.deliver("tok-1", _message())

  assert isinstance(outcome, DeliveryInvalidToken)
  assert outcome.code == "NOT_FOUND"


@pytest.mark.anyio
async def test_deliver_suppresses_repeat_send_within_dedup_window():
  now = {"t": 0.0}
  cache: TTLCache[float] = TTLCache(ttl_seconds=30, clock=lambda: now["t"])
  platform = FakeMessagingPlatform()
  client = DeliveryClient(platform=platform, dedup_cache=cache)

  first = await client.deliver("tok-1", _message())
  second = await client.deliver("tok-1", _message())
  now["t"] = 31.0
  third = await client.deliver("tok-1", _message())

  assert isinstance(first, DeliveryOk) and not first.skipped
  assert second == DeliveryOk(token="tok-1", skipped=True)
  assert isinstance(third, DeliveryOk) and not third.skipped
  assert platform.sent_tokens == ["tok-1", "tok-1"]


@pytest.mark.anyio
async def test_failed_delivery_is_not_remembered_by_the_dedup_window():
  cache: TTLCache[float] = TTLCache(ttl_seconds=30)
  platform = FakeMessagingPlatform(failures={"tok-1": firebase_exceptions.UnavailableError("busy")})
  client = DeliveryClient(platform=platform, dedup_cache=cache)

  first = await client.deliver("tok-1", _message())
  platform.failures.clear()
  second = await client.deliver("tok-1", _message())

  assert isinstance(first, DeliveryTransientError)
  assert isinstance(second, DeliveryOk) and not second.skipped
  assert platform.sent_tokens == ["tok-1", "tok-1"]


@pytest.mark.anyio
async def test_dedup_window_is_scoped_to_one_send_run():
  cache: TTLCache[float] = TTLCache(ttl_seconds=30)
  platform = FakeMessagingPlatform()
  client = DeliveryClient(platform=platform, dedup_cache=cache)
  first_run = build_push_message(_job(send_started_at=datetime.datetime(2026, 1, 15, 9, 0, tzinfo=datetime.UTC)))
  retry_run = build_push_message(_job(send_started_at=datetime.datetime(2026, 1, 15, 9, 0, 5, tzinfo=datetime.UTC)))

  await client.deliver("tok-1", first_run)
  repeat = await client.deliver("tok-1", first_run)
  retry = await client.deliver("tok-1", retry_run)

  assert repeat.skipped is True
  assert isinstance(retry, DeliveryOk) and not retry.skipped
  assert platform.sent_tokens == ["tok-1", "tok-1"]
  assert "dedup_scope" not in platform.sent_messages[0].data
