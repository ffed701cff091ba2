"""Factory helpers for the notification send service."""

from __future__ import annotations

from pushworker.config import Settings
from pushworker.dispatch.batch import BatchDispatcher
from pushworker.dispatch.delivery import DeliveryClient, FirebaseMessagingPlatform
from pushworker.dispatch.runner import NotificationSendRunner
from pushworker.dispatch.service import NotificationSendService
from pushworker.storage.postgres_audience import PostgresAudienceSource
from pushworker.storage.postgres_job_store import PostgresJobStore
from pushworker.utils.ttl_cache import TTLCache


def build_send_service(settings: Settings) -> NotificationSendService:
  """Construct the Postgres and Firebase backed send service."""
  store = PostgresJobStore()
  platform = FirebaseMessagingPlatform(settings)
  # Suppress repeat sends of the same job to the same device within the window.
  dedup_cache: TTLCache[float] = TTLCache(ttl_seconds=settings.dedup_window_seconds)
  dispatcher = BatchDispatcher(DeliveryClient(platform=platform, dedup_cache=dedup_cache))
  runner = NotificationSendRunner(
    store=store,
    audience=PostgresAudienceSource(),
    platform=platform,
    dispatcher=dispatcher,
    push_logs=store,
    concurrency_limit=settings.send_concurrency_limit,
    report_every=settings.progress_report_every,
    lease_seconds=settings.send_lease_seconds,
    public_base_url=settings.public_base_url,
  )
  return NotificationSendService(store=store, runner=runner, push_logs=store)
