"""One end-to-end send run for a notification job."""

from __future__ import annotations

import asyncio
import datetime
import logging
import uuid
from collections.abc import Callable

from pushworker.dispatch.audience import AudienceSource, resolve_audience
from pushworker.dispatch.batch import BatchDispatcher, DispatchConfig, DispatchCounts, DispatchResult, DispatchSnapshot
from pushworker.dispatch.delivery import MessagingPlatform, PushMessage, build_push_message
from pushworker.dispatch.errors import LeaseLostError
from pushworker.dispatch.models import NotificationJob, SendStatus
from pushworker.dispatch.progress import ProgressTracker, cap_errors
from pushworker.dispatch.pruner import TokenPruner
from pushworker.dispatch.state import claim_job, classify_terminal
from pushworker.storage.job_store import JobStore, PushLogRecord, PushLogRepository

logger = logging.getLogger(__name__)

PLATFORM_INIT_ERROR = "FCM not initialized. Check service account credentials."
PUSH_LOG_ERROR_SAMPLES = 5


def _utcnow() -> datetime.datetime:
  return datetime.datetime.now(datetime.UTC)


class NotificationSendRunner:
  """Claims a job, fans the message out to the audience and records the outcome."""

  def __init__(
    self,
    *,
    store: JobStore,
    audience: AudienceSource,
    platform: MessagingPlatform,
    dispatcher: BatchDispatcher,
    push_logs: PushLogRepository | None = None,
    concurrency_limit: int = 5,
    report_every: int = 5,
    lease_seconds: int = 300,
    public_base_url: str | None = None,
    clock: Callable[[], datetime.datetime] = _utcnow,
  ) -> None:
    self._store = store
    self._audience = audience
    self._platform = platform
    self._dispatcher = dispatcher
    self._push_logs = push_logs
    self._tracker = ProgressTracker(store)
    self._pruner = TokenPruner(store)
    self._concurrency_limit = concurrency_limit
    self._report_every = report_every
    self._lease_seconds = lease_seconds
    self._public_base_url = public_base_url
    self._clock = clock

  async def run(self, job_id: str, *, cancel_event: asyncio.Event | None = None) -> SendStatus | None:
    """Run the job to a terminal state.

    Returns the status written by this run, or None when another runner owns
    the job. Never raises; failures are recorded on the job row.
    """
    claim_id = uuid.uuid4().hex
    try:
      return await self._run(job_id, claim_id, cancel_event)
    except LeaseLostError:
      logger.warning("Notification %s was taken over by another runner; stopping", job_id)
      return None
    except Exception as exc:  # noqa: BLE001
      logger.error("Notification send failed job=%s error=%s", job_id, exc, exc_info=True)
      await self._force_failed(job_id, claim_id, str(exc) or type(exc).__name__)
      return SendStatus.FAILED

  async def _run(self, job_id: str, claim_id: str, cancel_event: asyncio.Event | None) -> SendStatus | None:
    claim = await claim_job(self._store, job_id, lease_seconds=self._lease_seconds, now=self._clock(), claim_id=claim_id)
    if not claim.acquired or claim.job is None:
      return None
    job = claim.job
    resuming = claim.mode == "resume"

    if not self._platform.initialize():
      logger.error("Messaging platform unavailable; failing notification %s", job_id)
      await self._write(job_id, claim_id, {"send_status": SendStatus.FAILED, "send_errors": [PLATFORM_INIT_ERROR], "send_completed_at": self._clock()})
      return SendStatus.FAILED

    tokens = await resolve_audience(self._audience)
    stored_progress = job.send_progress if resuming else 0
    if resuming and job.send_total and job.send_total != len(tokens):
      logger.warning("Audience for notification %s changed during resume: stored=%d resolved=%d progress=%d", job_id, job.send_total, len(tokens), stored_progress)
    # Tokens already processed stay counted even if the audience shrank.
    total = max(len(tokens), stored_progress)
    await self._write(job_id, claim_id, {"send_total": total})

    if total == 0:
      logger.info("Notification %s has no active tokens; marking sent", job_id)
      await self._write(
        job_id, claim_id, {"send_status": SendStatus.SENT, "send_progress": 0, "success_count": 0, "failure_count": 0, "receiver_count": 0, "send_errors": [], "send_completed_at": self._clock()}
      )
      return SendStatus.SENT

    message = build_push_message(job, public_base_url=self._public_base_url)
    log_id = await self._open_push_log(job, message, total)

    initial_counts = DispatchCounts(success_count=job.success_count, failure_count=job.failure_count, errors=tuple(job.send_errors)) if resuming else DispatchCounts()
    config = DispatchConfig(concurrency_limit=self._concurrency_limit, start_offset=stored_progress, report_every=self._report_every)

    async def on_progress(snapshot: DispatchSnapshot) -> None:
      await self._tracker.record_progress(job_id, snapshot.processed, snapshot.success_count, snapshot.failure_count, snapshot.errors, claim_id=claim_id)

    logger.info("Sending notification %s to %d token(s) from offset %d", job_id, len(tokens), min(stored_progress, len(tokens)))
    result = await self._dispatcher.dispatch(tokens, message, config, on_progress=on_progress, initial_counts=initial_counts, cancel_event=cancel_event)

    await self._pruner.prune(result.invalid_tokens)

    if result.cancelled:
      logger.info("Notification %s cancelled at %d/%d; left in sending for resume", job_id, result.processed, total)
      return SendStatus.SENDING

    return await self._complete(job_id, claim_id, result, total, log_id)

  async def _write(self, job_id: str, claim_id: str, fields: dict[str, object]) -> None:
    affected = await self._store.write_progress(job_id, fields, claim_id=claim_id)
    if not affected:
      raise LeaseLostError(job_id)

  async def _complete(self, job_id: str, claim_id: str, result: DispatchResult, total: int, log_id: str | None) -> SendStatus:
    status = classify_terminal(result.success_count, result.failure_count)
    errors = cap_errors(result.errors)
    await self._write(
      job_id,
      claim_id,
      {
        "send_status": status,
        "send_progress": total,
        "success_count": result.success_count,
        "failure_count": result.failure_count,
        "receiver_count": result.success_count,
        "send_errors": errors,
        "send_completed_at": self._clock(),
      },
    )
    logger.info("Notification %s finished status=%s success=%d failure=%d", job_id, status.value, result.success_count, result.failure_count)
    await self._close_push_log(log_id, status, result.success_count, result.failure_count, errors)
    return status

  async def _force_failed(self, job_id: str, claim_id: str, message: str) -> None:
    try:
      affected = await self._store.write_progress(job_id, {"send_status": SendStatus.FAILED, "send_errors": [message], "send_completed_at": self._clock()}, claim_id=claim_id)
    except Exception as exc:  # noqa: BLE001
      logger.error("Could not record failure for notification %s: %s", job_id, exc, exc_info=True)
      return
    if not affected:
      logger.warning("Failure for notification %s not recorded; this runner does not hold the job", job_id)

  async def _open_push_log(self, job: NotificationJob, message: PushMessage, total: int) -> str | None:
    if self._push_logs is None:
      return None
    log_id = str(uuid.uuid4())
    record = PushLogRecord(id=log_id, source="notification", source_id=job.id, title=message.title, body=message.body, recipient_count=total, status="pending", image_url=message.image_url, data_payload=dict(message.data))
    try:
      await self._push_logs.create_push_log(record)
    except Exception as exc:  # noqa: BLE001
      logger.error("Push log insert failed notification=%s error=%s", job.id, exc, exc_info=True)
      return None
    return log_id

  async def _close_push_log(self, log_id: str | None, status: SendStatus, success_count: int, failure_count: int, errors: list[str]) -> None:
    if self._push_logs is None or log_id is None:
      return
    error_message = "; ".join(errors[:PUSH_LOG_ERROR_SAMPLES]) or None
    try:
      await self._push_logs.update_push_log(log_id, status=status.value, success_count=success_count, failure_count=failure_count, error_message=error_message)
    except Exception as exc:  # noqa: BLE001
      logger.error("Push log update failed log_id=%s error=%s", log_id, exc, exc_info=True)
