"""Send job state machine and the single-runner claim."""

from __future__ import annotations

import datetime
import logging
import uuid
from dataclasses import dataclass
from typing import Literal

from pushworker.dispatch.errors import JobInactiveError, JobNotFoundError
from pushworker.dispatch.models import ENQUEUEABLE_STATUSES, NotificationJob, SendStatus
from pushworker.storage.job_store import JobStore

logger = logging.getLogger(__name__)

ClaimMode = Literal["fresh", "resume", "skip"]


@dataclass(frozen=True)
class JobClaim:
  """Result of trying to become the runner of a job."""

  mode: ClaimMode
  job: NotificationJob | None = None
  claim_id: str | None = None

  @property
  def acquired(self) -> bool:
    return self.mode != "skip" and self.job is not None


def fresh_run_fields(now: datetime.datetime, claim_id: str) -> dict[str, object]:
  """Counters written when a queued job starts a new run."""
  return {
    "send_progress": 0,
    "send_total": 0,
    "success_count": 0,
    "failure_count": 0,
    "receiver_count": 0,
    "send_errors": [],
    "send_started_at": now,
    "send_completed_at": None,
    "send_claim_id": claim_id,
  }


async def claim_job(store: JobStore, job_id: str, *, lease_seconds: int, now: datetime.datetime | None = None, claim_id: str | None = None) -> JobClaim:
  """Try to take the `sending` lock for a job.

  A queued row is claimed fresh. A `sending` row is resumed only when its
  heartbeat is older than the lease, which means the previous runner died;
  a row with a live heartbeat belongs to another runner and is skipped.
  Each successful claim stamps a new `send_claim_id`, so writes fenced on
  an older claim no longer apply.
  """
  now = now or datetime.datetime.now(datetime.UTC)
  claim_id = claim_id or uuid.uuid4().hex
  affected = await store.try_transition(job_id, {SendStatus.QUEUED}, SendStatus.SENDING, fresh_run_fields(now, claim_id))
  if affected:
    job = await store.get_job(job_id)
    if job is None:
      logger.warning("Notification %s vanished after claim", job_id)
      return JobClaim(mode="skip")
    logger.info("Claimed notification %s for a fresh send", job_id)
    return JobClaim(mode="fresh", job=job, claim_id=claim_id)

  job = await store.get_job(job_id)
  if job is None:
    logger.info("Notification %s not found; nothing to send", job_id)
    return JobClaim(mode="skip")

  if job.send_status != SendStatus.SENDING:
    logger.info("Notification %s is %s; skipping send", job_id, job.send_status.value)
    return JobClaim(mode="skip", job=job)

  stale_before = now - datetime.timedelta(seconds=lease_seconds)
  if job.updated_at is not None and job.updated_at >= stale_before:
    logger.info("Notification %s is being sent by a live runner; skipping", job_id)
    return JobClaim(mode="skip", job=job)

  reclaimed = await store.try_reclaim_stale(job_id, stale_before, claim_id)
  if not reclaimed:
    logger.info("Notification %s was reclaimed by another runner; skipping", job_id)
    return JobClaim(mode="skip", job=job)

  job = await store.get_job(job_id)
  if job is None:
    return JobClaim(mode="skip")
  logger.info("Resuming notification %s from %d/%d", job_id, job.send_progress, job.send_total)
  return JobClaim(mode="resume", job=job, claim_id=claim_id)


def classify_terminal(success_count: int, failure_count: int) -> SendStatus:
  if failure_count == 0:
    return SendStatus.SENT
  if success_count == 0:
    return SendStatus.FAILED
  return SendStatus.PARTIAL


async def enqueue(store: JobStore, job_id: str) -> bool:
  """Move an idle, failed or partial job to `queued`; return whether it moved."""
  job = await store.get_job(job_id)
  if job is None:
    raise JobNotFoundError(f"Notification {job_id} not found")
  if not job.is_active:
    raise JobInactiveError(job_id)

  affected = await store.try_transition(job_id, ENQUEUEABLE_STATUSES, SendStatus.QUEUED)
  if affected:
    logger.info("Notification %s queued for sending (was %s)", job_id, job.send_status.value)
  else:
    logger.info("Notification %s not queued; status is %s", job_id, job.send_status.value)
  return bool(affected)
