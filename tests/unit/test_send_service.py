from __future__ import annotations

import datetime

import pytest

from pushworker.dispatch.batch import BatchDispatcher
from pushworker.dispatch.delivery import DeliveryClient
from pushworker.dispatch.errors import JobNotEnqueueableError, JobNotFoundError
from pushworker.dispatch.models import SendStatus
from pushworker.dispatch.runner import NotificationSendRunner
from pushworker.dispatch.service import NotificationSendService
from pushworker.storage.job_store import PushLogRecord
from tests.fakes import FakeMessagingPlatform, InMemoryJobStore, StaticAudienceSource, tokens


def _service(store: InMemoryJobStore, platform: FakeMessagingPlatform, audience: StaticAudienceSource | None = None) -> NotificationSendService:
  runner = NotificationSendRunner(
    store=store,
    audience=audience or StaticAudienceSource(device_tokens=tokens("a", "b", "c")),
    platform=platform,
    dispatcher=BatchDispatcher(DeliveryClient(platform=platform)),
    push_logs=store,
    clock=store.clock,
  )
  return NotificationSendService(store=store, runner=runner, push_logs=store, clock=store.clock)


@pytest.mark.anyio
async def test_enqueue_returns_queued_view(store, platform):
  store.add_job(send_status=SendStatus.FAILED)

  view = await _service(store, platform).enqueue("n1")

  assert view.send_status == SendStatus.QUEUED
  assert view.is_polling_state is True


@pytest.mark.anyio
async def test_enqueue_conflicts_when_send_in_flight(store, platform):
  store.add_job(send_status=SendStatus.SENDING)

  with pytest.raises(JobNotEnqueueableError):
    await _service(store, platform).enqueue("n1")


@pytest.mark.anyio
async def test_get_job_status_unknown_id_raises(store, platform):
  with pytest.raises(JobNotFoundError):
    await _service(store, platform).get_job_status("missing")


@pytest.mark.anyio
async def test_start_in_background_runs_the_queued_send(store, platform):
  store.add_job(send_status=SendStatus.IDLE)
  service = _service(store, platform)

  view = await service.enqueue("n1")
  task = service.start_in_background("n1")
  await task

  assert view.send_status == SendStatus.QUEUED
  assert store.jobs["n1"].send_status == SendStatus.SENT
  assert sorted(platform.sent_tokens) == ["a", "b", "c"]


@pytest.mark.anyio
async def test_retry_after_partial_is_a_fresh_run(store, platform):
  store.add_job(send_status=SendStatus.PARTIAL, send_progress=3, send_total=3, success_count=2, failure_count=1, send_errors=["UNAVAILABLE: busy"])
  service = _service(store, platform)

  await service.enqueue("n1")
  await service.run("n1")

  job = store.jobs["n1"]
  assert job.send_status == SendStatus.SENT
  assert (job.success_count, job.failure_count) == (3, 0)
  assert job.send_errors == []


@pytest.mark.anyio
async def test_resume_stalled_runs_only_jobs_past_the_threshold(store, platform, clock):
  store.add_job("stale-queued", send_status=SendStatus.QUEUED)
  store.add_job("stale-sending", send_status=SendStatus.SENDING, send_progress=1, send_total=3, success_count=1)
  clock.advance(400)
  store.add_job("fresh-sending", send_status=SendStatus.SENDING, send_progress=1, send_total=3, success_count=1)

  summary = await _service(store, platform).resume_stalled(300)

  assert summary.found == 2
  assert sorted(summary.resumed) == ["stale-queued", "stale-sending"]
  assert store.jobs["stale-queued"].send_status == SendStatus.SENT
  assert store.jobs["stale-sending"].send_status == SendStatus.SENT
  assert store.jobs["fresh-sending"].send_status == SendStatus.SENDING


@pytest.mark.anyio
async def test_cleanup_push_logs_deletes_rows_past_retention(store, platform, clock):
  now = clock()
  store.push_logs = {
    "old": PushLogRecord(id="old", source="notification", source_id="n1", title="t", body="b", recipient_count=1, status="sent", created_at=now - datetime.timedelta(days=91)),
    "new": PushLogRecord(id="new", source="notification", source_id="n2", title="t", body="b", recipient_count=1, status="sent", created_at=now - datetime.timedelta(days=5)),
  }

  deleted = await _service(store, platform).cleanup_push_logs(90)

  assert deleted == 1
  assert list(store.push_logs) == ["new"]
