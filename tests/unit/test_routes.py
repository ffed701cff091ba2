from __future__ import annotations

import dataclasses

import pytest
from fastapi.testclient import TestClient

from pushworker.api.deps import get_send_service
from pushworker.config import get_settings
from pushworker.dispatch.batch import BatchDispatcher
from pushworker.dispatch.delivery import DeliveryClient
from pushworker.dispatch.models import SendStatus
from pushworker.dispatch.runner import NotificationSendRunner
from pushworker.dispatch.service import NotificationSendService
from pushworker.main import app
from tests.fakes import FakeMessagingPlatform, InMemoryJobStore, StaticAudienceSource, tokens

ADMIN = {"X-Admin-Key": "admin-key"}


@pytest.fixture
def route_store() -> InMemoryJobStore:
  return InMemoryJobStore()


@pytest.fixture
def client(route_store):
  platform = FakeMessagingPlatform()
  runner = NotificationSendRunner(store=route_store, audience=StaticAudienceSource(device_tokens=tokens("a", "b")), platform=platform, dispatcher=BatchDispatcher(DeliveryClient(platform=platform)), push_logs=route_store, clock=route_store.clock)
  service = NotificationSendService(store=route_store, runner=runner, push_logs=route_store, clock=route_store.clock)
  settings = dataclasses.replace(get_settings(), admin_api_key="admin-key", task_secret="task-secret")
  app.dependency_overrides[get_send_service] = lambda: service
  app.dependency_overrides[get_settings] = lambda: settings
  try:
    yield TestClient(app)
  finally:
    app.dependency_overrides.clear()


def test_health_check(client):
  response = client.get("/health")

  assert response.status_code == 200
  assert response.json()["status"] == "ok"


def test_send_requires_admin_key(client, route_store):
  route_store.add_job(send_status=SendStatus.IDLE)

  response = client.post("/v1/notifications/n1/send", headers={"X-Admin-Key": "wrong"})

  assert response.status_code == 401
  assert route_store.jobs["n1"].send_status == SendStatus.IDLE


def test_send_queues_and_runs_in_background(client, route_store):
  route_store.add_job(send_status=SendStatus.IDLE)

  response = client.post("/v1/notifications/n1/send", headers=ADMIN)

  assert response.status_code == 202
  body = response.json()
  assert body["progress"]["sendStatus"] == "queued"
  assert route_store.jobs["n1"].send_status == SendStatus.SENT

  progress = client.get("/v1/notifications/n1/progress", headers=ADMIN).json()
  assert progress["sendStatus"] == "sent"
  assert progress["sendProgress"] == 2
  assert progress["sendTotal"] == 2
  assert progress["percentComplete"] == 100
  assert progress["isPolling"] is False


def test_send_unknown_notification_is_404(client):
  response = client.post("/v1/notifications/missing/send", headers=ADMIN)

  assert response.status_code == 404


def test_send_inactive_notification_is_400(client, route_store):
  route_store.add_job(send_status=SendStatus.IDLE, is_active=False)

  response = client.post("/v1/notifications/n1/send", headers=ADMIN)

  assert response.status_code == 400


def test_send_while_sending_is_409(client, route_store):
  route_store.add_job(send_status=SendStatus.SENDING)

  response = client.post("/v1/notifications/n1/send", headers=ADMIN)

  assert response.status_code == 409


def test_progress_for_unknown_notification_is_404(client):
  assert client.get("/v1/notifications/missing/progress", headers=ADMIN).status_code == 404


def test_cron_routes_reject_missing_secret(client):
  assert client.post("/internal/cron/resume-notifications").status_code == 403
  assert client.post("/internal/cron/cleanup-push-logs", headers={"Authorization": "Bearer nope"}).status_code == 403


def test_resume_cron_accepts_bearer_secret(client, route_store):
  route_store.add_job(send_status=SendStatus.QUEUED)
  route_store.clock.advance(600)

  response = client.post("/internal/cron/resume-notifications", headers={"Authorization": "Bearer task-secret"})

  assert response.status_code == 202
  assert route_store.jobs["n1"].send_status == SendStatus.SENT


def test_cleanup_cron_accepts_dedicated_header(client):
  response = client.post("/internal/cron/cleanup-push-logs", headers={"X-Pushworker-Task-Secret": "task-secret"})

  assert response.status_code == 200
  assert response.json() == {"status": "ok", "deleted": 0, "retentionDays": 90}
