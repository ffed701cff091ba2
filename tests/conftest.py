"""Test configuration and shared fixtures."""

from __future__ import annotations

import pytest

from tests.fakes import FakeClock, FakeMessagingPlatform, InMemoryJobStore


@pytest.fixture
def anyio_backend():
  return "asyncio"


@pytest.fixture
def clock() -> FakeClock:
  return FakeClock()


@pytest.fixture
def store(clock: FakeClock) -> InMemoryJobStore:
  return InMemoryJobStore(clock=clock)


@pytest.fixture
def platform() -> FakeMessagingPlatform:
  return FakeMessagingPlatform()
