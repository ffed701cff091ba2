from __future__ import annotations

import pytest

from pushworker.dispatch.pruner import TokenPruner


@pytest.mark.anyio
async def test_prune_issues_one_call_with_unique_tokens(store):
  store.legacy_tokens = {"u1": "A", "u2": "B"}
  store.device_tokens = {"C": "u3"}

  cleared = await TokenPruner(store).prune(["A", "C", "A", ""])

  assert store.cleared_token_calls == [["A", "C"]]
  assert cleared == 2
  assert store.legacy_tokens == {"u1": None, "u2": "B"}
  assert store.device_tokens == {}


@pytest.mark.anyio
async def test_prune_with_no_tokens_makes_no_store_call(store):
  assert await TokenPruner(store).prune([]) == 0
  assert store.cleared_token_calls == []
