"""Remove push tokens that the platform reported as permanently dead."""

from __future__ import annotations

import logging
from collections.abc import Iterable

from pushworker.storage.job_store import JobStore

logger = logging.getLogger(__name__)


class TokenPruner:
  def __init__(self, store: JobStore) -> None:
    self._store = store

  async def prune(self, tokens: Iterable[str]) -> int:
    """Clear all given tokens in one store call; no call when there are none."""
    unique = list(dict.fromkeys(token for token in tokens if token))
    if not unique:
      return 0
    cleared = await self._store.clear_tokens(unique)
    logger.info("Pruned invalid FCM tokens requested=%d cleared=%d", len(unique), cleared)
    return cleared
