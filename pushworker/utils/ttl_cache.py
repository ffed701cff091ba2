"""Small in-process cache with an explicit TTL and an injectable clock."""

from __future__ import annotations

import time
from collections.abc import Callable, Hashable
from typing import Generic, TypeVar

V = TypeVar("V")


class TTLCache(Generic[V]):
  """Key/value cache whose entries expire `ttl_seconds` after they are set.

  Expired entries are dropped lazily on access and by `purge()`.
  """

  def __init__(self, *, ttl_seconds: float, clock: Callable[[], float] = time.monotonic, max_entries: int = 100_000) -> None:
    if ttl_seconds <= 0:
      raise ValueError("ttl_seconds must be positive.")
    self._ttl_seconds = ttl_seconds
    self._clock = clock
    self._max_entries = max_entries
    self._entries: dict[Hashable, tuple[float, V]] = {}

  def get(self, key: Hashable) -> V | None:
    entry = self._entries.get(key)
    if entry is None:
      return None
    expires_at, value = entry
    if self._clock() >= expires_at:
      del self._entries[key]
      return None
    return value

  def set(self, key: Hashable, value: V) -> None:
    if len(self._entries) >= self._max_entries:
      self.purge()
    self._entries[key] = (self._clock() + self._ttl_seconds, value)

  def purge(self) -> int:
    now = self._clock()
    expired = [key for key, (expires_at, _) in self._entries.items() if now >= expires_at]
    for key in expired:
      del self._entries[key]
    return len(expired)

  def __len__(self) -> int:
    return len(self._entries)
