"""Resolve the device tokens of all active app users."""

from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence
from typing import Protocol

from pushworker.dispatch.models import DeviceToken

logger = logging.getLogger(__name__)


class AudienceSource(Protocol):
  """Read-only access to the two token stores."""

  async def list_active_device_tokens(self) -> Sequence[DeviceToken]:
    """Return tokens from the multi-device table for active users."""

  async def list_active_legacy_tokens(self) -> Sequence[DeviceToken]:
    """Return the legacy single token of each active user that has one."""


def _stable_order(tokens: Iterable[DeviceToken]) -> list[DeviceToken]:
  return sorted(tokens, key=lambda item: (item.token, item.owner_id))


def merge_audience(device_tokens: Iterable[DeviceToken], legacy_tokens: Iterable[DeviceToken]) -> list[DeviceToken]:
  """Merge multi-device tokens with legacy tokens, deduplicated by token value.

  Multi-device rows win; a legacy token is appended only when no device row
  already carries it. Each source is sorted first so the merged order, and
  therefore the resume offset, is the same on every call. Token values are
  kept exactly as stored so a dead token can later be pruned by value.
  """
  merged: list[DeviceToken] = []
  seen: set[str] = set()
  for entry in [*_stable_order(device_tokens), *_stable_order(legacy_tokens)]:
    if not entry.token.strip() or entry.token in seen:
      continue
    seen.add(entry.token)
    merged.append(entry)
  return merged


async def resolve_audience(source: AudienceSource) -> list[DeviceToken]:
  """Load and merge the active audience. Safe to call repeatedly."""
  device_tokens = list(await source.list_active_device_tokens())
  legacy_tokens = list(await source.list_active_legacy_tokens())
  audience = merge_audience(device_tokens, legacy_tokens)
  duplicates = len(device_tokens) + len(legacy_tokens) - len(audience)
  if duplicates:
    logger.info("Dropped %d duplicate token(s) while resolving audience", duplicates)
  logger.info("Resolved audience tokens=%d owners=%d", len(audience), len({entry.owner_id for entry in audience}))
  return audience
