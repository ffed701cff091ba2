"""Windowed, bounded-concurrency fan-out of one message to many tokens."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass, field

from pushworker.dispatch.delivery import DeliveryClient, PushMessage
from pushworker.dispatch.models import MAX_SEND_ERRORS, DeliveryInvalidToken, DeliveryOk, DeliveryOutcome, DeviceToken
from pushworker.dispatch.progress import cap_errors

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DispatchConfig:
  """Tuning for one dispatch call.

  `concurrency_limit` is the window size, `start_offset` indexes into the
  resolved token sequence, and `report_every` is the minimum progress
  reporting cadence in processed tokens.
  """

  concurrency_limit: int = 5
  start_offset: int = 0
  report_every: int = 5

  def __post_init__(self) -> None:
    if self.concurrency_limit < 1:
      raise ValueError("concurrency_limit must be at least 1.")
    if self.start_offset < 0:
      raise ValueError("start_offset must not be negative.")
    if self.report_every < 1:
      raise ValueError("report_every must be at least 1.")


@dataclass(frozen=True)
class DispatchCounts:
  success_count: int = 0
  failure_count: int = 0
  errors: tuple[str, ...] = ()


@dataclass(frozen=True)
class DispatchSnapshot:
  """Cumulative progress handed to the progress callback."""

  processed: int
  total: int
  success_count: int
  failure_count: int
  errors: list[str]


@dataclass
class DispatchResult:
  processed: int
  total: int
  success_count: int
  failure_count: int
  errors: list[str] = field(default_factory=list)
  invalid_tokens: list[str] = field(default_factory=list)
  skipped_count: int = 0
  cancelled: bool = False


ProgressCallback = Callable[[DispatchSnapshot], Awaitable[None]]


class BatchDispatcher:
  """Streams tokens through the delivery client one window at a time."""

  def __init__(self, delivery: DeliveryClient) -> None:
    self._delivery = delivery

  async def dispatch(
    self,
    tokens: Sequence[DeviceToken],
    message: PushMessage,
    config: DispatchConfig,
    on_progress: ProgressCallback | None = None,
    initial_counts: DispatchCounts | None = None,
    cancel_event: asyncio.Event | None = None,
  ) -> DispatchResult:
    """Send `message` to `tokens[config.start_offset:]`.

    Each window is awaited as a whole before the next starts, and the
    progress callback is awaited before advancing, so persisted progress
    never runs ahead of completed sends. Per-token failures never abort.
    """
    counts = initial_counts or DispatchCounts()
    total = len(tokens)
    processed = min(config.start_offset, total)
    success_count = counts.success_count
    failure_count = counts.failure_count
    errors = list(counts.errors)
    invalid_tokens: list[str] = []
    seen_invalid: set[str] = set()
    skipped_count = 0
    last_reported = processed
    cancelled = False

    async def report() -> None:
      nonlocal last_reported
      if on_progress is None or processed == last_reported:
        return
      await on_progress(DispatchSnapshot(processed=processed, total=total, success_count=success_count, failure_count=failure_count, errors=list(errors)))
      last_reported = processed

    if processed:
      logger.info("Resuming dispatch at offset %d of %d", processed, total)

    while processed < total:
      if cancel_event is not None and cancel_event.is_set():
        cancelled = True
        logger.info("Dispatch cancelled at offset %d of %d", processed, total)
        break

      window = tokens[processed : processed + config.concurrency_limit]
      outcomes: list[DeliveryOutcome] = await asyncio.gather(*(self._delivery.deliver(entry.token, message) for entry in window))

      for outcome in outcomes:
        if isinstance(outcome, DeliveryOk):
          success_count += 1
          if outcome.skipped:
            skipped_count += 1
          continue
        failure_count += 1
        errors.append(outcome.describe())
        if isinstance(outcome, DeliveryInvalidToken) and outcome.token not in seen_invalid:
          seen_invalid.add(outcome.token)
          invalid_tokens.append(outcome.token)
      errors = cap_errors(errors, MAX_SEND_ERRORS)
      processed += len(window)

      crossed_boundary = processed // config.report_every > last_reported // config.report_every
      if crossed_boundary or processed - last_reported >= config.report_every or processed == total:
        await report()

    # Flush anything unreported so a resumed run starts where this one stopped.
    await report()

    logger.info("Dispatch finished processed=%d/%d success=%d failure=%d invalid=%d skipped=%d cancelled=%s", processed, total, success_count, failure_count, len(invalid_tokens), skipped_count, cancelled)
    return DispatchResult(
      processed=processed,
      total=total,
      success_count=success_count,
      failure_count=failure_count,
      errors=errors,
      invalid_tokens=invalid_tokens,
      skipped_count=skipped_count,
      cancelled=cancelled,
    )
