"""Bounded-concurrency mapping of an async transform over a list of items."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Sequence
from typing import Any, TypeVar

from models import TransformOutcome

T = TypeVar("T")

LOGGER = logging.getLogger(__name__)


class ConcurrencyLimiter:
    """Caps the number of operations running at once and records the peak."""

    def __init__(self, max_in_flight: int) -> None:
        if max_in_flight < 1:
            raise ValueError("max_in_flight must be >= 1")
        self.max_in_flight = max_in_flight
        self.in_flight = 0
        self.peak = 0
        self._semaphore = asyncio.Semaphore(max_in_flight)

    async def __aenter__(self) -> ConcurrencyLimiter:
        await self._semaphore.acquire()
        self.in_flight += 1
        self.peak = max(self.peak, self.in_flight)
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        self.in_flight -= 1
        self._semaphore.release()


def _default_item_id(item: Any) -> str:
    return str(item)


async def map_bounded(
    items: Sequence[T],
    transform: Callable[[T], Awaitable[TransformOutcome | Any]],
    limit: int,
    *,
    delay_between: float = 0.0,
    item_id: Callable[[T], str] = _default_item_id,
    on_complete: Callable[[int, int, TransformOutcome], None] | None = None,
    limiter: ConcurrencyLimiter | None = None,
) -> list[TransformOutcome]:
    """Apply ``transform`` to every item with at most ``limit`` in flight.

    ``limit`` workers pull items in input order; as soon as one finishes it
    starts the next queued item. Results come back in input order. An
    exception raised by ``transform`` becomes a failure outcome for that item
    and never cancels the others. A transform returning something other than
    a ``TransformOutcome`` is wrapped as a success with that artifact.

    Args:
        items: Items to process.
        transform: Coroutine function applied to each item.
        limit: Maximum number of simultaneous transforms (K >= 1).
        delay_between: Seconds each worker waits before starting its next
            item; with ``limit=1`` this spaces out calls to a shared API.
        item_id: Derives the outcome identifier from an item.
        on_complete: Called with (completed count, total, outcome).
        limiter: Optional pre-built limiter, mainly for inspecting the peak.
    """
    limiter = limiter or ConcurrencyLimiter(limit)
    total = len(items)
    outcomes: list[TransformOutcome | None] = [None] * total
    next_index = 0
    completed = 0

    async def run_one(index: int) -> TransformOutcome:
        item = items[index]
        ident = item_id(item)
        async with limiter:
            try:
                result = await transform(item)
            except Exception as exc:
                LOGGER.warning("Failed processing %s: %s", ident, exc)
                return TransformOutcome.failure(ident, str(exc) or type(exc).__name__)
        if isinstance(result, TransformOutcome):
            return result
        return TransformOutcome.success(ident, result)

    async def worker() -> None:
        nonlocal next_index, completed
        first = True
        while next_index < total:
            index = next_index
            next_index += 1
            if delay_between and not first:
                await asyncio.sleep(delay_between)
            first = False
            outcome = await run_one(index)
            outcomes[index] = outcome
            completed += 1
            if on_complete is not None:
                on_complete(completed, total, outcome)

    workers = [asyncio.create_task(worker()) for _ in range(min(limit, total))]
    if workers:
        await asyncio.gather(*workers)

    return [outcome for outcome in outcomes if outcome is not None]
