"""Retry wrapper for remote calls that may be rate limited."""

from __future__ import annotations

import asyncio
import logging
import os
import random
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TypeVar

from errors import is_transient_error
from models import RetryState

T = TypeVar("T")

LOGGER = logging.getLogger(__name__)

DEFAULT_MAX_RETRIES = 5
DEFAULT_BASE_DELAY_MS = 1000
DEFAULT_MAX_DELAY_MS = 60000


@dataclass(frozen=True, slots=True)
class RetryPolicy:
    """How many times to retry and how long to wait between attempts.

    Delays are in seconds. ``jitter`` is the (low, high) band of the random
    multiplier applied to each exponential step.
    """

    max_retries: int = DEFAULT_MAX_RETRIES
    base_delay: float = DEFAULT_BASE_DELAY_MS / 1000
    max_delay: float = DEFAULT_MAX_DELAY_MS / 1000
    jitter: tuple[float, float] = (0.5, 1.5)

    def __post_init__(self) -> None:
        if self.max_retries < 0:
            raise ValueError("max_retries must be >= 0")
        if self.base_delay < 0 or self.max_delay < 0:
            raise ValueError("delays must be >= 0")

    def delay_for(self, attempt: int, factor: float) -> float:
        return min(self.base_delay * (2**attempt) * factor, self.max_delay)


def policy_from_env() -> RetryPolicy:
    """Build a policy from RETRY_* environment variables."""
    return RetryPolicy(
        max_retries=int(os.getenv("RETRY_MAX_RETRIES", str(DEFAULT_MAX_RETRIES))),
        base_delay=int(os.getenv("RETRY_BASE_DELAY_MS", str(DEFAULT_BASE_DELAY_MS))) / 1000,
        max_delay=int(os.getenv("RETRY_MAX_DELAY_MS", str(DEFAULT_MAX_DELAY_MS))) / 1000,
    )


async def with_retry(
    operation: Callable[[], Awaitable[T]],
    policy: RetryPolicy | None = None,
    is_transient: Callable[[BaseException], bool] = is_transient_error,
    *,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    rand: Callable[[float, float], float] = random.uniform,
    label: str = "remote call",
) -> T:
    """Run ``operation`` and retry it on transient failures.

    At most ``policy.max_retries + 1`` attempts are made. Non-transient errors
    and the error of the final attempt propagate unchanged.

    Args:
        operation: Zero-argument coroutine factory; called once per attempt.
        policy: Retry limits. Defaults to ``RetryPolicy()``.
        is_transient: Classifier deciding whether an error is worth retrying.
        sleep: Awaitable sleep, replaceable in tests.
        rand: Source of the jitter multiplier, replaceable in tests.
        label: Short description used in retry warnings.
    """
    policy = policy or RetryPolicy()
    state = RetryState(delay=0.0)

    while True:
        try:
            return await operation()
        except Exception as exc:
            state.last_error = exc
            if not is_transient(exc) or state.attempt >= policy.max_retries:
                raise

            low, high = policy.jitter
            # Never wait less than the previous attempt did.
            state.delay = max(state.delay, policy.delay_for(state.attempt, rand(low, high)))
            state.attempt += 1
            LOGGER.warning(
                "%s failed with a transient error (attempt %s/%s), retrying in %.1fs: %s",
                label,
                state.attempt,
                policy.max_retries,
                state.delay,
                exc,
            )
            await sleep(state.delay)
