"""Bounded retry and polling loops.

Every blocking wait in the control logic goes through one of these helpers,
so each one ends in a value or ``None`` after a known budget and never hangs.
"""

from __future__ import annotations

import asyncio
import random
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TypeVar

from loguru import logger

from kvquorum.datastructures.type_aliases import DurationSeconds, Timestamp

from .errors import MonitorCommandError

T = TypeVar("T")

TRANSIENT_ERRORS: tuple[type[BaseException], ...] = (
    OSError,
    TimeoutError,
    MonitorCommandError,
)


@dataclass(frozen=True, slots=True)
class RetryPolicy:
    """Exponential backoff with jitter."""

    max_attempts: int = 10
    initial_delay_seconds: DurationSeconds = 1.0
    max_delay_seconds: DurationSeconds = 10.0
    backoff_multiplier: float = 2.0
    jitter_factor: float = 0.1

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.initial_delay_seconds < 0 or self.max_delay_seconds < 0:
            raise ValueError("Retry delays cannot be negative")
        if not (0.0 <= self.jitter_factor <= 1.0):
            raise ValueError("jitter_factor must be between 0.0 and 1.0")

    def delay_for(self, attempt: int) -> DurationSeconds:
        """Delay before retrying after ``attempt`` (0-based) failed."""
        delay = min(
            self.initial_delay_seconds * (self.backoff_multiplier**attempt),
            self.max_delay_seconds,
        )
        if delay and self.jitter_factor:
            delay += random.uniform(0.0, delay * self.jitter_factor)
        return delay


async def retry_until(
    attempt_fn: Callable[[], Awaitable[T | None]],
    policy: RetryPolicy,
    *,
    description: str,
    retry_on: tuple[type[BaseException], ...] = TRANSIENT_ERRORS,
) -> T | None:
    """Call ``attempt_fn`` until it returns a value or the budget is spent.

    Exceptions listed in ``retry_on`` count as a failed attempt. Returns
    ``None`` once ``policy.max_attempts`` attempts have failed.
    """
    for attempt in range(policy.max_attempts):
        try:
            result = await attempt_fn()
        except retry_on as exc:
            logger.debug(
                "{} failed (attempt {}/{}): {}",
                description,
                attempt + 1,
                policy.max_attempts,
                exc,
            )
            result = None
        if result is not None:
            return result
        if attempt + 1 < policy.max_attempts:
            await asyncio.sleep(policy.delay_for(attempt))
    return None


async def poll_until(
    check_fn: Callable[[], Awaitable[T | None]],
    *,
    timeout_seconds: DurationSeconds,
    interval_seconds: DurationSeconds,
    clock: Callable[[], Timestamp] = time.monotonic,
    retry_on: tuple[type[BaseException], ...] = TRANSIENT_ERRORS,
) -> T | None:
    """Poll ``check_fn`` at a fixed interval until it yields a value.

    Returns ``None`` when ``timeout_seconds`` elapses. Each check and the
    final sleep are clipped to the deadline so the loop never overruns it.
    """
    deadline = clock() + timeout_seconds
    while True:
        try:
            result = await asyncio.wait_for(
                check_fn(), timeout=max(deadline - clock(), 0.001)
            )
        except retry_on as exc:
            logger.debug("Poll check failed: {}", exc)
            result = None
        if result is not None:
            return result
        remaining = deadline - clock()
        if remaining <= 0:
            return None
        await asyncio.sleep(min(interval_seconds, remaining))
