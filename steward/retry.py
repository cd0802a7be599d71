#!/usr/bin/env python3
"""
Steward — Bounded Polling

One reusable wait primitive used by every waiting phase (pod-gone wait
during the grace period, storage quiescence, service-stop wait, node
readiness on restore).  Timeout semantics are uniform:

    * the probe runs immediately, so fast conditions cost no sleep;
    * the deadline is measured on a monotonic clock;
    * the final sleep is clipped to the remaining budget, so the loop
      returns within ``deadline + one probe`` even if the condition
      never holds.

The clock is injectable so timing properties can be tested without
real sleeps.

Usage::

    result = await poll_until(
        lambda: longhorn.attached_volumes(node),
        lambda vols: not vols,
        deadline_s=180,
        interval_s=5,
    )
    if not result.satisfied:
        ...

Author: Steward Project
Version: 0.1.0
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, Generic, Optional, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class Clock:
    """Monotonic time source plus async sleep."""

    def monotonic(self) -> float:
        return time.monotonic()

    async def sleep(self, seconds: float) -> None:
        await asyncio.sleep(seconds)


SYSTEM_CLOCK = Clock()


@dataclass
class PollResult(Generic[T]):
    """Outcome of :func:`poll_until`.

    Attributes:
        satisfied: The condition held before the deadline.
        value: Last probed value.
        attempts: Number of probe calls made.
        elapsed_s: Wall-clock seconds spent polling.
    """

    satisfied: bool
    value: T
    attempts: int
    elapsed_s: float


async def poll_until(
    probe: Callable[[], Awaitable[T]],
    done: Callable[[T], bool],
    *,
    deadline_s: float,
    interval_s: float,
    clock: Optional[Clock] = None,
    on_wait: Optional[Callable[[T, float], None]] = None,
) -> PollResult[T]:
    """Call *probe* until *done* accepts its value or the deadline expires.

    Args:
        probe: Async callable returning the observed value.
        done: Predicate applied to each observed value.
        deadline_s: Total time budget in seconds (``>= 0``).
        interval_s: Sleep between probes (``> 0``).
        clock: Time source; the system monotonic clock when ``None``.
        on_wait: Called with ``(value, remaining_s)`` before each sleep,
            typically to log progress.

    Returns:
        :class:`PollResult` with the last observed value.

    Raises:
        ValueError: On a negative deadline or non-positive interval.
    """
    if deadline_s < 0:
        raise ValueError(f"deadline_s must be >= 0, got {deadline_s}")
    if interval_s <= 0:
        raise ValueError(f"interval_s must be > 0, got {interval_s}")

    clk = clock or SYSTEM_CLOCK
    start = clk.monotonic()
    attempts = 0

    while True:
        value = await probe()
        attempts += 1
        elapsed = clk.monotonic() - start
        if done(value):
            return PollResult(True, value, attempts, elapsed)
        remaining = deadline_s - elapsed
        if remaining <= 0:
            logger.debug(
                "poll_until: deadline %.1fs reached after %d attempt(s)",
                deadline_s, attempts,
            )
            return PollResult(False, value, attempts, elapsed)
        if on_wait is not None:
            on_wait(value, remaining)
        await clk.sleep(min(interval_s, remaining))
