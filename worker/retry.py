"""Bounded retry policy shared by health polling and first-call checks."""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Awaitable, Callable

logger = logging.getLogger("llamahost.retry")

Probe = Callable[[], Awaitable[bool]]
Sleep = Callable[[float], Awaitable[None]]
Clock = Callable[[], float]


def linear_backoff(attempt: int) -> float:
    """Sleep ``attempt`` seconds before the attempt (0, 1, 2, ...)."""
    return float(attempt)


def fixed_interval(interval: float) -> Callable[[int], float]:
    """Run the first attempt immediately, then wait ``interval`` between attempts."""

    def _backoff(attempt: int) -> float:
        return 0.0 if attempt == 0 else interval

    return _backoff


@dataclass(frozen=True)
class RetryPolicy:
    """Bounded by ``max_attempts``, ``timeout`` seconds, or both.

    ``backoff(i)`` is the delay awaited before attempt ``i`` (zero based).
    At least one attempt always runs.
    """

    max_attempts: int | None = None
    backoff: Callable[[int], float] = field(default=linear_backoff)
    timeout: float | None = None

    def __post_init__(self) -> None:
        if self.max_attempts is None and self.timeout is None:
            raise ValueError("RetryPolicy needs max_attempts or timeout")
        if self.max_attempts is not None and self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")

    async def run(
        self,
        probe: Probe,
        *,
        sleep: Sleep | None = None,
        clock: Clock | None = None,
    ) -> bool:
        """Call ``probe`` until it returns True or the policy is exhausted."""
        sleep = sleep or asyncio.sleep
        clock = clock or time.monotonic
        started = clock()
        attempt = 0
        while True:
            delay = self.backoff(attempt)
            if delay > 0:
                await sleep(delay)
            if await probe():
                return True
            attempt += 1
            if self.max_attempts is not None and attempt >= self.max_attempts:
                logger.debug("Retry policy exhausted after %s attempts", attempt)
                return False
            if self.timeout is not None and clock() - started >= self.timeout:
                logger.debug("Retry policy timed out after %s attempts", attempt)
                return False


__all__ = ["RetryPolicy", "fixed_interval", "linear_backoff"]
