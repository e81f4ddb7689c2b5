"""Attempt budgets and delays for the GitHub polling loops."""

import asyncio
import random
from dataclasses import dataclass
from typing import Awaitable, Callable

Sleep = Callable[[float], Awaitable[None]]


@dataclass(frozen=True)
class PollPolicy:
    """
    max_attempts calls, separated by `delay` seconds.

    backoff_factor > 1 grows the delay geometrically; jitter adds up to
    that many random seconds to each wait. The defaults give a fixed delay.
    """

    max_attempts: int
    delay: float
    backoff_factor: float = 1.0
    jitter: float = 0.0

    def delay_after(self, attempt: int) -> float:
        """Seconds to wait after the zero-based `attempt` before the next one."""
        wait = self.delay * (self.backoff_factor ** attempt)
        if self.jitter:
            wait += random.uniform(0, self.jitter)
        return wait


async def wait_between(policy: PollPolicy, attempt: int, sleep: Sleep = asyncio.sleep) -> None:
    """Sleep after `attempt` unless it was the last one."""
    if attempt < policy.max_attempts - 1:
        await sleep(policy.delay_after(attempt))
