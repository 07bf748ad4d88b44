"""
Per-request retry budget.

One instance is created per ``answer()`` call and threaded through
generation retries, transient execution retries and corrections, so the
total number of extra attempts for a request has a hard ceiling.
"""

import asyncio
from typing import Awaitable, Callable, List

from ..utils.logging import get_module_logger
from ..utils.tracing import current_trace_id

logger = get_module_logger()

SleepFn = Callable[[float], Awaitable[None]]


class RetryBudget:
    """
    Bounded attempt counter with linearly increasing delay.

    Attempt N waits ``base_delay_seconds * N`` before proceeding.

    Usage:
        budget = RetryBudget(max_attempts=3, base_delay_seconds=1.0)
        while failing:
            if not await budget.consume("syntax error"):
                break
            ...retry...
    """

    def __init__(
        self,
        max_attempts: int,
        base_delay_seconds: float,
        sleep: SleepFn = asyncio.sleep,
    ):
        self.max_attempts = max(0, max_attempts)
        self.base_delay_seconds = base_delay_seconds
        self._sleep = sleep
        self._used = 0
        self.reasons: List[str] = []

    @property
    def used(self) -> int:
        return self._used

    @property
    def remaining(self) -> int:
        return self.max_attempts - self._used

    @property
    def exhausted(self) -> bool:
        return self._used >= self.max_attempts

    async def consume(self, reason: str) -> bool:
        """
        Take one attempt from the budget and wait the attempt's delay.

        Returns:
            False when the budget is already spent (nothing is consumed),
            True otherwise.
        """
        if self.exhausted:
            logger.info(
                "Retry budget exhausted",
                reason=reason,
                max_attempts=self.max_attempts,
                trace_id=current_trace_id(),
            )
            return False

        self._used += 1
        self.reasons.append(reason)
        delay = self.base_delay_seconds * self._used

        logger.info(
            "Retry budget consumed",
            reason=reason,
            attempt=self._used,
            max_attempts=self.max_attempts,
            delay_seconds=delay,
            trace_id=current_trace_id(),
        )

        if delay > 0:
            await self._sleep(delay)
        return True
