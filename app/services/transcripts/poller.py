"""
Job Poller

Polls an asynchronous AI job inside the request's wall-clock budget. Delay
grows as `min(delay * multiplier, max_delay)`. Once less than the safety
margin is left, the poller gives up and reports "processing" so the caller
can resume later with the same handle.
"""

import asyncio
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, Literal, Optional

from app.core.errors import TransientUpstreamError
from app.core.logging import get_logger
from app.schemas.transcript import AIJobStatus

logger = get_logger(__name__)

PollState = Literal["done", "error", "processing"]


@dataclass(frozen=True)
class PollOutcome:
    state: PollState
    job: Optional[AIJobStatus] = None
    polls: int = 0


class JobPoller:
    def __init__(
        self,
        budget_seconds: float = 25.0,
        safety_margin_seconds: float = 5.0,
        initial_delay_seconds: float = 1.0,
        max_delay_seconds: float = 5.0,
        multiplier: float = 2.0,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.budget_seconds = budget_seconds
        self.safety_margin_seconds = safety_margin_seconds
        self.initial_delay_seconds = initial_delay_seconds
        self.max_delay_seconds = max_delay_seconds
        self.multiplier = multiplier
        self.clock = clock
        self.sleep = sleep

    def next_delay(self, delay: float) -> float:
        return min(delay * self.multiplier, self.max_delay_seconds)

    async def poll(
        self,
        handle: str,
        fetch_status: Callable[[str], Awaitable[AIJobStatus]],
        started_at: Optional[float] = None,
    ) -> PollOutcome:
        """
        Poll `handle` until the job finishes or the budget runs low.

        `started_at` is the request's start on this poller's clock, so time
        already spent before polling counts against the budget.
        """
        start = started_at if started_at is not None else self.clock()
        deadline = start + self.budget_seconds - self.safety_margin_seconds
        delay = self.initial_delay_seconds
        polls = 0

        while True:
            # Never sleep past the point where we must hand control back
            if self.clock() + delay > deadline:
                logger.info(f"Job {handle[-12:]} still running after {polls} polls, returning processing")
                return PollOutcome(state="processing", polls=polls)

            await self.sleep(delay)
            polls += 1

            try:
                job = await fetch_status(handle)
            except TransientUpstreamError as e:
                logger.warning(f"Poll {polls} of job {handle[-12:]} failed: {e}")
                delay = self.next_delay(delay)
                continue

            if job.finished:
                if job.status == "error":
                    logger.error(f"Job {handle[-12:]} failed: {job.error}")
                return PollOutcome(state=job.status, job=job, polls=polls)

            delay = self.next_delay(delay)
