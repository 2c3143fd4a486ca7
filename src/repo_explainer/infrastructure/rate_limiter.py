"""Two-bucket token limiter placed in front of every LLM request.

The minute bucket holds ``requests_per_minute`` tokens and the day bucket
``requests_per_day``.  A token spent at time *t* comes back at exactly
*t + window*, so a burst that empties a bucket sees it refill in full one
window later and no rolling window ever admits more than the capacity.
A request needs one token from *both* buckets.
"""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field

from repo_explainer.domain.deadline import current_deadline
from repo_explainer.domain.exceptions import RateLimitDeadlineError

logger = logging.getLogger(__name__)

MINUTE = 60.0
DAY = 24 * 60 * 60.0


@dataclass(slots=True)
class _Bucket:
    capacity: int
    window: float
    spent: deque[float] = field(default_factory=deque)

    def expire(self, now: float) -> None:
        while self.spent and now - self.spent[0] >= self.window:
            self.spent.popleft()

    @property
    def tokens(self) -> int:
        return self.capacity - len(self.spent)

    def residual(self, now: float) -> float:
        """Seconds until this bucket can hand out a token again."""
        if self.tokens > 0:
            return 0.0
        return max(0.0, self.spent[0] + self.window - now)


@dataclass(frozen=True, slots=True)
class RateLimiterStats:
    minute_tokens: int
    day_tokens: int


class RateLimiter:
    """Async token gate shared by all workers of all running pipelines.

    Parameters
    ----------
    requests_per_minute, requests_per_day:
        Bucket capacities.
    clock:
        Monotonic time source in seconds. Defaults to the running loop's
        clock, the same one ``asyncio.timeout`` deadlines are expressed in.
    sleep:
        Coroutine used to wait; injectable for tests.
    """

    def __init__(
        self,
        requests_per_minute: int,
        requests_per_day: int,
        *,
        clock: Callable[[], float] | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        if requests_per_minute <= 0 or requests_per_day <= 0:
            raise ValueError("rate limits must be positive")
        self._clock = clock or (lambda: asyncio.get_running_loop().time())
        self._sleep = sleep
        self._minute = _Bucket(requests_per_minute, MINUTE)
        self._day = _Bucket(requests_per_day, DAY)
        # Always taken minute first, then day.
        self._minute_lock = asyncio.Lock()
        self._day_lock = asyncio.Lock()

    async def acquire(self) -> None:
        """Block until both buckets have a token, then debit one from each.

        Raises ``RateLimitDeadlineError`` without waiting when the required
        wait would pass the pipeline deadline.  Cancellation while waiting
        propagates and debits nothing.
        """
        while True:
            async with self._minute_lock:
                async with self._day_lock:
                    now = self._clock()
                    self._minute.expire(now)
                    self._day.expire(now)
                    if self._minute.tokens > 0 and self._day.tokens > 0:
                        self._minute.spent.append(now)
                        self._day.spent.append(now)
                        return
                    wait = max(self._minute.residual(now), self._day.residual(now))

            deadline = current_deadline()
            if deadline is not None and now + wait > deadline:
                raise RateLimitDeadlineError(
                    f"Rate limit wait of {wait:.1f}s would exceed the pipeline deadline"
                )
            logger.debug("Rate limit reached; waiting %.1fs", wait)
            await self._sleep(wait)

    def stats(self) -> RateLimiterStats:
        """Tokens currently left in each bucket."""
        return RateLimiterStats(self._minute.tokens, self._day.tokens)
