"""Per-source outbound request throttle."""

import asyncio
import logging
import time
from collections import deque
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

from syncengine.config import get_settings
from syncengine.models import SyncSource

logger = logging.getLogger(__name__)
settings = get_settings()

T = TypeVar("T")


class RateLimiter:
    """
    Serializes and paces calls to one external source.

    Calls queue up FIFO and a single drain task runs them one at a time.
    Starts are spaced 1/requests_per_second apart once the burst allowance
    is used; the allowance refills at the same rate while the limiter idles.
    With burst_size=1 the wait before a call is exactly
    max(0, interval - (now - last_execution)).

    State is per process: two processes syncing the same source are not
    paced against each other (the trigger lease guards against that).
    """

    def __init__(
        self,
        requests_per_second: float,
        burst_size: int = 1,
        name: str = "default",
        clock: Callable[[], float] = time.monotonic,
    ):
        if requests_per_second <= 0:
            raise ValueError("requests_per_second must be positive")
        if burst_size < 1:
            raise ValueError("burst_size must be at least 1")

        self.requests_per_second = requests_per_second
        self.burst_size = burst_size
        self.name = name
        self._clock = clock

        self._queue: deque[tuple[Callable[[], Awaitable[Any]], asyncio.Future]] = deque()
        self._drain_task: asyncio.Task | None = None
        self._tokens = float(burst_size)
        self.last_execution_time: float | None = None

    @property
    def interval(self) -> float:
        """Minimum spacing between call starts, in seconds."""
        return 1.0 / self.requests_per_second

    @property
    def processing(self) -> bool:
        return self._drain_task is not None and not self._drain_task.done()

    @property
    def pending(self) -> int:
        return len(self._queue)

    async def execute(self, fn: Callable[[], Awaitable[T]]) -> T:
        """Queue a unit of work and wait for its result."""
        future: asyncio.Future = asyncio.get_running_loop().create_future()
        self._queue.append((fn, future))

        if not self.processing:
            self._drain_task = asyncio.create_task(self._drain())

        return await future

    def _delay_before_next(self) -> float:
        """Seconds to wait before the head of the queue may start."""
        if self.last_execution_time is None:
            return 0.0

        elapsed = self._clock() - self.last_execution_time
        available = min(
            float(self.burst_size),
            self._tokens + elapsed * self.requests_per_second,
        )
        if available >= 1.0:
            return 0.0
        return (1.0 - available) / self.requests_per_second

    def _consume(self) -> None:
        now = self._clock()
        if self.last_execution_time is None:
            available = float(self.burst_size)
        else:
            elapsed = now - self.last_execution_time
            available = min(
                float(self.burst_size),
                self._tokens + elapsed * self.requests_per_second,
            )
        self._tokens = max(0.0, available - 1.0)
        self.last_execution_time = now

    async def _drain(self) -> None:
        while self._queue:
            fn, future = self._queue.popleft()
            if future.cancelled():
                continue

            delay = self._delay_before_next()
            if delay > 0:
                logger.debug(f"Rate limiter {self.name}: waiting {delay:.3f}s")
                await asyncio.sleep(delay)

            self._consume()
            try:
                result = await fn()
            except Exception as e:
                if not future.done():
                    future.set_exception(e)
            else:
                if not future.done():
                    future.set_result(result)


def _build_limiters() -> dict[SyncSource, RateLimiter]:
    primary = RateLimiter(
        settings.payments_primary_rps,
        settings.payments_primary_burst,
        name=SyncSource.PAYMENTS_PRIMARY,
    )
    return {
        SyncSource.PAYMENTS_PRIMARY: primary,
        # Invoices are served by the same provider account.
        SyncSource.INVOICES: primary,
        SyncSource.PAYMENTS_SECONDARY: RateLimiter(
            settings.payments_secondary_rps,
            settings.payments_secondary_burst,
            name=SyncSource.PAYMENTS_SECONDARY,
        ),
        SyncSource.CRM: RateLimiter(settings.crm_rps, settings.crm_burst, name=SyncSource.CRM),
        SyncSource.MESSAGING: RateLimiter(
            settings.messaging_rps, settings.messaging_burst, name=SyncSource.MESSAGING
        ),
    }


# One limiter per source for the lifetime of the process
RATE_LIMITERS: dict[SyncSource, RateLimiter] = _build_limiters()


def get_rate_limiter(source: SyncSource) -> RateLimiter:
    """Get the shared limiter for a source."""
    return RATE_LIMITERS[source]
