import asyncio
from contextlib import asynccontextmanager

DEFAULT_MAX_CONCURRENCY = 10


class ConcurrencyLimiter:
    """Bounds the number of simultaneous outstanding network calls.

    The bound is local to the limiter instance, there is no process-wide throttling.
    """

    def __init__(self, max_concurrency: int = DEFAULT_MAX_CONCURRENCY):
        if max_concurrency < 1:
            raise ValueError("Max concurrency must be at least 1")
        self.max_concurrency = max_concurrency
        self._semaphore = asyncio.Semaphore(max_concurrency)
        self._in_flight = 0

    @property
    def in_flight(self) -> int:
        return self._in_flight

    @asynccontextmanager
    async def acquire_one(self):
        """Wait for a free slot and hold it for the duration of the block.

        The slot is released on success, error and cancellation.
        """
        async with self._semaphore:
            self._in_flight += 1
            try:
                yield
            finally:
                self._in_flight -= 1
