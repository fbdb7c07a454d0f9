import asyncio
import time


class RateLimiter:
    """Token bucket: capacity == rate, refilled continuously at `rate` tokens per second.

    `acquire()` never drops a caller; it sleeps exactly long enough for one token.
    The lock makes waiters queue in arrival order and keeps the refill/consume
    step atomic across coroutines.
    """

    def __init__(self, rate: float, clock=time.monotonic, sleep=asyncio.sleep):
        if rate <= 0:
            raise ValueError("rate must be positive")
        self.rate = float(rate)
        self.capacity = float(rate)
        self._tokens = float(rate)
        self._clock = clock
        self._sleep = sleep
        self._last_refill = clock()
        self._lock = asyncio.Lock()

    def _refill(self):
        now = self._clock()
        elapsed = now - self._last_refill
        if elapsed > 0:
            self._tokens = min(self.capacity, self._tokens + elapsed * self.rate)
        self._last_refill = now

    @property
    def available_tokens(self) -> float:
        self._refill()
        return self._tokens

    async def acquire(self):
        async with self._lock:
            self._refill()
            if self._tokens < 1:
                wait = (1 - self._tokens) / self.rate
                await self._sleep(wait)
                self._refill()
                # sleep() may return marginally early on some clocks
                self._tokens = max(self._tokens, 1.0)
            self._tokens -= 1
