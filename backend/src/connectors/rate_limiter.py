"""
Token bucket rate limiter for outbound ERP calls.

The bucket holds up to `capacity` tokens (requests per minute) and refills
continuously at capacity/60000 tokens per millisecond. acquire() computes the
exact time until a token is available and sleeps once, then debits one token.

State is process-local and not persisted. get_rate_limiter() returns the
instance shared by every ERP client in the process.
"""

import logging
import threading
import time
from functools import lru_cache
from typing import Callable

from observability.metrics import erp_rate_limit_wait_seconds


logger = logging.getLogger(__name__)


class TokenBucket:
    """
    Continuous-refill token bucket.

    Args:
        capacity_per_minute: Maximum requests per minute (bucket capacity)
        clock: Monotonic clock returning seconds (injectable for tests)
        sleep: Sleep function taking seconds (injectable for tests)

    Example:
        bucket = TokenBucket(30)
        bucket.acquire()  # blocks until a token is available
    """

    def __init__(
        self,
        capacity_per_minute: int,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ):
        if capacity_per_minute <= 0:
            raise ValueError("capacity_per_minute must be positive")
        self.capacity = float(capacity_per_minute)
        # tokens per millisecond
        self.refill_rate = self.capacity / 60000.0
        self._clock = clock
        self._sleep = sleep
        self._tokens = self.capacity
        self._last_refill = clock()
        self._lock = threading.Lock()

    def _refill(self) -> None:
        now = self._clock()
        elapsed_ms = (now - self._last_refill) * 1000.0
        if elapsed_ms > 0:
            self._tokens = min(self.capacity, self._tokens + elapsed_ms * self.refill_rate)
        self._last_refill = now

    @property
    def tokens(self) -> float:
        with self._lock:
            self._refill()
            return self._tokens

    def acquire(self) -> float:
        """
        Take one token, sleeping until one is available.

        The lock is held while sleeping so concurrent callers queue up
        behind each other instead of all waking for the same token.

        Returns:
            Seconds spent waiting
        """
        with self._lock:
            self._refill()
            waited = 0.0
            if self._tokens < 1.0:
                wait_seconds = (1.0 - self._tokens) / self.refill_rate / 1000.0
                logger.debug(f"Rate limit reached, waiting {wait_seconds:.2f}s for a token")
                self._sleep(wait_seconds)
                waited = wait_seconds
                self._refill()
                # Guard against clocks that advance slightly less than requested
                self._tokens = max(self._tokens, 1.0)
            self._tokens -= 1.0

        if waited:
            erp_rate_limit_wait_seconds.observe(waited)
        return waited


@lru_cache()
def get_rate_limiter() -> TokenBucket:
    """Process-wide token bucket configured from settings."""
    from config import get_settings

    settings = get_settings()
    return TokenBucket(settings.ERP_MAX_REQUESTS_PER_MINUTE)
