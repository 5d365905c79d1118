"""Per-key token-bucket admission control.

Buckets live in a mapping owned by the limiter instance, so separate instances
never share state. State is per process: with several workers each one limits
independently and the effective global rate is approximate.
"""

import threading
import time
from collections.abc import Callable, MutableMapping
from dataclasses import dataclass

from capgate.exceptions import RateLimited
from capgate.logging_config import get_logger

logger = get_logger(__name__)


@dataclass
class Bucket:
    tokens: float
    last_refill: float


class RateLimiter:
    def __init__(
        self,
        rps: int = 10,
        burst: int = 50,
        *,
        buckets: MutableMapping[str, Bucket] | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.rps = rps
        self.burst = burst
        self._buckets: MutableMapping[str, Bucket] = buckets if buckets is not None else {}
        self._clock = clock
        self._lock = threading.Lock()

    @property
    def enabled(self) -> bool:
        return self.rps > 0 and self.burst > 0

    def allow(self, key: str, limit: int | None = None, window: float | None = None) -> bool:
        """
        Consume one token for ``key`` if available.

        ``limit`` and ``window`` override the refill rate for this call only
        (``limit`` tokens per ``window`` seconds).
        """
        limit = self.rps if limit is None else limit
        window = 1 if window is None else window

        if limit <= 0 or self.burst <= 0:
            return True

        with self._lock:
            now = self._clock()
            bucket = self._buckets.get(key)
            if bucket is None:
                bucket = Bucket(tokens=float(self.burst), last_refill=now)
                self._buckets[key] = bucket

            elapsed = max(0.0, now - bucket.last_refill)
            bucket.tokens = min(float(self.burst), bucket.tokens + elapsed * limit / window)
            bucket.last_refill = now

            if bucket.tokens >= 1:
                bucket.tokens -= 1
                return True

            return False

    def reset(self, key: str) -> None:
        with self._lock:
            self._buckets.pop(key, None)

    def cleanup(self, max_age: float = 3600) -> int:
        """Drop buckets untouched for more than ``max_age`` seconds. Returns count."""
        with self._lock:
            now = self._clock()
            stale = [k for k, b in self._buckets.items() if now - b.last_refill > max_age]
            for key in stale:
                del self._buckets[key]
            return len(stale)

    def get_tokens(self, key: str) -> float:
        """Projected token count for ``key`` without consuming anything."""
        with self._lock:
            bucket = self._buckets.get(key)
            if bucket is None:
                return float(self.burst)
            elapsed = max(0.0, self._clock() - bucket.last_refill)
            return min(float(self.burst), bucket.tokens + elapsed * self.rps)

    def set_limits(self, rps: int, burst: int) -> None:
        with self._lock:
            self.rps = rps
            self.burst = burst

    def get_limits(self) -> dict:
        return {"rps": self.rps, "burst": self.burst}

    def bucket_count(self) -> int:
        return len(self._buckets)


def enforce_rate_limit(limiter: RateLimiter | None, identifier: str | None) -> None:
    """Raise RateLimited if ``identifier`` is out of tokens. No identifier, no check."""
    if limiter is None or identifier is None:
        return
    if not limiter.allow(identifier):
        logger.warning("rate_limited")
        raise RateLimited(f"Rate limit exceeded for: {identifier}")
