"""Token bucket guarding outbound calls to AI providers."""

from __future__ import annotations

import threading
import time
from typing import Callable

from docrag.config import Settings
from docrag.metrics.observability import get_logger

LOGGER = get_logger("ratelimit")


class TokenBucket:
    """Non-blocking token bucket.

    The bucket starts full. Each :meth:`allow` call refills
    ``elapsed_seconds * refill_rate`` tokens, capped at ``max_tokens``, then
    consumes one token if a whole token is available. Denied callers are
    expected to fail fast rather than wait.
    """

    def __init__(
        self,
        max_tokens: int,
        refill_rate: float,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if max_tokens <= 0:
            raise ValueError("max_tokens must be positive")
        if refill_rate < 0:
            raise ValueError("refill_rate must not be negative")
        self._max_tokens = float(max_tokens)
        self._refill_rate = float(refill_rate)
        self._clock = clock
        self._tokens = float(max_tokens)
        self._last_refill = clock()
        self._lock = threading.Lock()

    @classmethod
    def from_settings(cls, settings: Settings) -> "TokenBucket":
        bucket = cls(settings.rate_limit_max_tokens, settings.rate_limit_refill_rate)
        LOGGER.info(
            "ratelimit.initialized",
            max_tokens=settings.rate_limit_max_tokens,
            refill_rate=settings.rate_limit_refill_rate,
        )
        return bucket

    @property
    def max_tokens(self) -> int:
        return int(self._max_tokens)

    @property
    def tokens(self) -> float:
        with self._lock:
            return self._tokens

    def allow(self) -> bool:
        with self._lock:
            now = self._clock()
            elapsed = now - self._last_refill
            # A clock that went backwards adds nothing.
            if elapsed > 0:
                self._tokens = min(self._max_tokens, self._tokens + elapsed * self._refill_rate)
            self._last_refill = now
            if self._tokens >= 1.0:
                self._tokens -= 1.0
                return True
            return False


__all__ = ["TokenBucket"]
