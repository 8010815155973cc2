from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ModelRateLimit:
    tokens_per_minute: int


class TokenRateLimiter:
    """Token bucket refilled continuously at ``tokens_per_minute / 60`` per second.

    The reservation is made under the lock; the caller sleeps after releasing it
    so concurrent extractions never block each other on a held lock.
    """

    def __init__(
        self,
        limit: ModelRateLimit,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.limit = limit
        self.allowance = float(limit.tokens_per_minute)
        self._clock = clock
        self._sleep = sleep
        self.last_check = clock()
        self._lock = threading.Lock()

    def reserve(self, tokens: int) -> float:
        """Deduct ``tokens`` and return how long the caller must wait first."""
        tpm = self.limit.tokens_per_minute
        if tpm <= 0:
            return 0.0
        rate = tpm / 60.0
        with self._lock:
            now = self._clock()
            elapsed = now - self.last_check
            self.last_check = now
            self.allowance = min(float(tpm), self.allowance + elapsed * rate)
            self.allowance -= tokens
            if self.allowance >= 0:
                return 0.0
            return -self.allowance / rate

    def wait_for(self, tokens: int) -> float:
        wait_seconds = self.reserve(tokens)
        if wait_seconds > 0:
            logger.info(
                "[rate-limit] sleeping %.1fs for ~%d tpm", wait_seconds, self.limit.tokens_per_minute
            )
            self._sleep(wait_seconds)
        return wait_seconds


class RateLimiterRegistry:
    def __init__(self) -> None:
        self._limits: Dict[str, ModelRateLimit] = {}
        self._limiters: Dict[str, TokenRateLimiter] = {}
        self._lock = threading.Lock()

    def register(self, model: str, tokens_per_minute: int) -> None:
        with self._lock:
            self._limits[model] = ModelRateLimit(tokens_per_minute=tokens_per_minute)
            self._limiters.pop(model, None)

    def get(self, model: str) -> Optional[TokenRateLimiter]:
        with self._lock:
            limit = self._limits.get(model)
            if not limit:
                return None
            limiter = self._limiters.get(model)
            if not limiter:
                limiter = TokenRateLimiter(limit)
                self._limiters[model] = limiter
            return limiter

    def clear(self) -> None:
        with self._lock:
            self._limits.clear()
            self._limiters.clear()


rate_limiter_registry = RateLimiterRegistry()
