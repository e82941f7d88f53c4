"""In-memory sliding window rate limiter for outbound API calls."""

from __future__ import annotations

import time
from collections.abc import Callable

from evolution_api.config import RateLimit, RateLimitingConfig
from evolution_api.exceptions import RateLimitError


class ClientRateLimiter:
    """Sliding window limiter keyed by ``connection:instance`` and call type.

    Call types are ``default``, ``messages`` and ``media``; unknown types use
    the ``default`` limit.
    """

    def __init__(
        self,
        limits: dict[str, RateLimit],
        on_limit_reached: str = "wait",
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._limits = limits
        self._on_limit_reached = on_limit_reached
        self._sleep = sleep
        self._counters: dict[str, list[float]] = {}

    @classmethod
    def from_config(cls, config: RateLimitingConfig) -> ClientRateLimiter | None:
        if not config.enabled:
            return None
        return cls(config.limits, config.on_limit_reached)

    def _limit_for(self, call_type: str) -> RateLimit | None:
        return self._limits.get(call_type) or self._limits.get("default")

    def check(self, key: str, call_type: str = "default") -> bool:
        """Return True and record the call if it fits in the window."""
        limit = self._limit_for(call_type)
        if limit is None:
            return True
        bucket = f"{key}:{call_type}"
        now = time.time()
        cutoff = now - limit.decay_seconds
        timestamps = [t for t in self._counters.get(bucket, []) if t > cutoff]

        if len(timestamps) >= limit.max_attempts:
            self._counters[bucket] = timestamps
            return False

        timestamps.append(now)
        self._counters[bucket] = timestamps
        return True

    def available_in(self, key: str, call_type: str = "default") -> float:
        """Seconds until the oldest call in the window expires."""
        limit = self._limit_for(call_type)
        timestamps = self._counters.get(f"{key}:{call_type}", [])
        if limit is None or not timestamps:
            return 0.0
        return max(0.0, timestamps[0] + limit.decay_seconds - time.time())

    def attempt(self, key: str, call_type: str = "default") -> None:
        """Block (``wait``) or raise (``throw``) until a slot is available."""
        while not self.check(key, call_type):
            delay = self.available_in(key, call_type)
            if self._on_limit_reached == "throw":
                raise RateLimitError(
                    f"Rate limit reached for {key} ({call_type})", retry_after=delay,
                )
            self._sleep(max(delay, 0.01))
