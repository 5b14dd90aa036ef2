"""Fixed-window, in-process rate limiting keyed by string (e.g. ``ai:<org_id>``)."""
import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional


@dataclass(frozen=True)
class RateLimitPolicy:
    limit: int
    window_seconds: float


@dataclass(frozen=True)
class RateLimitResult:
    allowed: bool
    remaining: int
    reset_at: float


RATE_LIMITS: Dict[str, RateLimitPolicy] = {
    "standard": RateLimitPolicy(limit=100, window_seconds=60),
    "ai": RateLimitPolicy(limit=20, window_seconds=60),
    "auth": RateLimitPolicy(limit=10, window_seconds=60),
}


def policy_from_config(name: str, limits: Dict[str, Dict[str, int]]) -> RateLimitPolicy:
    raw = limits.get(name) or {}
    default = RATE_LIMITS.get(name, RATE_LIMITS["standard"])
    try:
        return RateLimitPolicy(
            limit=int(raw.get("limit", default.limit)),
            window_seconds=float(raw.get("window_seconds", default.window_seconds)),
        )
    except (TypeError, ValueError):
        return default


class RateLimiter:
    def __init__(self, clock: Optional[Callable[[], float]] = None):
        self._clock = clock or time.monotonic
        self._lock = threading.Lock()
        # key -> [count, reset_at]
        self._windows: Dict[str, list] = {}

    def _purge(self, now: float) -> None:
        expired = [key for key, (_, reset_at) in self._windows.items() if now >= reset_at]
        for key in expired:
            del self._windows[key]

    def check(self, key: str, policy: RateLimitPolicy) -> RateLimitResult:
        now = self._clock()
        with self._lock:
            self._purge(now)
            window = self._windows.get(key)
            if window is None:
                reset_at = now + policy.window_seconds
                self._windows[key] = [1, reset_at]
                return RateLimitResult(True, policy.limit - 1, reset_at)

            count, reset_at = window
            if count >= policy.limit:
                return RateLimitResult(False, 0, reset_at)

            window[0] = count + 1
            return RateLimitResult(True, policy.limit - window[0], reset_at)

    def reset(self) -> None:
        with self._lock:
            self._windows.clear()


limiter = RateLimiter()
