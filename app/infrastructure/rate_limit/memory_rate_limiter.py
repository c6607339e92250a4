import time
from typing import Dict, List

from ...application.ports.rate_limiter import RateLimiter, RateLimitDecision


class InMemoryRateLimiter(RateLimiter):
    """Sliding-window limiter for a single process."""

    def __init__(self) -> None:
        self._store: Dict[str, List[float]] = {}

    def hit(self, key: str, limit: int, window_seconds: int) -> RateLimitDecision:
        now = time.time()
        window_start = now - window_seconds
        # prune
        times = [t for t in self._store.get(key, []) if t > window_start]
        if len(times) >= limit:
            self._store[key] = times
            return RateLimitDecision(allowed=False, remaining=0, limit=limit)
        times.append(now)
        self._store[key] = times
        return RateLimitDecision(allowed=True, remaining=limit - len(times), limit=limit)
