from dataclasses import dataclass
from typing import Protocol


@dataclass
class RateLimitDecision:
    allowed: bool
    remaining: int
    limit: int


class RateLimiter(Protocol):
    def hit(self, key: str, limit: int, window_seconds: int) -> RateLimitDecision:
        ...
