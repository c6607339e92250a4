import redis

from ...application.ports.rate_limiter import RateLimiter, RateLimitDecision


class RedisRateLimiter(RateLimiter):
    """Fixed-window limiter shared by every process pointing at the same Redis."""

    def __init__(self, url: str, prefix: str = "rl:", client: "redis.Redis" = None) -> None:
        self.client = client or redis.Redis.from_url(url)
        self.prefix = prefix

    def hit(self, key: str, limit: int, window_seconds: int) -> RateLimitDecision:
        rk = f"{self.prefix}{key}:{window_seconds}"
        # Use Redis INCR with EXPIRE NX so the window starts at the first hit
        pipe = self.client.pipeline()
        pipe.incr(rk, 1)
        pipe.expire(rk, window_seconds, nx=True)
        count, _ = pipe.execute()
        count = int(count)
        return RateLimitDecision(allowed=count <= limit, remaining=max(0, limit - count), limit=limit)
