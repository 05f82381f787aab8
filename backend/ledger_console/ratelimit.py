"""Rate limiting utilities."""

from datetime import datetime

from redis import asyncio as aioredis

from backend.ledger_console.db.repositories import RateLimitRule, RetryAfter


def rate_limit_subject(user_id: str | None, client_ip: str) -> str:
    """Identify the caller: user ID when authenticated, otherwise client IP."""
    if user_id:
        return f"user:{user_id}"
    return f"ip:{client_ip}"


def make_rate_limit_key(subject: str, route_path: str) -> str:
    """Create rate limit key from caller subject and route path.

    Args:
        subject: Caller subject from rate_limit_subject()
        route_path: Route path the limit applies to

    Returns:
        Rate limit key
    """
    return f"{subject}:{route_path}"


class RedisRateLimiter:
    """Redis-based rate limiter using INCR + EXPIRE pattern."""

    def __init__(self, redis_client: aioredis.Redis) -> None:
        """Initialize rate limiter.

        Args:
            redis_client: Async Redis client
        """
        self._redis = redis_client

    async def check_quota(
        self, key: str, rule: RateLimitRule, now: datetime
    ) -> RetryAfter | None:
        """Check if quota is available.

        Uses Redis INCR + EXPIRE for atomic counting.

        Args:
            key: Rate limit key
            rule: Limit to apply
            now: Current timestamp

        Returns:
            RetryAfter if over quota, None if allowed
        """
        # Use a window-aligned key
        window_start = int(now.timestamp() / rule.window_seconds) * rule.window_seconds
        redis_key = f"ratelimit:{key}:{window_start}"

        # Atomic increment
        count = await self._redis.incr(redis_key)

        # Set expiry on first request
        if count == 1:
            await self._redis.expire(redis_key, rule.window_seconds)

        if count > rule.requests:
            ttl = await self._redis.ttl(redis_key)
            return RetryAfter(seconds=max(1, ttl))

        return None
