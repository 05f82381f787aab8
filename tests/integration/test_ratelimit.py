"""Tests for rate limiting."""

from datetime import UTC, datetime, timedelta

import pytest

from backend.ledger_console.db.inmemory import InMemoryRateLimiter
from backend.ledger_console.db.repositories import RateLimitRule
from backend.ledger_console.middleware.ratelimit import (
    RateLimitMiddleware,
    create_default_route_limits,
)
from backend.ledger_console.ratelimit import (
    RedisRateLimiter,
    make_rate_limit_key,
    rate_limit_subject,
)


@pytest.mark.asyncio
async def test_rate_limiter_allows_under_quota() -> None:
    """Test rate limiter allows requests under quota."""
    limiter = InMemoryRateLimiter()
    rule = RateLimitRule(requests=5, window_seconds=60)
    now = datetime.now(UTC)

    key = "user:1:/api/ledgers/[id]/sales"

    # First 5 requests should succeed
    for i in range(5):
        retry_after = await limiter.check_quota(key, rule, now + timedelta(seconds=i))
        assert retry_after is None


@pytest.mark.asyncio
async def test_rate_limiter_blocks_over_quota() -> None:
    """Test rate limiter blocks requests over quota."""
    limiter = InMemoryRateLimiter()
    rule = RateLimitRule(requests=3, window_seconds=60)
    now = datetime.now(UTC)

    key = "user:1:/api/mode"

    # First 3 requests succeed
    for _ in range(3):
        assert await limiter.check_quota(key, rule, now) is None

    # 4th request should be blocked
    retry_after = await limiter.check_quota(key, rule, now)
    assert retry_after is not None
    assert retry_after.seconds > 0


@pytest.mark.asyncio
async def test_rate_limiter_resets_after_window() -> None:
    """Test rate limiter resets quota after window expires."""
    limiter = InMemoryRateLimiter()
    rule = RateLimitRule(requests=2, window_seconds=60)
    now = datetime.now(UTC)

    key = "ip:203.0.113.9:/api/mode"

    # Use up quota
    await limiter.check_quota(key, rule, now)
    await limiter.check_quota(key, rule, now)

    # Next request blocked
    assert await limiter.check_quota(key, rule, now) is not None

    # After window expires, quota resets
    future = now + timedelta(seconds=61)
    assert await limiter.check_quota(key, rule, future) is None


@pytest.mark.asyncio
async def test_rate_limiter_separate_keys() -> None:
    """Test rate limiter tracks separate keys independently."""
    limiter = InMemoryRateLimiter()
    rule = RateLimitRule(requests=2, window_seconds=60)
    now = datetime.now(UTC)

    key1 = "user:1:/api/mode"
    key2 = "user:2:/api/mode"

    # Use up quota for key1
    await limiter.check_quota(key1, rule, now)
    await limiter.check_quota(key1, rule, now)

    # key1 is blocked
    assert await limiter.check_quota(key1, rule, now) is not None

    # key2 still has quota
    assert await limiter.check_quota(key2, rule, now) is None


def test_rate_limit_subject_prefers_user() -> None:
    """Authenticated callers are keyed by user, anonymous ones by IP."""
    assert rate_limit_subject("user_1", "203.0.113.9") == "user:user_1"
    assert rate_limit_subject(None, "203.0.113.9") == "ip:203.0.113.9"


def test_make_rate_limit_key() -> None:
    """Test rate limit key generation."""
    key = make_rate_limit_key("user:user_1", "/api/ledgers/[id]/sales")

    assert key == "user:user_1:/api/ledgers/[id]/sales"


@pytest.mark.asyncio
async def test_rate_limit_middleware_allows() -> None:
    """Test rate limit middleware allows requests under quota."""
    middleware = RateLimitMiddleware(
        InMemoryRateLimiter(),
        {"/api/mode": RateLimitRule(requests=5)},
        RateLimitRule(requests=100),
    )
    now = datetime.now(UTC)

    # First 5 requests should be allowed
    for _ in range(5):
        allowed, retry_after = await middleware.check_rate_limit("/api/mode", "user:1", now=now)
        assert allowed is True
        assert retry_after == 0


@pytest.mark.asyncio
async def test_rate_limit_middleware_blocks() -> None:
    """Test rate limit middleware blocks requests over quota."""
    middleware = RateLimitMiddleware(
        InMemoryRateLimiter(),
        {"/api/mode": RateLimitRule(requests=2)},
        RateLimitRule(requests=100),
    )
    now = datetime.now(UTC)

    # First 2 requests allowed
    await middleware.check_rate_limit("/api/mode", "user:1", now=now)
    await middleware.check_rate_limit("/api/mode", "user:1", now=now)

    # 3rd request blocked
    allowed, retry_after = await middleware.check_rate_limit("/api/mode", "user:1", now=now)
    assert allowed is False
    assert retry_after > 0


@pytest.mark.asyncio
async def test_route_override_takes_precedence() -> None:
    """A per-route rule overrides the mapped limit."""
    middleware = RateLimitMiddleware(
        InMemoryRateLimiter(),
        {"/api/mode": RateLimitRule(requests=100)},
        RateLimitRule(requests=100),
    )
    now = datetime.now(UTC)
    override = RateLimitRule(requests=1)

    assert (await middleware.check_rate_limit("/api/mode", "user:1", override, now))[0] is True
    assert (await middleware.check_rate_limit("/api/mode", "user:1", override, now))[0] is False


def test_rule_lookup_exact_then_longest_prefix_then_default() -> None:
    default = RateLimitRule(requests=7)
    middleware = RateLimitMiddleware(
        InMemoryRateLimiter(),
        {
            "/api/ledgers": RateLimitRule(requests=100),
            "/api/ledgers/[id]/sales": RateLimitRule(requests=20),
            "/api/ledgers/[id]": RateLimitRule(requests=50),
        },
        default,
    )

    assert middleware.get_rule("/api/ledgers/[id]/sales").requests == 20
    assert middleware.get_rule("/api/ledgers/[id]/expenses").requests == 50
    assert middleware.get_rule("/api/ledgers").requests == 100
    assert middleware.get_rule("/api/billing") is default


def test_create_default_route_limits() -> None:
    """Test default route limits."""
    limits = create_default_route_limits()

    assert limits["/api/auth"].requests == 10
    assert limits["/api/ledgers"].requests == 100
    assert limits["/api/ledger-functions"].requests == 100
    assert limits["/api/mode"].requests == 30


class FakeRedis:
    """Minimal async Redis with INCR/EXPIRE/TTL."""

    def __init__(self) -> None:
        self.counts: dict[str, int] = {}
        self.expiries: dict[str, int] = {}

    async def incr(self, key: str) -> int:
        self.counts[key] = self.counts.get(key, 0) + 1
        return self.counts[key]

    async def expire(self, key: str, seconds: int) -> bool:
        self.expiries[key] = seconds
        return True

    async def ttl(self, key: str) -> int:
        return self.expiries.get(key, -1)


@pytest.mark.asyncio
async def test_redis_rate_limiter_counts_per_window() -> None:
    redis = FakeRedis()
    limiter = RedisRateLimiter(redis)  # type: ignore[arg-type]
    rule = RateLimitRule(requests=2, window_seconds=60)
    now = datetime(2026, 1, 1, 12, 0, 30, tzinfo=UTC)

    assert await limiter.check_quota("user:1:/api/mode", rule, now) is None
    assert await limiter.check_quota("user:1:/api/mode", rule, now) is None
    retry_after = await limiter.check_quota("user:1:/api/mode", rule, now)

    assert retry_after is not None
    assert retry_after.seconds == 60
    assert len(redis.counts) == 1
    assert next(iter(redis.expiries.values())) == 60
