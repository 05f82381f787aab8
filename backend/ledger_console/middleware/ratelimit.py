"""Rate limiting middleware."""

from datetime import UTC, datetime

from backend.ledger_console.db.repositories import RateLimiter, RateLimitRule
from backend.ledger_console.ratelimit import make_rate_limit_key


class RateLimitMiddleware:
    """Middleware for rate limiting HTTP requests.

    Maps route paths to limits (exact match first, then longest prefix) and
    enforces them through the configured limiter.
    """

    def __init__(
        self,
        limiter: RateLimiter,
        route_limits: dict[str, RateLimitRule],
        default_rule: RateLimitRule,
    ) -> None:
        """Initialize rate limit middleware.

        Args:
            limiter: Rate limiter implementation
            route_limits: Mapping from route path prefixes to limits
            default_rule: Limit for routes with no entry
        """
        self._limiter = limiter
        self._route_limits = route_limits
        self._default_rule = default_rule

    async def check_rate_limit(
        self,
        route_path: str,
        subject: str,
        rule: RateLimitRule | None = None,
        now: datetime | None = None,
    ) -> tuple[bool, int]:
        """Check if request is allowed under rate limit.

        Args:
            route_path: Route path the request was made against
            subject: Caller subject (user or IP)
            rule: Route-specific override
            now: Current time (for testing)

        Returns:
            Tuple of (allowed, retry_after_seconds)
        """
        if now is None:
            now = datetime.now(UTC)

        if rule is None:
            rule = self.get_rule(route_path)

        key = make_rate_limit_key(subject, route_path)
        retry_after = await self._limiter.check_quota(key, rule, now)

        if retry_after is None:
            return (True, 0)

        return (False, retry_after.seconds)

    def get_rule(self, route_path: str) -> RateLimitRule:
        """Get the limit for a route path.

        Args:
            route_path: Route path

        Returns:
            Exact-match rule, else the longest matching prefix, else default
        """
        if route_path in self._route_limits:
            return self._route_limits[route_path]

        matches = [prefix for prefix in self._route_limits if route_path.startswith(prefix)]
        if matches:
            return self._route_limits[max(matches, key=len)]

        return self._default_rule


def create_default_route_limits() -> dict[str, RateLimitRule]:
    """Create default route limits.

    Returns:
        Dictionary mapping route prefixes to limits
    """
    return {
        "/api/auth": RateLimitRule(requests=10, window_seconds=60),
        "/api/ledgers": RateLimitRule(requests=100, window_seconds=60),
        "/api/ledger-functions": RateLimitRule(requests=100, window_seconds=60),
        "/api/mode": RateLimitRule(requests=30, window_seconds=60),
    }
