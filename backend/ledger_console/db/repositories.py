"""Repository protocol interfaces for data access."""

import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any, Protocol


class MembershipRole(str, Enum):
    """Role a member holds within an organization."""

    owner = "owner"
    admin = "admin"
    member = "member"
    viewer = "viewer"


class MembershipStatus(str, Enum):
    """Membership lifecycle status. Only ``active`` grants access."""

    active = "active"
    invited = "invited"
    revoked = "revoked"


@dataclass(frozen=True)
class LedgerRecord:
    """Tenant ledger owned by exactly one organization."""

    ledger_id: str
    organization_id: str
    livemode: bool
    ledger_group_id: str | None
    status: str = "active"


@dataclass(frozen=True)
class MembershipRecord:
    """Membership row granting a user a role within an organization."""

    organization_id: str
    user_id: str
    role: MembershipRole
    status: MembershipStatus


class ActorType(str, Enum):
    """Who performed an audited action."""

    user = "user"
    system = "system"


@dataclass(frozen=True)
class AuditEvent:
    """Append-only audit record.

    ``event_id`` makes sink writes idempotent, so a background retry never
    produces a second record for the same mutation.
    """

    ledger_id: str | None
    action: str
    entity_type: str | None
    entity_id: str | None
    actor_type: ActorType
    actor_id: str | None
    ip_address: str | None
    user_agent: str | None
    request_id: str | None
    request_body: dict[str, Any] | None
    event_id: uuid.UUID = field(default_factory=uuid.uuid4)
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))


class MembershipStore(Protocol):
    """Read access to ledgers and organization memberships.

    Implementations must not cache: revocation takes effect on the next call.
    """

    async def get_ledger(self, ledger_id: str) -> LedgerRecord | None:
        """Get ledger by ID.

        Args:
            ledger_id: Ledger ID

        Returns:
            Ledger record or None if not found
        """
        ...

    async def get_active_membership(
        self, organization_id: str, user_id: str
    ) -> MembershipRecord | None:
        """Get the active membership for a user in an organization.

        Args:
            organization_id: Owning organization ID
            user_id: User ID

        Returns:
            Membership record or None if absent or not active
        """
        ...


class AuditSink(Protocol):
    """Durable destination for audit events."""

    async def append(self, event: AuditEvent) -> None:
        """Append an audit event.

        Must be idempotent on ``event.event_id``.

        Args:
            event: Audit event to persist
        """
        ...


@dataclass(frozen=True)
class RateLimitRule:
    """Route rate limit: ``requests`` per ``window_seconds``."""

    requests: int
    window_seconds: int = 60


@dataclass
class RetryAfter:
    """Rate limit retry-after information."""

    seconds: int


class RateLimiter(Protocol):
    """Rate limiter interface."""

    async def check_quota(
        self, key: str, rule: RateLimitRule, now: datetime
    ) -> RetryAfter | None:
        """Check and increment the counter for ``key``.

        Args:
            key: Rate limit key
            rule: Limit to apply
            now: Current timestamp

        Returns:
            RetryAfter if over quota, None if allowed
        """
        ...
