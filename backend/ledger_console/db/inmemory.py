"""In-memory implementations of repository interfaces."""

import uuid
from datetime import datetime, timedelta

from backend.ledger_console.db.repositories import (
    AuditEvent,
    LedgerRecord,
    MembershipRecord,
    MembershipRole,
    MembershipStatus,
    RateLimitRule,
    RetryAfter,
)


class InMemoryMembershipStore:
    """In-memory implementation of MembershipStore."""

    def __init__(self) -> None:
        self._ledgers: dict[str, LedgerRecord] = {}
        self._memberships: dict[tuple[str, str], MembershipRecord] = {}

    def add_ledger(
        self,
        ledger_id: str,
        organization_id: str,
        *,
        livemode: bool = False,
        ledger_group_id: str | None = None,
        status: str = "active",
    ) -> LedgerRecord:
        """Register a ledger owned by ``organization_id``."""
        record = LedgerRecord(
            ledger_id=ledger_id,
            organization_id=organization_id,
            livemode=livemode,
            ledger_group_id=ledger_group_id,
            status=status,
        )
        self._ledgers[ledger_id] = record
        return record

    def add_membership(
        self,
        organization_id: str,
        user_id: str,
        role: MembershipRole = MembershipRole.member,
        status: MembershipStatus = MembershipStatus.active,
    ) -> MembershipRecord:
        """Create or replace a membership row."""
        record = MembershipRecord(
            organization_id=organization_id,
            user_id=user_id,
            role=role,
            status=status,
        )
        self._memberships[(organization_id, user_id)] = record
        return record

    def revoke_membership(self, organization_id: str, user_id: str) -> None:
        """Mark a membership revoked."""
        record = self._memberships.get((organization_id, user_id))
        if record is None:
            return
        self.add_membership(
            organization_id, user_id, role=record.role, status=MembershipStatus.revoked
        )

    async def get_ledger(self, ledger_id: str) -> LedgerRecord | None:
        """Get ledger by ID."""
        return self._ledgers.get(ledger_id)

    async def get_active_membership(
        self, organization_id: str, user_id: str
    ) -> MembershipRecord | None:
        """Get the active membership for a user in an organization."""
        record = self._memberships.get((organization_id, user_id))

        if record is None or record.status != MembershipStatus.active:
            return None

        return record


class InMemoryAuditSink:
    """In-memory implementation of AuditSink."""

    def __init__(self) -> None:
        self._events: dict[uuid.UUID, AuditEvent] = {}

    @property
    def events(self) -> list[AuditEvent]:
        """All stored events in insertion order."""
        return list(self._events.values())

    async def append(self, event: AuditEvent) -> None:
        """Append an audit event (idempotent on event_id)."""
        self._events.setdefault(event.event_id, event)


class InMemoryRateLimiter:
    """In-memory implementation of RateLimiter using fixed window."""

    def __init__(self) -> None:
        self._windows: dict[str, tuple[datetime, int]] = {}

    async def check_quota(
        self, key: str, rule: RateLimitRule, now: datetime
    ) -> RetryAfter | None:
        """Check if quota is available."""
        window = timedelta(seconds=rule.window_seconds)

        # Get or create window
        if key in self._windows:
            window_start, count = self._windows[key]

            # Check if window expired
            if now >= window_start + window:
                self._windows[key] = (now, 1)
                return None

            # Within same window
            if count >= rule.requests:
                seconds_remaining = int((window_start + window - now).total_seconds())
                return RetryAfter(seconds=max(1, seconds_remaining))

            self._windows[key] = (window_start, count + 1)
            return None
        else:
            # First request
            self._windows[key] = (now, 1)
            return None
