"""SQL implementations of repository interfaces."""

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from backend.ledger_console.db.models import AuditLog, Ledger, OrganizationMember
from backend.ledger_console.db.repositories import (
    AuditEvent,
    LedgerRecord,
    MembershipRecord,
    MembershipRole,
    MembershipStatus,
)


class SqlMembershipStore:
    """SQL implementation of MembershipStore.

    Opens a fresh session per lookup so every request sees the current rows.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def get_ledger(self, ledger_id: str) -> LedgerRecord | None:
        """Get ledger by ID."""
        async with self._session_factory() as session:
            result = await session.execute(select(Ledger).where(Ledger.id == ledger_id))
            ledger = result.scalar_one_or_none()

        if ledger is None:
            return None

        return LedgerRecord(
            ledger_id=ledger.id,
            organization_id=ledger.organization_id,
            livemode=ledger.livemode,
            ledger_group_id=ledger.ledger_group_id,
            status=ledger.status,
        )

    async def get_active_membership(
        self, organization_id: str, user_id: str
    ) -> MembershipRecord | None:
        """Get the active membership for a user in an organization."""
        async with self._session_factory() as session:
            result = await session.execute(
                select(OrganizationMember).where(
                    OrganizationMember.organization_id == organization_id,
                    OrganizationMember.user_id == user_id,
                    OrganizationMember.status == MembershipStatus.active.value,
                )
            )
            member = result.scalar_one_or_none()

        if member is None:
            return None

        return MembershipRecord(
            organization_id=member.organization_id,
            user_id=member.user_id,
            role=MembershipRole(member.role),
            status=MembershipStatus(member.status),
        )


class SqlAuditSink:
    """SQL implementation of AuditSink backed by the audit_log table."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def append(self, event: AuditEvent) -> None:
        """Insert an audit row; a duplicate event_id is treated as written."""
        row = AuditLog(
            id=event.event_id,
            ledger_id=event.ledger_id,
            action=event.action,
            entity_type=event.entity_type,
            entity_id=event.entity_id,
            actor_type=event.actor_type.value,
            actor_id=event.actor_id,
            ip_address=event.ip_address,
            user_agent=event.user_agent,
            request_id=event.request_id,
            request_body=event.request_body,
            created_at=event.created_at,
        )

        async with self._session_factory() as session:
            session.add(row)
            try:
                await session.commit()
            except IntegrityError:
                # Earlier attempt already landed
                await session.rollback()
