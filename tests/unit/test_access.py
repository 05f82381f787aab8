"""Tests for ledger access resolution."""

import pytest

from backend.ledger_console.access import (
    OWNER_OR_ADMIN,
    WRITER_ROLES,
    AccessDenied,
    AccessResolver,
    DenialReason,
    LedgerAccess,
    require_role,
)
from backend.ledger_console.db.inmemory import InMemoryMembershipStore
from backend.ledger_console.db.repositories import MembershipRole, MembershipStatus
from backend.ledger_console.errors import AuthorizationError, NotFoundError


@pytest.fixture
def store() -> InMemoryMembershipStore:
    store = InMemoryMembershipStore()
    store.add_ledger("ledger_a", "org_a", livemode=True)
    store.add_ledger("ledger_b", "org_b")
    store.add_ledger("ledger_archived", "org_a", status="archived")
    store.add_membership("org_a", "user_1", MembershipRole.admin)
    store.add_membership("org_a", "user_invited", status=MembershipStatus.invited)
    return store


@pytest.mark.asyncio
async def test_active_membership_grants_access(store: InMemoryMembershipStore) -> None:
    resolver = AccessResolver(store)

    result = await resolver.resolve_access("user_1", "ledger_a")

    assert result == LedgerAccess(
        ledger_id="ledger_a", organization_id="org_a", role=MembershipRole.admin
    )


@pytest.mark.asyncio
async def test_membership_in_other_org_is_denied(store: InMemoryMembershipStore) -> None:
    """A member of org_a cannot reach a ledger owned by org_b."""
    resolver = AccessResolver(store)

    result = await resolver.resolve_access("user_1", "ledger_b")

    assert result == AccessDenied(DenialReason.no_membership)


@pytest.mark.asyncio
async def test_missing_and_inactive_ledgers_are_not_found(
    store: InMemoryMembershipStore,
) -> None:
    resolver = AccessResolver(store)

    assert await resolver.resolve_access("user_1", "nope") == AccessDenied(
        DenialReason.ledger_not_found
    )
    assert await resolver.resolve_access("user_1", "ledger_archived") == AccessDenied(
        DenialReason.ledger_not_found
    )


@pytest.mark.asyncio
async def test_non_active_membership_is_denied(store: InMemoryMembershipStore) -> None:
    resolver = AccessResolver(store)

    result = await resolver.resolve_access("user_invited", "ledger_a")

    assert isinstance(result, AccessDenied)


@pytest.mark.asyncio
async def test_revocation_applies_to_next_call(store: InMemoryMembershipStore) -> None:
    resolver = AccessResolver(store)
    assert isinstance(await resolver.resolve_access("user_1", "ledger_a"), LedgerAccess)

    store.revoke_membership("org_a", "user_1")

    assert await resolver.resolve_access("user_1", "ledger_a") == AccessDenied(
        DenialReason.no_membership
    )


@pytest.mark.asyncio
async def test_require_ledger_access_status_mapping(store: InMemoryMembershipStore) -> None:
    resolver = AccessResolver(store)

    with pytest.raises(NotFoundError):
        await resolver.require_ledger_access("user_1", "nope")

    with pytest.raises(AuthorizationError) as exc_info:
        await resolver.require_ledger_access("user_1", "ledger_b")
    assert exc_info.value.code == "access_denied"


@pytest.mark.asyncio
async def test_concealment_reports_denial_as_not_found(store: InMemoryMembershipStore) -> None:
    resolver = AccessResolver(store, conceal_inaccessible=True)

    with pytest.raises(NotFoundError):
        await resolver.require_ledger_access("user_1", "ledger_b")


def test_require_role() -> None:
    viewer = LedgerAccess("ledger_a", "org_a", MembershipRole.viewer)
    member = LedgerAccess("ledger_a", "org_a", MembershipRole.member)
    owner = LedgerAccess("ledger_a", "org_a", MembershipRole.owner)

    require_role(member, WRITER_ROLES)
    require_role(owner, OWNER_OR_ADMIN)

    with pytest.raises(AuthorizationError) as exc_info:
        require_role(viewer, WRITER_ROLES)
    assert exc_info.value.code == "insufficient_role"

    with pytest.raises(AuthorizationError) as exc_info:
        require_role(member, OWNER_OR_ADMIN, "Only owners and admins can perform this action")
    assert exc_info.value.message == "Only owners and admins can perform this action"
