"""Ledger access resolution.

Maps (user, ledger) to the membership that grants access, or a denial.
Memberships are read fresh on every call; a revoked member loses access on
the very next request.

The resolver supplies the fact (organization and role). Policy such as
"payouts need owner or admin" is applied by handlers via :func:`require_role`.
"""

import logging
from collections.abc import Iterable
from dataclasses import dataclass
from enum import Enum

from backend.ledger_console.db.repositories import MembershipRole, MembershipStore
from backend.ledger_console.errors import AuthorizationError, NotFoundError

logger = logging.getLogger(__name__)

OWNER_OR_ADMIN = frozenset({MembershipRole.owner, MembershipRole.admin})
WRITER_ROLES = frozenset({MembershipRole.owner, MembershipRole.admin, MembershipRole.member})


@dataclass(frozen=True)
class LedgerAccess:
    """Access granted through an active membership."""

    ledger_id: str
    organization_id: str
    role: MembershipRole


class DenialReason(str, Enum):
    ledger_not_found = "ledger_not_found"
    no_membership = "no_membership"


@dataclass(frozen=True)
class AccessDenied:
    """No access; ``reason`` is for logs and status selection only."""

    reason: DenialReason


class AccessResolver:
    """Resolves ledger access against the membership store."""

    def __init__(self, store: MembershipStore, *, conceal_inaccessible: bool = False) -> None:
        """Initialize resolver.

        Args:
            store: Membership store (must not cache)
            conceal_inaccessible: Report inaccessible ledgers as 404 instead
                of 403 so their existence is not revealed
        """
        self._store = store
        self._conceal_inaccessible = conceal_inaccessible

    async def resolve_access(self, user_id: str, ledger_id: str) -> LedgerAccess | AccessDenied:
        """Resolve a user's access to a ledger.

        Args:
            user_id: Authenticated user ID
            ledger_id: Ledger ID

        Returns:
            LedgerAccess, or AccessDenied when the ledger is missing or
            inactive or no active membership exists in its organization
        """
        ledger = await self._store.get_ledger(ledger_id)
        if ledger is None or ledger.status != "active":
            return AccessDenied(DenialReason.ledger_not_found)

        membership = await self._store.get_active_membership(ledger.organization_id, user_id)
        if membership is None:
            return AccessDenied(DenialReason.no_membership)

        return LedgerAccess(
            ledger_id=ledger.ledger_id,
            organization_id=ledger.organization_id,
            role=membership.role,
        )

    async def require_ledger_access(self, user_id: str, ledger_id: str) -> LedgerAccess:
        """Resolve access or raise the matching HTTP error.

        Raises:
            NotFoundError: Ledger missing or inactive (or concealed denial)
            AuthorizationError: No active membership (code ``access_denied``)
        """
        result = await self.resolve_access(user_id, ledger_id)
        if isinstance(result, LedgerAccess):
            return result

        logger.info("Ledger access denied: ledger=%s reason=%s", ledger_id, result.reason.value)

        if result.reason is DenialReason.ledger_not_found or self._conceal_inaccessible:
            raise NotFoundError("Ledger not found")
        raise AuthorizationError("Access denied", code="access_denied")


def require_role(
    access: LedgerAccess, allowed: Iterable[MembershipRole], message: str | None = None
) -> None:
    """Require the member's role to be in ``allowed``.

    Raises:
        AuthorizationError: With code ``insufficient_role``
    """
    if access.role not in frozenset(allowed):
        raise AuthorizationError(message or "Insufficient permissions", code="insufficient_role")
