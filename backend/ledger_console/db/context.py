"""Request context for tenancy enforcement."""

from dataclasses import dataclass, field
from typing import Any

from backend.ledger_console.db.repositories import ActorType, AuditEvent
from backend.ledger_console.errors import AuthenticationError
from backend.ledger_console.mode import ModeContext


@dataclass(frozen=True)
class Identity:
    """Caller identity as reported by the identity provider."""

    user_id: str
    email: str | None = None
    readonly: bool = False


@dataclass(frozen=True)
class RequestContext:
    """Request-scoped context threaded through the pipeline into handlers.

    Carries the identity, mode and request id for one request. Handlers stage
    audit events with :meth:`audit`; the pipeline emits them only once the
    handler has produced a successful response.
    """

    request_id: str
    route_path: str
    client_ip: str
    user_agent: str | None
    user: Identity | None
    mode: ModeContext
    staged_audit: list[AuditEvent] = field(default_factory=list)

    def require_user(self) -> Identity:
        """The authenticated identity.

        Raises:
            AuthenticationError: No authenticated user on this request
        """
        if self.user is None:
            raise AuthenticationError()
        return self.user

    def audit(
        self,
        *,
        ledger_id: str,
        action: str,
        entity_type: str | None = None,
        entity_id: str | None = None,
        request_body: dict[str, Any] | None = None,
    ) -> AuditEvent:
        """Stage an audit event attributed to the current user."""
        event = AuditEvent(
            ledger_id=ledger_id,
            action=action,
            entity_type=entity_type,
            entity_id=entity_id,
            actor_type=ActorType.user if self.user else ActorType.system,
            actor_id=self.user.user_id if self.user else None,
            ip_address=self.client_ip,
            user_agent=self.user_agent,
            request_id=self.request_id,
            request_body=request_body,
        )
        self.staged_audit.append(event)
        return event
