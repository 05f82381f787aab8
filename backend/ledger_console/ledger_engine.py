"""Client for the external ledger engine's action RPC surface.

Each action is an HTTP function at ``/functions/v1/<action>``. Calls carry
the internal function token and the ledger id; bodies of non-GET/DELETE calls
always include ``ledger_id``.

Transport failures, timeouts and 5xx answers raise UpstreamError. 4xx answers
are the engine's verdict on the input and are returned to the caller.
"""

import json
import logging
from dataclasses import dataclass
from typing import Any, Protocol

import httpx

from backend.ledger_console.errors import UpstreamError

logger = logging.getLogger(__name__)

BODYLESS_METHODS = frozenset({"GET", "DELETE", "HEAD"})


@dataclass(frozen=True)
class LedgerEngineResult:
    """Response from a ledger engine action."""

    status_code: int
    content: bytes
    content_type: str
    content_disposition: str | None = None

    @property
    def ok(self) -> bool:
        return 200 <= self.status_code < 300

    @property
    def is_json(self) -> bool:
        return "application/json" in self.content_type

    def json(self) -> dict[str, Any]:
        """Decode the payload as a dict for field lookups.

        Non-JSON text becomes ``{"error": text}`` and non-object JSON is wrapped
        as ``{"data": value}``. Relays forward ``content`` instead.
        """
        if not self.content:
            return {}
        text = self.content.decode("utf-8", errors="replace")
        try:
            payload = json.loads(text)
        except ValueError:
            return {"error": text}
        return payload if isinstance(payload, dict) else {"data": payload}


class LedgerEngine(Protocol):
    """Ledger engine interface."""

    async def call(
        self,
        action: str,
        *,
        ledger_id: str,
        method: str = "POST",
        body: dict[str, Any] | None = None,
        query: dict[str, str] | None = None,
        idempotency_key: str | None = None,
    ) -> LedgerEngineResult:
        """Invoke a ledger engine action.

        Args:
            action: Action name (e.g. "record-sale")
            ledger_id: Target ledger
            method: HTTP method
            body: JSON body for non-GET/DELETE calls
            query: Query parameters
            idempotency_key: Dedup key for side-effecting calls

        Returns:
            Engine result (2xx or 4xx)

        Raises:
            UpstreamError: Engine unreachable, timed out or failed (5xx)
        """
        ...


class HttpLedgerEngine:
    """Ledger engine reached over HTTP."""

    def __init__(self, client: httpx.AsyncClient, internal_token: str) -> None:
        self._client = client
        self._internal_token = internal_token

    async def call(
        self,
        action: str,
        *,
        ledger_id: str,
        method: str = "POST",
        body: dict[str, Any] | None = None,
        query: dict[str, str] | None = None,
        idempotency_key: str | None = None,
    ) -> LedgerEngineResult:
        if not self._internal_token:
            raise UpstreamError("internal function token is not configured", transient=False)

        method = method.upper()
        headers = {
            "x-internal-token": self._internal_token,
            "x-ledger-id": ledger_id,
        }
        if idempotency_key:
            headers["x-idempotency-key"] = idempotency_key

        payload = None
        if method not in BODYLESS_METHODS:
            payload = {**(body or {}), "ledger_id": ledger_id}

        try:
            response = await self._client.request(
                method,
                f"/functions/v1/{action}",
                headers=headers,
                params={k: v for k, v in (query or {}).items() if v is not None},
                json=payload,
            )
        except httpx.HTTPError as e:
            raise UpstreamError(f"ledger engine {action}: {type(e).__name__}: {e}") from e

        if response.status_code >= 500:
            raise UpstreamError(
                f"ledger engine {action} returned {response.status_code}: {response.text[:200]}"
            )

        return LedgerEngineResult(
            status_code=response.status_code,
            content=response.content,
            content_type=response.headers.get("content-type", "application/octet-stream"),
            content_disposition=response.headers.get("content-disposition"),
        )
