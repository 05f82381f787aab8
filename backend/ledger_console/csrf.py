"""CSRF protection: double-submit cookie plus origin allow-list.

The token lives in a script-readable cookie; browser code echoes it in the
``x-csrf-token`` header on every mutating call. No server-side token storage
is needed, at the cost of the cookie not being HttpOnly.
"""

import logging
import secrets
from collections.abc import Mapping
from urllib.parse import urlsplit

from starlette.responses import Response

from backend.ledger_console.errors import AuthorizationError

logger = logging.getLogger(__name__)

CSRF_COOKIE_NAME = "__csrf_token"
CSRF_HEADER_NAME = "x-csrf-token"
CSRF_TOKEN_BYTES = 32
CSRF_COOKIE_MAX_AGE = 60 * 60 * 24

SAFE_METHODS = frozenset({"GET", "HEAD", "OPTIONS"})


def is_mutating(method: str) -> bool:
    """Whether ``method`` can change state."""
    return method.upper() not in SAFE_METHODS


def generate_csrf_token() -> str:
    """Generate a 256-bit token, hex encoded."""
    return secrets.token_hex(CSRF_TOKEN_BYTES)


def _origin_of(url: str) -> str | None:
    parts = urlsplit(url)
    if not parts.scheme or not parts.netloc:
        return None
    return f"{parts.scheme}://{parts.netloc}"


class CsrfGuard:
    """Issues and validates the double-submit CSRF token."""

    def __init__(self, *, secure: bool, allowed_origins: list[str] | None = None) -> None:
        """Initialize guard.

        Args:
            secure: Set the Secure attribute on the cookie (production)
            allowed_origins: Origins allowed to make mutating calls; empty
                disables the origin check
        """
        self._secure = secure
        self._allowed_origins = frozenset(allowed_origins or [])

    def ensure_cookie(self, request_cookies: Mapping[str, str], response: Response) -> str | None:
        """Mint a CSRF cookie on ``response`` if the request carried none.

        Returns:
            The newly minted token, or None if the request already had one
        """
        if request_cookies.get(CSRF_COOKIE_NAME):
            return None

        token = generate_csrf_token()
        response.set_cookie(
            CSRF_COOKIE_NAME,
            token,
            max_age=CSRF_COOKIE_MAX_AGE,
            path="/",
            httponly=False,
            samesite="strict",
            secure=self._secure,
        )
        return token

    def validate_origin(self, headers: Mapping[str, str]) -> bool:
        """Check Origin (or Referer as fallback) against the allow-list.

        A request with neither header is treated as same-origin.
        """
        if not self._allowed_origins:
            return True

        origin = headers.get("origin")
        if origin:
            return origin in self._allowed_origins

        referer = headers.get("referer")
        if referer:
            return _origin_of(referer) in self._allowed_origins

        return True

    def validate(
        self, method: str, cookies: Mapping[str, str], headers: Mapping[str, str]
    ) -> None:
        """Validate a request.

        Raises:
            AuthorizationError: With code ``invalid_origin`` or ``csrf_failed``
        """
        if not self.validate_origin(headers):
            logger.warning("CSRF: origin not allowed")
            raise AuthorizationError(code="invalid_origin")

        if not is_mutating(method):
            return

        cookie_token = cookies.get(CSRF_COOKIE_NAME)
        if not cookie_token:
            logger.warning("CSRF: no token in cookie")
            raise AuthorizationError(code="csrf_failed")

        header_token = headers.get(CSRF_HEADER_NAME)
        if not header_token:
            logger.warning("CSRF: no token in header")
            raise AuthorizationError(code="csrf_failed")

        if not secrets.compare_digest(cookie_token.encode(), header_token.encode()):
            logger.warning("CSRF: token mismatch")
            raise AuthorizationError(code="csrf_failed")
