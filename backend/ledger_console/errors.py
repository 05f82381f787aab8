"""API error taxonomy and the JSON error envelope.

Every error the pipeline returns is rendered as::

    {"error": "<message>", "code": "<stable code>", "request_id": "<id>"}

Validation and authorization errors are raised where they are detected and
returned immediately. Upstream errors carry internal detail for the logs only;
the caller sees the generic message.
"""

from typing import Any

from fastapi.responses import JSONResponse


class ApiError(Exception):
    """Base class for errors that map onto an HTTP status."""

    status_code: int = 500
    code: str = "internal_error"
    message: str = "Internal server error"

    def __init__(
        self,
        message: str | None = None,
        *,
        code: str | None = None,
        headers: dict[str, str] | None = None,
        extra: dict[str, Any] | None = None,
    ) -> None:
        self.message = message or self.message
        self.code = code or self.code
        self.headers = headers or {}
        self.extra = extra or {}
        super().__init__(self.message)

    def to_body(self, request_id: str | None = None) -> dict[str, Any]:
        """Build the JSON error envelope."""
        body: dict[str, Any] = {"error": self.message, "code": self.code}
        body.update(self.extra)
        if request_id is not None:
            body["request_id"] = request_id
        return body

    def to_response(self, request_id: str | None = None) -> JSONResponse:
        return JSONResponse(
            status_code=self.status_code,
            content=self.to_body(request_id),
            headers=self.headers or None,
        )


class ValidationError(ApiError):
    status_code = 400
    code = "validation_error"
    message = "Invalid request"


class AuthenticationError(ApiError):
    status_code = 401
    code = "unauthenticated"
    message = "Unauthorized"


class AuthorizationError(ApiError):
    """403 with a sub-code naming the cause.

    Codes in use: ``csrf_failed``, ``invalid_origin``, ``access_denied``,
    ``readonly_mode``, ``insufficient_role``.
    """

    status_code = 403
    code = "access_denied"
    message = "Access denied"


class NotFoundError(ApiError):
    status_code = 404
    code = "not_found"
    message = "Not found"


class PayloadTooLargeError(ApiError):
    status_code = 413
    code = "payload_too_large"
    message = "Request too large"


class RateLimitedError(ApiError):
    status_code = 429
    code = "rate_limited"
    message = "Rate limit exceeded. Please try again later."

    def __init__(self, retry_after: int) -> None:
        self.retry_after = retry_after
        super().__init__(
            headers={
                "Retry-After": str(retry_after),
                "X-RateLimit-Remaining": "0",
            },
            extra={"retry_after": retry_after},
        )


class UpstreamError(ApiError):
    """Identity-provider or ledger-engine failure.

    ``detail`` is for logs only and never reaches the caller.
    """

    status_code = 500
    code = "upstream_error"
    message = "Upstream service error"

    def __init__(self, detail: str, *, transient: bool = True) -> None:
        self.detail = detail
        self.transient = transient
        super().__init__()
        self.status_code = 502 if transient else 500


class InternalError(ApiError):
    """Generic 500 used for any uncaught handler failure."""
