"""Structured logging for the request pipeline."""

import logging
from typing import Any

from backend.ledger_console.db.context import RequestContext

logger = logging.getLogger(__name__)


class StructuredRequestLogger:
    """Structured logger for pipeline decisions."""

    def log_rejection(self, ctx: RequestContext, method: str, status: int, reason: str) -> None:
        """Log a request stopped before the handler."""
        log_data: dict[str, Any] = {
            "request_id": ctx.request_id,
            "route": ctx.route_path,
            "method": method,
            "status": status,
            "reason": reason,
            "user_id": ctx.user.user_id if ctx.user else None,
            "client_ip": ctx.client_ip,
        }

        logger.warning(
            f"[{ctx.request_id}] Rejected {method} {ctx.route_path}: {reason}",
            extra={"structured": log_data},
        )

    def log_completed(
        self, ctx: RequestContext, method: str, status: int, latency_ms: float
    ) -> None:
        """Log a request that reached the handler."""
        log_data: dict[str, Any] = {
            "request_id": ctx.request_id,
            "route": ctx.route_path,
            "method": method,
            "status": status,
            "latency_ms": round(latency_ms, 2),
            "user_id": ctx.user.user_id if ctx.user else None,
        }

        log_msg = f"[{ctx.request_id}] {method} {ctx.route_path} -> {status}"

        if status < 500:
            logger.info(log_msg, extra={"structured": log_data})
        else:
            logger.warning(log_msg, extra={"structured": log_data})

    def log_handler_error(self, ctx: RequestContext, method: str, error: BaseException) -> None:
        """Log an uncaught handler error with full internal detail."""
        log_data: dict[str, Any] = {
            "request_id": ctx.request_id,
            "route": ctx.route_path,
            "method": method,
            "error_type": type(error).__name__,
        }

        # Upstream errors keep their internal detail off the public message
        detail = getattr(error, "detail", None) or str(error)

        logger.error(
            f"[{ctx.request_id}] API error: {detail}",
            extra={"structured": log_data},
            exc_info=error,
        )
