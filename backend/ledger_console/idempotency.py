"""Idempotency keys for side-effecting ledger engine calls.

``derive`` with a natural key (e.g. the caller's reference id) is stable under
retry. Without one it falls back to a timestamp, which is NOT idempotent: a
retry after a failure yields a new key. Money-moving calls use
``derive_strict``, which refuses to fall back and requires a caller-supplied
``Idempotency-Key`` header instead.
"""

import time

from backend.ledger_console.errors import ValidationError

IDEMPOTENCY_HEADER = "idempotency-key"
MAX_KEY_PART_LENGTH = 255


def _now_ns() -> int:
    return time.time_ns()


def derive(namespace: str, ledger_id: str, natural_key: str | None = None) -> str:
    """Build ``namespace:ledger_id:natural_key``.

    Falls back to ``namespace:ledger_id:<unix time in ns>`` when no natural
    key is given.
    """
    if natural_key:
        return f"{namespace}:{ledger_id}:{natural_key}"
    return f"{namespace}:{ledger_id}:{_now_ns()}"


def derive_strict(
    namespace: str,
    ledger_id: str,
    natural_key: str | None = None,
    idempotency_header: str | None = None,
) -> str:
    """Build a retry-stable key or refuse.

    Raises:
        ValidationError: Neither a natural key nor an Idempotency-Key header
            was supplied, or the supplied key is too long
    """
    key = natural_key or (idempotency_header.strip() if idempotency_header else None)
    if not key:
        raise ValidationError(
            "reference_id or Idempotency-Key header is required",
            code="idempotency_key_required",
        )
    if len(key) > MAX_KEY_PART_LENGTH:
        raise ValidationError("Idempotency key is too long", code="idempotency_key_invalid")
    return derive(namespace, ledger_id, key)
