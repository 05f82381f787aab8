"""Tests for idempotency key derivation."""

from unittest.mock import patch

import pytest

from backend.ledger_console.errors import ValidationError
from backend.ledger_console.idempotency import derive, derive_strict


def test_derive_with_natural_key_is_stable() -> None:
    assert derive("sale", "ledger_1", "order-42") == "sale:ledger_1:order-42"
    assert derive("sale", "ledger_1", "order-42") == derive("sale", "ledger_1", "order-42")


def test_derive_keys_are_scoped_by_namespace_and_ledger() -> None:
    assert derive("sale", "ledger_1", "x") != derive("refund", "ledger_1", "x")
    assert derive("sale", "ledger_1", "x") != derive("sale", "ledger_2", "x")


def test_derive_falls_back_to_timestamp() -> None:
    with patch("backend.ledger_console.idempotency._now_ns", return_value=1700000000000000000):
        assert derive("sale", "ledger_1") == "sale:ledger_1:1700000000000000000"


def test_derive_fallback_is_not_retry_stable() -> None:
    with patch("backend.ledger_console.idempotency._now_ns", side_effect=[1, 2]):
        assert derive("sale", "ledger_1") != derive("sale", "ledger_1")


def test_derive_strict_prefers_natural_key() -> None:
    assert derive_strict("payout", "ledger_1", "ref-1", "header-key") == "payout:ledger_1:ref-1"


def test_derive_strict_uses_header_when_no_natural_key() -> None:
    assert derive_strict("payout", "ledger_1", None, " header-key ") == "payout:ledger_1:header-key"


@pytest.mark.parametrize("header", [None, "", "   "])
def test_derive_strict_refuses_without_any_key(header: str | None) -> None:
    with pytest.raises(ValidationError) as exc_info:
        derive_strict("payout", "ledger_1", None, header)

    assert exc_info.value.code == "idempotency_key_required"
    assert exc_info.value.status_code == 400


def test_derive_strict_rejects_oversized_key() -> None:
    with pytest.raises(ValidationError) as exc_info:
        derive_strict("payout", "ledger_1", None, "k" * 256)

    assert exc_info.value.code == "idempotency_key_invalid"
