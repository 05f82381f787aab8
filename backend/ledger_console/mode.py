"""Live/test partition selection persisted in cookies.

The mode lives in two independent cookies: ``livemode`` ("true"/"false") and
``active_ledger_group`` (the active partition id). Both are read from the
incoming request only. ``write_mode`` sets them in one call; the partition
argument is three-way:

- omitted: the partition cookie is left as it is
- ``None``: the partition cookie is deleted
- a string: the partition cookie is overwritten
"""

from collections.abc import Mapping
from dataclasses import dataclass
from enum import Enum
from typing import Final

from starlette.responses import Response

LIVEMODE_COOKIE = "livemode"
ACTIVE_LEDGER_GROUP_COOKIE = "active_ledger_group"
MODE_COOKIE_MAX_AGE = 60 * 60 * 24 * 365


class _Unset(Enum):
    token = 0


UNSET: Final = _Unset.token


@dataclass(frozen=True)
class ModeContext:
    """Resolved mode for one request."""

    livemode: bool
    active_partition_id: str | None
    readonly: bool


def read_mode(cookies: Mapping[str, str], *, readonly: bool) -> ModeContext:
    """Resolve the mode from request cookies.

    ``readonly`` comes from the caller (identity claims or settings), never
    from a cookie.
    """
    partition = cookies.get(ACTIVE_LEDGER_GROUP_COOKIE) or None
    return ModeContext(
        livemode=cookies.get(LIVEMODE_COOKIE) == "true",
        active_partition_id=partition,
        readonly=readonly,
    )


def write_mode(
    response: Response,
    livemode: bool,
    active_partition_id: str | None | _Unset = UNSET,
    *,
    secure: bool,
) -> None:
    """Persist the mode cookies on ``response``."""
    response.set_cookie(
        LIVEMODE_COOKIE,
        "true" if livemode else "false",
        max_age=MODE_COOKIE_MAX_AGE,
        path="/",
        httponly=True,
        samesite="lax",
        secure=secure,
    )

    if active_partition_id is UNSET:
        return

    if active_partition_id is None:
        response.delete_cookie(
            ACTIVE_LEDGER_GROUP_COOKIE,
            path="/",
            httponly=True,
            samesite="lax",
            secure=secure,
        )
        return

    response.set_cookie(
        ACTIVE_LEDGER_GROUP_COOKIE,
        active_partition_id,
        max_age=MODE_COOKIE_MAX_AGE,
        path="/",
        httponly=True,
        samesite="lax",
        secure=secure,
    )
