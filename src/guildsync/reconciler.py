"""
Reconciler: turns raw roster entries into store rows and computes the
new-vs-existing diff.  Pure: no I/O, no shared state.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Iterable, List, Optional, Set

from guildsync.roster_client import RawMember

# Discord snowflakes are 17-19 decimal digits.
EXTERNAL_ID_RE = re.compile(r"^\d{17,19}$")

SHEET_COLUMNS = (
    "discord_id",
    "discord_username_display",
    "discord_username_actual",
    "server_join_date",
    "is_banned",
    "is_active",
    "last_updated",
)


def is_valid_external_id(value: Any) -> bool:
    return isinstance(value, str) and EXTERNAL_ID_RE.match(value) is not None


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _iso(dt: datetime) -> str:
    """ISO-8601 with millisecond precision and a ``Z`` suffix."""
    return dt.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


@dataclass(frozen=True, slots=True)
class CanonicalRow:
    """Store-schema representation of one roster entry."""

    external_id: str
    display_name: str
    account_name: str
    join_date: str
    is_banned: bool
    is_active: bool
    last_updated: str


def to_sheet_row(row: CanonicalRow) -> List[str]:
    """Serialize to the fixed 7-column order, booleans as ``"true"``/``"false"``."""
    return [
        row.external_id,
        row.display_name,
        row.account_name,
        row.join_date,
        "true" if row.is_banned else "false",
        "true" if row.is_active else "false",
        row.last_updated,
    ]


def _non_empty_str(value: Any) -> Optional[str]:
    if isinstance(value, str) and value:
        return value
    return None


def resolve_display_name(member: RawMember) -> str:
    """Nickname, then global display name, then account name."""
    user = member.get("user") or {}
    return (
        _non_empty_str(member.get("nick"))
        or _non_empty_str(user.get("global_name"))
        or str(user.get("username", ""))
    )


def _is_valid_member(member: Any) -> bool:
    if not isinstance(member, dict):
        return False
    user = member.get("user")
    if not isinstance(user, dict):
        return False
    if user.get("bot") is True:
        return False
    if _non_empty_str(user.get("id")) is None or _non_empty_str(user.get("username")) is None:
        return False
    if not is_valid_external_id(user["id"]):
        return False
    return isinstance(member.get("joined_at"), str)


def transform(
    raw_members: Iterable[RawMember],
    now: Callable[[], datetime] = _utc_now,
) -> List[CanonicalRow]:
    """Build canonical rows, dropping bots and malformed entries.

    Args:
        raw_members: Entries as returned by :meth:`RosterClient.fetch_all`.
        now: Clock used for ``last_updated``.
    """
    stamp = _iso(now())
    rows: List[CanonicalRow] = []
    for member in raw_members:
        if not _is_valid_member(member):
            continue
        user = member["user"]
        rows.append(
            CanonicalRow(
                external_id=user["id"],
                display_name=resolve_display_name(member),
                account_name=user["username"],
                join_date=member["joined_at"],
                is_banned=False,
                is_active=True,
                last_updated=stamp,
            )
        )
    return rows


def filter_new(rows: Iterable[CanonicalRow], existing_ids: Set[str]) -> List[CanonicalRow]:
    """Rows whose ``external_id`` is not in *existing_ids*, order preserved."""
    return [row for row in rows if row.external_id not in existing_ids]
