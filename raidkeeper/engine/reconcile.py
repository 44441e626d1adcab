"""
raidkeeper.engine.reconcile — Screenshot Attendance Reconciliation
===================================================================

Compares who is in a raid voice channel against the names read from a
``/who`` screenshot.  Matching is case-insensitive and exact against every
alias in a member's display name (``"Foo | Bar"`` → ``{"Foo", "Bar"}``).

An empty or missing parse is *invalid*, never "zero mismatches".
"""

from __future__ import annotations

import re
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass

__all__ = ["ReconcileResult", "get_all_names", "reconcile"]

_EDGE_NON_LETTERS = re.compile(r"^[^A-Za-z]+|[^A-Za-z]+$")
_LETTERS_ONLY = re.compile(r"^[A-Za-z]+$")


@dataclass(frozen=True, slots=True)
class ReconcileResult:
    in_vc_but_unparsed: tuple[int, ...] = ()
    parsed_but_not_in_vc: tuple[str, ...] = ()
    is_valid: bool = False


INVALID = ReconcileResult()


def get_all_names(display_name: str) -> list[str]:
    """Split a nickname like ``"!Foo | Bar2"`` into its in-game aliases.

    Each ``|``-separated piece is trimmed of leading/trailing non-letters;
    pieces that still contain anything but letters are discarded.
    """
    names: list[str] = []
    for piece in display_name.split("|"):
        cleaned = _EDGE_NON_LETTERS.sub("", piece.strip())
        if cleaned and _LETTERS_ONLY.match(cleaned):
            names.append(cleaned)
    return names


def reconcile(
    vc_members: Mapping[int, Iterable[str]],
    parsed_names: Sequence[str] | None,
) -> ReconcileResult:
    """Find attendance mismatches.

    Parameters
    ----------
    vc_members:
        ``{member_id: aliases}`` for everyone currently in the channel.
    parsed_names:
        Names returned by the screenshot parser, or ``None`` if it failed.
    """
    if not parsed_names:
        return INVALID

    parsed_lower: dict[str, str] = {}
    for name in parsed_names:
        if name.strip():
            parsed_lower.setdefault(name.strip().lower(), name.strip())
    if not parsed_lower:
        return INVALID

    alias_owner: dict[str, int] = {}
    unparsed: list[int] = []
    for member_id, aliases in vc_members.items():
        lowered = {a.lower() for a in aliases}
        for alias in lowered:
            alias_owner.setdefault(alias, member_id)
        if not lowered & parsed_lower.keys():
            unparsed.append(member_id)

    not_in_vc = [
        original for low, original in parsed_lower.items() if low not in alias_owner
    ]
    return ReconcileResult(
        in_vc_but_unparsed=tuple(unparsed),
        parsed_but_not_in_vc=tuple(not_in_vc),
        is_valid=True,
    )
