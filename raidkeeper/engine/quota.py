"""
raidkeeper.engine.quota — Quota Point Math
===========================================

Pure calculations over a quota ledger snapshot:

* point lookup with dungeon-qualified fallback,
* per-member totals and breakdowns,
* best-ledger selection across a member's roles,
* the weekly reset boundary,
* the plain-text reset report.

No Discord I/O, no DB I/O.  :mod:`raidkeeper.services.quota_service`
builds :class:`LedgerSnapshot` objects from ORM rows and persists results.
"""

from __future__ import annotations

import enum
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta

from raidkeeper.constants import DUNGEON_QUALIFIED_LOG_TYPES, quota_log_label

__all__ = [
    "LedgerSnapshot",
    "LogEntry",
    "MemberStanding",
    "QuotaStatus",
    "build_report",
    "eligible_ledgers",
    "find_best_ledger",
    "is_due",
    "next_reset",
    "point_value",
    "qualify",
    "standings",
    "total_points",
]

WEEK = timedelta(days=7)


class QuotaStatus(enum.StrEnum):
    COMPLETE = "COMPLETE"
    INCOMPLETE = "INCOMPLETE"
    NOT_STARTED = "NOT STARTED"


@dataclass(frozen=True, slots=True)
class LogEntry:
    member_id: int
    log_type: str
    amount: int = 1
    timestamp: datetime | None = None


@dataclass(frozen=True, slots=True)
class LedgerSnapshot:
    guild_id: int
    role_id: int
    threshold: int
    point_values: Mapping[str, int] = field(default_factory=dict)
    last_reset: datetime | None = None
    entries: tuple[LogEntry, ...] = ()
    channel_id: int | None = None
    message_id: int | None = None


@dataclass(slots=True)
class MemberStanding:
    member_id: int
    points: int = 0
    # {log_type: [count, points]}
    breakdown: dict[str, list[int]] = field(default_factory=dict)
    status: QuotaStatus = QuotaStatus.NOT_STARTED


# ---------------------------------------------------------------------------
# Point values
# ---------------------------------------------------------------------------
def qualify(log_type: str, dungeon_id: str | None = None) -> str:
    """``("RunComplete", "SHATTERS")`` → ``"RunComplete:SHATTERS"``.

    Only run log types carry a dungeon; others come back unchanged.
    """
    if dungeon_id and log_type in DUNGEON_QUALIFIED_LOG_TYPES:
        return f"{log_type}:{dungeon_id}"
    return log_type


def point_value(
    point_values: Mapping[str, int], log_type: str, dungeon_id: str | None = None
) -> int:
    """Points for one unit of *log_type*.

    The dungeon-qualified key wins; otherwise the unqualified key is used.
    A *log_type* that is already qualified (``"RunComplete:SHATTERS"``)
    falls back to its base type the same way.  Unknown types are worth 0.
    """
    full = qualify(log_type, dungeon_id)
    if full in point_values:
        return int(point_values[full])
    base = full.partition(":")[0]
    return int(point_values.get(base, 0))


def total_points(ledger: LedgerSnapshot, member_id: int) -> int:
    return sum(
        e.amount * point_value(ledger.point_values, e.log_type)
        for e in ledger.entries
        if e.member_id == member_id
    )


# ---------------------------------------------------------------------------
# Ledger selection
# ---------------------------------------------------------------------------
def eligible_ledgers(
    ledgers: Iterable[LedgerSnapshot],
    member_role_ids: Iterable[int],
    log_type: str,
    dungeon_id: str | None = None,
) -> list[LedgerSnapshot]:
    """Ledgers for roles the member holds that pay for *log_type*."""
    held = set(member_role_ids)
    return [
        ledger for ledger in ledgers
        if ledger.role_id in held
        and ledger.threshold > 0
        and point_value(ledger.point_values, log_type, dungeon_id) > 0
    ]


def find_best_ledger(
    ledgers: Iterable[LedgerSnapshot],
    member_id: int,
    member_role_ids: Iterable[int],
    log_type: str,
    dungeon_id: str | None = None,
) -> int | None:
    """Role ID of the eligible ledger the member is furthest from completing.

    Ties keep the first ledger in iteration order.
    """
    best_role: int | None = None
    best_ratio = float("inf")
    for ledger in eligible_ledgers(ledgers, member_role_ids, log_type, dungeon_id):
        ratio = total_points(ledger, member_id) / ledger.threshold
        if ratio < best_ratio:
            best_ratio = ratio
            best_role = ledger.role_id
    return best_role


# ---------------------------------------------------------------------------
# Reset boundary
# ---------------------------------------------------------------------------
def _js_weekday(dt: datetime) -> int:
    """Sunday-first weekday (0 = Sunday … 6 = Saturday)."""
    return (dt.weekday() + 1) % 7


def next_reset(last_reset: datetime, day_of_week: int, hhmm: int) -> datetime | None:
    """First weekly anchor strictly after *last_reset*.

    ``day_of_week`` is Sunday-first (0-6); ``hhmm`` is military time.  A
    negative day means resets are manual only and ``None`` is returned.
    """
    if day_of_week < 0:
        return None
    hour, minute = divmod(hhmm, 100)
    diff = (day_of_week + 7 - _js_weekday(last_reset)) % 7
    candidate = (last_reset + timedelta(days=diff)).replace(
        hour=hour, minute=minute, second=0, microsecond=0
    )
    if candidate <= last_reset:
        candidate += WEEK
    return candidate


def is_due(
    last_reset: datetime, day_of_week: int, hhmm: int, now: datetime | None = None
) -> bool:
    boundary = next_reset(last_reset, day_of_week, hhmm)
    if boundary is None:
        return False
    return (now or datetime.now(UTC)) >= boundary


# ---------------------------------------------------------------------------
# Standings & report
# ---------------------------------------------------------------------------
def standings(
    ledger: LedgerSnapshot, role_member_ids: Iterable[int]
) -> list[MemberStanding]:
    """Per-member totals for role holders *and* anyone with log entries.

    Sorted by points, highest first.
    """
    table: dict[int, MemberStanding] = {
        m: MemberStanding(member_id=m) for m in role_member_ids
    }
    for entry in ledger.entries:
        row = table.setdefault(entry.member_id, MemberStanding(member_id=entry.member_id))
        pts = entry.amount * point_value(ledger.point_values, entry.log_type)
        row.points += pts
        counts = row.breakdown.setdefault(entry.log_type, [0, 0])
        counts[0] += entry.amount
        counts[1] += pts

    for row in table.values():
        if ledger.threshold > 0 and row.points >= ledger.threshold:
            row.status = QuotaStatus.COMPLETE
        elif row.points > 0 or row.breakdown:
            row.status = QuotaStatus.INCOMPLETE
        else:
            row.status = QuotaStatus.NOT_STARTED
    return sorted(table.values(), key=lambda r: r.points, reverse=True)


def build_report(
    ledger: LedgerSnapshot,
    rows: list[MemberStanding],
    *,
    role_name: str,
    names: Mapping[int, str],
    period_end: datetime,
    dungeon_names: Mapping[str, str] | None = None,
) -> str:
    """Plain-text reset report: QUOTA, POINT and MEMBER summaries."""
    by_status = {s: sum(1 for r in rows if r.status == s) for s in QuotaStatus}
    start = ledger.last_reset.isoformat(timespec="minutes") if ledger.last_reset else "N/A"

    lines = [
        "=== QUOTA SUMMARY ===",
        f"Role: {role_name} ({ledger.role_id})",
        f"Period: {start} to {period_end.isoformat(timespec='minutes')}",
        f"Minimum Points Needed: {ledger.threshold}",
        f"Members: {len(rows)}",
    ]
    lines.extend(f"- {status.value}: {count}" for status, count in by_status.items())

    lines += ["", "=== POINT SUMMARY ==="]
    if ledger.point_values:
        lines.extend(
            f"- {quota_log_label(k, dungeon_names)}: {v} PTS"
            for k, v in ledger.point_values.items()
        )
    else:
        lines.append("- No point values configured.")

    lines += ["", "=== MEMBER SUMMARY ==="]
    for row in rows:
        name = names.get(row.member_id, str(row.member_id))
        lines.append(f"- [{row.status.value}] {name}: {row.points}/{ledger.threshold}")
        for log_type, (count, pts) in sorted(row.breakdown.items()):
            lines.append(
                f"    - {quota_log_label(log_type, dungeon_names)}: {count} ({pts} PTS)"
            )
    return "\n".join(lines)
