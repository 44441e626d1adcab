"""
tests/test_quota.py — Quota Point Math Tests
=============================================
Point lookup, best-ledger selection, the weekly reset boundary,
standings and the reset report.
"""

from __future__ import annotations

from datetime import UTC, datetime

from raidkeeper.constants import quota_log_label
from raidkeeper.engine.quota import (
    LedgerSnapshot,
    LogEntry,
    QuotaStatus,
    build_report,
    eligible_ledgers,
    find_best_ledger,
    is_due,
    next_reset,
    point_value,
    qualify,
    standings,
    total_points,
)

_VALUES = {"RunComplete": 1, "RunComplete:SHATTERS": 3, "Parse": 2}


def _ledger(role_id=10, threshold=10, entries=(), point_values=None) -> LedgerSnapshot:
    return LedgerSnapshot(
        guild_id=1,
        role_id=role_id,
        threshold=threshold,
        point_values=_VALUES if point_values is None else point_values,
        last_reset=datetime(2024, 1, 1, 12, 0, tzinfo=UTC),
        entries=tuple(entries),
    )


# ===========================================================================
# Point values
# ===========================================================================
class TestPointValue:
    def test_qualify(self):
        assert qualify("RunComplete", "SHATTERS") == "RunComplete:SHATTERS"
        assert qualify("Parse") == "Parse"
        assert qualify("Parse", "SHATTERS") == "Parse"

    def test_qualified_key_wins(self):
        assert point_value(_VALUES, "RunComplete", "SHATTERS") == 3

    def test_falls_back_to_base_type(self):
        assert point_value(_VALUES, "RunComplete", "NEST") == 1
        assert point_value(_VALUES, "RunComplete:NEST") == 1

    def test_unknown_type_worth_nothing(self):
        assert point_value(_VALUES, "RunFailed") == 0

    def test_total_points_uses_amounts(self):
        ledger = _ledger(entries=[
            LogEntry(1, "RunComplete:SHATTERS", 2),
            LogEntry(1, "Parse"),
            LogEntry(2, "Parse"),
        ])
        assert total_points(ledger, 1) == 8
        assert total_points(ledger, 2) == 2

    def test_labels(self):
        assert quota_log_label("RunComplete:SHATTERS", {"SHATTERS": "The Shatters"}) == (
            "Run Complete (The Shatters)"
        )
        assert quota_log_label("ModmailRespond") == "Respond to Modmail"


# ===========================================================================
# Ledger selection
# ===========================================================================
class TestBestLedger:
    def test_only_held_roles_with_value(self):
        a = _ledger(role_id=10)
        b = _ledger(role_id=20, point_values={"Parse": 1})
        c = _ledger(role_id=30)
        found = eligible_ledgers([a, b, c], [10, 20], "RunComplete")
        assert [l.role_id for l in found] == [10]

    def test_zero_threshold_never_eligible(self):
        assert eligible_ledgers([_ledger(threshold=0)], [10], "Parse") == []

    def test_furthest_behind_wins(self):
        a = _ledger(role_id=10, threshold=10, entries=[LogEntry(1, "Parse", 3)])  # 6/10
        b = _ledger(role_id=20, threshold=5, entries=[LogEntry(1, "Parse", 1)])   # 2/5
        assert find_best_ledger([a, b], 1, [10, 20], "Parse") == 20

    def test_tie_keeps_first(self):
        a = _ledger(role_id=10)
        b = _ledger(role_id=20)
        assert find_best_ledger([a, b], 1, [10, 20], "Parse") == 10

    def test_nothing_eligible(self):
        assert find_best_ledger([_ledger()], 1, [99], "Parse") is None


# ===========================================================================
# Reset boundary
# ===========================================================================
class TestNextReset:
    def test_next_sunday_night(self):
        monday = datetime(2024, 1, 1, 12, 0, tzinfo=UTC)
        assert next_reset(monday, 0, 2359) == datetime(2024, 1, 7, 23, 59, tzinfo=UTC)

    def test_later_the_same_day(self):
        sunday_morning = datetime(2024, 1, 7, 10, 0, tzinfo=UTC)
        assert next_reset(sunday_morning, 0, 2359) == datetime(2024, 1, 7, 23, 59, tzinfo=UTC)

    def test_exactly_on_anchor_rolls_a_week(self):
        anchor = datetime(2024, 1, 7, 23, 59, tzinfo=UTC)
        assert next_reset(anchor, 0, 2359) == datetime(2024, 1, 14, 23, 59, tzinfo=UTC)

    def test_manual_only(self):
        assert next_reset(datetime(2024, 1, 1, tzinfo=UTC), -1, 0) is None

    def test_is_due_at_boundary(self):
        last = datetime(2024, 1, 1, 12, 0, tzinfo=UTC)
        assert not is_due(last, 0, 2359, datetime(2024, 1, 7, 23, 58, tzinfo=UTC))
        assert is_due(last, 0, 2359, datetime(2024, 1, 7, 23, 59, tzinfo=UTC))
        assert not is_due(last, -1, 0, datetime(2030, 1, 1, tzinfo=UTC))


# ===========================================================================
# Standings & report
# ===========================================================================
class TestStandings:
    def test_statuses(self):
        ledger = _ledger(threshold=4, entries=[
            LogEntry(1, "Parse", 2),       # 4 → complete
            LogEntry(2, "RunFailed"),      # 0 pts but logged → incomplete
        ])
        rows = {r.member_id: r for r in standings(ledger, [1, 2, 3])}
        assert rows[1].status == QuotaStatus.COMPLETE
        assert rows[2].status == QuotaStatus.INCOMPLETE
        assert rows[3].status == QuotaStatus.NOT_STARTED

    def test_includes_loggers_without_role(self):
        ledger = _ledger(entries=[LogEntry(7, "Parse")])
        assert [r.member_id for r in standings(ledger, [])] == [7]

    def test_sorted_by_points(self):
        ledger = _ledger(entries=[LogEntry(1, "Parse"), LogEntry(2, "Parse", 5)])
        assert [r.member_id for r in standings(ledger, [1, 2])] == [2, 1]

    def test_breakdown(self):
        ledger = _ledger(entries=[LogEntry(1, "RunComplete:SHATTERS", 2)])
        row = standings(ledger, [1])[0]
        assert row.breakdown == {"RunComplete:SHATTERS": [2, 6]}

    def test_report_sections(self):
        ledger = _ledger(threshold=2, entries=[LogEntry(1, "Parse")])
        rows = standings(ledger, [1, 2])
        text = build_report(
            ledger,
            rows,
            role_name="Raid Leader",
            names={1: "Alice"},
            period_end=datetime(2024, 1, 7, 23, 59, tzinfo=UTC),
            dungeon_names={"SHATTERS": "The Shatters"},
        )
        assert "=== QUOTA SUMMARY ===" in text
        assert "=== POINT SUMMARY ===" in text
        assert "=== MEMBER SUMMARY ===" in text
        assert "Run Complete (The Shatters): 3 PTS" in text
        assert "[COMPLETE] Alice: 2/2" in text
        assert "[NOT STARTED] 2: 0/2" in text
