"""
tests/test_permissions.py — Raid VC Overwrite Computation Tests
================================================================
"""

from __future__ import annotations

from raidkeeper.engine.permissions import (
    DEFAULT_OPEN_PERMISSIONS,
    DEFAULT_PRE_OPEN_PERMISSIONS,
    PermissionEntry,
    compute_overwrites,
    parse_entries,
)

EVERYONE = 1
MEMBER = 2
LEADER = 3
SECTION_LEADER = 4


def _compute(entries, *, guild_roles=None, section_roles=None, existing=None):
    existing = existing if existing is not None else {MEMBER, LEADER, SECTION_LEADER}
    result = compute_overwrites(
        entries,
        everyone_id=EVERYONE,
        member_role_id=MEMBER,
        guild_roles=guild_roles or {"leader": LEADER},
        section_leader_roles=section_roles or {},
        role_exists=lambda rid: rid in existing,
    )
    return {ow.role_id: ow for ow in result}


class TestComputeOverwrites:
    def test_pre_open_members_cannot_connect(self):
        ows = _compute(DEFAULT_PRE_OPEN_PERMISSIONS)
        assert "connect" in ows[MEMBER].deny
        assert "view_channel" in ows[MEMBER].allow
        assert "connect" in ows[EVERYONE].deny

    def test_open_members_can_connect(self):
        ows = _compute(DEFAULT_OPEN_PERMISSIONS)
        assert "connect" in ows[MEMBER].allow
        assert "connect" not in ows[EVERYONE].deny

    def test_staff_get_move_members(self):
        ows = _compute(DEFAULT_OPEN_PERMISSIONS)
        assert "move_members" in ows[LEADER].allow

    def test_missing_roles_skipped(self):
        ows = _compute(DEFAULT_OPEN_PERMISSIONS, existing=set())
        assert set(ows) == {EVERYONE}

    def test_empty_entry_skipped(self):
        ows = _compute((PermissionEntry("member"),))
        assert MEMBER not in ows

    def test_leader_entry_covers_guild_and_section_roles(self):
        entries = (PermissionEntry("leader", allow=("speak",)),)
        ows = _compute(entries, section_roles={"leader": SECTION_LEADER})
        assert ows[LEADER].allow == frozenset({"speak"})
        assert ows[SECTION_LEADER].allow == frozenset({"speak"})

    def test_raw_snowflake_entry_applies_last(self):
        entries = (
            PermissionEntry("leader", allow=("speak",)),
            PermissionEntry(str(LEADER), deny=("speak",)),
        )
        ows = _compute(entries)
        assert ows[LEADER].deny == frozenset({"speak"})
        assert ows[LEADER].allow == frozenset()

    def test_parse_entries(self):
        parsed = parse_entries([{"id": "member", "allow": ["connect"]}, {"id": "42", "deny": ["speak"]}])
        assert parsed[0] == PermissionEntry("member", allow=("connect",))
        assert parsed[1].target == "42"
