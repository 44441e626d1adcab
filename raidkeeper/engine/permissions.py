"""
raidkeeper.engine.permissions — Raid Voice-Channel Overwrites
==============================================================

Computes the full permission-overwrite set for a raid voice channel from
the section's configured allow/deny lists.  The result always *replaces*
the channel's overwrites; nothing is patched incrementally.

Entries target either a well-known role key (``everyone``, ``member``,
``helper``, ``security``, ``officer``, ``moderator``, ``almost_leader``,
``leader``, ``head_leader``, ``vet_leader``) or a raw role snowflake.
Permission names are discord.py flag names (``connect``, ``view_channel``).
"""

from __future__ import annotations

from collections.abc import Callable, Iterable, Mapping, Sequence
from dataclasses import dataclass

__all__ = [
    "DEFAULT_OPEN_PERMISSIONS",
    "DEFAULT_PRE_OPEN_PERMISSIONS",
    "Overwrite",
    "PermissionEntry",
    "compute_overwrites",
    "parse_entries",
]

_STAFF_ALL = (
    "view_channel", "connect", "speak", "stream",
    "mute_members", "deafen_members", "move_members",
)


@dataclass(frozen=True, slots=True)
class PermissionEntry:
    target: str
    allow: tuple[str, ...] = ()
    deny: tuple[str, ...] = ()


@dataclass(frozen=True, slots=True)
class Overwrite:
    """Resolved overwrite for one role snowflake."""

    role_id: int
    allow: frozenset[str]
    deny: frozenset[str]


def _staff(target: str, *allow: str) -> PermissionEntry:
    return PermissionEntry(target=target, allow=allow or _STAFF_ALL)


_STAFF_DEFAULTS: tuple[PermissionEntry, ...] = (
    _staff("helper", "view_channel", "connect", "speak", "mute_members", "move_members"),
    _staff("security", "view_channel", "connect", "speak", "mute_members", "move_members", "stream"),
    _staff("officer"),
    _staff("moderator"),
    _staff("almost_leader", "view_channel", "connect", "speak", "mute_members", "move_members", "stream"),
    _staff("leader"),
    _staff("head_leader"),
    _staff("vet_leader"),
)

# PRE_OPEN and ACTIVE: members can see the channel but not join it.
DEFAULT_PRE_OPEN_PERMISSIONS: tuple[PermissionEntry, ...] = (
    PermissionEntry("everyone", deny=("view_channel", "connect", "speak", "stream")),
    PermissionEntry("member", allow=("view_channel",), deny=("connect",)),
    *_STAFF_DEFAULTS,
)

# OPEN: members may connect.
DEFAULT_OPEN_PERMISSIONS: tuple[PermissionEntry, ...] = (
    PermissionEntry("everyone", deny=("view_channel", "speak", "stream")),
    PermissionEntry("member", allow=("view_channel", "connect")),
    *_STAFF_DEFAULTS,
)

# Order matters: later slots overwrite earlier ones for the same snowflake.
_GUILD_SLOTS = ("helper", "security", "officer", "moderator")
_UNIVERSAL_LEADER_SLOTS = ("almost_leader", "leader", "head_leader", "vet_leader")
_SECTION_LEADER_SLOTS = ("almost_leader", "leader", "vet_leader")


def parse_entries(raw: Iterable[Mapping] | None) -> tuple[PermissionEntry, ...]:
    """``[{"id": "member", "allow": [...], "deny": [...]}]`` → entries."""
    return tuple(
        PermissionEntry(
            target=str(item["id"]),
            allow=tuple(item.get("allow", ())),
            deny=tuple(item.get("deny", ())),
        )
        for item in raw or ()
    )


def compute_overwrites(
    entries: Sequence[PermissionEntry],
    *,
    everyone_id: int,
    member_role_id: int | None,
    guild_roles: Mapping[str, int],
    section_leader_roles: Mapping[str, int],
    role_exists: Callable[[int], bool],
) -> list[Overwrite]:
    """Merge configured entries into concrete per-role overwrites.

    Entries for roles the guild does not have, and entries with neither
    allow nor deny bits, are dropped.  Raw-snowflake entries are appended
    after the well-known roles.
    """
    by_key = {e.target: e for e in entries}
    slots: list[tuple[int | None, PermissionEntry | None]] = [
        (everyone_id, by_key.get("everyone")),
        (member_role_id, by_key.get("member")),
    ]
    slots.extend((guild_roles.get(k), by_key.get(k)) for k in _GUILD_SLOTS)
    slots.extend((guild_roles.get(k), by_key.get(k)) for k in _UNIVERSAL_LEADER_SLOTS)
    slots.extend((section_leader_roles.get(k), by_key.get(k)) for k in _SECTION_LEADER_SLOTS)
    slots.extend((int(e.target), e) for e in entries if e.target.isdigit())

    result: dict[int, Overwrite] = {}
    for role_id, entry in slots:
        if not role_id or entry is None:
            continue
        if not entry.allow and not entry.deny:
            continue
        if role_id != everyone_id and not role_exists(role_id):
            continue
        result[role_id] = Overwrite(
            role_id=role_id,
            allow=frozenset(entry.allow),
            deny=frozenset(entry.deny),
        )
    return list(result.values())
