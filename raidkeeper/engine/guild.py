"""
raidkeeper.engine.guild — Guild & Section Settings Snapshots
=============================================================

Immutable, Discord-free views of a guild's raid configuration.  The
guild repository builds these from ORM rows; the resolver, permission
computation and raid instance only ever see the snapshots, never a live
session.
"""

from __future__ import annotations

import math
from collections.abc import Mapping
from dataclasses import dataclass, field

from raidkeeper.constants import DEFAULT_VC_LIMIT
from raidkeeper.engine.catalog import CatalogReaction, builtin_dungeons
from raidkeeper.engine.dungeons import Dungeon, ReactionSlot
from raidkeeper.engine.permissions import (
    DEFAULT_OPEN_PERMISSIONS,
    DEFAULT_PRE_OPEN_PERMISSIONS,
    PermissionEntry,
)

__all__ = ["DungeonOverride", "GuildSettings", "SectionSettings"]


@dataclass(frozen=True, slots=True)
class DungeonOverride:
    """A guild's complete replacement reaction list for one dungeon."""

    code_name: str
    reactions: tuple[ReactionSlot, ...] = ()
    vc_limit: int | None = None


@dataclass(frozen=True, slots=True)
class SectionSettings:
    identifier: str
    name: str
    is_main: bool = False
    verified_role_id: int | None = None
    afk_check_channel_id: int | None = None
    control_panel_channel_id: int | None = None
    leader_roles: Mapping[str, int] = field(default_factory=dict)
    vc_limit: int = DEFAULT_VC_LIMIT
    nitro_limit: int | None = None
    afk_check_timeout_minutes: int | None = None
    allowed_dungeons: tuple[str, ...] = ()
    additional_info: str = ""
    pre_open_permissions: tuple[PermissionEntry, ...] = DEFAULT_PRE_OPEN_PERMISSIONS
    open_permissions: tuple[PermissionEntry, ...] = DEFAULT_OPEN_PERMISSIONS

    def effective_nitro_limit(self, vc_limit: int) -> int:
        """Nitro early-location cap; unset means 10% of the VC, at least one."""
        if self.nitro_limit is not None:
            return self.nitro_limit
        return max(math.floor(vc_limit * 0.1), 1)


@dataclass(frozen=True, slots=True)
class GuildSettings:
    guild_id: int
    roles: Mapping[str, int] = field(default_factory=dict)
    channels: Mapping[str, int] = field(default_factory=dict)
    nitro_role_id: int | None = None
    custom_reactions: Mapping[str, CatalogReaction] = field(default_factory=dict)
    custom_dungeons: Mapping[str, Dungeon] = field(default_factory=dict)
    dungeon_overrides: Mapping[str, DungeonOverride] = field(default_factory=dict)
    sections: Mapping[str, SectionSettings] = field(default_factory=dict)
    quota_reset_day: int = -1
    quota_reset_time: int = 0

    def find_dungeon(self, code_name: str) -> Dungeon | None:
        """Built-ins first, then the guild's own dungeons."""
        return builtin_dungeons().get(code_name) or self.custom_dungeons.get(code_name)

    def all_dungeons(self) -> dict[str, Dungeon]:
        return {**builtin_dungeons(), **self.custom_dungeons}

    def section(self, identifier: str) -> SectionSettings | None:
        return self.sections.get(identifier)

    def leader_role_ids(self, section: SectionSettings) -> set[int]:
        """Roles allowed to lead raids in *section*."""
        ids = {
            self.roles.get(k)
            for k in ("almost_leader", "leader", "head_leader", "vet_leader")
        }
        ids.update(section.leader_roles.values())
        return {i for i in ids if i}
