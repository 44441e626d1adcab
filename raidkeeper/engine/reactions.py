"""
raidkeeper.engine.reactions — Reaction Catalog Resolver
========================================================

Produces the effective, ordered set of reactions a raid offers:

1. A guild override for the dungeon replaces its reaction list outright.
2. Otherwise built-in and derived dungeons use their built-in list.
3. Custom dungeons resolve each key against the built-in catalog, then
   the guild's custom reactions; unknown keys are skipped.
4. Reactions whose emoji cannot be rendered are dropped.
5. If nitro early location is enabled and the guild has a boost role,
   a ``NITRO`` reaction is appended with that capacity.

Pure function of its inputs — no Discord I/O, no DB I/O.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass

from raidkeeper.constants import NITRO
from raidkeeper.database.models import ReactionCategory
from raidkeeper.engine.catalog import CatalogReaction, builtin_reactions
from raidkeeper.engine.dungeons import CustomDungeon, Dungeon, ReactionSlot
from raidkeeper.engine.guild import GuildSettings

__all__ = ["NITRO_KEY", "ReactionDescriptor", "resolve_reactions"]

NITRO_KEY = "NITRO"


@dataclass(frozen=True, slots=True)
class ReactionDescriptor:
    key: str
    name: str
    category: ReactionCategory
    capacity: int = 0
    emoji: str | None = None
    emoji_id: int | None = None

    @property
    def is_essential(self) -> bool:
        """Capacity-limited reactions take part in early location."""
        return self.capacity > 0

    @property
    def is_early_location(self) -> bool:
        return self.category == ReactionCategory.EARLY_LOCATION

    def emoji_markup(self) -> str:
        if self.emoji_id:
            return f"<:{self.key.lower()}:{self.emoji_id}>"
        return self.emoji or ""


def _lookup(key: str, guild: GuildSettings) -> CatalogReaction | None:
    return builtin_reactions().get(key) or guild.custom_reactions.get(key)


def _slots_for(dungeon: Dungeon, guild: GuildSettings) -> tuple[ReactionSlot, ...]:
    override = guild.dungeon_overrides.get(dungeon.code_name)
    if override is not None:
        return override.reactions
    return dungeon.reactions


def resolve_reactions(
    dungeon: Dungeon,
    guild: GuildSettings,
    *,
    nitro_limit: int = 0,
    emoji_usable: Callable[[CatalogReaction], bool] | None = None,
) -> dict[str, ReactionDescriptor]:
    """Return ``{key: ReactionDescriptor}`` in display order.

    Parameters
    ----------
    dungeon:
        The dungeon being raided.
    guild:
        Guild settings carrying overrides, custom reactions and the
        nitro role.
    nitro_limit:
        Early-location slots granted to boosters; ``0`` disables them.
    emoji_usable:
        Predicate deciding whether a catalog entry's emoji can be shown.
        Defaults to "has any emoji at all".
    """
    usable = emoji_usable or (lambda r: r.has_emoji)
    overridden = dungeon.code_name in guild.dungeon_overrides
    custom = isinstance(dungeon, CustomDungeon)

    resolved: dict[str, ReactionDescriptor] = {}
    for slot in _slots_for(dungeon, guild):
        if slot.key in resolved:
            continue
        if overridden or custom:
            entry = _lookup(slot.key, guild)
        else:
            entry = builtin_reactions().get(slot.key)
        if entry is None or not usable(entry):
            continue
        resolved[slot.key] = ReactionDescriptor(
            key=slot.key,
            name=entry.name,
            category=entry.category,
            capacity=slot.capacity,
            emoji=entry.emoji,
            emoji_id=entry.emoji_id,
        )

    if nitro_limit > 0 and guild.nitro_role_id:
        resolved[NITRO_KEY] = ReactionDescriptor(
            key=NITRO_KEY,
            name="Nitro",
            category=ReactionCategory.EARLY_LOCATION,
            capacity=nitro_limit,
            emoji=NITRO,
        )
    return resolved
