"""
raidkeeper.engine.dungeons — Dungeon Definitions
=================================================

Three kinds of dungeon can be raided:

* **Built-in** — shipped in ``raidkeeper/data/dungeons.yaml``.
* **Derived** — a guild-defined dungeon that borrows a built-in's
  reaction list (``base: SHATTERS``) but has its own name and colors.
* **Custom** — a guild-defined dungeon with its own reaction-key list,
  resolved against the built-in and guild reaction catalogs at raid time.

The kinds are separate frozen dataclasses joined in the :data:`Dungeon`
union; callers branch with ``isinstance`` rather than probing optional
fields.  No Discord I/O, no DB I/O.
"""

from __future__ import annotations

import enum
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from typing import ClassVar

__all__ = [
    "BuiltinDungeon",
    "CustomDungeon",
    "DerivedDungeon",
    "Dungeon",
    "DungeonKind",
    "ReactionSlot",
    "dungeon_from_config",
    "parse_slots",
]


class DungeonKind(enum.StrEnum):
    BUILTIN = "builtin"
    DERIVED = "derived"
    CUSTOM = "custom"


@dataclass(frozen=True, slots=True)
class ReactionSlot:
    """A reaction key offered by a dungeon and how many may claim it."""

    key: str
    capacity: int = 0


@dataclass(frozen=True, slots=True)
class BuiltinDungeon:
    code_name: str
    name: str
    key_reactions: tuple[ReactionSlot, ...] = ()
    other_reactions: tuple[ReactionSlot, ...] = ()
    colors: tuple[int, ...] = ()
    portal_emoji: str | None = None
    category: str = ""

    kind: ClassVar[DungeonKind] = DungeonKind.BUILTIN

    @property
    def reactions(self) -> tuple[ReactionSlot, ...]:
        return self.key_reactions + self.other_reactions


@dataclass(frozen=True, slots=True)
class DerivedDungeon:
    code_name: str
    name: str
    base: BuiltinDungeon
    colors: tuple[int, ...] = ()
    portal_emoji: str | None = None

    kind: ClassVar[DungeonKind] = DungeonKind.DERIVED

    @property
    def reactions(self) -> tuple[ReactionSlot, ...]:
        return self.base.reactions


@dataclass(frozen=True, slots=True)
class CustomDungeon:
    code_name: str
    name: str
    reactions: tuple[ReactionSlot, ...] = ()
    colors: tuple[int, ...] = ()
    portal_emoji: str | None = None

    kind: ClassVar[DungeonKind] = DungeonKind.CUSTOM


Dungeon = BuiltinDungeon | DerivedDungeon | CustomDungeon


# ---------------------------------------------------------------------------
# Parsing helpers (YAML / JSON column → dataclasses)
# ---------------------------------------------------------------------------
def parse_slots(raw: Iterable[Mapping] | None) -> tuple[ReactionSlot, ...]:
    """Turn ``[{"key": ..., "capacity": ...}]`` into :class:`ReactionSlot` tuples."""
    return tuple(
        ReactionSlot(key=str(item["key"]), capacity=int(item.get("capacity", 0)))
        for item in raw or ()
    )


def builtin_from_dict(raw: Mapping) -> BuiltinDungeon:
    return BuiltinDungeon(
        code_name=str(raw["code_name"]),
        name=str(raw["name"]),
        key_reactions=parse_slots(raw.get("key_reactions")),
        other_reactions=parse_slots(raw.get("other_reactions")),
        colors=tuple(int(c) for c in raw.get("colors", ())),
        portal_emoji=raw.get("portal_emoji"),
        category=str(raw.get("category", "")),
    )


def dungeon_from_config(
    raw: Mapping, builtins: Mapping[str, BuiltinDungeon]
) -> DerivedDungeon | CustomDungeon:
    """Build a guild-defined dungeon from its ``custom_dungeons`` JSON entry.

    An entry whose ``base`` names a known built-in becomes a
    :class:`DerivedDungeon`; anything else is a :class:`CustomDungeon`.
    """
    colors = tuple(int(c) for c in raw.get("colors", ()))
    base_code = raw.get("base")
    if base_code and base_code in builtins:
        return DerivedDungeon(
            code_name=str(raw["code_name"]),
            name=str(raw.get("name") or builtins[base_code].name),
            base=builtins[base_code],
            colors=colors or builtins[base_code].colors,
            portal_emoji=raw.get("portal_emoji") or builtins[base_code].portal_emoji,
        )
    return CustomDungeon(
        code_name=str(raw["code_name"]),
        name=str(raw.get("name") or raw["code_name"]),
        reactions=parse_slots(raw.get("reactions")),
        colors=colors,
        portal_emoji=raw.get("portal_emoji"),
    )
