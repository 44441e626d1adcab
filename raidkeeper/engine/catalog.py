"""
raidkeeper.engine.catalog — Static Reference Data
==================================================

Loads the read-only dungeon and reaction catalogs that ship inside the
package (``raidkeeper/data/*.yaml``).  Both are parsed once per process
and cached; callers must treat the returned mappings as immutable.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Any

import yaml

from raidkeeper.database.models import ReactionCategory
from raidkeeper.engine.dungeons import BuiltinDungeon, builtin_from_dict

logger = logging.getLogger(__name__)

_DATA_DIR = Path(__file__).resolve().parent.parent / "data"


@dataclass(frozen=True, slots=True)
class CatalogReaction:
    """Display data for one reaction key."""

    key: str
    name: str
    category: ReactionCategory
    emoji: str | None = None      # unicode glyph
    emoji_id: int | None = None   # custom guild emoji snowflake

    @property
    def has_emoji(self) -> bool:
        return bool(self.emoji or self.emoji_id)


def reaction_from_dict(key: str, raw: Mapping) -> CatalogReaction:
    emoji_id = raw.get("emoji_id")
    return CatalogReaction(
        key=key,
        name=str(raw.get("name", key)),
        category=ReactionCategory(raw.get("category", ReactionCategory.SPECIAL)),
        emoji=raw.get("emoji") or None,
        emoji_id=int(emoji_id) if emoji_id else None,
    )


def _load_yaml(filename: str) -> Any:
    path = _DATA_DIR / filename
    with open(path, encoding="utf-8") as fh:
        return yaml.safe_load(fh)


@lru_cache(maxsize=1)
def builtin_dungeons() -> dict[str, BuiltinDungeon]:
    """Return ``{code_name: BuiltinDungeon}`` in catalog order."""
    dungeons = {
        d.code_name: d
        for d in (builtin_from_dict(raw) for raw in _load_yaml("dungeons.yaml") or [])
    }
    logger.info("Loaded %d built-in dungeons", len(dungeons))
    return dungeons


@lru_cache(maxsize=1)
def builtin_reactions() -> dict[str, CatalogReaction]:
    """Return ``{reaction_key: CatalogReaction}`` for the built-in catalog."""
    raw = _load_yaml("reactions.yaml") or {}
    return {key: reaction_from_dict(key, entry) for key, entry in raw.items()}
