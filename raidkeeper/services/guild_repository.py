"""
raidkeeper.services.guild_repository — Guild State Repository
==============================================================

Synchronous DB access for guild configuration and the live-raid journal.
Call every function through :func:`~raidkeeper.database.engine.run_db`
from async code.

Updates are row-level (matched by guild ID, section identifier or raid
voice-channel ID), so writes for different raids or sections never
clobber each other.  Functions that update an existing row return
``None`` when the row has disappeared; callers treat that as a
recoverable miss, not an error.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Any

from sqlalchemy import Engine, delete, select
from sqlalchemy.orm import Session

from raidkeeper.constants import DEFAULT_VC_LIMIT
from raidkeeper.database.models import ActiveRaid, GuildConfig, RaidClaim, Section
from raidkeeper.engine.catalog import builtin_dungeons, reaction_from_dict
from raidkeeper.engine.dungeons import dungeon_from_config, parse_slots
from raidkeeper.engine.guild import DungeonOverride, GuildSettings, SectionSettings
from raidkeeper.engine.permissions import (
    DEFAULT_OPEN_PERMISSIONS,
    DEFAULT_PRE_OPEN_PERMISSIONS,
    parse_entries,
)

logger = logging.getLogger(__name__)

_GUILD_FIELDS = frozenset({
    "roles", "channels", "nitro_role_id", "custom_reactions", "custom_dungeons",
    "dungeon_overrides", "quota_reset_day", "quota_reset_time",
})
_SECTION_FIELDS = frozenset({
    "name", "is_main", "verified_role_id", "afk_check_channel_id",
    "control_panel_channel_id", "leader_roles", "afk_check",
})
_RAID_FIELDS = frozenset({"location", "raid_message", "phase", "members_joined"})


# ---------------------------------------------------------------------------
# Raid snapshot DTO
# ---------------------------------------------------------------------------
@dataclass(slots=True)
class RaidRecord:
    """Serializable snapshot of one live raid."""

    guild_id: int
    vc_id: int
    section_identifier: str
    dungeon_code: str
    initiator_id: int
    afk_check_channel_id: int
    control_panel_channel_id: int
    afk_check_message_id: int
    control_panel_message_id: int
    phase: str
    location: str = ""
    raid_message: str = ""
    members_joined: list[int] = field(default_factory=list)
    claims: list[tuple[int, str]] = field(default_factory=list)


def _record_from_row(row: ActiveRaid) -> RaidRecord:
    return RaidRecord(
        guild_id=row.guild_id,
        vc_id=row.vc_id,
        section_identifier=row.section_identifier,
        dungeon_code=row.dungeon_code,
        initiator_id=row.initiator_id,
        afk_check_channel_id=row.afk_check_channel_id,
        control_panel_channel_id=row.control_panel_channel_id,
        afk_check_message_id=row.afk_check_message_id,
        control_panel_message_id=row.control_panel_message_id,
        phase=row.phase,
        location=row.location or "",
        raid_message=row.raid_message or "",
        members_joined=[int(m) for m in row.members_joined or []],
        claims=[(c.member_id, c.reaction_key) for c in row.claims],
    )


# ---------------------------------------------------------------------------
# ORM → settings snapshot
# ---------------------------------------------------------------------------
def _int_map(raw: dict | None) -> dict[str, int]:
    return {k: int(v) for k, v in (raw or {}).items() if v}


def section_settings(row: Section) -> SectionSettings:
    props: dict = row.afk_check or {}
    perms: dict = props.get("permissions") or {}
    nitro = props.get("nitro_early_location_limit")
    timeout = props.get("afk_check_timeout")
    return SectionSettings(
        identifier=row.identifier,
        name=row.name,
        is_main=bool(row.is_main),
        verified_role_id=row.verified_role_id,
        afk_check_channel_id=row.afk_check_channel_id,
        control_panel_channel_id=row.control_panel_channel_id,
        leader_roles=_int_map(row.leader_roles),
        vc_limit=int(props.get("vc_limit") or DEFAULT_VC_LIMIT),
        nitro_limit=int(nitro) if nitro is not None else None,
        afk_check_timeout_minutes=int(timeout) if timeout else None,
        allowed_dungeons=tuple(props.get("allowed_dungeons") or ()),
        additional_info=str(props.get("additional_info") or ""),
        pre_open_permissions=(
            parse_entries(perms["pre_open"]) if "pre_open" in perms
            else DEFAULT_PRE_OPEN_PERMISSIONS
        ),
        open_permissions=(
            parse_entries(perms["open"]) if "open" in perms
            else DEFAULT_OPEN_PERMISSIONS
        ),
    )


def guild_settings(row: GuildConfig) -> GuildSettings:
    builtins = builtin_dungeons()
    custom_dungeons = {}
    for raw in row.custom_dungeons or []:
        dungeon = dungeon_from_config(raw, builtins)
        custom_dungeons[dungeon.code_name] = dungeon

    overrides = {
        raw["code_name"]: DungeonOverride(
            code_name=raw["code_name"],
            reactions=parse_slots(raw.get("reactions")),
            vc_limit=int(raw["vc_limit"]) if raw.get("vc_limit") else None,
        )
        for raw in row.dungeon_overrides or []
    }

    return GuildSettings(
        guild_id=row.guild_id,
        roles=_int_map(row.roles),
        channels=_int_map(row.channels),
        nitro_role_id=row.nitro_role_id,
        custom_reactions={
            raw["key"]: reaction_from_dict(raw["key"], raw)
            for raw in row.custom_reactions or []
        },
        custom_dungeons=custom_dungeons,
        dungeon_overrides=overrides,
        sections={s.identifier: section_settings(s) for s in row.sections},
        quota_reset_day=row.quota_reset_day if row.quota_reset_day is not None else -1,
        quota_reset_time=row.quota_reset_time or 0,
    )


# ---------------------------------------------------------------------------
# Guild config
# ---------------------------------------------------------------------------
def get_or_create_guild(engine: Engine, guild_id: int) -> GuildSettings:
    """Return the guild's settings, inserting an empty config on first use."""
    with Session(engine) as session:
        row = session.get(GuildConfig, guild_id)
        if row is None:
            row = GuildConfig(
                guild_id=guild_id,
                roles={},
                channels={},
                custom_reactions=[],
                custom_dungeons=[],
                dungeon_overrides=[],
                quota_reset_day=-1,
                quota_reset_time=0,
            )
            session.add(row)
            session.commit()
            logger.info("Created guild config for %d", guild_id)
        return guild_settings(row)


def get_guild(engine: Engine, guild_id: int) -> GuildSettings | None:
    """Read-only lookup; ``None`` for a guild the bot has never configured."""
    with Session(engine) as session:
        row = session.get(GuildConfig, guild_id)
        return guild_settings(row) if row else None


def update_guild(engine: Engine, guild_id: int, **fields: Any) -> GuildSettings | None:
    """Set top-level guild fields; ``None`` if the guild has no config row."""
    unknown = set(fields) - _GUILD_FIELDS
    if unknown:
        raise ValueError(f"Unknown guild config fields: {sorted(unknown)}")
    with Session(engine) as session:
        row = session.get(GuildConfig, guild_id)
        if row is None:
            return None
        for key, value in fields.items():
            setattr(row, key, value)
        session.commit()
        return guild_settings(row)


def upsert_section(
    engine: Engine, guild_id: int, identifier: str, **fields: Any
) -> SectionSettings:
    """Create or update a section; the guild row is created if needed.

    ``afk_check`` is merged key-by-key into the stored properties; a
    ``None`` value removes that key.
    """
    unknown = set(fields) - _SECTION_FIELDS
    if unknown:
        raise ValueError(f"Unknown section fields: {sorted(unknown)}")
    get_or_create_guild(engine, guild_id)
    with Session(engine) as session:
        row = session.scalar(
            select(Section).where(
                Section.guild_id == guild_id, Section.identifier == identifier
            )
        )
        if row is None:
            row = Section(
                guild_id=guild_id,
                identifier=identifier,
                name=fields.get("name", identifier),
                leader_roles={},
                afk_check={},
            )
            session.add(row)
        for key, value in fields.items():
            if key == "afk_check":
                merged = {**(row.afk_check or {}), **value}
                value = {k: v for k, v in merged.items() if v is not None}
            setattr(row, key, value)
        session.commit()
        return section_settings(row)


# ---------------------------------------------------------------------------
# Live-raid journal
# ---------------------------------------------------------------------------
def insert_raid(engine: Engine, record: RaidRecord) -> None:
    with Session(engine) as session:
        session.merge(ActiveRaid(
            vc_id=record.vc_id,
            guild_id=record.guild_id,
            section_identifier=record.section_identifier,
            dungeon_code=record.dungeon_code,
            initiator_id=record.initiator_id,
            afk_check_channel_id=record.afk_check_channel_id,
            control_panel_channel_id=record.control_panel_channel_id,
            afk_check_message_id=record.afk_check_message_id,
            control_panel_message_id=record.control_panel_message_id,
            location=record.location,
            raid_message=record.raid_message,
            phase=record.phase,
            members_joined=list(record.members_joined),
        ))
        session.commit()


def update_raid(engine: Engine, vc_id: int, **fields: Any) -> RaidRecord | None:
    """Patch a live raid row; ``None`` if the raid is no longer journaled."""
    unknown = set(fields) - _RAID_FIELDS
    if unknown:
        raise ValueError(f"Unknown raid fields: {sorted(unknown)}")
    with Session(engine) as session:
        row = session.get(ActiveRaid, vc_id)
        if row is None:
            return None
        for key, value in fields.items():
            setattr(row, key, value)
        session.commit()
        return _record_from_row(row)


def append_claim(engine: Engine, vc_id: int, member_id: int, key: str) -> bool | None:
    """Journal one claim.  ``None`` if the raid row is gone."""
    with Session(engine) as session:
        if session.get(ActiveRaid, vc_id) is None:
            return None
        exists = session.scalar(
            select(RaidClaim.id).where(
                RaidClaim.vc_id == vc_id,
                RaidClaim.member_id == member_id,
                RaidClaim.reaction_key == key,
            )
        )
        if exists:
            return False
        session.add(RaidClaim(vc_id=vc_id, member_id=member_id, reaction_key=key))
        session.commit()
        return True


def delete_raid(engine: Engine, vc_id: int) -> bool:
    with Session(engine) as session:
        session.execute(delete(RaidClaim).where(RaidClaim.vc_id == vc_id))
        result = session.execute(delete(ActiveRaid).where(ActiveRaid.vc_id == vc_id))
        session.commit()
        return bool(result.rowcount)


def list_raids(engine: Engine, guild_id: int | None = None) -> list[RaidRecord]:
    with Session(engine) as session:
        stmt = select(ActiveRaid).order_by(ActiveRaid.created_at)
        if guild_id is not None:
            stmt = stmt.where(ActiveRaid.guild_id == guild_id)
        return [_record_from_row(row) for row in session.scalars(stmt).all()]


def delete_raids(engine: Engine, vc_ids: Iterable[int]) -> int:
    """Drop journal rows whose live resources no longer exist."""
    count = 0
    for vc_id in vc_ids:
        count += int(delete_raid(engine, vc_id))
    if count:
        logger.info("Dropped %d stale raid record(s)", count)
    return count
