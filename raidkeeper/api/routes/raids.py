"""
raidkeeper.api.routes.raids — Live raid listing
===============================================
"""

from __future__ import annotations

from dataclasses import asdict

from fastapi import APIRouter, Depends
from sqlalchemy import Engine

from raidkeeper.api.deps import get_engine
from raidkeeper.services.guild_repository import RaidRecord, list_raids

router = APIRouter(tags=["raids"])

_ID_FIELDS = (
    "guild_id", "vc_id", "initiator_id", "afk_check_channel_id",
    "control_panel_channel_id", "afk_check_message_id", "control_panel_message_id",
)


def _raid_dict(record: RaidRecord) -> dict:
    """Snowflakes as strings so JavaScript clients don't lose precision."""
    data = asdict(record)
    for key in _ID_FIELDS:
        data[key] = str(data[key])
    data["members_joined"] = [str(m) for m in record.members_joined]
    claims: dict[str, list[str]] = {}
    for member_id, key in record.claims:
        claims.setdefault(key, []).append(str(member_id))
    data["claims"] = claims
    return data


@router.get("/guilds/{guild_id}/raids")
def get_raids(guild_id: int, engine: Engine = Depends(get_engine)):
    """Every journaled raid in the guild, oldest first."""
    return [_raid_dict(r) for r in list_raids(engine, guild_id)]
