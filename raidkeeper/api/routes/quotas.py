"""
raidkeeper.api.routes.quotas — Quota ledger endpoints
=====================================================

Reads are public and never create rows; edits need a dashboard token
listing the guild.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field
from sqlalchemy import Engine

from raidkeeper.api.deps import get_engine, require_guild_admin
from raidkeeper.engine.guild import GuildSettings
from raidkeeper.engine.quota import LedgerSnapshot, next_reset, standings
from raidkeeper.services.guild_repository import get_guild, get_or_create_guild
from raidkeeper.services.quota_service import (
    configure_ledger,
    delete_ledger,
    get_ledger,
    get_ledgers,
)

router = APIRouter(tags=["quotas"])


# ---------------------------------------------------------------------------
# Pydantic schemas
# ---------------------------------------------------------------------------
class QuotaUpdate(BaseModel):
    threshold: int | None = Field(default=None, ge=0)
    # {"RunComplete": 1, "RunComplete:SHATTERS": 3}; 0 removes a key
    point_values: dict[str, int] | None = None
    channel_id: int | None = None


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------
def _known_guild(engine: Engine, guild_id: int) -> GuildSettings:
    settings = get_guild(engine, guild_id)
    if settings is None:
        raise HTTPException(404, "Guild not found")
    return settings


def _standings(ledger: LedgerSnapshot) -> list[dict]:
    """Everyone who has logged this period, highest points first."""
    return [
        {
            "member_id": str(row.member_id),
            "points": row.points,
            "status": row.status.value,
            "breakdown": {k: {"count": c, "points": p} for k, (c, p) in row.breakdown.items()},
        }
        for row in standings(ledger, [])
    ]


def _ledger_dict(ledger: LedgerSnapshot, *, reset_day: int = -1, reset_time: int = 0) -> dict:
    boundary = (
        next_reset(ledger.last_reset, reset_day, reset_time) if ledger.last_reset else None
    )
    return {
        "guild_id": str(ledger.guild_id),
        "role_id": str(ledger.role_id),
        "threshold": ledger.threshold,
        "point_values": dict(ledger.point_values),
        "last_reset": ledger.last_reset.isoformat() if ledger.last_reset else None,
        "next_reset": boundary.isoformat() if boundary else None,
        "channel_id": str(ledger.channel_id) if ledger.channel_id else None,
        "entries": len(ledger.entries),
    }


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------
@router.get("/guilds/{guild_id}/quotas")
def list_quotas(guild_id: int, engine: Engine = Depends(get_engine)):
    settings = _known_guild(engine, guild_id)
    return [
        {
            **_ledger_dict(
                ledger, reset_day=settings.quota_reset_day, reset_time=settings.quota_reset_time
            ),
            "standings": _standings(ledger),
        }
        for ledger in get_ledgers(engine, guild_id)
    ]


@router.get("/guilds/{guild_id}/quotas/{role_id}")
def get_quota(guild_id: int, role_id: int, engine: Engine = Depends(get_engine)):
    """One ledger with its standings."""
    settings = _known_guild(engine, guild_id)
    ledger = get_ledger(engine, guild_id, role_id)
    if ledger is None:
        raise HTTPException(404, "Quota not found")
    data = _ledger_dict(
        ledger, reset_day=settings.quota_reset_day, reset_time=settings.quota_reset_time
    )
    data["standings"] = _standings(ledger)
    return data


# ---------------------------------------------------------------------------
# Admin edits
# ---------------------------------------------------------------------------
@router.put("/guilds/{guild_id}/quotas/{role_id}")
def put_quota(
    guild_id: int,
    role_id: int,
    body: QuotaUpdate,
    engine: Engine = Depends(get_engine),
    admin: dict = Depends(require_guild_admin),
):
    settings = get_or_create_guild(engine, guild_id)
    ledger = configure_ledger(
        engine,
        guild_id,
        role_id,
        threshold=body.threshold,
        point_values=body.point_values,
        channel_id=body.channel_id,
    )
    return _ledger_dict(
        ledger, reset_day=settings.quota_reset_day, reset_time=settings.quota_reset_time
    )


@router.delete("/guilds/{guild_id}/quotas/{role_id}")
def remove_quota(
    guild_id: int,
    role_id: int,
    engine: Engine = Depends(get_engine),
    admin: dict = Depends(require_guild_admin),
):
    if not delete_ledger(engine, guild_id, role_id):
        raise HTTPException(404, "Quota not found")
    return {"deleted": True}
