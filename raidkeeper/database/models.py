"""
raidkeeper.database.models — SQLAlchemy 2.0 Data Models
========================================================

Tables:
- guild_configs      — Per-guild roles, channels, catalogs, quota anchor
- sections           — Scoped raid domains (channels, roles, AFK-check properties)
- active_raids       — One row per live raid, keyed by its voice channel
- raid_claims        — Write-behind journal of early-location claims
- quota_ledgers      — Per (guild, role) point ledger configuration
- quota_log_entries  — Append-only quota credit journal
"""

from __future__ import annotations

import enum
from datetime import datetime

from sqlalchemy import (
    BigInteger,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


# ---------------------------------------------------------------------------
# Base
# ---------------------------------------------------------------------------
class Base(DeclarativeBase):
    """Shared base for all RaidKeeper ORM models."""


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------
class RaidPhase(enum.StrEnum):
    """Lifecycle phases of a raid, in their only legal order."""
    PENDING = "PENDING"
    PRE_OPEN = "PRE_OPEN"
    OPEN = "OPEN"
    ACTIVE = "ACTIVE"
    ENDED = "ENDED"


class ReactionCategory(enum.StrEnum):
    """What a raid reaction represents."""
    KEY = "KEY"
    CLASS = "CLASS"
    ITEM = "ITEM"
    STATUS_EFFECT = "STATUS_EFFECT"
    SPECIAL = "SPECIAL"
    EARLY_LOCATION = "EARLY_LOCATION"


class QuotaLogType(enum.StrEnum):
    """Creditable staff actions.  ``Run*`` values may carry ``:dungeonId``."""
    PARSE = "Parse"
    MANUAL_VERIFY = "ManualVerify"
    PUNISHMENT_ISSUED = "PunishmentIssued"
    NAME_ADJUSTMENT = "NameAdjustment"
    MODMAIL_RESPOND = "ModmailRespond"
    RUN_COMPLETE = "RunComplete"
    RUN_ASSIST = "RunAssist"
    RUN_FAILED = "RunFailed"


# ---------------------------------------------------------------------------
# Guild configuration: one row per guild
# ---------------------------------------------------------------------------
class GuildConfig(Base):
    __tablename__ = "guild_configs"

    guild_id: Mapped[int] = mapped_column(BigInteger, primary_key=True)

    # {"member": id, "helper": id, "security": id, "officer": id, "moderator": id,
    #  "almost_leader": id, "leader": id, "head_leader": id, "vet_leader": id}
    roles: Mapped[dict] = mapped_column(JSONB, default=dict)
    # {"afk_channel": id, "quota_storage": id}
    channels: Mapped[dict] = mapped_column(JSONB, default=dict)
    nitro_role_id: Mapped[int | None] = mapped_column(BigInteger, default=None)

    # [{"key": str, "name": str, "category": str, "emoji": str|None, "emoji_id": int|None}]
    custom_reactions: Mapped[list] = mapped_column(JSONB, default=list)
    # [{"code_name": str, "name": str, "base": str|None, "reactions": [{"key", "capacity"}], ...}]
    custom_dungeons: Mapped[list] = mapped_column(JSONB, default=list)
    # [{"code_name": str, "reactions": [{"key", "capacity"}], "vc_limit": int|None}]
    dungeon_overrides: Mapped[list] = mapped_column(JSONB, default=list)

    # Weekly quota reset anchor; day -1 disables automatic resets.
    quota_reset_day: Mapped[int] = mapped_column(Integer, default=-1)
    quota_reset_time: Mapped[int] = mapped_column(Integer, default=0)  # HHMM

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    sections: Mapped[list[Section]] = relationship(
        back_populates="guild", cascade="all, delete-orphan"
    )

    def __repr__(self) -> str:
        return f"<GuildConfig guild={self.guild_id}>"


# ---------------------------------------------------------------------------
# Sections: scoped raid domains within a guild
# ---------------------------------------------------------------------------
class Section(Base):
    __tablename__ = "sections"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    guild_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("guild_configs.guild_id", ondelete="CASCADE"), nullable=False
    )
    identifier: Mapped[str] = mapped_column(String(50), nullable=False)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    is_main: Mapped[bool] = mapped_column(default=False)
    verified_role_id: Mapped[int | None] = mapped_column(BigInteger, default=None)
    afk_check_channel_id: Mapped[int | None] = mapped_column(BigInteger, default=None)
    control_panel_channel_id: Mapped[int | None] = mapped_column(BigInteger, default=None)
    # {"almost_leader": id, "leader": id, "vet_leader": id}
    leader_roles: Mapped[dict] = mapped_column(JSONB, default=dict)
    # {"vc_limit": int, "nitro_early_location_limit": int, "afk_check_timeout": minutes,
    #  "allowed_dungeons": [...], "additional_info": str,
    #  "permissions": {"pre_open": [{"id", "allow", "deny"}], "open": [...]}}
    afk_check: Mapped[dict] = mapped_column(JSONB, default=dict)

    guild: Mapped[GuildConfig] = relationship(back_populates="sections")

    __table_args__ = (
        UniqueConstraint("guild_id", "identifier", name="uq_section_identifier"),
    )

    def __repr__(self) -> str:
        return f"<Section {self.identifier!r} guild={self.guild_id}>"


# ---------------------------------------------------------------------------
# Active raids: one row per live raid (crash-recovery journal)
# ---------------------------------------------------------------------------
class ActiveRaid(Base):
    __tablename__ = "active_raids"

    vc_id: Mapped[int] = mapped_column(BigInteger, primary_key=True)
    guild_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    section_identifier: Mapped[str] = mapped_column(String(50), nullable=False)
    dungeon_code: Mapped[str] = mapped_column(String(100), nullable=False)
    initiator_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    afk_check_channel_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    control_panel_channel_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    afk_check_message_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    control_panel_message_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    location: Mapped[str] = mapped_column(String(200), default="")
    raid_message: Mapped[str] = mapped_column(Text, default="")
    phase: Mapped[str] = mapped_column(String(20), default=RaidPhase.PRE_OPEN)
    members_joined: Mapped[list] = mapped_column(JSONB, default=list)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    claims: Mapped[list[RaidClaim]] = relationship(
        back_populates="raid", cascade="all, delete-orphan"
    )

    __table_args__ = (
        Index("ix_active_raids_guild", "guild_id"),
        UniqueConstraint("afk_check_message_id", name="uq_active_raid_afk_message"),
    )

    def __repr__(self) -> str:
        return f"<ActiveRaid vc={self.vc_id} {self.dungeon_code} {self.phase}>"


class RaidClaim(Base):
    __tablename__ = "raid_claims"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    vc_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("active_raids.vc_id", ondelete="CASCADE"), nullable=False
    )
    member_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    reaction_key: Mapped[str] = mapped_column(String(100), nullable=False)

    raid: Mapped[ActiveRaid] = relationship(back_populates="claims")

    __table_args__ = (
        UniqueConstraint("vc_id", "member_id", "reaction_key", name="uq_raid_claim"),
    )


# ---------------------------------------------------------------------------
# Quotas
# ---------------------------------------------------------------------------
class QuotaLedger(Base):
    __tablename__ = "quota_ledgers"

    guild_id: Mapped[int] = mapped_column(BigInteger, primary_key=True)
    role_id: Mapped[int] = mapped_column(BigInteger, primary_key=True)
    threshold: Mapped[int] = mapped_column(Integer, default=0)
    # {"RunComplete": 1, "RunComplete:SHATTERS": 3, "Parse": 1}
    point_values: Mapped[dict] = mapped_column(JSONB, default=dict)
    last_reset: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    channel_id: Mapped[int | None] = mapped_column(BigInteger, default=None)
    message_id: Mapped[int | None] = mapped_column(BigInteger, default=None)

    def __repr__(self) -> str:
        return f"<QuotaLedger guild={self.guild_id} role={self.role_id} threshold={self.threshold}>"


class QuotaLogEntry(Base):
    __tablename__ = "quota_log_entries"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    guild_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    role_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    member_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    log_type: Mapped[str] = mapped_column(String(120), nullable=False)
    amount: Mapped[int] = mapped_column(Integer, default=1)
    timestamp: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    __table_args__ = (
        Index("ix_quota_log_guild_role", "guild_id", "role_id"),
    )

    def __repr__(self) -> str:
        return f"<QuotaLogEntry role={self.role_id} member={self.member_id} {self.log_type}x{self.amount}>"
