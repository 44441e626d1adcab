"""Initial raid and quota schema

Revision ID: 7c2e9a41b0d3
Revises:
Create Date: 2026-10-16 09:00:00.000000

"""
from collections.abc import Sequence

import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "7c2e9a41b0d3"
down_revision: str | Sequence[str] | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def _created_at() -> sa.Column:
    return sa.Column(
        "created_at",
        sa.DateTime(timezone=True),
        nullable=False,
        server_default=sa.func.now(),
    )


def upgrade() -> None:
    """Create guild config, section, raid journal and quota tables."""
    op.create_table(
        "guild_configs",
        sa.Column("guild_id", sa.BigInteger(), primary_key=True),
        sa.Column("roles", postgresql.JSONB(), nullable=False, server_default="{}"),
        sa.Column("channels", postgresql.JSONB(), nullable=False, server_default="{}"),
        sa.Column("nitro_role_id", sa.BigInteger(), nullable=True),
        sa.Column("custom_reactions", postgresql.JSONB(), nullable=False, server_default="[]"),
        sa.Column("custom_dungeons", postgresql.JSONB(), nullable=False, server_default="[]"),
        sa.Column("dungeon_overrides", postgresql.JSONB(), nullable=False, server_default="[]"),
        sa.Column("quota_reset_day", sa.Integer(), nullable=False, server_default="-1"),
        sa.Column("quota_reset_time", sa.Integer(), nullable=False, server_default="0"),
        _created_at(),
    )

    op.create_table(
        "sections",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column(
            "guild_id",
            sa.BigInteger(),
            sa.ForeignKey("guild_configs.guild_id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("identifier", sa.String(50), nullable=False),
        sa.Column("name", sa.String(100), nullable=False),
        sa.Column("is_main", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("verified_role_id", sa.BigInteger(), nullable=True),
        sa.Column("afk_check_channel_id", sa.BigInteger(), nullable=True),
        sa.Column("control_panel_channel_id", sa.BigInteger(), nullable=True),
        sa.Column("leader_roles", postgresql.JSONB(), nullable=False, server_default="{}"),
        sa.Column("afk_check", postgresql.JSONB(), nullable=False, server_default="{}"),
        sa.UniqueConstraint("guild_id", "identifier", name="uq_section_identifier"),
    )

    op.create_table(
        "active_raids",
        sa.Column("vc_id", sa.BigInteger(), primary_key=True),
        sa.Column("guild_id", sa.BigInteger(), nullable=False),
        sa.Column("section_identifier", sa.String(50), nullable=False),
        sa.Column("dungeon_code", sa.String(100), nullable=False),
        sa.Column("initiator_id", sa.BigInteger(), nullable=False),
        sa.Column("afk_check_channel_id", sa.BigInteger(), nullable=False),
        sa.Column("control_panel_channel_id", sa.BigInteger(), nullable=False),
        sa.Column("afk_check_message_id", sa.BigInteger(), nullable=False),
        sa.Column("control_panel_message_id", sa.BigInteger(), nullable=False),
        sa.Column("location", sa.String(200), nullable=False, server_default=""),
        sa.Column("raid_message", sa.Text(), nullable=False, server_default=""),
        sa.Column("phase", sa.String(20), nullable=False, server_default="PRE_OPEN"),
        sa.Column("members_joined", postgresql.JSONB(), nullable=False, server_default="[]"),
        _created_at(),
        sa.UniqueConstraint("afk_check_message_id", name="uq_active_raid_afk_message"),
    )
    op.create_index("ix_active_raids_guild", "active_raids", ["guild_id"])

    op.create_table(
        "raid_claims",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column(
            "vc_id",
            sa.BigInteger(),
            sa.ForeignKey("active_raids.vc_id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("member_id", sa.BigInteger(), nullable=False),
        sa.Column("reaction_key", sa.String(100), nullable=False),
        sa.UniqueConstraint("vc_id", "member_id", "reaction_key", name="uq_raid_claim"),
    )

    op.create_table(
        "quota_ledgers",
        sa.Column("guild_id", sa.BigInteger(), primary_key=True),
        sa.Column("role_id", sa.BigInteger(), primary_key=True),
        sa.Column("threshold", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("point_values", postgresql.JSONB(), nullable=False, server_default="{}"),
        sa.Column(
            "last_reset",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.Column("channel_id", sa.BigInteger(), nullable=True),
        sa.Column("message_id", sa.BigInteger(), nullable=True),
    )

    op.create_table(
        "quota_log_entries",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("guild_id", sa.BigInteger(), nullable=False),
        sa.Column("role_id", sa.BigInteger(), nullable=False),
        sa.Column("member_id", sa.BigInteger(), nullable=False),
        sa.Column("log_type", sa.String(120), nullable=False),
        sa.Column("amount", sa.Integer(), nullable=False, server_default="1"),
        sa.Column(
            "timestamp",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
    )
    op.create_index(
        "ix_quota_log_guild_role", "quota_log_entries", ["guild_id", "role_id"]
    )


def downgrade() -> None:
    """Drop every RaidKeeper table."""
    op.drop_index("ix_quota_log_guild_role", table_name="quota_log_entries")
    op.drop_table("quota_log_entries")
    op.drop_table("quota_ledgers")
    op.drop_table("raid_claims")
    op.drop_index("ix_active_raids_guild", table_name="active_raids")
    op.drop_table("active_raids")
    op.drop_table("sections")
    op.drop_table("guild_configs")
