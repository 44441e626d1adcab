"""
raidkeeper.bot.cogs.quotas — Quota Commands
===========================================

- /configure-quota — set a role's threshold, point values and leaderboard channel
- /log-run — log a completed, assisted or failed run
- /log-parse — log a raid parse
- /add-quota-points — log any quota action for a member (admin)
- /reset-quota — close a role's quota period now (admin)

A deleted role takes its ledger with it.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

import discord
from discord import app_commands
from discord.ext import commands

from raidkeeper.bot.cogs.setup import is_admin
from raidkeeper.constants import QUOTA_LOG_LABELS, quota_log_label
from raidkeeper.database.engine import run_db
from raidkeeper.database.models import QuotaLogType
from raidkeeper.engine.quota import qualify
from raidkeeper.services.guild_repository import get_or_create_guild
from raidkeeper.services.quota_reporting import (
    log_quota_interactively,
    reset_quota,
    upsert_leaderboard,
)
from raidkeeper.services.quota_service import configure_ledger, delete_ledger

if TYPE_CHECKING:
    from raidkeeper.bot.core import RaidKeeperBot

logger = logging.getLogger(__name__)

_LOG_TYPE_CHOICES = [
    app_commands.Choice(name=QUOTA_LOG_LABELS[t.value], value=t.value) for t in QuotaLogType
]
_RUN_CHOICES = [
    app_commands.Choice(name="Completed", value=QuotaLogType.RUN_COMPLETE.value),
    app_commands.Choice(name="Assisted", value=QuotaLogType.RUN_ASSIST.value),
    app_commands.Choice(name="Failed", value=QuotaLogType.RUN_FAILED.value),
]


def _is_admin_member(bot: RaidKeeperBot, user: discord.abc.User) -> bool:
    return any(r.id == bot.cfg.admin_role_id for r in getattr(user, "roles", ()))


class Quotas(commands.Cog, name="Quotas"):
    """Staff quota logging and administration."""

    def __init__(self, bot: RaidKeeperBot) -> None:
        self.bot = bot

    async def _dungeon_choices(
        self, interaction: discord.Interaction, current: str
    ) -> list[app_commands.Choice[str]]:
        settings = await run_db(get_or_create_guild, self.bot.engine, interaction.guild_id)
        return [
            app_commands.Choice(name=d.name, value=code)
            for code, d in settings.all_dungeons().items()
            if current.lower() in d.name.lower()
        ][:25]

    async def _resolve_target(
        self, interaction: discord.Interaction, member: discord.Member | None
    ) -> discord.Member | None:
        if member is None or member.id == interaction.user.id:
            return interaction.user
        if _is_admin_member(self.bot, interaction.user):
            return member
        await interaction.response.send_message(
            "🔒 Only admins can log quota actions for someone else.", ephemeral=True
        )
        return None

    # -------------------------------------------------------------------
    # /configure-quota
    # -------------------------------------------------------------------
    @app_commands.command(name="configure-quota", description="Configure a role's quota.")
    @app_commands.describe(
        role="Role the quota applies to",
        threshold="Minimum points per period",
        log_type="Action to set a point value for",
        points="Points per action (0 removes the value)",
        dungeon="Limit the point value to one dungeon (run actions only)",
        channel="Where the live leaderboard is posted",
    )
    @app_commands.choices(log_type=_LOG_TYPE_CHOICES)
    @is_admin()
    @app_commands.guild_only()
    async def configure_quota(
        self,
        interaction: discord.Interaction,
        role: discord.Role,
        threshold: app_commands.Range[int, 0, 10_000] | None = None,
        log_type: str | None = None,
        points: app_commands.Range[int, 0, 1_000] | None = None,
        dungeon: str | None = None,
        channel: discord.TextChannel | None = None,
    ) -> None:
        point_values = None
        if log_type is not None and points is not None:
            point_values = {qualify(log_type, dungeon): points}
        ledger = await run_db(
            configure_ledger,
            self.bot.engine,
            interaction.guild_id,
            role.id,
            threshold=threshold,
            point_values=point_values,
            channel_id=channel.id if channel else None,
        )
        await interaction.response.send_message(
            f"✅ Quota for {role.mention}: {ledger.threshold} PTS minimum, "
            f"{len(ledger.point_values)} point value(s).",
            ephemeral=True,
        )
        await upsert_leaderboard(self.bot, interaction.guild, ledger)

    configure_quota.autocomplete("dungeon")(_dungeon_choices)

    # -------------------------------------------------------------------
    # Logging
    # -------------------------------------------------------------------
    @app_commands.command(name="log-run", description="Log a run you led.")
    @app_commands.choices(result=_RUN_CHOICES)
    @app_commands.guild_only()
    async def log_run(
        self,
        interaction: discord.Interaction,
        dungeon: str,
        result: str = QuotaLogType.RUN_COMPLETE.value,
        amount: app_commands.Range[int, 1, 50] = 1,
        member: discord.Member | None = None,
    ) -> None:
        target = await self._resolve_target(interaction, member)
        if target is None:
            return
        await log_quota_interactively(
            self.bot, interaction, target, result, dungeon_id=dungeon, amount=amount
        )

    log_run.autocomplete("dungeon")(_dungeon_choices)

    @app_commands.command(name="log-parse", description="Log a raid parse.")
    @app_commands.guild_only()
    async def log_parse(
        self,
        interaction: discord.Interaction,
        amount: app_commands.Range[int, 1, 50] = 1,
        member: discord.Member | None = None,
    ) -> None:
        target = await self._resolve_target(interaction, member)
        if target is None:
            return
        await log_quota_interactively(
            self.bot, interaction, target, QuotaLogType.PARSE.value, amount=amount
        )

    @app_commands.command(name="add-quota-points", description="Log any quota action for a member.")
    @app_commands.choices(log_type=_LOG_TYPE_CHOICES)
    @is_admin()
    @app_commands.guild_only()
    async def add_quota_points(
        self,
        interaction: discord.Interaction,
        member: discord.Member,
        log_type: str,
        amount: app_commands.Range[int, 1, 100] = 1,
        dungeon: str | None = None,
    ) -> None:
        role_id = await log_quota_interactively(
            self.bot, interaction, member, log_type, dungeon_id=dungeon, amount=amount
        )
        if role_id is not None:
            logger.info(
                "Admin %s logged %s x%d for %s",
                interaction.user.id, quota_log_label(qualify(log_type, dungeon)), amount, member.id,
            )

    add_quota_points.autocomplete("dungeon")(_dungeon_choices)

    # -------------------------------------------------------------------
    # /reset-quota
    # -------------------------------------------------------------------
    @app_commands.command(name="reset-quota", description="Close a role's quota period now.")
    @is_admin()
    @app_commands.guild_only()
    async def reset_quota_cmd(self, interaction: discord.Interaction, role: discord.Role) -> None:
        await interaction.response.defer(ephemeral=True, thinking=True)
        ok = await reset_quota(self.bot, interaction.guild, role.id)
        msg = f"✅ Quota period for {role.mention} closed." if ok else f"❌ {role.mention} has no quota."
        await interaction.followup.send(msg, ephemeral=True)

    # -------------------------------------------------------------------
    # Listeners & errors
    # -------------------------------------------------------------------
    @commands.Cog.listener()
    async def on_guild_role_delete(self, role: discord.Role) -> None:
        await run_db(delete_ledger, self.bot.engine, role.guild.id, role.id)

    async def cog_app_command_error(
        self, interaction: discord.Interaction, error: app_commands.AppCommandError
    ) -> None:
        if isinstance(error, app_commands.CheckFailure):
            await interaction.response.send_message(
                "🔒 You need the Admin role to use this command.",
                ephemeral=True,
            )
        else:
            raise error


async def setup(bot: RaidKeeperBot) -> None:
    await bot.add_cog(Quotas(bot))
