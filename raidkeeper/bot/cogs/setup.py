"""
raidkeeper.bot.cogs.setup — Guild Configuration Commands
========================================================

Slash commands for server admins to wire RaidKeeper into a guild:
- /configure-section — create or edit a raid section
- /configure-role — map a staff slot (member, leader, …) to a role
- /configure-channel — set the AFK fallback VC or quota archive channel
- /configure-nitro — set the booster role used for early location
- /quota-schedule — set the weekly quota reset anchor
- /dashboard-token — mint a dashboard API token for this guild

All commands require the configured admin_role_id.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

import discord
from discord import app_commands
from discord.ext import commands

from raidkeeper.api.deps import TOKEN_TTL, issue_admin_token
from raidkeeper.database.engine import run_db
from raidkeeper.services.guild_repository import (
    get_or_create_guild,
    update_guild,
    upsert_section,
)

if TYPE_CHECKING:
    from raidkeeper.bot.core import RaidKeeperBot

logger = logging.getLogger(__name__)

ROLE_SLOTS = (
    "member", "helper", "security", "officer", "moderator",
    "almost_leader", "leader", "head_leader", "vet_leader",
)
SECTION_LEADER_SLOTS = ("almost_leader", "leader", "vet_leader")
CHANNEL_SLOTS = ("afk_channel", "quota_storage")
_DAYS = ("Sunday", "Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday")


def is_admin():
    """Decorator that checks if the user has the configured admin role."""
    async def predicate(interaction: discord.Interaction) -> bool:
        bot: RaidKeeperBot = interaction.client  # type: ignore[assignment]
        if not interaction.user or not hasattr(interaction.user, "roles"):
            return False
        admin_role_id = bot.cfg.admin_role_id
        return any(role.id == admin_role_id for role in interaction.user.roles)
    return app_commands.check(predicate)


class Setup(commands.Cog, name="Setup"):
    """Per-guild raid and quota configuration."""

    def __init__(self, bot: RaidKeeperBot) -> None:
        self.bot = bot

    # -------------------------------------------------------------------
    # /configure-section
    # -------------------------------------------------------------------
    @app_commands.command(name="configure-section", description="Create or edit a raid section.")
    @app_commands.describe(
        identifier="Short unique ID, e.g. main or veteran",
        name="Display name",
        verified_role="Role that may join raids in this section",
        afk_check_channel="Where raid announcements are posted",
        control_panel_channel="Where leader control panels are posted",
        leader_slot="Which section leader slot to set",
        leader_role="Role for that leader slot",
        vc_limit="Raid voice channel capacity",
        afk_check_timeout="Minutes each AFK-check phase stays open",
        nitro_limit="Booster early-location slots (blank = 10% of VC)",
        additional_info="Extra text on every announcement",
    )
    @app_commands.choices(
        leader_slot=[app_commands.Choice(name=s.replace("_", " ").title(), value=s) for s in SECTION_LEADER_SLOTS]
    )
    @is_admin()
    @app_commands.guild_only()
    async def configure_section(
        self,
        interaction: discord.Interaction,
        identifier: str,
        name: str | None = None,
        verified_role: discord.Role | None = None,
        afk_check_channel: discord.TextChannel | None = None,
        control_panel_channel: discord.TextChannel | None = None,
        leader_slot: str | None = None,
        leader_role: discord.Role | None = None,
        vc_limit: app_commands.Range[int, 1, 99] | None = None,
        afk_check_timeout: app_commands.Range[int, 1, 60] | None = None,
        nitro_limit: app_commands.Range[int, 0, 50] | None = None,
        additional_info: str | None = None,
    ) -> None:
        identifier = identifier.strip().lower()
        settings = await run_db(get_or_create_guild, self.bot.engine, interaction.guild_id)
        existing = settings.section(identifier)

        fields: dict = {}
        if name:
            fields["name"] = name
        if verified_role:
            fields["verified_role_id"] = verified_role.id
        if afk_check_channel:
            fields["afk_check_channel_id"] = afk_check_channel.id
        if control_panel_channel:
            fields["control_panel_channel_id"] = control_panel_channel.id
        if leader_slot and leader_role:
            roles = dict(existing.leader_roles) if existing else {}
            roles[leader_slot] = leader_role.id
            fields["leader_roles"] = roles

        props: dict = {}
        if vc_limit is not None:
            props["vc_limit"] = vc_limit
        if afk_check_timeout is not None:
            props["afk_check_timeout"] = afk_check_timeout
        if nitro_limit is not None:
            props["nitro_early_location_limit"] = nitro_limit
        if additional_info is not None:
            props["additional_info"] = additional_info
        if props:
            fields["afk_check"] = props

        section = await run_db(
            upsert_section, self.bot.engine, interaction.guild_id, identifier, **fields
        )
        logger.info("Section %s configured in guild %s", identifier, interaction.guild_id)
        missing = [
            label for label, value in (
                ("verified role", section.verified_role_id),
                ("AFK-check channel", section.afk_check_channel_id),
                ("control-panel channel", section.control_panel_channel_id),
            ) if not value
        ]
        note = f"\n⚠️ Still missing: {', '.join(missing)}." if missing else ""
        await interaction.response.send_message(
            f"✅ Section **{section.name}** (`{section.identifier}`) saved — "
            f"VC limit {section.vc_limit}.{note}",
            ephemeral=True,
        )

    # -------------------------------------------------------------------
    # /configure-role, /configure-channel, /configure-nitro
    # -------------------------------------------------------------------
    @app_commands.command(name="configure-role", description="Map a staff slot to a role.")
    @app_commands.choices(
        slot=[app_commands.Choice(name=s.replace("_", " ").title(), value=s) for s in ROLE_SLOTS]
    )
    @is_admin()
    @app_commands.guild_only()
    async def configure_role(
        self, interaction: discord.Interaction, slot: str, role: discord.Role
    ) -> None:
        settings = await run_db(get_or_create_guild, self.bot.engine, interaction.guild_id)
        roles = {**settings.roles, slot: role.id}
        await run_db(update_guild, self.bot.engine, interaction.guild_id, roles=roles)
        await interaction.response.send_message(
            f"✅ **{slot.replace('_', ' ').title()}** → {role.mention}", ephemeral=True
        )

    @app_commands.command(name="configure-channel", description="Set a guild-wide channel.")
    @app_commands.choices(
        slot=[
            app_commands.Choice(name="Fallback AFK voice channel", value="afk_channel"),
            app_commands.Choice(name="Quota report archive", value="quota_storage"),
        ]
    )
    @is_admin()
    @app_commands.guild_only()
    async def configure_channel(
        self,
        interaction: discord.Interaction,
        slot: str,
        channel: discord.VoiceChannel | discord.TextChannel,
    ) -> None:
        wanted = discord.VoiceChannel if slot == "afk_channel" else discord.TextChannel
        if not isinstance(channel, wanted):
            await interaction.response.send_message(
                f"❌ That slot needs a {'voice' if wanted is discord.VoiceChannel else 'text'} channel.",
                ephemeral=True,
            )
            return
        settings = await run_db(get_or_create_guild, self.bot.engine, interaction.guild_id)
        channels = {**settings.channels, slot: channel.id}
        await run_db(update_guild, self.bot.engine, interaction.guild_id, channels=channels)
        await interaction.response.send_message(f"✅ {slot} → {channel.mention}", ephemeral=True)

    @app_commands.command(name="configure-nitro", description="Set the booster role for early location.")
    @is_admin()
    @app_commands.guild_only()
    async def configure_nitro(self, interaction: discord.Interaction, role: discord.Role) -> None:
        await run_db(get_or_create_guild, self.bot.engine, interaction.guild_id)
        await run_db(update_guild, self.bot.engine, interaction.guild_id, nitro_role_id=role.id)
        await interaction.response.send_message(f"✅ Nitro role → {role.mention}", ephemeral=True)

    # -------------------------------------------------------------------
    # /quota-schedule
    # -------------------------------------------------------------------
    @app_commands.command(name="quota-schedule", description="Set the weekly quota reset time (UTC).")
    @app_commands.describe(day="Reset day, or Never for manual resets only", time="Military time, e.g. 2359")
    @app_commands.choices(
        day=[app_commands.Choice(name="Never", value=-1)]
        + [app_commands.Choice(name=d, value=i) for i, d in enumerate(_DAYS)]
    )
    @is_admin()
    @app_commands.guild_only()
    async def quota_schedule(
        self,
        interaction: discord.Interaction,
        day: int,
        time: app_commands.Range[int, 0, 2359] = 0,
    ) -> None:
        if time % 100 >= 60:
            await interaction.response.send_message("❌ Minutes must be below 60.", ephemeral=True)
            return
        await run_db(get_or_create_guild, self.bot.engine, interaction.guild_id)
        await run_db(
            update_guild, self.bot.engine, interaction.guild_id,
            quota_reset_day=day, quota_reset_time=time,
        )
        when = "manual only" if day < 0 else f"every {_DAYS[day]} at {time:04d} UTC"
        await interaction.response.send_message(f"✅ Quota resets: {when}.", ephemeral=True)

    # -------------------------------------------------------------------
    # /dashboard-token
    # -------------------------------------------------------------------
    @app_commands.command(name="dashboard-token", description="Get a token for editing quotas via the API.")
    @is_admin()
    @app_commands.guild_only()
    async def dashboard_token(self, interaction: discord.Interaction) -> None:
        try:
            token = issue_admin_token(interaction.user.id, [interaction.guild_id])
        except RuntimeError as exc:
            logger.error("Cannot issue dashboard token: %s", exc)
            await interaction.response.send_message(
                "❌ The dashboard is not configured on this bot.", ephemeral=True
            )
            return
        hours = int(TOKEN_TTL.total_seconds() // 3600)
        await interaction.response.send_message(
            f"Bearer token for this server, valid {hours}h:\n```\n{token}\n```",
            ephemeral=True,
        )

    # -------------------------------------------------------------------
    # Error handler
    # -------------------------------------------------------------------
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
    await bot.add_cog(Setup(bot))
