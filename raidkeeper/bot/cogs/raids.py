"""
raidkeeper.bot.cogs.raids — Raid Commands & Gateway Routing
===========================================================

- /afk-check — start a raid in a section
- Routes voice-state changes to the raids in the member's guild.
- Tears a raid down when one of its messages or its voice channel is
  deleted by someone else.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

import discord
from discord import app_commands
from discord.ext import commands

from raidkeeper.database.engine import run_db
from raidkeeper.services.guild_repository import get_or_create_guild
from raidkeeper.services.raid_instance import RaidConfigurationError, RaidInstance

if TYPE_CHECKING:
    from raidkeeper.bot.core import RaidKeeperBot

logger = logging.getLogger(__name__)


class Raids(commands.Cog, name="Raids"):
    """Raid lifecycle entry point and event routing."""

    def __init__(self, bot: RaidKeeperBot) -> None:
        self.bot = bot

    # -------------------------------------------------------------------
    # /afk-check
    # -------------------------------------------------------------------
    @app_commands.command(name="afk-check", description="Start a raid AFK check.")
    @app_commands.describe(
        section="Section to run the raid in",
        dungeon="Dungeon to raid",
        location="Location shown to priority raiders",
        message="Message shown on the announcement",
    )
    @app_commands.guild_only()
    async def afk_check(
        self,
        interaction: discord.Interaction,
        section: str,
        dungeon: str,
        location: str = "",
        message: str = "",
    ) -> None:
        await interaction.response.defer(ephemeral=True, thinking=True)
        settings = await run_db(get_or_create_guild, self.bot.engine, interaction.guild_id)

        sect = settings.section(section)
        if sect is None:
            await interaction.followup.send(f"❌ Unknown section `{section}`.", ephemeral=True)
            return

        allowed = settings.leader_role_ids(sect) | {self.bot.cfg.admin_role_id}
        if not any(r.id in allowed for r in interaction.user.roles):
            await interaction.followup.send(
                f"🔒 You need a leader role in **{sect.name}** to start raids.", ephemeral=True
            )
            return

        dgn = settings.find_dungeon(dungeon)
        if dgn is None or (sect.allowed_dungeons and dgn.code_name not in sect.allowed_dungeons):
            await interaction.followup.send(
                f"❌ `{dungeon}` is not available in **{sect.name}**.", ephemeral=True
            )
            return

        raid = RaidInstance(
            self.bot, interaction.guild, settings, sect, dgn, interaction.user,
            location=location, raid_message=message,
        )
        try:
            await raid.start()
        except RaidConfigurationError as exc:
            await interaction.followup.send(f"❌ {exc}", ephemeral=True)
            return
        except discord.HTTPException:
            logger.exception("Raid start failed in guild %s", interaction.guild_id)
            await raid.cleanup()
            await interaction.followup.send(
                "❌ Discord rejected part of the raid setup; nothing was left behind.",
                ephemeral=True,
            )
            return

        await interaction.followup.send(
            f"✅ {dgn.name} raid started in {raid.vc.mention}. Use the control panel to open it.",
            ephemeral=True,
        )

    @afk_check.autocomplete("section")
    async def _section_autocomplete(
        self, interaction: discord.Interaction, current: str,
    ) -> list[app_commands.Choice[str]]:
        settings = await run_db(get_or_create_guild, self.bot.engine, interaction.guild_id)
        return [
            app_commands.Choice(name=s.name, value=s.identifier)
            for s in settings.sections.values()
            if current.lower() in s.name.lower()
        ][:25]

    @afk_check.autocomplete("dungeon")
    async def _dungeon_autocomplete(
        self, interaction: discord.Interaction, current: str,
    ) -> list[app_commands.Choice[str]]:
        settings = await run_db(get_or_create_guild, self.bot.engine, interaction.guild_id)
        sect = settings.section(getattr(interaction.namespace, "section", "") or "")
        choices = []
        for code, dungeon in settings.all_dungeons().items():
            if sect and sect.allowed_dungeons and code not in sect.allowed_dungeons:
                continue
            if current.lower() in dungeon.name.lower():
                choices.append(app_commands.Choice(name=dungeon.name, value=code))
        return choices[:25]

    # -------------------------------------------------------------------
    # Gateway routing
    # -------------------------------------------------------------------
    @commands.Cog.listener()
    async def on_voice_state_update(
        self, member: discord.Member, before: discord.VoiceState, after: discord.VoiceState
    ) -> None:
        if member.bot:
            return
        for raid in self.bot.registry.for_guild(member.guild.id):
            try:
                await raid.voice_state_changed(member, before, after)
            except discord.DiscordException:
                logger.exception("Voice routing failed for raid %s", raid.vc_id)

    @commands.Cog.listener()
    async def on_raw_message_delete(self, payload: discord.RawMessageDeleteEvent) -> None:
        raid = self.bot.registry.by_message(payload.message_id)
        if raid is not None:
            logger.info("Raid %s message %s deleted; cleaning up", raid.vc_id, payload.message_id)
            await raid.cleanup()

    @commands.Cog.listener()
    async def on_guild_channel_delete(self, channel: discord.abc.GuildChannel) -> None:
        raid = self.bot.registry.by_voice_channel(channel.id)
        if raid is not None:
            logger.info("Raid VC %s deleted; cleaning up", channel.id)
            await raid.cleanup()


async def setup(bot: RaidKeeperBot) -> None:
    await bot.add_cog(Raids(bot))
