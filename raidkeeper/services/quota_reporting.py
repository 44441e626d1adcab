"""
raidkeeper.services.quota_reporting — Quota Leaderboards, Resets & Logging
==========================================================================

The Discord-facing half of quotas:

* keep one leaderboard message per ledger up to date,
* close a period (archive the text report, replace the leaderboard with
  a summary, clear the ledger),
* run the scheduled reset sweep,
* credit a member interactively when several ledgers could take a log.

Persistence goes through :mod:`raidkeeper.services.quota_service` via
:func:`~raidkeeper.database.engine.run_db`.
"""

from __future__ import annotations

import io
import logging
from datetime import UTC, datetime
from typing import TYPE_CHECKING

import discord

from raidkeeper.constants import quota_log_label
from raidkeeper.database.engine import run_db
from raidkeeper.engine.quota import (
    LedgerSnapshot,
    QuotaStatus,
    build_report,
    eligible_ledgers,
    next_reset,
    qualify,
    standings,
    total_points,
)
from raidkeeper.services import embeds
from raidkeeper.services.guild_repository import get_or_create_guild
from raidkeeper.services.quota_service import (
    credit,
    delete_ledger,
    due_ledgers,
    get_ledger,
    get_ledgers,
    reset_ledger,
    set_leaderboard_message,
)

if TYPE_CHECKING:
    from raidkeeper.bot.core import RaidKeeperBot

logger = logging.getLogger(__name__)

PICK_TIMEOUT_SECONDS = 60.0


def _names(guild: discord.Guild, member_ids) -> dict[int, str]:
    names = {}
    for mid in member_ids:
        member = guild.get_member(mid)
        names[mid] = member.display_name if member else str(mid)
    return names


async def _dungeon_names(bot: RaidKeeperBot, guild_id: int) -> dict[str, str]:
    settings = await run_db(get_or_create_guild, bot.engine, guild_id)
    return {code: d.name for code, d in settings.all_dungeons().items()}


# ---------------------------------------------------------------------------
# Leaderboards
# ---------------------------------------------------------------------------
async def _fetch_leaderboard(guild: discord.Guild, ledger: LedgerSnapshot) -> discord.Message | None:
    if not ledger.channel_id or not ledger.message_id:
        return None
    channel = guild.get_channel(ledger.channel_id)
    if not isinstance(channel, discord.TextChannel):
        return None
    try:
        return await channel.fetch_message(ledger.message_id)
    except discord.HTTPException:
        return None


async def upsert_leaderboard(
    bot: RaidKeeperBot, guild: discord.Guild, ledger: LedgerSnapshot
) -> discord.Message | None:
    """Edit the ledger's leaderboard in place, or post a new one."""
    role = guild.get_role(ledger.role_id)
    channel = guild.get_channel(ledger.channel_id) if ledger.channel_id else None
    if role is None or not isinstance(channel, discord.TextChannel):
        return None

    settings = await run_db(get_or_create_guild, bot.engine, guild.id)
    rows = standings(ledger, [m.id for m in role.members])
    embed = embeds.build_leaderboard_embed(
        role,
        ledger,
        rows,
        _names(guild, [r.member_id for r in rows]),
        dungeon_names={c: d.name for c, d in settings.all_dungeons().items()},
        next_reset=next_reset(ledger.last_reset, settings.quota_reset_day, settings.quota_reset_time)
        if ledger.last_reset else None,
    )
    message = await _fetch_leaderboard(guild, ledger)
    try:
        if message is not None:
            return await message.edit(embed=embed)
        message = await channel.send(embed=embed)
    except discord.HTTPException:
        logger.warning("Could not post leaderboard for role %d in guild %d", ledger.role_id, guild.id)
        return None
    await run_db(set_leaderboard_message, bot.engine, guild.id, ledger.role_id, message.id)
    return message


async def refresh_leaderboards(bot: RaidKeeperBot) -> int:
    """Refresh every ledger's leaderboard in every guild the bot is in."""
    count = 0
    for guild in bot.guilds:
        for ledger in await run_db(get_ledgers, bot.engine, guild.id):
            if guild.get_role(ledger.role_id) is None:
                await run_db(delete_ledger, bot.engine, guild.id, ledger.role_id)
                continue
            if await upsert_leaderboard(bot, guild, ledger) is not None:
                count += 1
    return count


# ---------------------------------------------------------------------------
# Period close
# ---------------------------------------------------------------------------
async def reset_quota(
    bot: RaidKeeperBot, guild: discord.Guild, role_id: int, now: datetime | None = None
) -> bool:
    """Close the current period for one ledger.

    Returns ``False`` if there is no such ledger.  A ledger whose role
    has been deleted is dropped instead of reported.
    """
    now = now or datetime.now(UTC)
    ledger = await run_db(get_ledger, bot.engine, guild.id, role_id)
    if ledger is None:
        return False
    role = guild.get_role(role_id)
    if role is None:
        await run_db(delete_ledger, bot.engine, guild.id, role_id)
        return True

    rows = standings(ledger, [m.id for m in role.members])
    settings = await run_db(get_or_create_guild, bot.engine, guild.id)
    dungeon_names = {c: d.name for c, d in settings.all_dungeons().items()}
    report = build_report(
        ledger,
        rows,
        role_name=role.name,
        names=_names(guild, [r.member_id for r in rows]),
        period_end=now,
        dungeon_names=dungeon_names,
    )

    archive_url: str | None = None
    storage = guild.get_channel(settings.channels.get("quota_storage", 0))
    if isinstance(storage, discord.TextChannel):
        stamp = now.strftime("%Y%m%d_%H%M")
        try:
            archived = await storage.send(
                content=f"Quota report for **{role.name}**",
                file=discord.File(io.BytesIO(report.encode("utf-8")), filename=f"quota_{role_id}_{stamp}.txt"),
            )
            if archived.attachments:
                archive_url = archived.attachments[0].url
        except discord.HTTPException:
            logger.warning("Could not archive quota report for role %d", role_id)

    summary = embeds.build_quota_report_embed(
        role.name, ledger, rows, period_end=now, archive_url=archive_url, report_text=report,
    )
    old = await _fetch_leaderboard(guild, ledger)
    board = guild.get_channel(ledger.channel_id) if ledger.channel_id else None
    try:
        if old is not None:
            await old.edit(embed=summary)
        elif isinstance(board, discord.TextChannel):
            await board.send(embed=summary)
        elif archive_url is None:
            logger.warning(
                "No channel for the quota report of role %d in guild %d; report:\n%s",
                role_id, guild.id, report,
            )
    except discord.HTTPException:
        logger.warning("Could not post quota report for role %d in guild %d", role_id, guild.id)

    fresh = await run_db(reset_ledger, bot.engine, guild.id, role_id, now)
    if fresh is not None:
        await upsert_leaderboard(bot, guild, fresh)
    logger.info(
        "Quota period closed guild=%d role=%d members=%d complete=%d",
        guild.id, role_id, len(rows), sum(1 for r in rows if r.status == QuotaStatus.COMPLETE),
    )
    return True


async def run_reset_sweep(bot: RaidKeeperBot, now: datetime | None = None) -> int:
    """Reset every due ledger once.  Returns how many were handled."""
    now = now or datetime.now(UTC)
    handled = 0
    for ledger in await run_db(due_ledgers, bot.engine, now):
        guild = bot.get_guild(ledger.guild_id)
        if guild is None:
            continue
        try:
            if await reset_quota(bot, guild, ledger.role_id, now):
                handled += 1
        except discord.DiscordException:
            logger.exception("Quota reset failed guild=%d role=%d", ledger.guild_id, ledger.role_id)
    return handled


# ---------------------------------------------------------------------------
# Interactive logging
# ---------------------------------------------------------------------------
class LedgerPicker(discord.ui.View):
    """Select menu over candidate ledgers, plus Cancel."""

    def __init__(self, owner_id: int, options: list[tuple[int, str]]) -> None:
        super().__init__(timeout=PICK_TIMEOUT_SECONDS)
        self.owner_id = owner_id
        self.choice: int | None = None
        select = discord.ui.Select(
            placeholder="Choose the quota to log this to",
            options=[discord.SelectOption(label=label[:100], value=str(rid)) for rid, label in options[:25]],
        )
        select.callback = self._picked
        self.add_item(select)
        self._select = select

    async def interaction_check(self, interaction: discord.Interaction) -> bool:
        return interaction.user.id == self.owner_id

    async def _picked(self, interaction: discord.Interaction) -> None:
        await self.choose(interaction, int(self._select.values[0]))

    async def choose(self, interaction: discord.Interaction, role_id: int) -> None:
        self.choice = role_id
        await interaction.response.edit_message(content="Logging…", view=None)
        self.stop()

    @discord.ui.button(label="Cancel", style=discord.ButtonStyle.secondary, row=1)
    async def cancel(self, interaction: discord.Interaction, button: discord.ui.Button) -> None:
        await interaction.response.edit_message(content="Cancelled.", view=None)
        self.stop()


async def log_quota_interactively(
    bot: RaidKeeperBot,
    interaction: discord.Interaction,
    member: discord.Member,
    log_type: str,
    *,
    dungeon_id: str | None = None,
    amount: int = 1,
) -> int | None:
    """Credit *member* for *log_type*, asking which ledger if ambiguous.

    The interaction must not have been responded to yet.  Returns the
    credited role ID, or ``None`` if nothing was logged.
    """
    guild = interaction.guild
    ledgers = await run_db(get_ledgers, bot.engine, guild.id)
    candidates = eligible_ledgers(ledgers, [r.id for r in member.roles], log_type, dungeon_id)
    label = quota_log_label(qualify(log_type, dungeon_id), await _dungeon_names(bot, guild.id))

    if not candidates:
        await interaction.response.send_message(
            f"{member.display_name} has no quota that counts **{label}**.", ephemeral=True
        )
        return None

    if len(candidates) > 1:
        incomplete = [c for c in candidates if total_points(c, member.id) < c.threshold]
        if incomplete:
            candidates = incomplete

    if len(candidates) == 1:
        role_id = candidates[0].role_id
        await interaction.response.send_message(f"Logging **{label}**…", ephemeral=True)
    else:
        options = []
        for c in candidates:
            role = guild.get_role(c.role_id)
            name = role.name if role else str(c.role_id)
            options.append((c.role_id, f"{name} ({total_points(c, member.id)}/{c.threshold} PTS)"))
        picker = LedgerPicker(interaction.user.id, options)
        await interaction.response.send_message(
            f"Which quota should **{label}** count toward?", view=picker, ephemeral=True
        )
        timed_out = await picker.wait()
        if picker.choice is None:
            if timed_out:
                await interaction.edit_original_response(
                    content="No quota was logged; no quota was chosen in time.", view=None
                )
            return None
        role_id = picker.choice

    ok = await run_db(
        credit, bot.engine, guild.id, role_id, member.id, qualify(log_type, dungeon_id), amount
    )
    if not ok:
        await interaction.edit_original_response(content="That quota no longer exists.", view=None)
        return None
    await interaction.edit_original_response(
        content=f"Logged **{label}** x{amount} for {member.mention} to <@&{role_id}>.", view=None
    )
    fresh = await run_db(get_ledger, bot.engine, guild.id, role_id)
    if fresh is not None:
        await upsert_leaderboard(bot, guild, fresh)
    return role_id
