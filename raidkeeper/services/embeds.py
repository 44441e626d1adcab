"""
raidkeeper.services.embeds — Discord embed builders
====================================================

All embed construction lives here so the raid instance and the quota
service only supply data — no layout concerns.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from datetime import UTC, datetime
from typing import TYPE_CHECKING

import discord

from raidkeeper.constants import (
    GREEN_CHECK,
    HOURGLASS,
    RANK_BADGES,
    RED_X,
    quota_log_label,
)
from raidkeeper.database.models import RaidPhase
from raidkeeper.engine.quota import LedgerSnapshot, MemberStanding, QuotaStatus

if TYPE_CHECKING:
    from raidkeeper.services.raid_instance import RaidInstance

_PHASE_TITLES: dict[RaidPhase, str] = {
    RaidPhase.PRE_OPEN: "Pre-AFK Check",
    RaidPhase.OPEN: "AFK Check",
    RaidPhase.ACTIVE: "Raid In Progress",
    RaidPhase.ENDED: "Raid Ended",
}

_FIELD_LIMIT = 1024
_DESCRIPTION_LIMIT = 4000


def _color(raid: RaidInstance) -> discord.Color:
    colors = getattr(raid.dungeon, "colors", ())
    return discord.Color(colors[0]) if colors else discord.Color.blurple()


def _truncate(text: str, limit: int) -> str:
    return text if len(text) <= limit else text[: limit - 3] + "..."


def _claim_lines(raid: RaidInstance) -> list[str]:
    lines = []
    for key in raid.ledger.keys:
        reaction = raid.reactions[key]
        taken = len(raid.ledger.claimants(key))
        cap = raid.ledger.capacity(key)
        mark = GREEN_CHECK if taken >= cap else HOURGLASS
        lines.append(f"{reaction.emoji_markup()} {reaction.name}: {taken}/{cap} {mark}")
    return lines


# ---------------------------------------------------------------------------
# Raid embeds
# ---------------------------------------------------------------------------
def build_afk_check_embed(raid: RaidInstance) -> discord.Embed:
    """Public join announcement shown in the AFK-check channel."""
    title = f"{_PHASE_TITLES.get(raid.phase, 'Raid')}: {raid.dungeon.name}"
    if raid.phase == RaidPhase.PRE_OPEN:
        body = (
            "Only raiders bringing the items below may join right now. "
            "Press a button to claim a priority slot; you must be in a voice channel."
        )
    elif raid.phase == RaidPhase.OPEN:
        body = f"Join **{raid.vc.name if raid.vc else 'the raid channel'}** now!"
    else:
        body = "This raid is no longer accepting raiders."

    embed = discord.Embed(title=title, description=body, color=_color(raid))
    embed.set_author(
        name=f"Led by {raid.initiator.display_name}",
        icon_url=raid.initiator.display_avatar.url,
    )
    if raid.raid_message:
        embed.add_field(name="Message from the Leader", value=_truncate(raid.raid_message, _FIELD_LIMIT), inline=False)
    if raid.section.additional_info:
        embed.add_field(name="Information", value=_truncate(raid.section.additional_info, _FIELD_LIMIT), inline=False)

    claims = _claim_lines(raid)
    if claims:
        embed.add_field(name="Priority Slots", value=_truncate("\n".join(claims), _FIELD_LIMIT), inline=False)

    cosmetic = [r.emoji_markup() for r in raid.reactions.values() if not r.is_essential]
    if cosmetic:
        embed.add_field(name="Also React With", value=" ".join(cosmetic), inline=False)

    if raid.afk_deadline and raid.phase in (RaidPhase.PRE_OPEN, RaidPhase.OPEN):
        embed.add_field(name="Time Remaining", value=discord.utils.format_dt(raid.afk_deadline, "R"))
    embed.set_footer(text=f"Raid VC capacity: {raid.vc_limit}")
    embed.timestamp = datetime.now(UTC)
    return embed


def build_control_panel_embed(raid: RaidInstance) -> discord.Embed:
    """Leader-only control panel."""
    embed = discord.Embed(
        title=f"Control Panel: {raid.dungeon.name}",
        description=f"Phase: **{_PHASE_TITLES.get(raid.phase, raid.phase)}**",
        color=_color(raid),
    )
    embed.add_field(name="Leader", value=raid.initiator.mention)
    embed.add_field(name="Location", value=raid.location or "*Not set*")
    in_vc = len(raid.vc.members) if raid.vc else 0
    embed.add_field(name="Voice Channel", value=f"{in_vc}/{raid.vc_limit}")

    for key in raid.ledger.keys:
        reaction = raid.reactions[key]
        ids = raid.ledger.claimants(key)
        value = ", ".join(f"<@{m}>" for m in ids) if ids else "*None*"
        embed.add_field(
            name=f"{reaction.name} ({len(ids)}/{raid.ledger.capacity(key)})",
            value=_truncate(value, _FIELD_LIMIT),
            inline=False,
        )
    if raid.phase == RaidPhase.ACTIVE:
        embed.add_field(name="Raiders at Start", value=str(len(raid.members_joined)))
    embed.timestamp = datetime.now(UTC)
    return embed


def build_raid_closed_embed(raid: RaidInstance, *, aborted: bool, actor: str | None) -> discord.Embed:
    """Replacement for the join announcement once the raid is over."""
    verb = "aborted" if aborted else "ended"
    by = f" by {actor}" if actor else ""
    embed = discord.Embed(
        title=f"{raid.dungeon.name} raid {verb}",
        description=f"This raid was {verb}{by}. Keep an eye out for the next one!",
        color=discord.Color.red() if aborted else discord.Color.dark_grey(),
    )
    embed.timestamp = datetime.now(UTC)
    return embed


def build_parse_embed(
    vc_name: str,
    unparsed: Sequence[str],
    not_in_vc: Sequence[str],
) -> discord.Embed:
    embed = discord.Embed(title=f"Parse Results: {vc_name}", color=discord.Color.orange())
    embed.add_field(
        name="In VC, not in /who",
        value=_truncate(", ".join(unparsed) or "*None*", _FIELD_LIMIT),
        inline=False,
    )
    embed.add_field(
        name="In /who, not in VC",
        value=_truncate(", ".join(not_in_vc) or "*None*", _FIELD_LIMIT),
        inline=False,
    )
    return embed


# ---------------------------------------------------------------------------
# Quota embeds
# ---------------------------------------------------------------------------
def _point_value_lines(ledger: LedgerSnapshot, dungeon_names: Mapping[str, str] | None) -> str:
    if not ledger.point_values:
        return "*No point values configured.*"
    return "\n".join(
        f"{quota_log_label(k, dungeon_names)}: **{v}**" for k, v in ledger.point_values.items()
    )


def build_leaderboard_embed(
    role: discord.Role,
    ledger: LedgerSnapshot,
    rows: Sequence[MemberStanding],
    names: Mapping[int, str],
    *,
    dungeon_names: Mapping[str, str] | None = None,
    next_reset: datetime | None = None,
) -> discord.Embed:
    """Live quota standings for one role."""
    embed = discord.Embed(
        title=f"Quota Leaderboard: {role.name}",
        color=role.color if role.color.value else discord.Color.gold(),
    )
    start = discord.utils.format_dt(ledger.last_reset, "f") if ledger.last_reset else "N/A"
    embed.description = (
        f"**Period Start:** {start}\n"
        f"**Members:** {len(rows)}\n"
        f"**Minimum Points:** {ledger.threshold}"
    )
    if next_reset:
        embed.description += f"\n**Next Reset:** {discord.utils.format_dt(next_reset, 'R')}"
    embed.add_field(name="Point Values", value=_truncate(_point_value_lines(ledger, dungeon_names), _FIELD_LIMIT), inline=False)

    ranked = []
    for idx, row in enumerate(rows):
        badge = RANK_BADGES[idx] if idx < len(RANK_BADGES) else f"**{idx + 1}.**"
        done = f" {GREEN_CHECK}" if row.status == QuotaStatus.COMPLETE else ""
        ranked.append(f"{badge} {names.get(row.member_id, row.member_id)}: {row.points} PTS{done}")
    embed.add_field(
        name="Standings",
        value=_truncate("\n".join(ranked) or "*No members.*", _FIELD_LIMIT),
        inline=False,
    )
    embed.timestamp = datetime.now(UTC)
    return embed


def build_quota_report_embed(
    role_name: str,
    ledger: LedgerSnapshot,
    rows: Sequence[MemberStanding],
    *,
    period_end: datetime,
    archive_url: str | None,
    report_text: str,
) -> discord.Embed:
    """Summary shown in place of the leaderboard when a quota period closes."""
    complete = sum(1 for r in rows if r.status == QuotaStatus.COMPLETE)
    embed = discord.Embed(
        title=f"Quota Period Closed: {role_name}",
        color=discord.Color.dark_teal(),
    )
    start = discord.utils.format_dt(ledger.last_reset, "f") if ledger.last_reset else "N/A"
    embed.add_field(name="Period", value=f"{start} → {discord.utils.format_dt(period_end, 'f')}", inline=False)
    embed.add_field(name=f"{GREEN_CHECK} Complete", value=str(complete))
    embed.add_field(name=f"{RED_X} Not Complete", value=str(len(rows) - complete))
    if archive_url:
        embed.add_field(name="Full Report", value=f"[Download]({archive_url})", inline=False)
    else:
        embed.description = f"```\n{_truncate(report_text, _DESCRIPTION_LIMIT - 8)}\n```"
    embed.timestamp = period_end
    return embed
