"""
raidkeeper.services.raid_instance — One Live Raid
==================================================

**Why this file exists:**
A raid is a small state machine that owns three Discord resources (a
voice channel, a public join announcement and a leader control panel)
and an :class:`~raidkeeper.engine.early_location.EarlyLocationLedger`.
Everything that can happen to a running raid goes through a
:class:`RaidInstance`:

    PENDING ──start()──▶ PRE_OPEN ──open()──▶ OPEN ──activate()──▶ ACTIVE
                            │                   │                     │
                            └──abort()──────────┴──▶ ENDED ◀──end()───┘

Every transition checks its source phase first, so a transition
attempted from the wrong phase (a double-click, a timer racing a button)
is a silent no-op.

Concurrency model:
    Everything runs on the bot's single event loop.  Handlers interleave
    only at ``await`` points, so any check that gates a mutation is
    repeated after the last await before the mutation.  Persistence goes
    through :func:`~raidkeeper.database.engine.run_db` *after* the
    in-memory change; a failed journal write is logged, never raised.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING, Any

import discord
from discord.ext import tasks
from sqlalchemy.exc import SQLAlchemyError

from raidkeeper.constants import (
    ACTIVE_PANEL_TIMEOUT_SECONDS,
    CLAIM_CONFIRM_TIMEOUT_SECONDS,
    FALLBACK_VC_MARKERS,
    REFRESH_INTERVAL_SECONDS,
    RUN_RESULT_TIMEOUT_SECONDS,
)
from raidkeeper.database.engine import run_db
from raidkeeper.database.models import QuotaLogType, RaidPhase
from raidkeeper.engine.catalog import CatalogReaction
from raidkeeper.engine.dungeons import Dungeon
from raidkeeper.engine.early_location import EarlyLocationLedger
from raidkeeper.engine.guild import GuildSettings, SectionSettings
from raidkeeper.engine.permissions import PermissionEntry, compute_overwrites
from raidkeeper.engine.reactions import ReactionDescriptor, resolve_reactions
from raidkeeper.engine.reconcile import get_all_names, reconcile
from raidkeeper.services import embeds
from raidkeeper.services.guild_repository import (
    RaidRecord,
    append_claim,
    delete_raid,
    insert_raid,
    update_raid,
)
from raidkeeper.services.quota_service import credit_best

if TYPE_CHECKING:
    from raidkeeper.bot.core import RaidKeeperBot

logger = logging.getLogger(__name__)

_LIVE_PHASES = (RaidPhase.PRE_OPEN, RaidPhase.OPEN)


class RaidConfigurationError(RuntimeError):
    """The section is missing something a raid needs; nothing was created."""


class RaidInstance:
    """A single raid from announcement to teardown.

    Parameters
    ----------
    bot:
        The running bot; supplies ``engine``, ``registry``, ``cfg`` and
        optionally ``parser``.
    guild:
        Guild the raid runs in.
    settings, section:
        Snapshots of the guild and section configuration at start time.
    dungeon:
        Dungeon being raided.
    initiator:
        The leader who started the raid.
    """

    def __init__(
        self,
        bot: RaidKeeperBot,
        guild: discord.Guild,
        settings: GuildSettings,
        section: SectionSettings,
        dungeon: Dungeon,
        initiator: discord.Member,
        *,
        location: str = "",
        raid_message: str = "",
    ) -> None:
        self.bot = bot
        self.guild = guild
        self.settings = settings
        self.section = section
        self.dungeon = dungeon
        self.initiator = initiator
        self.location = location
        self.raid_message = raid_message

        self.phase = RaidPhase.PENDING
        override = settings.dungeon_overrides.get(dungeon.code_name)
        self.vc_limit = (override.vc_limit if override and override.vc_limit else None) or section.vc_limit
        self.reactions: dict[str, ReactionDescriptor] = resolve_reactions(
            dungeon,
            settings,
            nitro_limit=section.effective_nitro_limit(self.vc_limit),
            emoji_usable=self._emoji_usable,
        )
        self.ledger = EarlyLocationLedger(self.reactions)
        self.members_joined: list[int] = []
        self.afk_deadline: datetime | None = None

        self.vc: discord.VoiceChannel | None = None
        self.afk_check_channel: discord.TextChannel | None = None
        self.control_panel_channel: discord.TextChannel | None = None
        self.afk_check_message: discord.Message | None = None
        self.control_panel_message: discord.Message | None = None

        self._afk_view: discord.ui.View | None = None
        self._panel_view: discord.ui.View | None = None
        self._refresh_loop: tasks.Loop | None = None
        self._timeout_task: asyncio.Task | None = None
        self._confirming: set[int] = set()
        self._cleaned_up = False

    def __repr__(self) -> str:
        return f"<RaidInstance {self.dungeon.code_name} vc={self.vc_id} {self.phase}>"

    # -------------------------------------------------------------------
    # Identity
    # -------------------------------------------------------------------
    @property
    def vc_id(self) -> int | None:
        return self.vc.id if self.vc else None

    @property
    def guild_id(self) -> int:
        return self.guild.id

    @property
    def afk_check_message_id(self) -> int | None:
        return self.afk_check_message.id if self.afk_check_message else None

    @property
    def control_panel_message_id(self) -> int | None:
        return self.control_panel_message.id if self.control_panel_message else None

    def _emoji_usable(self, reaction: CatalogReaction) -> bool:
        if reaction.emoji_id:
            return self.bot.get_emoji(reaction.emoji_id) is not None
        return reaction.has_emoji

    def _resources_exist(self) -> bool:
        return None not in (self.vc, self.afk_check_message, self.control_panel_message)

    def can_operate(self, member: discord.abc.User) -> bool:
        """Leaders of this section (and the initiator) drive the panel."""
        if member.id == self.initiator.id:
            return True
        role_ids = {r.id for r in getattr(member, "roles", ())}
        allowed = self.settings.leader_role_ids(self.section)
        allowed.add(self.bot.cfg.admin_role_id)
        return bool(role_ids & allowed)

    def raid_record(self) -> RaidRecord | None:
        """Serializable snapshot; ``None`` until all three resources exist."""
        if not self._resources_exist():
            return None
        return RaidRecord(
            guild_id=self.guild.id,
            vc_id=self.vc.id,
            section_identifier=self.section.identifier,
            dungeon_code=self.dungeon.code_name,
            initiator_id=self.initiator.id,
            afk_check_channel_id=self.afk_check_message.channel.id,
            control_panel_channel_id=self.control_panel_message.channel.id,
            afk_check_message_id=self.afk_check_message.id,
            control_panel_message_id=self.control_panel_message.id,
            phase=self.phase.value,
            location=self.location,
            raid_message=self.raid_message,
            members_joined=list(self.members_joined),
            claims=[
                (member_id, key)
                for key, ids in self.ledger.snapshot().items()
                for member_id in ids
            ],
        )

    # -------------------------------------------------------------------
    # Permission overwrites
    # -------------------------------------------------------------------
    def _overwrites(
        self, entries: tuple[PermissionEntry, ...]
    ) -> dict[discord.Role, discord.PermissionOverwrite]:
        computed = compute_overwrites(
            entries,
            everyone_id=self.guild.default_role.id,
            member_role_id=self.section.verified_role_id,
            guild_roles=self.settings.roles,
            section_leader_roles=self.section.leader_roles,
            role_exists=lambda rid: self.guild.get_role(rid) is not None,
        )
        result: dict[discord.Role, discord.PermissionOverwrite] = {}
        for ow in computed:
            role = self.guild.get_role(ow.role_id)
            if role is None:
                continue
            flags: dict[str, bool] = {p: True for p in ow.allow if p in discord.Permissions.VALID_FLAGS}
            flags.update({p: False for p in ow.deny if p in discord.Permissions.VALID_FLAGS})
            result[role] = discord.PermissionOverwrite(**flags)
        return result

    async def _apply_overwrites(self, entries: tuple[PermissionEntry, ...]) -> None:
        if self.vc is None:
            return
        try:
            await self.vc.edit(overwrites=self._overwrites(entries))
        except discord.HTTPException:
            logger.warning("Could not update overwrites on raid VC %s", self.vc_id)

    # -------------------------------------------------------------------
    # Persistence
    # -------------------------------------------------------------------
    async def _journal(self, **fields: Any) -> None:
        if self.vc is None:
            return
        try:
            await run_db(update_raid, self.bot.engine, self.vc.id, **fields)
        except SQLAlchemyError:
            logger.exception("Failed to journal raid %s update", self.vc_id)

    async def _forget(self) -> None:
        if self.vc is None:
            return
        try:
            await run_db(delete_raid, self.bot.engine, self.vc.id)
        except SQLAlchemyError:
            logger.exception("Failed to delete raid %s from the journal", self.vc_id)

    async def add_early_location_claim(
        self, member_id: int, key: str, *, persist: bool = True
    ) -> bool:
        """Record a claim; ``False`` if it would exceed capacity.

        The in-memory ledger is updated before any await, so a second
        claimant checking after this returns sees the slot as taken.
        """
        if not self.ledger.claim(member_id, key):
            return False
        if persist and self.vc is not None:
            try:
                await run_db(append_claim, self.bot.engine, self.vc.id, member_id, key)
            except SQLAlchemyError:
                logger.exception(
                    "Failed to journal claim %s by %s in raid %s", key, member_id, self.vc_id
                )
        return True

    # -------------------------------------------------------------------
    # Timers & views
    # -------------------------------------------------------------------
    def _afk_timeout_seconds(self) -> float:
        minutes = self.section.afk_check_timeout_minutes or self.bot.cfg.afk_check_timeout_minutes
        return minutes * 60.0

    def _schedule_timeout(self, seconds: float) -> None:
        self._cancel_timeout()
        self._timeout_task = asyncio.create_task(self._fire_after(seconds))

    def _cancel_timeout(self) -> None:
        if self._timeout_task is not None:
            self._timeout_task.cancel()
            self._timeout_task = None

    async def _fire_after(self, seconds: float) -> None:
        await asyncio.sleep(seconds)
        self._timeout_task = None
        try:
            await self.on_timeout()
        except Exception:
            logger.exception("Raid %s timeout handler failed", self.vc_id)

    async def on_timeout(self) -> None:
        """Natural expiry of the current phase's window."""
        logger.info("Raid %s %s window expired", self.vc_id, self.phase)
        if self.phase == RaidPhase.PRE_OPEN:
            await self.open()
        elif self.phase == RaidPhase.OPEN:
            await self.activate()
        elif self.phase == RaidPhase.ACTIVE:
            await self.end(None)

    def _install_views(self) -> None:
        from raidkeeper.services.raid_views import AfkCheckView, ControlPanelView, RejoinView

        self._stop_views()
        if self.phase in _LIVE_PHASES:
            self._afk_view = AfkCheckView(self)
        elif self.phase == RaidPhase.ACTIVE:
            self._afk_view = RejoinView(self)
        self._panel_view = ControlPanelView(self)

    def _stop_views(self) -> None:
        for view in (self._afk_view, self._panel_view):
            if view is not None:
                view.stop()
        self._afk_view = None
        self._panel_view = None

    def _start_refresh(self) -> None:
        self._stop_refresh()
        self._refresh_loop = tasks.loop(seconds=REFRESH_INTERVAL_SECONDS)(self.refresh)
        self._refresh_loop.start()

    def _stop_refresh(self) -> None:
        if self._refresh_loop is not None:
            self._refresh_loop.cancel()
            self._refresh_loop = None

    def _stop_everything(self) -> None:
        self._cancel_timeout()
        self._stop_refresh()
        self._stop_views()

    async def refresh(self) -> None:
        """Re-render both messages.  Failures are logged and dropped."""
        if self.phase in (RaidPhase.PENDING, RaidPhase.ENDED):
            return
        if self.phase in _LIVE_PHASES and self.afk_check_message is not None:
            try:
                await self.afk_check_message.edit(embed=embeds.build_afk_check_embed(self))
            except discord.HTTPException as exc:
                logger.debug("Join message refresh failed for raid %s: %s", self.vc_id, exc)
        if self.control_panel_message is not None:
            try:
                await self.control_panel_message.edit(embed=embeds.build_control_panel_embed(self))
            except discord.HTTPException as exc:
                logger.debug("Panel refresh failed for raid %s: %s", self.vc_id, exc)

    async def _push_views(self) -> None:
        """Attach the current views to both messages."""
        if self.afk_check_message is not None:
            try:
                await self.afk_check_message.edit(
                    embed=embeds.build_afk_check_embed(self), view=self._afk_view
                )
            except discord.HTTPException:
                logger.warning("Could not update join message for raid %s", self.vc_id)
        if self.control_panel_message is not None:
            try:
                await self.control_panel_message.edit(
                    embed=embeds.build_control_panel_embed(self), view=self._panel_view
                )
            except discord.HTTPException:
                logger.warning("Could not update control panel for raid %s", self.vc_id)

    # -------------------------------------------------------------------
    # Transitions
    # -------------------------------------------------------------------
    async def start(self) -> None:
        """PENDING → PRE_OPEN: create the VC and both messages.

        Raises
        ------
        RaidConfigurationError
            If the section has no usable verified role or channels.  Nothing
            has been created when this is raised.
        """
        if self.phase != RaidPhase.PENDING:
            return
        if not self.section.verified_role_id or self.guild.get_role(self.section.verified_role_id) is None:
            raise RaidConfigurationError(
                f"Section {self.section.name!r} has no verified role configured."
            )
        afk_channel = self.guild.get_channel(self.section.afk_check_channel_id or 0)
        panel_channel = self.guild.get_channel(self.section.control_panel_channel_id or 0)
        if not isinstance(afk_channel, discord.TextChannel) or not isinstance(panel_channel, discord.TextChannel):
            raise RaidConfigurationError(
                f"Section {self.section.name!r} is missing its AFK-check or control-panel channel."
            )
        self.afk_check_channel = afk_channel
        self.control_panel_channel = panel_channel

        self.phase = RaidPhase.PRE_OPEN
        self.vc = await self.guild.create_voice_channel(
            name=f"{self.initiator.display_name}'s {self.dungeon.name}"[:100],
            category=afk_channel.category,
            overwrites=self._overwrites(self.section.pre_open_permissions),
            user_limit=min(self.vc_limit, 99),
            reason=f"Raid started by {self.initiator}",
        )
        self.afk_deadline = datetime.now(UTC) + timedelta(seconds=self._afk_timeout_seconds())
        self._install_views()
        self.control_panel_message = await panel_channel.send(
            embed=embeds.build_control_panel_embed(self), view=self._panel_view
        )
        self.afk_check_message = await afk_channel.send(
            content=f"@here A {self.dungeon.name} raid is starting!",
            embed=embeds.build_afk_check_embed(self),
            view=self._afk_view,
            allowed_mentions=discord.AllowedMentions(everyone=True),
        )
        try:
            await self.afk_check_message.pin()
        except discord.HTTPException:
            logger.debug("Could not pin join message for raid %s", self.vc_id)
        await self._add_cosmetic_reactions()

        record = self.raid_record()
        try:
            await run_db(insert_raid, self.bot.engine, record)
        except SQLAlchemyError:
            logger.exception("Failed to journal new raid %s", self.vc_id)
        self._schedule_timeout(self._afk_timeout_seconds())
        self._start_refresh()
        self.bot.registry.register(self.afk_check_message.id, self)
        logger.info(
            "Raid %s started in guild %s by %s (%d essential reactions)",
            self.vc_id, self.guild.id, self.initiator.id, len(self.ledger.keys),
        )

    async def _add_cosmetic_reactions(self) -> None:
        for reaction in self.reactions.values():
            if reaction.is_essential:
                continue
            emoji: Any = self.bot.get_emoji(reaction.emoji_id) if reaction.emoji_id else reaction.emoji
            if not emoji:
                continue
            try:
                await self.afk_check_message.add_reaction(emoji)
            except discord.HTTPException:
                logger.debug("Could not add reaction %s to raid %s", reaction.key, self.vc_id)

    async def open(self) -> bool:
        """PRE_OPEN → OPEN: let verified raiders in."""
        if self.phase != RaidPhase.PRE_OPEN or not self._resources_exist():
            return False
        self.phase = RaidPhase.OPEN
        await self._apply_overwrites(self.section.open_permissions)
        await self._journal(phase=self.phase.value)
        self.afk_deadline = datetime.now(UTC) + timedelta(seconds=self._afk_timeout_seconds())
        self._install_views()
        await self._push_views()
        self._schedule_timeout(self._afk_timeout_seconds())
        self._start_refresh()
        logger.info("Raid %s opened", self.vc_id)
        return True

    async def activate(self) -> bool:
        """OPEN → ACTIVE: close the doors and snapshot who made it."""
        if self.phase != RaidPhase.OPEN or not self._resources_exist():
            return False
        self.phase = RaidPhase.ACTIVE
        self._cancel_timeout()
        await self._apply_overwrites(self.section.pre_open_permissions)
        self.members_joined = [m.id for m in self.vc.members if not m.bot]
        await self._journal(phase=self.phase.value, members_joined=list(self.members_joined))
        try:
            await self.afk_check_message.clear_reactions()
        except discord.HTTPException:
            logger.debug("Could not clear reactions for raid %s", self.vc_id)
        self.afk_deadline = None
        self._install_views()
        await self._push_views()
        self._schedule_timeout(ACTIVE_PANEL_TIMEOUT_SECONDS)
        self._start_refresh()
        logger.info("Raid %s active with %d raiders", self.vc_id, len(self.members_joined))
        return True

    async def abort(self, actor: discord.abc.User | None = None) -> bool:
        """PRE_OPEN/OPEN → ENDED without running."""
        if self.phase not in _LIVE_PHASES:
            return False
        self._stop_everything()
        await self._forget()
        await self._close_announcement(aborted=True, actor=actor)
        await self.cleanup()
        logger.info("Raid %s aborted by %s", self.vc_id, getattr(actor, "id", None))
        return True

    async def end(self, actor: discord.abc.User | None = None) -> bool:
        """ACTIVE → ENDED."""
        if self.phase != RaidPhase.ACTIVE:
            return False
        self._stop_everything()
        await self._close_announcement(aborted=False, actor=actor)
        await self.cleanup()
        logger.info("Raid %s ended by %s", self.vc_id, getattr(actor, "id", None))
        return True

    async def _close_announcement(self, *, aborted: bool, actor: discord.abc.User | None) -> None:
        if self.afk_check_message is None:
            return
        name = getattr(actor, "display_name", None)
        try:
            await self.afk_check_message.edit(
                content=None,
                embed=embeds.build_raid_closed_embed(self, aborted=aborted, actor=name),
                view=None,
            )
        except discord.HTTPException:
            logger.debug("Could not edit join message for raid %s", self.vc_id)

    # -------------------------------------------------------------------
    # Teardown
    # -------------------------------------------------------------------
    async def cleanup(self) -> None:
        """Release every resource the raid owns.  Safe to call twice."""
        if self._cleaned_up:
            return
        self._cleaned_up = True
        self.phase = RaidPhase.ENDED
        self._stop_everything()
        await self._forget()

        if self.control_panel_message is not None:
            try:
                await self.control_panel_message.delete()
            except discord.HTTPException:
                logger.debug("Control panel for raid %s already gone", self.vc_id)
        if self.afk_check_message is not None:
            try:
                await self.afk_check_message.unpin()
            except discord.HTTPException:
                logger.debug("Could not unpin join message for raid %s", self.vc_id)

        if self.vc is not None:
            await self._evacuate_and_delete_vc()

        if self.afk_check_message is not None:
            self.bot.registry.unregister(self.afk_check_message.id)

    def _fallback_channel(self) -> discord.VoiceChannel | None:
        """Queue/lounge VC in the raid's category, else the AFK channel."""
        category = self.vc.category if self.vc else None
        candidates = category.voice_channels if category else self.guild.voice_channels
        for channel in candidates:
            if channel.id == self.vc_id:
                continue
            lowered = channel.name.lower()
            if any(marker in lowered for marker in FALLBACK_VC_MARKERS):
                return channel
        configured = self.settings.channels.get("afk_channel")
        if configured:
            channel = self.guild.get_channel(configured)
            if isinstance(channel, discord.VoiceChannel):
                return channel
        return self.guild.afk_channel

    async def _evacuate_and_delete_vc(self) -> None:
        vc = self.vc
        fallback = self._fallback_channel()
        for member in list(vc.members):
            try:
                await member.move_to(fallback, reason="Raid ended")
            except discord.HTTPException:
                logger.debug("Could not move %s out of raid VC %s", member.id, vc.id)

        attempts = self.bot.cfg.vc_cleanup_attempts
        delay = self.bot.cfg.vc_cleanup_delay_seconds
        for attempt in range(attempts):
            if not vc.members:
                break
            await asyncio.sleep(min(delay * (2 ** attempt), 30.0))
        else:
            if vc.members:
                logger.warning(
                    "Raid VC %s still has %d member(s) after %d checks; deleting anyway",
                    vc.id, len(vc.members), attempts,
                )
        try:
            await vc.delete(reason="Raid ended")
        except discord.NotFound:
            pass
        except discord.HTTPException:
            logger.warning("Could not delete raid VC %s", vc.id)

    # -------------------------------------------------------------------
    # Claims
    # -------------------------------------------------------------------
    async def _reply(self, interaction: discord.Interaction, content: str) -> None:
        try:
            if interaction.response.is_done():
                await interaction.edit_original_response(content=content, view=None)
            else:
                await interaction.response.send_message(content, ephemeral=True)
        except discord.HTTPException:
            logger.debug("Could not reply to interaction in raid %s", self.vc_id)

    async def _confirm(self, interaction: discord.Interaction, reaction: ReactionDescriptor) -> bool:
        """Ask the member to confirm; a timeout counts as no."""
        from raidkeeper.services.raid_views import ConfirmView

        view = ConfirmView(interaction.user.id, timeout=CLAIM_CONFIRM_TIMEOUT_SECONDS)
        await interaction.response.send_message(
            f"You pressed {reaction.emoji_markup()} **{reaction.name}**. "
            "Confirm that you will bring it to this raid.",
            view=view,
            ephemeral=True,
        )
        await view.wait()
        return bool(view.value)

    def _qualifies_for_early_location(self, member: discord.Member) -> bool:
        if getattr(member, "premium_since", None) is not None:
            return True
        return any(r.id == self.settings.nitro_role_id for r in member.roles)

    async def handle_claim(self, interaction: discord.Interaction, key: str) -> bool:
        """A member pressed the button for an essential reaction."""
        member = interaction.user
        reaction = self.reactions.get(key)
        if self.phase not in _LIVE_PHASES or reaction is None or not reaction.is_essential:
            await self._reply(interaction, "This raid is no longer accepting that reaction.")
            return False
        if member.id in self._confirming:
            await self._reply(
                interaction,
                "You are in the process of confirming a reaction. Finish that first.",
            )
            return False
        voice = getattr(member, "voice", None)
        if voice is None or voice.channel is None:
            await self._reply(interaction, "You need to be in a voice channel to claim a priority slot.")
            return False
        if self.ledger.has_claimed(member.id, key):
            await self._reply(interaction, "You have already selected this!")
            return False
        if not self.ledger.still_needs(key):
            await self._reply(interaction, f"Sorry, but the maximum number of {reaction.name} has been reached.")
            return False

        if reaction.is_early_location:
            if not self._qualifies_for_early_location(member):
                await self._reply(interaction, f"You do not have the role needed to use {reaction.name}.")
                return False
        else:
            self._confirming.add(member.id)
            try:
                accepted = await self._confirm(interaction, reaction)
            finally:
                self._confirming.discard(member.id)
            if self.phase not in _LIVE_PHASES or self.vc is None:
                await self._reply(interaction, "This raid has closed.")
                return False
            if not accepted:
                await self._reply(interaction, "You did not confirm your choice.")
                return False

        if not self.ledger.still_needs(key) or not await self.add_early_location_claim(member.id, key):
            await self._reply(interaction, f"Someone else took the last {reaction.name} slot.")
            return False

        if not self.ledger.still_needs(key) and self._afk_view is not None:
            self._afk_view.disable_key(key)
            try:
                await self.afk_check_message.edit(view=self._afk_view)
            except discord.HTTPException:
                logger.debug("Could not disable %s button in raid %s", key, self.vc_id)
        await self._move_in(member)
        where = self.location or "not set yet; watch this message"
        await self._reply(
            interaction,
            f"Thank you for confirming your choice of: {reaction.emoji_markup()} {reaction.name}\n"
            f"The location is: **{where}**",
        )
        logger.info("Member %s claimed %s in raid %s", member.id, key, self.vc_id)
        return True

    async def _move_in(self, member: discord.Member) -> None:
        voice = getattr(member, "voice", None)
        if self.vc is None or voice is None or voice.channel is None or voice.channel.id == self.vc.id:
            return
        try:
            await member.move_to(self.vc, reason="Priority raid slot")
        except discord.HTTPException:
            logger.debug("Could not move %s into raid VC %s", member.id, self.vc.id)

    # -------------------------------------------------------------------
    # Voice activity
    # -------------------------------------------------------------------
    async def voice_state_changed(
        self, member: discord.Member, before: discord.VoiceState, after: discord.VoiceState
    ) -> None:
        """Log movement relative to the raid VC and pull claimants in."""
        if self.vc is None or self.phase == RaidPhase.ENDED:
            return
        was_in = before.channel is not None and before.channel.id == self.vc.id
        now_in = after.channel is not None and after.channel.id == self.vc.id

        if now_in and not was_in:
            logger.info("Raid %s: %s joined", self.vc.id, member.id)
        elif was_in and not now_in:
            logger.info("Raid %s: %s left", self.vc.id, member.id)
        elif now_in:
            for attr in ("self_mute", "self_deaf", "self_video", "self_stream"):
                if getattr(before, attr) != getattr(after, attr):
                    logger.info(
                        "Raid %s: %s %s=%s", self.vc.id, member.id, attr, getattr(after, attr)
                    )

        if (
            self.phase in _LIVE_PHASES
            and after.channel is not None
            and not now_in
            and member.id in self.ledger.all_claimant_ids()
        ):
            await self._move_in(member)

    async def reconnect(self, interaction: discord.Interaction) -> None:
        """Rejoin button: move a snapshotted raider back into the VC."""
        member = interaction.user
        if self.phase != RaidPhase.ACTIVE or self.vc is None:
            await self._reply(interaction, "This raid is not running.")
            return
        if member.id not in self.members_joined:
            await self._reply(interaction, "You were not in this raid when it started.")
            return
        voice = getattr(member, "voice", None)
        if voice is None or voice.channel is None:
            await self._reply(interaction, "Join any voice channel first, then press Reconnect again.")
            return
        await self._move_in(member)
        await self._reply(interaction, f"Moved you back into {self.vc.mention}.")

    # -------------------------------------------------------------------
    # Leader actions
    # -------------------------------------------------------------------
    async def set_location(self, location: str) -> None:
        self.location = location.strip()[:200]
        await self._journal(location=self.location)
        await self.refresh()
        logger.info("Raid %s location set", self.vc_id)

    async def set_locked(self, locked: bool) -> bool:
        """Toggle @everyone's connect bit while the raid runs."""
        if self.phase != RaidPhase.ACTIVE or self.vc is None:
            return False
        everyone = self.guild.default_role
        overwrite = self.vc.overwrites_for(everyone)
        overwrite.connect = False if locked else None
        try:
            await self.vc.set_permissions(everyone, overwrite=overwrite)
        except discord.HTTPException:
            logger.warning("Could not %s raid VC %s", "lock" if locked else "unlock", self.vc_id)
            return False
        return True

    async def credit_quota(
        self, member: discord.Member, log_type: QuotaLogType, dungeon_id: str | None = None
    ) -> int | None:
        """Credit *member* on whichever ledger they are furthest behind on."""
        try:
            return await run_db(
                credit_best,
                self.bot.engine,
                self.guild.id,
                member.id,
                [r.id for r in member.roles],
                log_type.value,
                dungeon_id,
            )
        except SQLAlchemyError:
            logger.exception("Quota credit %s for %s failed", log_type, member.id)
            return None

    async def end_with_result(self, interaction: discord.Interaction) -> None:
        """End button: ask success/failure, end the raid, credit the leader."""
        from raidkeeper.services.raid_views import RunResultView

        view = RunResultView(interaction.user.id, timeout=RUN_RESULT_TIMEOUT_SECONDS)
        await interaction.response.send_message(
            "Was this run successful?", view=view, ephemeral=True
        )
        await view.wait()
        ended = await self.end(interaction.user)
        if not ended:
            await self._reply(interaction, "This raid has already ended.")
            return
        if view.value is None:
            await self._reply(interaction, "Raid ended. No run result was logged.")
            return
        log_type = QuotaLogType.RUN_COMPLETE if view.value else QuotaLogType.RUN_FAILED
        role_id = await self.credit_quota(self.initiator, log_type, self.dungeon.code_name)
        note = f" Logged to <@&{role_id}>." if role_id else ""
        await self._reply(interaction, f"Raid ended.{note}")

    async def parse_screenshot(self, interaction: discord.Interaction, url: str) -> None:
        """Compare a ``/who`` screenshot against the raid VC."""
        parser = getattr(self.bot, "parser", None)
        if self.phase != RaidPhase.ACTIVE or self.vc is None:
            await self._reply(interaction, "Parsing is only available while the raid is running.")
            return
        if parser is None:
            await self._reply(interaction, "No screenshot parser is configured.")
            return
        await interaction.response.defer(ephemeral=True, thinking=True)
        names = await parser.parse(url)
        members = {m.id: get_all_names(m.display_name) for m in self.vc.members if not m.bot}
        result = reconcile(members, names)
        if not result.is_valid:
            await interaction.followup.send("The screenshot could not be read.", ephemeral=True)
            return

        unparsed = [
            member.display_name if (member := self.guild.get_member(mid)) else str(mid)
            for mid in result.in_vc_but_unparsed
        ]
        embed = embeds.build_parse_embed(self.vc.name, unparsed, result.parsed_but_not_in_vc)
        await interaction.followup.send(embed=embed, ephemeral=True)
        await self.credit_quota(interaction.user, QuotaLogType.PARSE)

    # -------------------------------------------------------------------
    # Recovery
    # -------------------------------------------------------------------
    @classmethod
    async def restore(
        cls,
        bot: RaidKeeperBot,
        guild: discord.Guild,
        settings: GuildSettings,
        record: RaidRecord,
    ) -> RaidInstance | None:
        """Rebuild a raid from its journal row; ``None`` if anything is gone."""
        section = settings.section(record.section_identifier)
        dungeon = settings.find_dungeon(record.dungeon_code)
        initiator = guild.get_member(record.initiator_id)
        vc = guild.get_channel(record.vc_id)
        afk_channel = guild.get_channel(record.afk_check_channel_id)
        panel_channel = guild.get_channel(record.control_panel_channel_id)
        if None in (section, dungeon, initiator) or not isinstance(vc, discord.VoiceChannel):
            return None
        if not isinstance(afk_channel, discord.TextChannel) or not isinstance(panel_channel, discord.TextChannel):
            return None
        try:
            afk_message = await afk_channel.fetch_message(record.afk_check_message_id)
            panel_message = await panel_channel.fetch_message(record.control_panel_message_id)
        except discord.HTTPException:
            return None

        raid = cls(
            bot, guild, settings, section, dungeon, initiator,
            location=record.location, raid_message=record.raid_message,
        )
        raid.phase = RaidPhase(record.phase)
        if raid.phase not in (*_LIVE_PHASES, RaidPhase.ACTIVE):
            return None
        raid.vc = vc
        raid.afk_check_channel = afk_channel
        raid.control_panel_channel = panel_channel
        raid.afk_check_message = afk_message
        raid.control_panel_message = panel_message
        raid.members_joined = list(record.members_joined)
        restored = raid.ledger.restore(record.claims)

        if raid.phase in _LIVE_PHASES:
            raid.afk_deadline = datetime.now(UTC) + timedelta(seconds=raid._afk_timeout_seconds())
            raid._schedule_timeout(raid._afk_timeout_seconds())
        else:
            raid._schedule_timeout(ACTIVE_PANEL_TIMEOUT_SECONDS)
        raid._install_views()
        await raid._push_views()
        raid._start_refresh()
        bot.registry.register(afk_message.id, raid)
        logger.info("Recovered raid %s in %s with %d claim(s)", vc.id, raid.phase, restored)
        return raid
