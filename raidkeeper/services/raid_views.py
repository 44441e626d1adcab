"""
raidkeeper.services.raid_views — Buttons, Prompts & Modals for Raids
=====================================================================

Thin UI layer: every callback forwards to a :class:`RaidInstance`
method, which owns all state changes.  Views carry no timeouts of their
own for phase windows; the raid schedules those itself so that message
edits and clicks cannot push a deadline back.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING

import discord

from raidkeeper.constants import (
    GREEN_CHECK,
    LOCATION_PROMPT_TIMEOUT_SECONDS,
    LOCK,
    MAGNIFIER,
    MAP,
    PLAY,
    RECONNECT,
    RED_X,
    STOP,
    UNLOCK,
)
from raidkeeper.database.models import RaidPhase

if TYPE_CHECKING:
    from raidkeeper.services.raid_instance import RaidInstance

logger = logging.getLogger(__name__)

_MAX_BUTTONS = 25


# ---------------------------------------------------------------------------
# Join announcement
# ---------------------------------------------------------------------------
class ClaimButton(discord.ui.Button):
    def __init__(self, raid: RaidInstance, key: str) -> None:
        reaction = raid.reactions[key]
        emoji = raid.bot.get_emoji(reaction.emoji_id) if reaction.emoji_id else reaction.emoji
        super().__init__(
            label=reaction.name[:80],
            emoji=emoji or None,
            style=discord.ButtonStyle.primary,
            disabled=not raid.ledger.still_needs(key),
        )
        self.key = key

    async def callback(self, interaction: discord.Interaction) -> None:
        await self.view.raid.handle_claim(interaction, self.key)


class AfkCheckView(discord.ui.View):
    """One button per essential reaction."""

    def __init__(self, raid: RaidInstance) -> None:
        super().__init__(timeout=None)
        self.raid = raid
        for key in raid.ledger.keys[:_MAX_BUTTONS]:
            self.add_item(ClaimButton(raid, key))

    def disable_key(self, key: str) -> None:
        for item in self.children:
            if isinstance(item, ClaimButton) and item.key == key:
                item.disabled = True


class RejoinView(discord.ui.View):
    def __init__(self, raid: RaidInstance) -> None:
        super().__init__(timeout=None)
        self.raid = raid

    @discord.ui.button(label="Reconnect", emoji=RECONNECT, style=discord.ButtonStyle.secondary)
    async def reconnect(self, interaction: discord.Interaction, button: discord.ui.Button) -> None:
        await self.raid.reconnect(interaction)


# ---------------------------------------------------------------------------
# Control panel
# ---------------------------------------------------------------------------
class PanelButton(discord.ui.Button):
    def __init__(
        self,
        label: str,
        emoji: str,
        style: discord.ButtonStyle,
        action: Callable[[discord.Interaction], Awaitable[None]],
    ) -> None:
        super().__init__(label=label, emoji=emoji, style=style)
        self._action = action

    async def callback(self, interaction: discord.Interaction) -> None:
        await self._action(interaction)


class ControlPanelView(discord.ui.View):
    """Leader buttons for whatever phase the raid is in."""

    def __init__(self, raid: RaidInstance) -> None:
        super().__init__(timeout=None)
        self.raid = raid
        green, red, grey = (
            discord.ButtonStyle.success,
            discord.ButtonStyle.danger,
            discord.ButtonStyle.secondary,
        )
        if raid.phase == RaidPhase.PRE_OPEN:
            self.add_item(PanelButton("Start AFK Check", PLAY, green, self._open))
            self.add_item(PanelButton("Abort", RED_X, red, self._abort))
        elif raid.phase == RaidPhase.OPEN:
            self.add_item(PanelButton("End AFK Check", STOP, green, self._activate))
            self.add_item(PanelButton("Abort", RED_X, red, self._abort))
        elif raid.phase == RaidPhase.ACTIVE:
            self.add_item(PanelButton("End Raid", STOP, red, self._end))
            self.add_item(PanelButton("Lock", LOCK, grey, self._lock))
            self.add_item(PanelButton("Unlock", UNLOCK, grey, self._unlock))
            self.add_item(PanelButton("Parse VC", MAGNIFIER, grey, self._parse))
        self.add_item(PanelButton("Set Location", MAP, grey, self._location))

    async def interaction_check(self, interaction: discord.Interaction) -> bool:
        if self.raid.can_operate(interaction.user):
            return True
        await interaction.response.send_message(
            "Only raid leaders can use this panel.", ephemeral=True
        )
        return False

    async def _transition(
        self, interaction: discord.Interaction, step: Callable[[], Awaitable[bool]], done: str
    ) -> None:
        await interaction.response.defer(ephemeral=True, thinking=True)
        ok = await step()
        msg = done if ok else "That action is not possible in the current phase."
        await interaction.followup.send(msg, ephemeral=True)

    async def _open(self, interaction: discord.Interaction) -> None:
        await self._transition(interaction, self.raid.open, "AFK check is now open.")

    async def _activate(self, interaction: discord.Interaction) -> None:
        await self._transition(interaction, self.raid.activate, "AFK check ended; the raid is running.")

    async def _abort(self, interaction: discord.Interaction) -> None:
        await self._transition(
            interaction, lambda: self.raid.abort(interaction.user), "Raid aborted."
        )

    async def _end(self, interaction: discord.Interaction) -> None:
        await self.raid.end_with_result(interaction)

    async def _lock(self, interaction: discord.Interaction) -> None:
        await self._transition(
            interaction, lambda: self.raid.set_locked(True), f"{LOCK} Voice channel locked."
        )

    async def _unlock(self, interaction: discord.Interaction) -> None:
        await self._transition(
            interaction, lambda: self.raid.set_locked(False), f"{UNLOCK} Voice channel unlocked."
        )

    async def _location(self, interaction: discord.Interaction) -> None:
        await interaction.response.send_modal(LocationModal(self.raid))

    async def _parse(self, interaction: discord.Interaction) -> None:
        await interaction.response.send_modal(ParseModal(self.raid))


# ---------------------------------------------------------------------------
# Prompts
# ---------------------------------------------------------------------------
class _OwnerPrompt(discord.ui.View):
    """Two-button prompt only its owner may answer.  ``value`` is ``None``
    until answered (and stays ``None`` on timeout)."""

    def __init__(self, owner_id: int, *, timeout: float) -> None:
        super().__init__(timeout=timeout)
        self.owner_id = owner_id
        self.value: bool | None = None

    async def interaction_check(self, interaction: discord.Interaction) -> bool:
        return interaction.user.id == self.owner_id

    async def _answer(self, interaction: discord.Interaction, value: bool, text: str) -> None:
        self.value = value
        await interaction.response.edit_message(content=text, view=None)
        self.stop()


class ConfirmView(_OwnerPrompt):
    @discord.ui.button(label="Yes", emoji=GREEN_CHECK, style=discord.ButtonStyle.success)
    async def yes(self, interaction: discord.Interaction, button: discord.ui.Button) -> None:
        await self._answer(interaction, True, "Confirming…")

    @discord.ui.button(label="No", emoji=RED_X, style=discord.ButtonStyle.danger)
    async def no(self, interaction: discord.Interaction, button: discord.ui.Button) -> None:
        await self._answer(interaction, False, "Cancelled.")


class RunResultView(_OwnerPrompt):
    @discord.ui.button(label="Success", emoji=GREEN_CHECK, style=discord.ButtonStyle.success)
    async def success(self, interaction: discord.Interaction, button: discord.ui.Button) -> None:
        await self._answer(interaction, True, "Ending the raid…")

    @discord.ui.button(label="Failed", emoji=RED_X, style=discord.ButtonStyle.danger)
    async def failed(self, interaction: discord.Interaction, button: discord.ui.Button) -> None:
        await self._answer(interaction, False, "Ending the raid…")


# ---------------------------------------------------------------------------
# Modals
# ---------------------------------------------------------------------------
class LocationModal(discord.ui.Modal, title="Set Raid Location"):
    location = discord.ui.TextInput(label="Location", max_length=200)

    def __init__(self, raid: RaidInstance) -> None:
        super().__init__(timeout=LOCATION_PROMPT_TIMEOUT_SECONDS)
        self.raid = raid
        if raid.location:
            self.location.default = raid.location

    async def on_submit(self, interaction: discord.Interaction) -> None:
        await self.raid.set_location(str(self.location.value))
        await interaction.response.send_message(
            f"Location set to **{self.raid.location}**.", ephemeral=True
        )


class ParseModal(discord.ui.Modal, title="Parse Raid VC"):
    url = discord.ui.TextInput(label="/who screenshot URL", max_length=500)

    def __init__(self, raid: RaidInstance) -> None:
        super().__init__(timeout=LOCATION_PROMPT_TIMEOUT_SECONDS)
        self.raid = raid

    async def on_submit(self, interaction: discord.Interaction) -> None:
        await self.raid.parse_screenshot(interaction, str(self.url.value).strip())
