"""
raidkeeper.services.raid_registry — Live Raid Registry
=======================================================

The one place that knows which raids are running.  A single
:class:`RaidRegistry` is built at process start, hung on the bot as
``bot.registry``, and handed to anything that needs to route a gateway
event (voice-state change, message or channel deletion) to its raid.

Raids are keyed by their join-announcement message ID.  Inserts happen
only when a raid finishes starting; removals only in its cleanup.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from raidkeeper.services.raid_instance import RaidInstance

logger = logging.getLogger(__name__)


class RaidRegistry:
    """Mapping of join-message ID → live :class:`RaidInstance`."""

    def __init__(self) -> None:
        self._raids: dict[int, RaidInstance] = {}

    def __len__(self) -> int:
        return len(self._raids)

    def __iter__(self) -> Iterator[RaidInstance]:
        return iter(list(self._raids.values()))

    def __contains__(self, message_id: object) -> bool:
        return message_id in self._raids

    def register(self, message_id: int, raid: RaidInstance) -> None:
        self._raids[message_id] = raid
        logger.info("Registered raid %s (%d live)", message_id, len(self._raids))

    def unregister(self, message_id: int) -> RaidInstance | None:
        """Remove and return a raid; unknown IDs are a no-op."""
        raid = self._raids.pop(message_id, None)
        if raid is not None:
            logger.info("Unregistered raid %s (%d live)", message_id, len(self._raids))
        return raid

    def get(self, message_id: int) -> RaidInstance | None:
        return self._raids.get(message_id)

    # -------------------------------------------------------------------
    # Event routing lookups
    # -------------------------------------------------------------------
    def by_voice_channel(self, channel_id: int) -> RaidInstance | None:
        for raid in self._raids.values():
            if raid.vc_id == channel_id:
                return raid
        return None

    def by_message(self, message_id: int) -> RaidInstance | None:
        """Match either the join message or the control-panel message."""
        raid = self._raids.get(message_id)
        if raid is not None:
            return raid
        for raid in self._raids.values():
            if raid.control_panel_message_id == message_id:
                return raid
        return None

    def for_guild(self, guild_id: int) -> list[RaidInstance]:
        return [r for r in self._raids.values() if r.guild_id == guild_id]
