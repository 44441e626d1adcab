"""
raidkeeper.bot.cogs.tasks — Periodic Background Tasks
=====================================================

Scheduled jobs that run on ``discord.ext.tasks`` loops:

- **Quota reset sweep** — every ``quota_sweep_seconds`` (default 60),
  closes each ledger whose weekly anchor has passed.
- **Leaderboard refresh** — every ``leaderboard_refresh_seconds``
  (default 30), re-renders each ledger's leaderboard message.

Both intervals come from ``config.yaml`` and are applied in
``cog_load`` before the loops start.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from discord.ext import commands, tasks

from raidkeeper.services.quota_reporting import refresh_leaderboards, run_reset_sweep

if TYPE_CHECKING:
    from raidkeeper.bot.core import RaidKeeperBot

logger = logging.getLogger(__name__)


class PeriodicTasks(commands.Cog):
    """Cog for scheduled quota maintenance."""

    def __init__(self, bot: RaidKeeperBot) -> None:
        self.bot = bot

    async def cog_load(self) -> None:
        """Apply configured intervals and start the loops."""
        self.quota_sweep_loop.change_interval(seconds=self.bot.cfg.quota_sweep_seconds)
        self.leaderboard_loop.change_interval(seconds=self.bot.cfg.leaderboard_refresh_seconds)
        self.quota_sweep_loop.start()
        self.leaderboard_loop.start()

    async def cog_unload(self) -> None:
        self.quota_sweep_loop.cancel()
        self.leaderboard_loop.cancel()

    # -------------------------------------------------------------------
    # Quota reset sweep
    # -------------------------------------------------------------------
    @tasks.loop(seconds=60)
    async def quota_sweep_loop(self):
        try:
            handled = await run_reset_sweep(self.bot)
            if handled:
                logger.info("Quota sweep closed %d period(s)", handled)
        except Exception:
            logger.exception("Quota sweep failed", extra={"task": "quota_sweep"})

    @quota_sweep_loop.before_loop
    async def _wait_sweep(self):
        await self.bot.wait_until_ready()

    # -------------------------------------------------------------------
    # Leaderboard refresh
    # -------------------------------------------------------------------
    @tasks.loop(seconds=30)
    async def leaderboard_loop(self):
        try:
            await refresh_leaderboards(self.bot)
        except Exception:
            logger.exception("Leaderboard refresh failed", extra={"task": "leaderboards"})

    @leaderboard_loop.before_loop
    async def _wait_leaderboards(self):
        await self.bot.wait_until_ready()


async def setup(bot: RaidKeeperBot) -> None:
    await bot.add_cog(PeriodicTasks(bot))
