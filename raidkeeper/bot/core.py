"""
raidkeeper.bot.core — Bot Instance & Cog Loader
================================================

**Why this file exists:**
Defines :class:`RaidKeeperBot`, the ``commands.Bot`` subclass that:

1. Stores the shared config (``bot.cfg``), DB engine (``bot.engine``),
   live-raid registry (``bot.registry``) and optional screenshot parser
   (``bot.parser``) so every Cog and raid can reach them.
2. Loads the Cogs listed in :data:`EXTENSIONS`.
3. Syncs the slash-command tree on startup (guild-scoped for dev, global
   for production — controlled by the ``DEV_GUILD_ID`` env var).
4. Rebuilds raids that were running when the process last stopped.
"""

from __future__ import annotations

import logging
import os

import discord
from discord.ext import commands
from sqlalchemy import Engine

from raidkeeper.config import RaidKeeperConfig
from raidkeeper.database.engine import run_db
from raidkeeper.services.guild_repository import delete_raids, get_or_create_guild, list_raids
from raidkeeper.services.parser_client import ScreenshotParser
from raidkeeper.services.raid_instance import RaidInstance
from raidkeeper.services.raid_registry import RaidRegistry

logger = logging.getLogger(__name__)

# Cog modules to load on startup.
EXTENSIONS: list[str] = [
    "raidkeeper.bot.cogs.raids",
    "raidkeeper.bot.cogs.quotas",
    "raidkeeper.bot.cogs.setup",
    "raidkeeper.bot.cogs.tasks",
]


class RaidKeeperBot(commands.Bot):
    """Custom Bot subclass that carries project-wide state.

    Parameters
    ----------
    cfg:
        The parsed :class:`RaidKeeperConfig` from ``config.yaml``.
    engine:
        A SQLAlchemy :class:`Engine`.
    """

    def __init__(self, cfg: RaidKeeperConfig, engine: Engine) -> None:
        # Privileged intent: GUILD_MEMBERS for role.members in quota standings.
        intents = discord.Intents.default()
        intents.members = True
        intents.voice_states = True
        intents.presences = False

        super().__init__(command_prefix=cfg.bot_prefix, intents=intents)

        self.cfg = cfg
        self.engine = engine
        self.registry = RaidRegistry()
        self.parser = ScreenshotParser(cfg.parser_url) if cfg.parser_url else None
        self._recovered = False

    # -----------------------------------------------------------------------
    # Lifecycle hooks
    # -----------------------------------------------------------------------
    async def setup_hook(self) -> None:
        """Load every Cog; one broken Cog doesn't take down the bot."""
        for ext in EXTENSIONS:
            try:
                await self.load_extension(ext)
                logger.info("Loaded extension: %s", ext)
            except Exception as exc:
                logger.error("Failed to load extension %s: %s", ext, exc)

    async def on_ready(self) -> None:
        """Fired when the bot has connected and the cache is populated."""
        assert self.user is not None  # guaranteed after on_ready
        logger.info("Logged in as %s (ID: %s)", self.user.name, self.user.id)

        dev_guild_id = os.getenv("DEV_GUILD_ID")
        if dev_guild_id:
            guild = discord.Object(id=int(dev_guild_id))
            self.tree.copy_global_to(guild=guild)
            synced = await self.tree.sync(guild=guild)
            logger.info("Synced %d commands to dev guild %s", len(synced), dev_guild_id)
        else:
            synced = await self.tree.sync()
            logger.info("Synced %d commands globally", len(synced))

        # on_ready fires again after every reconnect; recover only once.
        if not self._recovered:
            self._recovered = True
            await self.recover_raids()

    async def close(self) -> None:
        logger.info("Bot shutting down… (%d live raid(s) left journaled)", len(self.registry))
        await super().close()

    # -----------------------------------------------------------------------
    # Crash recovery
    # -----------------------------------------------------------------------
    async def recover_raids(self) -> int:
        """Rebuild journaled raids; drop records whose resources are gone."""
        records = await run_db(list_raids, self.engine)
        stale: list[int] = []
        recovered = 0
        for record in records:
            guild = self.get_guild(record.guild_id)
            if guild is None:
                stale.append(record.vc_id)
                continue
            settings = await run_db(get_or_create_guild, self.engine, guild.id)
            try:
                raid = await RaidInstance.restore(self, guild, settings, record)
            except discord.DiscordException:
                logger.exception("Failed to recover raid %s", record.vc_id)
                raid = None
            if raid is None:
                stale.append(record.vc_id)
            else:
                recovered += 1
        if stale:
            await run_db(delete_raids, self.engine, stale)
        logger.info("Raid recovery: %d recovered, %d dropped", recovered, len(stale))
        return recovered
