"""
RaidKeeper — Raid Coordination & Staff Quotas for Discord
==========================================================
Runs dungeon raids end to end (announcement, priority slots, voice
channel access, teardown) and keeps per-role staff quota ledgers with
weekly resets and live leaderboards.

Package layout::

    raidkeeper/
    ├── config.py          # YAML → typed Python config
    ├── constants.py       # Timings, emoji, quota labels
    ├── data/              # Built-in dungeon & reaction catalogs (YAML)
    ├── database/
    │   ├── engine.py      # SQLAlchemy engine + async helper
    │   └── models.py      # ORM models (guilds, sections, raids, quotas)
    ├── engine/            # Pure logic, no Discord or DB
    │   ├── catalog.py     # Catalog loaders
    │   ├── dungeons.py    # Built-in / derived / custom dungeons
    │   ├── guild.py       # Guild & section settings snapshots
    │   ├── reactions.py   # Effective reaction resolver
    │   ├── early_location.py  # Priority-slot ledger
    │   ├── permissions.py # Raid VC overwrite computation
    │   ├── quota.py       # Point math, best ledger, reset boundary
    │   └── reconcile.py   # /who screenshot vs VC comparison
    ├── services/
    │   ├── guild_repository.py  # Guild config + raid journal persistence
    │   ├── raid_instance.py     # Raid state machine
    │   ├── raid_views.py        # Buttons, prompts, modals
    │   ├── raid_registry.py     # Live raid lookup
    │   ├── quota_service.py     # Ledger persistence
    │   ├── quota_reporting.py   # Leaderboards, resets, interactive logging
    │   ├── parser_client.py     # Screenshot parser HTTP client
    │   └── embeds.py            # Embed builders
    ├── bot/
    │   ├── core.py        # Bot subclass, cog loader, raid recovery
    │   └── cogs/          # raids, quotas, setup, tasks
    └── api/
        ├── main.py        # FastAPI app
        └── routes/        # Raid + quota endpoints
"""

__version__ = "0.1.0"
