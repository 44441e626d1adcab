"""
raidkeeper.config — YAML Configuration Loader
==============================================

**Why this file exists:**
This module reads ``config.yaml`` for **infrastructure-only** settings
(command prefix, dashboard port, admin role, loop cadences, parser URL).
Per-guild gameplay configuration (roles, sections, dungeon overrides,
quota point values) lives in the database and is edited through slash
commands or the dashboard API.

Usage::

    from raidkeeper.config import load_config

    cfg = load_config()               # reads ./config.yaml by default
    print(cfg.bot_prefix)             # "!"
    print(cfg.quota_sweep_seconds)    # 60
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

import yaml


# ---------------------------------------------------------------------------
# Typed settings object, infrastructure only.
# Guild gameplay config lives in the DB ``guild_configs`` / ``sections`` tables.
# ---------------------------------------------------------------------------
@dataclass(frozen=True, slots=True)
class RaidKeeperConfig:
    """Immutable configuration loaded from ``config.yaml``."""

    # Discord
    bot_prefix: str

    # Dashboard
    dashboard_port: int

    # Admin / Hardened Access
    admin_role_id: int  # Discord role required for quota admin commands

    # Raids
    afk_check_timeout_minutes: int = 5
    vc_cleanup_attempts: int = 10  # Bounded poll before deleting a raid VC
    vc_cleanup_delay_seconds: float = 1.0

    # Quotas
    quota_sweep_seconds: int = 60
    leaderboard_refresh_seconds: int = 30

    # Optional
    parser_url: str | None = None  # Screenshot parser endpoint


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------
def load_config(path: str | Path = "config.yaml") -> RaidKeeperConfig:
    """Read *path* and return a :class:`RaidKeeperConfig` instance.

    Parameters
    ----------
    path:
        Filesystem path to the YAML configuration file.
        Defaults to ``config.yaml`` in the current working directory.

    Raises
    ------
    FileNotFoundError
        If the YAML file doesn't exist.
    KeyError
        If a required key is missing from the YAML file.
    """
    config_path = Path(path)
    if not config_path.exists():
        raise FileNotFoundError(
            f"Configuration file not found: {config_path.resolve()}\n"
            "Hint: copy config.yaml.example → config.yaml and edit it."
        )

    with open(config_path, encoding="utf-8") as fh:
        raw: dict = yaml.safe_load(fh) or {}

    parser_url = raw.get("parser_url") or os.getenv("PARSER_URL") or None

    return RaidKeeperConfig(
        bot_prefix=raw["bot_prefix"],
        dashboard_port=int(raw["dashboard_port"]),
        admin_role_id=int(raw["admin_role_id"]),
        afk_check_timeout_minutes=int(raw.get("afk_check_timeout_minutes", 5)),
        vc_cleanup_attempts=int(raw.get("vc_cleanup_attempts", 10)),
        vc_cleanup_delay_seconds=float(raw.get("vc_cleanup_delay_seconds", 1.0)),
        quota_sweep_seconds=int(raw.get("quota_sweep_seconds", 60)),
        leaderboard_refresh_seconds=int(raw.get("leaderboard_refresh_seconds", 30)),
        parser_url=parser_url,
    )
