"""
raidkeeper.constants — Shared Constants
========================================

Single source of truth for raid timings, emoji, and quota log-type
presentation.  Import from here instead of duplicating in cogs, services,
and the dashboard API.
"""

from __future__ import annotations

# ---------------------------------------------------------------------------
# Raid timings
# ---------------------------------------------------------------------------
DEFAULT_VC_LIMIT = 45
REFRESH_INTERVAL_SECONDS = 5.0
CLAIM_CONFIRM_TIMEOUT_SECONDS = 15.0
LOCATION_PROMPT_TIMEOUT_SECONDS = 60.0
RUN_RESULT_TIMEOUT_SECONDS = 30.0
ACTIVE_PANEL_TIMEOUT_SECONDS = 4 * 60 * 60  # Control panel lifetime during a run

# Channel-name fragments that mark a voice channel as an evacuation target.
FALLBACK_VC_MARKERS: tuple[str, ...] = ("queue", "lounge")


# ---------------------------------------------------------------------------
# Emoji (unicode only; custom emoji come from the reaction catalog)
# ---------------------------------------------------------------------------
GREEN_CHECK = "\u2705"          # ✅
RED_X = "\u274c"                # ❌
HOURGLASS = "\u23f3"            # ⏳
LOCK = "\U0001f512"             # 🔒
UNLOCK = "\U0001f513"           # 🔓
MAP = "\U0001f5fa\ufe0f"         # 🗺️
PLAY = "\u25b6\ufe0f"            # ▶️
STOP = "\u23f9\ufe0f"            # ⏹️
RECONNECT = "\U0001f504"        # 🔄
MAGNIFIER = "\U0001f50d"        # 🔍
NITRO = "\U0001f48e"            # 💎

RANK_BADGES: list[str] = ["\U0001f947", "\U0001f948", "\U0001f949"]  # 🥇🥈🥉


# ---------------------------------------------------------------------------
# Quota log types: display names (keys match QuotaLogType values)
# ---------------------------------------------------------------------------
QUOTA_LOG_LABELS: dict[str, str] = {
    "Parse": "Parse",
    "ManualVerify": "Manual Verify",
    "PunishmentIssued": "Punishment Issued",
    "NameAdjustment": "Name Add/Change/Remove",
    "ModmailRespond": "Respond to Modmail",
    "RunComplete": "Run Complete",
    "RunAssist": "Run Assist",
    "RunFailed": "Run Failed",
}

# Log types that may carry a ``:dungeonId`` suffix.
DUNGEON_QUALIFIED_LOG_TYPES: frozenset[str] = frozenset({
    "RunComplete",
    "RunAssist",
    "RunFailed",
})


def quota_log_label(log_type: str, dungeon_names: dict[str, str] | None = None) -> str:
    """Human label for a possibly dungeon-qualified log type.

    ``"RunComplete:SHATTERS"`` → ``"Run Complete (The Shatters)"`` when
    *dungeon_names* knows the code, else ``"Run Complete (SHATTERS)"``.
    """
    base, _, dungeon = log_type.partition(":")
    label = QUOTA_LOG_LABELS.get(base, base)
    if not dungeon:
        return label
    name = (dungeon_names or {}).get(dungeon, dungeon)
    return f"{label} ({name})"
