"""
raidkeeper.services.quota_service — Quota Ledger Persistence
============================================================

Synchronous DB access for quota ledgers and their log entries.  Call
through :func:`~raidkeeper.database.engine.run_db` from async code.

Point math lives in :mod:`raidkeeper.engine.quota`; this module only
turns rows into :class:`~raidkeeper.engine.quota.LedgerSnapshot` objects
and writes results back.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from datetime import UTC, datetime

from sqlalchemy import Engine, delete, select
from sqlalchemy.orm import Session

from raidkeeper.database.models import GuildConfig, QuotaLedger, QuotaLogEntry
from raidkeeper.engine.quota import (
    LedgerSnapshot,
    LogEntry,
    find_best_ledger,
    is_due,
    qualify,
)

logger = logging.getLogger(__name__)


def _aware(dt: datetime | None) -> datetime | None:
    """SQLite drops tzinfo; every stored timestamp is UTC."""
    if dt is not None and dt.tzinfo is None:
        return dt.replace(tzinfo=UTC)
    return dt


def _snapshot(session: Session, row: QuotaLedger) -> LedgerSnapshot:
    entries = session.scalars(
        select(QuotaLogEntry)
        .where(QuotaLogEntry.guild_id == row.guild_id, QuotaLogEntry.role_id == row.role_id)
        .order_by(QuotaLogEntry.id)
    ).all()
    return LedgerSnapshot(
        guild_id=row.guild_id,
        role_id=row.role_id,
        threshold=row.threshold,
        point_values=dict(row.point_values or {}),
        last_reset=_aware(row.last_reset),
        entries=tuple(
            LogEntry(
                member_id=e.member_id,
                log_type=e.log_type,
                amount=e.amount,
                timestamp=_aware(e.timestamp),
            )
            for e in entries
        ),
        channel_id=row.channel_id,
        message_id=row.message_id,
    )


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------
def get_ledgers(engine: Engine, guild_id: int) -> list[LedgerSnapshot]:
    with Session(engine) as session:
        rows = session.scalars(
            select(QuotaLedger).where(QuotaLedger.guild_id == guild_id).order_by(QuotaLedger.role_id)
        ).all()
        return [_snapshot(session, row) for row in rows]


def get_ledger(engine: Engine, guild_id: int, role_id: int) -> LedgerSnapshot | None:
    with Session(engine) as session:
        row = session.get(QuotaLedger, (guild_id, role_id))
        return _snapshot(session, row) if row else None


def due_ledgers(engine: Engine, now: datetime | None = None) -> list[LedgerSnapshot]:
    """Every ledger whose guild's weekly anchor has passed since its last reset."""
    now = now or datetime.now(UTC)
    due: list[LedgerSnapshot] = []
    with Session(engine) as session:
        rows = session.execute(
            select(QuotaLedger, GuildConfig.quota_reset_day, GuildConfig.quota_reset_time)
            .join(GuildConfig, GuildConfig.guild_id == QuotaLedger.guild_id)
            .where(GuildConfig.quota_reset_day >= 0)
        ).all()
        for ledger, day, hhmm in rows:
            last = _aware(ledger.last_reset) or now
            if is_due(last, day, hhmm, now):
                due.append(_snapshot(session, ledger))
    return due


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------
def configure_ledger(
    engine: Engine,
    guild_id: int,
    role_id: int,
    *,
    threshold: int | None = None,
    point_values: Mapping[str, int] | None = None,
    channel_id: int | None = None,
) -> LedgerSnapshot:
    """Create or update a ledger.  Point values are merged; a value of 0
    removes the key."""
    with Session(engine) as session:
        row = session.get(QuotaLedger, (guild_id, role_id))
        if row is None:
            row = QuotaLedger(
                guild_id=guild_id,
                role_id=role_id,
                threshold=0,
                point_values={},
                last_reset=datetime.now(UTC),
            )
            session.add(row)
            logger.info("Created quota ledger guild=%d role=%d", guild_id, role_id)
        if threshold is not None:
            row.threshold = max(int(threshold), 0)
        if point_values:
            merged = dict(row.point_values or {})
            for key, value in point_values.items():
                if int(value) > 0:
                    merged[key] = int(value)
                else:
                    merged.pop(key, None)
            row.point_values = merged
        if channel_id is not None:
            if channel_id != row.channel_id:
                row.message_id = None
            row.channel_id = channel_id
        session.commit()
        return _snapshot(session, row)


def delete_ledger(engine: Engine, guild_id: int, role_id: int) -> bool:
    with Session(engine) as session:
        session.execute(
            delete(QuotaLogEntry).where(
                QuotaLogEntry.guild_id == guild_id, QuotaLogEntry.role_id == role_id
            )
        )
        result = session.execute(
            delete(QuotaLedger).where(
                QuotaLedger.guild_id == guild_id, QuotaLedger.role_id == role_id
            )
        )
        session.commit()
    if result.rowcount:
        logger.info("Dropped quota ledger guild=%d role=%d", guild_id, role_id)
    return bool(result.rowcount)


def set_leaderboard_message(
    engine: Engine, guild_id: int, role_id: int, message_id: int | None
) -> bool:
    with Session(engine) as session:
        row = session.get(QuotaLedger, (guild_id, role_id))
        if row is None:
            return False
        row.message_id = message_id
        session.commit()
        return True


# ---------------------------------------------------------------------------
# Credits & resets
# ---------------------------------------------------------------------------
def credit(
    engine: Engine,
    guild_id: int,
    role_id: int,
    member_id: int,
    log_type: str,
    amount: int = 1,
) -> bool:
    """Append one log entry; ``False`` if the ledger does not exist."""
    with Session(engine) as session:
        if session.get(QuotaLedger, (guild_id, role_id)) is None:
            return False
        session.add(QuotaLogEntry(
            guild_id=guild_id,
            role_id=role_id,
            member_id=member_id,
            log_type=log_type,
            amount=amount,
            timestamp=datetime.now(UTC),
        ))
        session.commit()
    logger.info(
        "Quota credit guild=%d role=%d member=%d %s x%d",
        guild_id, role_id, member_id, log_type, amount,
    )
    return True


def credit_best(
    engine: Engine,
    guild_id: int,
    member_id: int,
    role_ids: Iterable[int],
    log_type: str,
    dungeon_id: str | None = None,
    amount: int = 1,
) -> int | None:
    """Credit the eligible ledger the member is furthest behind on.

    Returns the credited role ID, or ``None`` if no ledger applies.
    """
    ledgers = get_ledgers(engine, guild_id)
    role_id = find_best_ledger(ledgers, member_id, list(role_ids), log_type, dungeon_id)
    if role_id is None:
        return None
    credit(engine, guild_id, role_id, member_id, qualify(log_type, dungeon_id), amount)
    return role_id


def reset_ledger(
    engine: Engine, guild_id: int, role_id: int, now: datetime | None = None
) -> LedgerSnapshot | None:
    """Clear a ledger's entries and start a new period at *now*."""
    now = now or datetime.now(UTC)
    with Session(engine) as session:
        row = session.get(QuotaLedger, (guild_id, role_id))
        if row is None:
            return None
        session.execute(
            delete(QuotaLogEntry).where(
                QuotaLogEntry.guild_id == guild_id, QuotaLogEntry.role_id == role_id
            )
        )
        row.last_reset = now
        row.message_id = None
        session.commit()
        return _snapshot(session, row)
