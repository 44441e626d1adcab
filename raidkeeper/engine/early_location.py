"""
raidkeeper.engine.early_location — Early-Location Ledger
=========================================================

Per-raid table of who claimed which capacity-limited reaction.

The in-memory ledger is the source of truth for the running process;
the ``raid_claims`` table is only a write-behind journal used to rebuild
a ledger after a restart.  :meth:`EarlyLocationLedger.claim` is the single
place where a claimant list grows, and it re-checks capacity itself, so
no caller can push a key past its cap.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping

from raidkeeper.engine.reactions import ReactionDescriptor

__all__ = ["EarlyLocationLedger"]


class EarlyLocationLedger:
    """Claimant lists for every essential reaction of one raid."""

    def __init__(self, reactions: Mapping[str, ReactionDescriptor]) -> None:
        self._capacity: dict[str, int] = {
            key: r.capacity for key, r in reactions.items() if r.is_essential
        }
        self._claimants: dict[str, list[int]] = {key: [] for key in self._capacity}

    # -------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------
    @property
    def keys(self) -> list[str]:
        return list(self._capacity)

    def capacity(self, key: str) -> int:
        return self._capacity.get(key, 0)

    def claimants(self, key: str) -> list[int]:
        """A copy of the member IDs holding *key*, in claim order."""
        return list(self._claimants.get(key, ()))

    def still_needs(self, key: str) -> bool:
        """True iff *key* is essential and has a free slot."""
        if key not in self._capacity:
            return False
        return len(self._claimants[key]) < self._capacity[key]

    def has_claimed(self, member_id: int, key: str) -> bool:
        return member_id in self._claimants.get(key, ())

    def keys_for(self, member_id: int) -> list[str]:
        return [k for k, ids in self._claimants.items() if member_id in ids]

    def all_claimant_ids(self) -> set[int]:
        return {m for ids in self._claimants.values() for m in ids}

    def snapshot(self) -> dict[str, list[int]]:
        return {k: list(v) for k, v in self._claimants.items()}

    # -------------------------------------------------------------------
    # Mutation
    # -------------------------------------------------------------------
    def claim(self, member_id: int, key: str) -> bool:
        """Append *member_id* to *key*'s claimants.

        Returns ``False`` without changing anything if the key is unknown,
        already full, or already claimed by this member.
        """
        if key not in self._capacity:
            return False
        if member_id in self._claimants[key]:
            return False
        if len(self._claimants[key]) >= self._capacity[key]:
            return False
        self._claimants[key].append(member_id)
        return True

    def restore(self, claims: Iterable[tuple[int, str]]) -> int:
        """Replay journaled ``(member_id, key)`` claims; returns how many stuck.

        Claims beyond a key's current capacity or for keys no longer
        offered are dropped.
        """
        return sum(1 for member_id, key in claims if self.claim(member_id, key))
