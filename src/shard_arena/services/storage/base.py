"""Store capability shared by the queue, battle and settlement services.

Every guarded write is a compare-and-swap: it applies only when the row is
still in the expected pre-state and reports whether it did. Callers re-read
after a ``False`` instead of retrying blindly.
"""

from __future__ import annotations

from datetime import datetime
from typing import Protocol, runtime_checkable

from shard_arena.models import (
    Battle,
    BattleRound,
    BattleStatus,
    MatchmakingEntry,
    RoundScores,
    ShardProfile,
    Side,
)


@runtime_checkable
class BattleStore(Protocol):
    """Durable state for queue entries, battles, rounds and shard ratings."""

    # Queue

    async def add_entry(self, entry: MatchmakingEntry) -> MatchmakingEntry:
        """Insert an entry. Raises StateConflictError if the shard already
        waits in the same mode."""
        ...

    async def get_entry(self, entry_id: str) -> MatchmakingEntry | None: ...

    async def list_entries(
        self, mode: str | None = None, owner_id: str | None = None
    ) -> list[MatchmakingEntry]:
        """Entries ordered by (joined_at, id)."""
        ...

    async def remove_entry(self, entry_id: str, owner_id: str | None = None) -> bool:
        """Delete an entry (only if owned by ``owner_id`` when given)."""
        ...

    async def purge_entries(self, joined_before: datetime) -> int: ...

    async def pair_entries(self, entry_a_id: str, entry_b_id: str, battle: Battle) -> bool:
        """Delete both entries and insert ``battle`` atomically.

        Returns False, changing nothing, if either entry is already gone.
        """
        ...

    # Battles

    async def add_battle(self, battle: Battle) -> Battle: ...

    async def get_battle(self, battle_id: str) -> Battle | None: ...

    async def list_battles(self, keeper_id: str) -> list[Battle]:
        """Battles where the keeper plays either side, newest first."""
        ...

    async def list_live(self, limit: int = 50) -> list[Battle]:
        """Pending, active and judging battles, newest first."""
        ...

    async def add_round(self, battle_id: str, battle_round: BattleRound) -> bool:
        """Append the next contiguous round of an active battle."""
        ...

    async def set_response(
        self,
        battle_id: str,
        round_number: int,
        side: Side,
        response: str,
        *,
        overwrite: bool = False,
        timed_out: bool = False,
    ) -> bool:
        """Write one side's response to a round of an active battle.

        Without ``overwrite`` the write applies only if the field is empty.
        With ``overwrite`` it applies while the round is unscored and the
        field holds a different value. ``timed_out`` records the side in
        ``timeout_by``.
        """
        ...

    async def set_judgment(
        self,
        battle_id: str,
        round_number: int,
        scores: RoundScores,
        reasoning: str,
        fallback: bool = False,
    ) -> bool:
        """Score a round that has both responses and no scores yet."""
        ...

    async def transition_status(
        self, battle_id: str, expected: set[BattleStatus], status: BattleStatus
    ) -> bool: ...

    async def complete_battle(
        self,
        battle_id: str,
        winner_id: str | None,
        challenger_delta: int,
        defender_delta: int,
        completed_at: datetime,
    ) -> bool:
        """Mark an active/judging battle completed with its Elo deltas.

        Registered shards get their rating moved by the same deltas in the
        same write.
        """
        ...

    async def set_settlement_tx(self, battle_id: str, tx_hash: str) -> bool:
        """Record the ledger settle transaction of a completed battle, once."""
        ...

    async def set_finalization_tx(self, battle_id: str, tx_hash: str) -> bool:
        """Record the finalization marker of a completed battle, once."""
        ...

    async def list_unsettled(self, limit: int) -> list[Battle]:
        """Completed staked battles with an escrow reference and no
        finalization hash, oldest completion first."""
        ...

    # Shards

    async def get_shard(self, shard_id: str) -> ShardProfile | None: ...

    async def save_shard(self, shard: ShardProfile) -> ShardProfile: ...


def merge_timeout(current: str | None, side: Side) -> str:
    """Combine an existing ``timeout_by`` marker with another side."""
    if current is None or current == side.value:
        return side.value
    return "both"
