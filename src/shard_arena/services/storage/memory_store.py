"""In-process store for tests and single-worker deployments.

No method awaits anything, so each one runs to completion on the event
loop without interleaving; that makes every method atomic. Records are
copied on the way in and out.
"""

from __future__ import annotations

from datetime import datetime

from shard_arena.core.errors import StateConflictError
from shard_arena.models import (
    Battle,
    BattleRound,
    BattleStatus,
    MatchmakingEntry,
    RoundScores,
    ShardProfile,
    Side,
)

from .base import merge_timeout

_WRITABLE = {BattleStatus.ACTIVE}
_JUDGEABLE = {BattleStatus.ACTIVE, BattleStatus.JUDGING}
_LIVE = {BattleStatus.ACTIVE, BattleStatus.JUDGING, BattleStatus.PENDING}


class InMemoryStore:
    """Dict-backed BattleStore."""

    def __init__(self) -> None:
        self._entries: dict[str, MatchmakingEntry] = {}
        self._battles: dict[str, Battle] = {}
        self._shards: dict[str, ShardProfile] = {}

    # Queue

    async def add_entry(self, entry: MatchmakingEntry) -> MatchmakingEntry:
        for existing in self._entries.values():
            if existing.shard_id == entry.shard_id and existing.mode == entry.mode:
                msg = f"Shard {entry.shard_id} is already queued for {entry.mode.value}"
                raise StateConflictError(msg)
        self._entries[entry.id] = entry.model_copy(deep=True)
        return entry

    async def get_entry(self, entry_id: str) -> MatchmakingEntry | None:
        entry = self._entries.get(entry_id)
        return entry.model_copy(deep=True) if entry else None

    async def list_entries(
        self, mode: str | None = None, owner_id: str | None = None
    ) -> list[MatchmakingEntry]:
        entries = [
            e.model_copy(deep=True)
            for e in self._entries.values()
            if (mode is None or e.mode == mode) and (owner_id is None or e.owner_id == owner_id)
        ]
        return sorted(entries, key=lambda e: (e.joined_at, e.id))

    async def remove_entry(self, entry_id: str, owner_id: str | None = None) -> bool:
        entry = self._entries.get(entry_id)
        if entry is None or (owner_id is not None and entry.owner_id != owner_id):
            return False
        del self._entries[entry_id]
        return True

    async def purge_entries(self, joined_before: datetime) -> int:
        stale = [eid for eid, e in self._entries.items() if e.joined_at < joined_before]
        for eid in stale:
            del self._entries[eid]
        return len(stale)

    async def pair_entries(self, entry_a_id: str, entry_b_id: str, battle: Battle) -> bool:
        if entry_a_id not in self._entries or entry_b_id not in self._entries:
            return False
        del self._entries[entry_a_id]
        del self._entries[entry_b_id]
        self._battles[battle.id] = battle.model_copy(deep=True)
        return True

    # Battles

    async def add_battle(self, battle: Battle) -> Battle:
        if battle.id in self._battles:
            msg = f"Battle {battle.id} already exists"
            raise StateConflictError(msg)
        self._battles[battle.id] = battle.model_copy(deep=True)
        return battle

    async def get_battle(self, battle_id: str) -> Battle | None:
        battle = self._battles.get(battle_id)
        return battle.model_copy(deep=True) if battle else None

    async def list_battles(self, keeper_id: str) -> list[Battle]:
        battles = [
            b.model_copy(deep=True) for b in self._battles.values() if keeper_id in b.keepers()
        ]
        return sorted(battles, key=lambda b: b.created_at, reverse=True)

    async def list_live(self, limit: int = 50) -> list[Battle]:
        battles = [b.model_copy(deep=True) for b in self._battles.values() if b.status in _LIVE]
        battles.sort(key=lambda b: b.created_at, reverse=True)
        return battles[:limit]

    async def add_round(self, battle_id: str, battle_round: BattleRound) -> bool:
        battle = self._battles.get(battle_id)
        if battle is None or battle.status not in _WRITABLE:
            return False
        if battle_round.round_number != battle.next_round_number:
            return False
        battle.rounds.append(battle_round.model_copy(deep=True))
        return True

    def _live_round(self, battle_id: str, round_number: int, statuses: set[BattleStatus]):
        battle = self._battles.get(battle_id)
        if battle is None or battle.status not in statuses:
            return None
        return battle.get_round(round_number)

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
        battle_round = self._live_round(battle_id, round_number, _WRITABLE)
        if battle_round is None:
            return False
        current = battle_round.response(side)
        if overwrite:
            if battle_round.is_judged or current == response:
                return False
        elif current:
            return False
        setattr(battle_round, f"{side.value}_response", response)
        if timed_out:
            battle_round.timeout_by = merge_timeout(battle_round.timeout_by, side)
        return True

    async def set_judgment(
        self,
        battle_id: str,
        round_number: int,
        scores: RoundScores,
        reasoning: str,
        fallback: bool = False,
    ) -> bool:
        battle_round = self._live_round(battle_id, round_number, _JUDGEABLE)
        if battle_round is None or battle_round.is_judged or not battle_round.is_complete:
            return False
        battle_round.scores = scores.model_copy()
        battle_round.reasoning = reasoning
        battle_round.judged_by_fallback = fallback
        return True

    async def transition_status(
        self, battle_id: str, expected: set[BattleStatus], status: BattleStatus
    ) -> bool:
        battle = self._battles.get(battle_id)
        if battle is None or battle.status not in expected:
            return False
        battle.status = status
        return True

    async def complete_battle(
        self,
        battle_id: str,
        winner_id: str | None,
        challenger_delta: int,
        defender_delta: int,
        completed_at: datetime,
    ) -> bool:
        battle = self._battles.get(battle_id)
        if battle is None or battle.status not in _JUDGEABLE:
            return False
        battle.winner_id = winner_id
        battle.challenger.elo_delta = challenger_delta
        battle.defender.elo_delta = defender_delta
        battle.completed_at = completed_at
        battle.status = BattleStatus.COMPLETED
        for participant in (battle.challenger, battle.defender):
            shard = self._shards.get(participant.shard_id)
            if shard is not None:
                shard.elo_rating += participant.elo_delta
        return True

    def _set_hash_once(self, battle_id: str, field: str, tx_hash: str) -> bool:
        battle = self._battles.get(battle_id)
        if battle is None or not battle.is_completed or getattr(battle, field) is not None:
            return False
        setattr(battle, field, tx_hash)
        return True

    async def set_settlement_tx(self, battle_id: str, tx_hash: str) -> bool:
        return self._set_hash_once(battle_id, "settlement_tx_hash", tx_hash)

    async def set_finalization_tx(self, battle_id: str, tx_hash: str) -> bool:
        return self._set_hash_once(battle_id, "finalization_tx_hash", tx_hash)

    async def list_unsettled(self, limit: int) -> list[Battle]:
        battles = [
            b.model_copy(deep=True)
            for b in self._battles.values()
            if b.status is BattleStatus.COMPLETED
            and b.stake_amount > 0
            and b.escrow_tx_hash
            and b.finalization_tx_hash is None
        ]
        battles.sort(key=lambda b: b.completed_at)
        return battles[:limit]

    # Shards

    async def get_shard(self, shard_id: str) -> ShardProfile | None:
        shard = self._shards.get(shard_id)
        return shard.model_copy() if shard else None

    async def save_shard(self, shard: ShardProfile) -> ShardProfile:
        self._shards[shard.id] = shard.model_copy()
        return shard
