"""Matchmaking queue service."""

from __future__ import annotations

import math
from datetime import datetime, timedelta
from typing import TYPE_CHECKING

import structlog

from shard_arena.core.clock import Clock, utc_now
from shard_arena.core.config import MatchmakingConfig
from shard_arena.core.errors import InvalidRequestError, NotAuthorizedError
from shard_arena.models import Battle, BattleMode, MatchmakingEntry, ParticipantSide
from shard_arena.services.storage import BattleStore

from .pairing import pair_queue, search_window

if TYPE_CHECKING:
    from shard_arena.services.battle import BattleLifecycle

logger = structlog.get_logger()


def parse_mode(mode: str | BattleMode) -> BattleMode:
    """Validate a battle mode value."""
    try:
        return BattleMode(mode)
    except ValueError as e:
        msg = f"Invalid battle mode: {mode!r}"
        raise InvalidRequestError(msg) from e


class MatchQueue:
    """Accepts queue entries and turns compatible pairs into battles.

    The only side effects are store writes; pairing is safe to run
    repeatedly and concurrently because each pair is committed with a
    single atomic remove-two-insert-one store call.
    """

    def __init__(
        self,
        store: BattleStore,
        lifecycle: BattleLifecycle,
        config: MatchmakingConfig | None = None,
        clock: Clock = utc_now,
    ) -> None:
        self.store = store
        self.lifecycle = lifecycle
        self.config = config or MatchmakingConfig()
        self.clock = clock

    async def join(
        self,
        shard_id: str,
        owner_id: str,
        mode: str | BattleMode,
        elo_rating: float | None = None,
        stake_amount: float = 0.0,
    ) -> MatchmakingEntry:
        """Put a shard in the queue for a mode.

        A registered shard joins with its registry rating and only for its
        registered owner; an unregistered shard must state ``elo_rating``.

        Raises:
            InvalidRequestError: On missing or invalid fields.
            NotAuthorizedError: Registered shard belongs to another owner.
            StateConflictError: If the shard already waits in this mode.
        """
        if not shard_id or not owner_id:
            raise InvalidRequestError("Missing required fields: shardId, ownerId, mode")
        battle_mode = parse_mode(mode)
        shard = await self.store.get_shard(shard_id)
        if shard is not None:
            if shard.owner_id.lower() != owner_id.lower():
                raise NotAuthorizedError()
            elo_rating = shard.elo_rating
        if elo_rating is None or not math.isfinite(elo_rating):
            raise InvalidRequestError("eloRating must be a finite number")
        if stake_amount is None or not math.isfinite(stake_amount) or stake_amount < 0:
            raise InvalidRequestError("stakeAmount must be a non-negative number")

        entry = MatchmakingEntry(
            shard_id=shard_id,
            owner_id=owner_id.lower(),
            mode=battle_mode,
            elo_rating=elo_rating,
            stake_amount=stake_amount,
            joined_at=self.clock(),
        )
        await self.store.add_entry(entry)
        logger.info(
            "queue_joined",
            entry_id=entry.id,
            shard_id=shard_id,
            mode=battle_mode.value,
            elo=elo_rating,
            stake=stake_amount,
        )
        return entry

    async def leave(self, entry_id: str, caller_owner_id: str) -> bool:
        """Remove an entry owned by the caller.

        Returns:
            False if the entry is gone or belongs to someone else.
        """
        removed = await self.store.remove_entry(entry_id, owner_id=caller_owner_id.lower())
        if removed:
            logger.info("queue_left", entry_id=entry_id)
        return removed

    async def attempt_matches(self) -> list[Battle]:
        """Pair waiting entries and create a battle for each pair.

        Returns:
            Battles created by this call; empty when nothing could be paired.
        """
        now = self.clock()
        await self._purge_stale(now)
        entries = await self.store.list_entries()
        battles: list[Battle] = []

        for entry_a, entry_b in pair_queue(entries, now, self.config):
            battle = self.lifecycle.new_battle(
                challenger=ParticipantSide(
                    shard_id=entry_a.shard_id,
                    keeper_id=entry_a.owner_id,
                    elo_rating=entry_a.elo_rating,
                ),
                defender=ParticipantSide(
                    shard_id=entry_b.shard_id,
                    keeper_id=entry_b.owner_id,
                    elo_rating=entry_b.elo_rating,
                ),
                mode=entry_a.mode,
                stake_amount=entry_a.stake_amount,
            )
            if not await self.store.pair_entries(entry_a.id, entry_b.id, battle):
                logger.info("pair_skipped", entry_a=entry_a.id, entry_b=entry_b.id)
                continue
            logger.info(
                "battle_matched",
                battle_id=battle.id,
                mode=battle.mode.value,
                challenger=entry_a.shard_id,
                defender=entry_b.shard_id,
            )
            battles.append(battle)

        return battles

    async def entries_for_owner(self, owner_id: str) -> list[MatchmakingEntry]:
        """Open entries of an owner with their current search range.

        Entries older than ``entry_ttl_seconds`` are dropped first.
        """
        now = self.clock()
        await self._purge_stale(now)
        entries = await self.store.list_entries(owner_id=owner_id.lower())
        return [
            entry.model_copy(update={"search_range": search_window(entry, now, self.config)})
            for entry in entries
        ]

    async def _purge_stale(self, now: datetime) -> None:
        purged = await self.store.purge_entries(
            now - timedelta(seconds=self.config.entry_ttl_seconds)
        )
        if purged:
            logger.info("queue_purged", count=purged)
