"""Lazy turn-deadline enforcement."""

from __future__ import annotations

import structlog

from shard_arena.core.clock import Clock, utc_now
from shard_arena.models import Battle, BattleStatus
from shard_arena.services.judge import Judge
from shard_arena.services.storage import BattleStore

from .scoring import judge_round

logger = structlog.get_logger()


class RoundClock:
    """Fills overdue responses with the timeout sentinel.

    There is no timer: deadlines are checked whenever a battle is read, so
    a round past ``due_at`` is resolved by the next reader. Fills are
    compare-and-swap writes on an empty field, so a real response that lands
    first always wins.
    """

    def __init__(
        self,
        store: BattleStore,
        judge: Judge,
        sentinel: str = "[Timed out]",
        clock: Clock = utc_now,
    ) -> None:
        self.store = store
        self.judge = judge
        self.sentinel = sentinel
        self.clock = clock

    async def reconcile_expired(self, battle: Battle) -> tuple[Battle, bool]:
        """Time out overdue sides, then judge any round that became complete.

        Args:
            battle: Battle as last read.

        Returns:
            Tuple of (current battle, whether anything was written).
        """
        if battle.status is not BattleStatus.ACTIVE:
            return battle, False

        now = self.clock()
        mutated = False
        for battle_round in battle.rounds:
            if battle_round.due_at >= now:
                continue
            for side in battle_round.missing_sides():
                filled = await self.store.set_response(
                    battle.id,
                    battle_round.round_number,
                    side,
                    self.sentinel,
                    timed_out=True,
                )
                if filled:
                    mutated = True
                    logger.info(
                        "round_timed_out",
                        battle_id=battle.id,
                        round=battle_round.round_number,
                        side=side.value,
                    )

        if mutated:
            battle = await self._reload(battle)

        for battle_round in battle.rounds:
            if await judge_round(self.store, self.judge, battle, battle_round):
                mutated = True

        if mutated:
            battle = await self._reload(battle)
        return battle, mutated

    async def _reload(self, battle: Battle) -> Battle:
        return await self.store.get_battle(battle.id) or battle
