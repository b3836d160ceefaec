"""Reconcile completed battles with the escrow ledger."""

from __future__ import annotations

from datetime import timedelta

import structlog
from pydantic import BaseModel
from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from shard_arena.core.clock import Clock, utc_now
from shard_arena.core.errors import EscrowUnavailableError, NotFoundError
from shard_arena.models import Battle
from shard_arena.services.storage import BattleStore

from .escrow import NO_WINNER, ChainEscrow, EscrowState, battle_ref

logger = structlog.get_logger()

# Finalization marker for a settlement another party already resolved
RESOLVED_ON_LEDGER = "resolved_onchain"


class SweepResult(BaseModel):
    checked: int = 0
    updated: int = 0


def needs_settlement(battle: Battle) -> bool:
    """True for a completed, staked, escrowed battle without a finalization tx."""
    return (
        battle.is_completed
        and battle.stake_amount > 0
        and battle.escrow_tx_hash is not None
        and battle.finalization_tx_hash is None
    )


def winner_address(battle: Battle) -> str:
    """Keeper address of the winning shard, or ``NO_WINNER`` for a draw."""
    for side in (battle.challenger, battle.defender):
        if battle.winner_id is not None and battle.winner_id == side.shard_id:
            return side.keeper_id
    return NO_WINNER


class SettlementSync:
    """Reports outcomes to the escrow ledger and records finalization.

    A staked battle is settled in two steps. First the winner is reported
    (``settle``) and the returned hash is kept as ``settlement_tx_hash``.
    Once the dispute window after completion has passed, an undisputed
    settlement is finalized and its hash becomes ``finalization_tx_hash``.
    Settlement never touches winner, scores or deltas. Reconcile does not
    retry; ``sweep_outstanding`` is the retrying caller.
    """

    def __init__(
        self,
        store: BattleStore,
        escrow: ChainEscrow,
        sweep_attempts: int = 3,
        retry_wait: float = 1.0,
        dispute_window_seconds: float = 3600.0,
        clock: Clock = utc_now,
    ) -> None:
        self.store = store
        self.escrow = escrow
        self.sweep_attempts = sweep_attempts
        self.retry_wait = retry_wait
        self.dispute_window = timedelta(seconds=dispute_window_seconds)
        self.clock = clock

    def dispute_window_passed(self, battle: Battle) -> bool:
        if battle.completed_at is None:
            return False
        return self.clock() >= battle.completed_at + self.dispute_window

    async def reconcile(self, battle_id: str) -> Battle:
        """Push a completed staked battle one step further through settlement.

        Args:
            battle_id: Battle to reconcile.

        Returns:
            The battle as stored after this step.

        Raises:
            NotFoundError: Unknown battle.
            EscrowUnavailableError: Ledger unreachable; retry later.
        """
        battle = await self.store.get_battle(battle_id)
        if battle is None:
            raise NotFoundError(f"Battle {battle_id} not found")
        if not needs_settlement(battle):
            return battle

        ref = battle_ref(battle.id)
        if battle.settlement_tx_hash is None:
            winner = winner_address(battle)
            tx_hash = await self.escrow.settle(ref, winner)
            if await self.store.set_settlement_tx(battle.id, tx_hash):
                logger.info(
                    "settlement_submitted", battle_id=battle.id, winner=winner, tx_hash=tx_hash
                )

        status = await self.escrow.settlement_status(ref)
        finalization: str | None = None
        if status.state is EscrowState.RESOLVED:
            finalization = status.tx_hash or RESOLVED_ON_LEDGER
        elif status.state is EscrowState.SETTLED and self.dispute_window_passed(battle):
            finalization = await self.escrow.finalize_settlement(ref)
        elif status.state is EscrowState.DISPUTED:
            logger.warning("settlement_disputed", battle_id=battle.id, ref=ref)
        else:
            logger.info("settlement_pending", battle_id=battle.id, state=status.state.value)

        if finalization is not None and await self.store.set_finalization_tx(
            battle.id, finalization
        ):
            logger.info("settlement_recorded", battle_id=battle.id, tx_hash=finalization)
        return await self.store.get_battle(battle.id) or battle

    async def _reconcile_with_retry(self, battle_id: str) -> Battle:
        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(self.sweep_attempts),
            wait=wait_exponential(multiplier=self.retry_wait, max=self.retry_wait * 8),
            retry=retry_if_exception_type(EscrowUnavailableError),
            reraise=True,
        ):
            with attempt:
                return await self.reconcile(battle_id)
        raise AssertionError("unreachable")

    async def sweep_outstanding(self, limit: int = 25) -> SweepResult:
        """Reconcile the oldest unsettled battles.

        A battle whose ledger stays unreachable after all attempts is
        skipped and left for the next sweep.
        """
        result = SweepResult()
        for battle in await self.store.list_unsettled(limit):
            result.checked += 1
            try:
                reconciled = await self._reconcile_with_retry(battle.id)
            except EscrowUnavailableError as e:
                logger.warning("settlement_sweep_skipped", battle_id=battle.id, error=str(e))
                continue
            if reconciled.finalization_tx_hash:
                result.updated += 1

        logger.info("settlement_sweep_done", checked=result.checked, updated=result.updated)
        return result
