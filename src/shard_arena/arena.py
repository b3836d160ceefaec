"""Wires the arena services together."""

from __future__ import annotations

from dataclasses import dataclass

import structlog

from shard_arena.core.clock import Clock, utc_now
from shard_arena.core.config import ArenaConfig
from shard_arena.core.errors import NotAuthorizedError
from shard_arena.models import Battle
from shard_arena.prompts import PromptGenerator, generate_battle_prompt
from shard_arena.ranking import create_rating_engine
from shard_arena.services.battle import BattleLifecycle
from shard_arena.services.judge import Judge, create_judge
from shard_arena.services.match import MatchQueue
from shard_arena.services.settlement import ChainEscrow, SettlementSync, create_escrow
from shard_arena.services.storage import BattleStore, create_store

logger = structlog.get_logger()


@dataclass
class Arena:
    """Service container shared by the REST app and the CLI."""

    config: ArenaConfig
    store: BattleStore
    judge: Judge
    escrow: ChainEscrow
    lifecycle: BattleLifecycle
    queue: MatchQueue
    settlement: SettlementSync

    async def settle(self, battle_id: str, caller: str) -> Battle:
        """Finalize a battle if needed, then reconcile its escrow.

        Raises:
            NotAuthorizedError: Caller is not a participant.
            InvalidRequestError: No round has been played yet.
            EscrowUnavailableError: Battle is final but the ledger is unreachable.
        """
        battle = await self.lifecycle.get_battle(battle_id)
        if caller.lower() not in battle.keepers():
            raise NotAuthorizedError()
        battle = await self.lifecycle.finalize(battle.id)
        return await self.settlement.reconcile(battle.id)

    async def aclose(self) -> None:
        """Close the judge's model client, if it has one."""
        client = getattr(self.judge, "client", None)
        if client is not None:
            await client.close()
            logger.debug("judge_client_closed", client=type(client).__name__)


def build_arena(
    config: ArenaConfig | None = None,
    *,
    store: BattleStore | None = None,
    judge: Judge | None = None,
    escrow: ChainEscrow | None = None,
    clock: Clock = utc_now,
    prompt_generator: PromptGenerator = generate_battle_prompt,
    settlement_retry_wait: float = 1.0,
) -> Arena:
    """Build an arena from config, with optional overrides for each collaborator.

    Args:
        config: Arena configuration (defaults when omitted).
        store: Store override; otherwise created from ``database_url``.
        judge: Judge override; otherwise created from ``config.judge``.
        escrow: Escrow override; otherwise created from ``config.escrow``.
        clock: Time source for every service.
        prompt_generator: Round prompt source.
        settlement_retry_wait: Base wait between sweep retries, in seconds.

    Returns:
        Ready-to-use Arena.
    """
    config = config or ArenaConfig()
    store = store or create_store(config)
    judge = judge or create_judge(config.judge)
    escrow = escrow or create_escrow(config.escrow)

    lifecycle = BattleLifecycle(
        store,
        judge,
        create_rating_engine(config),
        config=config.battle,
        escrow=escrow,
        prompt_generator=prompt_generator,
        clock=clock,
    )
    queue = MatchQueue(store, lifecycle, config=config.matchmaking, clock=clock)
    settlement = SettlementSync(
        store,
        escrow,
        sweep_attempts=config.escrow.sweep_attempts,
        retry_wait=settlement_retry_wait,
        dispute_window_seconds=config.escrow.dispute_window_seconds,
        clock=clock,
    )
    logger.debug(
        "arena_built",
        store=type(store).__name__,
        judge=type(judge).__name__,
        escrow=type(escrow).__name__,
    )
    return Arena(
        config=config,
        store=store,
        judge=judge,
        escrow=escrow,
        lifecycle=lifecycle,
        queue=queue,
        settlement=settlement,
    )
