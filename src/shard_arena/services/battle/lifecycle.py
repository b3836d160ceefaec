"""Battle state machine: rounds, responses, judging and finalization."""

from __future__ import annotations

from datetime import timedelta

import structlog

from shard_arena.core.clock import Clock, utc_now
from shard_arena.core.config import TOTAL_ROUNDS, BattleConfig
from shard_arena.core.errors import (
    InvalidRequestError,
    NotAuthorizedError,
    NotFoundError,
    StateConflictError,
)
from shard_arena.models import (
    Battle,
    BattleMode,
    BattleRound,
    BattleStatus,
    ParticipantSide,
    Side,
)
from shard_arena.prompts import PromptGenerator, generate_battle_prompt
from shard_arena.ranking import RatingEngine
from shard_arena.services.judge import Judge
from shard_arena.services.settlement import ChainEscrow, UnconfiguredEscrow
from shard_arena.services.storage import BattleStore

from .clock import RoundClock
from .scoring import determine_winner, judge_round

logger = structlog.get_logger()

_FINALIZABLE = {BattleStatus.ACTIVE, BattleStatus.JUDGING}


class BattleLifecycle:
    """Drives a battle from creation to completion.

    Every write goes through a compare-and-swap store call; after a lost
    race the battle is re-read and the caller sees the winner's state.

    Attributes:
        store: Durable state.
        judge: Round scorer, never raises.
        rating_engine: Elo delta computation.
        config: Turn limit, sentinel and response bounds.
        escrow: Ledger used to verify stakes of direct challenges.
    """

    def __init__(
        self,
        store: BattleStore,
        judge: Judge,
        rating_engine: RatingEngine,
        config: BattleConfig | None = None,
        escrow: ChainEscrow | None = None,
        prompt_generator: PromptGenerator = generate_battle_prompt,
        clock: Clock = utc_now,
    ) -> None:
        self.store = store
        self.judge = judge
        self.rating_engine = rating_engine
        self.config = config or BattleConfig()
        self.escrow = escrow or UnconfiguredEscrow()
        self.prompt_generator = prompt_generator
        self.clock = clock
        self.round_clock = RoundClock(
            store, judge, sentinel=self.config.timeout_sentinel, clock=clock
        )

    # Creation

    def new_battle(
        self,
        challenger: ParticipantSide,
        defender: ParticipantSide,
        mode: BattleMode,
        stake_amount: float = 0.0,
        escrow_tx_hash: str | None = None,
    ) -> Battle:
        """Build an active battle with no rounds yet (not persisted)."""
        if challenger.shard_id == defender.shard_id:
            raise InvalidRequestError("A shard cannot battle itself")
        return Battle(
            mode=mode,
            status=BattleStatus.ACTIVE,
            challenger=challenger.model_copy(update={"keeper_id": challenger.keeper_id.lower()}),
            defender=defender.model_copy(update={"keeper_id": defender.keeper_id.lower()}),
            stake_amount=stake_amount,
            escrow_tx_hash=escrow_tx_hash,
            created_at=self.clock(),
        )

    async def create(
        self,
        challenger: ParticipantSide,
        defender: ParticipantSide,
        mode: BattleMode,
        stake_amount: float = 0.0,
        escrow_tx_hash: str | None = None,
    ) -> Battle:
        """Persist a new active battle."""
        battle = await self.store.add_battle(
            self.new_battle(challenger, defender, mode, stake_amount, escrow_tx_hash)
        )
        logger.info(
            "battle_created",
            battle_id=battle.id,
            mode=battle.mode.value,
            challenger=challenger.shard_id,
            defender=defender.shard_id,
            stake=stake_amount,
        )
        return battle

    async def create_challenge(
        self,
        caller: str,
        challenger_shard_id: str,
        defender_shard_id: str,
        mode: BattleMode,
        stake_amount: float = 0.0,
        escrow_tx_hash: str | None = None,
    ) -> Battle:
        """Start a battle by direct challenge between two registered shards.

        Raises:
            InvalidRequestError: Bad fields, missing or rejected escrow.
            NotFoundError: Either shard is not registered.
            NotAuthorizedError: Caller does not own the challenger shard.
            EscrowUnavailableError: Stake could not be verified right now.
        """
        if not challenger_shard_id or not defender_shard_id:
            raise InvalidRequestError("Missing required fields: challengerShardId, defenderShardId")
        if stake_amount < 0:
            raise InvalidRequestError("stakeAmount must be a non-negative number")

        challenger = await self.store.get_shard(challenger_shard_id)
        defender = await self.store.get_shard(defender_shard_id)
        if challenger is None or defender is None:
            raise NotFoundError("Shard not found")
        if challenger.owner_id.lower() != caller.lower():
            raise NotAuthorizedError()

        if stake_amount > 0:
            if not escrow_tx_hash:
                raise InvalidRequestError("escrowTxHash is required when staking")
            if not await self.escrow.verify_escrow(escrow_tx_hash):
                raise InvalidRequestError("Escrow transaction could not be verified")

        return await self.create(
            ParticipantSide(
                shard_id=challenger.id,
                keeper_id=challenger.owner_id,
                elo_rating=challenger.elo_rating,
            ),
            ParticipantSide(
                shard_id=defender.id,
                keeper_id=defender.owner_id,
                elo_rating=defender.elo_rating,
            ),
            mode,
            stake_amount=stake_amount,
            escrow_tx_hash=escrow_tx_hash if stake_amount > 0 else None,
        )

    # Reads

    async def get_battle(self, battle_id: str) -> Battle:
        """Current battle state after resolving overdue rounds.

        Raises:
            NotFoundError: Unknown battle.
        """
        battle = await self.store.get_battle(battle_id)
        if battle is None:
            raise NotFoundError(f"Battle {battle_id} not found")

        battle, _ = await self.round_clock.reconcile_expired(battle)
        if battle.status in _FINALIZABLE and battle.all_rounds_complete:
            battle = await self.finalize(battle.id)
        return battle

    async def list_battles(self, keeper_id: str) -> list[Battle]:
        """Battles the keeper plays in, newest first."""
        return await self.store.list_battles(keeper_id.lower())

    async def list_live(self, limit: int = 50) -> list[Battle]:
        """Battles still in play, newest first, for spectators."""
        return await self.store.list_live(limit)

    def authorize(self, battle: Battle, caller: str, shard_id: str | None = None) -> Side:
        """Resolve which side ``caller`` acts for.

        Raises:
            NotAuthorizedError: Caller does not control the named shard.
            InvalidRequestError: Caller controls both sides and gave no shard.
        """
        caller = caller.lower()
        sides = [side for side in Side if battle.participant(side).keeper_id == caller]
        if shard_id is not None:
            sides = [side for side in sides if battle.participant(side).shard_id == shard_id]
        if not sides:
            raise NotAuthorizedError()
        if len(sides) > 1:
            raise InvalidRequestError("shardId is required when one keeper controls both sides")
        return sides[0]

    # Rounds

    async def open_round(self, battle_id: str, caller: str) -> BattleRound:
        """Current round for a participant, opening the next one if due.

        Raises:
            StateConflictError: Battle is no longer accepting responses.
        """
        battle = await self.get_battle(battle_id)
        if caller.lower() not in battle.keepers():
            raise NotAuthorizedError()
        if battle.status is not BattleStatus.ACTIVE:
            raise StateConflictError(f"Battle is {battle.status.value}")

        if battle.rounds and not battle.rounds[-1].is_complete:
            return battle.rounds[-1]
        return await self._ensure_round(battle, battle.next_round_number)

    async def _ensure_round(self, battle: Battle, round_number: int) -> BattleRound:
        existing = battle.get_round(round_number)
        if existing is not None:
            return existing

        if not 1 <= round_number <= TOTAL_ROUNDS:
            raise InvalidRequestError(f"Round must be between 1 and {TOTAL_ROUNDS}")
        previous_open = battle.rounds and not battle.rounds[-1].is_complete
        if round_number != battle.next_round_number or previous_open:
            raise InvalidRequestError(f"Round {round_number} is not open")

        now = self.clock()
        battle_round = BattleRound(
            round_number=round_number,
            prompt=self.prompt_generator(battle.mode, round_number),
            started_at=now,
            due_at=now + timedelta(seconds=self.config.turn_time_limit_seconds),
        )
        if await self.store.add_round(battle.id, battle_round):
            logger.info("round_opened", battle_id=battle.id, round=round_number)
            return battle_round

        current = await self.store.get_battle(battle.id)
        existing = current.get_round(round_number) if current else None
        if existing is None:
            raise StateConflictError(f"Round {round_number} could not be opened")
        return existing

    async def submit_round_response(
        self,
        battle_id: str,
        caller: str,
        round_number: int,
        response: str,
        shard_id: str | None = None,
        timed_out: bool = False,
    ) -> Battle:
        """Record one side's answer, then judge and finalize as needed.

        With ``timed_out`` the caller's side is filled with the timeout
        sentinel; repeating it once the round is scored is a no-op.

        Raises:
            InvalidRequestError: Bad round number or response.
            NotAuthorizedError: Caller is not the matching participant.
            StateConflictError: Side already answered, or battle not active.
        """
        if not 1 <= round_number <= TOTAL_ROUNDS:
            raise InvalidRequestError(f"Round must be between 1 and {TOTAL_ROUNDS}")
        if timed_out:
            text = self.config.timeout_sentinel
        else:
            if not response or not response.strip():
                raise InvalidRequestError("Response must not be empty")
            if len(response) > self.config.max_response_length:
                msg = f"Response exceeds {self.config.max_response_length} characters"
                raise InvalidRequestError(msg)
            text = response

        battle = await self.get_battle(battle_id)
        side = self.authorize(battle, caller, shard_id)

        if battle.status is not BattleStatus.ACTIVE:
            if timed_out and battle.is_completed:
                return battle
            raise StateConflictError(f"Battle is {battle.status.value}")

        battle_round = await self._ensure_round(battle, round_number)
        if battle_round.is_judged:
            if timed_out:
                return battle
            raise StateConflictError(f"Round {round_number} is already complete")

        applied = await self.store.set_response(
            battle.id, round_number, side, text, overwrite=timed_out, timed_out=timed_out
        )
        if not applied and not timed_out:
            msg = f"The {side.value} response for round {round_number} was already submitted"
            raise StateConflictError(msg)
        if applied:
            logger.info(
                "response_recorded",
                battle_id=battle.id,
                round=round_number,
                side=side.value,
                timed_out=timed_out,
            )

        return await self._advance(battle.id)

    async def _advance(self, battle_id: str) -> Battle:
        battle = await self.store.get_battle(battle_id)
        if battle is None:
            raise NotFoundError(f"Battle {battle_id} not found")

        judged = False
        for battle_round in battle.rounds:
            if await judge_round(self.store, self.judge, battle, battle_round):
                judged = True
        if judged:
            battle = await self.store.get_battle(battle_id) or battle

        if battle.status in _FINALIZABLE and battle.all_rounds_complete:
            battle = await self.finalize(battle_id)
        return battle

    # Completion

    async def finalize(self, battle_id: str) -> Battle:
        """Decide the winner and apply Elo deltas.

        Calling it on a completed battle returns the stored result unchanged.

        Raises:
            NotFoundError: Unknown battle.
            StateConflictError: Battle is disputed or not started.
            InvalidRequestError: No round has both responses yet.
        """
        battle = await self.store.get_battle(battle_id)
        if battle is None:
            raise NotFoundError(f"Battle {battle_id} not found")
        if battle.is_completed:
            return battle
        if battle.status not in _FINALIZABLE:
            raise StateConflictError(f"Battle is {battle.status.value}")

        judged = False
        for battle_round in battle.rounds:
            if await judge_round(self.store, self.judge, battle, battle_round):
                judged = True
        if judged:
            battle = await self.store.get_battle(battle_id) or battle

        if not any(r.is_judged for r in battle.rounds):
            raise InvalidRequestError("No rounds have been played yet")

        await self.store.transition_status(battle_id, {BattleStatus.ACTIVE}, BattleStatus.JUDGING)
        battle = await self.store.get_battle(battle_id) or battle

        winner_id, outcome = determine_winner(battle)
        challenger_delta, defender_delta = self.rating_engine.compute(
            battle.challenger.elo_rating, battle.defender.elo_rating, outcome
        )
        completed = await self.store.complete_battle(
            battle_id, winner_id, challenger_delta, defender_delta, self.clock()
        )
        if completed:
            logger.info(
                "battle_completed",
                battle_id=battle_id,
                winner=winner_id,
                outcome=outcome.value,
                challenger_delta=challenger_delta,
                defender_delta=defender_delta,
            )

        final = await self.store.get_battle(battle_id)
        if final is None:
            raise NotFoundError(f"Battle {battle_id} not found")
        return final
