"""Battle, round and participant records."""

from __future__ import annotations

import uuid
from datetime import datetime
from enum import StrEnum
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from shard_arena.core.config import TOTAL_ROUNDS


class ArenaModel(BaseModel):
    """Base model serialized with camelCase keys."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class BattleMode(StrEnum):
    DEBATE = "debate"
    SOLVE = "solve"
    RIDDLE_CHAIN = "riddle_chain"
    CREATIVE_CLASH = "creative_clash"


class BattleStatus(StrEnum):
    PENDING = "pending"
    MATCHING = "matching"
    ACTIVE = "active"
    JUDGING = "judging"
    COMPLETED = "completed"
    DISPUTED = "disputed"


class Side(StrEnum):
    CHALLENGER = "challenger"
    DEFENDER = "defender"

    @property
    def opponent(self) -> Side:
        return Side.DEFENDER if self is Side.CHALLENGER else Side.CHALLENGER


class RoundScores(ArenaModel):
    challenger: int = Field(ge=0, le=100)
    defender: int = Field(ge=0, le=100)


class BattleRound(ArenaModel):
    """One prompt answered by both sides.

    A round is complete once both responses are non-empty; ``scores`` is
    written exactly once, at that moment.
    """

    round_number: int = Field(ge=1, le=TOTAL_ROUNDS)
    prompt: str
    challenger_response: str = ""
    defender_response: str = ""
    scores: RoundScores | None = None
    reasoning: str | None = None
    judged_by_fallback: bool = False
    started_at: datetime
    due_at: datetime
    timeout_by: Literal["challenger", "defender", "both"] | None = None

    def response(self, side: Side) -> str:
        return self.challenger_response if side is Side.CHALLENGER else self.defender_response

    @property
    def is_complete(self) -> bool:
        return bool(self.challenger_response) and bool(self.defender_response)

    @property
    def is_judged(self) -> bool:
        return self.scores is not None

    def missing_sides(self) -> list[Side]:
        return [side for side in Side if not self.response(side)]


class ParticipantSide(ArenaModel):
    """One side of a battle: the shard and the identity allowed to act for it."""

    shard_id: str
    keeper_id: str
    elo_rating: float
    elo_delta: int = 0


class Battle(ArenaModel):
    """A best-of-rounds contest between two shards.

    Once ``status`` is completed every field except ``settlement_tx_hash``
    and ``finalization_tx_hash`` is frozen.
    """

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    mode: BattleMode
    status: BattleStatus = BattleStatus.ACTIVE
    challenger: ParticipantSide
    defender: ParticipantSide
    rounds: list[BattleRound] = Field(default_factory=list)
    winner_id: str | None = None
    stake_amount: float = Field(default=0.0, ge=0)
    escrow_tx_hash: str | None = None
    settlement_tx_hash: str | None = None
    finalization_tx_hash: str | None = None
    created_at: datetime
    completed_at: datetime | None = None

    def participant(self, side: Side) -> ParticipantSide:
        return self.challenger if side is Side.CHALLENGER else self.defender

    def get_round(self, round_number: int) -> BattleRound | None:
        for battle_round in self.rounds:
            if battle_round.round_number == round_number:
                return battle_round
        return None

    @property
    def is_completed(self) -> bool:
        return self.status is BattleStatus.COMPLETED

    @property
    def next_round_number(self) -> int:
        return len(self.rounds) + 1

    @property
    def all_rounds_complete(self) -> bool:
        return len(self.rounds) >= TOTAL_ROUNDS and all(r.is_complete for r in self.rounds)

    def keepers(self) -> set[str]:
        return {self.challenger.keeper_id, self.defender.keeper_id}
