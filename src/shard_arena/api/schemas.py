"""Request bodies for the REST binding (camelCase on the wire)."""

from pydantic import Field

from shard_arena.models import ArenaModel


class JoinQueueRequest(ArenaModel):
    shard_id: str = Field(min_length=1)
    owner_id: str = Field(min_length=1)
    mode: str
    elo_rating: float | None = None
    stake_amount: float = Field(default=0.0, ge=0)


class LeaveQueueRequest(ArenaModel):
    entry_id: str = Field(min_length=1)


class ChallengeRequest(ArenaModel):
    challenger_shard_id: str = Field(min_length=1)
    defender_shard_id: str = Field(min_length=1)
    mode: str
    stake_amount: float = Field(default=0.0, ge=0)
    escrow_tx_hash: str | None = None


class SubmitResponseRequest(ArenaModel):
    """One side's answer to a round; ``timed_out`` asks for the sentinel instead."""

    round: int
    shard_id: str | None = None
    response: str = ""
    timed_out: bool = False


class SuccessResponse(ArenaModel):
    success: bool = True
