import uuid
from datetime import datetime

from pydantic import Field

from .battle import ArenaModel, BattleMode


class MatchmakingEntry(ArenaModel):
    """A shard waiting in the queue for an opponent in one mode."""

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    shard_id: str
    owner_id: str
    mode: BattleMode
    elo_rating: float
    stake_amount: float = Field(default=0.0, ge=0)
    joined_at: datetime
    search_range: int | None = None
