"""SQLModel tables backing SQLStore."""

import uuid
from datetime import datetime

from sqlalchemy import UniqueConstraint
from sqlmodel import Field, SQLModel


class QueueEntryRow(SQLModel, table=True):
    __tablename__ = "queue_entries"
    __table_args__ = (UniqueConstraint("shard_id", "mode", name="uq_queue_shard_mode"),)

    id: str = Field(default_factory=lambda: str(uuid.uuid4()), primary_key=True)
    shard_id: str
    owner_id: str = Field(index=True)
    mode: str = Field(index=True)
    elo_rating: float
    stake_amount: float = 0.0
    joined_at: datetime = Field(index=True)


class BattleRow(SQLModel, table=True):
    __tablename__ = "battles"

    id: str = Field(primary_key=True)
    mode: str
    status: str = Field(index=True)
    challenger_shard_id: str
    challenger_keeper_id: str = Field(index=True)
    challenger_elo: float
    challenger_delta: int = 0
    defender_shard_id: str
    defender_keeper_id: str = Field(index=True)
    defender_elo: float
    defender_delta: int = 0
    winner_id: str | None = None
    stake_amount: float = 0.0
    escrow_tx_hash: str | None = None
    settlement_tx_hash: str | None = None
    finalization_tx_hash: str | None = None
    created_at: datetime
    completed_at: datetime | None = None


class RoundRow(SQLModel, table=True):
    __tablename__ = "battle_rounds"

    battle_id: str = Field(primary_key=True, foreign_key="battles.id")
    round_number: int = Field(primary_key=True)
    prompt: str
    challenger_response: str = ""
    defender_response: str = ""
    challenger_score: int | None = None
    defender_score: int | None = None
    reasoning: str | None = None
    judged_by_fallback: bool = False
    started_at: datetime
    due_at: datetime
    timeout_by: str | None = None


class ShardRow(SQLModel, table=True):
    __tablename__ = "shards"

    id: str = Field(primary_key=True)
    owner_id: str = Field(index=True)
    elo_rating: float = 1200.0
