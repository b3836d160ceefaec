"""SQLModel-backed BattleStore.

Guarded writes are single ``UPDATE ... WHERE <pre-state>`` statements and
report success through the affected row count, so concurrent callers never
overwrite each other's fields. The two sides of a round live in separate
columns and are guarded independently.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any

import structlog
from sqlalchemy import delete, func, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.pool import NullPool
from sqlmodel import Session, SQLModel, col, create_engine, select

from shard_arena.core.errors import StateConflictError
from shard_arena.models import (
    Battle,
    BattleMode,
    BattleRound,
    BattleStatus,
    MatchmakingEntry,
    ParticipantSide,
    RoundScores,
    ShardProfile,
    Side,
)

from .base import merge_timeout
from .repository import AsyncRepository
from .tables import BattleRow, QueueEntryRow, RoundRow, ShardRow

logger = structlog.get_logger()

_WRITABLE = [BattleStatus.ACTIVE.value]
_JUDGEABLE = [BattleStatus.ACTIVE.value, BattleStatus.JUDGING.value]
_LIVE = [BattleStatus.ACTIVE.value, BattleStatus.JUDGING.value, BattleStatus.PENDING.value]


def _to_db_time(value: datetime | None) -> datetime | None:
    """Store timestamps as naive UTC so SQL comparisons line up."""
    if value is None:
        return None
    if value.tzinfo is not None:
        value = value.astimezone(UTC)
    return value.replace(tzinfo=None)


def _from_db_time(value: datetime | None) -> datetime | None:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def create_sql_engine(database_url: str) -> Any:
    """Create an engine and the arena tables."""
    connect_args = {"check_same_thread": False} if database_url.startswith("sqlite") else {}
    engine = create_engine(database_url, poolclass=NullPool, connect_args=connect_args)
    SQLModel.metadata.create_all(engine)
    return engine


def _entry_from_row(row: QueueEntryRow) -> MatchmakingEntry:
    return MatchmakingEntry(
        id=row.id,
        shard_id=row.shard_id,
        owner_id=row.owner_id,
        mode=BattleMode(row.mode),
        elo_rating=row.elo_rating,
        stake_amount=row.stake_amount,
        joined_at=_from_db_time(row.joined_at),
    )


def _round_from_row(row: RoundRow) -> BattleRound:
    scores = None
    if row.challenger_score is not None and row.defender_score is not None:
        scores = RoundScores(challenger=row.challenger_score, defender=row.defender_score)
    return BattleRound(
        round_number=row.round_number,
        prompt=row.prompt,
        challenger_response=row.challenger_response,
        defender_response=row.defender_response,
        scores=scores,
        reasoning=row.reasoning,
        judged_by_fallback=row.judged_by_fallback,
        started_at=_from_db_time(row.started_at),
        due_at=_from_db_time(row.due_at),
        timeout_by=row.timeout_by,
    )


def _round_to_row(battle_id: str, battle_round: BattleRound) -> RoundRow:
    scores = battle_round.scores
    return RoundRow(
        battle_id=battle_id,
        round_number=battle_round.round_number,
        prompt=battle_round.prompt,
        challenger_response=battle_round.challenger_response,
        defender_response=battle_round.defender_response,
        challenger_score=scores.challenger if scores else None,
        defender_score=scores.defender if scores else None,
        reasoning=battle_round.reasoning,
        judged_by_fallback=battle_round.judged_by_fallback,
        started_at=_to_db_time(battle_round.started_at),
        due_at=_to_db_time(battle_round.due_at),
        timeout_by=battle_round.timeout_by,
    )


def _battle_from_rows(row: BattleRow, rounds: list[RoundRow]) -> Battle:
    return Battle(
        id=row.id,
        mode=BattleMode(row.mode),
        status=BattleStatus(row.status),
        challenger=ParticipantSide(
            shard_id=row.challenger_shard_id,
            keeper_id=row.challenger_keeper_id,
            elo_rating=row.challenger_elo,
            elo_delta=row.challenger_delta,
        ),
        defender=ParticipantSide(
            shard_id=row.defender_shard_id,
            keeper_id=row.defender_keeper_id,
            elo_rating=row.defender_elo,
            elo_delta=row.defender_delta,
        ),
        rounds=[_round_from_row(r) for r in sorted(rounds, key=lambda r: r.round_number)],
        winner_id=row.winner_id,
        stake_amount=row.stake_amount,
        escrow_tx_hash=row.escrow_tx_hash,
        settlement_tx_hash=row.settlement_tx_hash,
        finalization_tx_hash=row.finalization_tx_hash,
        created_at=_from_db_time(row.created_at),
        completed_at=_from_db_time(row.completed_at),
    )


def _battle_to_row(battle: Battle) -> BattleRow:
    return BattleRow(
        id=battle.id,
        mode=battle.mode.value,
        status=battle.status.value,
        challenger_shard_id=battle.challenger.shard_id,
        challenger_keeper_id=battle.challenger.keeper_id,
        challenger_elo=battle.challenger.elo_rating,
        challenger_delta=battle.challenger.elo_delta,
        defender_shard_id=battle.defender.shard_id,
        defender_keeper_id=battle.defender.keeper_id,
        defender_elo=battle.defender.elo_rating,
        defender_delta=battle.defender.elo_delta,
        winner_id=battle.winner_id,
        stake_amount=battle.stake_amount,
        escrow_tx_hash=battle.escrow_tx_hash,
        settlement_tx_hash=battle.settlement_tx_hash,
        finalization_tx_hash=battle.finalization_tx_hash,
        created_at=_to_db_time(battle.created_at),
        completed_at=_to_db_time(battle.completed_at),
    )


def _execute(session: Session, statement: Any) -> Any:
    """Run a bulk UPDATE/DELETE without syncing objects held by the session."""
    return session.execute(statement, execution_options={"synchronize_session": False})


def _battle_ids_in(statuses: list[str]):
    return select(BattleRow.id).where(col(BattleRow.status).in_(statuses))


def _load_battle(session: Session, battle_id: str) -> Battle | None:
    row = session.get(BattleRow, battle_id)
    if row is None:
        return None
    rounds = session.exec(select(RoundRow).where(RoundRow.battle_id == battle_id)).all()
    return _battle_from_rows(row, list(rounds))


class SQLStore(AsyncRepository):
    """BattleStore on any SQLAlchemy database (SQLite by default)."""

    def __init__(self, database_url: str) -> None:
        super().__init__(create_sql_engine(database_url))
        self.database_url = database_url
        logger.info("store_init", backend="sql", url=database_url.split("@")[-1])

    # Queue

    async def add_entry(self, entry: MatchmakingEntry) -> MatchmakingEntry:
        def _add(session: Session) -> MatchmakingEntry:
            session.add(
                QueueEntryRow(
                    id=entry.id,
                    shard_id=entry.shard_id,
                    owner_id=entry.owner_id,
                    mode=entry.mode.value,
                    elo_rating=entry.elo_rating,
                    stake_amount=entry.stake_amount,
                    joined_at=_to_db_time(entry.joined_at),
                )
            )
            try:
                session.commit()
            except IntegrityError as e:
                session.rollback()
                msg = f"Shard {entry.shard_id} is already queued for {entry.mode.value}"
                raise StateConflictError(msg) from e
            return entry

        return await self._run_session(_add)

    async def get_entry(self, entry_id: str) -> MatchmakingEntry | None:
        def _get(session: Session) -> MatchmakingEntry | None:
            row = session.get(QueueEntryRow, entry_id)
            return _entry_from_row(row) if row else None

        return await self._run_session(_get)

    async def list_entries(
        self, mode: str | None = None, owner_id: str | None = None
    ) -> list[MatchmakingEntry]:
        def _list(session: Session) -> list[MatchmakingEntry]:
            statement = select(QueueEntryRow)
            if mode is not None:
                statement = statement.where(QueueEntryRow.mode == str(mode))
            if owner_id is not None:
                statement = statement.where(QueueEntryRow.owner_id == owner_id)
            statement = statement.order_by(col(QueueEntryRow.joined_at), col(QueueEntryRow.id))
            return [_entry_from_row(r) for r in session.exec(statement).all()]

        return await self._run_session(_list)

    async def remove_entry(self, entry_id: str, owner_id: str | None = None) -> bool:
        def _remove(session: Session) -> bool:
            statement = delete(QueueEntryRow).where(col(QueueEntryRow.id) == entry_id)
            if owner_id is not None:
                statement = statement.where(col(QueueEntryRow.owner_id) == owner_id)
            result = _execute(session, statement)
            session.commit()
            return result.rowcount == 1

        return await self._run_session(_remove)

    async def purge_entries(self, joined_before: datetime) -> int:
        def _purge(session: Session) -> int:
            result = _execute(
                session,
                delete(QueueEntryRow).where(
                    col(QueueEntryRow.joined_at) < _to_db_time(joined_before)
                )
            )
            session.commit()
            return result.rowcount

        return await self._run_session(_purge)

    async def pair_entries(self, entry_a_id: str, entry_b_id: str, battle: Battle) -> bool:
        def _pair(session: Session) -> bool:
            result = _execute(
                session,
                delete(QueueEntryRow).where(col(QueueEntryRow.id).in_([entry_a_id, entry_b_id]))
            )
            if result.rowcount != 2:
                session.rollback()
                return False
            session.add(_battle_to_row(battle))
            for battle_round in battle.rounds:
                session.add(_round_to_row(battle.id, battle_round))
            session.commit()
            return True

        return await self._run_session(_pair)

    # Battles

    async def add_battle(self, battle: Battle) -> Battle:
        def _add(session: Session) -> Battle:
            session.add(_battle_to_row(battle))
            for battle_round in battle.rounds:
                session.add(_round_to_row(battle.id, battle_round))
            try:
                session.commit()
            except IntegrityError as e:
                session.rollback()
                msg = f"Battle {battle.id} already exists"
                raise StateConflictError(msg) from e
            return battle

        return await self._run_session(_add)

    async def get_battle(self, battle_id: str) -> Battle | None:
        return await self._run_session(lambda session: _load_battle(session, battle_id))

    async def list_battles(self, keeper_id: str) -> list[Battle]:
        def _list(session: Session) -> list[Battle]:
            statement = (
                select(BattleRow.id)
                .where(
                    (BattleRow.challenger_keeper_id == keeper_id)
                    | (BattleRow.defender_keeper_id == keeper_id)
                )
                .order_by(col(BattleRow.created_at).desc())
            )
            ids = session.exec(statement).all()
            return [b for b in (_load_battle(session, bid) for bid in ids) if b is not None]

        return await self._run_session(_list)

    async def list_live(self, limit: int = 50) -> list[Battle]:
        def _list(session: Session) -> list[Battle]:
            statement = (
                select(BattleRow.id)
                .where(col(BattleRow.status).in_(_LIVE))
                .order_by(col(BattleRow.created_at).desc())
                .limit(limit)
            )
            ids = session.exec(statement).all()
            return [b for b in (_load_battle(session, bid) for bid in ids) if b is not None]

        return await self._run_session(_list)

    async def add_round(self, battle_id: str, battle_round: BattleRound) -> bool:
        def _add(session: Session) -> bool:
            battle = session.get(BattleRow, battle_id)
            if battle is None or battle.status not in _WRITABLE:
                return False
            count = session.exec(
                select(func.count()).select_from(RoundRow).where(RoundRow.battle_id == battle_id)
            ).one()
            if battle_round.round_number != count + 1:
                return False
            session.add(_round_to_row(battle_id, battle_round))
            try:
                session.commit()
            except IntegrityError:
                session.rollback()
                return False
            return True

        return await self._run_session(_add)

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
        column = col(
            RoundRow.challenger_response
            if side is Side.CHALLENGER
            else RoundRow.defender_response
        )

        def _set(session: Session) -> bool:
            conditions = [
                col(RoundRow.battle_id) == battle_id,
                col(RoundRow.round_number) == round_number,
                col(RoundRow.battle_id).in_(_battle_ids_in(_WRITABLE)),
            ]
            if overwrite:
                conditions += [col(RoundRow.challenger_score).is_(None), column != response]
            else:
                conditions.append(column == "")
            values: dict[str, Any] = {column.key: response}
            if timed_out:
                row = session.get(RoundRow, (battle_id, round_number))
                if row is None:
                    return False
                current = row.timeout_by
                values["timeout_by"] = merge_timeout(current, side)
                conditions.append(
                    col(RoundRow.timeout_by).is_(None)
                    if current is None
                    else col(RoundRow.timeout_by) == current
                )
            result = _execute(session, update(RoundRow).where(*conditions).values(**values))
            session.commit()
            return result.rowcount == 1

        return await self._run_session(_set)

    async def set_judgment(
        self,
        battle_id: str,
        round_number: int,
        scores: RoundScores,
        reasoning: str,
        fallback: bool = False,
    ) -> bool:
        def _set(session: Session) -> bool:
            result = _execute(
                session,
                update(RoundRow)
                .where(
                    col(RoundRow.battle_id) == battle_id,
                    col(RoundRow.round_number) == round_number,
                    col(RoundRow.challenger_score).is_(None),
                    col(RoundRow.challenger_response) != "",
                    col(RoundRow.defender_response) != "",
                    col(RoundRow.battle_id).in_(_battle_ids_in(_JUDGEABLE)),
                )
                .values(
                    challenger_score=scores.challenger,
                    defender_score=scores.defender,
                    reasoning=reasoning,
                    judged_by_fallback=fallback,
                )
            )
            session.commit()
            return result.rowcount == 1

        return await self._run_session(_set)

    async def transition_status(
        self, battle_id: str, expected: set[BattleStatus], status: BattleStatus
    ) -> bool:
        def _transition(session: Session) -> bool:
            result = _execute(
                session,
                update(BattleRow)
                .where(
                    col(BattleRow.id) == battle_id,
                    col(BattleRow.status).in_([s.value for s in expected]),
                )
                .values(status=status.value)
            )
            session.commit()
            return result.rowcount == 1

        return await self._run_session(_transition)

    async def complete_battle(
        self,
        battle_id: str,
        winner_id: str | None,
        challenger_delta: int,
        defender_delta: int,
        completed_at: datetime,
    ) -> bool:
        def _complete(session: Session) -> bool:
            result = _execute(
                session,
                update(BattleRow)
                .where(col(BattleRow.id) == battle_id, col(BattleRow.status).in_(_JUDGEABLE))
                .values(
                    status=BattleStatus.COMPLETED.value,
                    winner_id=winner_id,
                    challenger_delta=challenger_delta,
                    defender_delta=defender_delta,
                    completed_at=_to_db_time(completed_at),
                )
            )
            if result.rowcount != 1:
                session.rollback()
                return False
            row = session.get(BattleRow, battle_id)
            for shard_id, delta in (
                (row.challenger_shard_id, challenger_delta),
                (row.defender_shard_id, defender_delta),
            ):
                _execute(
                    session,
                    update(ShardRow)
                    .where(col(ShardRow.id) == shard_id)
                    .values(elo_rating=ShardRow.elo_rating + delta)
                )
            session.commit()
            return True

        return await self._run_session(_complete)

    async def _set_hash_once(self, field: Any, battle_id: str, tx_hash: str) -> bool:
        column = col(field)

        def _set(session: Session) -> bool:
            result = _execute(
                session,
                update(BattleRow)
                .where(
                    col(BattleRow.id) == battle_id,
                    col(BattleRow.status) == BattleStatus.COMPLETED.value,
                    column.is_(None),
                )
                .values({column.key: tx_hash})
            )
            session.commit()
            return result.rowcount == 1

        return await self._run_session(_set)

    async def set_settlement_tx(self, battle_id: str, tx_hash: str) -> bool:
        return await self._set_hash_once(BattleRow.settlement_tx_hash, battle_id, tx_hash)

    async def set_finalization_tx(self, battle_id: str, tx_hash: str) -> bool:
        return await self._set_hash_once(BattleRow.finalization_tx_hash, battle_id, tx_hash)

    async def list_unsettled(self, limit: int) -> list[Battle]:
        def _list(session: Session) -> list[Battle]:
            statement = (
                select(BattleRow.id)
                .where(
                    BattleRow.status == BattleStatus.COMPLETED.value,
                    BattleRow.stake_amount > 0,
                    col(BattleRow.escrow_tx_hash).is_not(None),
                    col(BattleRow.finalization_tx_hash).is_(None),
                )
                .order_by(col(BattleRow.completed_at))
                .limit(limit)
            )
            ids = session.exec(statement).all()
            return [b for b in (_load_battle(session, bid) for bid in ids) if b is not None]

        return await self._run_session(_list)

    # Shards

    async def get_shard(self, shard_id: str) -> ShardProfile | None:
        def _get(session: Session) -> ShardProfile | None:
            row = session.get(ShardRow, shard_id)
            if row is None:
                return None
            return ShardProfile(id=row.id, owner_id=row.owner_id, elo_rating=row.elo_rating)

        return await self._run_session(_get)

    async def save_shard(self, shard: ShardProfile) -> ShardProfile:
        def _save(session: Session) -> ShardProfile:
            existing = session.get(ShardRow, shard.id)
            if existing:
                existing.owner_id = shard.owner_id
                existing.elo_rating = shard.elo_rating
                session.add(existing)
            else:
                session.add(
                    ShardRow(id=shard.id, owner_id=shard.owner_id, elo_rating=shard.elo_rating)
                )
            session.commit()
            return shard

        return await self._run_session(_save)
