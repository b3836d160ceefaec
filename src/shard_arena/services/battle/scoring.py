"""Round judging and battle outcome helpers."""

from __future__ import annotations

import structlog

from shard_arena.models import Battle, BattleRound, RoundScores
from shard_arena.ranking import Outcome
from shard_arena.services.judge import Judge
from shard_arena.services.storage import BattleStore

logger = structlog.get_logger()


async def judge_round(
    store: BattleStore, judge: Judge, battle: Battle, battle_round: BattleRound
) -> bool:
    """Score a complete, unscored round and persist the result.

    Returns:
        True if this call wrote the scores. False if the round is not ready
        or another writer scored it first.
    """
    if not battle_round.is_complete or battle_round.is_judged:
        return False

    judgment = await judge.score(
        battle.mode,
        battle_round.prompt,
        battle_round.challenger_response,
        battle_round.defender_response,
    )
    applied = await store.set_judgment(
        battle.id,
        battle_round.round_number,
        RoundScores(challenger=judgment.score_a, defender=judgment.score_b),
        judgment.reasoning,
        fallback=judgment.fallback,
    )
    if applied:
        logger.info(
            "round_judged",
            battle_id=battle.id,
            round=battle_round.round_number,
            challenger=judgment.score_a,
            defender=judgment.score_b,
            fallback=judgment.fallback,
        )
    return applied


def score_totals(battle: Battle) -> tuple[int, int]:
    """Sum scores over judged rounds as (challenger, defender)."""
    challenger = sum(r.scores.challenger for r in battle.rounds if r.scores)
    defender = sum(r.scores.defender for r in battle.rounds if r.scores)
    return challenger, defender


def determine_winner(battle: Battle) -> tuple[str | None, Outcome]:
    """Winner shard id (None on a draw) and the challenger's outcome."""
    challenger, defender = score_totals(battle)
    if challenger > defender:
        return battle.challenger.shard_id, Outcome.WIN
    if defender > challenger:
        return battle.defender.shard_id, Outcome.LOSS
    return None, Outcome.DRAW
