from .clock import RoundClock
from .lifecycle import BattleLifecycle
from .scoring import determine_winner, judge_round, score_totals

__all__ = [
    "BattleLifecycle",
    "RoundClock",
    "determine_winner",
    "judge_round",
    "score_totals",
]
