"""Elo rating calculations for Shard Arena."""

from __future__ import annotations

from enum import StrEnum


class Outcome(StrEnum):
    """Battle result from the challenger's point of view."""

    WIN = "win"
    LOSS = "loss"
    DRAW = "draw"

    @property
    def actual_score(self) -> float:
        return {Outcome.WIN: 1.0, Outcome.LOSS: 0.0, Outcome.DRAW: 0.5}[self]


def calculate_expected_win_chance(rating_a: float, rating_b: float) -> float:
    """Calculate expected win probability for player A against player B.

    Uses the standard Elo formula:
    E_A = 1 / (1 + 10^((R_B - R_A) / 400))

    Args:
        rating_a: Rating of player A.
        rating_b: Rating of player B.

    Returns:
        Probability that A wins (0.0 to 1.0).
    """
    return 1.0 / (1.0 + 10 ** ((rating_b - rating_a) / 400))


def elo_delta(rating_self: float, rating_opponent: float, actual: float, k_factor: float) -> int:
    """Rounded rating change for one player.

    Args:
        rating_self: Player rating before the battle.
        rating_opponent: Opponent rating before the battle.
        actual: Actual score (1 win, 0.5 draw, 0 loss).
        k_factor: K-factor for the update.

    Returns:
        round(K * (S - E)).
    """
    expected = calculate_expected_win_chance(rating_self, rating_opponent)
    return round(k_factor * (actual - expected))


class RatingEngine:
    """Pure Elo delta computation for a finished battle.

    The two deltas are computed independently, one per side, so their sum is
    not guaranteed to be zero after rounding.

    Attributes:
        k_factor: K-factor applied to both sides.
    """

    def __init__(self, k_factor: float = 32.0) -> None:
        self.k_factor = k_factor

    def compute(
        self,
        rating_challenger: float,
        rating_defender: float,
        outcome: Outcome,
    ) -> tuple[int, int]:
        """Compute Elo deltas for both sides.

        Args:
            rating_challenger: Challenger rating before the battle.
            rating_defender: Defender rating before the battle.
            outcome: Result from the challenger's point of view.

        Returns:
            Tuple of (challenger_delta, defender_delta).
        """
        challenger_score = outcome.actual_score
        delta_challenger = elo_delta(
            rating_challenger, rating_defender, challenger_score, self.k_factor
        )
        delta_defender = elo_delta(
            rating_defender, rating_challenger, 1.0 - challenger_score, self.k_factor
        )
        return delta_challenger, delta_defender
