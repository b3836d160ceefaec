"""Ranking module for Shard Arena.

Provides the Elo rating engine used when battles complete.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from shard_arena.ranking.elo import (
    Outcome,
    RatingEngine,
    calculate_expected_win_chance,
    elo_delta,
)

if TYPE_CHECKING:
    from shard_arena.core.config import ArenaConfig


def create_rating_engine(config: ArenaConfig) -> RatingEngine:
    """Create the rating engine from config.

    Args:
        config: Arena configuration.

    Returns:
        Configured RatingEngine.
    """
    return RatingEngine(k_factor=config.rating.k_factor)


__all__ = [
    "Outcome",
    "RatingEngine",
    "calculate_expected_win_chance",
    "create_rating_engine",
    "elo_delta",
]
