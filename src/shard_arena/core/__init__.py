"""Core configuration and utilities for Shard Arena."""

from shard_arena.core.clock import Clock, utc_now
from shard_arena.core.config import (
    TOTAL_ROUNDS,
    ArenaConfig,
    BattleConfig,
    EscrowConfig,
    JudgeConfig,
    MatchmakingConfig,
    RatingConfig,
    hash_messages,
    load_config,
)
from shard_arena.core.errors import (
    APIKeyError,
    ArenaError,
    ConfigurationError,
    EscrowUnavailableError,
    InvalidRequestError,
    NotAuthenticatedError,
    NotAuthorizedError,
    NotFoundError,
    StateConflictError,
)

__all__ = [
    "TOTAL_ROUNDS",
    "ArenaConfig",
    "BattleConfig",
    "Clock",
    "EscrowConfig",
    "JudgeConfig",
    "MatchmakingConfig",
    "RatingConfig",
    "hash_messages",
    "load_config",
    "utc_now",
    "APIKeyError",
    "ArenaError",
    "ConfigurationError",
    "EscrowUnavailableError",
    "InvalidRequestError",
    "NotAuthenticatedError",
    "NotAuthorizedError",
    "NotFoundError",
    "StateConflictError",
]
