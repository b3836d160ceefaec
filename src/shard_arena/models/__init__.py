from .battle import (
    ArenaModel,
    Battle,
    BattleMode,
    BattleRound,
    BattleStatus,
    ParticipantSide,
    RoundScores,
    Side,
)
from .queue import MatchmakingEntry
from .shard import ShardProfile

__all__ = [
    "ArenaModel",
    "Battle",
    "BattleMode",
    "BattleRound",
    "BattleStatus",
    "MatchmakingEntry",
    "ParticipantSide",
    "RoundScores",
    "ShardProfile",
    "Side",
]
