from __future__ import annotations

from typing import TYPE_CHECKING

from .base import BattleStore, merge_timeout
from .memory_store import InMemoryStore
from .sql_store import SQLStore, create_sql_engine

if TYPE_CHECKING:
    from shard_arena.core.config import ArenaConfig


def create_store(config: ArenaConfig) -> BattleStore:
    """Create the store for ``config.database_url`` ("memory://" for in-process)."""
    if config.database_url.startswith("memory://"):
        return InMemoryStore()
    return SQLStore(config.database_url)


__all__ = [
    "BattleStore",
    "InMemoryStore",
    "SQLStore",
    "create_sql_engine",
    "create_store",
    "merge_timeout",
]
