from .battle import ArenaModel


class ShardProfile(ArenaModel):
    """Registry view of a shard: who owns it and its current rating."""

    id: str
    owner_id: str
    elo_rating: float = 1200.0
