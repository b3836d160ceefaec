"""Shard Arena.

Battle engine for shards: queue matchmaking, judged multi-round battles,
Elo adjustment and stake settlement against an escrow ledger.
"""

__version__ = "0.1.0"
__all__ = ["__version__"]
