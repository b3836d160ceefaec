from __future__ import annotations

from typing import TYPE_CHECKING

from .escrow import (
    NO_WINNER,
    ChainEscrow,
    EscrowState,
    EscrowStatus,
    HttpChainEscrow,
    UnconfiguredEscrow,
    battle_ref,
)
from .sync import (
    RESOLVED_ON_LEDGER,
    SettlementSync,
    SweepResult,
    needs_settlement,
    winner_address,
)

if TYPE_CHECKING:
    from shard_arena.core.config import EscrowConfig


def create_escrow(config: EscrowConfig) -> ChainEscrow:
    """Create the escrow client; without ``base_url`` every call is unavailable."""
    if not config.base_url:
        return UnconfiguredEscrow()
    return HttpChainEscrow(
        config.base_url, api_token=config.api_token, timeout=config.timeout_seconds
    )


__all__ = [
    "NO_WINNER",
    "RESOLVED_ON_LEDGER",
    "ChainEscrow",
    "EscrowState",
    "EscrowStatus",
    "HttpChainEscrow",
    "SettlementSync",
    "SweepResult",
    "UnconfiguredEscrow",
    "battle_ref",
    "create_escrow",
    "needs_settlement",
    "winner_address",
]
