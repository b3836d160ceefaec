"""Escrow ledger clients."""

from __future__ import annotations

from enum import StrEnum
from typing import Any, Protocol

import httpx
import structlog
from pydantic import BaseModel

from shard_arena.core.errors import EscrowUnavailableError

logger = structlog.get_logger()


class EscrowState(StrEnum):
    PENDING = "pending"
    SETTLED = "settled"
    DISPUTED = "disputed"
    RESOLVED = "resolved"


class EscrowStatus(BaseModel):
    """On-chain settlement state for one battle."""

    state: EscrowState
    tx_hash: str | None = None


NO_WINNER = "0x" + "0" * 40


def battle_ref(battle_id: str) -> str:
    """Encode a battle id as a 0x-prefixed 32-byte hex reference."""
    hex_id = battle_id.replace("-", "").lower()
    return "0x" + hex_id.ljust(64, "0")[:64]


class ChainEscrow(Protocol):
    """External ledger holding battle stakes."""

    async def verify_escrow(self, tx_hash: str) -> bool:
        """Check that a deposit transaction exists and is confirmed."""
        ...

    async def settlement_status(self, ref: str) -> EscrowStatus:
        """Current settlement state for a battle reference."""
        ...

    async def settle(self, ref: str, winner_address: str) -> str:
        """Report the winner (``NO_WINNER`` for a draw); returns the settle tx hash."""
        ...

    async def finalize_settlement(self, ref: str) -> str:
        """Release an undisputed settlement; returns the finalization tx hash."""
        ...


class UnconfiguredEscrow:
    """Escrow used when no settlement service is configured."""

    async def verify_escrow(self, tx_hash: str) -> bool:
        raise EscrowUnavailableError("Escrow ledger is not configured")

    async def settlement_status(self, ref: str) -> EscrowStatus:
        raise EscrowUnavailableError("Escrow ledger is not configured")

    async def settle(self, ref: str, winner_address: str) -> str:
        raise EscrowUnavailableError("Escrow ledger is not configured")

    async def finalize_settlement(self, ref: str) -> str:
        raise EscrowUnavailableError("Escrow ledger is not configured")


class HttpChainEscrow:
    """Escrow client for a settlement service speaking JSON over HTTP.

    Endpoints:
        GET  {base_url}/escrows/{tx_hash} -> {"confirmed": bool}
        GET  {base_url}/settlements/{ref} -> {"state": str, "txHash": str | null}
        POST {base_url}/settlements {"battleRef", "winner"} -> {"txHash": str}
        POST {base_url}/settlements/{ref}/finalize -> {"txHash": str}

    Transport failures, 5xx answers and unreadable bodies raise
    EscrowUnavailableError. On the GET endpoints a 404 means "unknown":
    the deposit is not verified, or the settlement has not started yet.
    """

    def __init__(
        self,
        base_url: str,
        api_token: str | None = None,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._headers = {"Accept": "application/json"}
        if api_token:
            self._headers["Authorization"] = f"Bearer {api_token}"
        self._transport = transport

    async def _request(
        self, method: str, path: str, body: dict[str, Any] | None = None
    ) -> dict[str, Any] | None:
        try:
            async with httpx.AsyncClient(
                base_url=self.base_url,
                headers=self._headers,
                timeout=self.timeout,
                transport=self._transport,
            ) as client:
                response = await client.request(method, path, json=body)
        except httpx.HTTPError as e:
            logger.warning("escrow_request_failed", path=path, error=repr(e))
            raise EscrowUnavailableError(f"Escrow ledger unreachable: {e}") from e

        if response.status_code == 404 and method == "GET":
            return None
        if response.status_code >= 400:
            logger.warning("escrow_request_failed", path=path, status=response.status_code)
            msg = f"Escrow ledger answered {response.status_code}"
            raise EscrowUnavailableError(msg)
        try:
            data = response.json()
        except ValueError as e:
            raise EscrowUnavailableError("Escrow ledger returned malformed JSON") from e
        if not isinstance(data, dict):
            raise EscrowUnavailableError("Escrow ledger returned malformed JSON")
        return data

    async def _submit(self, path: str, body: dict[str, Any] | None = None) -> str:
        data = await self._request("POST", path, body) or {}
        tx_hash = data.get("txHash")
        if not isinstance(tx_hash, str) or not tx_hash:
            raise EscrowUnavailableError("Escrow ledger returned no transaction hash")
        return tx_hash

    async def verify_escrow(self, tx_hash: str) -> bool:
        data = await self._request("GET", f"/escrows/{tx_hash}")
        return bool(data and data.get("confirmed"))

    async def settlement_status(self, ref: str) -> EscrowStatus:
        data = await self._request("GET", f"/settlements/{ref}")
        if data is None:
            return EscrowStatus(state=EscrowState.PENDING)
        try:
            return EscrowStatus(state=EscrowState(data.get("state")), tx_hash=data.get("txHash"))
        except ValueError as e:
            msg = f"Unknown settlement state: {data.get('state')!r}"
            raise EscrowUnavailableError(msg) from e

    async def settle(self, ref: str, winner_address: str) -> str:
        return await self._submit("/settlements", {"battleRef": ref, "winner": winner_address})

    async def finalize_settlement(self, ref: str) -> str:
        return await self._submit(f"/settlements/{ref}/finalize")
