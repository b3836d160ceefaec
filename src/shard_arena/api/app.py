"""REST binding for the arena services."""

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Annotated

import structlog
from fastapi import Depends, FastAPI, Header, Query, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from shard_arena import __version__
from shard_arena.arena import Arena, build_arena
from shard_arena.core.config import ArenaConfig
from shard_arena.core.errors import (
    ArenaError,
    NotAuthenticatedError,
    NotAuthorizedError,
    NotFoundError,
)
from shard_arena.models import Battle, BattleRound, MatchmakingEntry
from shard_arena.services.match import parse_mode

from .schemas import (
    ChallengeRequest,
    JoinQueueRequest,
    LeaveQueueRequest,
    SubmitResponseRequest,
    SuccessResponse,
)

logger = structlog.get_logger()

SPECTATE_LIMIT = 50


def get_arena(request: Request) -> Arena:
    return request.app.state.arena


def get_caller(
    x_caller_address: Annotated[str | None, Header()] = None,
) -> str:
    """Verified caller identity, set by the upstream auth proxy."""
    if not x_caller_address or not x_caller_address.strip():
        raise NotAuthenticatedError("Missing X-Caller-Address header")
    return x_caller_address.strip().lower()


ArenaDep = Annotated[Arena, Depends(get_arena)]
CallerDep = Annotated[str, Depends(get_caller)]


async def _arena_error_handler(request: Request, exc: ArenaError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.warning("request_failed", path=request.url.path, error=exc.message)
    return JSONResponse(status_code=exc.status_code, content={"error": exc.message})


async def _validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    fields = sorted({str(err["loc"][-1]) for err in exc.errors() if err.get("loc")})
    message = f"Invalid or missing fields: {', '.join(fields)}" if fields else "Invalid request"
    return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content={"error": message})


def create_app(arena: Arena | None = None, config: ArenaConfig | None = None) -> FastAPI:
    """Create the FastAPI application.

    Args:
        arena: Prebuilt services (tests inject fakes here).
        config: Used to build the services when ``arena`` is omitted.

    Returns:
        Configured FastAPI app.
    """
    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        yield
        await app.state.arena.aclose()

    app = FastAPI(title="Shard Arena", version=__version__, lifespan=lifespan)
    app.state.arena = arena or build_arena(config)
    app.add_exception_handler(ArenaError, _arena_error_handler)
    app.add_exception_handler(RequestValidationError, _validation_error_handler)

    @app.get("/health")
    async def health() -> dict[str, str]:
        return {"status": "ok", "version": __version__}

    # Queue

    @app.post(
        "/queue",
        response_model=MatchmakingEntry,
        status_code=status.HTTP_201_CREATED,
    )
    async def join_queue(body: JoinQueueRequest, arena: ArenaDep, caller: CallerDep):
        if body.owner_id.lower() != caller:
            raise NotAuthorizedError("ownerId does not match the caller")
        return await arena.queue.join(
            body.shard_id,
            caller,
            body.mode,
            elo_rating=body.elo_rating,
            stake_amount=body.stake_amount,
        )

    @app.get("/queue", response_model=list[MatchmakingEntry])
    async def list_queue(
        arena: ArenaDep,
        caller: CallerDep,
        owner_id: Annotated[str | None, Query(alias="ownerId")] = None,
    ):
        if owner_id is not None and owner_id.lower() != caller:
            raise NotAuthorizedError("ownerId does not match the caller")
        await arena.queue.attempt_matches()
        return await arena.queue.entries_for_owner(caller)

    @app.delete("/queue", response_model=SuccessResponse)
    async def leave_queue(body: LeaveQueueRequest, arena: ArenaDep, caller: CallerDep):
        if not await arena.queue.leave(body.entry_id, caller):
            raise NotFoundError("Queue entry not found")
        return SuccessResponse()

    # Battles

    @app.post("/battles", response_model=Battle, status_code=status.HTTP_201_CREATED)
    async def create_battle(body: ChallengeRequest, arena: ArenaDep, caller: CallerDep):
        return await arena.lifecycle.create_challenge(
            caller,
            body.challenger_shard_id,
            body.defender_shard_id,
            parse_mode(body.mode),
            stake_amount=body.stake_amount,
            escrow_tx_hash=body.escrow_tx_hash,
        )

    @app.get("/battles", response_model=list[Battle])
    async def list_battles(
        arena: ArenaDep,
        caller: CallerDep,
        owner_id: Annotated[str | None, Query(alias="ownerId")] = None,
    ):
        if owner_id is not None and owner_id.lower() != caller:
            raise NotAuthorizedError("ownerId does not match the caller")
        return await arena.lifecycle.list_battles(caller)

    @app.get("/battles/spectate", response_model=list[Battle])
    async def spectate(arena: ArenaDep):
        return await arena.lifecycle.list_live(SPECTATE_LIMIT)

    @app.get("/battles/{battle_id}", response_model=Battle)
    async def get_battle(battle_id: str, arena: ArenaDep, caller: CallerDep):
        return await arena.lifecycle.get_battle(battle_id)

    @app.get("/battles/{battle_id}/round", response_model=BattleRound)
    async def current_round(battle_id: str, arena: ArenaDep, caller: CallerDep):
        return await arena.lifecycle.open_round(battle_id, caller)

    @app.put("/battles/{battle_id}", response_model=Battle)
    async def submit_response(
        battle_id: str, body: SubmitResponseRequest, arena: ArenaDep, caller: CallerDep
    ):
        return await arena.lifecycle.submit_round_response(
            battle_id,
            caller,
            body.round,
            body.response,
            shard_id=body.shard_id,
            timed_out=body.timed_out,
        )

    @app.post("/battles/{battle_id}/settle", response_model=Battle)
    async def settle_battle(battle_id: str, arena: ArenaDep, caller: CallerDep):
        return await arena.settle(battle_id, caller)

    return app
