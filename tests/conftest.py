import pytest
from fakes import ALICE, BOB, START, FakeEscrow, FrozenClock, ScriptedJudge, fixed_prompt

from shard_arena.arena import build_arena
from shard_arena.core.config import ArenaConfig
from shard_arena.models import ParticipantSide, ShardProfile
from shard_arena.services.storage import InMemoryStore


@pytest.fixture
def clock():
    return FrozenClock(START)


@pytest.fixture
def store():
    return InMemoryStore()


@pytest.fixture
def judge():
    return ScriptedJudge()


@pytest.fixture
def escrow():
    return FakeEscrow()


@pytest.fixture
def arena(store, judge, escrow, clock):
    return build_arena(
        ArenaConfig(database_url="memory://"),
        store=store,
        judge=judge,
        escrow=escrow,
        clock=clock,
        prompt_generator=fixed_prompt,
        settlement_retry_wait=0,
    )


@pytest.fixture
def sides():
    return (
        ParticipantSide(shard_id="shard-a", keeper_id=ALICE, elo_rating=1200),
        ParticipantSide(shard_id="shard-b", keeper_id=BOB, elo_rating=1200),
    )


@pytest.fixture
async def shards(store):
    a = await store.save_shard(ShardProfile(id="shard-a", owner_id=ALICE, elo_rating=1200))
    b = await store.save_shard(ShardProfile(id="shard-b", owner_id=BOB, elo_rating=1200))
    return a, b
