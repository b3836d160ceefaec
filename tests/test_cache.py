"""Tests for the judge verdict cache."""

import pytest
from fakes import ScriptedLLMClient

from shard_arena.models import BattleMode
from shard_arena.services.judge import FallbackJudge, Judgment, JudgmentCache, LLMJudge, round_key

VERDICT = '{"scoreA": 72, "scoreB": 64, "reasoning": "A kept the thread"}'


@pytest.fixture
def cache(tmp_path):
    return JudgmentCache(tmp_path / "judge" / "verdicts.duckdb")


class TestJudgmentCache:
    """Tests for JudgmentCache."""

    async def test_unknown_round_misses(self, cache):
        """Test a round never judged has no verdict."""
        assert await cache.get("nope") is None

    async def test_verdict_round_trip(self, cache):
        """Test a stored verdict comes back as a real judgment."""
        await cache.put("k", "judge/model", Judgment(score_a=81, score_b=40, reasoning="sharp"))

        cached = await cache.get("k")

        assert cached == Judgment(score_a=81, score_b=40, reasoning="sharp")
        assert cached.fallback is False

    async def test_first_verdict_kept(self, cache):
        """Test a second verdict for the same round does not replace the first."""
        await cache.put("k", "m", Judgment(score_a=10, score_b=20, reasoning="first"))
        await cache.put("k", "m", Judgment(score_a=90, score_b=80, reasoning="second"))

        assert (await cache.get("k")).reasoning == "first"

    async def test_fallback_not_stored(self, cache):
        """Test fallback scores are never reused as verdicts."""
        await cache.put("k", "m", FallbackJudge().judgment(reason="timeout"))
        assert await cache.get("k") is None

    def test_creates_parent_directory(self, tmp_path):
        """Test the cache file's directory is created."""
        path = tmp_path / "deep" / "dir" / "verdicts.duckdb"
        JudgmentCache(path)
        assert path.parent.is_dir()


class TestRoundKey:
    """Tests for the verdict key."""

    def test_same_round_same_key(self):
        """Test identical requests share a key."""
        messages = [{"role": "user", "content": "A: x\nB: y"}]
        assert round_key("m", messages) == round_key("m", list(messages))

    def test_model_and_responses_matter(self):
        """Test the key changes with the model or either response."""
        base = [{"role": "user", "content": "A: x\nB: y"}]
        other = [{"role": "user", "content": "A: x\nB: z"}]
        assert round_key("m", base) != round_key("n", base)
        assert round_key("m", base) != round_key("m", other)


class TestCachedJudge:
    """Tests for LLMJudge with a verdict cache."""

    async def test_same_round_judged_once(self, cache):
        """Test re-judging an identical round is served from the cache."""
        client = ScriptedLLMClient(VERDICT)
        judge = LLMJudge(client, model="judge/model", cache=cache)

        first = await judge.score(BattleMode.DEBATE, "prompt", "a", "b")
        second = await judge.score(BattleMode.DEBATE, "prompt", "a", "b")

        assert first == second
        assert (second.score_a, second.score_b) == (72, 64)
        assert client.calls == 1

    async def test_different_round_asks_again(self, cache):
        """Test a different response is a new round."""
        client = ScriptedLLMClient(VERDICT)
        judge = LLMJudge(client, model="judge/model", cache=cache)

        await judge.score(BattleMode.DEBATE, "prompt", "a", "b")
        await judge.score(BattleMode.DEBATE, "prompt", "a", "c")

        assert client.calls == 2

    async def test_malformed_answer_not_cached(self, cache):
        """Test a fallback after a bad answer leaves the round uncached."""
        client = ScriptedLLMClient("not a verdict")
        judge = LLMJudge(client, model="judge/model", cache=cache)

        result = await judge.score(BattleMode.SOLVE, "prompt", "a", "b")
        client.content = VERDICT
        retried = await judge.score(BattleMode.SOLVE, "prompt", "a", "b")

        assert result.fallback is True
        assert retried.fallback is False
        assert client.calls == 2
