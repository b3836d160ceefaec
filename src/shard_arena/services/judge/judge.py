"""Round judging with a guaranteed fallback.

A judge turns two responses to the same prompt into two scores in
[0, 100] plus reasoning. ``Judge.score`` never raises: when the external
scorer is missing, slow, failing or returns malformed output, a fallback
judgment is produced so a battle can always make progress.
"""

from __future__ import annotations

import asyncio
import json
import math
import random
import re
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

import structlog
from pydantic import BaseModel, Field, ValidationError, field_validator

from shard_arena.core.config import hash_messages
from shard_arena.models import BattleMode
from shard_arena.prompts import judge_system_prompt, judge_user_prompt
from shard_arena.services.llm import LLMClient

if TYPE_CHECKING:
    from .cache import JudgmentCache

logger = structlog.get_logger()

FALLBACK_REASONING = (
    "Judgment generated using fallback scoring because the judge was unavailable. "
    "Scores are approximate."
)


def _clamp_score(value: Any) -> int:
    """Clamp a numeric score (number or numeric string) into [0, 100].

    Raises:
        ValueError: If the value is missing, boolean, non-numeric or not finite.
    """
    if value is None or isinstance(value, bool):
        msg = f"score must be a number, got {value!r}"
        raise ValueError(msg)
    try:
        number = float(value)
    except (TypeError, ValueError) as e:
        msg = f"score must be a number, got {value!r}"
        raise ValueError(msg) from e
    if not math.isfinite(number):
        msg = f"score must be finite, got {value!r}"
        raise ValueError(msg)
    return int(round(max(0.0, min(100.0, number))))


class Judgment(BaseModel):
    """Validated judge output.

    Attributes:
        score_a: Score for response A (challenger).
        score_b: Score for response B (defender).
        reasoning: Short explanation.
        fallback: True when produced without the external scorer.
    """

    score_a: int = Field(alias="scoreA", ge=0, le=100)
    score_b: int = Field(alias="scoreB", ge=0, le=100)
    reasoning: str = "No reasoning provided."
    fallback: bool = False

    model_config = {"populate_by_name": True}

    @field_validator("score_a", "score_b", mode="before")
    @classmethod
    def _clamp(cls, value: Any) -> int:
        return _clamp_score(value)

    @field_validator("reasoning", mode="before")
    @classmethod
    def _non_empty_reasoning(cls, value: Any) -> str:
        text = str(value).strip() if value is not None else ""
        return text or "No reasoning provided."


@runtime_checkable
class Judge(Protocol):
    """Scoring capability for a completed round."""

    async def score(
        self,
        mode: BattleMode,
        prompt: str,
        response_a: str,
        response_b: str,
    ) -> Judgment:
        """Score two responses. Must never raise."""
        ...


def parse_judgment(response: str) -> Judgment:
    """Parse judge response JSON.

    Args:
        response: Raw response string (may contain markdown).

    Returns:
        Parsed Judgment with clamped scores.

    Raises:
        ValueError: If parsing fails.
    """
    json_text = response.strip()

    # Remove markdown code blocks if present
    if "```" in json_text:
        match = re.search(r"```(?:json)?\s*([\s\S]*?)\s*```", json_text)
        if match:
            json_text = match.group(1)

    match = re.search(r"\{[\s\S]*\}", json_text)
    if match:
        json_text = match.group(0)

    try:
        data = json.loads(json_text)
        if not isinstance(data, dict):
            msg = "judge output is not a JSON object"
            raise ValueError(msg)
        data.pop("fallback", None)
        return Judgment.model_validate(data)
    except (json.JSONDecodeError, ValidationError) as e:
        msg = f"Failed to parse judge response: {e}"
        raise ValueError(msg) from e


def repair_json(broken_json: str) -> str:
    """Attempt lightweight JSON repair.

    Args:
        broken_json: Potentially malformed JSON.

    Returns:
        Repaired JSON string.
    """
    text = broken_json.strip()

    # Remove trailing commas before } or ]
    text = re.sub(r",\s*([\}\]])", r"\1", text)

    # Ensure quotes around keys
    text = re.sub(r"(\{|,)\s*(\w+)\s*:", r'\1"\2":', text)

    # Fix single quotes to double quotes
    return text.replace("'", '"')


def parse_with_repair(response: str) -> Judgment:
    """Parse a judge response, applying repair when needed.

    Raises:
        ValueError: If parsing fails after repair.
    """
    try:
        return parse_judgment(response)
    except ValueError:
        return parse_judgment(repair_json(response))


class FallbackJudge:
    """Judge used when no external scorer is configured.

    Both scores are drawn independently and uniformly from
    [min_score, max_score].
    """

    def __init__(
        self,
        min_score: int = 50,
        max_score: int = 79,
        rng: random.Random | None = None,
    ) -> None:
        self.min_score = min_score
        self.max_score = max_score
        self._rng = rng or random.Random()  # noqa: S311

    def judgment(self, reason: str = "unconfigured") -> Judgment:
        logger.warning("judge_fallback", reason=reason)
        return Judgment(
            score_a=self._rng.randint(self.min_score, self.max_score),
            score_b=self._rng.randint(self.min_score, self.max_score),
            reasoning=FALLBACK_REASONING,
            fallback=True,
        )

    async def score(
        self,
        mode: BattleMode,
        prompt: str,
        response_a: str,
        response_b: str,
    ) -> Judgment:
        return self.judgment()


def round_key(model: str, messages: list[dict[str, str]]) -> str:
    """Cache key for one judge request: the model plus the rendered round."""
    return hash_messages(messages, {"model": model})


class LLMJudge:
    """Judge backed by an LLM through ``LLMClient``.

    Attributes:
        client: Async LLM client.
        model: Judge model ID.
        max_tokens: Token cap for the judge answer.
        temperature: Sampling temperature.
        timeout: Upper bound in seconds for the whole call.
        cache: Optional verdict store consulted before calling the model.
    """

    def __init__(
        self,
        client: LLMClient,
        model: str,
        max_tokens: int = 500,
        temperature: float = 0.3,
        timeout: float = 20.0,
        fallback: FallbackJudge | None = None,
        cache: JudgmentCache | None = None,
    ) -> None:
        self.client = client
        self.model = model
        self.max_tokens = max_tokens
        self.temperature = temperature
        self.timeout = timeout
        self.fallback = fallback or FallbackJudge()
        self.cache = cache

    def _build_messages(
        self, mode: BattleMode, prompt: str, response_a: str, response_b: str
    ) -> list[dict[str, str]]:
        return [
            {"role": "system", "content": judge_system_prompt(mode)},
            {"role": "user", "content": judge_user_prompt(prompt, response_a, response_b)},
        ]

    async def score(
        self,
        mode: BattleMode,
        prompt: str,
        response_a: str,
        response_b: str,
    ) -> Judgment:
        """Score two responses, falling back on any failure.

        Args:
            mode: Battle mode, selects the rubric.
            prompt: Round prompt.
            response_a: Challenger response.
            response_b: Defender response.

        Returns:
            Judgment; ``fallback`` is set when the external scorer was not used.
        """
        messages = self._build_messages(mode, prompt, response_a, response_b)
        try:
            return await self._score(messages)
        except TimeoutError:
            return self.fallback.judgment(reason="timeout")
        except ValueError as e:
            logger.warning("judge_parse_failed", model=self.model, error=str(e))
            return self.fallback.judgment(reason="malformed")
        except Exception as e:  # noqa: BLE001
            logger.warning("judge_call_failed", model=self.model, error=repr(e))
            return self.fallback.judgment(reason="error")

    async def _score(self, messages: list[dict[str, str]]) -> Judgment:
        key = round_key(self.model, messages)
        if self.cache is not None:
            cached = await self.cache.get(key)
            if cached is not None:
                logger.debug("judge_cache_hit", model=self.model, key=key[:8])
                return cached

        response = await asyncio.wait_for(
            self.client.complete(self.model, messages, self.max_tokens, self.temperature),
            timeout=self.timeout,
        )
        judgment = parse_with_repair(response.content)
        logger.debug("judge_scored", model=self.model, tokens=response.total_tokens)

        if self.cache is not None:
            await self.cache.put(key, self.model, judgment)
        return judgment
