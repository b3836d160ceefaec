from __future__ import annotations

import random
from pathlib import Path
from typing import TYPE_CHECKING

from shard_arena.services.llm import create_client

from .cache import JudgmentCache
from .judge import (
    FALLBACK_REASONING,
    FallbackJudge,
    Judge,
    Judgment,
    LLMJudge,
    parse_judgment,
    parse_with_repair,
    repair_json,
    round_key,
)

if TYPE_CHECKING:
    from shard_arena.core.config import JudgeConfig


def create_judge(config: JudgeConfig) -> Judge:
    """Create the judge described by config.

    Without an API key (and outside dry runs) every round is scored by the
    fallback judge. Verdicts are cached only for the real model.
    """
    rng = random.Random(config.seed) if config.seed is not None else None  # noqa: S311
    fallback = FallbackJudge(config.fallback_min, config.fallback_max, rng=rng)
    client = create_client(
        api_key=config.resolve_api_key(),
        dry_run=config.dry_run,
        seed=config.seed if config.seed is not None else 42,
        timeout=config.timeout_seconds,
    )
    if client is None:
        return fallback
    cache = None
    if config.cache_path and not config.dry_run:
        cache = JudgmentCache(Path(config.cache_path))
    return LLMJudge(
        client,
        model=config.model,
        max_tokens=config.max_tokens,
        temperature=config.temperature,
        timeout=config.timeout_seconds,
        fallback=fallback,
        cache=cache,
    )


__all__ = [
    "FALLBACK_REASONING",
    "FallbackJudge",
    "Judge",
    "JudgmentCache",
    "Judgment",
    "LLMJudge",
    "create_judge",
    "parse_judgment",
    "parse_with_repair",
    "repair_json",
    "round_key",
]
