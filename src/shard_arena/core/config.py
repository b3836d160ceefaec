"""Configuration schemas and loading for Shard Arena."""

from __future__ import annotations

import hashlib
import json
import os
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field, model_validator

from shard_arena.core.errors import APIKeyError

TOTAL_ROUNDS = 3


class MatchmakingConfig(BaseModel):
    """Queue pairing settings.

    The Elo search window of an entry starts at ``base_window`` and grows by
    ``window_step`` for every ``window_step_seconds`` the entry has waited,
    up to ``max_window``.
    """

    base_window: int = Field(default=200, ge=0)
    window_step: int = Field(default=100, ge=0)
    window_step_seconds: int = Field(default=30, ge=1)
    max_window: int = Field(default=1200, ge=0)
    entry_ttl_seconds: int = Field(default=600, ge=1)
    allow_same_owner: bool = False

    @model_validator(mode="after")
    def _window_bounds(self) -> MatchmakingConfig:
        if self.max_window < self.base_window:
            msg = "max_window must be >= base_window"
            raise ValueError(msg)
        return self


class BattleConfig(BaseModel):
    """Round timing and response limits."""

    turn_time_limit_seconds: int = Field(default=90, ge=1)
    timeout_sentinel: str = Field(default="[Timed out]", min_length=1)
    max_response_length: int = Field(default=8000, ge=1)


class RatingConfig(BaseModel):
    """Elo settings."""

    k_factor: float = Field(default=32.0, gt=0)


class JudgeConfig(BaseModel):
    """External scorer settings.

    Attributes:
        model: OpenRouter model ID used as judge.
        timeout_seconds: Upper bound for one judge call, retries included.
        api_key: OpenRouter key; falls back to OPENROUTER_API_KEY.
        cache_path: Optional DuckDB file of judge verdicts, reused per round.
        fallback_min: Lowest fallback score.
        fallback_max: Highest fallback score.
        dry_run: Use the fake LLM client instead of the real API.
    """

    model: str = "openai/gpt-4o-mini"
    max_tokens: int = Field(default=500, ge=1)
    temperature: float = Field(default=0.3, ge=0.0, le=2.0)
    timeout_seconds: float = Field(default=20.0, gt=0)
    api_key: str | None = None
    cache_path: str | None = None
    fallback_min: int = Field(default=50, ge=0, le=100)
    fallback_max: int = Field(default=79, ge=0, le=100)
    dry_run: bool = False
    seed: int | None = None

    @model_validator(mode="after")
    def _fallback_bounds(self) -> JudgeConfig:
        if self.fallback_max < self.fallback_min:
            msg = "fallback_max must be >= fallback_min"
            raise ValueError(msg)
        return self

    def resolve_api_key(self) -> str | None:
        """Get API key from config or environment, None when unconfigured."""
        return self.api_key or os.environ.get("OPENROUTER_API_KEY") or None

    def get_api_key(self) -> str:
        """Get API key or raise when it is required but missing."""
        key = self.resolve_api_key()
        if not key:
            raise APIKeyError()
        return key


class EscrowConfig(BaseModel):
    """Settlement service settings.

    ``dispute_window_seconds`` is how long after completion a settled battle
    stays open to disputes before it is finalized.
    """

    base_url: str | None = None
    api_token: str | None = None
    timeout_seconds: float = Field(default=10.0, gt=0)
    sweep_limit: int = Field(default=25, ge=1)
    sweep_attempts: int = Field(default=3, ge=1)
    dispute_window_seconds: int = Field(default=3600, ge=0)


class ArenaConfig(BaseModel):
    """Complete arena configuration."""

    database_url: str = "sqlite:///arena.db"
    matchmaking: MatchmakingConfig = Field(default_factory=MatchmakingConfig)
    battle: BattleConfig = Field(default_factory=BattleConfig)
    rating: RatingConfig = Field(default_factory=RatingConfig)
    judge: JudgeConfig = Field(default_factory=JudgeConfig)
    escrow: EscrowConfig = Field(default_factory=EscrowConfig)


def load_config(path: str | Path) -> ArenaConfig:
    """Load and validate configuration from YAML file.

    Args:
        path: Path to YAML configuration file.

    Returns:
        Validated ArenaConfig instance.

    Raises:
        FileNotFoundError: If config file doesn't exist.
        pydantic.ValidationError: If config is invalid.
    """
    config_path = Path(path)
    if not config_path.exists():
        msg = f"Configuration file not found: {config_path}"
        raise FileNotFoundError(msg)

    with config_path.open() as f:
        data = yaml.safe_load(f) or {}

    return ArenaConfig.model_validate(data)


def hash_messages(messages: list[dict[str, Any]], params: dict[str, Any]) -> str:
    """Create deterministic hash for cache key.

    Args:
        messages: List of message dicts with role/content.
        params: Additional parameters (model, temperature, etc.).

    Returns:
        SHA-256 hash as hex string.
    """
    content = json.dumps({"messages": messages, "params": params}, sort_keys=True)
    return hashlib.sha256(content.encode()).hexdigest()
