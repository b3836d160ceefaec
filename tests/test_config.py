"""Tests for configuration loading and validation."""

import tempfile
from pathlib import Path

import pydantic
import pytest
import yaml

from shard_arena.core.config import (
    ArenaConfig,
    JudgeConfig,
    MatchmakingConfig,
    RatingConfig,
    hash_messages,
    load_config,
)
from shard_arena.core.errors import APIKeyError


class TestArenaConfig:
    """Tests for ArenaConfig defaults."""

    def test_defaults(self):
        """Test the built-in battle rules."""
        config = ArenaConfig()
        assert config.database_url == "sqlite:///arena.db"
        assert config.battle.turn_time_limit_seconds == 90
        assert config.battle.timeout_sentinel == "[Timed out]"
        assert config.rating.k_factor == 32
        assert config.matchmaking.base_window == 200
        assert config.matchmaking.max_window == 1200
        assert config.matchmaking.entry_ttl_seconds == 600
        assert (config.judge.fallback_min, config.judge.fallback_max) == (50, 79)
        assert config.escrow.base_url is None

    def test_window_bounds_checked(self):
        """Test the maximum window cannot be below the base."""
        with pytest.raises(pydantic.ValidationError, match="max_window"):
            MatchmakingConfig(base_window=500, max_window=400)

    def test_fallback_bounds_checked(self):
        """Test the fallback band must be ordered."""
        with pytest.raises(pydantic.ValidationError, match="fallback_max"):
            JudgeConfig(fallback_min=80, fallback_max=50)

    def test_negative_turn_limit_rejected(self):
        """Test a turn limit must be positive."""
        with pytest.raises(pydantic.ValidationError):
            ArenaConfig.model_validate({"battle": {"turn_time_limit_seconds": 0}})


class TestJudgeApiKey:
    """Tests for judge API key resolution."""

    def test_key_from_config(self, monkeypatch: pytest.MonkeyPatch):
        """Test an explicit key wins over the environment."""
        monkeypatch.setenv("OPENROUTER_API_KEY", "from-env")
        assert JudgeConfig(api_key="from-config").get_api_key() == "from-config"

    def test_key_from_env(self, monkeypatch: pytest.MonkeyPatch):
        """Test the environment is used when the config has no key."""
        monkeypatch.setenv("OPENROUTER_API_KEY", "from-env")
        assert JudgeConfig().resolve_api_key() == "from-env"

    def test_missing_key(self, monkeypatch: pytest.MonkeyPatch):
        """Test a missing key resolves to None and raises when required."""
        monkeypatch.delenv("OPENROUTER_API_KEY", raising=False)
        assert JudgeConfig().resolve_api_key() is None
        with pytest.raises(APIKeyError, match="OPENROUTER_API_KEY"):
            JudgeConfig().get_api_key()


class TestLoadConfig:
    """Tests for config file loading."""

    def test_load_valid_yaml(self):
        """Test loading a valid YAML config."""
        config_data = {
            "database_url": "sqlite:///custom.db",
            "matchmaking": {"allow_same_owner": True},
            "judge": {"model": "anthropic/claude-3-haiku", "dry_run": True},
            "escrow": {"base_url": "https://ledger.example"},
        }

        with tempfile.NamedTemporaryFile(suffix=".yaml", delete=False, mode="w") as f:
            yaml.dump(config_data, f)
            f.flush()

            config = load_config(f.name)
            assert config.database_url == "sqlite:///custom.db"
            assert config.matchmaking.allow_same_owner is True
            assert config.judge.dry_run is True
            assert config.escrow.base_url == "https://ledger.example"

        Path(f.name).unlink()

    def test_empty_file_gives_defaults(self, tmp_path):
        """Test an empty file loads the defaults."""
        path = tmp_path / "arena.yaml"
        path.write_text("")
        assert load_config(path) == ArenaConfig()

    def test_load_missing_file_fails(self):
        """Test loading missing file raises error."""
        with pytest.raises(FileNotFoundError):
            load_config("/nonexistent/config.yaml")

    def test_invalid_value_fails(self, tmp_path):
        """Test invalid values are rejected on load."""
        path = tmp_path / "arena.yaml"
        path.write_text("rating:\n  k_factor: -1\n")
        with pytest.raises(pydantic.ValidationError):
            load_config(path)

    def test_example_config_loads(self):
        """Test the shipped example config matches the defaults it documents."""
        path = Path(__file__).parent.parent / "arena.example.yaml"
        config = load_config(path)
        assert config.rating.k_factor == 32
        assert config.escrow.dispute_window_seconds == 3600
        assert "initial_rating" not in RatingConfig.model_fields


class TestHashMessages:
    """Tests for message hashing."""

    def test_same_input_same_hash(self):
        """Test same input produces same hash."""
        messages = [{"role": "user", "content": "hello"}]
        params = {"model": "test", "temperature": 0.7}

        hash1 = hash_messages(messages, params)
        hash2 = hash_messages(messages, params)

        assert hash1 == hash2

    def test_different_input_different_hash(self):
        """Test different input produces different hash."""
        messages1 = [{"role": "user", "content": "hello"}]
        messages2 = [{"role": "user", "content": "world"}]
        params = {"model": "test", "temperature": 0.7}

        hash1 = hash_messages(messages1, params)
        hash2 = hash_messages(messages2, params)

        assert hash1 != hash2
