"""Prompt templates for Shard Arena.

Loads battle prompt pools and judge templates from 'prompts.yaml' in the
package directory.
"""

from __future__ import annotations

from collections.abc import Callable
from pathlib import Path

import yaml

from shard_arena.models import BattleMode

PROMPTS_PATH = Path(__file__).parent.parent / "prompts.yaml"

PromptGenerator = Callable[[BattleMode, int], str]


def _load_prompts() -> dict:
    if not PROMPTS_PATH.exists():
        raise FileNotFoundError(f"Missing prompts file: {PROMPTS_PATH}")

    with open(PROMPTS_PATH, encoding="utf-8") as f:
        data = yaml.safe_load(f)
        if not isinstance(data, dict):
            raise TypeError(f"Invalid prompts file: {PROMPTS_PATH} (must be dict)")
        return data


# Load on import
_PROMPTS = _load_prompts()


def generate_battle_prompt(mode: BattleMode, round_number: int) -> str:
    """Pick the prompt for a round from the mode's pool.

    Args:
        mode: Battle mode.
        round_number: 1-based round number.

    Returns:
        Prompt text, cycling through the pool.
    """
    pool = _PROMPTS["battle_prompts"][BattleMode(mode).value]
    return pool[(round_number - 1) % len(pool)]


def judge_criteria(mode: BattleMode) -> str:
    """Weighted scoring rubric for a mode."""
    return _PROMPTS["judge_criteria"][BattleMode(mode).value]


def judge_system_prompt(mode: BattleMode) -> str:
    """System prompt for the judge, with the mode rubric inlined."""
    return _PROMPTS["judge_system"].format(criteria=judge_criteria(mode))


def judge_user_prompt(prompt: str, response_a: str, response_b: str) -> str:
    """User prompt presenting both responses."""
    return _PROMPTS["judge_user"].format(
        prompt=prompt, response_a=response_a, response_b=response_b
    )


__all__ = [
    "PROMPTS_PATH",
    "PromptGenerator",
    "generate_battle_prompt",
    "judge_criteria",
    "judge_system_prompt",
    "judge_user_prompt",
]
