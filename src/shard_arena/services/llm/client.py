"""Chat-completion transport used by the round judge.

Every request asks for a single JSON object (OpenRouter JSON mode); a
completion without answer text is reported as a ``ValueError`` so the
judge treats it like any other malformed verdict.
"""

from __future__ import annotations

import json
import random
from abc import ABC, abstractmethod
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Any

import httpx
import structlog
import yaml
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

logger = structlog.get_logger()

_FAKE_RESPONSES_PATH = Path(__file__).parent / "fake_responses.yaml"


@dataclass(frozen=True)
class LLMResponse:
    """Answer text of one completion plus its token usage."""

    content: str
    prompt_tokens: int
    completion_tokens: int
    total_tokens: int


@lru_cache(maxsize=1)
def _fake_templates() -> dict[str, Any]:
    with _FAKE_RESPONSES_PATH.open(encoding="utf-8") as f:
        return yaml.safe_load(f)


class LLMClient(ABC):
    """Async client the judge sends its rendered round to."""

    @abstractmethod
    async def complete(
        self,
        model: str,
        messages: list[dict[str, str]],
        max_tokens: int,
        temperature: float,
    ) -> LLMResponse:
        """Ask ``model`` for a verdict on ``messages``.

        Raises:
            ValueError: The completion carried no usable answer.
        """

    async def close(self) -> None:  # noqa: B027
        """Release network resources; nothing to do by default."""


class FakeLLMClient(LLMClient):
    """Offline judge model for dry runs and tests.

    Answers with a verdict whose scores depend only on the seed and the
    number of calls so far.
    """

    def __init__(self, seed: int = 42) -> None:
        self.seed = seed
        self.call_count = 0

    async def complete(
        self,
        model: str,
        messages: list[dict[str, str]],
        _max_tokens: int,
        _temperature: float,
    ) -> LLMResponse:
        self.call_count += 1
        rng = random.Random(self.seed + self.call_count)  # noqa: S311
        score_a, score_b = rng.randint(40, 95), rng.randint(40, 95)
        reasoning = _fake_templates()["judgment"]["reasoning"].format(
            model=model, leader="A" if score_a >= score_b else "B"
        )
        content = json.dumps({"scoreA": score_a, "scoreB": score_b, "reasoning": reasoning})

        # Word counts stand in for tokens
        prompt_tokens = 2 * sum(len(m.get("content", "").split()) for m in messages)
        completion_tokens = 2 * len(content.split())
        return LLMResponse(
            content=content,
            prompt_tokens=prompt_tokens,
            completion_tokens=completion_tokens,
            total_tokens=prompt_tokens + completion_tokens,
        )


def parse_completion(data: Any) -> LLMResponse:
    """Extract the answer text and usage from a chat-completion body.

    Raises:
        ValueError: The body has no choice, or the answer text is empty.
    """
    try:
        content = data["choices"][0]["message"]["content"]
    except (KeyError, IndexError, TypeError) as e:
        msg = "completion has no message"
        raise ValueError(msg) from e
    if not isinstance(content, str) or not content.strip():
        msg = "completion message is empty"
        raise ValueError(msg)

    usage = data.get("usage") or {}
    prompt_tokens = int(usage.get("prompt_tokens", 0))
    completion_tokens = int(usage.get("completion_tokens", 0))
    return LLMResponse(
        content=content,
        prompt_tokens=prompt_tokens,
        completion_tokens=completion_tokens,
        total_tokens=int(usage.get("total_tokens", prompt_tokens + completion_tokens)),
    )


class OpenRouterClient(LLMClient):
    """OpenRouter chat completions in JSON mode.

    An HTTP error status gets one quick retry. Connection failures are
    raised at once; the judge's own timeout bounds the whole call.
    """

    BASE_URL = "https://openrouter.ai/api/v1/chat/completions"
    RESPONSE_FORMAT = {"type": "json_object"}

    def __init__(
        self,
        api_key: str,
        timeout: float = 20.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.client = httpx.AsyncClient(
            timeout=timeout,
            headers={"Authorization": f"Bearer {api_key}", "X-Title": "Shard Arena"},
            transport=transport,
        )

    async def complete(
        self,
        model: str,
        messages: list[dict[str, str]],
        max_tokens: int,
        temperature: float,
    ) -> LLMResponse:
        body = {
            "model": model,
            "messages": messages,
            "max_tokens": max_tokens,
            "temperature": temperature,
            "response_format": self.RESPONSE_FORMAT,
        }
        response = parse_completion(await self._post(body))
        logger.debug(
            "judge_completion",
            model=model,
            prompt_tokens=response.prompt_tokens,
            completion_tokens=response.completion_tokens,
        )
        return response

    @retry(
        stop=stop_after_attempt(2),
        wait=wait_exponential(multiplier=0.5, min=0.5, max=2),
        retry=retry_if_exception_type(httpx.HTTPStatusError),
        reraise=True,
    )
    async def _post(self, body: dict[str, Any]) -> Any:
        logger.info("judge_request", model=body["model"])
        response = await self.client.post(self.BASE_URL, json=body)
        response.raise_for_status()
        return response.json()

    async def close(self) -> None:
        await self.client.aclose()


def create_client(
    api_key: str | None = None,
    dry_run: bool = False,
    seed: int = 42,
    timeout: float = 20.0,
) -> LLMClient | None:
    """Pick the judge transport.

    Args:
        api_key: OpenRouter API key.
        dry_run: Use the offline fake model.
        seed: Seed for the fake model.
        timeout: HTTP timeout for the real client.

    Returns:
        A client, or None when no key is configured outside dry runs.
    """
    if dry_run:
        logger.info("using_fake_client", seed=seed)
        return FakeLLMClient(seed=seed)
    if not api_key:
        logger.warning("judge_unconfigured", reason="no API key")
        return None
    return OpenRouterClient(api_key, timeout=timeout)
