from .client import (
    FakeLLMClient,
    LLMClient,
    LLMResponse,
    OpenRouterClient,
    create_client,
    parse_completion,
)

__all__ = [
    "FakeLLMClient",
    "LLMClient",
    "LLMResponse",
    "OpenRouterClient",
    "create_client",
    "parse_completion",
]
