"""Provider abstraction for LLM APIs"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import AsyncIterator, Literal

logger = logging.getLogger(__name__)


@dataclass
class StreamChunk:
    """A chunk of streamed response from an LLM"""
    type: Literal["text", "usage"]
    content: str = ""
    usage: dict[str, int] = field(default_factory=dict)


@dataclass
class CompletionResult:
    """Collected outcome of one completion call; `error` set instead of raising"""
    content: str = ""
    usage: dict[str, int] = field(default_factory=dict)
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


class Provider(ABC):
    """Base class for LLM providers"""

    model: str

    @abstractmethod
    async def stream(
        self,
        system: str,
        messages: list[dict],
        max_tokens: int | None = None,
        temperature: float | None = None,
    ) -> AsyncIterator[StreamChunk]:
        """Stream a response from the model"""
        pass


async def complete(
    provider: Provider,
    system: str,
    messages: list[dict],
    max_tokens: int | None = None,
    temperature: float | None = None,
) -> CompletionResult:
    """Run one completion to the end, turning any failure into `error`"""
    result = CompletionResult()
    try:
        async for chunk in provider.stream(
            system=system,
            messages=messages,
            max_tokens=max_tokens,
            temperature=temperature,
        ):
            if chunk.type == "text":
                result.content += chunk.content
            elif chunk.type == "usage":
                for key, value in chunk.usage.items():
                    result.usage[key] = result.usage.get(key, 0) + value
    except Exception as e:
        logger.warning(f"Completion failed ({type(e).__name__}): {e}")
        result.error = str(e) or type(e).__name__
    return result


MODEL_ALIASES = {
    "claude-haiku": "anthropic/claude-3-5-haiku-latest",
    "claude-sonnet": "anthropic/claude-sonnet-4-5-20250929",
    "gpt-4o-mini": "openai/gpt-4o-mini",
    "gpt-4o": "openai/gpt-4o",
}


def resolve_model(model: str) -> tuple[str, str]:
    """Resolve a model string to (provider, model_id)"""
    model = MODEL_ALIASES.get(model, model)
    if "/" not in model:
        # Default to anthropic
        return "anthropic", model
    provider_id, model_id = model.split("/", 1)
    return provider_id, model_id


def get_provider(model: str) -> Provider:
    """Get a provider instance from a model string like 'anthropic/claude-sonnet-4'"""
    provider_id, model_id = resolve_model(model)

    if provider_id == "anthropic":
        from .anthropic import AnthropicProvider
        return AnthropicProvider(model_id)
    elif provider_id == "openai":
        from .openai import OpenAIProvider
        return OpenAIProvider(model_id)
    else:
        raise ValueError(f"Unknown provider: {provider_id}. Supported: anthropic, openai")
