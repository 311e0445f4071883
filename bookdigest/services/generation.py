"""Generation provider backed by any OpenAI-compatible chat completions API.

Gemini, OpenAI, 302.ai and Ollama all expose the chat completions wire
format, so one client covers every supported provider; only the base URL,
model and key differ.
"""

from collections.abc import AsyncIterator, Callable
from dataclasses import dataclass
from typing import Any, Protocol

import openai
from openai import AsyncOpenAI

from bookdigest.core.config import Settings, get_settings
from bookdigest.core.errors import TransportError
from bookdigest.core.logging import get_logger
from bookdigest.core.prompts import connection_test_prompt

logger = get_logger(__name__)

# provider -> (base_url, model)
PROVIDER_DEFAULTS: dict[str, tuple[str, str]] = {
    "gemini": ("https://generativelanguage.googleapis.com/v1beta/openai", "gemini-1.5-flash"),
    "openai": ("https://api.openai.com/v1", "gpt-3.5-turbo"),
    "302.ai": ("https://api.openai.com/v1", "gpt-3.5-turbo"),
    "ollama": ("http://localhost:11434/v1", "llama2"),
}

# Ollama ignores the key but the client requires one
OLLAMA_PLACEHOLDER_KEY = "ollama"


@dataclass
class GenerationChunk:
    """One streamed delta. Either field may be empty."""

    content_delta: str = ""
    reasoning_delta: str = ""


@dataclass
class ModelConfig:
    provider: str
    api_key: str
    base_url: str
    model: str
    temperature: float
    max_retries: int
    timeout: float


class GenerationProvider(Protocol):
    """What the pipeline needs from a text generation backend."""

    async def generate(self, prompt: str, *, json_mode: bool = False) -> str: ...

    def stream(self, prompt: str) -> AsyncIterator[GenerationChunk]: ...


def resolve_model_config(settings: Settings) -> ModelConfig:
    """
    Resolve the effective provider configuration.

    Args:
        settings: Current settings

    Returns:
        ModelConfig with provider defaults applied

    Raises:
        TransportError: If the provider needs an API key and none is set
    """
    provider = settings.LLM_PROVIDER
    default_url, default_model = PROVIDER_DEFAULTS[provider]

    api_key = settings.LLM_API_KEY
    if provider == "ollama":
        api_key = api_key or OLLAMA_PLACEHOLDER_KEY
    elif not api_key:
        raise TransportError(f"No API key configured for provider {provider}")

    return ModelConfig(
        provider=provider,
        api_key=api_key,
        base_url=settings.LLM_API_URL or default_url,
        model=settings.LLM_MODEL or default_model,
        temperature=settings.LLM_TEMPERATURE,
        max_retries=settings.LLM_MAX_RETRIES,
        timeout=settings.LLM_TIMEOUT_SECONDS,
    )


def _delta_reasoning(delta: Any) -> str:
    # DeepSeek-style providers put chain-of-thought in a non-standard field
    return getattr(delta, "reasoning_content", None) or getattr(delta, "reasoning", None) or ""


class OpenAICompatibleGenerator:
    """
    Generation provider for OpenAI-compatible endpoints.

    Settings are read through ``settings_provider`` on every call, so a
    changed provider, model or key takes effect on the next request.
    """

    def __init__(self, settings_provider: Callable[[], Settings] = get_settings):
        self.settings_provider = settings_provider

    def _client(self, config: ModelConfig) -> AsyncOpenAI:
        return AsyncOpenAI(
            api_key=config.api_key,
            base_url=config.base_url,
            max_retries=config.max_retries,
            timeout=config.timeout,
        )

    async def generate(self, prompt: str, *, json_mode: bool = False) -> str:
        """
        Run one non-streaming completion.

        Args:
            prompt: Full prompt text
            json_mode: Ask the provider for a JSON object response

        Returns:
            The completion text (empty string if the provider sent none)

        Raises:
            TransportError: On network failure or a non-2xx response
        """
        config = resolve_model_config(self.settings_provider())
        kwargs: dict[str, Any] = {}
        if json_mode:
            kwargs["response_format"] = {"type": "json_object"}

        client = self._client(config)
        try:
            response = await client.chat.completions.create(
                model=config.model,
                messages=[{"role": "user", "content": prompt}],
                temperature=config.temperature,
                **kwargs,
            )
        except openai.APIError as e:
            logger.error(f"{config.provider} request failed: {e}")
            raise TransportError(f"{config.provider} request failed: {e}") from e
        finally:
            await client.close()

        if not response.choices:
            return ""
        return response.choices[0].message.content or ""

    async def stream(self, prompt: str) -> AsyncIterator[GenerationChunk]:
        """
        Stream a completion as content/reasoning deltas.

        Closing the iterator early (e.g. on cancellation) closes the HTTP
        response and the client.

        Raises:
            TransportError: On network failure or a non-2xx response
        """
        config = resolve_model_config(self.settings_provider())
        client = self._client(config)
        try:
            try:
                response = await client.chat.completions.create(
                    model=config.model,
                    messages=[{"role": "user", "content": prompt}],
                    temperature=config.temperature,
                    stream=True,
                )
            except openai.APIError as e:
                raise TransportError(f"{config.provider} request failed: {e}") from e

            try:
                async for chunk in response:
                    if not chunk.choices:
                        continue
                    delta = chunk.choices[0].delta
                    content = delta.content or ""
                    reasoning = _delta_reasoning(delta)
                    if content or reasoning:
                        yield GenerationChunk(content_delta=content, reasoning_delta=reasoning)
            except openai.APIError as e:
                raise TransportError(f"{config.provider} stream failed: {e}") from e
            finally:
                await response.close()
        finally:
            await client.close()

    async def test_connection(self) -> bool:
        """Send a trivial prompt; True if the provider answered."""
        try:
            reply = await self.generate(connection_test_prompt())
        except TransportError as e:
            logger.warning(f"Connection test failed: {e}")
            return False
        logger.info(f"Connection test succeeded: {reply[:50]!r}")
        return True
