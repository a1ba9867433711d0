"""Text-generation clients (Anthropic and OpenAI) used by the LLM-backed tools."""

from __future__ import annotations

import base64
import json
import logging
import os
from json import JSONDecodeError
from typing import Any, Protocol

import anthropic
import openai

from cli_common import require_env
from errors import ConfigError, TransformError

CLAUDE_MODEL = os.getenv("CLAUDE_MODEL", "claude-3-5-haiku-latest")
OPENAI_MODEL = os.getenv("OPENAI_MODEL", "gpt-4o-mini")
LLM_PROVIDER = os.getenv("LLM_PROVIDER", "anthropic")
DEFAULT_MAX_TOKENS = 4096
DEFAULT_TEMPERATURE = 0.0

LOGGER = logging.getLogger(__name__)


class TextGenerator(Protocol):
    """Anything that turns a prompt into text."""

    model: str

    async def generate(
        self,
        prompt: str,
        *,
        system: str | None = None,
        max_tokens: int | None = None,
        pdf: bytes | None = None,
    ) -> str: ...


class AnthropicGenerator:
    """Async wrapper around the Anthropic Messages API."""

    def __init__(
        self,
        api_key: str | None = None,
        *,
        model: str = CLAUDE_MODEL,
        max_tokens: int = DEFAULT_MAX_TOKENS,
        temperature: float = DEFAULT_TEMPERATURE,
        client: Any = None,
    ) -> None:
        self.model = model
        self.max_tokens = max_tokens
        self.temperature = temperature
        self._client = client or anthropic.AsyncAnthropic(api_key=api_key)

    async def generate(
        self,
        prompt: str,
        *,
        system: str | None = None,
        max_tokens: int | None = None,
        pdf: bytes | None = None,
    ) -> str:
        content: str | list[dict[str, Any]] = prompt
        if pdf is not None:
            content = [
                {
                    "type": "document",
                    "source": {
                        "type": "base64",
                        "media_type": "application/pdf",
                        "data": base64.b64encode(pdf).decode("ascii"),
                    },
                },
                {"type": "text", "text": prompt},
            ]

        kwargs: dict[str, Any] = {
            "model": self.model,
            "max_tokens": max_tokens or self.max_tokens,
            "temperature": self.temperature,
            "messages": [{"role": "user", "content": content}],
        }
        if system:
            kwargs["system"] = system

        LOGGER.debug("Calling Claude model=%s max_tokens=%s", self.model, kwargs["max_tokens"])
        response = await self._client.messages.create(**kwargs)
        text = "".join(getattr(block, "text", "") for block in response.content)
        if not text.strip():
            raise TransformError("Claude returned an empty response")
        return text.strip()


class OpenAIGenerator:
    """Async wrapper around the OpenAI Chat Completions API."""

    def __init__(
        self,
        api_key: str | None = None,
        *,
        model: str = OPENAI_MODEL,
        max_tokens: int = DEFAULT_MAX_TOKENS,
        temperature: float = DEFAULT_TEMPERATURE,
        client: Any = None,
    ) -> None:
        self.model = model
        self.max_tokens = max_tokens
        self.temperature = temperature
        self._client = client or openai.AsyncOpenAI(api_key=api_key)

    async def generate(
        self,
        prompt: str,
        *,
        system: str | None = None,
        max_tokens: int | None = None,
        pdf: bytes | None = None,
    ) -> str:
        messages: list[dict[str, Any]] = []
        if system:
            messages.append({"role": "system", "content": system})

        if pdf is not None:
            encoded = base64.b64encode(pdf).decode("ascii")
            messages.append({
                "role": "user",
                "content": [
                    {
                        "type": "file",
                        "file": {
                            "filename": "document.pdf",
                            "file_data": f"data:application/pdf;base64,{encoded}",
                        },
                    },
                    {"type": "text", "text": prompt},
                ],
            })
        else:
            messages.append({"role": "user", "content": prompt})

        LOGGER.debug("Calling OpenAI model=%s", self.model)
        response = await self._client.chat.completions.create(
            model=self.model,
            temperature=self.temperature,
            max_completion_tokens=max_tokens or self.max_tokens,
            messages=messages,
        )
        content = response.choices[0].message.content
        if not content or not content.strip():
            raise TransformError("OpenAI returned an empty response")
        return content.strip()


def build_generator(
    provider: str | None = None,
    *,
    model: str | None = None,
    max_tokens: int = DEFAULT_MAX_TOKENS,
    temperature: float = DEFAULT_TEMPERATURE,
) -> TextGenerator:
    """Construct the configured generator, reading its API key from the environment."""
    provider = (provider or LLM_PROVIDER).lower()
    if provider == "anthropic":
        return AnthropicGenerator(
            require_env("ANTHROPIC_API_KEY"),
            model=model or CLAUDE_MODEL,
            max_tokens=max_tokens,
            temperature=temperature,
        )
    if provider == "openai":
        return OpenAIGenerator(
            require_env("OPENAI_API_KEY"),
            model=model or OPENAI_MODEL,
            max_tokens=max_tokens,
            temperature=temperature,
        )
    raise ConfigError(f"Unknown LLM provider: {provider!r} (expected 'anthropic' or 'openai')")


def parse_json_object(content: str) -> dict[str, Any]:
    """Parse possibly noisy model output into a strict JSON object."""
    try:
        parsed = json.loads(content)
    except JSONDecodeError:
        parsed = _extract_first_json_object(content)

    if not isinstance(parsed, dict):
        raise TransformError("Expected a JSON object from the model response")
    return parsed


def _extract_first_json_object(content: str) -> dict[str, Any]:
    """Extract the first decodable JSON object from an arbitrary string."""
    decoder = json.JSONDecoder()
    for index, char in enumerate(content):
        if char != "{":
            continue
        try:
            candidate, _ = decoder.raw_decode(content[index:])
        except JSONDecodeError:
            continue
        if isinstance(candidate, dict):
            return candidate
    raise TransformError("Could not extract a valid JSON object from the model output")
