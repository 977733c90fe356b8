"""Concrete LLM clients and the factories the registry builds them with.

Client types:
    - mock:       canned responses, no network
    - openai:     official AsyncOpenAI SDK
    - openrouter: AsyncOpenAI pointed at https://openrouter.ai/api/v1
    - anthropic:  Messages API over httpx
    - copilot:    GitHub Copilot chat completions over httpx
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import TYPE_CHECKING, Any

import httpx
from openai import AsyncOpenAI

from .base import ChatResponse, LLMClient, Message, Role, Usage

if TYPE_CHECKING:
    from .store import ProviderRecord

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 60.0

ANTHROPIC_BASE_URL = "https://api.anthropic.com"
ANTHROPIC_DEFAULT_MODEL = "claude-sonnet-4-20250514"
ANTHROPIC_API_VERSION = "2023-06-01"
OPENAI_DEFAULT_MODEL = "gpt-4o"
OPENROUTER_BASE_URL = "https://openrouter.ai/api/v1"
COPILOT_BASE_URL = "https://api.githubcopilot.com"
COPILOT_DEFAULT_MODEL = "gpt-4o"
COPILOT_INTEGRATION_ID = "ratchet"
DEFAULT_MAX_TOKENS = 4096

#: Provider types that cannot work without an API key
KEY_REQUIRED_TYPES = frozenset({"anthropic", "openai", "openai-compatible", "openrouter"})

ProviderFactory = Callable[[str, "ProviderRecord"], LLMClient]


class MockClient(LLMClient):
    """Returns canned responses in order, repeating the last one."""

    name = "mock"

    def __init__(self, responses: list[str] | None = None) -> None:
        self.responses = responses or ["I have completed the task."]
        self.calls: list[list[Message]] = []

    async def chat(self, messages: list[Message]) -> ChatResponse:
        index = min(len(self.calls), len(self.responses) - 1)
        self.calls.append(list(messages))
        return ChatResponse(content=self.responses[index], model="mock")


class OpenAIClient(LLMClient):
    """OpenAI-compatible chat client using the official SDK.

    Also serves OpenRouter and any server exposing the Chat Completions API
    (LM Studio, vLLM) via ``base_url``.
    """

    name = "openai"

    def __init__(
        self,
        api_key: str,
        model: str = "",
        base_url: str = "",
        max_tokens: int = 0,
        timeout: float = DEFAULT_TIMEOUT,
    ) -> None:
        self.model = model or OPENAI_DEFAULT_MODEL
        self.max_tokens = max_tokens
        client_kwargs: dict[str, Any] = {
            # Compatible servers that don't require auth still need a non-empty key
            "api_key": api_key or "sk-no-key-required",
            "timeout": timeout,
            "max_retries": 0,
        }
        if base_url:
            # The SDK appends /chat/completions itself
            if base_url.endswith("/chat/completions"):
                base_url = base_url.rsplit("/chat/completions", 1)[0]
            client_kwargs["base_url"] = base_url
        self._client = AsyncOpenAI(**client_kwargs)

    async def chat(self, messages: list[Message]) -> ChatResponse:
        completion_kwargs: dict[str, Any] = {
            "model": self.model,
            "messages": [{"role": m.role.value, "content": m.content} for m in messages],
        }
        if self.max_tokens:
            completion_kwargs["max_completion_tokens"] = self.max_tokens

        response = await self._client.chat.completions.create(**completion_kwargs)
        message = response.choices[0].message
        if message.content is None:
            if message.refusal:
                raise ValueError(f"{self.name} refused request: {message.refusal}")
            raise ValueError(f"{self.name} returned null content")

        usage = Usage()
        if response.usage:
            usage = Usage(
                input_tokens=response.usage.prompt_tokens,
                output_tokens=response.usage.completion_tokens,
            )
        return ChatResponse(
            content=message.content,
            model=response.model,
            usage=usage,
            metadata={"finish_reason": response.choices[0].finish_reason},
        )

    async def aclose(self) -> None:
        await self._client.close()


class OpenRouterClient(OpenAIClient):
    name = "openrouter"

    def __init__(
        self,
        api_key: str,
        model: str = "",
        base_url: str = "",
        max_tokens: int = 0,
        timeout: float = DEFAULT_TIMEOUT,
    ) -> None:
        super().__init__(api_key, model, base_url or OPENROUTER_BASE_URL, max_tokens, timeout)


class AnthropicClient(LLMClient):
    """Anthropic Messages API client.

    System messages are lifted into the top-level ``system`` field; the rest
    are sent as the conversation.
    """

    name = "anthropic"

    def __init__(
        self,
        api_key: str,
        model: str = "",
        base_url: str = "",
        max_tokens: int = 0,
        timeout: float = DEFAULT_TIMEOUT,
    ) -> None:
        self.model = model or ANTHROPIC_DEFAULT_MODEL
        self.max_tokens = max_tokens or DEFAULT_MAX_TOKENS
        headers = {
            "Content-Type": "application/json",
            "anthropic-version": ANTHROPIC_API_VERSION,
        }
        if api_key:
            headers["x-api-key"] = api_key
        self._client = httpx.AsyncClient(
            base_url=(base_url or ANTHROPIC_BASE_URL).rstrip("/"),
            headers=headers,
            timeout=timeout,
        )

    async def chat(self, messages: list[Message]) -> ChatResponse:
        system = "\n\n".join(m.content for m in messages if m.role == Role.SYSTEM)
        body: dict[str, Any] = {
            "model": self.model,
            "max_tokens": self.max_tokens,
            "messages": [
                {"role": m.role.value, "content": m.content}
                for m in messages
                if m.role != Role.SYSTEM
            ],
        }
        if system:
            body["system"] = system

        response = await self._client.post("/v1/messages", json=body)
        response.raise_for_status()
        data = response.json()

        if data.get("error"):
            error = data["error"]
            raise ValueError(f"anthropic: {error.get('type')}: {error.get('message')}")

        text = "".join(
            block.get("text", "") for block in data.get("content", []) if block.get("type") == "text"
        )
        if not text:
            raise ValueError(
                f"anthropic returned empty content (stop_reason: {data.get('stop_reason')})"
            )

        usage = data.get("usage", {})
        return ChatResponse(
            content=text,
            model=data.get("model", self.model),
            usage=Usage(
                input_tokens=usage.get("input_tokens", 0),
                output_tokens=usage.get("output_tokens", 0),
            ),
            metadata={"stop_reason": data.get("stop_reason")},
        )

    async def aclose(self) -> None:
        await self._client.aclose()


class CopilotClient(LLMClient):
    """GitHub Copilot chat client (OpenAI Chat Completions wire format)."""

    name = "copilot"

    def __init__(
        self,
        token: str,
        model: str = "",
        base_url: str = "",
        max_tokens: int = 0,
        timeout: float = DEFAULT_TIMEOUT,
    ) -> None:
        self.model = model or COPILOT_DEFAULT_MODEL
        self.max_tokens = max_tokens or DEFAULT_MAX_TOKENS
        self._client = httpx.AsyncClient(
            base_url=(base_url or COPILOT_BASE_URL).rstrip("/"),
            headers={
                "Content-Type": "application/json",
                "Authorization": f"Bearer {token}",
                "Copilot-Integration-Id": COPILOT_INTEGRATION_ID,
            },
            timeout=timeout,
        )

    async def chat(self, messages: list[Message]) -> ChatResponse:
        body = {
            "model": self.model,
            "max_tokens": self.max_tokens,
            "messages": [{"role": m.role.value, "content": m.content} for m in messages],
        }
        response = await self._client.post("/chat/completions", json=body)
        response.raise_for_status()
        data = response.json()

        choices = data.get("choices") or []
        if not choices or choices[0].get("message", {}).get("content") is None:
            raise ValueError("copilot returned no message content")

        usage = data.get("usage", {})
        return ChatResponse(
            content=choices[0]["message"]["content"],
            model=data.get("model", self.model),
            usage=Usage(
                input_tokens=usage.get("prompt_tokens", 0),
                output_tokens=usage.get("completion_tokens", 0),
            ),
            metadata={"finish_reason": choices[0].get("finish_reason")},
        )

    async def aclose(self) -> None:
        await self._client.aclose()


# ============================================================================
# Factories
# ============================================================================


def mock_factory(api_key: str, record: ProviderRecord) -> LLMClient:
    return MockClient()


def openai_factory(api_key: str, record: ProviderRecord) -> LLMClient:
    return OpenAIClient(api_key, record.model, record.base_url, record.max_tokens)


def openrouter_factory(api_key: str, record: ProviderRecord) -> LLMClient:
    return OpenRouterClient(api_key, record.model, record.base_url, record.max_tokens)


def anthropic_factory(api_key: str, record: ProviderRecord) -> LLMClient:
    return AnthropicClient(api_key, record.model, record.base_url, record.max_tokens)


def copilot_factory(api_key: str, record: ProviderRecord) -> LLMClient:
    return CopilotClient(api_key, record.model, record.base_url, record.max_tokens)


def builtin_factories() -> dict[str, ProviderFactory]:
    return {
        "mock": mock_factory,
        "openai": openai_factory,
        "openai-compatible": openai_factory,
        "openrouter": openrouter_factory,
        "anthropic": anthropic_factory,
        "copilot": copilot_factory,
    }
