"""Message types and the client interface shared by every LLM provider."""

from __future__ import annotations

from abc import ABC, abstractmethod
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


class Role(str, Enum):
    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"


class Message(BaseModel):
    role: Role
    content: str


class Usage(BaseModel):
    input_tokens: int = 0
    output_tokens: int = 0


class ChatResponse(BaseModel):
    """Normalised chat completion result."""

    content: str
    model: str = ""
    usage: Usage = Field(default_factory=Usage)
    metadata: dict[str, Any] = Field(default_factory=dict)


class LLMClient(ABC):
    """A constructed, ready-to-use handle to an LLM backend.

    Instances are owned by the ProviderRegistry cache. They hold the API key
    they were built with, which is why the registry drops them when that
    secret changes.
    """

    name: str = "unknown"

    @abstractmethod
    async def chat(self, messages: list[Message]) -> ChatResponse:
        """Send a conversation and return the assistant reply."""
        pass

    async def aclose(self) -> None:
        """Release HTTP resources."""
        return None
