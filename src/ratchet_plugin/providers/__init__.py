"""LLM provider clients, records and the alias-keyed client registry."""

from .base import ChatResponse, LLMClient, Message, Role, Usage
from .clients import (
    KEY_REQUIRED_TYPES,
    AnthropicClient,
    CopilotClient,
    MockClient,
    OpenAIClient,
    OpenRouterClient,
    ProviderFactory,
    builtin_factories,
)
from .registry import ConnectionTestResult, ProviderCacheEntry, ProviderRegistry
from .store import ProviderRecord, ProviderStore

__all__ = [
    "AnthropicClient",
    "ChatResponse",
    "ConnectionTestResult",
    "CopilotClient",
    "KEY_REQUIRED_TYPES",
    "LLMClient",
    "Message",
    "MockClient",
    "OpenAIClient",
    "OpenRouterClient",
    "ProviderCacheEntry",
    "ProviderFactory",
    "ProviderRecord",
    "ProviderRegistry",
    "ProviderStore",
    "Role",
    "Usage",
    "builtin_factories",
]
