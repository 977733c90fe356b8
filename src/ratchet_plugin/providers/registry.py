"""Cache of constructed LLM clients keyed by provider alias.

Read path (``get_by_alias``):
    1. cache hit -> return it
    2. load the llm_providers row (missing -> ProviderNotFoundError)
    3. resolve ``secret_name`` through the SecretProvider
    4. build the client with the factory for the row's type
       (missing -> UnknownProviderTypeError)
    5. cache ``{client, secret_name}`` under the alias

Coherence:
    Every cached client was built with the secret value seen at construction
    time. ``invalidate_by_secret`` drops every entry that depends on a secret
    name, using the in-memory dependency index rather than the store, so it
    works even while the store is unavailable.

    Misses build clients outside the lock. Each invalidation bumps an epoch;
    a builder only inserts its client if the epoch is unchanged, so a client
    built from a pre-invalidation secret is never cached. A builder that
    loses the race returns its (uncached) client to its caller only.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass

from pydantic import BaseModel

from ..exceptions import (
    NoDefaultProviderError,
    ProviderNotFoundError,
    UnknownProviderTypeError,
)
from ..secrets import SecretNotFoundError, SecretProvider
from .base import LLMClient, Message, Role
from .clients import KEY_REQUIRED_TYPES, ProviderFactory, builtin_factories
from .store import ProviderRecord, ProviderStore

logger = logging.getLogger(__name__)

PROBE_MESSAGE = "Hello"


@dataclass
class ProviderCacheEntry:
    client: LLMClient
    secret_name: str


class ConnectionTestResult(BaseModel):
    ok: bool
    message: str
    latency: float  # seconds


class ProviderRegistry:
    """Alias -> client cache with secret-dependency invalidation.

    Attributes:
        providers: ProviderStore used to read llm_providers rows
        secrets: SecretProvider used to resolve API keys
    """

    def __init__(
        self,
        providers: ProviderStore,
        secrets: SecretProvider,
        factories: dict[str, ProviderFactory] | None = None,
    ) -> None:
        self.providers = providers
        self.secrets = secrets
        self._factories = factories if factories is not None else builtin_factories()
        self._cache: dict[str, ProviderCacheEntry] = {}
        self._epoch = 0
        self._lock = asyncio.Lock()

    def register_factory(self, provider_type: str, factory: ProviderFactory) -> None:
        self._factories[provider_type] = factory

    @property
    def provider_types(self) -> list[str]:
        return sorted(self._factories)

    def cached_aliases(self) -> list[str]:
        return sorted(self._cache)

    # ------------------------------------------------------------------
    # Read path
    # ------------------------------------------------------------------

    async def get_by_alias(self, alias: str) -> LLMClient:
        """Return the cached client for ``alias``, building it on a miss.

        Raises:
            ProviderNotFoundError: If no row has this alias
            UnknownProviderTypeError: If the row's type has no factory
            SecretNotFoundError: If a key-requiring type references a missing secret
            StoreError: If the store cannot be read
        """
        entry = self._cache.get(alias)
        if entry is not None:
            return entry.client

        epoch = self._epoch
        record = await self.providers.get(alias)
        if record is None:
            raise ProviderNotFoundError(alias)
        return await self._build_and_cache(record, epoch)

    async def get_default(self) -> LLMClient:
        """Return the client for the provider flagged as default.

        Raises:
            NoDefaultProviderError: If no provider is flagged as default
        """
        epoch = self._epoch
        record = await self.providers.get_default()
        if record is None:
            raise NoDefaultProviderError()

        entry = self._cache.get(record.alias)
        if entry is not None:
            return entry.client
        return await self._build_and_cache(record, epoch)

    async def _resolve_api_key(self, record: ProviderRecord, secrets: SecretProvider) -> str:
        if not record.secret_name:
            return ""
        try:
            return await secrets.get_secret(record.secret_name)
        except SecretNotFoundError:
            if record.type in KEY_REQUIRED_TYPES:
                raise
            logger.debug(
                f"Secret '{record.secret_name}' for provider '{record.alias}' not found; "
                f"type '{record.type}' accepts missing credentials"
            )
            return ""

    async def _build_and_cache(self, record: ProviderRecord, epoch: int) -> LLMClient:
        factory = self._factories.get(record.type)
        if factory is None:
            raise UnknownProviderTypeError(record.type)

        api_key = await self._resolve_api_key(record, self.secrets)
        client = factory(api_key, record)

        async with self._lock:
            existing = self._cache.get(record.alias)
            if existing is None and self._epoch == epoch:
                self._cache[record.alias] = ProviderCacheEntry(client, record.secret_name)
                logger.debug(f"Cached provider client for '{record.alias}' ({record.type})")
            elif existing is None:
                logger.debug(f"Invalidation raced build of '{record.alias}'; not caching")

        if existing is not None:
            # another miss won the race; keep one instance per alias
            await client.aclose()
            return existing.client
        return client

    async def test_connection(self, alias: str) -> ConnectionTestResult:
        """Send a one-message probe through the provider.

        Lookup failures are reported as ``ok=False`` with zero latency; probe
        latency is measured whether or not the probe succeeds.
        """
        try:
            client = await self.get_by_alias(alias)
        except Exception as e:
            return ConnectionTestResult(
                ok=False, message=f"failed to resolve provider: {e}", latency=0.0
            )

        start = time.monotonic()
        try:
            await client.chat([Message(role=Role.USER, content=PROBE_MESSAGE)])
        except Exception as e:
            elapsed = time.monotonic() - start
            logger.info(f"Connection test for '{alias}' failed: {e}")
            return ConnectionTestResult(
                ok=False, message=f"connection failed: {e}", latency=elapsed
            )
        return ConnectionTestResult(
            ok=True, message="connection successful", latency=time.monotonic() - start
        )

    # ------------------------------------------------------------------
    # Invalidation
    # ------------------------------------------------------------------
    # Evicted clients are not closed: a caller may still be using one.

    async def invalidate_alias(self, alias: str) -> None:
        async with self._lock:
            self._epoch += 1
            self._cache.pop(alias, None)

    async def invalidate_by_secret(self, secret_name: str) -> None:
        async with self._lock:
            self._epoch += 1
            aliases = [
                alias
                for alias, entry in self._cache.items()
                if entry.secret_name == secret_name
            ]
            for alias in aliases:
                del self._cache[alias]
        if aliases:
            logger.info(
                f"Secret '{secret_name}' changed; dropped cached providers: {', '.join(aliases)}"
            )

    async def invalidate_all(self) -> None:
        async with self._lock:
            self._epoch += 1
            self._cache = {}

    async def update_secrets_provider(self, secrets: SecretProvider) -> None:
        """Swap the secret source and drop every cached client."""
        async with self._lock:
            self.secrets = secrets
            self._epoch += 1
            self._cache = {}
        logger.info(f"Provider registry now resolves secrets via '{secrets.name}'")

    async def aclose(self) -> None:
        """Close every cached client. Called on plugin shutdown."""
        async with self._lock:
            entries = list(self._cache.values())
            self._cache = {}
        for entry in entries:
            await entry.client.aclose()

    # ------------------------------------------------------------------
    # Record mutations
    # ------------------------------------------------------------------

    async def add_provider(self, record: ProviderRecord) -> ProviderRecord:
        stored = await self.providers.add(record)
        await self.invalidate_alias(stored.alias)
        return stored

    async def update_provider(self, alias: str, **changes: object) -> ProviderRecord:
        stored = await self.providers.update(alias, **changes)
        await self.invalidate_alias(alias)
        return stored

    async def remove_provider(self, alias: str) -> None:
        await self.providers.remove(alias)
        await self.invalidate_alias(alias)

    async def set_default(self, alias: str) -> None:
        for changed in await self.providers.set_default(alias):
            await self.invalidate_alias(changed)
