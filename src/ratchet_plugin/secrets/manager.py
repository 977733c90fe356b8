"""Secret mutation path.

All writes and deletes that should keep derived state coherent go through
SecretManager:

    set(name, value)  ->  provider.set_secret
                      ->  guard.load([name])
                      ->  notify listeners (e.g. ProviderRegistry.invalidate_by_secret)

    delete(name)      ->  provider.delete_secret
                      ->  guard.load_all()
                      ->  notify listeners

Once the provider has accepted a mutation, the follow-up refresh runs under
asyncio.shield so a cancelled caller cannot leave the guard or a listener's
cache behind the store.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable

from .exceptions import InvalidSecretError
from .guard import SecretGuard

logger = logging.getLogger(__name__)

SecretChangeListener = Callable[[str], Awaitable[None]]


class SecretManager:
    """Coherent set/delete/list over the guard's active provider."""

    def __init__(self, guard: SecretGuard) -> None:
        self.guard = guard
        self._listeners: list[SecretChangeListener] = []

    def subscribe(self, listener: SecretChangeListener) -> None:
        """Register a coroutine called with the secret name after each mutation."""
        self._listeners.append(listener)

    async def _notify(self, name: str) -> None:
        for listener in self._listeners:
            await listener(name)

    async def set(self, name: str, value: str) -> None:
        """Create or replace a secret.

        Raises:
            InvalidSecretError: If name or value is empty
            SecretProviderError: If the backend rejects the write
        """
        if not name:
            raise InvalidSecretError("secret name is required")
        if not value:
            raise InvalidSecretError(f"value is required for secret '{name}'")

        await self.guard.provider.set_secret(name, value)

        async def _refresh() -> None:
            await self._notify(name)
            await self.guard.load([name])

        await asyncio.shield(_refresh())
        logger.info(f"Secret '{name}' set via {self.guard.backend_name}")

    async def delete(self, name: str) -> None:
        """Delete a secret.

        Raises:
            InvalidSecretError: If name is empty
            SecretNotFoundError: If the secret does not exist
            SecretProviderError: If the backend rejects the delete
        """
        if not name:
            raise InvalidSecretError("secret name is required")

        await self.guard.provider.delete_secret(name)

        async def _refresh() -> None:
            await self._notify(name)
            await self.guard.load_all()

        await asyncio.shield(_refresh())
        logger.info(f"Secret '{name}' deleted via {self.guard.backend_name}")

    async def list(self) -> list[str]:
        return await self.guard.provider.list_secret_keys()
