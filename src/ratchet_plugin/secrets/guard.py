"""In-memory secret snapshot used to redact outbound text.

The SecretGuard mirrors the *values* of every secret in the active
SecretProvider so that agent transcripts, tool results and log lines can be
scrubbed before they leave the process.

Snapshot rules:
    - load_all() replaces the snapshot with the full contents of the provider,
      so a deleted secret never lingers as a redaction entry
    - load(names) merges a subset; names missing from the provider are skipped
    - add_known_secret() pins values that do not live in the provider (for
      example the Vault token itself); pinned values survive reloads
    - empty values are never tracked

Example:
    >>> guard = SecretGuard(MemorySecretProvider({"api_key": "sk-1234567890"}), "memory")
    >>> await guard.load_all()
    >>> guard.redact("calling with sk-1234567890")
    'calling with [REDACTED:api_key]'
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from .exceptions import SecretNotFoundError, SecretProviderError
from .provider import SecretProvider

logger = logging.getLogger(__name__)


def redaction_marker(name: str) -> str:
    return f"[REDACTED:{name}]"


class SecretGuard:
    """Redaction snapshot over a hot-swappable SecretProvider.

    The snapshot dict is replaced wholesale rather than mutated in place, so
    :meth:`redact` can read it without taking the lock. Refreshes hold the
    lock across their provider reads, so a full reload cannot overwrite a
    merge that completed after its listing.

    Attributes:
        provider: Active SecretProvider
        backend_name: Human-readable backend identifier (memory, file, vault-dev, vault-remote)
    """

    def __init__(self, provider: SecretProvider, backend_name: str | None = None) -> None:
        self._provider = provider
        self._backend_name = backend_name or provider.name
        self._snapshot: dict[str, str] = {}
        self._pinned: dict[str, str] = {}
        self._lock = asyncio.Lock()

    @property
    def provider(self) -> SecretProvider:
        return self._provider

    @property
    def backend_name(self) -> str:
        return self._backend_name

    async def _fetch(self, provider: SecretProvider, names: list[str]) -> dict[str, str]:
        values: dict[str, str] = {}
        for name in names:
            try:
                value = await provider.get_secret(name)
            except SecretNotFoundError:
                continue
            if value:
                values[name] = value
        return values

    async def load_all(self) -> None:
        """Replace the snapshot with every secret in the provider.

        The snapshot is only replaced once every value has been read, so a
        provider failure leaves the previous snapshot in place.

        Raises:
            SecretProviderError: If the provider cannot be read
        """
        async with self._lock:
            names = await self._provider.list_secret_keys()
            values = await self._fetch(self._provider, names)
            self._snapshot = values
        logger.debug(f"Secret guard loaded {len(values)} secret(s) from {self._backend_name}")

    async def load(self, names: list[str]) -> None:
        """Merge the named secrets into the snapshot.

        Raises:
            SecretProviderError: If the provider cannot be read
        """
        async with self._lock:
            values = await self._fetch(self._provider, names)
            self._snapshot = {**self._snapshot, **values}

    async def set_provider(self, provider: SecretProvider, backend_name: str | None = None) -> None:
        """Swap the backing provider.

        The new snapshot is built before the swap so redaction never runs
        against an empty map. Load failures leave an empty snapshot for the
        new provider rather than keeping values from the old one.
        """
        async with self._lock:
            try:
                values = await self._fetch(provider, await provider.list_secret_keys())
            except SecretProviderError as e:
                logger.warning(f"Secret guard could not preload new provider: {e}")
                values = {}
            self._provider = provider
            self._backend_name = backend_name or provider.name
            self._snapshot = values
        logger.info(f"Secret guard switched to backend '{self._backend_name}'")

    async def add_known_secret(self, name: str, value: str) -> None:
        """Track a value that is not stored in the provider. Empty values are ignored."""
        if not value:
            return
        async with self._lock:
            self._pinned = {**self._pinned, name: value}

    def known_secret_names(self) -> list[str]:
        return sorted({**self._pinned, **self._snapshot})

    def known_value(self, name: str) -> str | None:
        return self._snapshot.get(name) or self._pinned.get(name)

    def _pairs(self) -> list[tuple[str, str]]:
        merged = {**self._pinned, **self._snapshot}
        # longest first so a secret that contains another is replaced whole
        return sorted(
            ((value, name) for name, value in merged.items()),
            key=lambda pair: len(pair[0]),
            reverse=True,
        )

    def _redact_text(self, text: str, pairs: list[tuple[str, str]]) -> str:
        for value, name in pairs:
            if value in text:
                text = text.replace(value, redaction_marker(name))
        return text

    def redact(self, data: Any) -> Any:  # noqa: ANN401
        """Redact known secret values from any data structure.

        Strings are scrubbed directly; dicts, lists and tuples are traversed
        recursively with their structure preserved. Other types are returned
        unchanged.
        """
        return self._redact(data, self._pairs())

    def _redact(self, data: Any, pairs: list[tuple[str, str]]) -> Any:  # noqa: ANN401
        if isinstance(data, str):
            return self._redact_text(data, pairs)
        if isinstance(data, dict):
            return {key: self._redact(value, pairs) for key, value in data.items()}
        if isinstance(data, list):
            return [self._redact(item, pairs) for item in data]
        if isinstance(data, tuple):
            return tuple(self._redact(item, pairs) for item in data)
        return data

    def check_and_redact(self, text: str) -> tuple[str, bool]:
        """Redact ``text`` and report whether anything was replaced."""
        redacted = self._redact_text(text, self._pairs())
        return redacted, redacted != text
