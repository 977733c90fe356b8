"""Secret provider abstraction and implementations.

This module defines the SecretProvider abstraction the rest of the plugin
depends on, plus the concrete stores it can be backed by.

Providers:
    - SecretProvider: Abstract base class defining the store interface
    - MemorySecretProvider: Ephemeral in-process store (dev backend, tests)
    - FileSecretProvider: AES-256-GCM encrypted JSON file under a private directory
    - VaultSecretProvider: HashiCorp Vault KV v2 over HTTP

Example:
    >>> provider = MemorySecretProvider()
    >>> await provider.set_secret("anthropic_key", "sk-ant-...")
    >>> value = await provider.get_secret("anthropic_key")
    >>> keys = await provider.list_secret_keys()
"""

from __future__ import annotations

import asyncio
import json
import logging
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any
from urllib.parse import quote

import httpx

from .crypto import decrypt_value, encrypt_value, ensure_private_dir, write_private_file
from .exceptions import SecretDecryptionError, SecretNotFoundError, SecretProviderError

logger = logging.getLogger(__name__)


class SecretProvider(ABC):
    """Abstract base class for secret stores.

    Secret names are case-sensitive. Values are opaque strings and are only
    returned by :meth:`get_secret`; :meth:`list_secret_keys` exposes names only.

    All methods are async to support both local and remote secret sources.

    Example:
        >>> class MyProvider(SecretProvider):
        ...     name = "mine"
        ...
        ...     async def get_secret(self, key: str) -> str:
        ...         return await fetch_from_source(key)
        ...     ...
    """

    #: Short backend identifier reported to admins and the secret guard
    name: str = "unknown"

    @abstractmethod
    async def get_secret(self, key: str) -> str:
        """Retrieve a secret value by key.

        Raises:
            SecretNotFoundError: If the secret key does not exist
            SecretProviderError: If the provider encounters an error
        """
        pass

    @abstractmethod
    async def set_secret(self, key: str, value: str) -> None:
        """Create or replace a secret.

        Raises:
            SecretProviderError: If the provider encounters an error
        """
        pass

    @abstractmethod
    async def delete_secret(self, key: str) -> None:
        """Delete a secret.

        Raises:
            SecretNotFoundError: If the secret key does not exist
            SecretProviderError: If the provider encounters an error
        """
        pass

    @abstractmethod
    async def list_secret_keys(self) -> list[str]:
        """List all available secret keys.

        Raises:
            SecretProviderError: If the provider encounters an error
        """
        pass

    async def aclose(self) -> None:
        """Release any network resources held by the provider."""
        return None


class MemorySecretProvider(SecretProvider):
    """Secret provider backed by a process-local dict.

    Contents are lost when the process exits. Used for the ``vault-dev``
    backend and throughout the test suite.
    """

    name = "memory"

    def __init__(self, initial: dict[str, str] | None = None) -> None:
        self._secrets: dict[str, str] = dict(initial or {})
        self._lock = asyncio.Lock()

    async def get_secret(self, key: str) -> str:
        async with self._lock:
            if key not in self._secrets:
                raise SecretNotFoundError(key, provider_hint=self.name)
            return self._secrets[key]

    async def set_secret(self, key: str, value: str) -> None:
        async with self._lock:
            self._secrets[key] = value

    async def delete_secret(self, key: str) -> None:
        async with self._lock:
            if key not in self._secrets:
                raise SecretNotFoundError(key, provider_hint=self.name)
            del self._secrets[key]

    async def list_secret_keys(self) -> list[str]:
        async with self._lock:
            return sorted(self._secrets)


class FileSecretProvider(SecretProvider):
    """Secret provider persisting encrypted values in a single JSON document.

    Layout:
        <directory>/secrets.json   {"name": "<base64 nonce||ct||tag>", ...}  (0600)
        <directory>/.vault-key     32 random bytes                           (0600)

    Every value is sealed individually with AES-256-GCM using the key bound to
    ``directory`` (see :mod:`ratchet_plugin.secrets.crypto`). The directory is
    created with mode 0700 on first write.

    File IO runs in the default executor so the event loop is never blocked.
    """

    name = "file"
    FILE_NAME = "secrets.json"

    def __init__(self, directory: Path | str) -> None:
        self.directory = Path(directory)
        self._lock = asyncio.Lock()

    @property
    def path(self) -> Path:
        return self.directory / self.FILE_NAME

    def _read_all(self) -> dict[str, str]:
        if not self.path.exists():
            return {}
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            raise SecretProviderError(self.name, f"read {self.path}: {e}") from e
        if not isinstance(data, dict):
            raise SecretProviderError(self.name, f"{self.path} is not a JSON object")
        return {str(k): str(v) for k, v in data.items()}

    def _write_all(self, sealed: dict[str, str]) -> None:
        ensure_private_dir(self.directory)
        payload = json.dumps(sealed, indent=2, sort_keys=True) + "\n"
        write_private_file(self.path, payload.encode("utf-8"))

    async def get_secret(self, key: str) -> str:
        loop = asyncio.get_running_loop()

        def _get() -> str:
            sealed = self._read_all()
            if key not in sealed:
                raise SecretNotFoundError(key, provider_hint=self.name)
            try:
                return decrypt_value(sealed[key], self.directory)
            except SecretDecryptionError as e:
                raise SecretProviderError(self.name, f"secret '{key}': {e}") from e

        async with self._lock:
            return await loop.run_in_executor(None, _get)

    async def set_secret(self, key: str, value: str) -> None:
        loop = asyncio.get_running_loop()

        def _set() -> None:
            sealed = self._read_all()
            sealed[key] = encrypt_value(value, self.directory)
            self._write_all(sealed)

        async with self._lock:
            await loop.run_in_executor(None, _set)

    async def delete_secret(self, key: str) -> None:
        loop = asyncio.get_running_loop()

        def _delete() -> None:
            sealed = self._read_all()
            if key not in sealed:
                raise SecretNotFoundError(key, provider_hint=self.name)
            del sealed[key]
            self._write_all(sealed)

        async with self._lock:
            await loop.run_in_executor(None, _delete)

    async def list_secret_keys(self) -> list[str]:
        loop = asyncio.get_running_loop()
        async with self._lock:
            sealed = await loop.run_in_executor(None, self._read_all)
        return sorted(sealed)


class VaultSecretProvider(SecretProvider):
    """HashiCorp Vault KV version 2 client.

    Each secret is stored at ``<mount_path>/data/<key>`` as ``{"value": "<secret>"}``.

    Endpoints used:
        GET    /v1/<mount>/data/<key>        read latest version
        POST   /v1/<mount>/data/<key>        write new version
        GET    /v1/<mount>/metadata/<key>    existence check before delete
        DELETE /v1/<mount>/metadata/<key>    remove all versions
        LIST   /v1/<mount>/metadata/         enumerate keys

    Authentication uses the ``X-Vault-Token`` header; ``X-Vault-Namespace`` is
    sent when a namespace is configured (Vault Enterprise).

    Attributes:
        address: Vault base URL, e.g. https://vault.example.com:8200
        mount_path: KV v2 mount (default "secret")
        namespace: Optional namespace
    """

    name = "vault-remote"

    def __init__(
        self,
        address: str,
        token: str,
        mount_path: str = "secret",
        namespace: str = "",
        timeout: float = 10.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.address = address.rstrip("/")
        self.mount_path = (mount_path or "secret").strip("/")
        self.namespace = namespace
        headers = {"X-Vault-Token": token}
        if namespace:
            headers["X-Vault-Namespace"] = namespace
        self._client = client or httpx.AsyncClient(
            base_url=self.address, headers=headers, timeout=timeout
        )
        self._owns_client = client is None

    def _data_url(self, key: str) -> str:
        return f"/v1/{self.mount_path}/data/{quote(key, safe='')}"

    def _metadata_url(self, key: str = "") -> str:
        return f"/v1/{self.mount_path}/metadata/{quote(key, safe='')}"

    async def _request(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        try:
            return await self._client.request(method, url, **kwargs)
        except httpx.HTTPError as e:
            raise SecretProviderError(self.name, f"{method} {url}: {e}") from e

    def _raise_for_status(self, response: httpx.Response, action: str) -> None:
        if response.is_success:
            return
        raise SecretProviderError(
            self.name, f"{action}: HTTP {response.status_code}: {response.text[:200]}"
        )

    async def get_secret(self, key: str) -> str:
        response = await self._request("GET", self._data_url(key))
        if response.status_code == 404:
            raise SecretNotFoundError(key, provider_hint=self.name)
        self._raise_for_status(response, f"read '{key}'")

        try:
            value = response.json()["data"]["data"]["value"]
        except (ValueError, KeyError, TypeError) as e:
            raise SecretProviderError(self.name, f"read '{key}': unexpected response shape") from e
        return str(value)

    async def set_secret(self, key: str, value: str) -> None:
        response = await self._request("POST", self._data_url(key), json={"data": {"value": value}})
        self._raise_for_status(response, f"write '{key}'")
        logger.debug(f"Wrote secret '{key}' to vault mount '{self.mount_path}'")

    async def delete_secret(self, key: str) -> None:
        # Vault answers 204 for deletes of missing paths; check existence first
        probe = await self._request("GET", self._metadata_url(key))
        if probe.status_code == 404:
            raise SecretNotFoundError(key, provider_hint=self.name)
        self._raise_for_status(probe, f"stat '{key}'")

        response = await self._request("DELETE", self._metadata_url(key))
        self._raise_for_status(response, f"delete '{key}'")

    async def list_secret_keys(self) -> list[str]:
        response = await self._request("LIST", self._metadata_url())
        if response.status_code == 404:
            return []
        self._raise_for_status(response, "list")

        try:
            keys = response.json()["data"]["keys"]
        except (ValueError, KeyError, TypeError) as e:
            raise SecretProviderError(self.name, "list: unexpected response shape") from e
        # Folders end with '/'; only leaf secrets are addressable by name
        return sorted(str(k) for k in keys if not str(k).endswith("/"))

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()
