"""Administrative actions on the secrets backend.

Actions:
    get_status  - report active backend and the saved remote settings
    test        - probe a candidate remote Vault without changing anything
    configure   - validate, probe, optionally migrate, persist, then hot-swap
    migrate     - copy every secret from the active backend to the saved remote
    reset       - forget the remote config and fall back to the file backend

Failures the operator can fix (bad URL, unreachable Vault, missing config)
are reported as ``VaultActionResult(success=False, error=...)`` rather than
raised, so an admin UI can show them verbatim.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Awaitable, Callable
from pathlib import Path
from urllib.parse import urlparse

from pydantic import BaseModel

from .exceptions import SecretError, VaultConfigError
from .guard import SecretGuard
from .provider import FileSecretProvider, SecretProvider, VaultSecretProvider
from .vault_config import (
    VaultBackend,
    VaultConfig,
    delete_vault_config,
    load_vault_config,
    save_vault_config,
)

logger = logging.getLogger(__name__)

VALID_PATH_SEGMENT = re.compile(r"^[a-zA-Z0-9_/.-]+$")
MAX_PATH_SEGMENT_LENGTH = 128
DEFAULT_MOUNT_PATH = "secret"

ProviderChangeListener = Callable[[SecretProvider], Awaitable[None]]
VaultFactory = Callable[..., SecretProvider]


class VaultStatus(BaseModel):
    backend: str
    address: str = ""
    mount_path: str = ""
    namespace: str = ""


class VaultActionResult(BaseModel):
    success: bool
    message: str = ""
    error: str = ""
    backend: str = ""
    migrated: int = 0


def validate_vault_inputs(address: str, mount_path: str = "", namespace: str = "") -> str | None:
    """Validate remote Vault settings.

    Returns:
        None when valid, otherwise a message describing the first problem
    """
    parsed = urlparse(address)
    if not parsed.netloc or not parsed.hostname:
        return "address must be a valid URL (e.g. https://vault.example.com:8200)"
    if parsed.scheme not in ("http", "https"):
        return "address must use http or https scheme"
    if parsed.path not in ("", "/"):
        return "address should not include a path; use mount_path instead"

    for field, value in (("mount_path", mount_path), ("namespace", namespace)):
        if value and not VALID_PATH_SEGMENT.match(value):
            return (
                f"{field} contains invalid characters "
                "(allowed: alphanumeric, hyphens, underscores, dots, slashes)"
            )
        if len(value) > MAX_PATH_SEGMENT_LENGTH:
            return f"{field} is too long (max {MAX_PATH_SEGMENT_LENGTH} characters)"
    return None


async def copy_secrets(source: SecretProvider, destination: SecretProvider) -> int:
    """Copy every readable secret from ``source`` to ``destination``.

    Secrets that disappear between list and get are skipped.

    Returns:
        Number of secrets written

    Raises:
        SecretError: If listing the source or writing the destination fails
    """
    count = 0
    for key in await source.list_secret_keys():
        try:
            value = await source.get_secret(key)
        except SecretError as e:
            logger.warning(f"Skipping secret '{key}' during migration: {e}")
            continue
        await destination.set_secret(key, value)
        count += 1
    return count


class VaultAdmin:
    """Backend administration bound to one data directory.

    Attributes:
        guard: SecretGuard whose provider is swapped on configure/reset
        data_dir: Directory holding vault-config.json and .vault-key
        secrets_dir: Directory used by the file backend after a reset
    """

    def __init__(
        self,
        guard: SecretGuard,
        data_dir: Path | str,
        secrets_dir: Path | str | None = None,
        vault_factory: VaultFactory = VaultSecretProvider,
    ) -> None:
        self.guard = guard
        self.data_dir = Path(data_dir)
        self.secrets_dir = Path(secrets_dir) if secrets_dir else self.data_dir / "secrets"
        self._vault_factory = vault_factory
        self._listeners: list[ProviderChangeListener] = []

    def subscribe(self, listener: ProviderChangeListener) -> None:
        """Register a coroutine called with the new provider after every swap."""
        self._listeners.append(listener)

    async def _swap_provider(self, provider: SecretProvider, backend: str) -> None:
        previous = self.guard.provider
        await self.guard.set_provider(provider, backend)
        for listener in self._listeners:
            await listener(provider)
        if previous is not provider:
            await previous.aclose()

    async def get_status(self) -> VaultStatus:
        status = VaultStatus(backend=self.guard.backend_name)
        try:
            config = load_vault_config(self.data_dir)
        except SecretError as e:
            logger.warning(f"Vault status could not read saved config: {e}")
            config = None
        if config is not None:
            status.address = config.address
            status.mount_path = config.mount_path
            status.namespace = config.namespace
        return status

    def _candidate(
        self, address: str, token: str, mount_path: str, namespace: str
    ) -> tuple[SecretProvider | None, str]:
        if not address or not token:
            return None, "address and token are required"
        problem = validate_vault_inputs(address, mount_path, namespace)
        if problem:
            return None, problem
        return (
            self._vault_factory(
                address=address, token=token, mount_path=mount_path, namespace=namespace
            ),
            "",
        )

    async def test_connection(
        self,
        address: str,
        token: str,
        mount_path: str = DEFAULT_MOUNT_PATH,
        namespace: str = "",
    ) -> VaultActionResult:
        candidate, problem = self._candidate(address, token, mount_path, namespace)
        if candidate is None:
            return VaultActionResult(success=False, error=problem)
        try:
            await candidate.list_secret_keys()
        except SecretError as e:
            logger.info(f"Vault connection test to {address} failed: {e}")
            return VaultActionResult(
                success=False,
                error="connection test failed - verify vault is reachable and token is valid",
            )
        finally:
            await candidate.aclose()
        return VaultActionResult(success=True, message="connection successful")

    async def configure(
        self,
        address: str,
        token: str,
        mount_path: str = DEFAULT_MOUNT_PATH,
        namespace: str = "",
        migrate_secrets: bool = False,
    ) -> VaultActionResult:
        """Switch the plugin to a remote Vault.

        Steps: validate inputs, probe with a list call, optionally copy the
        current secrets across, persist the config (token encrypted), swap
        the guard's provider, pin the token for redaction and notify
        listeners so provider caches drop clients built from the old store.
        """
        candidate, problem = self._candidate(address, token, mount_path, namespace)
        if candidate is None:
            return VaultActionResult(success=False, error=problem)

        try:
            await candidate.list_secret_keys()
        except SecretError as e:
            await candidate.aclose()
            logger.info(f"Vault at {address} rejected probe: {e}")
            return VaultActionResult(
                success=False,
                error="connection test failed - verify vault is reachable and token is valid",
            )

        migrated = 0
        if migrate_secrets:
            try:
                migrated = await copy_secrets(self.guard.provider, candidate)
            except SecretError as e:
                await candidate.aclose()
                logger.error(f"Secret migration to {address} failed: {e}")
                return VaultActionResult(
                    success=False,
                    error="migration failed - some secrets may not have been copied",
                )

        config = VaultConfig(
            backend=VaultBackend.REMOTE,
            address=address,
            token=token,
            mount_path=mount_path,
            namespace=namespace,
        )
        try:
            save_vault_config(self.data_dir, config)
        except (OSError, SecretError) as e:
            await candidate.aclose()
            logger.error(f"Failed to save vault config: {e}")
            return VaultActionResult(success=False, error="failed to save vault configuration")

        await self._swap_provider(candidate, VaultBackend.REMOTE.value)
        await self.guard.add_known_secret("VAULT_TOKEN", token)

        logger.info(f"Configured remote vault backend at {address}")
        return VaultActionResult(
            success=True,
            message="configured remote vault backend",
            backend=VaultBackend.REMOTE.value,
            migrated=migrated,
        )

    async def migrate(self) -> VaultActionResult:
        """Copy every secret from the active backend into the saved remote Vault."""
        try:
            config = load_vault_config(self.data_dir)
        except (VaultConfigError, SecretError) as e:
            logger.warning(f"Cannot migrate, vault config unreadable: {e}")
            config = None
        if config is None:
            return VaultActionResult(success=False, error="no vault config found - configure first")
        if not config.is_remote:
            return VaultActionResult(
                success=False,
                error="migration only supported when remote vault is configured",
            )

        destination = self._vault_factory(
            address=config.address,
            token=config.token,
            mount_path=config.mount_path or DEFAULT_MOUNT_PATH,
            namespace=config.namespace,
        )
        try:
            migrated = await copy_secrets(self.guard.provider, destination)
        except SecretError as e:
            logger.error(f"Secret migration failed: {e}")
            return VaultActionResult(
                success=False,
                error="migration failed - some secrets may not have been copied",
            )
        finally:
            if destination is not self.guard.provider:
                await destination.aclose()

        return VaultActionResult(
            success=True, message=f"migrated {migrated} secrets", migrated=migrated
        )

    async def reset(self) -> VaultActionResult:
        """Delete the saved config and fall back to the encrypted file backend."""
        try:
            delete_vault_config(self.data_dir)
        except OSError as e:
            logger.error(f"Failed to delete vault config: {e}")
            return VaultActionResult(success=False, error="failed to reset vault configuration")

        fallback = FileSecretProvider(self.secrets_dir)
        await self._swap_provider(fallback, fallback.name)
        logger.info(f"Reset secrets backend to file store at {self.secrets_dir}")
        return VaultActionResult(
            success=True, message="reset to file backend", backend=fallback.name
        )
