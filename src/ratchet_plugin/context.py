"""Plugin wiring.

``plugin_lifespan`` builds every component once and hands them out through a
PluginContext. Components receive their collaborators explicitly; the host
service registry is only read by the security audit.
"""

from __future__ import annotations

import logging
import os
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass

from .audit import VAULT_DEV_SERVICE, AuditContext, DictServiceRegistry, SecurityAuditor
from .config import PluginSettings
from .policy import ToolPolicyEngine
from .providers import ProviderRegistry, ProviderStore
from .secrets import (
    FileSecretProvider,
    MemorySecretProvider,
    SecretGuard,
    SecretManager,
    SecretProvider,
    VaultAdmin,
    VaultBackend,
    VaultSecretProvider,
    load_vault_config,
)
from .secrets.crypto import ensure_private_dir
from .store import SqliteStore, StoreConfig, apply_schema
from .webhooks import WebhookManager

logger = logging.getLogger(__name__)


@dataclass
class PluginContext:
    """Handles to every live component of the plugin."""

    settings: PluginSettings
    store: SqliteStore
    services: DictServiceRegistry
    guard: SecretGuard
    secrets: SecretManager
    vault: VaultAdmin
    providers: ProviderRegistry
    policies: ToolPolicyEngine
    webhooks: WebhookManager
    auditor: SecurityAuditor


def select_secret_provider(settings: PluginSettings) -> tuple[SecretProvider, str]:
    """Pick the secrets backend from the saved vault config.

    remote vault -> VaultSecretProvider
    dev vault    -> in-memory provider (lost on restart)
    no config    -> encrypted file store under <data_dir>/secrets

    Raises:
        VaultConfigError: If the saved config is malformed
        SecretDecryptionError: If the saved token cannot be decrypted
    """
    config = load_vault_config(settings.data_dir)
    if config is not None and config.is_remote:
        provider: SecretProvider = VaultSecretProvider(
            config.address, config.token, config.mount_path, config.namespace
        )
        return provider, VaultBackend.REMOTE.value
    if config is not None and config.backend == VaultBackend.DEV:
        return MemorySecretProvider(), VaultBackend.DEV.value
    file_provider = FileSecretProvider(settings.secrets_dir)
    return file_provider, file_provider.name


def _sync_vault_dev_service(services: DictServiceRegistry, guard: SecretGuard) -> None:
    if guard.backend_name == VaultBackend.DEV.value:
        services.register(VAULT_DEV_SERVICE, guard.provider)
    else:
        services.unregister(VAULT_DEV_SERVICE)


@asynccontextmanager
async def plugin_lifespan(
    settings: PluginSettings, services: DictServiceRegistry | None = None
) -> AsyncIterator[PluginContext]:
    """Build the plugin, yield it, and release its resources on exit.

    Args:
        settings: Loaded PluginSettings
        services: Host service registry inspected by the audit (empty if omitted)

    Yields:
        PluginContext with a connected store and a loaded secret guard
    """
    logger.info("Initializing ratchet plugin...")
    services = services if services is not None else DictServiceRegistry()

    ensure_private_dir(settings.data_dir)
    store = SqliteStore()
    await store.connect(StoreConfig(path=settings.database_path))
    try:
        await apply_schema(store)

        provider, backend = select_secret_provider(settings)
        guard = SecretGuard(provider, backend)
        await guard.load_all()
        logger.info(f"Secrets backend: {backend}")
        logger.debug(f"Known secrets: {', '.join(guard.known_secret_names()) or '(none)'}")

        manager = SecretManager(guard)
        registry = ProviderRegistry(ProviderStore(store), provider)
        manager.subscribe(registry.invalidate_by_secret)

        vault = VaultAdmin(guard, settings.data_dir, settings.secrets_dir)

        async def on_provider_swap(new_provider: SecretProvider) -> None:
            await registry.update_secrets_provider(new_provider)
            _sync_vault_dev_service(services, guard)

        vault.subscribe(on_provider_swap)
        _sync_vault_dev_service(services, guard)

        ctx = PluginContext(
            settings=settings,
            store=store,
            services=services,
            guard=guard,
            secrets=manager,
            vault=vault,
            providers=registry,
            policies=ToolPolicyEngine(store, settings.default_tool_policy),
            webhooks=WebhookManager(
                store, lambda: guard.provider, slack_max_age=settings.slack_max_age
            ),
            auditor=SecurityAuditor(
                AuditContext(store=store, services=services, environ=_audit_environ(settings))
            ),
        )
    except BaseException:
        await store.disconnect()
        raise

    try:
        yield ctx
    finally:
        logger.info("Shutting down ratchet plugin...")
        await registry.aclose()
        await guard.provider.aclose()
        await store.disconnect()


def _audit_environ(settings: PluginSettings) -> dict[str, str]:
    """Process environment with the effective settings layered on top."""
    environ = dict(os.environ)
    environ["RATCHET_ENV"] = settings.environment
    environ["RATCHET_DB_PATH"] = settings.database_path
    if settings.auth_token:
        environ["RATCHET_AUTH_TOKEN"] = settings.auth_token
    if settings.cors_origin:
        environ["RATCHET_CORS_ORIGIN"] = settings.cors_origin
    return environ
