"""Secrets and vault configuration plane.

Core Components:
    - SecretProvider: Abstract store interface (memory, encrypted file, Vault KV v2)
    - VaultConfig codec: load/save/delete ``vault-config.json`` with the token
      encrypted at rest
    - SecretGuard: In-memory snapshot of secret values for redaction
    - SecretManager: Mutation path keeping the guard and provider caches coherent
    - VaultAdmin: Status / test / configure / migrate / reset actions

Example:
    >>> provider = FileSecretProvider("data/secrets")
    >>> guard = SecretGuard(provider)
    >>> await guard.load_all()
    >>> manager = SecretManager(guard)
    >>> await manager.set("openai_key", "sk-...")
    >>> guard.redact({"auth": "Bearer sk-..."})
    {'auth': 'Bearer [REDACTED:openai_key]'}
"""

from .exceptions import (
    InvalidSecretError,
    SecretDecryptionError,
    SecretError,
    SecretNotFoundError,
    SecretProviderError,
    VaultConfigError,
)
from .guard import SecretGuard
from .manager import SecretManager
from .provider import (
    FileSecretProvider,
    MemorySecretProvider,
    SecretProvider,
    VaultSecretProvider,
)
from .vault_admin import VaultActionResult, VaultAdmin, VaultStatus, validate_vault_inputs
from .vault_config import (
    VaultBackend,
    VaultConfig,
    delete_vault_config,
    load_vault_config,
    save_vault_config,
)

__all__ = [
    # Exceptions
    "SecretError",
    "SecretNotFoundError",
    "SecretProviderError",
    "SecretDecryptionError",
    "InvalidSecretError",
    "VaultConfigError",
    # Providers
    "SecretProvider",
    "MemorySecretProvider",
    "FileSecretProvider",
    "VaultSecretProvider",
    # Vault config
    "VaultBackend",
    "VaultConfig",
    "load_vault_config",
    "save_vault_config",
    "delete_vault_config",
    # Guard and mutation path
    "SecretGuard",
    "SecretManager",
    # Administration
    "VaultAdmin",
    "VaultActionResult",
    "VaultStatus",
    "validate_vault_inputs",
]
