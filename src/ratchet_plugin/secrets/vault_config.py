"""Vault configuration persistence.

The selected secrets backend is stored as ``<data_dir>/vault-config.json``:

```json
{
  "backend": "vault-remote",
  "address": "https://vault.example.com:8200",
  "token": "enc:bm9uY2UuLi4=",
  "mount_path": "secret",
  "namespace": "team-a"
}
```

A non-empty ``token`` is written encrypted with the machine-local key (see
:mod:`ratchet_plugin.secrets.crypto`) and carries the ``enc:`` prefix. Empty
tokens are written verbatim. The caller's config object is never mutated.
"""

from __future__ import annotations

import json
import logging
from enum import Enum
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from .crypto import decrypt_value, encrypt_value, ensure_private_dir, write_private_file
from .exceptions import SecretDecryptionError, VaultConfigError

logger = logging.getLogger(__name__)

VAULT_CONFIG_FILE = "vault-config.json"
ENCRYPTED_PREFIX = "enc:"


class VaultBackend(str, Enum):
    """Secrets backend persisted in the vault config."""

    DEV = "vault-dev"
    REMOTE = "vault-remote"


_BACKEND_ALIASES = {"dev": VaultBackend.DEV, "remote": VaultBackend.REMOTE}


class VaultConfig(BaseModel):
    """Persisted secrets backend selection."""

    model_config = ConfigDict(extra="ignore")

    backend: VaultBackend = Field(description="Selected backend: vault-dev or vault-remote")
    address: str = Field(default="", description="Vault server URL (remote only)")
    token: str = Field(default="", description="Vault token (plaintext in memory)")
    mount_path: str = Field(default="", description="KV v2 mount path (default 'secret')")
    namespace: str = Field(default="", description="Vault Enterprise namespace")

    @field_validator("backend", mode="before")
    @classmethod
    def normalize_backend(cls, v: Any) -> Any:
        if isinstance(v, str):
            return _BACKEND_ALIASES.get(v.strip().lower(), v)
        return v

    @property
    def is_remote(self) -> bool:
        return self.backend == VaultBackend.REMOTE


def vault_config_path(data_dir: Path | str) -> Path:
    return Path(data_dir) / VAULT_CONFIG_FILE


def load_vault_config(data_dir: Path | str) -> VaultConfig | None:
    """Load the vault config from ``data_dir``.

    Returns:
        The decoded config, or None when no config file exists

    Raises:
        VaultConfigError: If the file is not valid JSON or fails validation
        SecretDecryptionError: If an ``enc:`` token cannot be decrypted
    """
    path = vault_config_path(data_dir)
    if not path.exists():
        return None

    try:
        raw = json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as e:
        raise VaultConfigError(f"parse vault config {path}: {e}") from e
    except OSError as e:
        raise VaultConfigError(f"read vault config {path}: {e}") from e

    if not isinstance(raw, dict):
        raise VaultConfigError(f"parse vault config {path}: expected a JSON object")

    token = raw.get("token") or ""
    if isinstance(token, str) and token.startswith(ENCRYPTED_PREFIX):
        try:
            raw["token"] = decrypt_value(token[len(ENCRYPTED_PREFIX) :], data_dir)
        except SecretDecryptionError as e:
            raise SecretDecryptionError(f"vault token: {e.details}") from e

    try:
        return VaultConfig.model_validate(raw)
    except ValidationError as e:
        raise VaultConfigError(f"invalid vault config {path}: {e}") from e


def save_vault_config(data_dir: Path | str, config: VaultConfig) -> None:
    """Persist ``config`` under ``data_dir``, encrypting a non-empty token.

    Creates ``data_dir`` with mode 0700 and writes the file with mode 0600.
    """
    directory = Path(data_dir)
    ensure_private_dir(directory)

    stored = config.model_dump(mode="json")
    if config.token:
        stored["token"] = ENCRYPTED_PREFIX + encrypt_value(config.token, directory)

    path = vault_config_path(directory)
    write_private_file(path, (json.dumps(stored, indent=2) + "\n").encode("utf-8"))
    logger.info(f"Saved vault config ({config.backend.value}) to {path}")


def delete_vault_config(data_dir: Path | str) -> None:
    """Remove the vault config file. Missing file is not an error."""
    path = vault_config_path(data_dir)
    try:
        path.unlink()
        logger.info(f"Deleted vault config {path}")
    except FileNotFoundError:
        pass
