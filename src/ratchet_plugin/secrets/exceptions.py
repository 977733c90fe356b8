"""Custom exceptions for the secrets plane.

This module defines the exception hierarchy for secret stores, the vault
configuration codec and the secret mutation path.

Exception Hierarchy:
    SecretError (base, a RatchetError)
    ├── SecretNotFoundError (missing secret)
    ├── SecretProviderError (backend-level failure)
    ├── SecretDecryptionError (key unreadable, bad base64, GCM tag mismatch)
    ├── InvalidSecretError (missing name or value)
    └── VaultConfigError (unparseable config file or invalid vault inputs)

Example:
    >>> try:
    ...     token = await provider.get_secret("github_webhook")
    ... except SecretNotFoundError as e:
    ...     token = ""  # e.key == "github_webhook"
"""

from ..exceptions import RatchetError


class SecretError(RatchetError):
    """Base class for secret store, codec and mutation failures."""

    pass


class SecretNotFoundError(SecretError):
    """No secret with this name exists in the backend.

    Raised by ``get`` and ``delete`` on every SecretProvider when the name is
    absent. Names are case-sensitive.

    Attributes:
        key: The secret key that was not found
        provider_hint: Optional hint naming the backend that was searched
    """

    def __init__(self, key: str, provider_hint: str | None = None) -> None:
        self.key = key
        self.provider_hint = provider_hint

        message = f"Secret '{key}' not found"
        if provider_hint:
            message += f" in {provider_hint}"

        super().__init__(message)


class SecretProviderError(SecretError):
    """The backend failed: Vault unreachable or returning an unexpected
    status, or a secrets file that cannot be read or decrypted.

    Attributes:
        provider_name: Backend name, e.g. "file" or "vault-remote"
        details: What went wrong, without secret values
    """

    def __init__(self, provider_name: str, details: str) -> None:
        self.provider_name = provider_name
        self.details = details

        super().__init__(f"secrets backend '{provider_name}' failed: {details}")


class SecretDecryptionError(SecretError):
    """Encrypted material could not be decrypted.

    Covers an unreadable key file, malformed base64, ciphertext shorter than the
    nonce, and AES-GCM authentication failure. The plaintext is never included
    in the message.
    """

    def __init__(self, details: str) -> None:
        self.details = details
        super().__init__(f"decrypt: {details}")


class InvalidSecretError(SecretError):
    """A secret mutation was refused because a required argument is missing."""

    pass


class VaultConfigError(SecretError):
    """The vault configuration file or the supplied vault inputs are invalid."""

    pass
