"""AES-256-GCM helpers for material stored at rest under the data directory.

Key material is 32 random bytes kept at ``<data_dir>/.vault-key`` (mode 0600).
The working key is ``SHA-256(key_material + data_dir)`` so ciphertexts written
under different data directories never share a key, even if the key file is
copied between them.

Encrypted values are ``base64(nonce || ciphertext || tag)`` with a fresh
12-byte nonce per call.
"""

from __future__ import annotations

import base64
import binascii
import hashlib
import logging
import os
import secrets
from pathlib import Path

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from .exceptions import SecretDecryptionError

logger = logging.getLogger(__name__)

KEY_FILE_NAME = ".vault-key"
KEY_MATERIAL_SIZE = 32
NONCE_SIZE = 12
TAG_SIZE = 16


def ensure_private_dir(directory: Path) -> None:
    """Create ``directory`` (and parents) with mode 0700 if missing."""
    if not directory.exists():
        directory.mkdir(mode=0o700, parents=True, exist_ok=True)
        # mkdir honours umask; force the final mode
        directory.chmod(0o700)


def write_private_file(path: Path, data: bytes) -> None:
    """Write ``data`` to ``path`` with mode 0600, replacing existing content."""
    fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
    with os.fdopen(fd, "wb") as f:
        f.write(data)
    path.chmod(0o600)


def _read_key_material(data_dir: Path, create: bool) -> bytes:
    key_path = data_dir / KEY_FILE_NAME
    if key_path.exists():
        try:
            material = key_path.read_bytes()
        except OSError as e:
            raise SecretDecryptionError(f"read key file {key_path}: {e}") from e
        if len(material) != KEY_MATERIAL_SIZE:
            raise SecretDecryptionError(
                f"key file {key_path} must be {KEY_MATERIAL_SIZE} bytes, got {len(material)}"
            )
        return material

    if not create:
        raise SecretDecryptionError(f"key file {key_path} not found")

    ensure_private_dir(data_dir)
    material = secrets.token_bytes(KEY_MATERIAL_SIZE)
    write_private_file(key_path, material)
    logger.info(f"Generated new encryption key file at {key_path}")
    return material


def derive_key(data_dir: Path | str, create: bool = False) -> bytes:
    """Return the 32-byte AES key bound to ``data_dir``.

    Args:
        data_dir: Directory holding the key file
        create: Generate the key file when it does not exist yet

    Raises:
        SecretDecryptionError: If the key file is missing (and ``create`` is
            False), unreadable, or the wrong size
    """
    directory = Path(data_dir)
    material = _read_key_material(directory, create)
    return hashlib.sha256(material + str(directory).encode("utf-8")).digest()


def encrypt_value(plaintext: str, data_dir: Path | str) -> str:
    """Encrypt ``plaintext`` under the key bound to ``data_dir``.

    Generates the key file on first use.
    """
    key = derive_key(data_dir, create=True)
    nonce = secrets.token_bytes(NONCE_SIZE)
    sealed = AESGCM(key).encrypt(nonce, plaintext.encode("utf-8"), None)
    return base64.b64encode(nonce + sealed).decode("ascii")


def decrypt_value(encoded: str, data_dir: Path | str) -> str:
    """Reverse :func:`encrypt_value`.

    Raises:
        SecretDecryptionError: On bad base64, truncated input, a missing key
            file, or GCM authentication failure
    """
    try:
        raw = base64.b64decode(encoded, validate=True)
    except (binascii.Error, ValueError) as e:
        raise SecretDecryptionError(f"base64 decode: {e}") from e

    if len(raw) < NONCE_SIZE + TAG_SIZE:
        raise SecretDecryptionError("ciphertext too short")

    key = derive_key(data_dir)
    nonce, sealed = raw[:NONCE_SIZE], raw[NONCE_SIZE:]
    try:
        plaintext = AESGCM(key).decrypt(nonce, sealed, None)
    except InvalidTag as e:
        raise SecretDecryptionError("authentication failed (wrong key or corrupted data)") from e

    try:
        return plaintext.decode("utf-8")
    except UnicodeDecodeError as e:
        raise SecretDecryptionError(f"plaintext is not valid UTF-8: {e}") from e
