"""Tests for at-rest encryption and the vault config codec.

Tests cover:
1. encrypt/decrypt round trip and per-directory key binding
2. Key file creation and permissions
3. Token encryption on save, decryption on load
4. Missing, malformed and undecryptable config files
"""

import base64
import json
import stat
from pathlib import Path

import pytest

from ratchet_plugin.secrets import (
    SecretDecryptionError,
    VaultBackend,
    VaultConfig,
    VaultConfigError,
    delete_vault_config,
    load_vault_config,
    save_vault_config,
)
from ratchet_plugin.secrets.crypto import (
    KEY_FILE_NAME,
    decrypt_value,
    derive_key,
    encrypt_value,
)
from ratchet_plugin.secrets.vault_config import VAULT_CONFIG_FILE


class TestCrypto:
    """Tests for AES-256-GCM helpers."""

    @pytest.mark.parametrize("plaintext", ["x", "s.mytoken", "ünïcødé ✓", "a" * 4096])
    def test_round_trip(self, data_dir: Path, plaintext: str) -> None:
        """decrypt(encrypt(t)) returns t."""
        assert decrypt_value(encrypt_value(plaintext, data_dir), data_dir) == plaintext

    def test_fresh_nonce_per_encryption(self, data_dir: Path) -> None:
        """Encrypting the same value twice yields different ciphertexts."""
        assert encrypt_value("same", data_dir) != encrypt_value("same", data_dir)

    def test_key_bound_to_directory(self, tmp_path: Path) -> None:
        """A copied key file does not decrypt values from another directory."""
        dir_a = tmp_path / "a"
        dir_b = tmp_path / "b"
        sealed = encrypt_value("token", dir_a)

        dir_b.mkdir()
        (dir_b / KEY_FILE_NAME).write_bytes((dir_a / KEY_FILE_NAME).read_bytes())

        assert derive_key(dir_a) != derive_key(dir_b)
        with pytest.raises(SecretDecryptionError):
            decrypt_value(sealed, dir_b)

    def test_key_file_permissions(self, data_dir: Path) -> None:
        """The key file is created with mode 0600 and the directory with 0700."""
        encrypt_value("value", data_dir)
        key_mode = stat.S_IMODE((data_dir / KEY_FILE_NAME).stat().st_mode)
        dir_mode = stat.S_IMODE(data_dir.stat().st_mode)
        assert key_mode == 0o600
        assert dir_mode == 0o700

    def test_missing_key_file(self, data_dir: Path) -> None:
        """Decrypting without a key file fails instead of generating one."""
        sealed = encrypt_value("value", data_dir)
        (data_dir / KEY_FILE_NAME).unlink()
        with pytest.raises(SecretDecryptionError, match="not found"):
            decrypt_value(sealed, data_dir)
        assert not (data_dir / KEY_FILE_NAME).exists()

    def test_wrong_key_size(self, data_dir: Path) -> None:
        data_dir.mkdir(parents=True)
        (data_dir / KEY_FILE_NAME).write_bytes(b"short")
        with pytest.raises(SecretDecryptionError, match="32 bytes"):
            derive_key(data_dir)

    def test_bad_base64(self, data_dir: Path) -> None:
        encrypt_value("value", data_dir)
        with pytest.raises(SecretDecryptionError, match="base64"):
            decrypt_value("not base64!!", data_dir)

    def test_truncated_ciphertext(self, data_dir: Path) -> None:
        encrypt_value("value", data_dir)
        with pytest.raises(SecretDecryptionError, match="too short"):
            decrypt_value("AAAA", data_dir)

    def test_tampered_ciphertext(self, data_dir: Path) -> None:
        """Flipping one bit fails GCM authentication."""
        raw = bytearray(base64.b64decode(encrypt_value("value", data_dir)))
        raw[-1] ^= 0x01
        with pytest.raises(SecretDecryptionError, match="authentication failed"):
            decrypt_value(base64.b64encode(bytes(raw)).decode(), data_dir)


class TestVaultConfig:
    """Tests for load/save/delete of vault-config.json."""

    def test_token_encrypted_on_disk(self, data_dir: Path) -> None:
        """The plaintext token never reaches the file; load restores it."""
        config = VaultConfig(
            backend=VaultBackend.REMOTE,
            address="https://v.example:8200",
            token="s.mytoken",
        )
        save_vault_config(data_dir, config)

        raw_bytes = (data_dir / VAULT_CONFIG_FILE).read_bytes()
        assert b"s.mytoken" not in raw_bytes
        assert json.loads(raw_bytes)["token"].startswith("enc:")

        loaded = load_vault_config(data_dir)
        assert loaded is not None
        assert loaded.token == "s.mytoken"
        assert loaded.address == "https://v.example:8200"
        assert loaded.is_remote

    def test_save_does_not_mutate_caller(self, data_dir: Path) -> None:
        config = VaultConfig(backend=VaultBackend.REMOTE, address="https://v", token="t")
        save_vault_config(data_dir, config)
        assert config.token == "t"

    def test_empty_token_written_verbatim(self, data_dir: Path) -> None:
        save_vault_config(data_dir, VaultConfig(backend=VaultBackend.DEV))
        raw = json.loads((data_dir / VAULT_CONFIG_FILE).read_text())
        assert raw["token"] == ""
        loaded = load_vault_config(data_dir)
        assert loaded is not None
        assert loaded.backend == VaultBackend.DEV

    def test_file_permissions(self, data_dir: Path) -> None:
        save_vault_config(data_dir, VaultConfig(backend="remote", address="https://v", token="t"))
        assert stat.S_IMODE((data_dir / VAULT_CONFIG_FILE).stat().st_mode) == 0o600
        assert stat.S_IMODE((data_dir / KEY_FILE_NAME).stat().st_mode) == 0o600

    @pytest.mark.parametrize(
        ("raw", "expected"),
        [("dev", VaultBackend.DEV), ("remote", VaultBackend.REMOTE), ("vault-remote", VaultBackend.REMOTE)],
    )
    def test_backend_aliases(self, raw: str, expected: VaultBackend) -> None:
        assert VaultConfig(backend=raw).backend == expected

    def test_missing_file_returns_none(self, data_dir: Path) -> None:
        assert load_vault_config(data_dir) is None

    def test_unparseable_json(self, data_dir: Path) -> None:
        data_dir.mkdir(parents=True)
        (data_dir / VAULT_CONFIG_FILE).write_text("{not json")
        with pytest.raises(VaultConfigError):
            load_vault_config(data_dir)

    def test_unknown_backend(self, data_dir: Path) -> None:
        data_dir.mkdir(parents=True)
        (data_dir / VAULT_CONFIG_FILE).write_text(json.dumps({"backend": "etcd"}))
        with pytest.raises(VaultConfigError):
            load_vault_config(data_dir)

    def test_undecryptable_token(self, data_dir: Path) -> None:
        """An enc: token that cannot be opened aborts the load."""
        save_vault_config(data_dir, VaultConfig(backend="remote", address="https://v", token="t"))
        path = data_dir / VAULT_CONFIG_FILE
        raw = json.loads(path.read_text())
        raw["token"] = "enc:" + "A" * 40
        path.write_text(json.dumps(raw))

        with pytest.raises(SecretDecryptionError, match="vault token"):
            load_vault_config(data_dir)

    def test_delete_is_idempotent(self, data_dir: Path) -> None:
        save_vault_config(data_dir, VaultConfig(backend="dev"))
        delete_vault_config(data_dir)
        delete_vault_config(data_dir)
        assert load_vault_config(data_dir) is None
