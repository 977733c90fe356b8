"""Tests for settings loading: file discovery, environment overrides, validation."""

from pathlib import Path

import pytest

from ratchet_plugin import PluginSettings, SettingsLoader
from ratchet_plugin.policy import PolicyAction


@pytest.fixture(autouse=True)
def isolated_home(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Point ~ at an empty directory so a developer's config is never read."""
    home = tmp_path / "home"
    home.mkdir()
    monkeypatch.setenv("HOME", str(home))
    return home


def write_config(path: Path, text: str) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text)
    return path


class TestPluginSettings:
    def test_defaults(self) -> None:
        settings = PluginSettings()
        assert settings.environment == "development"
        assert settings.default_tool_policy == PolicyAction.DENY
        assert not settings.is_production
        assert settings.database_path == str(Path("data") / "ratchet.db")
        assert settings.secrets_dir == Path("data") / "secrets"

    def test_explicit_db_path(self) -> None:
        assert PluginSettings(db_path="/tmp/x.db").database_path == "/tmp/x.db"

    def test_production(self) -> None:
        assert PluginSettings(environment="Production").is_production


class TestSettingsLoader:
    def test_no_file_uses_defaults(self) -> None:
        loader = SettingsLoader(environ={})
        assert loader.get_config_path() is None
        assert loader.load() == PluginSettings()

    def test_explicit_path(self, tmp_path: Path) -> None:
        path = write_config(tmp_path / "ratchet.yml", "environment: staging\nslack_max_age: 60\n")
        settings = SettingsLoader(path, environ={}).load()
        assert settings.environment == "staging"
        assert settings.slack_max_age == 60

    def test_missing_explicit_path_falls_back_to_defaults(self, tmp_path: Path) -> None:
        loader = SettingsLoader(tmp_path / "nope.yml", environ={"RATCHET_CONFIG": "ignored"})
        assert loader.get_config_path() is None

    def test_env_path(self, tmp_path: Path) -> None:
        path = write_config(tmp_path / "env.yml", "environment: from-env-file\n")
        settings = SettingsLoader(environ={"RATCHET_CONFIG": str(path)}).load()
        assert settings.environment == "from-env-file"

    def test_explicit_path_beats_env_path(self, tmp_path: Path) -> None:
        explicit = write_config(tmp_path / "a.yml", "environment: explicit\n")
        env = write_config(tmp_path / "b.yml", "environment: env\n")
        settings = SettingsLoader(explicit, environ={"RATCHET_CONFIG": str(env)}).load()
        assert settings.environment == "explicit"

    def test_standard_location(self, isolated_home: Path) -> None:
        write_config(isolated_home / ".ratchet" / "config.yml", "environment: home\n")
        assert SettingsLoader(environ={}).load().environment == "home"

    def test_env_overrides_file(self, tmp_path: Path) -> None:
        path = write_config(
            tmp_path / "ratchet.yml",
            "environment: staging\ndefault_tool_policy: deny\ndata_dir: /from/file\n",
        )
        environ = {
            "RATCHET_ENV": "production",
            "RATCHET_DEFAULT_TOOL_POLICY": "allow",
            "RATCHET_DATA_DIR": str(tmp_path / "data"),
            "RATCHET_AUTH_TOKEN": "tok",
            "RATCHET_CORS_ORIGIN": "https://app.example",
        }
        settings = SettingsLoader(path, environ=environ).load()

        assert settings.is_production
        assert settings.default_tool_policy == PolicyAction.ALLOW
        assert settings.data_dir == tmp_path / "data"
        assert settings.auth_token == "tok"
        assert settings.cors_origin == "https://app.example"

    def test_empty_file(self, tmp_path: Path) -> None:
        path = write_config(tmp_path / "empty.yml", "")
        assert SettingsLoader(path, environ={}).load() == PluginSettings()

    @pytest.mark.parametrize(
        "text",
        [
            "- just\n- a list\n",
            "environment: [unclosed\n",
            "default_tool_policy: maybe\n",
            "slack_max_age: 0\n",
        ],
    )
    def test_invalid_file(self, tmp_path: Path, text: str) -> None:
        path = write_config(tmp_path / "bad.yml", text)
        with pytest.raises(ValueError, match="bad.yml"):
            SettingsLoader(path, environ={}).load()

    def test_invalid_env_override(self) -> None:
        with pytest.raises(ValueError, match="from environment"):
            SettingsLoader(environ={"RATCHET_DEFAULT_TOOL_POLICY": "sometimes"}).load()
