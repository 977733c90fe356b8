"""Plugin settings.

Configuration file location priority:
1. Explicit path passed to SettingsLoader
2. RATCHET_CONFIG environment variable
3. Standard location: ~/.ratchet/config.yml
4. Built-in defaults (if no config file found)

Environment variables override values from the file:

    RATCHET_ENV                  environment
    RATCHET_DATA_DIR             data_dir
    RATCHET_DB_PATH              db_path
    RATCHET_AUTH_TOKEN           auth_token
    RATCHET_DEFAULT_TOOL_POLICY  default_tool_policy
    RATCHET_CORS_ORIGIN          cors_origin

Example config file:
```yaml
environment: production
data_dir: /var/lib/ratchet
default_tool_policy: deny
slack_max_age: 300
```
"""

from __future__ import annotations

import logging
import os
from collections.abc import Mapping
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field, ValidationError

from .policy import PolicyAction

logger = logging.getLogger(__name__)

ENV_OVERRIDES = {
    "RATCHET_ENV": "environment",
    "RATCHET_DATA_DIR": "data_dir",
    "RATCHET_DB_PATH": "db_path",
    "RATCHET_AUTH_TOKEN": "auth_token",
    "RATCHET_DEFAULT_TOOL_POLICY": "default_tool_policy",
    "RATCHET_CORS_ORIGIN": "cors_origin",
}


class PluginSettings(BaseModel):
    """Settings shared by every component of the plugin."""

    environment: str = Field(default="development", description="Deployment environment name")
    data_dir: Path = Field(
        default=Path("data"),
        description="Directory for vault-config.json, the key file and file-backed secrets",
    )
    db_path: str = Field(default="", description="SQLite database path (default <data_dir>/ratchet.db)")
    auth_token: str = Field(default="", description="Host API auth token; only inspected by the audit")
    default_tool_policy: PolicyAction = Field(
        default=PolicyAction.DENY, description="Decision when no tool policy matches"
    )
    cors_origin: str = ""
    slack_max_age: float = Field(default=300, gt=0, description="Allowed Slack timestamp skew (seconds)")

    @property
    def is_production(self) -> bool:
        return self.environment.lower() == "production"

    @property
    def database_path(self) -> str:
        return self.db_path or str(self.data_dir / "ratchet.db")

    @property
    def secrets_dir(self) -> Path:
        return self.data_dir / "secrets"


class SettingsLoader:
    """Locate, parse and validate plugin settings.

    Args:
        config_path: Explicit path to a YAML config file
        environ: Environment mapping (defaults to os.environ)
    """

    def __init__(
        self, config_path: str | Path | None = None, environ: Mapping[str, str] | None = None
    ) -> None:
        self._explicit_path = Path(config_path) if config_path else None
        self._environ = environ if environ is not None else os.environ

    def get_config_path(self) -> Path | None:
        if self._explicit_path:
            if self._explicit_path.exists():
                return self._explicit_path
            logger.warning(f"Explicit config path does not exist: {self._explicit_path}")
            return None

        env_path_str = self._environ.get("RATCHET_CONFIG")
        if env_path_str:
            env_path = Path(env_path_str).expanduser()
            if env_path.exists():
                return env_path
            logger.warning(f"RATCHET_CONFIG path does not exist: {env_path}")
            return None

        standard_path = Path.home() / ".ratchet" / "config.yml"
        if standard_path.exists():
            return standard_path
        return None

    def _read_file(self, path: Path) -> dict[str, Any]:
        with open(path, encoding="utf-8") as f:
            raw = yaml.safe_load(f)
        if raw is None:
            return {}
        if not isinstance(raw, dict):
            raise ValueError("Config file must contain a YAML dictionary")
        return raw

    def load(self) -> PluginSettings:
        """Build settings from file, then environment overrides.

        Raises:
            ValueError: If the file or an override is invalid (the message names the file)
        """
        config_path = self.get_config_path()
        source = str(config_path) if config_path else "environment"
        try:
            values = self._read_file(config_path) if config_path else {}
            for env_name, field_name in ENV_OVERRIDES.items():
                if env_name in self._environ:
                    values[field_name] = self._environ[env_name]
            settings = PluginSettings(**values)
        except (OSError, yaml.YAMLError, ValueError, ValidationError) as e:
            raise ValueError(f"Failed to load plugin settings from {source}: {e}") from e

        if config_path:
            logger.info(f"Loaded plugin settings from: {config_path}")
        return settings
