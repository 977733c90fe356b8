"""Shared test configuration for ratchet-plugin tests.

Provides:
- A temporary SQLite store with the plugin schema applied
- An in-memory secret provider seeded with test secrets
- A fully wired PluginContext rooted in a temporary data directory
"""

from collections.abc import AsyncIterator
from pathlib import Path

import pytest

from ratchet_plugin import PluginContext, PluginSettings, plugin_lifespan
from ratchet_plugin.audit import DictServiceRegistry
from ratchet_plugin.secrets import MemorySecretProvider
from ratchet_plugin.store import SqliteStore, StoreConfig, apply_schema

TEST_SECRETS = {
    "openai_key": "sk-test-openai-0123456789abcdef",
    "anthropic_key": "sk-ant-REDACTED",
    "github_webhook": "gh-hook-secret",
}


@pytest.fixture
def data_dir(tmp_path: Path) -> Path:
    """Data directory for key files, vault config and file-backed secrets."""
    return tmp_path / "data"


@pytest.fixture
async def store(tmp_path: Path) -> AsyncIterator[SqliteStore]:
    """Connected SQLite store with every plugin table created."""
    store = SqliteStore()
    await store.connect(StoreConfig(path=str(tmp_path / "ratchet.db")))
    await apply_schema(store)
    yield store
    await store.disconnect()


@pytest.fixture
def memory_provider() -> MemorySecretProvider:
    return MemorySecretProvider(dict(TEST_SECRETS))


@pytest.fixture
def settings(data_dir: Path) -> PluginSettings:
    return PluginSettings(data_dir=data_dir)


@pytest.fixture
async def plugin(settings: PluginSettings) -> AsyncIterator[PluginContext]:
    """PluginContext wired by plugin_lifespan against a temporary data dir."""
    async with plugin_lifespan(settings, DictServiceRegistry()) as ctx:
        yield ctx
