"""ratchet-plugin: tool-access policy, secrets plane, provider registry,
webhook authentication and security self-audit for an agent platform."""

from .config import PluginSettings, SettingsLoader
from .context import PluginContext, plugin_lifespan
from .exceptions import RatchetError, StoreError

__version__ = "0.1.0"

__all__ = [
    "PluginContext",
    "PluginSettings",
    "RatchetError",
    "SettingsLoader",
    "StoreError",
    "__version__",
    "plugin_lifespan",
]
