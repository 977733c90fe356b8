"""Read-only view of the host's named services.

The audit inspects host services by duck typing, the same way the host
exposes them: a service may offer ``name()``, ``is_auth_middleware()``,
``allowed_origins()`` or ``secret()``. Nothing in the plugin core resolves
collaborators through this registry.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any, Protocol, runtime_checkable


@runtime_checkable
class ServiceRegistry(Protocol):
    def lookup(self, name: str) -> Any | None:  # noqa: ANN401
        ...

    def names(self) -> list[str]:
        ...


class DictServiceRegistry:
    """ServiceRegistry backed by a plain dict."""

    def __init__(self, services: Mapping[str, Any] | None = None) -> None:
        self._services: dict[str, Any] = dict(services or {})

    def register(self, name: str, service: Any) -> None:  # noqa: ANN401
        self._services[name] = service

    def unregister(self, name: str) -> None:
        self._services.pop(name, None)

    def lookup(self, name: str) -> Any | None:  # noqa: ANN401
        return self._services.get(name)

    def names(self) -> list[str]:
        return sorted(self._services)

    def items(self) -> list[tuple[str, Any]]:
        return sorted(self._services.items())


def call_capability(service: Any, attr: str) -> Any | None:  # noqa: ANN401
    """Return ``service.attr()`` if the service offers it, else None.

    Plain attributes are returned as-is so simple config objects qualify too.
    """
    member = getattr(service, attr, None)
    if member is None:
        return None
    if callable(member):
        return member()
    return member
