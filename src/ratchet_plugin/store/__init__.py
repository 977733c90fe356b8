"""Relational store used by the policy engine, provider registry, webhooks and audit."""

from .backend import Params, QueryResult, Store, StoreConfig
from .schema import apply_schema
from .sqlite import SqliteStore

__all__ = [
    "Params",
    "QueryResult",
    "SqliteStore",
    "Store",
    "StoreConfig",
    "apply_schema",
]
