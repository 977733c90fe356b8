"""Persistence for ``llm_providers`` rows."""

from __future__ import annotations

import logging
import uuid
from typing import Any

from pydantic import BaseModel, Field, field_validator

from ..exceptions import InvalidProviderError, ProviderNotFoundError
from ..store import Store

logger = logging.getLogger(__name__)

_COLUMNS = (
    "id, alias, type, model, secret_name, base_url, max_tokens, is_default, "
    "created_at, updated_at"
)


class ProviderRecord(BaseModel):
    """One configured LLM provider. ``alias`` is the caller-visible lookup key."""

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    alias: str
    type: str
    model: str = ""
    secret_name: str = ""
    base_url: str = ""
    max_tokens: int = 0
    is_default: bool = False
    created_at: str = ""
    updated_at: str = ""

    @field_validator("alias", "type")
    @classmethod
    def require_non_empty(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("must not be empty")
        return v.strip()

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> ProviderRecord:
        return cls(
            id=row["id"],
            alias=row["alias"],
            type=row["type"],
            model=row.get("model") or "",
            secret_name=row.get("secret_name") or "",
            base_url=row.get("base_url") or "",
            max_tokens=int(row.get("max_tokens") or 0),
            is_default=bool(row.get("is_default")),
            created_at=str(row.get("created_at") or ""),
            updated_at=str(row.get("updated_at") or ""),
        )


class ProviderStore:
    """CRUD over ``llm_providers``.

    Callers that hold cached clients should go through
    :class:`~ratchet_plugin.providers.registry.ProviderRegistry`, whose
    mutators invalidate the affected aliases.
    """

    def __init__(self, store: Store) -> None:
        self.store = store

    async def get(self, alias: str) -> ProviderRecord | None:
        result = await self.store.query(
            f"SELECT {_COLUMNS} FROM llm_providers WHERE alias = ?", (alias,)
        )
        row = result.first()
        return ProviderRecord.from_row(row) if row else None

    async def get_default(self) -> ProviderRecord | None:
        result = await self.store.query(
            f"SELECT {_COLUMNS} FROM llm_providers WHERE is_default = 1 "
            "ORDER BY updated_at DESC LIMIT 1"
        )
        row = result.first()
        return ProviderRecord.from_row(row) if row else None

    async def list(self) -> list[ProviderRecord]:
        result = await self.store.query(
            f"SELECT {_COLUMNS} FROM llm_providers WHERE status != 'deleted' ORDER BY alias"
        )
        return [ProviderRecord.from_row(row) for row in result.rows]

    async def add(self, record: ProviderRecord) -> ProviderRecord:
        """Insert a provider; a default flag clears it from every other row.

        Raises:
            InvalidProviderError: If the alias is already taken
        """
        if await self.get(record.alias) is not None:
            raise InvalidProviderError(f"provider alias '{record.alias}' already exists")

        await self.store.begin_transaction("immediate")
        try:
            if record.is_default:
                await self.store.execute("UPDATE llm_providers SET is_default = 0")
            await self.store.execute(
                "INSERT INTO llm_providers "
                "(id, alias, type, model, secret_name, base_url, max_tokens, is_default) "
                "VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
                (
                    record.id,
                    record.alias,
                    record.type,
                    record.model,
                    record.secret_name,
                    record.base_url,
                    record.max_tokens,
                    int(record.is_default),
                ),
            )
            await self.store.commit()
        except BaseException:
            await self.store.rollback()
            raise

        logger.info(f"Added provider '{record.alias}' (type: {record.type})")
        stored = await self.get(record.alias)
        if stored is None:
            raise ProviderNotFoundError(record.alias)
        return stored

    async def update(self, alias: str, **changes: Any) -> ProviderRecord:
        """Update mutable fields of a provider.

        Accepted keys: type, model, secret_name, base_url, max_tokens.

        Raises:
            ProviderNotFoundError: If the alias does not exist
            InvalidProviderError: If an unknown field is supplied
        """
        allowed = {"type", "model", "secret_name", "base_url", "max_tokens"}
        unknown = set(changes) - allowed
        if unknown:
            raise InvalidProviderError(f"cannot update fields: {', '.join(sorted(unknown))}")

        current = await self.get(alias)
        if current is None:
            raise ProviderNotFoundError(alias)
        updated = current.model_copy(update=changes)
        # Re-run validation on the merged record
        updated = ProviderRecord.model_validate(updated.model_dump())

        await self.store.execute(
            "UPDATE llm_providers SET type = ?, model = ?, secret_name = ?, base_url = ?, "
            "max_tokens = ?, updated_at = datetime('now') WHERE alias = ?",
            (
                updated.type,
                updated.model,
                updated.secret_name,
                updated.base_url,
                updated.max_tokens,
                alias,
            ),
        )
        stored = await self.get(alias)
        if stored is None:
            raise ProviderNotFoundError(alias)
        return stored

    async def remove(self, alias: str) -> None:
        result = await self.store.execute("DELETE FROM llm_providers WHERE alias = ?", (alias,))
        if result.affected_rows == 0:
            raise ProviderNotFoundError(alias)
        logger.info(f"Removed provider '{alias}'")

    async def set_default(self, alias: str) -> list[str]:
        """Make ``alias`` the only default provider.

        Returns:
            Aliases whose default flag changed (previous default and ``alias``)
        """
        previous = await self.get_default()
        await self.store.begin_transaction("immediate")
        try:
            await self.store.execute("UPDATE llm_providers SET is_default = 0 WHERE is_default = 1")
            result = await self.store.execute(
                "UPDATE llm_providers SET is_default = 1, updated_at = datetime('now') "
                "WHERE alias = ?",
                (alias,),
            )
            if result.affected_rows == 0:
                raise ProviderNotFoundError(alias)
            await self.store.commit()
        except BaseException:
            await self.store.rollback()
            raise

        changed = [alias]
        if previous is not None and previous.alias != alias:
            changed.append(previous.alias)
        return changed
