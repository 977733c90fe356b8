"""Webhook registrations stored in ``webhooks`` and the request intake path.

``authenticate`` turns a raw inbound request into a WebhookEvent:

1. refuse disabled webhooks
2. resolve ``secret_name`` through the current SecretProvider
3. verify the source-specific signature over the raw body
4. parse the body and derive the event type
5. apply the webhook's event filter
"""

from __future__ import annotations

import json
import logging
import uuid
from collections.abc import Callable, Mapping
from typing import Any

from pydantic import BaseModel, Field, ValidationError, field_validator

from ..exceptions import InvalidWebhookError, WebhookNotFoundError, WebhookRejectedError
from ..secrets import SecretNotFoundError, SecretProvider
from ..store import Store
from .auth import (
    SIGNATURE_HEADERS,
    SLACK_MAX_AGE_SECONDS,
    SLACK_TIMESTAMP_HEADER,
    WebhookSource,
    extract_event_type,
    header_value,
    matches_filter,
    verify_signature,
)

logger = logging.getLogger(__name__)

_COLUMNS = "id, name, source, secret_name, filter, task_template, enabled, created_at"


class Webhook(BaseModel):
    """One registered webhook. An empty ``secret_name`` disables verification."""

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    name: str
    source: WebhookSource = WebhookSource.GENERIC
    secret_name: str = ""
    filter: str = ""
    task_template: str = ""
    enabled: bool = True
    created_at: str = ""

    @field_validator("name")
    @classmethod
    def require_name(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("name must not be empty")
        return v.strip()

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> Webhook:
        return cls(
            id=row["id"],
            name=row["name"],
            source=row.get("source") or WebhookSource.GENERIC,
            secret_name=row.get("secret_name") or "",
            filter=row.get("filter") or "",
            task_template=row.get("task_template") or "",
            enabled=bool(row.get("enabled")),
            created_at=str(row.get("created_at") or ""),
        )


class WebhookEvent(BaseModel):
    """An authenticated, filtered inbound event ready to become a task."""

    webhook_id: str
    webhook_name: str
    source: WebhookSource
    event_type: str
    payload: dict[str, Any]
    task_template: str = ""


def parse_payload(body: bytes) -> dict[str, Any]:
    """Decode a JSON object body. Anything else is wrapped as ``{"raw": text}``."""
    if not body:
        return {}
    text = body.decode("utf-8", errors="replace")
    try:
        data = json.loads(text)
    except json.JSONDecodeError:
        return {"raw": text}
    return data if isinstance(data, dict) else {"raw": text}


class WebhookManager:
    """CRUD over ``webhooks`` plus signature-checked intake.

    Attributes:
        store: Store holding ``webhooks``
        slack_max_age: Accepted Slack timestamp skew in seconds
    """

    def __init__(
        self,
        store: Store,
        secrets: Callable[[], SecretProvider],
        slack_max_age: float = SLACK_MAX_AGE_SECONDS,
    ) -> None:
        self.store = store
        # resolved per request so a vault swap takes effect immediately
        self._secrets = secrets
        self.slack_max_age = slack_max_age

    async def create(
        self,
        name: str,
        source: WebhookSource | str = WebhookSource.GENERIC,
        secret_name: str = "",
        filter: str = "",
        task_template: str = "",
        enabled: bool = True,
    ) -> Webhook:
        """Register a webhook.

        Raises:
            InvalidWebhookError: If the name is empty or the source is unknown
            StoreError: If the insert fails
        """
        try:
            webhook = Webhook(
                name=name,
                source=source or WebhookSource.GENERIC,
                secret_name=secret_name,
                filter=filter,
                task_template=task_template,
                enabled=enabled,
            )
        except ValidationError as e:
            raise InvalidWebhookError(f"webhook: invalid definition: {e}") from e

        await self.store.execute(
            "INSERT INTO webhooks (id, name, source, secret_name, filter, task_template, enabled) "
            "VALUES (?, ?, ?, ?, ?, ?, ?)",
            (
                webhook.id,
                webhook.name,
                webhook.source.value,
                webhook.secret_name,
                webhook.filter,
                webhook.task_template,
                int(webhook.enabled),
            ),
        )
        if not webhook.secret_name:
            logger.warning(
                f"Webhook '{webhook.name}' has no secret; requests will not be verified"
            )
        logger.info(f"Created {webhook.source.value} webhook '{webhook.name}' ({webhook.id})")
        return await self.get(webhook.id)

    async def get(self, webhook_id: str) -> Webhook:
        result = await self.store.query(
            f"SELECT {_COLUMNS} FROM webhooks WHERE id = ?", (webhook_id,)
        )
        row = result.first()
        if row is None:
            raise WebhookNotFoundError(webhook_id)
        return Webhook.from_row(row)

    async def delete(self, webhook_id: str) -> None:
        result = await self.store.execute("DELETE FROM webhooks WHERE id = ?", (webhook_id,))
        if result.affected_rows == 0:
            raise WebhookNotFoundError(webhook_id)
        logger.info(f"Deleted webhook '{webhook_id}'")

    async def list(self) -> list[Webhook]:
        result = await self.store.query(
            f"SELECT {_COLUMNS} FROM webhooks ORDER BY created_at, rowid"
        )
        return [Webhook.from_row(row) for row in result.rows]

    async def get_by_source(self, source: WebhookSource | str) -> list[Webhook]:
        """Enabled webhooks registered for ``source``."""
        value = source.value if isinstance(source, WebhookSource) else source
        result = await self.store.query(
            f"SELECT {_COLUMNS} FROM webhooks WHERE source = ? AND enabled = 1 "
            "ORDER BY created_at, rowid",
            (value,),
        )
        return [Webhook.from_row(row) for row in result.rows]

    async def _resolve_secret(self, webhook: Webhook) -> str:
        if not webhook.secret_name:
            return ""
        try:
            return await self._secrets().get_secret(webhook.secret_name)
        except SecretNotFoundError as e:
            # a configured but missing secret must not downgrade to "no verification"
            logger.error(
                f"Secret '{webhook.secret_name}' for webhook '{webhook.name}' not found"
            )
            raise WebhookRejectedError(webhook.id, "webhook secret unavailable") from e

    async def authenticate(
        self,
        webhook: Webhook,
        headers: Mapping[str, str],
        body: bytes,
        now: float | None = None,
    ) -> WebhookEvent:
        """Verify and filter one inbound request for ``webhook``.

        Args:
            webhook: Target webhook
            headers: Request headers (looked up case-insensitively)
            body: Raw request body, exactly as received
            now: Current unix time, for tests

        Raises:
            WebhookRejectedError: If the webhook is disabled, its secret is
                unavailable, the signature is invalid, or the event is filtered out
            SecretProviderError: If the secrets backend fails
        """
        if not webhook.enabled:
            raise WebhookRejectedError(webhook.id, "webhook disabled")

        secret = await self._resolve_secret(webhook)
        source = webhook.source.value
        signature = header_value(headers, SIGNATURE_HEADERS[source])
        timestamp = header_value(headers, SLACK_TIMESTAMP_HEADER)
        if not verify_signature(
            source,
            secret,
            body,
            signature,
            timestamp=timestamp,
            max_age=self.slack_max_age,
            now=now,
        ):
            logger.warning(f"Rejected request for webhook '{webhook.name}': invalid signature")
            raise WebhookRejectedError(webhook.id, "invalid signature")

        payload = parse_payload(body)
        event_type = extract_event_type(source, headers, payload)
        if not matches_filter(event_type, webhook.filter):
            logger.debug(
                f"Webhook '{webhook.name}' ignored event '{event_type}' (filter: {webhook.filter})"
            )
            raise WebhookRejectedError(
                webhook.id, f"event '{event_type}' does not match filter"
            )

        return WebhookEvent(
            webhook_id=webhook.id,
            webhook_name=webhook.name,
            source=webhook.source,
            event_type=event_type,
            payload=payload,
            task_template=webhook.task_template,
        )

    async def dispatch(
        self,
        source: WebhookSource | str,
        headers: Mapping[str, str],
        body: bytes,
        now: float | None = None,
    ) -> list[WebhookEvent]:
        """Authenticate a request against every enabled webhook for ``source``.

        Returns:
            One event per webhook that accepted the request
        """
        events: list[WebhookEvent] = []
        for webhook in await self.get_by_source(source):
            try:
                events.append(await self.authenticate(webhook, headers, body, now=now))
            except WebhookRejectedError as e:
                logger.debug(f"Webhook '{webhook.name}' skipped: {e.reason}")
        return events
