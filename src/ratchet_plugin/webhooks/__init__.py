"""Inbound webhook registrations and signature verification."""

from .auth import (
    SIGNATURE_HEADERS,
    SLACK_TIMESTAMP_HEADER,
    WebhookSource,
    extract_event_type,
    matches_filter,
    sign,
    verify_signature,
)
from .manager import Webhook, WebhookEvent, WebhookManager, parse_payload

__all__ = [
    "SIGNATURE_HEADERS",
    "SLACK_TIMESTAMP_HEADER",
    "Webhook",
    "WebhookEvent",
    "WebhookManager",
    "WebhookSource",
    "extract_event_type",
    "matches_filter",
    "parse_payload",
    "sign",
    "verify_signature",
]
