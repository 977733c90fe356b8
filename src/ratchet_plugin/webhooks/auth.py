"""Inbound webhook authentication.

Pure functions: no store access, no secret lookup. Callers resolve the
secret and pass the raw request body exactly as received.

Signature formats:
    github, generic   sha256=<hex HMAC-SHA256(secret, body)>
    slack             v0=<hex HMAC-SHA256(secret, "v0:<timestamp>:" + body)>

Slack requests must carry ``X-Slack-Request-Timestamp``; requests older than
``max_age`` seconds are rejected to stop replays.
"""

from __future__ import annotations

import hashlib
import hmac
import time
from collections.abc import Mapping
from enum import Enum
from typing import Any

SLACK_MAX_AGE_SECONDS = 300

SIGNATURE_HEADERS = {
    "github": "X-Hub-Signature-256",
    "slack": "X-Slack-Signature",
    "generic": "X-Webhook-Signature",
}
SLACK_TIMESTAMP_HEADER = "X-Slack-Request-Timestamp"
GITHUB_EVENT_HEADER = "X-GitHub-Event"


class WebhookSource(str, Enum):
    GITHUB = "github"
    SLACK = "slack"
    GENERIC = "generic"


def header_value(headers: Mapping[str, str], name: str) -> str:
    """Case-insensitive header lookup; missing headers read as ''."""
    if name in headers:
        return headers[name]
    lowered = name.lower()
    for key, value in headers.items():
        if key.lower() == lowered:
            return value
    return ""


def _hex_hmac(secret: str, message: bytes) -> str:
    return hmac.new(secret.encode("utf-8"), message, hashlib.sha256).hexdigest()


def sign(source: str, secret: str, body: bytes, timestamp: str = "") -> str:
    """Produce the signature header value a sender would attach."""
    if source == WebhookSource.SLACK:
        return "v0=" + _hex_hmac(secret, b"v0:" + timestamp.encode("utf-8") + b":" + body)
    return "sha256=" + _hex_hmac(secret, body)


def verify_signature(
    source: str,
    secret: str,
    body: bytes,
    signature: str,
    timestamp: str = "",
    max_age: float | None = SLACK_MAX_AGE_SECONDS,
    now: float | None = None,
) -> bool:
    """Check a webhook signature in constant time.

    An empty ``secret`` accepts every request. With a secret configured, a
    missing signature is rejected. Mismatches return False rather than raise.

    Args:
        source: github, slack or generic (unknown sources use the generic format)
        secret: Shared HMAC secret
        body: Raw request body
        signature: Value of the source's signature header
        timestamp: Slack request timestamp (required for slack)
        max_age: Maximum Slack timestamp skew in seconds; None disables the check
        now: Current unix time, for tests
    """
    if not secret:
        return True
    if not signature:
        return False

    if source == WebhookSource.SLACK:
        if not timestamp:
            return False
        if max_age is not None:
            try:
                sent = float(timestamp)
            except ValueError:
                return False
            current = time.time() if now is None else now
            if abs(current - sent) > max_age:
                return False
        provided = signature.removeprefix("v0=")
        expected = _hex_hmac(secret, b"v0:" + timestamp.encode("utf-8") + b":" + body)
    else:
        provided = signature.removeprefix("sha256=")
        expected = _hex_hmac(secret, body)

    return hmac.compare_digest(provided.encode("utf-8"), expected.encode("utf-8"))


def extract_event_type(
    source: str, headers: Mapping[str, str], payload: Mapping[str, Any]
) -> str:
    """Derive a normalised event type.

    github   X-GitHub-Event, suffixed with ".<action>" when the body has one
    slack    payload.event.type, else payload.type
    generic  payload.type
    """
    if source == WebhookSource.GITHUB:
        event = header_value(headers, GITHUB_EVENT_HEADER)
        if not event:
            return ""
        action = payload.get("action")
        if isinstance(action, str) and action:
            return f"{event}.{action}"
        return event

    if source == WebhookSource.SLACK:
        event = payload.get("event")
        if isinstance(event, Mapping) and isinstance(event.get("type"), str):
            return event["type"]

    event_type = payload.get("type")
    return event_type if isinstance(event_type, str) else ""


def matches_filter(event_type: str, filter: str) -> bool:
    """Case-insensitive match of ``event_type`` against a webhook filter.

    "issues" matches "issues" and "issues.opened"; an empty filter matches
    everything; an empty event type never matches a non-empty filter.
    """
    if not filter:
        return True
    if not event_type:
        return False
    event_lower = event_type.lower()
    filter_lower = filter.lower()
    return event_lower == filter_lower or event_lower.startswith(filter_lower + ".")
