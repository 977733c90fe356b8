"""Tests for webhook signature verification and the webhook manager.

Tests cover:
1. HMAC verification for github, slack and generic sources
2. Slack replay protection via the request timestamp
3. Event type extraction and filter matching
4. Webhook CRUD and the authenticate/dispatch intake path
"""

import json

import pytest

from ratchet_plugin.exceptions import (
    InvalidWebhookError,
    WebhookNotFoundError,
    WebhookRejectedError,
)
from ratchet_plugin.secrets import MemorySecretProvider
from ratchet_plugin.store import SqliteStore
from ratchet_plugin.webhooks import (
    SIGNATURE_HEADERS,
    SLACK_TIMESTAMP_HEADER,
    WebhookManager,
    WebhookSource,
    extract_event_type,
    matches_filter,
    parse_payload,
    sign,
    verify_signature,
)

NOW = 1_700_000_000.0
TIMESTAMP = str(int(NOW))
BODY = b'{"action":"opened"}'


def flip_bit(data: bytes, index: int) -> bytes:
    changed = bytearray(data)
    changed[index] ^= 0x01
    return bytes(changed)


class TestVerifySignature:
    def test_github_signature(self) -> None:
        signature = sign("github", "S", BODY)
        assert signature.startswith("sha256=")
        assert verify_signature("github", "S", BODY, signature)
        assert not verify_signature("github", "S", flip_bit(BODY, 3), signature)

    @pytest.mark.parametrize("source", ["github", "slack", "generic"])
    def test_one_bit_change_fails(self, source: str) -> None:
        signature = sign(source, "secret", BODY, TIMESTAMP)
        assert verify_signature(source, "secret", BODY, signature, TIMESTAMP, now=NOW)
        for index in range(len(BODY)):
            assert not verify_signature(
                source, "secret", flip_bit(BODY, index), signature, TIMESTAMP, now=NOW
            )

    @pytest.mark.parametrize("source", ["github", "slack", "generic"])
    def test_empty_secret_accepts(self, source: str) -> None:
        assert verify_signature(source, "", b"anything", "")
        assert verify_signature(source, "", b"anything", "sha256=garbage")

    @pytest.mark.parametrize("source", ["github", "slack", "generic"])
    def test_missing_signature_rejected(self, source: str) -> None:
        assert not verify_signature(source, "secret", BODY, "", TIMESTAMP, now=NOW)

    def test_wrong_secret(self) -> None:
        assert not verify_signature("generic", "other", BODY, sign("generic", "secret", BODY))

    def test_bare_hex_accepted(self) -> None:
        signature = sign("generic", "secret", BODY).removeprefix("sha256=")
        assert verify_signature("generic", "secret", BODY, signature)

    def test_non_hex_signature(self) -> None:
        assert not verify_signature("github", "secret", BODY, "sha256=ünïcode")

    def test_slack_base_string(self) -> None:
        signature = sign("slack", "secret", BODY, TIMESTAMP)
        assert signature.startswith("v0=")
        # the plain-body HMAC is not a valid slack signature
        plain = sign("generic", "secret", BODY).removeprefix("sha256=")
        assert not verify_signature("slack", "secret", BODY, "v0=" + plain, TIMESTAMP, now=NOW)

    def test_slack_requires_timestamp(self) -> None:
        signature = sign("slack", "secret", BODY, "")
        assert not verify_signature("slack", "secret", BODY, signature, "", now=NOW)

    def test_slack_stale_timestamp(self) -> None:
        signature = sign("slack", "secret", BODY, TIMESTAMP)
        assert verify_signature("slack", "secret", BODY, signature, TIMESTAMP, now=NOW + 299)
        assert not verify_signature("slack", "secret", BODY, signature, TIMESTAMP, now=NOW + 301)
        assert not verify_signature("slack", "secret", BODY, signature, TIMESTAMP, now=NOW - 301)

    def test_slack_timestamp_tampering(self) -> None:
        signature = sign("slack", "secret", BODY, TIMESTAMP)
        later = str(int(NOW) + 10)
        assert not verify_signature("slack", "secret", BODY, signature, later, now=NOW)

    def test_slack_non_numeric_timestamp(self) -> None:
        signature = sign("slack", "secret", BODY, "soon")
        assert not verify_signature("slack", "secret", BODY, signature, "soon", now=NOW)
        assert verify_signature("slack", "secret", BODY, signature, "soon", max_age=None)


class TestEventType:
    def test_github_with_action(self) -> None:
        headers = {"x-github-event": "issues"}
        assert extract_event_type("github", headers, {"action": "opened"}) == "issues.opened"

    def test_github_without_action(self) -> None:
        assert extract_event_type("github", {"X-GitHub-Event": "push"}, {}) == "push"
        assert extract_event_type("github", {"X-GitHub-Event": "push"}, {"action": 3}) == "push"

    def test_github_missing_header(self) -> None:
        assert extract_event_type("github", {}, {"action": "opened"}) == ""

    def test_slack(self) -> None:
        assert extract_event_type("slack", {}, {"event": {"type": "app_mention"}}) == "app_mention"
        assert extract_event_type("slack", {}, {"type": "url_verification"}) == "url_verification"

    def test_generic(self) -> None:
        assert extract_event_type("generic", {}, {"type": "deploy"}) == "deploy"
        assert extract_event_type("generic", {}, {"event": {"type": "x"}}) == ""


class TestMatchesFilter:
    @pytest.mark.parametrize(
        ("event_type", "filter", "expected"),
        [
            ("issues", "", True),
            ("", "", True),
            ("", "issues", False),
            ("issues", "issues", True),
            ("issues.opened", "issues", True),
            ("Issues.Opened", "ISSUES", True),
            ("issues_comment", "issues", False),
            ("issues", "issues.opened", False),
            ("issues.opened", "issues.opened", True),
        ],
    )
    def test_matches(self, event_type: str, filter: str, expected: bool) -> None:
        assert matches_filter(event_type, filter) is expected


class TestParsePayload:
    def test_json_object(self) -> None:
        assert parse_payload(b'{"a": 1}') == {"a": 1}

    def test_empty(self) -> None:
        assert parse_payload(b"") == {}

    def test_non_json(self) -> None:
        assert parse_payload(b"payload=x") == {"raw": "payload=x"}

    def test_json_array(self) -> None:
        assert parse_payload(b"[1, 2]") == {"raw": "[1, 2]"}


@pytest.fixture
def secrets() -> MemorySecretProvider:
    return MemorySecretProvider({"gh": "gh-secret", "slack": "slack-secret"})


@pytest.fixture
def manager(store: SqliteStore, secrets: MemorySecretProvider) -> WebhookManager:
    return WebhookManager(store, lambda: secrets)


def github_headers(body: bytes, event: str = "issues", secret: str = "gh-secret") -> dict[str, str]:
    return {
        "X-GitHub-Event": event,
        SIGNATURE_HEADERS["github"]: sign("github", secret, body),
    }


class TestWebhookManager:
    @pytest.mark.asyncio
    async def test_create_and_get(self, manager: WebhookManager) -> None:
        webhook = await manager.create("ci", secret_name="gh")

        assert webhook.source == WebhookSource.GENERIC
        assert webhook.enabled
        assert webhook.created_at
        assert (await manager.get(webhook.id)).name == "ci"

    @pytest.mark.parametrize(("name", "source"), [("", "github"), ("x", "gitlab")])
    @pytest.mark.asyncio
    async def test_create_invalid(self, manager: WebhookManager, name: str, source: str) -> None:
        with pytest.raises(InvalidWebhookError):
            await manager.create(name, source=source)
        assert await manager.list() == []

    @pytest.mark.asyncio
    async def test_delete(self, manager: WebhookManager) -> None:
        webhook = await manager.create("ci")
        await manager.delete(webhook.id)
        with pytest.raises(WebhookNotFoundError):
            await manager.get(webhook.id)
        with pytest.raises(WebhookNotFoundError):
            await manager.delete(webhook.id)

    @pytest.mark.asyncio
    async def test_get_by_source_only_enabled(self, manager: WebhookManager) -> None:
        await manager.create("on", source="github")
        await manager.create("off", source="github", enabled=False)
        await manager.create("other", source="slack")

        assert [w.name for w in await manager.get_by_source("github")] == ["on"]
        assert [w.name for w in await manager.list()] == ["on", "off", "other"]

    @pytest.mark.asyncio
    async def test_authenticate_github(self, manager: WebhookManager) -> None:
        webhook = await manager.create(
            "issues", source="github", secret_name="gh", filter="issues", task_template="triage"
        )
        body = json.dumps({"action": "opened", "issue": {"number": 7}}).encode()

        event = await manager.authenticate(webhook, github_headers(body), body)

        assert event.event_type == "issues.opened"
        assert event.payload["issue"] == {"number": 7}
        assert event.task_template == "triage"
        assert event.webhook_id == webhook.id

    @pytest.mark.asyncio
    async def test_authenticate_slack(self, manager: WebhookManager) -> None:
        webhook = await manager.create("bot", source="slack", secret_name="slack")
        body = json.dumps({"event": {"type": "app_mention"}}).encode()
        headers = {
            SLACK_TIMESTAMP_HEADER: TIMESTAMP,
            SIGNATURE_HEADERS["slack"]: sign("slack", "slack-secret", body, TIMESTAMP),
        }

        event = await manager.authenticate(webhook, headers, body, now=NOW + 5)
        assert event.event_type == "app_mention"

        with pytest.raises(WebhookRejectedError, match="invalid signature"):
            await manager.authenticate(webhook, headers, body, now=NOW + 600)

    @pytest.mark.asyncio
    async def test_authenticate_bad_signature(self, manager: WebhookManager) -> None:
        webhook = await manager.create("ci", source="github", secret_name="gh")
        headers = github_headers(BODY, secret="wrong")

        with pytest.raises(WebhookRejectedError) as exc_info:
            await manager.authenticate(webhook, headers, BODY)
        assert exc_info.value.reason == "invalid signature"
        assert exc_info.value.webhook_id == webhook.id

    @pytest.mark.asyncio
    async def test_authenticate_filtered_out(self, manager: WebhookManager) -> None:
        webhook = await manager.create("ci", source="github", secret_name="gh", filter="push")
        with pytest.raises(WebhookRejectedError, match="does not match filter"):
            await manager.authenticate(webhook, github_headers(BODY), BODY)

    @pytest.mark.asyncio
    async def test_authenticate_disabled(self, manager: WebhookManager) -> None:
        webhook = await manager.create("ci", enabled=False)
        with pytest.raises(WebhookRejectedError, match="webhook disabled"):
            await manager.authenticate(webhook, {}, BODY)

    @pytest.mark.asyncio
    async def test_missing_secret_rejects(self, manager: WebhookManager) -> None:
        """A configured secret that cannot be found does not disable verification."""
        webhook = await manager.create("ci", source="github", secret_name="deleted")
        with pytest.raises(WebhookRejectedError, match="secret unavailable"):
            await manager.authenticate(webhook, github_headers(BODY), BODY)

    @pytest.mark.asyncio
    async def test_no_secret_accepts_unsigned(self, manager: WebhookManager) -> None:
        webhook = await manager.create("open", source="generic")
        event = await manager.authenticate(webhook, {}, b'{"type": "ping"}')
        assert event.event_type == "ping"

    @pytest.mark.asyncio
    async def test_secret_source_followed_per_request(
        self, store: SqliteStore, secrets: MemorySecretProvider
    ) -> None:
        current = {"provider": secrets}
        manager = WebhookManager(store, lambda: current["provider"])
        webhook = await manager.create("ci", source="github", secret_name="gh")

        current["provider"] = MemorySecretProvider({"gh": "rotated"})

        with pytest.raises(WebhookRejectedError):
            await manager.authenticate(webhook, github_headers(BODY), BODY)
        await manager.authenticate(webhook, github_headers(BODY, secret="rotated"), BODY)

    @pytest.mark.asyncio
    async def test_dispatch(self, manager: WebhookManager) -> None:
        await manager.create("issues", source="github", secret_name="gh", filter="issues")
        await manager.create("pushes", source="github", secret_name="gh", filter="push")
        await manager.create("other-secret", source="github", secret_name="slack")

        events = await manager.dispatch("github", github_headers(BODY), BODY)

        assert [e.webhook_name for e in events] == ["issues"]
