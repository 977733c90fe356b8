"""Built-in security checks.

Each check inspects one aspect of a deployment (store rows, environment,
registered host services, the working directory's ``ratchet.yaml``) and
returns findings. Checks never raise: any error degrades to zero findings
for that check (or that part of a check), logged at debug level.

The set of checks is closed; :func:`default_checks` returns all twelve in
report order.
"""

from __future__ import annotations

import json
import logging
import os
import re
import stat
from abc import ABC, abstractmethod
from collections.abc import Iterator, Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, ClassVar

import yaml

from ..exceptions import StoreError
from ..providers.clients import KEY_REQUIRED_TYPES
from ..store import Store
from .models import AuditFinding, Severity
from .services import DictServiceRegistry, ServiceRegistry, call_capability

logger = logging.getLogger(__name__)

DEFAULT_DEV_TOKEN = "ratchet-dev-token-change-me-in-production"
DEFAULT_DB_PATH = "data/ratchet.db"
VAULT_DEV_SERVICE = "ratchet-vault-dev"
PLATFORM_CONFIG_FILE = "ratchet.yaml"

SENSITIVE_ENV_MARKERS = ("API_KEY", "SECRET", "TOKEN", "PASSWORD")
RATE_LIMIT_MARKERS = ("ratelimit", "rate_limit", "rate-limit")
SHELL_INTERPRETERS = (
    "bash",
    "sh",
    "zsh",
    "fish",
    "cmd",
    "powershell",
    "python",
    "ruby",
    "perl",
    "node",
)
BROAD_IMAGES = ("", "ubuntu:latest", "debian:latest")
KNOWN_WEAK_SECRETS = (
    "ratchet-dev-secret-change-me",
    "secret",
    "changeme",
    "password",
    "admin",
    "ratchet",
    "default",
)
TRANSCRIPT_SCAN_LIMIT = 1000

#: Credential-shaped substrings in transcript text.
SECRET_PATTERN = re.compile(
    r"(api[_-]?key|secret[_-]?key|access[_-]?token|password|auth[_-]?token"
    r"|bearer\s+[a-zA-Z0-9._-]{20,}|sk-[a-zA-Z0-9]{20,}|ghp_[a-zA-Z0-9]{36}|AKIA[A-Z0-9]{16})",
    re.IGNORECASE,
)


@dataclass
class AuditContext:
    """Everything a check may inspect.

    Attributes:
        store: Relational store, or None when the deployment has no database
        services: Host service registry
        environ: Environment variables
        cwd: Directory holding the platform's ``ratchet.yaml``
    """

    store: Store | None = None
    services: ServiceRegistry = field(default_factory=DictServiceRegistry)
    environ: Mapping[str, str] = field(default_factory=lambda: dict(os.environ))
    cwd: Path = field(default_factory=Path.cwd)

    @property
    def is_production(self) -> bool:
        return self.environ.get("RATCHET_ENV", "").lower() == "production"

    def iter_services(self) -> Iterator[tuple[str, Any]]:
        for name in self.services.names():
            service = self.services.lookup(name)
            if service is not None:
                yield name, service

    def read_platform_config(self) -> str | None:
        """Return ``ratchet.yaml`` text, or None if it cannot be read."""
        try:
            return (self.cwd / PLATFORM_CONFIG_FILE).read_text(encoding="utf-8")
        except OSError:
            return None


class AuditCheck(ABC):
    """One security check. Subclasses set ``name`` and implement ``inspect``."""

    name: ClassVar[str]

    async def run(self, ctx: AuditContext) -> list[AuditFinding]:
        try:
            return await self.inspect(ctx)
        except (StoreError, OSError) as e:
            logger.debug(f"Audit check '{self.name}' skipped: {e}")
            return []
        except Exception as e:
            logger.debug(f"Audit check '{self.name}' failed: {e}", exc_info=True)
            return []

    @abstractmethod
    async def inspect(self, ctx: AuditContext) -> list[AuditFinding]:
        """Return findings. Exceptions are absorbed by :meth:`run`."""
        pass

    def finding(
        self,
        severity: Severity,
        title: str,
        description: str,
        recommendation: str = "",
        references: list[str] | None = None,
    ) -> AuditFinding:
        return AuditFinding(
            check=self.name,
            severity=severity,
            title=title,
            description=description,
            recommendation=recommendation,
            references=references or [],
        )


def _walk_yaml(node: Any) -> Iterator[tuple[str, Any]]:  # noqa: ANN401
    """Yield every (key, value) pair in a parsed YAML document."""
    if isinstance(node, dict):
        for key, value in node.items():
            yield str(key), value
            yield from _walk_yaml(value)
    elif isinstance(node, list):
        for item in node:
            yield from _walk_yaml(item)


def _parse_platform_config(text: str) -> Any:  # noqa: ANN401
    try:
        return yaml.safe_load(text)
    except yaml.YAMLError as e:
        logger.debug(f"Could not parse {PLATFORM_CONFIG_FILE}: {e}")
        return None


# ---------------------------------------------------------------------------
# 1. Authentication
# ---------------------------------------------------------------------------


class AuthCheck(AuditCheck):
    name = "auth"

    def _is_auth_service(self, key: str, service: Any) -> bool:  # noqa: ANN401
        if call_capability(service, "is_auth_middleware") is True:
            return True
        service_name = call_capability(service, "name")
        if not isinstance(service_name, str):
            service_name = key
        return "auth" in service_name.lower()

    async def inspect(self, ctx: AuditContext) -> list[AuditFinding]:
        findings: list[AuditFinding] = []

        if not any(self._is_auth_service(k, svc) for k, svc in ctx.iter_services()):
            findings.append(
                self.finding(
                    Severity.CRITICAL,
                    "No authentication middleware detected",
                    "The platform does not appear to have any authentication middleware configured.",
                    "Configure http.middleware.auth in ratchet.yaml with a strong secret.",
                )
            )

        token = ctx.environ.get("RATCHET_AUTH_TOKEN", "")
        if not token or token == DEFAULT_DEV_TOKEN:
            findings.append(
                self.finding(
                    Severity.CRITICAL,
                    "Default development auth token in use",
                    "The default insecure auth token is being used. This allows unauthorized access.",
                    "Set the RATCHET_AUTH_TOKEN environment variable to a strong, random secret.",
                )
            )
        return findings


# ---------------------------------------------------------------------------
# 2. Provider credentials
# ---------------------------------------------------------------------------


class ProviderSecurityCheck(AuditCheck):
    name = "provider_security"

    async def _provider_rows(self, ctx: AuditContext) -> list[AuditFinding]:
        if ctx.store is None:
            return []
        result = await ctx.store.query(
            "SELECT alias, type, secret_name FROM llm_providers WHERE status != 'deleted'"
        )
        findings: list[AuditFinding] = []
        for row in result.rows:
            alias = row.get("alias") or ""
            provider_type = row.get("type") or ""
            if provider_type in KEY_REQUIRED_TYPES and not row.get("secret_name"):
                findings.append(
                    self.finding(
                        Severity.HIGH,
                        f'Provider "{alias}" has no secret configured',
                        f'AI provider "{alias}" (type: {provider_type}) does not reference '
                        "a vault secret for its API key.",
                        "Store the provider's API key as a named secret and set secret_name.",
                    )
                )
        return findings

    def _environment(self, ctx: AuditContext) -> list[AuditFinding]:
        findings: list[AuditFinding] = []
        for key in sorted(ctx.environ):
            if not key.startswith("RATCHET_"):
                continue
            if any(marker in key for marker in SENSITIVE_ENV_MARKERS):
                findings.append(
                    self.finding(
                        Severity.MEDIUM,
                        f'Sensitive credential in environment variable "{key}"',
                        "Credentials should be stored in the vault, not in environment variables.",
                        "Move this credential to the secrets backend and remove the env var.",
                    )
                )
        return findings

    async def inspect(self, ctx: AuditContext) -> list[AuditFinding]:
        # the environment scan does not depend on the store
        try:
            findings = await self._provider_rows(ctx)
        except Exception as e:
            logger.debug(f"Audit check '{self.name}' could not read providers: {e}")
            findings = []
        return findings + self._environment(ctx)


# ---------------------------------------------------------------------------
# 3. Agent permissions
# ---------------------------------------------------------------------------


class AgentPermissionCheck(AuditCheck):
    name = "agent_permissions"

    async def inspect(self, ctx: AuditContext) -> list[AuditFinding]:
        if ctx.store is None:
            return []
        findings: list[AuditFinding] = []

        result = await ctx.store.query(
            "SELECT id, scope, scope_id FROM tool_policies "
            "WHERE action = 'allow' AND tool_pattern = '*' ORDER BY created_at, rowid"
        )
        for row in result.rows:
            description = f'Policy "{row["id"]}" grants wildcard tool access at {row["scope"]} scope'
            if row.get("scope_id"):
                description += f" (id: {row['scope_id']})"
            findings.append(
                self.finding(
                    Severity.HIGH,
                    "Wildcard tool access policy detected",
                    description,
                    "Replace wildcard policies with specific tool grants using group: "
                    "references or explicit tool names.",
                )
            )

        count = await ctx.store.query("SELECT COUNT(*) AS n FROM tool_policies")
        row = count.first()
        if row is not None and row["n"] == 0:
            findings.append(
                self.finding(
                    Severity.MEDIUM,
                    "No tool access policies configured",
                    "No tool policies are defined; every decision falls back to the "
                    "engine's default policy.",
                    "Define tool policies to grant agents only the tools they need.",
                )
            )
        return findings


# ---------------------------------------------------------------------------
# 4. Vault backend
# ---------------------------------------------------------------------------


class VaultCheck(AuditCheck):
    name = "vault"

    async def inspect(self, ctx: AuditContext) -> list[AuditFinding]:
        if ctx.services.lookup(VAULT_DEV_SERVICE) is None:
            return []
        if ctx.is_production:
            return [
                self.finding(
                    Severity.CRITICAL,
                    "Vault-dev backend in use in production",
                    "The development vault backend is not suitable for production use. "
                    "It stores secrets in memory and is not persistent.",
                    "Configure a remote HashiCorp Vault instance.",
                )
            ]
        return [
            self.finding(
                Severity.INFO,
                "Vault-dev backend in use",
                "The development vault backend is active. Secrets are stored in memory "
                "and will be lost on restart.",
                "For persistent secrets, configure a remote HashiCorp Vault instance.",
            )
        ]


# ---------------------------------------------------------------------------
# 5. CORS
# ---------------------------------------------------------------------------


class CORSCheck(AuditCheck):
    name = "cors"

    def _config_allows_any_origin(self, ctx: AuditContext) -> bool:
        text = ctx.read_platform_config()
        if text is None:
            return False
        for key, value in _walk_yaml(_parse_platform_config(text)):
            if key != "allowedOrigins":
                continue
            if value == "*" or (isinstance(value, list) and "*" in value):
                return True
        return False

    async def inspect(self, ctx: AuditContext) -> list[AuditFinding]:
        if not ctx.is_production:
            return []
        findings: list[AuditFinding] = []

        for key, service in ctx.iter_services():
            if "cors" not in key.lower():
                continue
            origins = call_capability(service, "allowed_origins") or []
            if "*" in origins:
                findings.append(
                    self.finding(
                        Severity.HIGH,
                        "Wildcard CORS origin in production",
                        "The CORS middleware allows requests from any origin (*). "
                        "This is insecure in production.",
                        "Set allowedOrigins to specific domains in the CORS middleware config.",
                    )
                )

        if ctx.environ.get("RATCHET_CORS_ORIGIN") == "*":
            findings.append(
                self.finding(
                    Severity.HIGH,
                    "Wildcard CORS origin via environment variable",
                    "RATCHET_CORS_ORIGIN is set to * which allows all origins in production.",
                    "Set RATCHET_CORS_ORIGIN to your specific frontend domain.",
                )
            )

        if not findings and self._config_allows_any_origin(ctx):
            findings.append(
                self.finding(
                    Severity.HIGH,
                    f"Wildcard CORS origin in {PLATFORM_CONFIG_FILE}",
                    f"{PLATFORM_CONFIG_FILE} configures CORS to allow all origins (*) "
                    "which is insecure in production.",
                    f"Update allowedOrigins in {PLATFORM_CONFIG_FILE} to list specific trusted domains.",
                )
            )
        return findings


# ---------------------------------------------------------------------------
# 6. Rate limiting
# ---------------------------------------------------------------------------


class RateLimitCheck(AuditCheck):
    name = "rate_limit"

    async def inspect(self, ctx: AuditContext) -> list[AuditFinding]:
        for key in ctx.services.names():
            if any(marker in key.lower() for marker in RATE_LIMIT_MARKERS):
                return []
        return [
            self.finding(
                Severity.HIGH,
                "No rate limiting configured",
                "No rate limiting middleware was detected. The API is vulnerable to abuse "
                "and denial-of-service attacks.",
                "Add rate limiting middleware with appropriate requestsPerMinute and burstSize settings.",
            )
        ]


# ---------------------------------------------------------------------------
# 7. Workspace containers
# ---------------------------------------------------------------------------


class ContainerSecurityCheck(AuditCheck):
    name = "container_security"

    async def inspect(self, ctx: AuditContext) -> list[AuditFinding]:
        if ctx.store is None:
            return []
        findings: list[AuditFinding] = []

        result = await ctx.store.query(
            "SELECT id, project_id, image, compose_file FROM workspace_containers "
            "WHERE status != 'stopped' ORDER BY created_at, rowid"
        )
        for row in result.rows:
            container_id = row["id"]
            image = row.get("image") or ""
            compose = row.get("compose_file") or ""

            if "privileged: true" in compose:
                findings.append(
                    self.finding(
                        Severity.CRITICAL,
                        f'Privileged container detected for project "{row["project_id"]}"',
                        "Container is running in privileged mode, which grants full host access.",
                        "Remove 'privileged: true' and grant specific capabilities instead.",
                    )
                )
            if image in BROAD_IMAGES:
                findings.append(
                    self.finding(
                        Severity.LOW,
                        f'Container "{container_id}" uses a broad base image',
                        f'Container uses image "{image}" which may include unnecessary tools '
                        "and attack surface.",
                        "Use a minimal, purpose-built container image and pin to a specific version.",
                    )
                )
            if compose and "mem_limit" not in compose and "memory:" not in compose:
                findings.append(
                    self.finding(
                        Severity.MEDIUM,
                        f'Container "{container_id}" has no memory limit',
                        "Container does not define a memory limit, which could lead to "
                        "resource exhaustion.",
                        "Add memory limits to the container compose configuration.",
                    )
                )
        return findings


# ---------------------------------------------------------------------------
# 8. Database file
# ---------------------------------------------------------------------------


class DatabaseSecurityCheck(AuditCheck):
    name = "database_security"

    async def inspect(self, ctx: AuditContext) -> list[AuditFinding]:
        db_path = Path(ctx.environ.get("RATCHET_DB_PATH") or DEFAULT_DB_PATH)
        if not db_path.is_absolute():
            db_path = ctx.cwd / db_path
        if not db_path.exists():
            return []

        mode = db_path.stat().st_mode
        recommendation = f"Run: chmod 600 {db_path} to restrict access to the owning user only."
        if mode & stat.S_IROTH:
            return [
                self.finding(
                    Severity.HIGH,
                    "Database file is world-readable",
                    f'Database file "{db_path}" has permissions {stat.filemode(mode)} '
                    "which allows any user to read it.",
                    recommendation,
                )
            ]
        if mode & stat.S_IRGRP:
            return [
                self.finding(
                    Severity.MEDIUM,
                    "Database file is group-readable",
                    f'Database file "{db_path}" has permissions {stat.filemode(mode)} '
                    "which allows group members to read it.",
                    recommendation,
                )
            ]
        return []


# ---------------------------------------------------------------------------
# 9. MCP servers
# ---------------------------------------------------------------------------


def _command_tokens(command: str, args: str) -> list[str]:
    tokens = command.split() if command else []
    try:
        parsed = json.loads(args) if args else []
    except json.JSONDecodeError:
        parsed = args.split()
    if isinstance(parsed, list):
        tokens.extend(str(a) for a in parsed)
    return tokens


def _shell_in(tokens: list[str]) -> str | None:
    for token in tokens:
        executable = token.rsplit("/", 1)[-1]
        if executable in SHELL_INTERPRETERS:
            return executable
    return None


class MCPServerCheck(AuditCheck):
    name = "mcp_servers"

    async def inspect(self, ctx: AuditContext) -> list[AuditFinding]:
        if ctx.store is None:
            return []
        findings: list[AuditFinding] = []

        result = await ctx.store.query(
            "SELECT id, name, transport, command, args FROM mcp_servers "
            "WHERE status = 'active' ORDER BY created_at, rowid"
        )
        for row in result.rows:
            name = row["name"]
            shell = _shell_in(_command_tokens(row.get("command") or "", row.get("args") or ""))
            if shell is not None:
                findings.append(
                    self.finding(
                        Severity.HIGH,
                        f'MCP server "{name}" uses shell access ({shell})',
                        f'MCP server "{name}" (id: {row["id"]}) executes via shell interpreter '
                        f'"{shell}" which could allow arbitrary command execution.',
                        "Restrict the server's tools with tool policies or run it in a sandboxed container.",
                    )
                )
            if row.get("transport") == "stdio":
                findings.append(
                    self.finding(
                        Severity.INFO,
                        f'MCP server "{name}" uses stdio transport',
                        "Stdio transport is only suitable for local process execution. "
                        "Ensure the MCP server process is trusted.",
                        "For remote MCP servers, prefer HTTP transport with authentication.",
                    )
                )
        return findings


# ---------------------------------------------------------------------------
# 10. Secret exposure in transcripts
# ---------------------------------------------------------------------------


class SecretExposureCheck(AuditCheck):
    name = "secret_exposure"

    async def inspect(self, ctx: AuditContext) -> list[AuditFinding]:
        if ctx.store is None:
            return []

        result = await ctx.store.query(
            "SELECT id, content FROM transcripts WHERE redacted = 0 "
            "ORDER BY created_at DESC LIMIT ?",
            (TRANSCRIPT_SCAN_LIMIT,),
        )
        exposed = {row["id"] for row in result.rows if SECRET_PATTERN.search(row.get("content") or "")}
        if not exposed:
            return []
        count = len(exposed)
        return [
            self.finding(
                Severity.HIGH,
                f"Potential secret exposure in {count} transcript(s)",
                f"{count} transcript entries contain patterns that look like credentials "
                "(API keys, tokens, passwords) and are not redacted.",
                "Route transcript text through the secret guard before storing it. "
                "Rotate any potentially exposed credentials immediately.",
            )
        ]


# ---------------------------------------------------------------------------
# 11. Webhooks
# ---------------------------------------------------------------------------


class WebhookSecurityCheck(AuditCheck):
    name = "webhook_security"

    async def inspect(self, ctx: AuditContext) -> list[AuditFinding]:
        if ctx.store is None:
            return []

        result = await ctx.store.query(
            "SELECT id, name, secret_name FROM webhooks WHERE enabled = 1 ORDER BY created_at, rowid"
        )
        return [
            self.finding(
                Severity.MEDIUM,
                f'Webhook "{row["name"]}" has no HMAC secret',
                f'Webhook "{row["name"]}" (id: {row["id"]}) does not have an HMAC signing '
                "secret configured. Requests cannot be verified.",
                "Configure an HMAC secret for the webhook to verify that requests originate "
                "from the expected source.",
            )
            for row in result.rows
            if not row.get("secret_name")
        ]


# ---------------------------------------------------------------------------
# 12. Default credentials
# ---------------------------------------------------------------------------


def _weak_match(value: Any) -> str | None:  # noqa: ANN401
    if not isinstance(value, str):
        return None
    for weak in KNOWN_WEAK_SECRETS:
        if value.lower() == weak:
            return weak
    return None


class DefaultCredentialCheck(AuditCheck):
    name = "default_credentials"

    async def inspect(self, ctx: AuditContext) -> list[AuditFinding]:
        findings: list[AuditFinding] = []

        for _, service in ctx.iter_services():
            weak = _weak_match(call_capability(service, "secret"))
            if weak is not None:
                findings.append(
                    self.finding(
                        Severity.CRITICAL,
                        "Weak or default JWT secret in use",
                        f'The auth middleware JWT secret is set to a known weak value "{weak}".',
                        "Set a strong random JWT secret in the auth middleware configuration.",
                    )
                )

        text = ctx.read_platform_config()
        if text is not None:
            for key, value in _walk_yaml(_parse_platform_config(text)):
                weak = _weak_match(value) if key == "secret" else None
                if weak is not None:
                    findings.append(
                        self.finding(
                            Severity.CRITICAL,
                            f"Default JWT secret found in {PLATFORM_CONFIG_FILE}",
                            f'{PLATFORM_CONFIG_FILE} contains the default/weak JWT secret "{weak}".',
                            "Replace the secret with a strong random string, or read it from "
                            "an environment variable.",
                        )
                    )
                    break
        return findings


def default_checks() -> tuple[AuditCheck, ...]:
    """All built-in checks, in report order."""
    return (
        AuthCheck(),
        ProviderSecurityCheck(),
        AgentPermissionCheck(),
        VaultCheck(),
        CORSCheck(),
        RateLimitCheck(),
        ContainerSecurityCheck(),
        DatabaseSecurityCheck(),
        MCPServerCheck(),
        SecretExposureCheck(),
        WebhookSecurityCheck(),
        DefaultCredentialCheck(),
    )
