"""Security self-audit: twelve checks, a score and a per-severity summary."""

from .auditor import SecurityAuditor
from .checks import (
    DEFAULT_DEV_TOKEN,
    SECRET_PATTERN,
    VAULT_DEV_SERVICE,
    AgentPermissionCheck,
    AuditCheck,
    AuditContext,
    AuthCheck,
    ContainerSecurityCheck,
    CORSCheck,
    DatabaseSecurityCheck,
    DefaultCredentialCheck,
    MCPServerCheck,
    ProviderSecurityCheck,
    RateLimitCheck,
    SecretExposureCheck,
    VaultCheck,
    WebhookSecurityCheck,
    default_checks,
)
from .models import AuditFinding, AuditReport, Severity, compute_score
from .services import DictServiceRegistry, ServiceRegistry

__all__ = [
    "AgentPermissionCheck",
    "AuditCheck",
    "AuditContext",
    "AuditFinding",
    "AuditReport",
    "AuthCheck",
    "CORSCheck",
    "ContainerSecurityCheck",
    "DEFAULT_DEV_TOKEN",
    "DatabaseSecurityCheck",
    "DefaultCredentialCheck",
    "DictServiceRegistry",
    "MCPServerCheck",
    "ProviderSecurityCheck",
    "RateLimitCheck",
    "SECRET_PATTERN",
    "SecretExposureCheck",
    "SecurityAuditor",
    "ServiceRegistry",
    "Severity",
    "VAULT_DEV_SERVICE",
    "VaultCheck",
    "WebhookSecurityCheck",
    "compute_score",
    "default_checks",
]
