"""Plugin-wide exception hierarchy.

Every error raised by the plugin derives from RatchetError so hosts can catch
the whole family at one seam. Subsystem-specific errors live next to the code
that raises them (see ratchet_plugin.secrets.exceptions), but the shared kinds
are defined here.

Exception Hierarchy:
    RatchetError (base)
    ├── StoreError (underlying database failure)
    ├── ProviderError
    │   ├── ProviderNotFoundError (alias absent)
    │   ├── NoDefaultProviderError (no row with is_default = 1)
    │   └── UnknownProviderTypeError (no factory for record type)
    ├── PolicyError
    │   ├── InvalidPolicyError (missing field / bad action / bad scope)
    │   └── PolicyNotFoundError
    └── WebhookError
        ├── InvalidWebhookError
        ├── WebhookNotFoundError
        └── WebhookRejectedError (signature or filter rejection)
"""

from __future__ import annotations


class RatchetError(Exception):
    """Base exception for all plugin errors."""

    pass


class StoreError(RatchetError):
    """The relational store returned an error.

    Attributes:
        operation: Short description of what was being attempted
    """

    def __init__(self, operation: str, details: str) -> None:
        self.operation = operation
        self.details = details
        super().__init__(f"store error during {operation}: {details}")


# ============================================================================
# Provider registry
# ============================================================================


class ProviderError(RatchetError):
    """Base exception for provider registry errors."""

    pass


class ProviderNotFoundError(ProviderError):
    """No llm_providers row exists for the requested alias."""

    def __init__(self, alias: str) -> None:
        self.alias = alias
        super().__init__(f"provider registry: alias '{alias}' not found")


class NoDefaultProviderError(ProviderError):
    """No provider row is flagged as the default."""

    def __init__(self) -> None:
        super().__init__("provider registry: no default provider configured")


class UnknownProviderTypeError(ProviderError):
    """The provider record names a type with no registered factory."""

    def __init__(self, provider_type: str) -> None:
        self.provider_type = provider_type
        super().__init__(f"provider registry: unknown provider type '{provider_type}'")


class InvalidProviderError(ProviderError):
    """Provider record failed validation before being written."""

    pass


# ============================================================================
# Policy engine
# ============================================================================


class PolicyError(RatchetError):
    """Base exception for tool policy errors."""

    pass


class InvalidPolicyError(PolicyError):
    """A policy could not be added because a field is missing or invalid."""

    pass


class PolicyNotFoundError(PolicyError):
    """Removal targeted a policy id that does not exist."""

    def __init__(self, policy_id: str) -> None:
        self.policy_id = policy_id
        super().__init__(f"policy '{policy_id}' not found")


# ============================================================================
# Webhooks
# ============================================================================


class WebhookError(RatchetError):
    """Base exception for webhook errors."""

    pass


class InvalidWebhookError(WebhookError):
    """Webhook definition is missing a required field."""

    pass


class WebhookNotFoundError(WebhookError):
    def __init__(self, webhook_id: str) -> None:
        self.webhook_id = webhook_id
        super().__init__(f"webhook '{webhook_id}' not found")


class WebhookRejectedError(WebhookError):
    """An inbound request was refused.

    Attributes:
        webhook_id: Id of the webhook the request targeted
        reason: Why the request was refused (signature, payload, filter)
    """

    def __init__(self, webhook_id: str, reason: str) -> None:
        self.webhook_id = webhook_id
        self.reason = reason
        super().__init__(f"webhook '{webhook_id}' rejected request: {reason}")
