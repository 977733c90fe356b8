"""Tool-access policy engine."""

from .engine import (
    TOOL_GROUPS,
    PolicyAction,
    PolicyDecision,
    PolicyScope,
    ToolPolicy,
    ToolPolicyEngine,
)

__all__ = [
    "PolicyAction",
    "PolicyDecision",
    "PolicyScope",
    "TOOL_GROUPS",
    "ToolPolicy",
    "ToolPolicyEngine",
]
