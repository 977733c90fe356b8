"""Tool-access policy engine.

Decides whether an agent may invoke a tool, given policies stored in
``tool_policies``. Policies are read from the store on every decision; there
is no cache to invalidate.

Decision procedure for ``is_allowed(tool, agent_id, team_id)``:

1. Keep policies whose pattern matches the tool:
     - exact name          "file_read"
     - universal wildcard  "*"
     - group reference     "group:fs"   (expanded by this engine only)
     - prefix glob         "mcp_*"      (matches "mcp_x", not "mcp")
2. Keep policies whose scope applies:
     - global  always
     - team    scope_id == team_id
     - agent   scope_id == agent_id
3. Any deny wins. Otherwise any allow allows. Otherwise the engine's
   default policy applies, which is deny unless configured otherwise.

A store failure denies the call: a tool must not slip through because the
policy database is offline.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from enum import Enum
from types import MappingProxyType
from typing import NamedTuple

from pydantic import BaseModel, ValidationError

from ..exceptions import InvalidPolicyError, PolicyNotFoundError, StoreError
from ..store import Store

logger = logging.getLogger(__name__)

GROUP_PREFIX = "group:"

#: Built-in tool groups. Registered groups may extend but never redefine these.
TOOL_GROUPS: Mapping[str, tuple[str, ...]] = MappingProxyType(
    {
        "group:fs": ("file_read", "file_write", "file_list"),
        "group:runtime": ("shell_exec",),
        "group:web": ("web_fetch",),
        "group:git": ("git_clone", "git_status", "git_commit", "git_push", "git_diff"),
        "group:task": ("task_create", "task_update"),
        "group:message": ("message_send",),
    }
)


class PolicyScope(str, Enum):
    GLOBAL = "global"
    TEAM = "team"
    AGENT = "agent"


class PolicyAction(str, Enum):
    ALLOW = "allow"
    DENY = "deny"


class ToolPolicy(BaseModel):
    """One row of ``tool_policies``. ``scope_id`` is empty for global policies."""

    id: str
    scope: PolicyScope = PolicyScope.GLOBAL
    scope_id: str = ""
    tool_pattern: str
    action: PolicyAction
    created_at: str = ""


class PolicyDecision(NamedTuple):
    """Outcome of ``is_allowed``; unpacks as ``(allowed, reason)``."""

    allowed: bool
    reason: str


def _normalize_group_name(name: str) -> str:
    return name if name.startswith(GROUP_PREFIX) else f"{GROUP_PREFIX}{name}"


class ToolPolicyEngine:
    """Scope-aware, deny-wins authorisation for tool invocations.

    Attributes:
        store: Store holding ``tool_policies``
        default_policy: Action applied when no policy matches (deny by default)
    """

    def __init__(self, store: Store, default_policy: PolicyAction | str = PolicyAction.DENY) -> None:
        self.store = store
        # only an explicit "allow" relaxes the fail-closed default
        self.default_policy = (
            PolicyAction.ALLOW if default_policy == PolicyAction.ALLOW else PolicyAction.DENY
        )
        self._groups: dict[str, tuple[str, ...]] = dict(TOOL_GROUPS)

    # ------------------------------------------------------------------
    # Groups
    # ------------------------------------------------------------------

    def register_group(self, name: str, tools: Iterable[str]) -> None:
        """Add a tool group usable as ``group:<name>`` in policies.

        Raises:
            InvalidPolicyError: If the name collides with a built-in group or
                the tool list is empty
        """
        key = _normalize_group_name(name)
        if key in TOOL_GROUPS:
            raise InvalidPolicyError(f"cannot redefine built-in tool group '{key}'")
        members = tuple(t for t in tools if t)
        if not members:
            raise InvalidPolicyError(f"tool group '{key}' must contain at least one tool")
        self._groups[key] = members
        logger.debug(f"Registered tool group '{key}': {', '.join(members)}")

    def expand_group(self, name: str) -> tuple[str, ...]:
        """Return the tools in a group; unknown groups expand to nothing."""
        return self._groups.get(_normalize_group_name(name), ())

    def matches(self, pattern: str, tool_name: str) -> bool:
        if pattern == tool_name or pattern == "*":
            return True
        if pattern.startswith(GROUP_PREFIX):
            return tool_name in self._groups.get(pattern, ())
        if pattern.endswith("*"):
            return tool_name.startswith(pattern[:-1])
        return False

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    async def add_policy(
        self,
        policy_id: str,
        tool_pattern: str,
        action: PolicyAction | str,
        scope: PolicyScope | str = PolicyScope.GLOBAL,
        scope_id: str = "",
    ) -> ToolPolicy:
        """Insert a policy.

        Raises:
            InvalidPolicyError: If the id or pattern is empty, or the action
                or scope is not recognised
            StoreError: If the insert fails (including duplicate ids)
        """
        if not policy_id:
            raise InvalidPolicyError("tool_policy: id is required")
        if not tool_pattern:
            raise InvalidPolicyError("tool_policy: tool_pattern is required")
        try:
            policy = ToolPolicy(
                id=policy_id,
                scope=scope or PolicyScope.GLOBAL,
                scope_id=scope_id,
                tool_pattern=tool_pattern,
                action=action,
            )
        except ValidationError as e:
            raise InvalidPolicyError(f"tool_policy: invalid action or scope: {e}") from e

        await self.store.execute(
            "INSERT INTO tool_policies (id, scope, scope_id, tool_pattern, action) "
            "VALUES (?, ?, ?, ?, ?)",
            (
                policy.id,
                policy.scope.value,
                policy.scope_id,
                policy.tool_pattern,
                policy.action.value,
            ),
        )
        logger.info(
            f"Added {policy.scope.value} tool policy '{policy.id}': "
            f"{policy.action.value} {policy.tool_pattern}"
        )
        return policy

    async def remove_policy(self, policy_id: str) -> None:
        result = await self.store.execute("DELETE FROM tool_policies WHERE id = ?", (policy_id,))
        if result.affected_rows == 0:
            raise PolicyNotFoundError(policy_id)
        logger.info(f"Removed tool policy '{policy_id}'")

    async def list_policies(self) -> list[ToolPolicy]:
        """Return every well-formed policy ordered by creation time.

        Rows with an unknown scope or action, or an empty pattern, are skipped.
        """
        result = await self.store.query(
            "SELECT id, scope, scope_id, tool_pattern, action, created_at "
            "FROM tool_policies ORDER BY created_at ASC, rowid ASC"
        )
        policies: list[ToolPolicy] = []
        for row in result.rows:
            if not row.get("tool_pattern"):
                continue
            try:
                policies.append(
                    ToolPolicy(
                        id=str(row["id"]),
                        scope=row.get("scope") or PolicyScope.GLOBAL,
                        scope_id=row.get("scope_id") or "",
                        tool_pattern=row["tool_pattern"],
                        action=row.get("action"),
                        created_at=str(row.get("created_at") or ""),
                    )
                )
            except ValidationError:
                logger.debug(f"Skipping malformed tool policy row '{row.get('id')}'")
        return policies

    # ------------------------------------------------------------------
    # Decision
    # ------------------------------------------------------------------

    def _scope_applies(self, policy: ToolPolicy, agent_id: str, team_id: str) -> bool:
        if policy.scope == PolicyScope.GLOBAL:
            return True
        if policy.scope == PolicyScope.TEAM:
            return policy.scope_id == team_id
        return policy.scope_id == agent_id

    async def is_allowed(self, tool_name: str, agent_id: str = "", team_id: str = "") -> PolicyDecision:
        """Decide whether ``agent_id`` (in ``team_id``) may call ``tool_name``.

        Returns:
            PolicyDecision, which also unpacks as ``(allowed, reason)``
        """
        try:
            policies = await self.list_policies()
        except StoreError as e:
            logger.error(f"Policy lookup failed for tool '{tool_name}': {e}")
            return PolicyDecision(allowed=False, reason="policy engine error; defaulting to deny")

        matching = [
            p
            for p in policies
            if self.matches(p.tool_pattern, tool_name)
            and self._scope_applies(p, agent_id, team_id)
        ]

        for policy in matching:
            if policy.action == PolicyAction.DENY:
                reason = f'denied by {policy.scope.value} policy "{policy.id}"'
                if policy.scope_id:
                    reason += f" (scope_id={policy.scope_id})"
                return PolicyDecision(allowed=False, reason=reason)

        if matching:
            return PolicyDecision(allowed=True, reason="allowed by policy")

        if self.default_policy == PolicyAction.ALLOW:
            return PolicyDecision(allowed=True, reason="no policy; defaulting to allow")
        return PolicyDecision(allowed=False, reason="no policy; defaulting to deny")
