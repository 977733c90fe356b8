"""Tests for the tool-access policy engine.

Tests cover:
1. Deny-wins across global, team and agent scopes
2. Pattern matching: exact, wildcard, prefix glob, group reference
3. Scope filtering by team and agent id
4. Default policy fallback and fail-closed behaviour on store errors
5. Policy CRUD validation and custom tool groups
"""

import pytest

from ratchet_plugin.exceptions import InvalidPolicyError, PolicyNotFoundError, StoreError
from ratchet_plugin.policy import (
    TOOL_GROUPS,
    PolicyAction,
    PolicyScope,
    ToolPolicyEngine,
)
from ratchet_plugin.store import SqliteStore


@pytest.fixture
def engine(store: SqliteStore) -> ToolPolicyEngine:
    return ToolPolicyEngine(store)


class TestDecision:
    @pytest.mark.asyncio
    async def test_global_deny_beats_team_allow(self, engine: ToolPolicyEngine) -> None:
        await engine.add_policy("g1", "shell_exec", "deny")
        await engine.add_policy("t1", "shell_exec", "allow", scope="team", scope_id="team-1")

        allowed, reason = await engine.is_allowed("shell_exec", team_id="team-1")

        assert not allowed
        assert "denied by global" in reason
        assert reason == 'denied by global policy "g1"'

    @pytest.mark.parametrize("deny_scope", ["global", "team", "agent"])
    @pytest.mark.asyncio
    async def test_any_deny_wins(self, engine: ToolPolicyEngine, deny_scope: str) -> None:
        await engine.add_policy("allow-g", "file_read", "allow")
        await engine.add_policy("allow-t", "file_read", "allow", scope="team", scope_id="t")
        await engine.add_policy("allow-a", "file_read", "allow", scope="agent", scope_id="a")
        scope_id = {"global": "", "team": "t", "agent": "a"}[deny_scope]
        await engine.add_policy("deny", "file_read", "deny", scope=deny_scope, scope_id=scope_id)

        decision = await engine.is_allowed("file_read", agent_id="a", team_id="t")

        assert decision.allowed is False
        assert decision.reason.startswith(f'denied by {deny_scope} policy "deny"')

    @pytest.mark.asyncio
    async def test_deny_reason_names_scope_id(self, engine: ToolPolicyEngine) -> None:
        await engine.add_policy("a-deny", "web_fetch", "deny", scope="agent", scope_id="agent-7")
        _, reason = await engine.is_allowed("web_fetch", agent_id="agent-7")
        assert reason == 'denied by agent policy "a-deny" (scope_id=agent-7)'

    @pytest.mark.asyncio
    async def test_allow(self, engine: ToolPolicyEngine) -> None:
        await engine.add_policy("p", "file_read", "allow")
        assert await engine.is_allowed("file_read") == (True, "allowed by policy")

    @pytest.mark.asyncio
    async def test_group_deny_with_default_allow(self, store: SqliteStore) -> None:
        engine = ToolPolicyEngine(store, default_policy="allow")
        await engine.add_policy("fs", "group:fs", "deny")

        assert (await engine.is_allowed("file_write")).allowed is False
        assert await engine.is_allowed("shell_exec") == (True, "no policy; defaulting to allow")

    @pytest.mark.asyncio
    async def test_group_deny_with_default_deny(self, engine: ToolPolicyEngine) -> None:
        await engine.add_policy("fs", "group:fs", "deny")

        assert (await engine.is_allowed("file_write")).allowed is False
        assert await engine.is_allowed("shell_exec") == (False, "no policy; defaulting to deny")

    @pytest.mark.asyncio
    async def test_group_deny_covers_exactly_its_members(self, store: SqliteStore) -> None:
        engine = ToolPolicyEngine(store, default_policy="allow")
        await engine.add_policy("fs", "group:fs", "deny")

        for tool in TOOL_GROUPS["group:fs"]:
            assert not (await engine.is_allowed(tool)).allowed, tool
        for tool in ("shell_exec", "web_fetch", "git_push", "file", "file_read_all"):
            assert (await engine.is_allowed(tool)).allowed, tool

    @pytest.mark.asyncio
    async def test_prefix_glob(self, store: SqliteStore) -> None:
        engine = ToolPolicyEngine(store, default_policy="allow")
        await engine.add_policy("mcp", "mcp_*", "deny")

        assert not (await engine.is_allowed("mcp_anything")).allowed
        assert (await engine.is_allowed("mcp")).allowed

    @pytest.mark.asyncio
    async def test_wildcard_matches_everything(self, engine: ToolPolicyEngine) -> None:
        await engine.add_policy("all", "*", "allow")
        assert (await engine.is_allowed("anything_at_all")).allowed

    @pytest.mark.asyncio
    async def test_team_scope_ignored_for_other_teams(self, engine: ToolPolicyEngine) -> None:
        await engine.add_policy("t-deny", "shell_exec", "deny", scope="team", scope_id="X")
        await engine.add_policy("g-allow", "shell_exec", "allow")

        assert (await engine.is_allowed("shell_exec", team_id="Y")).allowed
        assert (await engine.is_allowed("shell_exec")).allowed
        assert not (await engine.is_allowed("shell_exec", team_id="X")).allowed

    @pytest.mark.asyncio
    async def test_agent_scope_ignored_for_other_agents(self, engine: ToolPolicyEngine) -> None:
        await engine.add_policy("a-allow", "git_push", "allow", scope="agent", scope_id="dev")
        assert (await engine.is_allowed("git_push", agent_id="dev")).allowed
        assert not (await engine.is_allowed("git_push", agent_id="intern")).allowed

    @pytest.mark.asyncio
    async def test_empty_rule_set_uses_default(self, store: SqliteStore) -> None:
        assert await ToolPolicyEngine(store).is_allowed("x") == (
            False,
            "no policy; defaulting to deny",
        )
        assert (await ToolPolicyEngine(store, "allow").is_allowed("x")).allowed

    def test_unknown_default_falls_back_to_deny(self, store: SqliteStore) -> None:
        assert ToolPolicyEngine(store, "maybe").default_policy == PolicyAction.DENY

    @pytest.mark.asyncio
    async def test_store_failure_denies(self, store: SqliteStore) -> None:
        engine = ToolPolicyEngine(store, default_policy="allow")
        await engine.add_policy("p", "file_read", "allow")
        await store.disconnect()

        decision = await engine.is_allowed("file_read")

        assert decision == (False, "policy engine error; defaulting to deny")

    @pytest.mark.asyncio
    async def test_malformed_rows_skipped(self, engine: ToolPolicyEngine, store: SqliteStore) -> None:
        await store.execute(
            "INSERT INTO tool_policies (id, scope, tool_pattern, action) "
            "VALUES ('bad-scope', 'planet', 'file_read', 'deny'), "
            "('bad-action', 'global', 'file_read', 'maybe'), "
            "('no-pattern', 'global', '', 'deny'), "
            "('ok', 'global', 'file_read', 'allow')"
        )

        assert [p.id for p in await engine.list_policies()] == ["ok"]
        assert (await engine.is_allowed("file_read")).allowed


class TestPolicyManagement:
    @pytest.mark.asyncio
    async def test_add_defaults_to_global_scope(self, engine: ToolPolicyEngine) -> None:
        policy = await engine.add_policy("p", "file_read", PolicyAction.ALLOW)
        assert policy.scope == PolicyScope.GLOBAL
        assert policy.scope_id == ""

        [stored] = await engine.list_policies()
        assert stored.id == "p"
        assert stored.created_at

    @pytest.mark.parametrize(
        ("policy_id", "pattern", "action", "scope"),
        [
            ("", "file_read", "allow", "global"),
            ("p", "", "allow", "global"),
            ("p", "file_read", "maybe", "global"),
            ("p", "file_read", "allow", "planet"),
        ],
    )
    @pytest.mark.asyncio
    async def test_invalid_policy(
        self, engine: ToolPolicyEngine, policy_id: str, pattern: str, action: str, scope: str
    ) -> None:
        with pytest.raises(InvalidPolicyError):
            await engine.add_policy(policy_id, pattern, action, scope=scope)
        assert await engine.list_policies() == []

    @pytest.mark.asyncio
    async def test_duplicate_id(self, engine: ToolPolicyEngine) -> None:
        await engine.add_policy("p", "file_read", "allow")
        with pytest.raises(StoreError):
            await engine.add_policy("p", "file_write", "deny")

    @pytest.mark.asyncio
    async def test_remove(self, engine: ToolPolicyEngine) -> None:
        await engine.add_policy("p", "file_read", "deny")
        await engine.remove_policy("p")
        assert await engine.list_policies() == []

    @pytest.mark.asyncio
    async def test_remove_missing(self, engine: ToolPolicyEngine) -> None:
        with pytest.raises(PolicyNotFoundError) as exc_info:
            await engine.remove_policy("ghost")
        assert exc_info.value.policy_id == "ghost"

    @pytest.mark.asyncio
    async def test_list_in_creation_order(self, engine: ToolPolicyEngine) -> None:
        for policy_id in ("c", "a", "b"):
            await engine.add_policy(policy_id, "file_read", "allow")
        assert [p.id for p in await engine.list_policies()] == ["c", "a", "b"]


class TestToolGroups:
    def test_builtin_groups(self, engine: ToolPolicyEngine) -> None:
        assert engine.expand_group("fs") == ("file_read", "file_write", "file_list")
        assert engine.expand_group("group:runtime") == ("shell_exec",)
        assert engine.expand_group("group:git") == (
            "git_clone",
            "git_status",
            "git_commit",
            "git_push",
            "git_diff",
        )
        assert engine.expand_group("nope") == ()

    @pytest.mark.asyncio
    async def test_register_group(self, engine: ToolPolicyEngine) -> None:
        engine.register_group("db", ["sql_query", "sql_exec"])
        await engine.add_policy("db", "group:db", "deny")

        assert engine.expand_group("group:db") == ("sql_query", "sql_exec")
        assert not (await engine.is_allowed("sql_exec")).allowed

    def test_cannot_redefine_builtin(self, engine: ToolPolicyEngine) -> None:
        with pytest.raises(InvalidPolicyError):
            engine.register_group("fs", ["rm_rf"])
        assert engine.expand_group("fs") == TOOL_GROUPS["group:fs"]

    def test_empty_group_rejected(self, engine: ToolPolicyEngine) -> None:
        with pytest.raises(InvalidPolicyError):
            engine.register_group("empty", [])

    def test_groups_are_per_engine(self, store: SqliteStore) -> None:
        first = ToolPolicyEngine(store)
        first.register_group("db", ["sql_query"])
        assert ToolPolicyEngine(store).expand_group("db") == ()
