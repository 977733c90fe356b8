"""DDL for the tables the plugin reads and writes.

``mcp_servers``, ``workspace_containers`` and ``transcripts`` are owned by
other parts of the host platform; they are declared here so the security
audit has something to inspect in standalone deployments and tests.
"""

from __future__ import annotations

from .backend import Store

LLM_PROVIDERS = """
CREATE TABLE IF NOT EXISTS llm_providers (
    id TEXT PRIMARY KEY,
    alias TEXT NOT NULL UNIQUE,
    type TEXT NOT NULL,
    model TEXT NOT NULL DEFAULT '',
    base_url TEXT NOT NULL DEFAULT '',
    secret_name TEXT NOT NULL DEFAULT '',
    max_tokens INTEGER NOT NULL DEFAULT 0,
    settings TEXT NOT NULL DEFAULT '{}',
    is_default INTEGER NOT NULL DEFAULT 0,
    status TEXT NOT NULL DEFAULT 'unchecked',
    created_at DATETIME NOT NULL DEFAULT (datetime('now')),
    updated_at DATETIME NOT NULL DEFAULT (datetime('now'))
);
"""

TOOL_POLICIES = """
CREATE TABLE IF NOT EXISTS tool_policies (
    id TEXT PRIMARY KEY,
    scope TEXT NOT NULL DEFAULT 'global',
    scope_id TEXT NOT NULL DEFAULT '',
    tool_pattern TEXT NOT NULL,
    action TEXT NOT NULL DEFAULT 'allow',
    created_at DATETIME NOT NULL DEFAULT (datetime('now'))
);
"""

WEBHOOKS = """
CREATE TABLE IF NOT EXISTS webhooks (
    id TEXT PRIMARY KEY,
    source TEXT NOT NULL DEFAULT 'generic',
    name TEXT NOT NULL,
    secret_name TEXT NOT NULL DEFAULT '',
    filter TEXT NOT NULL DEFAULT '',
    task_template TEXT NOT NULL DEFAULT '',
    enabled INTEGER NOT NULL DEFAULT 1,
    created_at DATETIME NOT NULL DEFAULT (datetime('now'))
);
"""

TRANSCRIPTS = """
CREATE TABLE IF NOT EXISTS transcripts (
    id TEXT PRIMARY KEY,
    agent_id TEXT NOT NULL,
    task_id TEXT NOT NULL DEFAULT '',
    role TEXT NOT NULL,
    content TEXT NOT NULL DEFAULT '',
    redacted INTEGER NOT NULL DEFAULT 0,
    created_at DATETIME NOT NULL DEFAULT (datetime('now'))
);
"""

MCP_SERVERS = """
CREATE TABLE IF NOT EXISTS mcp_servers (
    id TEXT PRIMARY KEY,
    name TEXT NOT NULL,
    transport TEXT NOT NULL DEFAULT 'stdio',
    command TEXT NOT NULL DEFAULT '',
    args TEXT NOT NULL DEFAULT '[]',
    url TEXT NOT NULL DEFAULT '',
    status TEXT NOT NULL DEFAULT 'active',
    created_at DATETIME NOT NULL DEFAULT (datetime('now'))
);
"""

WORKSPACE_CONTAINERS = """
CREATE TABLE IF NOT EXISTS workspace_containers (
    id TEXT PRIMARY KEY,
    project_id TEXT NOT NULL UNIQUE,
    container_id TEXT NOT NULL DEFAULT '',
    image TEXT NOT NULL DEFAULT 'ubuntu:22.04',
    status TEXT NOT NULL DEFAULT 'pending',
    compose_file TEXT NOT NULL DEFAULT '',
    created_at DATETIME NOT NULL DEFAULT (datetime('now')),
    updated_at DATETIME NOT NULL DEFAULT (datetime('now'))
);
"""

ALL_TABLES = (
    LLM_PROVIDERS,
    TOOL_POLICIES,
    WEBHOOKS,
    TRANSCRIPTS,
    MCP_SERVERS,
    WORKSPACE_CONTAINERS,
)


async def apply_schema(store: Store) -> None:
    """Create every plugin table that does not exist yet."""
    await store.execute_script("\n".join(ALL_TABLES))
