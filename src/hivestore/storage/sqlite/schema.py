"""
SQLite Schema Definitions

Contains all table definitions, indices, and schema initialization logic.
"""

import sqlite3
from pathlib import Path
from typing import Optional, Union

from hivestore.logging_config import logger
from hivestore.exceptions import SchemaInitError
from hivestore.storage.sqlite.config import SCHEMA_VERSION


SCHEMA_SQL = """
-- Swarms table
CREATE TABLE IF NOT EXISTS swarms (
    id TEXT PRIMARY KEY,
    name TEXT NOT NULL,
    topology TEXT NOT NULL CHECK(topology IN ('mesh', 'hierarchical', 'ring', 'star')),
    queen_mode TEXT NOT NULL DEFAULT 'centralized' CHECK(queen_mode IN ('centralized', 'distributed')),
    max_agents INTEGER NOT NULL DEFAULT 8,
    consensus_threshold REAL NOT NULL DEFAULT 0.66 CHECK(consensus_threshold BETWEEN 0 AND 1),
    memory_ttl INTEGER,
    config TEXT,  -- JSON object
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    is_active INTEGER NOT NULL DEFAULT 0 CHECK(is_active IN (0, 1)),
    status TEXT NOT NULL DEFAULT 'active' CHECK(status IN ('active', 'paused', 'archived'))
);

CREATE INDEX IF NOT EXISTS idx_swarms_created ON swarms(created_at);

-- Agents table
CREATE TABLE IF NOT EXISTS agents (
    id TEXT PRIMARY KEY,
    swarm_id TEXT NOT NULL,
    name TEXT NOT NULL,
    type TEXT NOT NULL CHECK(type IN (
        'coordinator', 'researcher', 'coder', 'analyst', 'architect', 'tester',
        'reviewer', 'optimizer', 'documenter', 'monitor', 'specialist'
    )),
    status TEXT NOT NULL DEFAULT 'idle' CHECK(status IN ('idle', 'busy', 'active', 'error', 'offline')),
    capabilities TEXT,  -- JSON array
    current_task_id TEXT,
    message_count INTEGER NOT NULL DEFAULT 0,
    error_count INTEGER NOT NULL DEFAULT 0,
    success_count INTEGER NOT NULL DEFAULT 0,
    created_at TEXT NOT NULL,
    last_active_at TEXT,
    metadata TEXT,  -- JSON object

    FOREIGN KEY (swarm_id) REFERENCES swarms(id),
    FOREIGN KEY (current_task_id) REFERENCES tasks(id) ON DELETE SET NULL
);

CREATE INDEX IF NOT EXISTS idx_agents_swarm ON agents(swarm_id, created_at);
CREATE INDEX IF NOT EXISTS idx_agents_status ON agents(swarm_id, status);

-- Tasks table
CREATE TABLE IF NOT EXISTS tasks (
    id TEXT PRIMARY KEY,
    swarm_id TEXT NOT NULL,
    type TEXT NOT NULL DEFAULT 'general',
    description TEXT NOT NULL,
    status TEXT NOT NULL DEFAULT 'pending' CHECK(status IN (
        'pending', 'assigned', 'in_progress', 'completed', 'failed', 'cancelled'
    )),
    priority TEXT NOT NULL DEFAULT 'medium' CHECK(priority IN ('critical', 'high', 'medium', 'low')),
    assigned_agent_id TEXT,
    dependencies TEXT,  -- JSON array of task ids
    requirements TEXT,  -- JSON
    result TEXT,  -- JSON
    created_at TEXT NOT NULL,
    assigned_at TEXT,
    started_at TEXT,
    completed_at TEXT,
    estimated_duration REAL,
    actual_duration REAL,
    metadata TEXT,  -- JSON object

    FOREIGN KEY (swarm_id) REFERENCES swarms(id),
    FOREIGN KEY (assigned_agent_id) REFERENCES agents(id) ON DELETE SET NULL
);

CREATE INDEX IF NOT EXISTS idx_tasks_swarm_status ON tasks(swarm_id, status, priority, created_at);
CREATE INDEX IF NOT EXISTS idx_tasks_agent ON tasks(assigned_agent_id) WHERE assigned_agent_id IS NOT NULL;

-- Memory cache table
CREATE TABLE IF NOT EXISTS memory (
    key TEXT NOT NULL,
    namespace TEXT NOT NULL DEFAULT 'default',
    value TEXT NOT NULL,
    access_count INTEGER NOT NULL DEFAULT 0,
    last_accessed_at TEXT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    metadata TEXT,  -- JSON object
    ttl INTEGER,  -- seconds, NULL = no expiry

    PRIMARY KEY (key, namespace)
);

CREATE INDEX IF NOT EXISTS idx_memory_rank ON memory(namespace, access_count DESC, last_accessed_at DESC);
CREATE INDEX IF NOT EXISTS idx_memory_created ON memory(namespace, created_at);
CREATE INDEX IF NOT EXISTS idx_memory_ttl ON memory(namespace) WHERE ttl IS NOT NULL;

-- Communications table
CREATE TABLE IF NOT EXISTS communications (
    id TEXT PRIMARY KEY,
    swarm_id TEXT NOT NULL,
    from_agent_id TEXT NOT NULL,
    to_agent_id TEXT,  -- NULL = broadcast
    message_type TEXT NOT NULL DEFAULT 'direct',
    content TEXT NOT NULL,
    metadata TEXT,  -- JSON object
    broadcast_scope TEXT NOT NULL DEFAULT 'none' CHECK(broadcast_scope IN ('swarm', 'global', 'none')),
    priority TEXT NOT NULL DEFAULT 'medium' CHECK(priority IN ('urgent', 'high', 'medium', 'low')),
    created_at TEXT NOT NULL,
    delivered_at TEXT,
    read_at TEXT,
    acknowledged_at TEXT,
    requires_response INTEGER NOT NULL DEFAULT 0 CHECK(requires_response IN (0, 1)),
    parent_message_id TEXT,

    FOREIGN KEY (swarm_id) REFERENCES swarms(id),
    FOREIGN KEY (parent_message_id) REFERENCES communications(id)
);

CREATE INDEX IF NOT EXISTS idx_comms_recipient ON communications(to_agent_id, delivered_at);
CREATE INDEX IF NOT EXISTS idx_comms_broadcast ON communications(broadcast_scope, delivered_at) WHERE to_agent_id IS NULL;
CREATE INDEX IF NOT EXISTS idx_comms_swarm_created ON communications(swarm_id, created_at);
CREATE INDEX IF NOT EXISTS idx_comms_parent ON communications(parent_message_id) WHERE parent_message_id IS NOT NULL;

-- Per-recipient delivery state for broadcasts
CREATE TABLE IF NOT EXISTS message_receipts (
    message_id TEXT NOT NULL,
    agent_id TEXT NOT NULL,
    delivered_at TEXT,
    read_at TEXT,
    acknowledged_at TEXT,

    PRIMARY KEY (message_id, agent_id),
    FOREIGN KEY (message_id) REFERENCES communications(id) ON DELETE CASCADE
);

-- Consensus proposals table
CREATE TABLE IF NOT EXISTS consensus (
    id TEXT PRIMARY KEY,
    swarm_id TEXT NOT NULL,
    proposal_type TEXT NOT NULL DEFAULT 'general',
    proposal_data TEXT,  -- JSON
    proposed_by TEXT,
    threshold_required REAL NOT NULL CHECK(threshold_required BETWEEN 0 AND 1),
    votes_for INTEGER NOT NULL DEFAULT 0,
    votes_against INTEGER NOT NULL DEFAULT 0,
    votes_total INTEGER NOT NULL DEFAULT 0,
    status TEXT NOT NULL DEFAULT 'pending' CHECK(status IN ('pending', 'achieved', 'failed', 'timeout')),
    created_at TEXT NOT NULL,
    resolved_at TEXT,
    timeout_at TEXT,

    CHECK (votes_total = votes_for + votes_against),
    FOREIGN KEY (swarm_id) REFERENCES swarms(id)
);

CREATE INDEX IF NOT EXISTS idx_consensus_swarm ON consensus(swarm_id, created_at);
CREATE INDEX IF NOT EXISTS idx_consensus_pending_timeout ON consensus(timeout_at) WHERE status = 'pending';

-- One row per voter
CREATE TABLE IF NOT EXISTS consensus_votes (
    proposal_id TEXT NOT NULL,
    agent_id TEXT NOT NULL,
    vote INTEGER NOT NULL CHECK(vote IN (0, 1)),
    reason TEXT,
    created_at TEXT NOT NULL,

    PRIMARY KEY (proposal_id, agent_id),
    FOREIGN KEY (proposal_id) REFERENCES consensus(id) ON DELETE CASCADE
);

-- Append-only counters
CREATE TABLE IF NOT EXISTS performance_metrics (
    id TEXT PRIMARY KEY,
    swarm_id TEXT,
    agent_id TEXT,
    task_id TEXT,
    metric_type TEXT NOT NULL,
    metric_value REAL NOT NULL,
    metadata TEXT,  -- JSON object
    created_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_metrics_swarm ON performance_metrics(swarm_id, metric_type, created_at);

-- Metadata table
CREATE TABLE IF NOT EXISTS metadata (
    key TEXT PRIMARY KEY,
    value TEXT NOT NULL,
    updated_at TEXT DEFAULT (strftime('%Y-%m-%dT%H:%M:%f+00:00', 'now'))
);

INSERT OR IGNORE INTO metadata (key, value) VALUES ('schema_version', '1.0.0');
INSERT OR IGNORE INTO metadata (key, value) VALUES ('created_at', strftime('%s', 'now'));
"""

# Tables reported by health checks, in dependency order
CORE_TABLES = (
    "swarms",
    "agents",
    "tasks",
    "memory",
    "communications",
    "consensus",
    "performance_metrics",
)


def load_schema_file(schema_path: Union[str, Path]) -> str:
    """
    Read DDL from an external schema file.

    Raises:
        SchemaInitError: If the file cannot be read
    """
    try:
        return Path(schema_path).read_text(encoding="utf-8")
    except OSError as e:
        raise SchemaInitError(f"Cannot read schema file {schema_path}: {e}") from e


def init_schema(conn: sqlite3.Connection, db_path: str, schema_path: Optional[Union[str, Path]] = None) -> None:
    """
    Initialize database schema if not exists.

    Args:
        conn: SQLite connection
        db_path: Path to database file (for logging)
        schema_path: Optional DDL file applied instead of the built-in schema

    Raises:
        SchemaInitError: If schema initialization fails
    """
    script = load_schema_file(schema_path) if schema_path else SCHEMA_SQL
    try:
        conn.executescript(script)
        _run_migrations(conn)
        logger.debug(f"Initialized SQLite schema at {db_path}")
    except sqlite3.Error as e:
        raise SchemaInitError(f"Failed to initialize database schema: {e}") from e


def get_schema_version(conn: sqlite3.Connection) -> Optional[str]:
    row = conn.execute("SELECT value FROM metadata WHERE key = 'schema_version'").fetchone()
    return row[0] if row else None


def _run_migrations(conn: sqlite3.Connection) -> None:
    """
    Run forward-only schema/data migrations.

    - 1.1.0: collapse databases holding more than one active swarm (written
      before the single-active index existed) down to the newest one.
    """
    current_version = get_schema_version(conn) or "1.0.0"

    if current_version < "1.1.0":
        logger.info("Migrating to schema 1.1.0: enforcing a single active swarm")
        conn.execute(
            """
            UPDATE swarms SET is_active = 0
            WHERE is_active = 1 AND id != (
                SELECT id FROM swarms WHERE is_active = 1
                ORDER BY created_at DESC LIMIT 1
            )
            """
        )
        conn.execute(
            "CREATE UNIQUE INDEX IF NOT EXISTS idx_swarms_single_active ON swarms(is_active) WHERE is_active = 1"
        )
        conn.execute(
            "INSERT OR REPLACE INTO metadata (key, value) VALUES ('schema_version', ?)",
            (SCHEMA_VERSION,),
        )
