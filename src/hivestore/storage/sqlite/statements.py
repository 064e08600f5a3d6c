"""
SQLite Statement Catalog

Every fixed access path is a parameterized statement keyed by operation
name. The persistence layer compiles each key once and reuses it.

Partial updates are the only dynamically assembled statements. Their
column names are checked against UPDATABLE_COLUMNS and their values are
either bound parameters (ColumnValue) or computed expressions
(RawExpression) with their own bound parameters.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, FrozenSet, List, Mapping, Optional, Tuple, Union

from hivestore.exceptions import MalformedUpdateError
from hivestore.schemas import MESSAGE_PRIORITY_RANK, TASK_PRIORITY_RANK


def _rank_case(column: str, ranks: Mapping[str, int]) -> str:
    """ORDER BY expression mapping each priority label to its rank."""
    whens = " ".join(f"WHEN '{label}' THEN {rank}" for label, rank in ranks.items())
    return f"CASE {column} {whens} ELSE {max(ranks.values()) + 1} END"


# Shared ORDER BY fragments
TASK_PRIORITY_ORDER = _rank_case("priority", TASK_PRIORITY_RANK)
MESSAGE_PRIORITY_ORDER = _rank_case("c.priority", MESSAGE_PRIORITY_RANK)
# Frequency first, recency breaks ties, newest insert breaks the rest
MEMORY_RANK_ORDER = "access_count DESC, last_accessed_at DESC, rowid DESC"


def _epoch_micros(expr: str) -> str:
    """
    Integer microseconds since the epoch for a stored timestamp
    (YYYY-MM-DDTHH:MM:SS.ffffff+00:00). Exact, unlike julianday().
    """
    return f"(CAST(strftime('%s', {expr}) AS INTEGER) * 1000000 + CAST(substr({expr}, 21, 6) AS INTEGER))"


# An entry expires once its age since the last write exceeds its ttl
MEMORY_EXPIRED = f"ttl IS NOT NULL AND {_epoch_micros(':now')} - {_epoch_micros('updated_at')} > ttl * 1000000"


STATEMENTS: Dict[str, str] = {
    # ========== SWARMS ==========
    "create_swarm": """
        INSERT INTO swarms (
            id, name, topology, queen_mode, max_agents,
            consensus_threshold, memory_ttl, config, created_at, updated_at, is_active, status
        ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
    """,
    "get_swarm": "SELECT * FROM swarms WHERE id = ?",
    "get_active_swarm_id": "SELECT id FROM swarms WHERE is_active = 1 LIMIT 1",
    "clear_active_swarms": "UPDATE swarms SET is_active = 0, updated_at = ? WHERE is_active = 1",
    "activate_swarm": "UPDATE swarms SET is_active = 1, updated_at = ? WHERE id = ?",
    "list_swarms": """
        SELECT s.*,
               (SELECT COUNT(*) FROM agents WHERE swarm_id = s.id) AS agent_count
        FROM swarms s
        ORDER BY s.created_at DESC, s.rowid DESC
    """,
    "update_swarm_status": "UPDATE swarms SET status = ?, updated_at = ? WHERE id = ?",
    "get_swarm_stats": """
        SELECT
            (SELECT COUNT(*) FROM agents WHERE swarm_id = :swarm_id) AS total_agents,
            (SELECT COUNT(*) FROM agents WHERE swarm_id = :swarm_id AND status = 'active') AS active_agents,
            (SELECT COUNT(*) FROM agents WHERE swarm_id = :swarm_id AND status = 'busy') AS busy_agents,
            (SELECT COUNT(*) FROM tasks WHERE swarm_id = :swarm_id) AS total_tasks,
            (SELECT COUNT(*) FROM tasks WHERE swarm_id = :swarm_id AND status = 'completed') AS completed_tasks,
            (SELECT COUNT(*) FROM tasks WHERE swarm_id = :swarm_id AND status = 'failed') AS failed_tasks,
            (SELECT COUNT(*) FROM tasks WHERE swarm_id = :swarm_id AND status IN ('pending', 'assigned')) AS task_backlog,
            (SELECT COUNT(*) FROM communications WHERE swarm_id = :swarm_id AND created_at > :since) AS communication_volume
    """,
    "get_strategy_performance": """
        SELECT
            s.topology AS strategy,
            ROUND(
                CAST(SUM(CASE WHEN t.status = 'completed' THEN 1 ELSE 0 END) AS REAL) /
                NULLIF(COUNT(t.id), 0) * 100, 2
            ) AS success_rate,
            ROUND(AVG(t.actual_duration), 2) AS avg_completion_time,
            COUNT(t.id) AS total_tasks,
            ROUND(
                CAST(SUM(CASE WHEN t.status = 'completed' AND t.created_at > :since THEN 1 ELSE 0 END) AS REAL) /
                NULLIF(SUM(CASE WHEN t.created_at > :since THEN 1 ELSE 0 END), 0) * 100, 2
            ) AS recent_performance
        FROM swarms s
        LEFT JOIN tasks t ON s.id = t.swarm_id
        WHERE s.id = :swarm_id
        GROUP BY s.topology
    """,

    # ========== AGENTS ==========
    "create_agent": """
        INSERT INTO agents (
            id, swarm_id, name, type, status, capabilities, current_task_id,
            message_count, error_count, success_count, created_at, last_active_at, metadata
        ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
    """,
    "get_agent": "SELECT * FROM agents WHERE id = ?",
    "list_agents": "SELECT * FROM agents WHERE swarm_id = ? ORDER BY created_at, rowid",
    "update_agent_status": "UPDATE agents SET status = ?, last_active_at = ? WHERE id = ?",
    "get_agent_performance": """
        SELECT
            a.id AS agent_id,
            a.success_count,
            a.error_count,
            (SELECT COUNT(*) FROM tasks WHERE assigned_agent_id = a.id AND status = 'completed') AS completed_tasks,
            (SELECT COUNT(*) FROM tasks WHERE assigned_agent_id = a.id AND status = 'failed') AS failed_tasks,
            (SELECT AVG(actual_duration) FROM tasks
             WHERE assigned_agent_id = a.id AND actual_duration IS NOT NULL) AS avg_completion_time
        FROM agents a
        WHERE a.id = ?
    """,

    # ========== TASKS ==========
    "create_task": """
        INSERT INTO tasks (
            id, swarm_id, type, description, status, priority, assigned_agent_id,
            dependencies, requirements, result, created_at, assigned_at, started_at,
            completed_at, estimated_duration, actual_duration, metadata
        ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
    """,
    "get_task": "SELECT * FROM tasks WHERE id = ?",
    "list_tasks": "SELECT * FROM tasks WHERE swarm_id = ? ORDER BY created_at DESC, rowid DESC",
    "update_task_status": """
        UPDATE tasks
        SET status = :status,
            started_at = CASE WHEN :status = 'in_progress' THEN COALESCE(started_at, :now) ELSE started_at END,
            completed_at = CASE WHEN :status IN ('completed', 'failed', 'cancelled') THEN :now ELSE NULL END
        WHERE id = :id
    """,
    "list_pending_tasks": f"""
        SELECT * FROM tasks
        WHERE swarm_id = ? AND status = 'pending'
        ORDER BY {TASK_PRIORITY_ORDER}, created_at, rowid
    """,
    "list_active_tasks": """
        SELECT t.*, a.name AS agent_name
        FROM tasks t
        LEFT JOIN agents a ON t.assigned_agent_id = a.id
        WHERE t.swarm_id = ? AND t.status IN ('assigned', 'in_progress')
        ORDER BY t.created_at, t.rowid
    """,
    "reassign_task": """
        UPDATE tasks
        SET assigned_agent_id = ?, status = 'assigned', assigned_at = ?, completed_at = NULL
        WHERE id = ?
    """,

    # ========== MEMORY ==========
    "store_memory": """
        INSERT INTO memory (
            key, namespace, value, access_count, last_accessed_at, created_at, updated_at, metadata, ttl
        ) VALUES (?, ?, ?, 0, ?, ?, ?, ?, ?)
        ON CONFLICT(key, namespace) DO UPDATE SET
            value = excluded.value,
            metadata = excluded.metadata,
            ttl = excluded.ttl,
            updated_at = excluded.updated_at,
            last_accessed_at = excluded.last_accessed_at
    """,
    "get_memory": "SELECT * FROM memory WHERE key = ? AND namespace = ?",
    "touch_memory": """
        UPDATE memory
        SET access_count = access_count + 1, last_accessed_at = ?
        WHERE key = ? AND namespace = ?
    """,
    "search_memory": f"""
        SELECT * FROM memory
        WHERE namespace = ? AND (key LIKE ? ESCAPE '\\' OR value LIKE ? ESCAPE '\\')
        ORDER BY {MEMORY_RANK_ORDER}
        LIMIT ?
    """,
    "delete_memory": "DELETE FROM memory WHERE key = ? AND namespace = ?",
    "list_memory": f"""
        SELECT * FROM memory
        WHERE namespace = ?
        ORDER BY {MEMORY_RANK_ORDER}
        LIMIT ?
    """,
    "get_memory_stats": """
        SELECT
            COUNT(*) AS total_entries,
            COALESCE(SUM(LENGTH(value)), 0) AS total_size,
            COUNT(DISTINCT namespace) AS namespace_count
        FROM memory
    """,
    "get_namespace_stats": """
        SELECT
            ? AS namespace,
            COUNT(*) AS entry_count,
            COALESCE(SUM(LENGTH(value)), 0) AS total_size,
            AVG(access_count) AS avg_access_count,
            AVG(ttl) AS avg_ttl,
            MAX(last_accessed_at) AS last_accessed
        FROM memory
        WHERE namespace = ?
    """,
    "list_namespaces": "SELECT DISTINCT namespace FROM memory ORDER BY namespace",
    "get_all_memory": "SELECT * FROM memory ORDER BY last_accessed_at DESC, rowid DESC",
    "get_recent_memory": "SELECT * FROM memory ORDER BY created_at DESC, rowid DESC LIMIT ?",
    "get_old_memory": "SELECT * FROM memory WHERE created_at < ? ORDER BY created_at, rowid",
    "update_memory_entry": """
        UPDATE memory
        SET value = ?, metadata = ?, updated_at = ?
        WHERE key = ? AND namespace = ?
    """,
    "clear_memory": "DELETE FROM memory WHERE namespace LIKE ? ESCAPE '\\'",
    "delete_old_entries": "DELETE FROM memory WHERE namespace = ? AND created_at < ?",
    "expire_memory": f"""
        DELETE FROM memory
        WHERE {MEMORY_EXPIRED}
    """,
    "expire_memory_namespace": f"""
        DELETE FROM memory
        WHERE namespace = :namespace AND {MEMORY_EXPIRED}
    """,
    "trim_namespace": f"""
        DELETE FROM memory
        WHERE namespace = ? AND rowid NOT IN (
            SELECT rowid FROM memory
            WHERE namespace = ?
            ORDER BY {MEMORY_RANK_ORDER}
            LIMIT ?
        )
    """,
    "get_successful_decisions": """
        SELECT * FROM memory
        WHERE namespace LIKE ? ESCAPE '\\' AND namespace LIKE '%decision%'
          AND value LIKE '%success%'
        ORDER BY access_count DESC, created_at DESC, rowid DESC
        LIMIT ?
    """,

    # ========== COMMUNICATIONS ==========
    "create_communication": """
        INSERT INTO communications (
            id, swarm_id, from_agent_id, to_agent_id, message_type, content, metadata,
            broadcast_scope, priority, created_at, delivered_at, read_at, acknowledged_at,
            requires_response, parent_message_id
        ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
    """,
    "get_communication": "SELECT * FROM communications WHERE id = ?",
    "get_pending_messages": f"""
        SELECT c.* FROM communications c
        WHERE c.delivered_at IS NULL
          AND (
            c.to_agent_id = :agent_id
            OR (
                c.to_agent_id IS NULL
                AND c.from_agent_id != :agent_id
                AND (
                    c.broadcast_scope = 'global'
                    OR (c.broadcast_scope = 'swarm'
                        AND c.swarm_id = (SELECT swarm_id FROM agents WHERE id = :agent_id))
                )
                AND NOT EXISTS (
                    SELECT 1 FROM message_receipts r
                    WHERE r.message_id = c.id AND r.agent_id = :agent_id AND r.delivered_at IS NOT NULL
                )
            )
          )
        ORDER BY {MESSAGE_PRIORITY_ORDER}, c.created_at, c.rowid
    """,
    "mark_message_delivered": """
        UPDATE communications
        SET delivered_at = COALESCE(delivered_at, ?)
        WHERE id = ?
    """,
    "mark_message_read": """
        UPDATE communications
        SET delivered_at = COALESCE(delivered_at, :now),
            read_at = COALESCE(read_at, :now)
        WHERE id = :id
    """,
    "mark_message_acknowledged": """
        UPDATE communications
        SET delivered_at = COALESCE(delivered_at, :now),
            read_at = COALESCE(read_at, :now),
            acknowledged_at = COALESCE(acknowledged_at, :now)
        WHERE id = :id
    """,
    "upsert_receipt_delivered": """
        INSERT INTO message_receipts (message_id, agent_id, delivered_at)
        VALUES (:id, :agent_id, :now)
        ON CONFLICT(message_id, agent_id) DO UPDATE SET
            delivered_at = COALESCE(delivered_at, excluded.delivered_at)
    """,
    "upsert_receipt_read": """
        INSERT INTO message_receipts (message_id, agent_id, delivered_at, read_at)
        VALUES (:id, :agent_id, :now, :now)
        ON CONFLICT(message_id, agent_id) DO UPDATE SET
            delivered_at = COALESCE(delivered_at, excluded.delivered_at),
            read_at = COALESCE(read_at, excluded.read_at)
    """,
    "upsert_receipt_acknowledged": """
        INSERT INTO message_receipts (message_id, agent_id, delivered_at, read_at, acknowledged_at)
        VALUES (:id, :agent_id, :now, :now, :now)
        ON CONFLICT(message_id, agent_id) DO UPDATE SET
            delivered_at = COALESCE(delivered_at, excluded.delivered_at),
            read_at = COALESCE(read_at, excluded.read_at),
            acknowledged_at = COALESCE(acknowledged_at, excluded.acknowledged_at)
    """,
    "get_receipt": "SELECT * FROM message_receipts WHERE message_id = ? AND agent_id = ?",
    "get_recent_messages": """
        SELECT * FROM communications
        WHERE swarm_id = ? AND created_at > ?
        ORDER BY created_at DESC, rowid DESC
    """,
    "get_message_thread": """
        SELECT * FROM communications
        WHERE parent_message_id = ?
        ORDER BY created_at, rowid
    """,

    # ========== CONSENSUS ==========
    "create_consensus_proposal": """
        INSERT INTO consensus (
            id, swarm_id, proposal_type, proposal_data, proposed_by, threshold_required,
            votes_for, votes_against, votes_total, status, created_at, resolved_at, timeout_at
        ) VALUES (?, ?, ?, ?, ?, ?, 0, 0, 0, 'pending', ?, NULL, ?)
    """,
    "get_consensus_proposal": "SELECT * FROM consensus WHERE id = ?",
    "insert_consensus_vote": """
        INSERT INTO consensus_votes (proposal_id, agent_id, vote, reason, created_at)
        VALUES (?, ?, ?, ?, ?)
    """,
    "submit_consensus_vote": """
        UPDATE consensus
        SET votes_for = votes_for + ?, votes_against = votes_against + ?, votes_total = votes_total + 1
        WHERE id = ? AND status = 'pending'
    """,
    "get_consensus_votes": """
        SELECT * FROM consensus_votes WHERE proposal_id = ? ORDER BY created_at, rowid
    """,
    "update_consensus_status": """
        UPDATE consensus SET status = ?, resolved_at = ?
        WHERE id = ? AND status = 'pending'
    """,
    "get_recent_consensus": """
        SELECT * FROM consensus
        WHERE swarm_id = ?
        ORDER BY created_at DESC, rowid DESC
        LIMIT ?
    """,
    "list_expired_proposals": """
        SELECT id FROM consensus
        WHERE status = 'pending' AND timeout_at IS NOT NULL AND timeout_at <= ?
    """,

    # ========== PERFORMANCE METRICS ==========
    "store_performance_metric": """
        INSERT INTO performance_metrics (
            id, swarm_id, agent_id, task_id, metric_type, metric_value, metadata, created_at
        ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
    """,

    # ========== HEALTH ==========
    "ping": "SELECT 1",
    "list_tables": "SELECT name FROM sqlite_master WHERE type = 'table'",
}


# Columns a partial update may touch. Identity and creation columns are excluded.
UPDATABLE_COLUMNS: Dict[str, FrozenSet[str]] = {
    "agents": frozenset({
        "name", "type", "status", "capabilities", "current_task_id",
        "message_count", "error_count", "success_count", "last_active_at", "metadata",
    }),
    "tasks": frozenset({
        "type", "description", "status", "priority", "assigned_agent_id",
        "dependencies", "requirements", "result", "assigned_at", "started_at",
        "completed_at", "estimated_duration", "actual_duration", "metadata",
    }),
    "swarms": frozenset({
        "name", "topology", "queen_mode", "max_agents", "consensus_threshold",
        "memory_ttl", "config", "updated_at", "status",
    }),
}


@dataclass(frozen=True)
class ColumnValue:
    """A literal value bound as a statement parameter."""
    value: Any


@dataclass(frozen=True)
class RawExpression:
    """
    A computed SQL expression for a SET clause, e.g. ``success_count + ?``.

    Only placeholders may carry caller data; the expression text itself is
    written by this package, never built from input.
    """
    sql: str
    params: Tuple[Any, ...] = field(default_factory=tuple)


UpdateValue = Union[ColumnValue, RawExpression]


def increment(column: str, by: int = 1) -> RawExpression:
    """Build a ``column = column + ?`` expression."""
    return RawExpression(f"{column} + ?", (by,))


def build_update(
    table: str,
    updates: Mapping[str, Any],
    key_column: str = "id",
    allowed: Optional[FrozenSet[str]] = None,
) -> Tuple[str, List[Any]]:
    """
    Assemble ``UPDATE <table> SET ... WHERE <key_column> = ?``.

    Plain values are treated as ColumnValue. allowed narrows the table's
    updatable columns. The caller appends the key parameter to the
    returned list.

    Raises:
        MalformedUpdateError: If updates is empty or names a column that
            is not updatable on this table
    """
    if not updates:
        raise MalformedUpdateError(table, "no columns to set")

    if allowed is None:
        allowed = UPDATABLE_COLUMNS.get(table)
    if allowed is None:
        raise MalformedUpdateError(table, "table does not support partial updates")

    unknown = sorted(set(updates) - allowed)
    if unknown:
        raise MalformedUpdateError(table, f"unknown or read-only columns: {', '.join(unknown)}")

    clauses: List[str] = []
    params: List[Any] = []
    for column, value in updates.items():
        if isinstance(value, RawExpression):
            clauses.append(f"{column} = {value.sql}")
            params.extend(value.params)
        else:
            if isinstance(value, ColumnValue):
                value = value.value
            clauses.append(f"{column} = ?")
            params.append(value)

    sql = f"UPDATE {table} SET {', '.join(clauses)} WHERE {key_column} = ?"
    return sql, params


def update_key(table: str, updates: Mapping[str, Any]) -> str:
    """Stable operation key for a dynamic update, used for caching and diagnostics."""
    return f"update_{table}[{','.join(sorted(updates))}]"
