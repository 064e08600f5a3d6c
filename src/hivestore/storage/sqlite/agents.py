"""
SQLite Agent Operations

Agent registry: creation, lookup, partial and status updates, and the
performance summary derived from assigned tasks.
"""

import uuid
from typing import Any, Dict, List, Mapping, Optional

from hivestore.logging_config import logger
from hivestore.schemas import Agent, AgentPerformance
from hivestore.storage.sqlite.persistence import SQLitePersistence, encode_json
from hivestore.storage.sqlite.statements import (
    ColumnValue,
    RawExpression,
    UPDATABLE_COLUMNS,
    build_update,
    increment,
    update_key,
)

JSON_COLUMNS = frozenset({"capabilities", "metadata"})
# Written only by record_outcome()
COUNTER_COLUMNS = frozenset({"success_count", "error_count"})


def encode_updates(updates: Mapping[str, Any], json_columns) -> Dict[str, Any]:
    """JSON-encode plain values headed for JSON columns; expressions pass through."""
    encoded: Dict[str, Any] = {}
    for column, value in updates.items():
        if column in json_columns and not isinstance(value, RawExpression):
            if isinstance(value, ColumnValue):
                value = value.value
            value = ColumnValue(encode_json(value))
        encoded[column] = value
    return encoded


class SQLiteAgentOperations:
    """
    Agent registry operations.

    success_count and error_count only grow: record_outcome() is their
    writer and always increments.
    """

    def __init__(self, persistence: SQLitePersistence):
        self._db = persistence

    def create(
        self,
        swarm_id: str,
        name: str,
        agent_type: str,
        status: str = "idle",
        capabilities: Optional[List[str]] = None,
        metadata: Optional[Dict[str, Any]] = None,
        agent_id: Optional[str] = None,
    ) -> Agent:
        """
        Register an agent in a swarm.

        Raises:
            ConstraintViolationError: Unknown swarm, duplicate id or invalid type/status
        """
        agent_id = agent_id or f"agent-{uuid.uuid4().hex[:12]}"
        now = self._db.timestamp()
        self._db.execute("create_agent", (
            agent_id, swarm_id, name, agent_type, status,
            encode_json(capabilities or []), None,
            0, 0, 0, now, now, encode_json(metadata or {}),
        ))
        logger.debug(f"Spawned agent {agent_id} ({agent_type}) in swarm {swarm_id}")
        return self.get(agent_id)

    def get(self, agent_id: str) -> Optional[Agent]:
        row = self._db.fetchone("get_agent", (agent_id,))
        return Agent.model_validate(row) if row else None

    def list_by_swarm(self, swarm_id: str) -> List[Agent]:
        """Agents of a swarm in spawn order."""
        return [Agent.model_validate(row) for row in self._db.fetchall("list_agents", (swarm_id,))]

    def update(self, agent_id: str, updates: Mapping[str, Any]) -> bool:
        """
        Partial update of arbitrary agent columns.

        Values may be plain, ColumnValue or RawExpression. The execution
        counters are not updatable here; see record_outcome().

        Raises:
            MalformedUpdateError: Empty, unknown or counter column set
        """
        return self._apply_update(agent_id, updates, UPDATABLE_COLUMNS["agents"] - COUNTER_COLUMNS)

    def _apply_update(self, agent_id: str, updates: Mapping[str, Any], allowed) -> bool:
        sql, params = build_update("agents", encode_updates(updates, JSON_COLUMNS), allowed=allowed)
        params.append(agent_id)
        return self._db.execute_dynamic(update_key("agents", updates), sql, params) > 0

    def update_status(self, agent_id: str, status: str) -> bool:
        """Set status and last_active_at together."""
        return self._db.execute("update_agent_status", (status, self._db.timestamp(), agent_id)) > 0

    def record_outcome(self, agent_id: str, success: bool) -> bool:
        """Count one execution report against the agent."""
        counter = "success_count" if success else "error_count"
        return self._apply_update(agent_id, {
            counter: increment(counter),
            "last_active_at": self._db.timestamp(),
        }, UPDATABLE_COLUMNS["agents"])

    def increment_message_count(self, agent_id: str, by: int = 1) -> bool:
        return self.update(agent_id, {"message_count": increment("message_count", by)})

    def get_performance(self, agent_id: str) -> Optional[AgentPerformance]:
        row = self._db.fetchone("get_agent_performance", (agent_id,))
        return AgentPerformance.model_validate(row) if row else None
