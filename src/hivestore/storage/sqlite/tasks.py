"""
SQLite Task Operations

Task queue: creation, lookup, partial and status updates, the
priority-ordered pending queue, and reassignment.
"""

import uuid
from typing import Any, Dict, List, Mapping, Optional

from hivestore.exceptions import MalformedUpdateError
from hivestore.logging_config import logger
from hivestore.schemas import TERMINAL_TASK_STATUSES, Task
from hivestore.storage.sqlite.agents import encode_updates
from hivestore.storage.sqlite.persistence import SQLitePersistence, encode_json
from hivestore.storage.sqlite.statements import (
    UPDATABLE_COLUMNS,
    ColumnValue,
    RawExpression,
    build_update,
    update_key,
)

JSON_COLUMNS = frozenset({"dependencies", "requirements", "result", "metadata"})


class SQLiteTaskOperations:
    """
    Task queue operations.

    completed_at is derived from status: it is set exactly when the status
    is terminal (completed, failed, cancelled) and NULL otherwise. Callers
    never write it directly.
    """

    def __init__(self, persistence: SQLitePersistence):
        self._db = persistence

    def create(
        self,
        swarm_id: str,
        description: str,
        priority: str = "medium",
        task_type: str = "general",
        status: str = "pending",
        dependencies: Optional[List[str]] = None,
        requirements: Any = None,
        estimated_duration: Optional[float] = None,
        metadata: Optional[Dict[str, Any]] = None,
        task_id: Optional[str] = None,
    ) -> Task:
        """
        Queue a task.

        Raises:
            ConstraintViolationError: Unknown swarm, duplicate id or invalid status/priority
        """
        task_id = task_id or f"task-{uuid.uuid4().hex[:12]}"
        now = self._db.timestamp()
        completed_at = now if status in TERMINAL_TASK_STATUSES else None
        self._db.execute("create_task", (
            task_id, swarm_id, task_type, description, status, priority, None,
            encode_json(dependencies or []), encode_json(requirements), None,
            now, None, None, completed_at, estimated_duration, None,
            encode_json(metadata or {}),
        ))
        logger.debug(f"Queued task {task_id} ({priority}) in swarm {swarm_id}")
        return self.get(task_id)

    def get(self, task_id: str) -> Optional[Task]:
        row = self._db.fetchone("get_task", (task_id,))
        return Task.model_validate(row) if row else None

    def list_by_swarm(self, swarm_id: str) -> List[Task]:
        """All tasks of a swarm, newest first."""
        return [Task.model_validate(row) for row in self._db.fetchall("list_tasks", (swarm_id,))]

    def update(self, task_id: str, updates: Mapping[str, Any]) -> bool:
        """
        Partial update of task columns.

        A status change also sets or clears completed_at.

        Raises:
            MalformedUpdateError: Empty or unknown column set, a direct
                completed_at write, or a computed status
        """
        updates = dict(updates)
        if "status" in updates:
            status = updates["status"]
            if isinstance(status, RawExpression):
                raise MalformedUpdateError("tasks", "status must be a plain value")
            if isinstance(status, ColumnValue):
                status = status.value
            updates["completed_at"] = self._db.timestamp() if status in TERMINAL_TASK_STATUSES else None
            allowed = UPDATABLE_COLUMNS["tasks"]
        else:
            allowed = UPDATABLE_COLUMNS["tasks"] - {"completed_at"}

        sql, params = build_update("tasks", encode_updates(updates, JSON_COLUMNS), allowed=allowed)
        params.append(task_id)
        return self._db.execute_dynamic(update_key("tasks", updates), sql, params) > 0

    def update_status(self, task_id: str, status: str, result: Any = None) -> bool:
        """
        Move a task to status.

        Entering in_progress stamps started_at once. A terminal status stamps
        completed_at; any other status clears it. result, when given, is
        stored alongside.
        """
        with self._db.transaction():
            changed = self._db.execute("update_task_status", {
                "status": status,
                "now": self._db.timestamp(),
                "id": task_id,
            }) > 0
            if changed and result is not None:
                self.update(task_id, {"result": result})

        if changed:
            logger.debug(f"Task {task_id} -> {status}")
        return changed

    def list_pending(self, swarm_id: str) -> List[Task]:
        """
        Pending tasks in dispatch order.

        Priority rank first (critical, high, medium, low), then creation
        time, then insertion order, so equal-priority tasks stay FIFO.
        """
        rows = self._db.fetchall("list_pending_tasks", (swarm_id,))
        return [Task.model_validate(row) for row in rows]

    def list_active(self, swarm_id: str) -> List[Task]:
        """Assigned and in-progress tasks with the assignee's name."""
        rows = self._db.fetchall("list_active_tasks", (swarm_id,))
        return [Task.model_validate(row) for row in rows]

    def reassign(self, task_id: str, agent_id: str) -> bool:
        """
        Hand a task to agent_id. Identity is kept; status becomes
        assigned and assigned_at is reset to now.

        Raises:
            ConstraintViolationError: agent_id does not exist
        """
        changed = self._db.execute("reassign_task", (agent_id, self._db.timestamp(), task_id)) > 0
        if changed:
            logger.debug(f"Reassigned task {task_id} to {agent_id}")
        return changed
