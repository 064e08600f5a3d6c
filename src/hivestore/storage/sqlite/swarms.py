"""
SQLite Swarm Operations

Swarm registry: creation, lookup, the exclusive active-swarm toggle,
listing and swarm-level statistics.
"""

import uuid
from datetime import timedelta
from typing import Any, Dict, List, Optional

from hivestore.logging_config import logger
from hivestore.schemas import StrategyPerformance, Swarm, SwarmStats
from hivestore.storage.sqlite.persistence import SQLitePersistence, encode_json


class SQLiteSwarmOperations:
    """
    Swarm registry operations.

    Invariant: at most one swarm has is_active = 1. The flag only changes
    through set_active(), which clears and sets inside one transaction.
    A partial unique index backs this at the database level.
    """

    def __init__(self, persistence: SQLitePersistence):
        self._db = persistence

    def create(
        self,
        name: str,
        topology: str = "mesh",
        queen_mode: str = "centralized",
        max_agents: int = 8,
        consensus_threshold: float = 0.66,
        memory_ttl: Optional[int] = None,
        config: Optional[Dict[str, Any]] = None,
        status: str = "active",
        swarm_id: Optional[str] = None,
    ) -> Swarm:
        """
        Create a swarm. New swarms are never active; call set_active().

        Raises:
            ConstraintViolationError: Duplicate id or invalid enum value
        """
        swarm_id = swarm_id or f"swarm-{uuid.uuid4().hex[:12]}"
        now = self._db.timestamp()
        self._db.execute("create_swarm", (
            swarm_id, name, topology, queen_mode, max_agents,
            consensus_threshold, memory_ttl, encode_json(config or {}),
            now, now, 0, status,
        ))
        logger.debug(f"Created swarm {swarm_id} ({topology}, max_agents={max_agents})")
        return self.get(swarm_id)

    def get(self, swarm_id: str) -> Optional[Swarm]:
        row = self._db.fetchone("get_swarm", (swarm_id,))
        return Swarm.model_validate(row) if row else None

    def get_active_id(self) -> Optional[str]:
        row = self._db.fetchone("get_active_swarm_id")
        return row["id"] if row else None

    def set_active(self, swarm_id: str) -> bool:
        """
        Make swarm_id the only active swarm.

        Both statements run in one transaction. If the target does not
        exist nothing is written and the previously active swarm stays
        active.

        Returns:
            True if the swarm is now active, False if it does not exist
        """
        with self._db.transaction():
            if self._db.fetchone("get_swarm", (swarm_id,)) is None:
                logger.debug(f"set_active: swarm {swarm_id} not found")
                return False
            now = self._db.timestamp()
            self._db.execute("clear_active_swarms", (now,))
            self._db.execute("activate_swarm", (now, swarm_id))

        logger.debug(f"Active swarm is now {swarm_id}")
        return True

    def list_all(self) -> List[Swarm]:
        """All swarms with their agent counts, newest first."""
        return [Swarm.model_validate(row) for row in self._db.fetchall("list_swarms")]

    def update_status(self, swarm_id: str, status: str) -> bool:
        """Change lifecycle status (active/paused/archived). Swarms are never deleted here."""
        changed = self._db.execute("update_swarm_status", (status, self._db.timestamp(), swarm_id))
        return changed > 0

    def get_stats(self, swarm_id: str, volume_window: timedelta = timedelta(hours=1)) -> SwarmStats:
        row = self._db.fetchone("get_swarm_stats", {
            "swarm_id": swarm_id,
            "since": self._db.timestamp(-volume_window),
        })
        return SwarmStats.model_validate(row)

    def get_strategy_performance(
        self,
        swarm_id: str,
        recent_window: timedelta = timedelta(days=7),
    ) -> Dict[str, StrategyPerformance]:
        """Task success rate and duration keyed by the swarm's topology."""
        rows = self._db.fetchall("get_strategy_performance", {
            "swarm_id": swarm_id,
            "since": self._db.timestamp(-recent_window),
        })
        return {row["strategy"]: StrategyPerformance.model_validate(row) for row in rows}
