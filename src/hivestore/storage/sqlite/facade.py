"""
SQLite Coordination Facade

Public API for the hive-mind coordination store. One method per store
operation; every method delegates to the entity operation modules, which
share a single persistence engine.
"""

import sqlite3
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Union

from hivestore.config import StoreConfig
from hivestore.exceptions import HiveStoreError
from hivestore.logging_config import logger
from hivestore.maintenance import NamespaceLocks
from hivestore.schemas import (
    Agent,
    AgentPerformance,
    Communication,
    ConsensusProposal,
    ConsensusVote,
    HealthReport,
    MemoryEntry,
    MemoryStats,
    MessageReceipt,
    NamespaceStats,
    StrategyPerformance,
    Swarm,
    SwarmStats,
    Task,
)
from hivestore.storage.sqlite.agents import SQLiteAgentOperations
from hivestore.storage.sqlite.communications import SQLiteCommunicationOperations
from hivestore.storage.sqlite.consensus import SQLiteConsensusOperations
from hivestore.storage.sqlite.memory import SQLiteMemoryOperations
from hivestore.storage.sqlite.metrics import SQLiteMetricOperations
from hivestore.storage.sqlite.persistence import Clock, SQLitePersistence
from hivestore.storage.sqlite.schema import CORE_TABLES
from hivestore.storage.sqlite.swarms import SQLiteSwarmOperations
from hivestore.storage.sqlite.tasks import SQLiteTaskOperations


class HiveCoordinator:
    """
    SQLite-backed coordination store for swarms, agents, tasks, memory,
    messages and consensus.

    Modular architecture:
    - persistence: Connection, pragmas, statement catalog, transactions
    - swarms / agents / tasks: Registries and the task queue
    - memory: Namespaced cache with TTL and capacity trimming
    - communications: Message log with per-recipient broadcast receipts
    - consensus: Proposals, votes and the threshold policy
    - metrics: Append-only performance samples

    There is no process-wide instance. Build one at startup (see
    open_coordinator()) and pass it to whoever needs it.

    Args:
        persistence: The engine this facade delegates to
    """

    def __init__(self, persistence: SQLitePersistence):
        self.persistence = persistence
        self.config = persistence.config

        self.swarms = SQLiteSwarmOperations(persistence)
        self.agents = SQLiteAgentOperations(persistence)
        self.tasks = SQLiteTaskOperations(persistence)
        self.memory = SQLiteMemoryOperations(persistence)
        self.communications = SQLiteCommunicationOperations(persistence)
        self.consensus = SQLiteConsensusOperations(persistence)
        self.metrics = SQLiteMetricOperations(persistence)

        # Shared by every MemorySweeper over this coordinator
        self.sweep_locks = NamespaceLocks()

    # ========== LIFECYCLE ==========

    def initialize(self) -> None:
        """Open the database and apply the schema. Idempotent."""
        self.persistence.initialize()

    def transaction(self):
        """Context manager for atomic multi-operation units."""
        return self.persistence.transaction()

    def close(self) -> None:
        self.persistence.close()

    def __enter__(self) -> "HiveCoordinator":
        self.initialize()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    # ========== SWARM OPERATIONS ==========

    def create_swarm(self, name: str, topology: str = "mesh", **kwargs) -> Swarm:
        """Create a swarm. See SQLiteSwarmOperations.create for options."""
        return self.swarms.create(name, topology=topology, **kwargs)

    def get_swarm(self, swarm_id: str) -> Optional[Swarm]:
        return self.swarms.get(swarm_id)

    def get_active_swarm_id(self) -> Optional[str]:
        return self.swarms.get_active_id()

    def set_active_swarm(self, swarm_id: str) -> bool:
        """Atomically make swarm_id the only active swarm."""
        return self.swarms.set_active(swarm_id)

    def get_all_swarms(self) -> List[Swarm]:
        return self.swarms.list_all()

    def update_swarm_status(self, swarm_id: str, status: str) -> bool:
        return self.swarms.update_status(swarm_id, status)

    def archive_swarm(self, swarm_id: str) -> bool:
        """Retire a swarm. The row is kept."""
        return self.swarms.update_status(swarm_id, "archived")

    def get_swarm_stats(self, swarm_id: str) -> SwarmStats:
        return self.swarms.get_stats(swarm_id)

    def get_strategy_performance(self, swarm_id: str) -> Dict[str, StrategyPerformance]:
        return self.swarms.get_strategy_performance(swarm_id)

    # ========== AGENT OPERATIONS ==========

    def create_agent(self, swarm_id: str, name: str, agent_type: str, **kwargs) -> Agent:
        return self.agents.create(swarm_id, name, agent_type, **kwargs)

    def get_agent(self, agent_id: str) -> Optional[Agent]:
        return self.agents.get(agent_id)

    def get_agents(self, swarm_id: str) -> List[Agent]:
        return self.agents.list_by_swarm(swarm_id)

    def update_agent(self, agent_id: str, updates: Mapping[str, Any]) -> bool:
        return self.agents.update(agent_id, updates)

    def update_agent_status(self, agent_id: str, status: str) -> bool:
        return self.agents.update_status(agent_id, status)

    def record_agent_outcome(self, agent_id: str, success: bool) -> bool:
        """Count one execution report; the only writer of the success/error counters."""
        return self.agents.record_outcome(agent_id, success)

    def increment_message_count(self, agent_id: str, by: int = 1) -> bool:
        return self.agents.increment_message_count(agent_id, by)

    def get_agent_performance(self, agent_id: str) -> Optional[AgentPerformance]:
        return self.agents.get_performance(agent_id)

    # ========== TASK OPERATIONS ==========

    def create_task(self, swarm_id: str, description: str, priority: str = "medium", **kwargs) -> Task:
        return self.tasks.create(swarm_id, description, priority=priority, **kwargs)

    def get_task(self, task_id: str) -> Optional[Task]:
        return self.tasks.get(task_id)

    def get_tasks(self, swarm_id: str) -> List[Task]:
        return self.tasks.list_by_swarm(swarm_id)

    def update_task(self, task_id: str, updates: Mapping[str, Any]) -> bool:
        return self.tasks.update(task_id, updates)

    def update_task_status(self, task_id: str, status: str, result: Any = None) -> bool:
        return self.tasks.update_status(task_id, status, result)

    def get_pending_tasks(self, swarm_id: str) -> List[Task]:
        """Pending tasks by priority, FIFO within a priority band."""
        return self.tasks.list_pending(swarm_id)

    def get_active_tasks(self, swarm_id: str) -> List[Task]:
        return self.tasks.list_active(swarm_id)

    def reassign_task(self, task_id: str, agent_id: str) -> bool:
        return self.tasks.reassign(task_id, agent_id)

    # ========== MEMORY OPERATIONS ==========

    def store_memory(
        self,
        key: str,
        value: str,
        namespace: str = "default",
        ttl: Optional[int] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> None:
        """Upsert a cache entry. ttl falls back to the configured default."""
        if ttl is None:
            ttl = self.config.default_memory_ttl
        self.memory.store(key, namespace, value, ttl=ttl, metadata=metadata)

    def get_memory(self, key: str, namespace: str = "default") -> Optional[MemoryEntry]:
        """Read an entry. Every read counts toward its access_count."""
        return self.memory.get_and_touch(key, namespace)

    def search_memory(self, pattern: str, namespace: str = "default", limit: int = 10) -> List[MemoryEntry]:
        return self.memory.search(namespace, pattern, limit)

    def delete_memory(self, key: str, namespace: str = "default") -> bool:
        return self.memory.delete(key, namespace)

    def list_memory(self, namespace: str = "default", limit: int = 100) -> List[MemoryEntry]:
        return self.memory.list_by_namespace(namespace, limit)

    def get_memory_stats(self) -> MemoryStats:
        return self.memory.get_stats()

    def get_namespace_stats(self, namespace: str) -> NamespaceStats:
        return self.memory.get_namespace_stats(namespace)

    def list_namespaces(self) -> List[str]:
        return self.memory.list_namespaces()

    def get_all_memory(self) -> List[MemoryEntry]:
        return self.memory.get_all()

    def get_recent_memory(self, limit: int = 100) -> List[MemoryEntry]:
        return self.memory.get_recent(limit)

    def get_old_memory(self, days: int) -> List[MemoryEntry]:
        return self.memory.get_old(days)

    def update_memory_entry(
        self,
        key: str,
        namespace: str,
        value: str,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> bool:
        return self.memory.update_entry(key, namespace, value, metadata)

    def clear_memory(self, namespace_pattern: Optional[str] = None) -> int:
        return self.memory.clear(namespace_pattern)

    def delete_old_entries(self, namespace: str, ttl_seconds: int) -> int:
        return self.memory.delete_old_entries(namespace, ttl_seconds)

    def expire_memory(self, namespace: Optional[str] = None) -> int:
        return self.memory.expire(namespace)

    def trim_namespace(self, namespace: str, max_entries: int) -> int:
        return self.memory.trim_namespace(namespace, max_entries)

    def get_successful_decisions(self, namespace_prefix: str = "", limit: int = 20) -> List[MemoryEntry]:
        return self.memory.get_successful_decisions(namespace_prefix, limit)

    # ========== COMMUNICATION OPERATIONS ==========

    def create_communication(self, swarm_id: str, from_agent_id: str, content: str, **kwargs) -> Communication:
        """Record a message and count it against the sender."""
        with self.persistence.transaction():
            message = self.communications.create(swarm_id, from_agent_id, content, **kwargs)
            self.agents.increment_message_count(from_agent_id)
        return message

    def get_communication(self, message_id: str) -> Optional[Communication]:
        return self.communications.get(message_id)

    def get_pending_messages(self, agent_id: str) -> List[Communication]:
        return self.communications.get_pending_for_agent(agent_id)

    def mark_message_delivered(self, message_id: str, agent_id: Optional[str] = None) -> bool:
        return self.communications.mark_delivered(message_id, agent_id)

    def mark_message_read(self, message_id: str, agent_id: Optional[str] = None) -> bool:
        return self.communications.mark_read(message_id, agent_id)

    def mark_message_acknowledged(self, message_id: str, agent_id: Optional[str] = None) -> bool:
        return self.communications.mark_acknowledged(message_id, agent_id)

    def get_message_receipt(self, message_id: str, agent_id: str) -> Optional[MessageReceipt]:
        return self.communications.get_receipt(message_id, agent_id)

    def get_recent_messages(self, swarm_id: str, window: timedelta = timedelta(hours=1)) -> List[Communication]:
        return self.communications.get_recent(swarm_id, window)

    def get_message_thread(self, parent_message_id: str) -> List[Communication]:
        return self.communications.get_thread(parent_message_id)

    # ========== CONSENSUS OPERATIONS ==========

    def create_consensus_proposal(
        self,
        swarm_id: str,
        proposal_data: Any,
        threshold_required: Optional[float] = None,
        timeout: Union[datetime, timedelta, None] = None,
        **kwargs,
    ) -> ConsensusProposal:
        """
        Open a proposal. threshold_required defaults to the swarm's
        consensus_threshold.
        """
        if threshold_required is None:
            swarm = self.swarms.get(swarm_id)
            if swarm is None:
                raise KeyError(f"Unknown swarm: {swarm_id}")
            threshold_required = swarm.consensus_threshold
        return self.consensus.create_proposal(swarm_id, proposal_data, threshold_required, timeout, **kwargs)

    def get_consensus_proposal(self, proposal_id: str) -> Optional[ConsensusProposal]:
        return self.consensus.get(proposal_id)

    def submit_consensus_vote(
        self,
        proposal_id: str,
        agent_id: str,
        vote: bool,
        reason: Optional[str] = None,
        evaluate: bool = True,
    ) -> ConsensusProposal:
        """
        Record a vote and, unless evaluate is False, resolve the proposal
        if it has now reached its threshold or deadline.
        """
        with self.persistence.transaction():
            proposal = self.consensus.submit_vote(proposal_id, agent_id, vote, reason)
            if evaluate:
                proposal = self.consensus.evaluate_proposal(proposal_id)
        return proposal

    def update_consensus_status(self, proposal_id: str, status: str) -> ConsensusProposal:
        return self.consensus.update_status(proposal_id, status)

    def evaluate_proposal(self, proposal_id: str, final: bool = False) -> ConsensusProposal:
        return self.consensus.evaluate_proposal(proposal_id, final)

    def expire_proposals(self) -> List[str]:
        return self.consensus.expire_proposals()

    def get_consensus_votes(self, proposal_id: str) -> List[ConsensusVote]:
        return self.consensus.get_votes(proposal_id)

    def get_recent_consensus(self, swarm_id: str, limit: int = 10) -> List[ConsensusProposal]:
        return self.consensus.list_recent(swarm_id, limit)

    # ========== METRICS ==========

    def store_performance_metric(self, metric_type: str, metric_value: float, **kwargs) -> str:
        return self.metrics.store(metric_type, metric_value, **kwargs)

    # ========== HEALTH & ANALYTICS ==========

    def health_check(self) -> HealthReport:
        """
        Row counts per table and a health flag.

        Never raises for database failures: they are reported as
        healthy=False with the error message.
        """
        try:
            self.persistence.fetchone("ping")
            tables = {table: self.persistence.count_rows(table) for table in CORE_TABLES}
        except (HiveStoreError, sqlite3.Error) as e:
            logger.warning(f"Health check failed: {e}")
            return HealthReport(healthy=False, timestamp=self.persistence.now(), message=str(e))

        return HealthReport(
            healthy=True,
            timestamp=self.persistence.now(),
            tables=tables,
            message="Database is healthy",
        )

    def get_database_analytics(self) -> Dict[str, Any]:
        """Size, schema version, row counts, cache stats and per-operation timings."""
        return {
            "database": str(self.persistence.db_path) if self.persistence.db_path else ":memory:",
            "file_size": self.persistence.get_file_size(),
            "schema_version": self.persistence.get_metadata("schema_version"),
            "tables": {table: self.persistence.count_rows(table) for table in CORE_TABLES},
            "memory": self.memory.get_stats().model_dump(),
            "namespaces": self.memory.list_namespaces(),
            "operations": self.persistence.get_operation_stats(),
        }


def open_coordinator(
    db_path: Union[str, Path, None] = None,
    config: Optional[StoreConfig] = None,
    clock: Optional[Clock] = None,
    schema_path: Optional[Union[str, Path]] = None,
) -> HiveCoordinator:
    """
    Build and initialize a coordinator.

    Raises:
        SchemaInitError: The schema could not be read or applied
    """
    coordinator = HiveCoordinator(SQLitePersistence(db_path, config=config, clock=clock, schema_path=schema_path))
    try:
        coordinator.initialize()
    except Exception:
        coordinator.close()
        raise
    return coordinator
