"""
SQLite Performance Metric Operations

Append-only counters. This layer writes them and never reads them back
except for row counts.
"""

import uuid
from typing import Any, Dict, Optional

from hivestore.storage.sqlite.persistence import SQLitePersistence, encode_json


class SQLiteMetricOperations:
    def __init__(self, persistence: SQLitePersistence):
        self._db = persistence

    def store(
        self,
        metric_type: str,
        metric_value: float,
        swarm_id: Optional[str] = None,
        agent_id: Optional[str] = None,
        task_id: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> str:
        """Append one metric sample. Returns its id."""
        metric_id = f"metric-{uuid.uuid4().hex[:12]}"
        self._db.execute("store_performance_metric", (
            metric_id, swarm_id, agent_id, task_id, metric_type, float(metric_value),
            encode_json(metadata or {}), self._db.timestamp(),
        ))
        return metric_id
