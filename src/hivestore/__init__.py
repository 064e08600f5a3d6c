"""
hivestore - Hive-Mind Coordination Store

SQLite-backed persistence for multi-agent swarms: registries, a priority
task queue, a namespaced memory cache, messaging and quorum consensus.
"""

__version__ = "1.1.0"

# Core exports
from hivestore.config import StoreConfig
from hivestore.storage import HiveCoordinator, SQLitePersistence, open_coordinator

__all__ = [
    "__version__",
    "HiveCoordinator",
    "SQLitePersistence",
    "StoreConfig",
    "open_coordinator",
]
