"""
Storage layer for the hive-mind coordination store.
"""

from .sqlite import HiveCoordinator, SQLitePersistence, open_coordinator

__all__ = [
    "HiveCoordinator",
    "SQLitePersistence",
    "open_coordinator",
]
