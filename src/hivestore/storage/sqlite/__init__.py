"""
SQLite Storage Package

Coordination store backed by a single embedded SQLite database.

Public API:
- HiveCoordinator: Facade for every store operation
- open_coordinator: Build and initialize a coordinator

Internal Modules:
- schema: Table definitions, migrations and initialization
- statements: Parameterized statement catalog and partial-update builder
- persistence: Connection management, transactions, metadata
- swarms, agents, tasks, memory, communications, consensus, metrics:
  Entity operations
- config: Storage constants
"""

from hivestore.storage.sqlite.facade import HiveCoordinator, open_coordinator
from hivestore.storage.sqlite.persistence import SQLitePersistence

__all__ = ['HiveCoordinator', 'SQLitePersistence', 'open_coordinator']
