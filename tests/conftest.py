"""
Pytest configuration for the hivestore test suite.

This conftest.py provides:
- Machine-mode logging (suppresses console output)
- A controllable clock
- In-memory and file-backed coordinators
- A small populated swarm for query tests
"""

import os
from datetime import datetime, timedelta, timezone

import pytest

from hivestore.config import StoreConfig
from hivestore.logging_config import setup_logging
from hivestore.storage.sqlite import open_coordinator


# ============================================================================
# GLOBAL CONFIGURATION
# ============================================================================

def pytest_configure(config):
    """Keep test runs quiet and independent of the caller's environment."""
    os.environ.setdefault("HIVESTORE_MACHINE_MODE", "1")
    os.environ.pop("HIVESTORE_FILE_LOGGING", None)
    os.environ.pop("HIVESTORE_DEFAULT_MEMORY_TTL", None)


# ============================================================================
# LOGGING FIXTURES
# ============================================================================

@pytest.fixture(autouse=True)
def setup_test_logging():
    """
    Machine mode by default - suppress console logs for clean test output.
    """
    setup_logging(level="DEBUG", suppress_console=True, force=True)


# ============================================================================
# CLOCK
# ============================================================================

class FakeClock:
    """Deterministic UTC clock. Time only moves when a test says so."""

    def __init__(self, start=None):
        self.current = start or datetime(2026, 1, 1, 12, 0, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.current

    def advance(self, **kwargs) -> datetime:
        self.current = self.current + timedelta(**kwargs)
        return self.current


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def naive_clock():
    """Same instant as `clock`, but without tzinfo (datetime.utcnow style)."""
    return FakeClock(datetime(2026, 1, 1, 12, 0, 0))


@pytest.fixture
def naive_coordinator(naive_clock, memory_config):
    coord = open_coordinator(config=memory_config, clock=naive_clock)
    yield coord
    coord.close()


# ============================================================================
# COORDINATOR FIXTURES
# ============================================================================

@pytest.fixture
def memory_config():
    return StoreConfig(db_path=":memory:")


@pytest.fixture
def coordinator(clock, memory_config):
    """
    Fresh in-memory coordinator per test.

    Returns:
        HiveCoordinator driven by the `clock` fixture
    """
    coord = open_coordinator(config=memory_config, clock=clock)
    yield coord
    coord.close()


@pytest.fixture
def db_file(tmp_path):
    return tmp_path / "data" / "hive-mind.db"


@pytest.fixture
def file_coordinator(db_file, clock):
    """Coordinator on a real database file (WAL, cross-connection locking)."""
    coord = open_coordinator(db_file, config=StoreConfig(db_path=str(db_file)), clock=clock)
    yield coord
    coord.close()


@pytest.fixture
def swarm(coordinator):
    """An active mesh swarm."""
    created = coordinator.create_swarm("alpha", topology="mesh", max_agents=5)
    coordinator.set_active_swarm(created.id)
    return coordinator.get_swarm(created.id)


@pytest.fixture
def agent(coordinator, swarm):
    return coordinator.create_agent(swarm.id, "worker-1", "coder")
