"""Tests for the persistence engine, schema and statement catalog."""

import re
import sqlite3
from datetime import timezone

import pytest

from hivestore.config import StoreConfig
from hivestore.exceptions import (
    ConstraintViolationError,
    MalformedUpdateError,
    SchemaInitError,
    StatementError,
)
from hivestore.storage.sqlite.config import SCHEMA_VERSION
from hivestore.storage.sqlite.persistence import SQLitePersistence, to_timestamp
from hivestore.storage.sqlite.schema import CORE_TABLES
from hivestore.storage.sqlite.statements import (
    STATEMENTS,
    ColumnValue,
    RawExpression,
    build_update,
    increment,
)


class TestInitialization:
    """Schema application and connection settings."""

    def test_creates_all_tables(self, coordinator):
        rows = coordinator.persistence.fetchall("list_tables")
        names = {row["name"] for row in rows}
        for table in CORE_TABLES + ("message_receipts", "consensus_votes", "metadata"):
            assert table in names

    def test_initialize_is_idempotent(self, coordinator):
        coordinator.initialize()
        coordinator.persistence.initialize()
        assert coordinator.health_check().healthy

    def test_schema_version_recorded(self, coordinator):
        assert coordinator.persistence.get_metadata("schema_version") == SCHEMA_VERSION

    def test_file_database_uses_wal(self, file_coordinator, db_file):
        assert db_file.exists()
        mode = file_coordinator.persistence.connection.execute("PRAGMA journal_mode").fetchone()[0]
        assert mode.lower() == "wal"

    def test_foreign_keys_enabled(self, coordinator):
        enabled = coordinator.persistence.connection.execute("PRAGMA foreign_keys").fetchone()[0]
        assert enabled == 1

    def test_reopen_keeps_data(self, db_file, clock):
        config = StoreConfig(db_path=str(db_file))
        first = SQLitePersistence(config=config, clock=clock)
        first.initialize()
        first.set_metadata("probe", "42")
        first.close()

        second = SQLitePersistence(config=config, clock=clock)
        second.initialize()
        assert second.get_metadata("probe") == "42"
        second.close()

    def test_unreadable_schema_file_is_fatal(self, tmp_path, clock):
        engine = SQLitePersistence(":memory:", clock=clock, schema_path=tmp_path / "missing.sql")
        with pytest.raises(SchemaInitError):
            engine.initialize()

    def test_invalid_schema_file_is_fatal(self, tmp_path, clock):
        schema = tmp_path / "broken.sql"
        schema.write_text("CREATE TABLE (;")
        engine = SQLitePersistence(":memory:", clock=clock, schema_path=schema)
        with pytest.raises(SchemaInitError):
            engine.initialize()

    def test_migration_collapses_multiple_active_swarms(self, db_file, clock):
        """Databases written before 1.1.0 may hold several active swarms."""
        db_file.parent.mkdir(parents=True)
        conn = sqlite3.connect(str(db_file))
        conn.executescript("""
            CREATE TABLE swarms (
                id TEXT PRIMARY KEY, name TEXT NOT NULL, topology TEXT NOT NULL,
                queen_mode TEXT NOT NULL DEFAULT 'centralized', max_agents INTEGER NOT NULL DEFAULT 8,
                consensus_threshold REAL NOT NULL DEFAULT 0.66, memory_ttl INTEGER, config TEXT,
                created_at TEXT NOT NULL, updated_at TEXT NOT NULL,
                is_active INTEGER NOT NULL DEFAULT 0, status TEXT NOT NULL DEFAULT 'active'
            );
            INSERT INTO swarms (id, name, topology, created_at, updated_at, is_active)
            VALUES ('old', 'old', 'mesh', '2025-01-01T00:00:00.000000+00:00', '2025-01-01T00:00:00.000000+00:00', 1),
                   ('new', 'new', 'ring', '2025-06-01T00:00:00.000000+00:00', '2025-06-01T00:00:00.000000+00:00', 1);
        """)
        conn.close()

        engine = SQLitePersistence(config=StoreConfig(db_path=str(db_file)), clock=clock)
        engine.initialize()
        active = [row["id"] for row in engine.connection.execute("SELECT id FROM swarms WHERE is_active = 1")]
        assert active == ["new"]
        assert engine.get_metadata("schema_version") == SCHEMA_VERSION
        engine.close()


class TestExecution:
    """Statement execution and error wrapping."""

    def test_constraint_violation_carries_op_key(self, coordinator, swarm):
        with pytest.raises(ConstraintViolationError) as exc_info:
            coordinator.create_swarm("dup", swarm_id=swarm.id)
        assert exc_info.value.op_key == "create_swarm"
        assert isinstance(exc_info.value.__cause__, sqlite3.IntegrityError)

    def test_check_constraint_rejects_bad_enum(self, coordinator):
        with pytest.raises(ConstraintViolationError):
            coordinator.create_swarm("bad", topology="blob")

    def test_foreign_key_violation(self, coordinator):
        with pytest.raises(ConstraintViolationError):
            coordinator.create_agent("no-such-swarm", "orphan", "coder")

    def test_statement_error_is_not_swallowed(self, coordinator):
        with pytest.raises(StatementError) as exc_info:
            coordinator.persistence.execute_dynamic("broken", "SELECT * FROM nowhere")
        assert exc_info.value.op_key == "broken"

    def test_operation_stats_recorded(self, coordinator, swarm):
        coordinator.get_swarm(swarm.id)
        coordinator.get_swarm(swarm.id)
        stats = coordinator.persistence.get_operation_stats()
        assert stats["get_swarm"]["calls"] >= 2

    def test_every_statement_compiles(self, coordinator):
        """Each cataloged statement is valid against the schema."""
        conn = coordinator.persistence.connection
        for sql in STATEMENTS.values():
            conn.execute(f"EXPLAIN {sql}", _dummy_params(sql))


def _dummy_params(sql):
    if ":" in sql and "?" not in sql:
        return {name: None for name in re.findall(r":(\w+)", sql)}
    return (None,) * sql.count("?")


class TestTransactions:
    """transaction() commit, rollback and nesting."""

    def test_rollback_on_error(self, coordinator, swarm):
        with pytest.raises(RuntimeError):
            with coordinator.transaction():
                coordinator.update_swarm_status(swarm.id, "paused")
                raise RuntimeError("boom")
        assert coordinator.get_swarm(swarm.id).status == "active"

    def test_commit_on_success(self, coordinator, swarm):
        with coordinator.transaction():
            coordinator.update_swarm_status(swarm.id, "paused")
        assert coordinator.get_swarm(swarm.id).status == "paused"

    def test_nested_joins_outer(self, coordinator, swarm):
        with pytest.raises(RuntimeError):
            with coordinator.transaction():
                with coordinator.transaction():
                    coordinator.update_swarm_status(swarm.id, "archived")
                raise RuntimeError("outer fails")
        assert coordinator.get_swarm(swarm.id).status == "active"

    def test_original_error_kept_when_engine_already_rolled_back(self, coordinator, swarm):
        with pytest.raises(RuntimeError, match="disk full"):
            with coordinator.transaction() as conn:
                coordinator.update_swarm_status(swarm.id, "paused")
                conn.execute("ROLLBACK")
                raise RuntimeError("disk full")
        assert not coordinator.persistence.connection.in_transaction
        assert coordinator.get_swarm(swarm.id).status == "active"


class TestBuildUpdate:
    """Partial update assembly."""

    def test_empty_update_rejected(self):
        with pytest.raises(MalformedUpdateError):
            build_update("agents", {})

    def test_malformed_update_is_value_error(self):
        with pytest.raises(ValueError):
            build_update("agents", {})

    def test_unknown_column_rejected(self):
        with pytest.raises(MalformedUpdateError, match="id"):
            build_update("agents", {"id": "x"})

    def test_table_without_whitelist_rejected(self):
        with pytest.raises(MalformedUpdateError):
            build_update("memory", {"value": "x"})

    def test_values_are_bound(self):
        sql, params = build_update("agents", {"name": "a'; DROP TABLE agents; --"})
        assert sql == "UPDATE agents SET name = ? WHERE id = ?"
        assert params == ["a'; DROP TABLE agents; --"]

    def test_mixed_value_kinds(self):
        sql, params = build_update("agents", {
            "status": ColumnValue("busy"),
            "message_count": increment("message_count", 3),
        })
        assert sql == "UPDATE agents SET status = ?, message_count = message_count + ? WHERE id = ?"
        assert params == ["busy", 3]

    def test_raw_expression_params(self):
        expr = RawExpression("MAX(error_count, ?)", (7,))
        sql, params = build_update("agents", {"error_count": expr})
        assert "error_count = MAX(error_count, ?)" in sql
        assert params == [7]

    def test_allowed_narrows_columns(self):
        with pytest.raises(MalformedUpdateError):
            build_update("agents", {"success_count": 1}, allowed=frozenset({"name"}))


def test_to_timestamp_is_utc_text(clock):
    stamp = to_timestamp(clock())
    assert stamp == "2026-01-01T12:00:00.000000+00:00"


def test_naive_clock_is_read_as_utc(naive_coordinator, naive_clock):
    now = naive_coordinator.persistence.now()
    assert now.tzinfo is not None
    assert now == naive_clock().replace(tzinfo=timezone.utc)
    assert naive_coordinator.persistence.timestamp() == "2026-01-01T12:00:00.000000+00:00"
