"""
SQLite Persistence Layer

Handles connection management, transactions, statement execution,
metadata, and database lifecycle.
"""

import json
import sqlite3
import threading
import time
from contextlib import contextmanager
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Callable, Dict, Iterator, List, Optional, Sequence, Union

from hivestore.config import StoreConfig
from hivestore.exceptions import ConstraintViolationError, StatementError
from hivestore.logging_config import logger
from hivestore.storage.sqlite.config import STATEMENT_CACHE_SIZE
from hivestore.storage.sqlite.schema import get_schema_version, init_schema
from hivestore.storage.sqlite.statements import STATEMENTS

Params = Union[Sequence[Any], Dict[str, Any]]
Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """Aware UTC datetime. Naive values are taken to be UTC already."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def to_timestamp(value: datetime) -> str:
    """Serialize a datetime the way every timestamp column stores it."""
    return as_utc(value).isoformat(timespec="microseconds")


class SQLitePersistence:
    """
    Manages the SQLite database lifecycle, the shared connection and
    statement execution.

    Responsibilities:
    - Connection creation and pragma tuning
    - Idempotent schema initialization
    - Cataloged statement execution with per-operation diagnostics
    - Transaction management
    - Metadata storage

    All entity operations share one connection. A re-entrant lock keeps
    one logical caller on it at a time; the database's own locking
    serializes writers across processes.
    """

    def __init__(
        self,
        db_path: Union[str, Path, None] = None,
        config: Optional[StoreConfig] = None,
        clock: Optional[Clock] = None,
        schema_path: Optional[Union[str, Path]] = None,
    ):
        """
        Args:
            db_path: Database file, or ":memory:". Defaults to config.db_path
            config: Engine configuration (defaults loaded from environment)
            clock: Returns the current UTC time. Injected by tests
            schema_path: Optional DDL file applied instead of the built-in schema
        """
        self.config = config or StoreConfig()
        db_path = str(db_path) if db_path is not None else self.config.db_path
        self.is_memory = db_path == ":memory:"
        self.db_path = Path(db_path) if not self.is_memory else None
        self._db_name = db_path
        self._clock = clock or utc_now
        self._schema_path = schema_path

        self._conn: Optional[sqlite3.Connection] = None
        self._lock = threading.RLock()
        self._initialized = False

        # op_key -> [calls, total_ms]
        self._op_stats: Dict[str, List[float]] = {}

    # ========== LIFECYCLE ==========

    def initialize(self) -> None:
        """
        Open the database, tune pragmas and apply the schema.

        Idempotent. Schema failures raise SchemaInitError and leave the
        engine closed.
        """
        with self._lock:
            if self._initialized:
                return

            if self.db_path is not None:
                self.db_path.parent.mkdir(parents=True, exist_ok=True)

            conn = self._open_connection()
            try:
                init_schema(conn, self._db_name, self._schema_path)
            except Exception:
                conn.close()
                raise

            self._conn = conn
            self._initialized = True
            logger.info(f"Coordination database ready at {self._db_name} (schema {get_schema_version(conn)})")

    def _open_connection(self) -> sqlite3.Connection:
        """
        Open the shared connection with optimized settings.

        isolation_level=None puts the driver in autocommit mode; multi-statement
        units go through transaction().
        """
        conn = sqlite3.connect(
            self._db_name,
            timeout=self.config.busy_timeout_ms / 1000.0,
            isolation_level=None,
            check_same_thread=False,
            cached_statements=STATEMENT_CACHE_SIZE,
        )
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        conn.execute(f"PRAGMA busy_timeout = {int(self.config.busy_timeout_ms)}")

        if self.config.enable_wal and not self.is_memory:
            conn.execute("PRAGMA journal_mode = WAL")

        conn.execute(f"PRAGMA synchronous = {self.config.synchronous}")
        conn.execute(f"PRAGMA cache_size = -{int(self.config.cache_size_kb)}")
        conn.execute("PRAGMA temp_store = MEMORY")
        return conn

    @property
    def connection(self) -> sqlite3.Connection:
        if not self._initialized:
            self.initialize()
        return self._conn

    def close(self) -> None:
        """Close the shared connection. A later call re-opens it."""
        with self._lock:
            if self._conn is not None:
                try:
                    if not self.is_memory:
                        self._conn.execute("PRAGMA optimize")
                finally:
                    self._conn.close()
                    self._conn = None
                    self._initialized = False
                    logger.debug(f"Closed coordination database {self._db_name}")

    # ========== CLOCK ==========

    def now(self) -> datetime:
        """Current time from the injected clock, always aware UTC."""
        return as_utc(self._clock())

    def timestamp(self, offset: Optional[timedelta] = None) -> str:
        """Current time as a stored timestamp, optionally shifted by offset."""
        value = self.now()
        if offset is not None:
            value = value + offset
        return to_timestamp(value)

    # ========== TRANSACTIONS ==========

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """
        Context manager for atomic multi-statement units.

        Usage:
            with persistence.transaction():
                persistence.execute("clear_active_swarms", (...))
                persistence.execute("activate_swarm", (...))

        BEGIN IMMEDIATE takes the write lock up front so two callers cannot
        both read-then-write. Nested use joins the outer transaction.
        """
        with self._lock:
            conn = self.connection
            if conn.in_transaction:
                yield conn
                return

            conn.execute("BEGIN IMMEDIATE")
            try:
                yield conn
                conn.execute("COMMIT")
            except Exception as e:
                # SQLite may already have rolled back on its own (SQLITE_FULL, IOERR)
                if conn.in_transaction:
                    conn.execute("ROLLBACK")
                logger.error(f"Transaction rolled back due to error: {e!r}")
                raise

    # ========== EXECUTION ==========

    def _run(self, op_key: str, sql: str, params: Params) -> sqlite3.Cursor:
        with self._lock:
            conn = self.connection
            started = time.perf_counter()
            try:
                return conn.execute(sql, params)
            except sqlite3.IntegrityError as e:
                raise ConstraintViolationError(op_key, str(e)) from e
            except sqlite3.Error as e:
                raise StatementError(op_key, str(e)) from e
            finally:
                stats = self._op_stats.setdefault(op_key, [0, 0.0])
                stats[0] += 1
                stats[1] += (time.perf_counter() - started) * 1000.0

    def execute(self, op_key: str, params: Params = ()) -> int:
        """
        Execute a cataloged write statement.

        Returns:
            Number of affected rows
        """
        return self._run(op_key, STATEMENTS[op_key], params).rowcount

    def execute_dynamic(self, op_key: str, sql: str, params: Params = ()) -> int:
        """Execute a statement assembled at call time (partial updates only)."""
        return self._run(op_key, sql, params).rowcount

    def fetchone(self, op_key: str, params: Params = ()) -> Optional[Dict[str, Any]]:
        """Execute a cataloged query and fetch one row as dict."""
        with self._lock:
            row = self._run(op_key, STATEMENTS[op_key], params).fetchone()
        return dict(row) if row is not None else None

    def fetchall(self, op_key: str, params: Params = ()) -> List[Dict[str, Any]]:
        """Execute a cataloged query and fetch all rows as dicts."""
        with self._lock:
            rows = self._run(op_key, STATEMENTS[op_key], params).fetchall()
        return [dict(row) for row in rows]

    def count_rows(self, table: str) -> int:
        """Row count for a schema table. Table names come from the schema, not callers."""
        with self._lock:
            row = self._run(f"count_{table}", f"SELECT COUNT(*) AS count FROM {table}", ()).fetchone()
        return row["count"]

    # ========== METADATA & DIAGNOSTICS ==========

    def get_metadata(self, key: str) -> Optional[str]:
        """Get metadata value by key."""
        with self._lock:
            row = self._run("get_metadata", "SELECT value FROM metadata WHERE key = ?", (key,)).fetchone()
        return row["value"] if row else None

    def set_metadata(self, key: str, value: str) -> None:
        """Set metadata key-value pair."""
        self._run(
            "set_metadata",
            """
            INSERT INTO metadata (key, value, updated_at) VALUES (?, ?, ?)
            ON CONFLICT(key) DO UPDATE SET value = excluded.value, updated_at = excluded.updated_at
            """,
            (key, value, self.timestamp()),
        )

    def get_operation_stats(self) -> Dict[str, Dict[str, float]]:
        """Per-operation call counts and latency since the engine opened."""
        with self._lock:
            return {
                key: {
                    "calls": int(calls),
                    "total_ms": round(total_ms, 3),
                    "avg_ms": round(total_ms / calls, 3) if calls else 0.0,
                }
                for key, (calls, total_ms) in sorted(self._op_stats.items())
            }

    def get_file_size(self) -> int:
        if self.db_path is None or not self.db_path.exists():
            return 0
        return self.db_path.stat().st_size


def encode_json(value: Any) -> Optional[str]:
    """Serialize a JSON column value; None stays NULL."""
    if value is None:
        return None
    return json.dumps(value, default=str)
