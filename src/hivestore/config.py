"""
Store Configuration.

All values configurable via HIVESTORE_* environment variables.
"""

import os
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from hivestore.exceptions import ConfigError


DEFAULT_CACHE_SIZE_KB = 64000          # PRAGMA cache_size = -64000 (64 MB)
DEFAULT_SYNCHRONOUS = "NORMAL"
DEFAULT_BUSY_TIMEOUT_MS = 5000
DEFAULT_SWEEP_INTERVAL = 300.0         # seconds
DEFAULT_NAMESPACE_CAPACITY = 10_000    # entries per namespace, 0 disables trim

SYNCHRONOUS_MODES = ("OFF", "NORMAL", "FULL", "EXTRA")


def _env_int(key: str, default: int) -> int:
    """Read integer from environment variable."""
    value = os.getenv(key)
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        return default


def _env_float(key: str, default: float) -> float:
    """Read float from environment variable."""
    value = os.getenv(key)
    if value is None:
        return default
    try:
        return float(value)
    except ValueError:
        return default


def _env_bool(key: str, default: bool) -> bool:
    """Read boolean from environment variable."""
    value = os.getenv(key, "").lower()
    if value in ("true", "1", "yes"):
        return True
    if value in ("false", "0", "no"):
        return False
    return default


def _env_optional_int(key: str) -> Optional[int]:
    value = os.getenv(key)
    if not value:
        return None
    try:
        return int(value)
    except ValueError:
        return None


def _default_db_path() -> str:
    from hivestore.paths import get_paths
    return str(get_paths().db_file)


@dataclass
class StoreConfig:
    """
    Persistence engine and maintenance configuration.

    Environment Variables:
        HIVESTORE_DB_PATH: Database file, or ":memory:" (default: $HIVESTORE_HOME/hive-mind.db,
            else ./data/hive-mind.db)
        HIVESTORE_CACHE_SIZE_KB: Page cache size in KiB (default: 64000)
        HIVESTORE_SYNCHRONOUS: OFF | NORMAL | FULL | EXTRA (default: NORMAL)
        HIVESTORE_BUSY_TIMEOUT_MS: Lock wait before failing (default: 5000)
        HIVESTORE_ENABLE_WAL: Write-ahead logging for file databases (default: true)
        HIVESTORE_SWEEP_INTERVAL: Seconds between maintenance sweeps (default: 300)
        HIVESTORE_NAMESPACE_CAPACITY: Max entries kept per namespace (default: 10000)
        HIVESTORE_DEFAULT_MEMORY_TTL: TTL in seconds applied when none is given
    """

    db_path: str = field(default_factory=lambda: os.getenv("HIVESTORE_DB_PATH") or _default_db_path())
    cache_size_kb: int = field(default_factory=lambda: _env_int(
        "HIVESTORE_CACHE_SIZE_KB", DEFAULT_CACHE_SIZE_KB
    ))
    synchronous: str = field(default_factory=lambda: os.getenv(
        "HIVESTORE_SYNCHRONOUS", DEFAULT_SYNCHRONOUS
    ).upper())
    busy_timeout_ms: int = field(default_factory=lambda: _env_int(
        "HIVESTORE_BUSY_TIMEOUT_MS", DEFAULT_BUSY_TIMEOUT_MS
    ))
    enable_wal: bool = field(default_factory=lambda: _env_bool(
        "HIVESTORE_ENABLE_WAL", True
    ))

    # Maintenance
    sweep_interval: float = field(default_factory=lambda: _env_float(
        "HIVESTORE_SWEEP_INTERVAL", DEFAULT_SWEEP_INTERVAL
    ))
    namespace_capacity: int = field(default_factory=lambda: _env_int(
        "HIVESTORE_NAMESPACE_CAPACITY", DEFAULT_NAMESPACE_CAPACITY
    ))
    default_memory_ttl: Optional[int] = field(default_factory=lambda: _env_optional_int(
        "HIVESTORE_DEFAULT_MEMORY_TTL"
    ))

    def __post_init__(self):
        if self.synchronous not in SYNCHRONOUS_MODES:
            raise ConfigError(
                f"synchronous must be one of {', '.join(SYNCHRONOUS_MODES)}, got '{self.synchronous}'"
            )
        if self.cache_size_kb <= 0:
            raise ConfigError("cache_size_kb must be positive")
        if self.sweep_interval <= 0:
            raise ConfigError("sweep_interval must be positive")
        if self.namespace_capacity < 0:
            raise ConfigError("namespace_capacity cannot be negative")

    @property
    def is_memory_db(self) -> bool:
        return self.db_path == ":memory:"

    def to_dict(self) -> Dict[str, Any]:
        """Export configuration as dictionary (for JSON output)."""
        return {
            "db_path": self.db_path,
            "cache_size_kb": self.cache_size_kb,
            "synchronous": self.synchronous,
            "busy_timeout_ms": self.busy_timeout_ms,
            "enable_wal": self.enable_wal,
            "sweep_interval": self.sweep_interval,
            "namespace_capacity": self.namespace_capacity,
            "default_memory_ttl": self.default_memory_ttl,
        }
