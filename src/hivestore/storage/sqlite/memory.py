"""
SQLite Memory Operations

Namespaced cache with access tracking. Entries are ranked by access
frequency, then recency; capacity trimming and search both use that rank.
TTL expiry and trimming are independent: one removes stale entries
regardless of popularity, the other bounds size regardless of age.
"""

from datetime import timedelta
from typing import Any, Dict, List, Optional

from hivestore.logging_config import logger
from hivestore.schemas import MemoryEntry, MemoryStats, NamespaceStats
from hivestore.storage.sqlite.config import DEFAULT_DECISIONS_LIMIT, DEFAULT_LIST_LIMIT, DEFAULT_SEARCH_LIMIT
from hivestore.storage.sqlite.persistence import SQLitePersistence, encode_json


def require_payload(value: str) -> str:
    """
    Values are opaque payloads stored and returned verbatim. Callers
    serialize structured data themselves, so a read gives back exactly
    what was written.
    """
    if not isinstance(value, str):
        raise TypeError(f"memory value must be str, got {type(value).__name__}")
    return value


def escape_like(text: str) -> str:
    """Escape LIKE wildcards so text matches literally (ESCAPE '\\')."""
    return text.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


class SQLiteMemoryOperations:
    """Memory cache operations."""

    def __init__(self, persistence: SQLitePersistence):
        self._db = persistence

    def store(
        self,
        key: str,
        namespace: str,
        value: str,
        ttl: Optional[int] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> None:
        """
        Insert or replace the value under (key, namespace).

        Replacing keeps access_count and created_at; value, metadata and ttl
        are overwritten and the entry counts as freshly written.
        """
        now = self._db.timestamp()
        self._db.execute("store_memory", (
            key, namespace, require_payload(value), now, now, now,
            encode_json(metadata or {}), ttl,
        ))
        logger.debug(f"Stored memory {namespace}/{key} (ttl={ttl})")

    def get(self, key: str, namespace: str) -> Optional[MemoryEntry]:
        """Read without counting the access. See get_and_touch()."""
        row = self._db.fetchone("get_memory", (key, namespace))
        return MemoryEntry.model_validate(row) if row else None

    def touch(self, key: str, namespace: str) -> bool:
        """Count one access: access_count + 1, last_accessed_at = now."""
        return self._db.execute("touch_memory", (self._db.timestamp(), key, namespace)) > 0

    def get_and_touch(self, key: str, namespace: str) -> Optional[MemoryEntry]:
        """Count the access and return the entry as it stands afterwards."""
        with self._db.transaction():
            if not self.touch(key, namespace):
                return None
            return self.get(key, namespace)

    def search(self, namespace: str, pattern: str, limit: int = DEFAULT_SEARCH_LIMIT) -> List[MemoryEntry]:
        """
        Entries whose key or value contains pattern, best-ranked first.

        pattern is matched literally; % and _ carry no wildcard meaning.
        """
        like = f"%{escape_like(pattern)}%"
        rows = self._db.fetchall("search_memory", (namespace, like, like, limit))
        return [MemoryEntry.model_validate(row) for row in rows]

    def delete(self, key: str, namespace: str) -> bool:
        deleted = self._db.execute("delete_memory", (key, namespace)) > 0
        if deleted:
            logger.debug(f"Deleted memory {namespace}/{key}")
        return deleted

    def list_by_namespace(self, namespace: str, limit: int = DEFAULT_LIST_LIMIT) -> List[MemoryEntry]:
        rows = self._db.fetchall("list_memory", (namespace, limit))
        return [MemoryEntry.model_validate(row) for row in rows]

    def get_stats(self) -> MemoryStats:
        return MemoryStats.model_validate(self._db.fetchone("get_memory_stats"))

    def get_namespace_stats(self, namespace: str) -> NamespaceStats:
        return NamespaceStats.model_validate(self._db.fetchone("get_namespace_stats", (namespace, namespace)))

    def list_namespaces(self) -> List[str]:
        return [row["namespace"] for row in self._db.fetchall("list_namespaces")]

    def get_all(self) -> List[MemoryEntry]:
        """Every entry, most recently accessed first."""
        return [MemoryEntry.model_validate(row) for row in self._db.fetchall("get_all_memory")]

    def get_recent(self, limit: int = DEFAULT_LIST_LIMIT) -> List[MemoryEntry]:
        """Newest entries across all namespaces."""
        return [MemoryEntry.model_validate(row) for row in self._db.fetchall("get_recent_memory", (limit,))]

    def get_old(self, days: int) -> List[MemoryEntry]:
        """Entries created more than days ago, oldest first."""
        cutoff = self._db.timestamp(-timedelta(days=days))
        return [MemoryEntry.model_validate(row) for row in self._db.fetchall("get_old_memory", (cutoff,))]

    def update_entry(
        self,
        key: str,
        namespace: str,
        value: str,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> bool:
        """Replace value and metadata of an existing entry. Never inserts."""
        return self._db.execute("update_memory_entry", (
            require_payload(value), encode_json(metadata or {}), self._db.timestamp(), key, namespace,
        )) > 0

    def clear(self, namespace_pattern: Optional[str] = None) -> int:
        """
        Delete every entry whose namespace matches namespace_pattern.

        The pattern is a literal prefix unless it contains '*', which
        matches any run of characters. None clears the whole cache.
        """
        if namespace_pattern is None:
            like = "%"
        else:
            like = "%".join(escape_like(part) for part in namespace_pattern.split("*"))
            if "*" not in namespace_pattern:
                like += "%"
        deleted = self._db.execute("clear_memory", (like,))
        logger.info(f"Cleared {deleted} memory entries matching {namespace_pattern or '*'}")
        return deleted

    def delete_old_entries(self, namespace: str, ttl_seconds: int) -> int:
        """Delete namespace entries created more than ttl_seconds ago."""
        cutoff = self._db.timestamp(-timedelta(seconds=ttl_seconds))
        deleted = self._db.execute("delete_old_entries", (namespace, cutoff))
        if deleted:
            logger.debug(f"Deleted {deleted} entries older than {ttl_seconds}s from {namespace}")
        return deleted

    def expire(self, namespace: Optional[str] = None) -> int:
        """
        Delete entries whose age since their last write exceeds their ttl.

        Entries without a ttl never expire.
        """
        now = self._db.timestamp()
        if namespace is None:
            deleted = self._db.execute("expire_memory", {"now": now})
        else:
            deleted = self._db.execute("expire_memory_namespace", {"namespace": namespace, "now": now})
        if deleted:
            logger.debug(f"Expired {deleted} memory entries ({namespace or 'all namespaces'})")
        return deleted

    def trim_namespace(self, namespace: str, max_entries: int) -> int:
        """
        Keep the max_entries best-ranked entries of namespace, delete the rest.

        Returns:
            Number of deleted entries
        """
        if max_entries < 0:
            raise ValueError("max_entries must be >= 0")
        deleted = self._db.execute("trim_namespace", (namespace, namespace, max_entries))
        if deleted:
            logger.debug(f"Trimmed {deleted} entries from {namespace} (cap {max_entries})")
        return deleted

    def get_successful_decisions(
        self,
        namespace_prefix: str = "",
        limit: int = DEFAULT_DECISIONS_LIMIT,
    ) -> List[MemoryEntry]:
        """Decision entries whose value records a success, most used first."""
        rows = self._db.fetchall("get_successful_decisions", (f"{escape_like(namespace_prefix)}%", limit))
        return [MemoryEntry.model_validate(row) for row in rows]
