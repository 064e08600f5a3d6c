"""
Background maintenance for the coordination store.

MemorySweeper periodically expires TTL'd memory entries, trims namespaces
to capacity and times out consensus proposals past their deadline. It can
also be driven by hand through sweep_once().
"""

import threading
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Dict, Iterable, List, Optional

from hivestore.logging_config import logger

if TYPE_CHECKING:
    from hivestore.storage.sqlite.facade import HiveCoordinator


@dataclass
class SweepReport:
    """Outcome of one sweep."""
    expired: Dict[str, int] = field(default_factory=dict)
    trimmed: Dict[str, int] = field(default_factory=dict)
    skipped: List[str] = field(default_factory=list)
    timed_out_proposals: List[str] = field(default_factory=list)

    @property
    def total_removed(self) -> int:
        return sum(self.expired.values()) + sum(self.trimmed.values())

    def to_dict(self) -> Dict[str, Any]:
        return {
            "expired": dict(self.expired),
            "trimmed": dict(self.trimmed),
            "skipped": list(self.skipped),
            "timed_out_proposals": list(self.timed_out_proposals),
            "total_removed": self.total_removed,
        }


class NamespaceLocks:
    """
    One non-blocking lock per namespace, shared by every sweeper of a
    coordinator. Locks of namespaces that no longer exist are pruned.
    """

    def __init__(self):
        self._locks: Dict[str, threading.Lock] = {}
        self._guard = threading.Lock()

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)

    def try_acquire(self, namespace: str) -> bool:
        with self._guard:
            return self._locks.setdefault(namespace, threading.Lock()).acquire(blocking=False)

    def release(self, namespace: str) -> None:
        with self._guard:
            self._locks[namespace].release()

    def prune(self, live: Iterable[str]) -> int:
        """Drop idle locks of namespaces not in live. Returns how many were dropped."""
        live = set(live)
        with self._guard:
            stale = [ns for ns, lock in self._locks.items() if ns not in live and not lock.locked()]
            for ns in stale:
                del self._locks[ns]
        return len(stale)


class MemorySweeper:
    """
    Cancelable periodic maintenance.

    At most one sweep of a given namespace is in flight at a time across
    all sweepers of a coordinator: the namespace locks live on the
    coordinator, are taken without blocking, and a namespace already being
    swept is skipped rather than waited on.
    """

    def __init__(
        self,
        coordinator: "HiveCoordinator",
        interval: Optional[float] = None,
        namespaces: Optional[Iterable[str]] = None,
        capacity: Optional[int] = None,
    ):
        """
        Args:
            coordinator: Store to maintain
            interval: Seconds between sweeps (default: config.sweep_interval)
            namespaces: Namespaces to sweep (default: every namespace present)
            capacity: Max entries kept per namespace, 0 disables trimming
                (default: config.namespace_capacity)
        """
        config = coordinator.config
        self.coordinator = coordinator
        self.interval = interval if interval is not None else config.sweep_interval
        self.namespaces = list(namespaces) if namespaces is not None else None
        self.capacity = capacity if capacity is not None else config.namespace_capacity

        self._locks: NamespaceLocks = coordinator.sweep_locks
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self.sweep_count = 0

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        """Start the background thread. No-op if already running."""
        if self.running:
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._run, name="hivestore-sweeper", daemon=True)
        self._thread.start()
        logger.info(f"MemorySweeper started (interval={self.interval}s, capacity={self.capacity})")

    def stop(self, timeout: float = 5.0) -> None:
        """Signal the thread to stop and wait for the current sweep to finish."""
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout=timeout)
            self._thread = None
        logger.info("MemorySweeper stopped")

    def __enter__(self) -> "MemorySweeper":
        self.start()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.stop()

    def _run(self) -> None:
        while not self._stop_event.wait(self.interval):
            try:
                self.sweep_once()
            except Exception as e:
                logger.error(f"Memory sweep failed: {e}")

    def sweep_namespace(self, namespace: str, report: Optional[SweepReport] = None) -> SweepReport:
        """Expire and trim one namespace, unless a sweep of it is already running."""
        report = report or SweepReport()
        if not self._locks.try_acquire(namespace):
            logger.debug(f"Sweep of {namespace} already in progress, skipping")
            report.skipped.append(namespace)
            return report

        try:
            expired = self.coordinator.expire_memory(namespace)
            trimmed = self.coordinator.trim_namespace(namespace, self.capacity) if self.capacity else 0
        finally:
            self._locks.release(namespace)

        if expired:
            report.expired[namespace] = expired
        if trimmed:
            report.trimmed[namespace] = trimmed
        return report

    def sweep_once(self) -> SweepReport:
        """Run one full sweep over the configured namespaces and proposals."""
        report = SweepReport()
        namespaces = self.namespaces if self.namespaces is not None else self.coordinator.list_namespaces()
        for namespace in namespaces:
            if self._stop_event.is_set():
                break
            self.sweep_namespace(namespace, report)
        self._locks.prune(self.coordinator.list_namespaces())

        report.timed_out_proposals = self.coordinator.expire_proposals()
        self.sweep_count += 1

        if report.total_removed or report.timed_out_proposals:
            logger.info(
                f"Sweep #{self.sweep_count}: removed {report.total_removed} memory entries, "
                f"resolved {len(report.timed_out_proposals)} proposals"
            )
        return report
