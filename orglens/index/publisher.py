"""
OrgLens - Index Publisher
=========================
Holds the authoritative (Index, resolution) snapshot and swaps it
atomically when a cycle completes.

Readers lease the snapshot that is current when their call begins and keep
it for the whole call, even if a newer snapshot is published meanwhile.
A superseded snapshot stays retained until its last lease is released.
"""

import logging
import threading
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Generator, List, Optional

from orglens.index.build_index import Index

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PublishedSnapshot:
    """One Index together with the resolution computed from it."""
    index: Index
    resolution: Any
    published_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def version(self) -> int:
        return self.index.version


def _empty_snapshot() -> PublishedSnapshot:
    # Imported here: orglens.identity depends on orglens.index
    from orglens.identity.resolve_people import ResolutionResult

    return PublishedSnapshot(index=Index.empty(0), resolution=ResolutionResult.empty(0))


class IndexPublisher:
    """
    Atomic publication point for snapshots.

    Usage:
        publisher = IndexPublisher()
        version = publisher.reserve_version()
        publisher.publish(PublishedSnapshot(index, resolution))

        with publisher.lease() as snapshot:
            ...  # snapshot never changes under the caller
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._current = _empty_snapshot()
        self._next_version = 1
        self._leases: Dict[int, int] = {}
        self._retained: Dict[int, PublishedSnapshot] = {}

    @property
    def current(self) -> PublishedSnapshot:
        with self._lock:
            return self._current

    @property
    def current_version(self) -> int:
        return self.current.version

    def reserve_version(self) -> int:
        """Allocate the version number for a new Index build."""
        with self._lock:
            version = self._next_version
            self._next_version += 1
            return version

    def publish(self, snapshot: PublishedSnapshot) -> bool:
        """
        Make `snapshot` the authoritative one.

        A snapshot older than the current one is discarded, so a slow cycle
        never replaces the output of a newer one.

        Returns:
            True if the snapshot was published
        """
        with self._lock:
            previous = self._current
            if snapshot.version <= previous.version:
                logger.warning(
                    f"Discarding stale snapshot v{snapshot.version} "
                    f"(current is v{previous.version})"
                )
                return False
            self._current = snapshot
            if self._leases.get(previous.version):
                self._retained[previous.version] = previous

        logger.info(
            f"Published index v{snapshot.version}: {len(snapshot.index)} records, "
            f"{len(snapshot.resolution.cross_references)} cross-references"
        )
        return True

    @contextmanager
    def lease(self) -> Generator[PublishedSnapshot, None, None]:
        """Pin the current snapshot for the duration of the block."""
        with self._lock:
            snapshot = self._current
            self._leases[snapshot.version] = self._leases.get(snapshot.version, 0) + 1
        try:
            yield snapshot
        finally:
            self._release(snapshot)

    def _release(self, snapshot: PublishedSnapshot) -> None:
        with self._lock:
            remaining = self._leases.get(snapshot.version, 0) - 1
            if remaining > 0:
                self._leases[snapshot.version] = remaining
                return
            self._leases.pop(snapshot.version, None)
            if self._retained.pop(snapshot.version, None) is not None:
                logger.debug(f"Dropped superseded index v{snapshot.version}")

    def retained_versions(self) -> List[int]:
        """Superseded versions still held alive by outstanding leases."""
        with self._lock:
            return sorted(self._retained)

    def active_leases(self, version: Optional[int] = None) -> int:
        with self._lock:
            if version is None:
                return sum(self._leases.values())
            return self._leases.get(version, 0)
