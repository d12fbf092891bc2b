"""Atomically published tree snapshot with change subscribers."""

import logging
import threading
from dataclasses import dataclass
from typing import Callable

from ..models import FileSystemNode

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Snapshot:
    """An immutable, complete view of the local tree."""

    version: int
    """Increases by one on every publish"""

    nodes: tuple[FileSystemNode, ...]
    """Top-level nodes of the tree"""

    def to_list(self) -> list[dict]:
        return [node.to_dict() for node in self.nodes]


SnapshotCallback = Callable[[Snapshot], None]


class TreeSnapshot:
    """Owns the current snapshot and replaces it wholesale.

    Readers always get either the previous or the new complete snapshot.
    Subscribers are notified after the swap, outside the swap lock, and
    never receive a snapshot older than one they have already seen.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._notify_lock = threading.RLock()
        self._last_notified = 0
        self._current = Snapshot(version=0, nodes=())
        self._subscribers: list[SnapshotCallback] = []

    def current(self) -> Snapshot:
        return self._current

    def publish(self, nodes: list[FileSystemNode]) -> Snapshot:
        """Replace the published snapshot and notify subscribers.

        Args:
            nodes: Freshly scanned top-level nodes

        Returns:
            The newly published snapshot
        """
        with self._lock:
            snapshot = Snapshot(version=self._current.version + 1, nodes=tuple(nodes))
            self._current = snapshot

        with self._notify_lock:
            # A newer snapshot may already have been delivered
            if snapshot.version <= self._last_notified:
                return snapshot
            self._last_notified = snapshot.version
            with self._lock:
                subscribers = list(self._subscribers)
            for callback in subscribers:
                try:
                    callback(snapshot)
                except Exception:
                    logger.exception("Snapshot subscriber failed")
        return snapshot

    def subscribe(self, callback: SnapshotCallback) -> None:
        with self._lock:
            self._subscribers.append(callback)

    def unsubscribe(self, callback: SnapshotCallback) -> None:
        with self._lock:
            if callback in self._subscribers:
                self._subscribers.remove(callback)
