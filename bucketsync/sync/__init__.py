"""Sync engine for bucketsync - watcher, reconciler and CRUD surface."""

from .comparator import FileComparator, SyncAction, SyncDecision
from .engine import SyncEngine
from .reconciler import SyncReconciler, merge_stats
from .scanner import TreeScanner
from .snapshot import Snapshot, TreeSnapshot
from .watcher import ChangeKind, DirectoryWatcher

__all__ = [
    "SyncEngine",
    "SyncReconciler",
    "DirectoryWatcher",
    "ChangeKind",
    "TreeScanner",
    "TreeSnapshot",
    "Snapshot",
    "FileComparator",
    "SyncAction",
    "SyncDecision",
    "merge_stats",
]
