"""Core sync engine exposing the CRUD surface over the watched tree."""

import logging
import shutil
from concurrent.futures import Executor
from pathlib import Path
from typing import Optional, Union

from ..api import ObjectStoreClient
from ..config import Config, config
from ..exceptions import BucketSyncError
from ..models import OperationResult
from ..utils import to_key
from .reconciler import SyncReconciler
from .scanner import TreeScanner
from .snapshot import Snapshot, SnapshotCallback, TreeSnapshot
from .watcher import ChangeKind, DirectoryWatcher

logger = logging.getLogger(__name__)


class SyncEngine:
    """Public surface for collaborators (UI, IPC, CLI).

    Every method returns an :class:`OperationResult` instead of raising.
    Local mutations never call the store directly; the watcher is the one
    path from a local change to a remote push. The exception is recursive
    deletion, whose remote keys must be removed before the local subtree
    that implies them disappears.
    """

    def __init__(
        self,
        client: Optional[ObjectStoreClient] = None,
        root_dir: Optional[Path] = None,
        settings: Optional[Config] = None,
        executor: Optional[Executor] = None,
    ):
        """Initialize sync engine.

        Args:
            client: Object store client (built from settings if omitted)
            root_dir: Local directory to mirror (from settings if omitted)
            settings: Configuration source, the module config by default
            executor: Executor for reconciliation tasks (a private thread
                pool by default)
        """
        settings = settings or config
        self.client = client or ObjectStoreClient(settings=settings)
        self.root_dir = Path(root_dir or settings.root_dir).expanduser().resolve()
        self.scanner = TreeScanner()
        self.snapshot = TreeSnapshot()
        self.reconciler = SyncReconciler(self.client, self.root_dir, self.scanner)
        self.watcher = DirectoryWatcher(
            self.root_dir,
            self.reconciler,
            snapshot=self.snapshot,
            scanner=self.scanner,
            stability_threshold=settings.get("stability_threshold"),
            poll_interval=settings.get("poll_interval"),
            max_workers=settings.get("max_workers"),
            executor=executor,
        )
        self.remote_available = False

    # =========================
    # Lifecycle
    # =========================

    def start(self) -> None:
        """Initialize the bucket and start watching.

        A store that cannot be reached does not prevent startup; local
        operations keep working and sync resumes once it is reachable.
        """
        self.root_dir.mkdir(parents=True, exist_ok=True)
        self.remote_available = self.client.init()
        if not self.remote_available:
            logger.warning("Object store unavailable, running in degraded mode")
        self.watcher.start()

    def stop(self) -> None:
        self.watcher.stop()
        self.client.close()

    # =========================
    # Path helpers
    # =========================

    def _resolve(self, tree_path: str) -> Path:
        """Map a path rooted at "/" onto the local root.

        Raises:
            ValueError: If the path escapes the root
        """
        relative = to_key(tree_path)
        full = (self.root_dir / relative).resolve()
        if full != self.root_dir and self.root_dir not in full.parents:
            raise ValueError(f"Path escapes the sync root: {tree_path}")
        return full

    def _check_name(self, name: str) -> None:
        if not name or "/" in name or "\\" in name or name in (".", ".."):
            raise ValueError(f"Invalid name: {name!r}")

    # =========================
    # Snapshot surface
    # =========================

    def get_snapshot(self) -> Snapshot:
        return self.snapshot.current()

    def get_tree(self) -> list[dict]:
        """Return the current tree snapshot in collaborator shape."""
        return self.snapshot.current().to_list()

    def subscribe(self, callback: SnapshotCallback) -> None:
        """Receive every newly published snapshot."""
        self.snapshot.subscribe(callback)

    def unsubscribe(self, callback: SnapshotCallback) -> None:
        self.snapshot.unsubscribe(callback)

    def refresh(self) -> Snapshot:
        return self.watcher.refresh_tree()

    # =========================
    # CRUD surface
    # =========================

    def read_file(self, path: str) -> OperationResult:
        """Read a file's content as UTF-8 text."""
        try:
            content = self._resolve(path).read_text(encoding="utf-8")
        except (OSError, ValueError, UnicodeDecodeError) as e:
            logger.error(f"Failed to read file {path}: {e}")
            return OperationResult.fail(f"Failed to read file: {path}")
        return OperationResult.ok(content=content)

    def create_file(
        self,
        parent_path: str,
        name: str,
        content: Union[str, bytes, None] = None,
    ) -> OperationResult:
        """Create (or overwrite) a file in the watched tree.

        The upload is left to the watcher's ``add`` event.
        """
        try:
            self._check_name(name)
            parent = self._resolve(parent_path)
            parent.mkdir(parents=True, exist_ok=True)
            target = parent / name
            if isinstance(content, bytes):
                target.write_bytes(content)
            else:
                target.write_text(content or "", encoding="utf-8")
        except (OSError, ValueError) as e:
            logger.error(f"Failed to create file {name} in {parent_path}: {e}")
            return OperationResult.fail(f"Failed to create file: {e}")

        logger.info(f"Created file: {target}")
        self.refresh()
        return OperationResult.ok()

    def create_folder(self, parent_path: str, name: str) -> OperationResult:
        """Create a folder in the watched tree."""
        try:
            self._check_name(name)
            target = self._resolve(parent_path) / name
            target.mkdir(parents=True, exist_ok=True)
        except (OSError, ValueError) as e:
            logger.error(f"Failed to create folder {name} in {parent_path}: {e}")
            return OperationResult.fail(f"Failed to create folder: {e}")

        logger.info(f"Created folder: {target}")
        self.refresh()
        return OperationResult.ok()

    def delete_item(self, path: str) -> OperationResult:
        """Delete a file or folder locally and remotely.

        For a folder, every contained file key is enumerated and deleted
        remotely before the local subtree is removed; once it is gone the
        keys it implied can no longer be computed. A failed remote delete
        is logged and does not stop the batch.
        """
        try:
            full_path = self._resolve(path)
            if full_path == self.root_dir:
                return OperationResult.fail("Refusing to delete the sync root")
            if not full_path.exists():
                return OperationResult.fail(f"Item not found: {path}")

            if full_path.is_dir():
                base_key = self.reconciler.key_for(full_path)
                keys = self.scanner.list_file_keys(full_path, base_key)
                logger.info(f"Deleting {len(keys)} remote file(s) under {base_key}")
                for key in keys:
                    self.reconciler.delete_remote(key)
                shutil.rmtree(full_path)
                logger.info(f"Deleted local folder: {full_path}")
            else:
                self.reconciler.delete_remote(self.reconciler.key_for(full_path))
                full_path.unlink()
                logger.info(f"Deleted local file: {full_path}")
        except (OSError, ValueError, BucketSyncError) as e:
            logger.error(f"Failed to delete {path}: {e}")
            return OperationResult.fail(f"Failed to delete: {e}")

        self.refresh()
        return OperationResult.ok()

    def import_file(
        self, source_path: Union[str, Path], target_dir: str
    ) -> OperationResult:
        """Copy an external file into the watched tree.

        An existing file of the same name is overwritten.
        """
        source = Path(source_path)
        if not source.is_file():
            logger.error(f"Source file does not exist: {source}")
            return OperationResult.fail(f"Source file does not exist: {source}")

        try:
            target_parent = self._resolve(target_dir)
            target_parent.mkdir(parents=True, exist_ok=True)
            target = target_parent / source.name
            if target.exists():
                logger.warning(f"Target file exists and will be overwritten: {target}")
            shutil.copyfile(source, target)
        except (OSError, ValueError) as e:
            logger.error(f"Failed to import {source}: {e}")
            return OperationResult.fail(f"Import failed: {e}")

        logger.info(f"Imported file: {source} -> {target}")
        self.watcher.publish_change(ChangeKind.ADD, target)
        self.refresh()
        return OperationResult.ok()

    def import_file_from_buffer(
        self, name: str, data: bytes, target_dir: str
    ) -> OperationResult:
        """Write an in-memory buffer into the watched tree as a file."""
        try:
            self._check_name(name)
            target_parent = self._resolve(target_dir)
            target_parent.mkdir(parents=True, exist_ok=True)
            target = target_parent / name
            if target.exists():
                logger.warning(f"Target file exists and will be overwritten: {target}")
            target.write_bytes(bytes(data))
        except (OSError, ValueError) as e:
            logger.error(f"Failed to import buffer {name}: {e}")
            return OperationResult.fail(f"Import failed: {e}")

        logger.info(f"Imported buffer: {name} -> {target} ({len(data)} bytes)")
        self.watcher.publish_change(ChangeKind.ADD, target)
        self.refresh()
        return OperationResult.ok()

    def move_item(self, source_path: str, target_dir: str) -> OperationResult:
        """Move a file or folder into another directory of the tree.

        The store has no rename: each moved file is deleted under its old
        key and uploaded again under the new one.
        """
        try:
            source = self._resolve(source_path)
            if source == self.root_dir:
                return OperationResult.fail("Refusing to move the sync root")
            if not source.exists():
                logger.error(f"Source does not exist: {source}")
                return OperationResult.fail(f"Source does not exist: {source_path}")

            target_parent = self._resolve(target_dir)
            if source.is_dir() and (
                target_parent == source or source in target_parent.parents
            ):
                return OperationResult.fail("Cannot move a folder into itself")
            target_parent.mkdir(parents=True, exist_ok=True)
            target = target_parent / source.name
            if target == source:
                return OperationResult.ok()
            if target.exists():
                logger.warning(f"Target exists and will be overwritten: {target}")
            # The watchdog event for this rename is dropped, publish_move below
            # covers it
            self.watcher.expect_move(source, target)
            try:
                source.replace(target)
            except OSError:
                self.watcher.forget_move(source, target)
                raise
        except (OSError, ValueError) as e:
            logger.error(f"Failed to move {source_path}: {e}")
            return OperationResult.fail(f"Move failed: {e}")

        logger.info(f"Moved: {source} -> {target}")
        self.watcher.publish_move(source, target)
        self.refresh()
        return OperationResult.ok()

    # =========================
    # Reconciliation
    # =========================

    def force_sync(self) -> OperationResult:
        """Run a full pull pass against a fresh listing."""
        try:
            stats = self.reconciler.pull_all()
        except BucketSyncError as e:
            logger.error(f"Forced sync failed: {e}")
            return OperationResult.fail(f"Sync failed: {e}")
        self.refresh()
        return OperationResult.ok(stats=stats)

    def sync_all(self) -> OperationResult:
        """Run a full push-then-pull pass synchronously."""
        try:
            stats = self.reconciler.full_pass()
        except BucketSyncError as e:
            logger.error(f"Full sync failed: {e}")
            return OperationResult.fail(f"Sync failed: {e}")
        self.refresh()
        return OperationResult.ok(stats=stats)
