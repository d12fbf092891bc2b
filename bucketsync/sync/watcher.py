"""Filesystem watcher driving snapshot refreshes and single-file sync.

Every local change, whether reported by watchdog or announced by a CRUD
handler, goes through :meth:`DirectoryWatcher.publish_change` (or
:meth:`DirectoryWatcher.publish_move`). That entry point only queues work: the
snapshot refresh and the remote sync run on a thread pool, and refresh
requests that pile up during a slow scan are merged into one rescan.
"""

import logging
import os
import threading
import time
from concurrent.futures import Executor, Future, ThreadPoolExecutor, wait
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Optional, Union

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from ..utils import is_hidden
from .reconciler import SyncReconciler
from .scanner import TreeScanner
from .snapshot import Snapshot, TreeSnapshot

logger = logging.getLogger(__name__)

# Seconds an announced move waits for its watchdog event
EXPECTED_MOVE_TTL = 30.0


class ChangeKind(str, Enum):
    """Kinds of change announced by the watcher."""

    READY = "ready"
    ADD = "add"
    CHANGE = "change"
    UNLINK = "unlink"
    ADD_DIR = "add_dir"
    UNLINK_DIR = "unlink_dir"
    ERROR = "error"


ChangeListener = Callable[[ChangeKind, Optional[Path]], None]


@dataclass
class _PendingWrite:
    """A file whose writes have not yet settled."""

    kind: ChangeKind
    size: int
    mtime_ns: int
    last_change: float


class _EventHandler(FileSystemEventHandler):
    """Translates watchdog events into watcher calls."""

    def __init__(self, watcher: "DirectoryWatcher"):
        super().__init__()
        self.watcher = watcher

    def _guard(self, handler: Callable[[], None], event: FileSystemEvent) -> None:
        try:
            handler()
        except Exception as e:
            logger.error(f"Error handling event for {event.src_path}", exc_info=True)
            self.watcher.publish_change(ChangeKind.ERROR, None, error=e)

    def on_created(self, event: FileSystemEvent) -> None:
        path = Path(os.fsdecode(event.src_path))
        if event.is_directory:
            self._guard(
                lambda: self.watcher.publish_change(ChangeKind.ADD_DIR, path), event
            )
        else:
            self._guard(lambda: self.watcher.track_write(path, ChangeKind.ADD), event)

    def on_modified(self, event: FileSystemEvent) -> None:
        if event.is_directory:
            return
        path = Path(os.fsdecode(event.src_path))
        self._guard(lambda: self.watcher.track_write(path, ChangeKind.CHANGE), event)

    def on_deleted(self, event: FileSystemEvent) -> None:
        path = Path(os.fsdecode(event.src_path))
        kind = ChangeKind.UNLINK_DIR if event.is_directory else ChangeKind.UNLINK
        self._guard(lambda: self.watcher.publish_change(kind, path), event)

    def on_moved(self, event: FileSystemEvent) -> None:
        # Children of a moved directory are handled with the directory itself
        if getattr(event, "is_synthetic", False):
            return
        src = Path(os.fsdecode(event.src_path))
        dest = Path(os.fsdecode(event.dest_path))
        if self.watcher.consume_expected_move(src, dest):
            logger.debug(f"Move already published: {src} -> {dest}")
            return
        self._guard(lambda: self.watcher.publish_move(src, dest), event)


class DirectoryWatcher:
    """Watches a root directory and keeps snapshot and bucket in step.

    File writes are debounced: a created or modified file is only synced
    once its size and mtime have stayed the same for
    ``stability_threshold`` seconds, checked every ``poll_interval``
    seconds. Deletions and moves are acted on immediately.
    """

    def __init__(
        self,
        root_dir: Path,
        reconciler: SyncReconciler,
        snapshot: Optional[TreeSnapshot] = None,
        scanner: Optional[TreeScanner] = None,
        stability_threshold: float = 3.0,
        poll_interval: float = 1.0,
        max_workers: int = 8,
        executor: Optional[Executor] = None,
    ):
        """Initialize the watcher.

        Args:
            root_dir: Directory to watch recursively
            reconciler: Reconciler used for pushes and remote deletes
            snapshot: Snapshot holder to republish on every change
            scanner: Scanner used to rebuild the snapshot
            stability_threshold: Quiet period (seconds) before a write counts
                as finished
            poll_interval: How often (seconds) pending writes are checked
            max_workers: Thread pool size for reconciliation tasks
            executor: Executor to use instead of a private thread pool
        """
        self.root_dir = Path(root_dir)
        self.reconciler = reconciler
        self.snapshot = snapshot or TreeSnapshot()
        self.scanner = scanner or TreeScanner()
        self.stability_threshold = stability_threshold
        self.poll_interval = poll_interval

        self._owns_executor = executor is None
        self._executor = executor or ThreadPoolExecutor(
            max_workers=max_workers, thread_name_prefix="bucketsync"
        )
        self._futures: set[Future] = set()
        self._futures_lock = threading.Lock()

        self._pending: dict[Path, _PendingWrite] = {}
        self._pending_lock = threading.Lock()

        # Scan and publish happen as one step so an older scan never
        # replaces a newer snapshot
        self._refresh_lock = threading.Lock()
        self._refresh_state_lock = threading.Lock()
        self._refresh_requested = False
        self._refresh_scheduled = False

        self._expected_moves: dict[tuple[Path, Path], float] = {}
        self._expected_moves_lock = threading.Lock()

        self._listeners: list[ChangeListener] = []
        self._observer: Any = None
        self._poller: Optional[threading.Thread] = None
        self._stop_event = threading.Event()

    # =========================
    # Lifecycle
    # =========================

    def start(self) -> None:
        """Start watching and run the initial full pass."""
        if not self.root_dir.exists():
            logger.info(f"Creating sync directory: {self.root_dir}")
            self.root_dir.mkdir(parents=True, exist_ok=True)

        self._stop_event.clear()
        self._observer = Observer()
        self._observer.schedule(
            _EventHandler(self), str(self.root_dir), recursive=True
        )
        self._observer.start()

        self._poller = threading.Thread(
            target=self._poll_loop, name="bucketsync-debounce", daemon=True
        )
        self._poller.start()

        logger.info(f"Watching {self.root_dir}")
        self.publish_change(ChangeKind.READY)

    def stop(self, wait_for_tasks: bool = True) -> None:
        """Stop the observer, the debounce poller and the thread pool."""
        self._stop_event.set()
        if self._observer is not None:
            self._observer.stop()
            self._observer.join()
            self._observer = None
        if self._poller is not None:
            self._poller.join()
            self._poller = None
        with self._pending_lock:
            self._pending.clear()
        with self._expected_moves_lock:
            self._expected_moves.clear()
        if self._owns_executor:
            self._executor.shutdown(wait=wait_for_tasks)
        logger.info("Directory watcher stopped")

    def add_listener(self, listener: ChangeListener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: ChangeListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    # =========================
    # Ingestion
    # =========================

    def _ignored(self, path: Path) -> bool:
        try:
            relative = path.relative_to(self.root_dir).as_posix()
        except ValueError:
            return True
        return relative == "." or is_hidden(relative)

    def refresh_tree(self) -> Snapshot:
        """Rescan the root and publish the new snapshot.

        Calls are serialized, so snapshots are published in the order their
        scans started.
        """
        with self._refresh_lock:
            nodes = self.scanner.scan(self.root_dir, "/")
            return self.snapshot.publish(nodes)

    def request_refresh(self) -> None:
        """Schedule a snapshot refresh on the executor.

        Requests arriving while a refresh is queued or running are merged
        into a single follow-up scan.
        """
        with self._refresh_state_lock:
            self._refresh_requested = True
            if self._refresh_scheduled:
                return
            self._refresh_scheduled = True
        if self._submit(self._run_refreshes) is None:
            with self._refresh_state_lock:
                self._refresh_scheduled = False

    def _run_refreshes(self) -> None:
        while True:
            with self._refresh_state_lock:
                if not self._refresh_requested:
                    self._refresh_scheduled = False
                    return
                self._refresh_requested = False
            try:
                self.refresh_tree()
            except Exception:
                with self._refresh_state_lock:
                    self._refresh_scheduled = False
                raise

    def publish_change(
        self,
        kind: ChangeKind,
        path: Union[str, Path, None] = None,
        error: Optional[BaseException] = None,
    ) -> None:
        """Single entry point for local changes.

        Never scans on the calling thread: the snapshot refresh and the
        matching remote work (a push for ``add``/``change``, a remote
        delete for ``unlink``, a full push-then-pull pass for ``ready``)
        are queued on the executor. Listeners are notified right away.

        Args:
            kind: Kind of change
            path: Absolute path of the changed entry
            error: Exception behind an ``error`` change
        """
        if kind == ChangeKind.ERROR:
            logger.error(f"File system watcher error: {error}")
            self._notify(kind, None)
            return

        file_path = Path(path) if path is not None else None
        if file_path is not None and self._ignored(file_path):
            return

        if kind == ChangeKind.UNLINK and file_path is not None:
            self._untrack(file_path)

        self.request_refresh()
        self._dispatch(kind, file_path)

    def publish_move(self, src: Union[str, Path], dest: Union[str, Path]) -> None:
        """Announce a rename inside (or into, or out of) the root.

        The store has no rename, so every moved file becomes a remote
        delete of the old key followed by an upload under the new key.
        Folder contents are enumerated on the executor.
        """
        src, dest = Path(src), Path(dest)
        src_ignored, dest_ignored = self._ignored(src), self._ignored(dest)

        if src_ignored and dest_ignored:
            return
        if dest_ignored:
            kind = ChangeKind.UNLINK_DIR if dest.is_dir() else ChangeKind.UNLINK
            self.publish_change(kind, src)
            return
        if src_ignored:
            # e.g. an atomic save or a finished download replacing the file
            if dest.is_dir():
                self.publish_change(ChangeKind.ADD_DIR, dest)
                self._submit(self._publish_contents, dest, ChangeKind.ADD)
            else:
                self.publish_change(ChangeKind.CHANGE, dest)
            return

        self._untrack(src)
        self.request_refresh()
        if dest.is_dir():
            self._dispatch(ChangeKind.UNLINK_DIR, src)
            self._submit(self._publish_folder_move, src, dest)
        else:
            self._dispatch(ChangeKind.UNLINK, src)
            self._dispatch(ChangeKind.ADD, dest)

    def _publish_folder_move(self, src: Path, dest: Path) -> None:
        src_key = self.reconciler.key_for(src)
        dest_key = self.reconciler.key_for(dest)
        for key in self.scanner.list_file_keys(dest, dest_key):
            old_key = src_key + key[len(dest_key):]
            self._dispatch(ChangeKind.UNLINK, self._path_for_key(old_key))
            self._dispatch(ChangeKind.ADD, self._path_for_key(key))
        self._dispatch(ChangeKind.ADD_DIR, dest)

    def expect_move(self, src: Union[str, Path], dest: Union[str, Path]) -> None:
        """Mark a rename that the caller publishes itself.

        The matching watchdog event is then dropped instead of being
        published a second time. Marks older than ``EXPECTED_MOVE_TTL``
        seconds are discarded.
        """
        now = time.monotonic()
        with self._expected_moves_lock:
            for move, marked_at in list(self._expected_moves.items()):
                if now - marked_at > EXPECTED_MOVE_TTL:
                    del self._expected_moves[move]
            self._expected_moves[(Path(src), Path(dest))] = now

    def forget_move(self, src: Union[str, Path], dest: Union[str, Path]) -> None:
        with self._expected_moves_lock:
            self._expected_moves.pop((Path(src), Path(dest)), None)

    def consume_expected_move(self, src: Path, dest: Path) -> bool:
        """Return True (once) if this rename was marked with expect_move."""
        with self._expected_moves_lock:
            marked_at = self._expected_moves.pop((src, dest), None)
        return (
            marked_at is not None
            and time.monotonic() - marked_at <= EXPECTED_MOVE_TTL
        )

    def _publish_contents(self, directory: Path, kind: ChangeKind) -> None:
        base_key = self.reconciler.key_for(directory)
        for key in self.scanner.list_file_keys(directory, base_key):
            self._dispatch(kind, self._path_for_key(key))

    def _path_for_key(self, key: str) -> Path:
        return self.root_dir.joinpath(*key.split("/"))

    def _dispatch(self, kind: ChangeKind, path: Optional[Path]) -> None:
        if kind in (ChangeKind.ADD, ChangeKind.CHANGE) and path is not None:
            self._submit(self.reconciler.push_file, path)
        elif kind == ChangeKind.UNLINK and path is not None:
            self._submit(self.reconciler.delete_remote, self.reconciler.key_for(path))
        elif kind == ChangeKind.READY:
            self._submit(self.reconciler.full_pass)
        self._notify(kind, path)

    def _notify(self, kind: ChangeKind, path: Optional[Path]) -> None:
        for listener in list(self._listeners):
            try:
                listener(kind, path)
            except Exception:
                logger.exception("Change listener failed")

    # =========================
    # Task tracking
    # =========================

    def _submit(self, fn: Callable[..., Any], *args: Any) -> Optional[Future]:
        try:
            future = self._executor.submit(fn, *args)
        except RuntimeError as e:
            # Executor already shut down
            logger.warning(f"Dropping sync task after shutdown: {e}")
            return None
        with self._futures_lock:
            self._futures.add(future)
        future.add_done_callback(self._task_done)
        return future

    def _task_done(self, future: Future) -> None:
        with self._futures_lock:
            self._futures.discard(future)
        if not future.cancelled() and future.exception() is not None:
            logger.error(
                "Sync task failed", exc_info=future.exception()
            )

    def wait_idle(self, timeout: Optional[float] = None) -> bool:
        """Block until no reconciliation task is in flight.

        Returns:
            True if idle, False if the timeout expired first
        """
        deadline = None if timeout is None else time.monotonic() + timeout
        while True:
            with self._futures_lock:
                futures = set(self._futures)
            if not futures:
                return True
            remaining = None if deadline is None else deadline - time.monotonic()
            if remaining is not None and remaining <= 0:
                return False
            wait(futures, timeout=remaining)

    # =========================
    # Write stability
    # =========================

    def track_write(self, path: Union[str, Path], kind: ChangeKind) -> None:
        """Park a created/modified file until its writes settle."""
        path = Path(path)
        if self._ignored(path):
            return
        try:
            stat = path.stat()
        except OSError:
            # Gone again; the delete event will follow
            return
        now = time.monotonic()
        with self._pending_lock:
            pending = self._pending.get(path)
            if pending is None:
                self._pending[path] = _PendingWrite(
                    kind, stat.st_size, stat.st_mtime_ns, now
                )
            else:
                # A created file stays an "add" however often it is modified
                pending.size = stat.st_size
                pending.mtime_ns = stat.st_mtime_ns
                pending.last_change = now

    def _untrack(self, path: Path) -> None:
        with self._pending_lock:
            self._pending.pop(path, None)

    def pending_paths(self) -> list[Path]:
        with self._pending_lock:
            return list(self._pending)

    def check_pending(self, now: Optional[float] = None) -> list[Path]:
        """Publish every pending write that has been stable long enough.

        Args:
            now: Monotonic time to evaluate against (defaults to now)

        Returns:
            Paths that were published
        """
        if now is None:
            now = time.monotonic()

        settled: list[tuple[Path, ChangeKind]] = []
        with self._pending_lock:
            for path, pending in list(self._pending.items()):
                try:
                    stat = path.stat()
                except OSError:
                    del self._pending[path]
                    continue
                if stat.st_size != pending.size or stat.st_mtime_ns != pending.mtime_ns:
                    pending.size = stat.st_size
                    pending.mtime_ns = stat.st_mtime_ns
                    pending.last_change = now
                elif now - pending.last_change >= self.stability_threshold:
                    del self._pending[path]
                    settled.append((path, pending.kind))

        for path, kind in settled:
            self.publish_change(kind, path)
        return [path for path, _ in settled]

    def _poll_loop(self) -> None:
        while not self._stop_event.wait(self.poll_interval):
            try:
                self.check_pending()
            except Exception as e:
                logger.error("Error while checking pending writes", exc_info=True)
                self.publish_change(ChangeKind.ERROR, None, error=e)
