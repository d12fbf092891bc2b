"""Push/pull reconciliation between the local tree and the object store."""

import logging
from pathlib import Path
from typing import Optional, Union

from ..api import ObjectStoreClient
from ..exceptions import BucketSyncError, LocalIOError, RemoteNotFoundError
from ..models import NOT_FOUND
from ..utils import is_hidden, mtime_ms, to_key
from .comparator import FileComparator, SyncAction, SyncDecision
from .scanner import TreeScanner

logger = logging.getLogger(__name__)


def _empty_stats() -> dict:
    return {"uploads": 0, "downloads": 0, "deletes_remote": 0, "skips": 0, "errors": 0}


def merge_stats(*stats: dict) -> dict:
    """Sum several stats dictionaries."""
    merged = _empty_stats()
    for item in stats:
        for name, value in item.items():
            merged[name] = merged.get(name, 0) + value
    return merged


class SyncReconciler:
    """Applies last-writer-wins in both directions for one root directory.

    No state survives between calls: every decision is derived from the
    current local mtime and the remote origin mtime, so running a pass
    twice is harmless and a crash is healed by the next pass.
    """

    def __init__(
        self,
        client: ObjectStoreClient,
        root_dir: Path,
        scanner: Optional[TreeScanner] = None,
        comparator: Optional[FileComparator] = None,
    ):
        """Initialize the reconciler.

        Args:
            client: Object store client
            root_dir: Local root directory mirrored to the bucket
            scanner: Tree scanner used to enumerate local files
            comparator: Comparison rule (last-writer-wins)
        """
        self.client = client
        self.root_dir = Path(root_dir)
        self.scanner = scanner or TreeScanner()
        self.comparator = comparator or FileComparator()

    def key_for(self, local_path: Union[str, Path]) -> str:
        """Return the object key of a file inside the root."""
        return Path(local_path).relative_to(self.root_dir).as_posix()

    def local_path_for(self, key: str) -> Optional[Path]:
        """Map an object key onto a local path.

        Returns:
            The local path, or None for keys that cannot be mirrored
            (folder markers, dotfiles, keys escaping the root)
        """
        key = to_key(key)
        if not key or key.endswith("/") or is_hidden(key):
            return None
        parts = key.split("/")
        if any(part in ("", ".", "..") for part in parts):
            return None
        return self.root_dir.joinpath(*parts)

    # =========================
    # Single-file operations
    # =========================

    def push_file(self, local_path: Union[str, Path]) -> bool:
        """Upload one file if it is newer than its remote copy.

        Failures are logged and reported as False; the next event or a
        forced pass corrects them.
        """
        local_path = Path(local_path)
        try:
            key = self.key_for(local_path)
        except ValueError:
            logger.warning(f"Ignoring file outside the sync root: {local_path}")
            return False

        logger.info(f"Syncing file to object store: {key}")
        try:
            return self.client.put(local_path, key)
        except LocalIOError as e:
            logger.warning(f"Skipping {key}: {e.reason}")
        except (BucketSyncError, OSError) as e:
            logger.error(f"Failed to sync file {key}: {e}")
        return False

    def delete_remote(self, key: str) -> bool:
        """Delete one remote object; failures are logged and return False."""
        key = to_key(key)
        logger.info(f"Deleting file from object store: {key}")
        try:
            return self.client.delete(key)
        except BucketSyncError as e:
            logger.error(f"Failed to delete remote file {key}: {e}")
            return False

    def pull_key(self, key: str) -> SyncDecision:
        """Reconcile a single remote key into the local tree.

        Raises:
            TransportError: If the store could not be reached
            LocalIOError: If the local file cannot be written
        """
        local_path = self.local_path_for(key)
        if local_path is None:
            return SyncDecision(SyncAction.SKIP, "Key cannot be mirrored locally", key)

        if not local_path.exists():
            logger.info(f"No local copy, downloading: {key}")
            try:
                self.client.get(key, local_path)
            except RemoteNotFoundError:
                return SyncDecision(SyncAction.SKIP, "Remote file disappeared", key)
            return self.comparator.decide_pull(key, None, None)

        if not local_path.is_file():
            return SyncDecision(
                SyncAction.SKIP, "Local path exists and is not a file", key
            )

        local_mtime = mtime_ms(local_path)
        metadata = self.client.head_metadata(key)
        if metadata is NOT_FOUND:
            return SyncDecision(
                SyncAction.SKIP, "Remote file disappeared", key, local_mtime
            )

        decision = self.comparator.decide_pull(
            key, local_mtime, metadata.origin_mtime_ms
        )
        if decision.action == SyncAction.DOWNLOAD:
            logger.info(f"Remote version is newer, downloading: {key}")
            self.client.get(key, local_path, metadata.origin_mtime_ms)
        elif metadata.origin_mtime_ms is None:
            logger.warning(f"Remote object has no origin mtime, skipping: {key}")
        else:
            logger.debug(f"{decision.reason}, skipping: {key}")
        return decision

    # =========================
    # Full passes
    # =========================

    def push_all(self) -> dict:
        """Push every local file that is newer than its remote copy.

        Returns:
            Stats dictionary
        """
        stats = _empty_stats()
        logger.info("Pushing all local files to object store...")
        for key in self.scanner.list_file_keys(self.root_dir):
            local_path = self.root_dir.joinpath(*key.split("/"))
            try:
                uploaded = self.client.put(local_path, key)
            except (BucketSyncError, OSError) as e:
                logger.error(f"Failed to sync file {key}: {e}")
                stats["errors"] += 1
                continue
            stats["uploads" if uploaded else "skips"] += 1
        logger.info(f"Push finished: {stats['uploads']} uploaded")
        return stats

    def pull_all(self) -> dict:
        """Download every remote object that is missing or newer locally.

        A failure on one key is logged and does not stop the pass.

        Returns:
            Stats dictionary

        Raises:
            TransportError: If the bucket listing failed
        """
        stats = _empty_stats()
        logger.info("Pulling all files from object store...")
        for remote in self.client.list_all():
            try:
                decision = self.pull_key(remote.key)
            except (BucketSyncError, OSError) as e:
                logger.error(f"Failed to process remote file {remote.key}: {e}")
                stats["errors"] += 1
                continue
            if decision.action == SyncAction.DOWNLOAD:
                stats["downloads"] += 1
            else:
                stats["skips"] += 1
        logger.info(f"Pull finished: {stats['downloads']} downloaded")
        return stats

    def full_pass(self) -> dict:
        """Push all local files, then pull all remote files."""
        return merge_stats(self.push_all(), self.pull_all())

    def plan(self) -> list[SyncDecision]:
        """Compute what a full pass would do, without transferring anything.

        Raises:
            TransportError: If the store could not be reached
        """
        local_keys = set(self.scanner.list_file_keys(self.root_dir))
        remote_keys = {
            obj.key for obj in self.client.list_all() if self.local_path_for(obj.key)
        }

        decisions: list[SyncDecision] = []
        for key in sorted(local_keys | remote_keys):
            local_path = self.local_path_for(key)
            local_mtime = (
                mtime_ms(local_path) if key in local_keys and local_path else None
            )

            if key not in remote_keys:
                decisions.append(
                    self.comparator.decide_push(key, local_mtime, None, False)
                )
                continue

            metadata = self.client.head_metadata(key)
            remote_mtime = None if metadata is NOT_FOUND else metadata.origin_mtime_ms
            if local_mtime is None:
                decisions.append(self.comparator.decide_pull(key, None, remote_mtime))
                continue

            decision = self.comparator.decide_push(key, local_mtime, remote_mtime)
            if decision.action == SyncAction.SKIP:
                decision = self.comparator.decide_pull(key, local_mtime, remote_mtime)
            decisions.append(decision)
        return decisions
