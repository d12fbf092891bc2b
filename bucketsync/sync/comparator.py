"""Last-writer-wins comparison logic for sync operations."""

from dataclasses import dataclass
from enum import Enum
from typing import Optional


class SyncAction(str, Enum):
    """Actions that can be taken during sync."""

    UPLOAD = "upload"
    """Upload local file to remote"""

    DOWNLOAD = "download"
    """Download remote file to local"""

    SKIP = "skip"
    """Skip file (no action needed)"""


@dataclass
class SyncDecision:
    """Represents a decision about how to sync a file."""

    action: SyncAction
    """Action to take"""

    reason: str
    """Human-readable reason for this decision"""

    key: str
    """Object key / relative path of the file"""

    local_mtime_ms: Optional[int] = None
    """Local modification time (epoch ms), None if the file is absent"""

    remote_mtime_ms: Optional[int] = None
    """Remote origin modification time (epoch ms), None if unknown"""


class FileComparator:
    """Applies the last-writer-wins rule to a local and a remote timestamp.

    Both directions use the same rule: the side with the strictly later
    origin modification time wins, equal times mean nothing to do. Times
    are compared in whole milliseconds.
    """

    def decide_push(
        self,
        key: str,
        local_mtime_ms: int,
        remote_mtime_ms: Optional[int],
        remote_exists: bool = True,
    ) -> SyncDecision:
        """Decide whether a local file should be uploaded.

        Args:
            key: Object key of the file
            local_mtime_ms: Local modification time
            remote_mtime_ms: Remote origin mtime, None if missing or unstamped
            remote_exists: Whether a remote object exists at all

        Returns:
            SyncDecision with UPLOAD or SKIP
        """
        if not remote_exists:
            return SyncDecision(
                SyncAction.UPLOAD, "New local file", key, local_mtime_ms, None
            )

        if remote_mtime_ms is None:
            return SyncDecision(
                SyncAction.UPLOAD,
                "Remote origin mtime unavailable, uploading local version",
                key,
                local_mtime_ms,
                None,
            )

        if local_mtime_ms > remote_mtime_ms:
            return SyncDecision(
                SyncAction.UPLOAD,
                "Local file is newer",
                key,
                local_mtime_ms,
                remote_mtime_ms,
            )

        reason = (
            "Files have the same timestamp"
            if local_mtime_ms == remote_mtime_ms
            else "Remote file is newer"
        )
        return SyncDecision(
            SyncAction.SKIP, reason, key, local_mtime_ms, remote_mtime_ms
        )

    def decide_pull(
        self,
        key: str,
        local_mtime_ms: Optional[int],
        remote_mtime_ms: Optional[int],
    ) -> SyncDecision:
        """Decide whether a remote object should be downloaded.

        Args:
            key: Object key of the file
            local_mtime_ms: Local modification time, None if no local file
            remote_mtime_ms: Remote origin mtime, None if unstamped

        Returns:
            SyncDecision with DOWNLOAD or SKIP
        """
        if local_mtime_ms is None:
            return SyncDecision(
                SyncAction.DOWNLOAD, "New remote file", key, None, remote_mtime_ms
            )

        if remote_mtime_ms is None:
            # Written by a foreign tool: never overwrite without evidence
            return SyncDecision(
                SyncAction.SKIP,
                "Remote origin mtime unavailable, cannot determine which is newer",
                key,
                local_mtime_ms,
                None,
            )

        if remote_mtime_ms > local_mtime_ms:
            return SyncDecision(
                SyncAction.DOWNLOAD,
                "Remote file is newer",
                key,
                local_mtime_ms,
                remote_mtime_ms,
            )

        reason = (
            "Files have the same timestamp"
            if local_mtime_ms == remote_mtime_ms
            else "Local file is newer"
        )
        return SyncDecision(
            SyncAction.SKIP, reason, key, local_mtime_ms, remote_mtime_ms
        )
