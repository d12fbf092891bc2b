"""Directory scanning utilities for building tree snapshots."""

import logging
import os
import posixpath
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

from ..models import FileSystemNode
from ..utils import encode_node_id

logger = logging.getLogger(__name__)


def _timestamp(value: Optional[float]) -> Optional[datetime]:
    if value is None:
        return None
    return datetime.fromtimestamp(value, tz=timezone.utc)


def _creation_time(stat: os.stat_result) -> float:
    # st_birthtime on macOS/BSD (and Windows on newer Pythons), else ctime
    stat_any: Any = stat
    if hasattr(stat_any, "st_birthtime"):
        return stat_any.st_birthtime
    return stat.st_ctime


class TreeScanner:
    """Scans a local directory into a tree of FileSystemNode objects.

    Dotfiles and dot-directories are always skipped. Node ids are derived
    from the rooted path, so rescanning the same tree yields the same ids.

    Examples:
        >>> scanner = TreeScanner()
        >>> nodes = scanner.scan(Path("/sync/folder"))
        >>> [n.path for n in nodes]
        ['/docs', '/notes.txt']
    """

    @staticmethod
    def should_ignore(name: str) -> bool:
        """Check if an entry name should be skipped (dotfiles)."""
        return name.startswith(".")

    def _entries(self, directory: Path) -> list[os.DirEntry]:
        with os.scandir(directory) as it:
            entries = [e for e in it if not self.should_ignore(e.name)]
        return sorted(entries, key=lambda e: e.name)

    def scan(self, directory: Path, relative_path: str = "/") -> list[FileSystemNode]:
        """Recursively scan a directory, depth first.

        A directory that cannot be read contributes an empty list instead of
        aborting the whole scan; a later scan picks the entries up again.

        Args:
            directory: Absolute directory to scan
            relative_path: Rooted POSIX path of ``directory`` within the tree

        Returns:
            List of nodes for the directory's entries
        """
        try:
            entries = self._entries(directory)
        except OSError as e:
            logger.error(f"Failed to scan directory {directory}: {e}")
            return []

        nodes: list[FileSystemNode] = []
        for entry in entries:
            entry_path = posixpath.join(relative_path, entry.name)
            try:
                is_dir = entry.is_dir(follow_symlinks=True)
                is_file = entry.is_file(follow_symlinks=True)
                stat = entry.stat(follow_symlinks=True)
            except OSError as e:
                logger.debug(f"Skipping unreadable entry {entry.path}: {e}")
                continue

            if is_dir:
                children = self.scan(Path(entry.path), entry_path)
                nodes.append(
                    FileSystemNode(
                        id=encode_node_id(entry_path),
                        name=entry.name,
                        type="folder",
                        path=entry_path,
                        created_at=_timestamp(_creation_time(stat)),
                        modified_at=_timestamp(stat.st_mtime),
                        children=tuple(children),
                    )
                )
            elif is_file:
                nodes.append(
                    FileSystemNode(
                        id=encode_node_id(entry_path),
                        name=entry.name,
                        type="file",
                        path=entry_path,
                        size=stat.st_size,
                        created_at=_timestamp(_creation_time(stat)),
                        modified_at=_timestamp(stat.st_mtime),
                    )
                )

        return nodes

    def list_file_keys(self, directory: Path, relative_path: str = "") -> list[str]:
        """List the store keys of every file below a directory.

        Args:
            directory: Absolute directory to walk
            relative_path: Key prefix of ``directory`` (no leading slash)

        Returns:
            Keys such as "docs/readme.txt", depth first
        """
        relative_path = relative_path.strip("/")
        try:
            entries = self._entries(directory)
        except OSError as e:
            logger.error(f"Failed to list directory {directory}: {e}")
            return []

        keys: list[str] = []
        for entry in entries:
            key = f"{relative_path}/{entry.name}" if relative_path else entry.name
            try:
                if entry.is_dir(follow_symlinks=True):
                    keys.extend(self.list_file_keys(Path(entry.path), key))
                elif entry.is_file(follow_symlinks=True):
                    keys.append(key)
            except OSError as e:
                logger.debug(f"Skipping unreadable entry {entry.path}: {e}")
        return keys
