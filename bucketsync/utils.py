"""Utility functions for bucketsync."""

import base64
import os
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Optional, Union

# =============================================================================
# Constants
# =============================================================================

# Custom metadata field holding the origin modification time of an object
ORIGIN_MTIME_METADATA_KEY: str = "x-original-mtime"

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)

_ONE_MS = timedelta(milliseconds=1)


# =============================================================================
# Timestamp utilities
# =============================================================================


def mtime_ms(path: Union[str, Path]) -> int:
    """Return the modification time of a file in whole milliseconds.

    Milliseconds are the precision of the ISO-8601 stamp stored in object
    metadata, so local and remote times are always compared at that
    precision.

    Args:
        path: Local file path

    Returns:
        Modification time as milliseconds since the Unix epoch
    """
    return os.stat(path).st_mtime_ns // 1_000_000


def set_mtime_ms(path: Union[str, Path], value_ms: int) -> None:
    """Set access and modification time of a file to an exact millisecond."""
    ns = value_ms * 1_000_000
    os.utime(path, ns=(ns, ns))


def ms_to_datetime(value_ms: int) -> datetime:
    """Convert epoch milliseconds to an aware UTC datetime."""
    return EPOCH + timedelta(milliseconds=value_ms)


def datetime_to_ms(dt: datetime) -> int:
    """Convert a datetime to epoch milliseconds (naive values are UTC)."""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return (dt - EPOCH) // _ONE_MS


def format_iso_ms(value_ms: int) -> str:
    """Format epoch milliseconds as ISO-8601 UTC, e.g. 2025-01-15T10:30:00.123Z."""
    dt = ms_to_datetime(value_ms)
    return dt.strftime("%Y-%m-%dT%H:%M:%S.") + f"{dt.microsecond // 1000:03d}Z"


def parse_iso_timestamp(timestamp_str: Optional[str]) -> Optional[datetime]:
    """Parse an ISO format timestamp.

    Args:
        timestamp_str: ISO format timestamp string (e.g., "2025-01-15T10:30:00.000Z")

    Returns:
        Aware UTC datetime or None if parsing fails
    """
    if not timestamp_str:
        return None

    try:
        # The 'Z' suffix indicates UTC time
        if timestamp_str.endswith("Z"):
            timestamp_str = timestamp_str[:-1] + "+00:00"
        dt = datetime.fromisoformat(timestamp_str)
    except (ValueError, AttributeError, TypeError):
        return None

    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def parse_iso_ms(timestamp_str: Optional[str]) -> Optional[int]:
    """Parse an ISO timestamp into epoch milliseconds, or None."""
    dt = parse_iso_timestamp(timestamp_str)
    if dt is None:
        return None
    return datetime_to_ms(dt)


# =============================================================================
# Path and key utilities
# =============================================================================


def to_key(path: str) -> str:
    """Convert a rooted tree path into an object store key.

    Args:
        path: Path such as "/docs/readme.txt" (backslashes allowed)

    Returns:
        Key without leading slash, e.g. "docs/readme.txt"
    """
    return path.replace("\\", "/").lstrip("/")


def to_tree_path(key: str) -> str:
    """Convert an object store key into a path rooted at "/"."""
    return "/" + key.replace("\\", "/").lstrip("/")


def is_hidden(relative_path: str) -> bool:
    """Check whether any segment of a POSIX path is a dotfile."""
    return any(part.startswith(".") for part in relative_path.split("/") if part)


def encode_node_id(tree_path: str) -> str:
    """Encode a tree path into a stable node identifier.

    URL-safe base64 is injective, so distinct paths never share an id, and
    the same path always yields the same id.
    """
    return base64.urlsafe_b64encode(tree_path.encode("utf-8")).decode("ascii")


def decode_node_id(node_id: str) -> str:
    """Recover the tree path from a node identifier."""
    return base64.urlsafe_b64decode(node_id.encode("ascii")).decode("utf-8")


# =============================================================================
# Size formatting utilities
# =============================================================================


def format_size(size_bytes: int) -> str:
    """Format file size in human-readable format.

    Args:
        size_bytes: Size in bytes

    Returns:
        Human-readable size string (e.g., "1.5 MB")
    """
    if size_bytes < 1024:
        return f"{size_bytes} B"
    elif size_bytes < 1024 * 1024:
        return f"{size_bytes / 1024:.1f} KB"
    elif size_bytes < 1024 * 1024 * 1024:
        return f"{size_bytes / (1024 * 1024):.1f} MB"
    else:
        return f"{size_bytes / (1024 * 1024 * 1024):.1f} GB"
