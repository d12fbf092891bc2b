"""Data models shared by the store client, scanner and engine."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Literal, Optional

NodeType = Literal["file", "folder"]


class _NotFound:
    """Sentinel type returned when a remote object does not exist."""

    _instance: Optional["_NotFound"] = None

    def __new__(cls) -> "_NotFound":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __bool__(self) -> bool:
        return False

    def __repr__(self) -> str:
        return "NOT_FOUND"


NOT_FOUND = _NotFound()
"""Returned by ObjectStoreClient.head_metadata for a missing object."""


@dataclass(frozen=True)
class FileSystemNode:
    """A single entry of the local tree snapshot."""

    id: str
    """Deterministic encoding of ``path``"""

    name: str
    """Entry name (last path segment)"""

    type: NodeType
    """Either "file" or "folder" """

    path: str
    """POSIX path rooted at "/" """

    created_at: Optional[datetime] = None
    """Creation time (birth time where available, else ctime)"""

    modified_at: Optional[datetime] = None
    """Last modification time"""

    size: Optional[int] = None
    """File size in bytes (files only)"""

    children: Optional[tuple["FileSystemNode", ...]] = None
    """Child nodes (folders only)"""

    @property
    def is_leaf(self) -> bool:
        return self.type == "file"

    def to_dict(self) -> dict[str, Any]:
        """Render the node in the camelCase shape consumed by collaborators."""
        data: dict[str, Any] = {
            "id": self.id,
            "name": self.name,
            "type": self.type,
            "path": self.path,
            "createdAt": self.created_at.isoformat() if self.created_at else None,
            "modifiedAt": self.modified_at.isoformat() if self.modified_at else None,
            "isLeaf": self.is_leaf,
        }
        if self.type == "file":
            data["size"] = self.size
        else:
            data["children"] = [child.to_dict() for child in self.children or ()]
        return data


@dataclass(frozen=True)
class RemoteObjectMetadata:
    """Metadata of a single remote object as returned by a HEAD request."""

    key: str
    """Object key (relative path, no leading slash)"""

    store_last_modified: Optional[datetime] = None
    """Write time recorded by the object store itself"""

    etag: Optional[str] = None
    """Entity tag reported by the store"""

    origin_mtime_ms: Optional[int] = None
    """Origin modification time (epoch ms) from custom metadata.

    This, not ``store_last_modified``, is the value compared during sync.
    None when the object was written by a tool that did not stamp it.
    """


@dataclass(frozen=True)
class RemoteObject:
    """A single entry of a bucket listing."""

    key: str
    size: int = 0
    last_modified: Optional[datetime] = None
    etag: Optional[str] = None


@dataclass
class OperationResult:
    """Uniform result envelope returned by the engine's public surface."""

    success: bool
    error: Optional[str] = None
    content: Optional[str] = None
    extra: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def ok(cls, content: Optional[str] = None, **extra: Any) -> "OperationResult":
        return cls(success=True, content=content, extra=extra)

    @classmethod
    def fail(cls, error: str) -> "OperationResult":
        return cls(success=False, error=error)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"success": self.success}
        if self.error is not None:
            data["error"] = self.error
        if self.content is not None:
            data["content"] = self.content
        data.update(self.extra)
        return data
