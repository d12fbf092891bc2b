"""bucketsync - keep a local directory tree in step with an S3 bucket."""

from .api import ObjectStoreClient
from .exceptions import (
    AuthenticationError,
    BucketSyncError,
    ConfigError,
    LocalIOError,
    RemoteNotFoundError,
    TransportError,
)
from .models import (
    NOT_FOUND,
    FileSystemNode,
    OperationResult,
    RemoteObject,
    RemoteObjectMetadata,
)
from .utils import decode_node_id, encode_node_id

__version__ = "0.1.0"

__all__ = [
    "ObjectStoreClient",
    "AuthenticationError",
    "BucketSyncError",
    "ConfigError",
    "LocalIOError",
    "RemoteNotFoundError",
    "TransportError",
    "NOT_FOUND",
    "FileSystemNode",
    "OperationResult",
    "RemoteObject",
    "RemoteObjectMetadata",
    "decode_node_id",
    "encode_node_id",
]
