"""Exception hierarchy for bucketsync."""


class BucketSyncError(Exception):
    """Base exception for all bucketsync errors."""


class ConfigError(BucketSyncError):
    """Configuration is missing or invalid."""


class TransportError(BucketSyncError):
    """The object store could not be reached or rejected the request."""


class AuthenticationError(TransportError):
    """Credentials were rejected by the object store."""


class RemoteNotFoundError(BucketSyncError):
    """The requested remote object does not exist."""

    def __init__(self, key: str):
        super().__init__(f"Remote object not found: {key}")
        self.key = key


class LocalIOError(BucketSyncError):
    """A local file could not be read or written."""

    def __init__(self, path: str, reason: str):
        super().__init__(f"{reason}: {path}")
        self.path = path
        self.reason = reason
