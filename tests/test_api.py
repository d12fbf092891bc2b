"""Unit tests for the object store client."""

from unittest.mock import Mock, patch

import pytest
from botocore.exceptions import ClientError, EndpointConnectionError

from bucketsync.api import ObjectStoreClient, is_not_found
from bucketsync.exceptions import (
    AuthenticationError,
    LocalIOError,
    RemoteNotFoundError,
    TransportError,
)
from bucketsync.models import NOT_FOUND
from bucketsync.utils import ORIGIN_MTIME_METADATA_KEY, mtime_ms, set_mtime_ms

LOCAL_MS = 1736937000123


def _client_error(code: str, status: int, operation: str = "HeadObject"):
    return ClientError(
        {
            "Error": {"Code": code, "Message": code},
            "ResponseMetadata": {"HTTPStatusCode": status},
        },
        operation,
    )


def _write(path, content: str, ms: int = LOCAL_MS):
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content)
    set_mtime_ms(path, ms)
    return path


class TestBucketInit:
    """Tests for bucket initialization."""

    def test_init_existing_bucket(self, store):
        """Test that an existing bucket is accepted."""
        assert store.init() is True

    def test_init_creates_missing_bucket(self, store, mock_s3):
        """Test that a missing bucket is created."""
        store.bucket = "brand-new-bucket"
        assert store.init() is True
        names = [b["Name"] for b in mock_s3.list_buckets()["Buckets"]]
        assert "brand-new-bucket" in names

    def test_init_is_idempotent(self, store):
        """Test that init can be called repeatedly."""
        assert store.init() is True
        assert store.init() is True

    def test_init_never_raises(self, settings):
        """Test that an unreachable store yields False instead of raising."""
        client = ObjectStoreClient(settings=settings)
        boto_client = Mock()
        boto_client.head_bucket.side_effect = EndpointConnectionError(
            endpoint_url="http://localhost:8333"
        )
        client._client = boto_client
        assert client.init() is False


class TestPut:
    """Tests for uploads with origin mtime stamping."""

    def test_put_stamps_origin_mtime(self, store, mock_s3, temp_dir):
        """Test that the uploaded object carries the local mtime."""
        path = _write(temp_dir / "notes.txt", "hello")
        assert store.put(path, "/notes.txt") is True

        head = mock_s3.head_object(Bucket=store.bucket, Key="notes.txt")
        assert head["Metadata"][ORIGIN_MTIME_METADATA_KEY] == "2025-01-15T10:30:00.123Z"
        assert head["ContentType"] == "text/plain"

    def test_put_skips_when_remote_same_age(self, store, mock_s3, temp_dir):
        """Test that an equal origin mtime is not uploaded again."""
        path = _write(temp_dir / "notes.txt", "hello")
        store.put(path, "notes.txt")
        with patch.object(store._get_client(), "put_object") as put_object:
            assert store.put(path, "notes.txt") is False
            put_object.assert_not_called()

    def test_put_skips_when_remote_newer(self, store, temp_dir):
        """Test that an older local file never overwrites a newer remote."""
        path = _write(temp_dir / "notes.txt", "new", LOCAL_MS + 5000)
        store.put(path, "notes.txt")
        _write(path, "old", LOCAL_MS)
        assert store.put(path, "notes.txt") is False
        assert store.read("notes.txt") == b"new"

    def test_put_uploads_when_local_newer(self, store, temp_dir):
        """Test that a newer local file replaces the remote copy."""
        path = _write(temp_dir / "notes.txt", "old")
        store.put(path, "notes.txt")
        _write(path, "new", LOCAL_MS + 1)
        assert store.put(path, "notes.txt") is True
        assert store.read("notes.txt") == b"new"
        assert store.head_metadata("notes.txt").origin_mtime_ms == LOCAL_MS + 1

    def test_put_overwrites_unstamped_remote(self, store, mock_s3, temp_dir):
        """Test that an object without origin mtime is replaced."""
        mock_s3.put_object(Bucket=store.bucket, Key="notes.txt", Body=b"foreign")
        path = _write(temp_dir / "notes.txt", "local")
        assert store.put(path, "notes.txt") is True
        assert store.read("notes.txt") == b"local"

    def test_put_missing_file_raises(self, store, temp_dir):
        """Test that a vanished local file raises LocalIOError."""
        with pytest.raises(LocalIOError, match="File not found"):
            store.put(temp_dir / "missing.txt", "missing.txt")

    def test_put_locked_file_is_skipped(self, store, temp_dir):
        """Test that a file held by another writer is not uploaded."""
        path = _write(temp_dir / "locked.txt", "busy")
        with patch.object(ObjectStoreClient, "is_file_accessible", return_value=False):
            assert store.put(path, "locked.txt") is False
        assert store.head_metadata("locked.txt") is NOT_FOUND


class TestGet:
    """Tests for downloads."""

    def test_get_sets_origin_mtime(self, store, temp_dir):
        """Test that a download carries the origin mtime onto the file."""
        src = _write(temp_dir / "src" / "a.txt", "payload")
        store.put(src, "docs/a.txt")

        dest = temp_dir / "dest" / "docs" / "a.txt"
        assert store.get("docs/a.txt", dest) == dest
        assert dest.read_text() == "payload"
        assert mtime_ms(dest) == LOCAL_MS

    def test_get_explicit_origin_mtime(self, store, temp_dir):
        """Test that an explicit origin mtime takes precedence."""
        src = _write(temp_dir / "a.txt", "payload")
        store.put(src, "a.txt")
        dest = temp_dir / "out.txt"
        store.get("a.txt", dest, origin_mtime_ms=LOCAL_MS + 42)
        assert mtime_ms(dest) == LOCAL_MS + 42

    def test_get_leaves_no_temp_file(self, store, temp_dir):
        """Test that the hidden temporary file is moved into place."""
        src = _write(temp_dir / "a.txt", "payload")
        store.put(src, "a.txt")
        dest_dir = temp_dir / "dest"
        store.get("a.txt", dest_dir / "a.txt")
        assert [p.name for p in dest_dir.iterdir()] == ["a.txt"]

    def test_get_missing_raises_not_found(self, store, temp_dir):
        """Test that a missing object raises RemoteNotFoundError."""
        with pytest.raises(RemoteNotFoundError) as exc_info:
            store.get("nope.txt", temp_dir / "nope.txt")
        assert exc_info.value.key == "nope.txt"
        assert not (temp_dir / "nope.txt").exists()


class TestObjectOperations:
    """Tests for head, delete, read and list."""

    def test_head_missing_returns_sentinel(self, store):
        """Test that HEAD on a missing key yields NOT_FOUND."""
        assert store.head_metadata("missing.txt") is NOT_FOUND

    def test_head_unstamped_object(self, store, mock_s3):
        """Test that foreign objects report no origin mtime."""
        mock_s3.put_object(Bucket=store.bucket, Key="foreign.bin", Body=b"x")
        metadata = store.head_metadata("/foreign.bin")
        assert metadata.key == "foreign.bin"
        assert metadata.origin_mtime_ms is None
        assert metadata.store_last_modified is not None

    def test_delete_existing(self, store, temp_dir):
        """Test deleting an object."""
        store.put(_write(temp_dir / "a.txt", "x"), "a.txt")
        assert store.delete("/a.txt") is True
        assert store.head_metadata("a.txt") is NOT_FOUND

    def test_delete_absent_is_success(self, store):
        """Test that deleting a missing object counts as success."""
        assert store.delete("never-existed.txt") is True

    def test_read_returns_body(self, store, temp_dir):
        """Test reading an object body into memory."""
        store.put(_write(temp_dir / "a.txt", "content"), "a.txt")
        assert store.read("a.txt") == b"content"

    def test_list_all_paginates(self, store, mock_s3):
        """Test that listing follows continuation tokens."""
        for i in range(1005):
            mock_s3.put_object(Bucket=store.bucket, Key=f"bulk/{i:04d}.txt", Body=b"")
        objects = store.list_all()
        assert len(objects) == 1005
        assert objects[0].key == "bulk/0000.txt"

    def test_list_empty_bucket(self, store):
        """Test listing an empty bucket."""
        assert store.list_all() == []


class TestErrorTranslation:
    """Tests for mapping botocore errors onto bucketsync exceptions."""

    @pytest.fixture
    def client(self, settings):
        client = ObjectStoreClient(bucket="b", settings=settings)
        client._client = Mock()
        return client

    def test_is_not_found(self):
        """Test recognizing not-found codes."""
        assert is_not_found(_client_error("404", 404))
        assert is_not_found(_client_error("NoSuchKey", 404))
        assert not is_not_found(_client_error("AccessDenied", 403))

    def test_auth_error(self, client):
        """Test that rejected credentials raise AuthenticationError."""
        client._client.head_object.side_effect = _client_error("AccessDenied", 403)
        with pytest.raises(AuthenticationError):
            client.head_metadata("a.txt")

    def test_listing_failure(self, client):
        """Test that a failed listing raises TransportError."""
        client._client.get_paginator.side_effect = EndpointConnectionError(
            endpoint_url="http://localhost:8333"
        )
        with pytest.raises(TransportError):
            client.list_all()

    def test_server_error(self, client):
        """Test that other failures raise TransportError."""
        client._client.delete_object.side_effect = _client_error(
            "InternalError", 500, "DeleteObject"
        )
        with pytest.raises(TransportError, match="InternalError"):
            client.delete("a.txt")

    def test_connection_error(self, client):
        """Test that connection failures raise TransportError."""
        client._client.head_object.side_effect = EndpointConnectionError(
            endpoint_url="http://localhost:8333"
        )
        with pytest.raises(TransportError):
            client.head_metadata("a.txt")

    def test_close_releases_client(self, client):
        """Test that close drops the cached boto3 client."""
        boto_client = client._client
        client.close()
        boto_client.close.assert_called_once()
        assert client._client is None
