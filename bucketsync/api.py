"""Object store client for bucketsync.

Wraps an S3-compatible bucket (MinIO, SeaweedFS, AWS) and owns the
encoding of the origin modification time in custom object metadata.
"""

from __future__ import annotations

import logging
import mimetypes
import os
from pathlib import Path
from typing import Any

import boto3
from botocore.config import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError

from .config import Config, config
from .exceptions import (
    AuthenticationError,
    BucketSyncError,
    LocalIOError,
    RemoteNotFoundError,
    TransportError,
)
from .models import NOT_FOUND, RemoteObject, RemoteObjectMetadata, _NotFound
from .utils import (
    ORIGIN_MTIME_METADATA_KEY,
    format_iso_ms,
    mtime_ms,
    parse_iso_ms,
    set_mtime_ms,
    to_key,
)

logger = logging.getLogger(__name__)

_NOT_FOUND_CODES = {"404", "NoSuchKey", "NotFound", "NoSuchBucket"}
_AUTH_CODES = {
    "401",
    "403",
    "AccessDenied",
    "InvalidAccessKeyId",
    "SignatureDoesNotMatch",
    "ExpiredToken",
}

DOWNLOAD_CHUNK_SIZE = 1024 * 1024


def _error_code(e: ClientError) -> str:
    return str(e.response.get("Error", {}).get("Code", ""))


def _status_code(e: ClientError) -> int:
    return int(e.response.get("ResponseMetadata", {}).get("HTTPStatusCode", 0) or 0)


def is_not_found(e: ClientError) -> bool:
    """Check whether a ClientError means the object (or bucket) is absent."""
    return _error_code(e) in _NOT_FOUND_CODES or _status_code(e) == 404


class ObjectStoreClient:
    """CRUD and listing against a single remote bucket."""

    def __init__(
        self,
        bucket: str | None = None,
        endpoint_url: str | None = None,
        access_key: str | None = None,
        secret_key: str | None = None,
        region: str | None = None,
        timeout: float | None = None,
        max_attempts: int | None = None,
        settings: Config | None = None,
    ):
        """Initialize the object store client.

        Args:
            bucket: Bucket name (uses config if not provided)
            endpoint_url: S3 endpoint URL (uses config if not provided)
            access_key: Access key id (uses config if not provided)
            secret_key: Secret access key (uses config if not provided)
            region: Region name (uses config if not provided)
            timeout: Connect/read timeout in seconds
            max_attempts: Total attempts per request; 1 disables botocore retries
            settings: Config to read defaults from (module config by default)
        """
        settings = settings or config
        self.bucket = bucket or settings.get("bucket")
        self.endpoint_url = endpoint_url or settings.get("endpoint_url")
        self.access_key = access_key or settings.get("access_key")
        self.secret_key = secret_key or settings.get("secret_key")
        self.region = region or settings.get("region")
        self.timeout = timeout if timeout is not None else settings.get("timeout")
        self.max_attempts = (
            max_attempts if max_attempts is not None else settings.get("max_attempts")
        )
        self._client: Any = None

    def _get_client(self) -> Any:
        """Get or create the boto3 S3 client."""
        if self._client is None:
            self._client = boto3.client(
                "s3",
                endpoint_url=self.endpoint_url or None,
                aws_access_key_id=self.access_key,
                aws_secret_access_key=self.secret_key,
                region_name=self.region,
                config=BotoConfig(
                    connect_timeout=self.timeout,
                    read_timeout=self.timeout,
                    retries={"max_attempts": self.max_attempts, "mode": "standard"},
                    s3={"addressing_style": "path"},
                ),
            )
        return self._client

    def close(self) -> None:
        """Close the client and release connections."""
        if self._client is not None:
            self._client.close()
            self._client = None
            logger.info("Object store client closed")

    def _translate_error(self, e: Exception, action: str, key: str = "") -> Exception:
        """Map a botocore exception onto the bucketsync taxonomy.

        Args:
            e: The exception raised by boto3
            action: Short description of the failed operation
            key: Object key involved, if any

        Returns:
            Exception to raise
        """
        target = f" {key}" if key else ""
        if isinstance(e, ClientError):
            code = _error_code(e)
            if is_not_found(e) and key:
                return RemoteNotFoundError(key)
            if code in _AUTH_CODES or _status_code(e) in (401, 403):
                return AuthenticationError(
                    f"{action}{target} rejected ({code or _status_code(e)}) - "
                    "check your credentials"
                )
            return TransportError(f"{action}{target} failed: {code or e}")
        return TransportError(f"{action}{target} failed: {e}")

    # =========================
    # Bucket Operations
    # =========================

    def bucket_exists(self) -> bool:
        """Check whether the bucket exists.

        Raises:
            TransportError: For any failure other than a missing bucket
        """
        try:
            self._get_client().head_bucket(Bucket=self.bucket)
            return True
        except ClientError as e:
            if is_not_found(e):
                return False
            raise self._translate_error(e, "Bucket check") from e
        except BotoCoreError as e:
            raise self._translate_error(e, "Bucket check") from e

    def create_bucket(self) -> bool:
        """Create the bucket. Returns False (and logs) on failure."""
        kwargs: dict[str, Any] = {"Bucket": self.bucket}
        if self.region and self.region != "us-east-1":
            kwargs["CreateBucketConfiguration"] = {"LocationConstraint": self.region}
        try:
            self._get_client().create_bucket(**kwargs)
        except (ClientError, BotoCoreError) as e:
            logger.error(f"Failed to create bucket {self.bucket}: {e}")
            return False
        logger.info(f"Created bucket: {self.bucket}")
        return True

    def init(self) -> bool:
        """Ensure the bucket exists, creating it if absent.

        Idempotent. Never raises: a failure is logged and sync continues in
        degraded mode until the store becomes reachable.

        Returns:
            True if the bucket is available
        """
        logger.info(f"Connecting to object store: {self.endpoint_url}")
        try:
            if self.bucket_exists():
                logger.info(f"Bucket exists: {self.bucket}")
                return True
            logger.info(f"Bucket {self.bucket} not found, creating it")
            return self.create_bucket()
        except BucketSyncError as e:
            logger.error(f"Object store initialization failed: {e}")
            return False

    # =========================
    # Object Operations
    # =========================

    def head_metadata(self, key: str) -> RemoteObjectMetadata | _NotFound:
        """Fetch metadata for a single object.

        Args:
            key: Object key (a leading slash is stripped)

        Returns:
            RemoteObjectMetadata, or NOT_FOUND if the object does not exist

        Raises:
            TransportError: If the store could not be queried
        """
        key = to_key(key)
        try:
            response = self._get_client().head_object(Bucket=self.bucket, Key=key)
        except ClientError as e:
            if is_not_found(e):
                return NOT_FOUND
            logger.error(f"Failed to fetch metadata for {key}: {e}")
            raise self._translate_error(e, "Metadata lookup", key) from e
        except BotoCoreError as e:
            logger.error(f"Failed to fetch metadata for {key}: {e}")
            raise self._translate_error(e, "Metadata lookup", key) from e

        metadata = response.get("Metadata") or {}
        return RemoteObjectMetadata(
            key=key,
            store_last_modified=response.get("LastModified"),
            etag=response.get("ETag"),
            origin_mtime_ms=parse_iso_ms(metadata.get(ORIGIN_MTIME_METADATA_KEY)),
        )

    @staticmethod
    def is_file_accessible(file_path: Path) -> bool:
        """Best-effort check that no other writer holds the file.

        Opens the file for reading and writing; a failure means it is locked
        (or otherwise unusable) right now.
        """
        try:
            with open(file_path, "r+b"):
                pass
        except OSError:
            return False
        return True

    def put(self, local_path: Path | str, key: str) -> bool:
        """Upload a local file unless the remote copy is the same age or newer.

        The object is stamped with the local file's own modification time,
        which future comparisons use instead of the upload instant.

        Args:
            local_path: Local file to upload
            key: Destination key (a leading slash is stripped)

        Returns:
            True if the file was uploaded, False if skipped

        Raises:
            TransportError: If the store could not be reached
            LocalIOError: If the local file disappeared or cannot be read
        """
        local_path = Path(local_path)
        key = to_key(key)

        if not local_path.is_file():
            raise LocalIOError(str(local_path), "File not found")
        if not self.is_file_accessible(local_path):
            logger.warning(f"File is locked by another writer, skipping: {local_path}")
            return False

        try:
            local_mtime = mtime_ms(local_path)
        except OSError as e:
            raise LocalIOError(str(local_path), f"Failed to stat file: {e}") from e
        remote = self.head_metadata(key)
        if remote is not NOT_FOUND and remote.origin_mtime_ms is not None:
            if local_mtime <= remote.origin_mtime_ms:
                logger.debug(f"Remote copy is same age or newer, skipping: {key}")
                return False
            logger.info(f"Local file is newer, uploading: {key}")

        content_type = mimetypes.guess_type(local_path.name)[0]
        extra: dict[str, Any] = {}
        if content_type:
            extra["ContentType"] = content_type

        try:
            with open(local_path, "rb") as body:
                self._get_client().put_object(
                    Bucket=self.bucket,
                    Key=key,
                    Body=body,
                    Metadata={ORIGIN_MTIME_METADATA_KEY: format_iso_ms(local_mtime)},
                    **extra,
                )
        except (ClientError, BotoCoreError) as e:
            logger.error(f"Failed to upload {local_path}: {e}")
            raise self._translate_error(e, "Upload", key) from e
        except OSError as e:
            raise LocalIOError(str(local_path), f"Failed to read file: {e}") from e

        logger.info(f"Uploaded: {key}")
        return True

    def get(
        self,
        key: str,
        dest_path: Path | str,
        origin_mtime_ms: int | None = None,
    ) -> Path:
        """Download an object into a local file.

        The body is written to a hidden temporary file beside the
        destination and moved into place, so watchers never observe a
        partial file. The destination's mtime is set to the origin mtime,
        which keeps the downloaded file from looking newer than the remote.

        Args:
            key: Object key (a leading slash is stripped)
            dest_path: Local destination path
            origin_mtime_ms: Origin mtime to apply; read from the object
                metadata when not given

        Returns:
            Path where the file was saved

        Raises:
            RemoteNotFoundError: If the object does not exist
            TransportError: If the store could not be reached
            LocalIOError: If the file cannot be written
        """
        key = to_key(key)
        dest_path = Path(dest_path)
        try:
            dest_path.parent.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise LocalIOError(
                str(dest_path.parent), f"Failed to create directory: {e}"
            ) from e

        try:
            response = self._get_client().get_object(Bucket=self.bucket, Key=key)
        except (ClientError, BotoCoreError) as e:
            raise self._translate_error(e, "Download", key) from e

        if origin_mtime_ms is None:
            metadata = response.get("Metadata") or {}
            origin_mtime_ms = parse_iso_ms(metadata.get(ORIGIN_MTIME_METADATA_KEY))

        tmp_path = dest_path.with_name(f".{dest_path.name}.bucketsync-tmp")
        try:
            with open(tmp_path, "wb") as f:
                for chunk in response["Body"].iter_chunks(DOWNLOAD_CHUNK_SIZE):
                    if chunk:
                        f.write(chunk)
            if origin_mtime_ms is not None:
                set_mtime_ms(tmp_path, origin_mtime_ms)
            os.replace(tmp_path, dest_path)
        except (ClientError, BotoCoreError) as e:
            tmp_path.unlink(missing_ok=True)
            raise self._translate_error(e, "Download", key) from e
        except OSError as e:
            tmp_path.unlink(missing_ok=True)
            raise LocalIOError(str(dest_path), f"Failed to write file: {e}") from e
        finally:
            response["Body"].close()

        logger.info(f"Downloaded: {key} -> {dest_path}")
        return dest_path

    def read(self, key: str) -> bytes:
        """Return the full body of an object.

        Raises:
            RemoteNotFoundError: If the object does not exist
            TransportError: If the store could not be reached
        """
        key = to_key(key)
        try:
            response = self._get_client().get_object(Bucket=self.bucket, Key=key)
            return response["Body"].read()
        except (ClientError, BotoCoreError) as e:
            raise self._translate_error(e, "Read", key) from e

    def delete(self, key: str) -> bool:
        """Delete an object. A missing object counts as success.

        Raises:
            TransportError: If the store could not be reached
        """
        key = to_key(key)
        try:
            self._get_client().delete_object(Bucket=self.bucket, Key=key)
        except ClientError as e:
            if is_not_found(e):
                logger.debug(f"Remote object already absent: {key}")
                return True
            logger.error(f"Failed to delete remote object {key}: {e}")
            raise self._translate_error(e, "Delete", key) from e
        except BotoCoreError as e:
            logger.error(f"Failed to delete remote object {key}: {e}")
            raise self._translate_error(e, "Delete", key) from e

        logger.info(f"Deleted remote object: {key}")
        return True

    def list_all(self) -> list[RemoteObject]:
        """Enumerate every object in the bucket.

        Raises:
            TransportError: If the listing failed
        """
        objects: list[RemoteObject] = []
        try:
            paginator = self._get_client().get_paginator("list_objects_v2")
            for page in paginator.paginate(Bucket=self.bucket):
                for item in page.get("Contents", []):
                    objects.append(
                        RemoteObject(
                            key=item["Key"],
                            size=item.get("Size", 0),
                            last_modified=item.get("LastModified"),
                            etag=item.get("ETag"),
                        )
                    )
        except (ClientError, BotoCoreError) as e:
            logger.error(f"Failed to list bucket {self.bucket}: {e}")
            raise self._translate_error(e, "Listing") from e
        return objects
