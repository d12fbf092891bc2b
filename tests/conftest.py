"""Shared fixtures for bucketsync tests."""

import os
import tempfile
from pathlib import Path
from unittest.mock import patch

import boto3
import pytest
from moto import mock_aws

from bucketsync.api import ObjectStoreClient
from bucketsync.config import Config

TEST_BUCKET = "test-sync-bucket"


@pytest.fixture
def temp_dir():
    """Create a temporary directory for testing."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir).resolve()


@pytest.fixture
def settings(temp_dir):
    """Config backed by a config file that does not exist yet."""
    env = {k: v for k, v in os.environ.items() if not k.startswith("BUCKETSYNC_")}
    with patch.dict(os.environ, env, clear=True):
        yield Config(config_path=temp_dir / "config" / "config.json")


@pytest.fixture
def mock_env_vars():
    """Mock AWS credentials for moto."""
    with patch.dict(
        os.environ,
        {
            "AWS_ACCESS_KEY_ID": "testing",
            "AWS_SECRET_ACCESS_KEY": "testing",
            "AWS_DEFAULT_REGION": "us-east-1",
        },
    ):
        yield


@pytest.fixture
def mock_s3(mock_env_vars):
    """Mock S3 with moto and create the test bucket."""
    with mock_aws():
        s3 = boto3.client("s3", region_name="us-east-1")
        s3.create_bucket(Bucket=TEST_BUCKET)
        yield s3


@pytest.fixture
def store(mock_s3, settings):
    """ObjectStoreClient talking to the moto bucket."""
    client = ObjectStoreClient(
        bucket=TEST_BUCKET,
        access_key="testing",
        secret_key="testing",
        region="us-east-1",
        settings=settings,
    )
    # Use the default AWS endpoint so moto intercepts the requests
    client.endpoint_url = None
    yield client
    client.close()


@pytest.fixture
def sync_root(temp_dir):
    """Local directory mirrored to the bucket."""
    root = temp_dir / "files"
    root.mkdir()
    return root
