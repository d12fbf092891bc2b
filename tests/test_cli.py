"""Unit tests for the bucketsync CLI commands."""

import json
from datetime import datetime, timezone
from unittest.mock import Mock, patch

import pytest
from click.testing import CliRunner

from bucketsync.api import ObjectStoreClient
from bucketsync.cli import main
from bucketsync.exceptions import TransportError
from bucketsync.models import RemoteObject, RemoteObjectMetadata


@pytest.fixture
def runner():
    """Provide a Click CLI test runner."""
    return CliRunner()


@pytest.fixture
def mock_client():
    """Patch the store client used by the CLI."""
    client = Mock(spec=ObjectStoreClient)
    client.bucket = "bucketsync"
    client.endpoint_url = "http://localhost:8333"
    client.init.return_value = True
    client.put.return_value = True
    client.delete.return_value = True
    client.list_all.return_value = []
    with patch("bucketsync.cli.ObjectStoreClient", return_value=client):
        yield client


class TestMainGroup:
    """Tests for the main CLI group."""

    def test_main_help(self, runner):
        """Test main help shows all commands."""
        result = runner.invoke(main, ["--help"])
        assert result.exit_code == 0
        for command in ("init", "watch", "sync", "pull", "tree", "touch", "mv", "rm"):
            assert command in result.output

    def test_version(self, runner):
        """Test the version option."""
        result = runner.invoke(main, ["--version"])
        assert result.exit_code == 0
        assert "0.1.0" in result.output


class TestInitCommand:
    """Tests for the init command."""

    def test_init_success(self, runner, mock_client):
        """Test init with a reachable store."""
        result = runner.invoke(main, ["init"])
        assert result.exit_code == 0
        assert "Bucket ready" in result.output

    def test_init_unreachable(self, runner, mock_client):
        """Test init when the store cannot be reached."""
        mock_client.init.return_value = False
        result = runner.invoke(main, ["init"])
        assert result.exit_code == 1
        assert "Could not reach" in result.output

    def test_init_save(self, runner, mock_client, temp_dir):
        """Test that --save writes the given options to the config file."""
        with patch("bucketsync.cli.config") as mock_config:
            mock_config.save.return_value = temp_dir / "config.json"
            result = runner.invoke(main, ["--bucket", "photos", "init", "--save"])
        assert result.exit_code == 0
        mock_config.save.assert_called_once_with(bucket="photos")


class TestTreeCommands:
    """Tests for commands operating on the local tree."""

    def test_touch_and_cat(self, runner, mock_client, sync_root):
        """Test creating a file and reading it back."""
        result = runner.invoke(
            main, ["--root", str(sync_root), "touch", "/", "a.txt", "--content", "hi"]
        )
        assert result.exit_code == 0
        assert (sync_root / "a.txt").read_text() == "hi"

        result = runner.invoke(main, ["--root", str(sync_root), "cat", "/a.txt"])
        assert result.exit_code == 0
        assert result.output == "hi"

    def test_cat_missing(self, runner, mock_client, sync_root):
        """Test reading a missing file."""
        result = runner.invoke(main, ["--root", str(sync_root), "cat", "/nope.txt"])
        assert result.exit_code == 1

    def test_mkdir_and_tree_json(self, runner, mock_client, sync_root):
        """Test creating a folder and printing the tree as JSON."""
        result = runner.invoke(main, ["--root", str(sync_root), "mkdir", "/", "docs"])
        assert result.exit_code == 0

        result = runner.invoke(main, ["--root", str(sync_root), "--json", "tree"])
        assert result.exit_code == 0
        data = json.loads(result.output)
        assert data[0]["path"] == "/docs"
        assert data[0]["type"] == "folder"

    def test_rm_deletes_remote(self, runner, mock_client, sync_root):
        """Test that rm removes the file locally and remotely."""
        (sync_root / "a.txt").write_text("x")
        result = runner.invoke(main, ["--root", str(sync_root), "rm", "/a.txt"])
        assert result.exit_code == 0
        mock_client.delete.assert_called_once_with("a.txt")
        assert not (sync_root / "a.txt").exists()

    def test_rm_missing_json(self, runner, mock_client, sync_root):
        """Test the JSON error envelope."""
        result = runner.invoke(main, ["--root", str(sync_root), "--json", "rm", "/x"])
        assert result.exit_code == 1
        data = json.loads(result.output)
        assert data["success"] is False

    def test_mv(self, runner, mock_client, sync_root):
        """Test moving a file into a folder."""
        (sync_root / "a.txt").write_text("x")
        result = runner.invoke(
            main, ["--root", str(sync_root), "mv", "/a.txt", "/archive"]
        )
        assert result.exit_code == 0
        assert (sync_root / "archive" / "a.txt").exists()
        mock_client.put.assert_called_once_with(
            sync_root / "archive" / "a.txt", "archive/a.txt"
        )

    def test_import(self, runner, mock_client, sync_root, temp_dir):
        """Test importing an external file."""
        source = temp_dir / "report.txt"
        source.write_text("report")
        result = runner.invoke(
            main, ["--root", str(sync_root), "import", str(source), "/docs"]
        )
        assert result.exit_code == 0
        assert (sync_root / "docs" / "report.txt").read_text() == "report"


class TestSyncCommands:
    """Tests for sync, pull, status and ls."""

    def test_sync_reports_stats(self, runner, mock_client, sync_root):
        """Test a full sync pass."""
        (sync_root / "a.txt").write_text("x")
        result = runner.invoke(main, ["--root", str(sync_root), "sync"])
        assert result.exit_code == 0
        assert "Uploaded: 1" in result.output

    def test_pull_failure(self, runner, mock_client, sync_root):
        """Test pull when the store is unreachable."""
        mock_client.list_all.side_effect = TransportError("unreachable")
        result = runner.invoke(main, ["--root", str(sync_root), "pull"])
        assert result.exit_code == 1
        assert "unreachable" in result.output

    def test_status_in_sync(self, runner, mock_client, sync_root):
        """Test status with nothing to do."""
        result = runner.invoke(main, ["--root", str(sync_root), "status"])
        assert result.exit_code == 0
        assert "Everything is in sync" in result.output

    def test_status_json(self, runner, mock_client, sync_root):
        """Test status listing a pending upload."""
        (sync_root / "a.txt").write_text("x")
        result = runner.invoke(main, ["--root", str(sync_root), "--json", "status"])
        assert result.exit_code == 0
        data = json.loads(result.output)
        assert data[0]["key"] == "a.txt"
        assert data[0]["action"] == "upload"

    def test_ls_with_metadata(self, runner, mock_client):
        """Test listing remote objects with their origin mtime."""
        stored = datetime(2025, 1, 15, 10, 31, tzinfo=timezone.utc)
        mock_client.list_all.return_value = [
            RemoteObject("docs/a.txt", size=10, last_modified=stored)
        ]
        mock_client.head_metadata.return_value = RemoteObjectMetadata(
            key="docs/a.txt", origin_mtime_ms=1736937000123
        )
        result = runner.invoke(main, ["--json", "ls", "--metadata"])
        assert result.exit_code == 0
        data = json.loads(result.output)
        assert data[0]["key"] == "docs/a.txt"
        assert data[0]["originMtime"] == "2025-01-15T10:30:00.123Z"
