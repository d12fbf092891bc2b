"""Tests for the directory tree scanner."""

from unittest.mock import patch

from bucketsync.sync.scanner import TreeScanner
from bucketsync.utils import decode_node_id


class TestTreeScanner:
    """Test TreeScanner functionality."""

    def _build_tree(self, root):
        (root / "docs" / "deep").mkdir(parents=True)
        (root / "docs" / "readme.txt").write_text("readme")
        (root / "docs" / "deep" / "nested.md").write_text("nested")
        (root / "notes.txt").write_text("12345")
        (root / ".hidden").write_text("secret")
        (root / ".git").mkdir()
        (root / ".git" / "config").write_text("[core]")

    def test_scan_empty_directory(self, sync_root):
        """Test scanning an empty directory."""
        assert TreeScanner().scan(sync_root) == []

    def test_scan_skips_dotfiles(self, sync_root):
        """Test that dotfiles and dot-directories never appear."""
        self._build_tree(sync_root)
        nodes = TreeScanner().scan(sync_root)
        assert [n.name for n in nodes] == ["docs", "notes.txt"]

    def test_scan_builds_rooted_paths(self, sync_root):
        """Test that paths are rooted at "/" and folders carry children."""
        self._build_tree(sync_root)
        docs, notes = TreeScanner().scan(sync_root)

        assert docs.type == "folder"
        assert docs.path == "/docs"
        assert not docs.is_leaf
        assert [c.path for c in docs.children] == ["/docs/deep", "/docs/readme.txt"]
        assert docs.children[0].children[0].path == "/docs/deep/nested.md"

        assert notes.type == "file"
        assert notes.is_leaf
        assert notes.size == 5
        assert notes.children is None

    def test_node_ids_are_stable(self, sync_root):
        """Test that rescanning yields the same ids."""
        self._build_tree(sync_root)
        first = TreeScanner().scan(sync_root)
        second = TreeScanner().scan(sync_root)
        assert [n.id for n in first] == [n.id for n in second]
        assert decode_node_id(first[0].id) == "/docs"

    def test_node_timestamps(self, sync_root):
        """Test that nodes carry aware creation and modification times."""
        (sync_root / "a.txt").write_text("a")
        (node,) = TreeScanner().scan(sync_root)
        assert node.modified_at is not None
        assert node.modified_at.tzinfo is not None
        assert node.created_at is not None

    def test_to_dict_shape(self, sync_root):
        """Test the camelCase rendering of nodes."""
        self._build_tree(sync_root)
        data = [n.to_dict() for n in TreeScanner().scan(sync_root)]
        assert data[0]["isLeaf"] is False
        assert "children" in data[0]
        assert data[1]["size"] == 5
        assert set(data[1]) == {
            "id",
            "name",
            "type",
            "path",
            "createdAt",
            "modifiedAt",
            "isLeaf",
            "size",
        }

    def test_unreadable_directory_yields_empty_list(self, sync_root):
        """Test that a directory that cannot be listed does not abort the scan."""
        (sync_root / "a.txt").write_text("a")
        with patch("os.scandir", side_effect=PermissionError("denied")):
            assert TreeScanner().scan(sync_root) == []

    def test_list_file_keys(self, sync_root):
        """Test listing store keys for every file, depth first."""
        self._build_tree(sync_root)
        keys = TreeScanner().list_file_keys(sync_root)
        assert keys == ["docs/deep/nested.md", "docs/readme.txt", "notes.txt"]

    def test_list_file_keys_with_prefix(self, sync_root):
        """Test listing keys below a subfolder with its key prefix."""
        self._build_tree(sync_root)
        keys = TreeScanner().list_file_keys(sync_root / "docs", "/docs/")
        assert keys == ["docs/deep/nested.md", "docs/readme.txt"]

    def test_should_ignore(self):
        """Test the dotfile rule."""
        assert TreeScanner.should_ignore(".DS_Store")
        assert not TreeScanner.should_ignore("file.txt")
