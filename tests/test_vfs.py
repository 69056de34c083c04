"""Tests for forensim.vfs module."""

import pytest

from forensim.vfs import (
    DirNode,
    FileNode,
    FilesystemState,
    basename,
    default_tree,
    dirname,
    ensure_directories,
    ensure_parent,
    get_node,
    graft,
    is_within,
    list_children,
    node_from_data,
    normalize_path,
    resolve_path,
)


class TestPathAlgebra:
    """Tests for path normalization and resolution."""

    @pytest.mark.parametrize(
        "path", ["/a/b", "/a/./b/", "//a//b", "/a/b/../c", "/", "/../.."]
    )
    @pytest.mark.parametrize("cwd", ["/", "/home/user", "/tmp/x/y"])
    def test_resolving_normalized_path_is_identity(self, path, cwd):
        """An already normalized absolute path resolves to itself."""
        normalized = normalize_path(path)
        assert resolve_path(normalized, cwd) == normalized

    def test_relative_path_joined_with_cwd(self):
        """Relative targets are joined with the working directory."""
        assert resolve_path("notes.txt", "/home/user") == "/home/user/notes.txt"
        assert resolve_path("../x", "/home/user") == "/home/x"

    def test_parent_of_root_is_root(self):
        """'..' above the root stays at the root."""
        assert resolve_path("..", "/") == "/"
        assert resolve_path("../../..", "/tmp") == "/"

    def test_empty_target_is_cwd(self):
        """An empty target resolves to the working directory."""
        assert resolve_path("", "/tmp/") == "/tmp"

    def test_tilde_expands_to_home(self):
        """'~' and '~/x' expand when a home is given."""
        assert resolve_path("~", "/tmp", home="/home/user") == "/home/user"
        assert resolve_path("~/evidence", "/tmp", home="/home/user") == "/home/user/evidence"

    def test_basename_and_dirname(self):
        """basename/dirname split a normalized path."""
        assert basename("/a/b/c.txt") == "c.txt"
        assert basename("/") == "/"
        assert dirname("/a/b/c.txt") == "/a/b"
        assert dirname("/a") == "/"

    def test_is_within(self):
        """A path lies within itself and its ancestors only."""
        assert is_within("/mnt/usb/logs", "/mnt/usb")
        assert is_within("/mnt/usb", "/mnt/usb")
        assert not is_within("/mnt/usbx", "/mnt/usb")


class TestTreeAccess:
    """Tests for node lookup and creation helpers."""

    def test_get_node_missing_returns_none(self):
        """Missing paths are reported with None."""
        root = default_tree()
        assert get_node(root, "/nope") is None
        assert get_node(root, "/etc/hostname/child") is None

    def test_ensure_parent_requires_ancestors(self):
        """ensure_parent never creates missing directories."""
        root = default_tree()
        assert ensure_parent(root, "/a/b") is None
        assert get_node(root, "/a") is None
        parent, leaf = ensure_parent(root, "/tmp/new.txt")
        assert leaf == "new.txt"
        assert parent is get_node(root, "/tmp")

    def test_ensure_parent_of_root(self):
        """The root has no parent."""
        assert ensure_parent(default_tree(), "/") is None

    def test_ensure_directories_blocked_by_file(self):
        """A file on the way makes directory creation fail."""
        root = default_tree()
        assert ensure_directories(root, "/etc/hostname/sub") is None
        assert isinstance(ensure_directories(root, "/var/log"), DirNode)

    def test_list_children_hides_dotfiles(self):
        """Dotfiles are listed only when asked for."""
        directory = DirNode(children={"b": FileNode(), ".hidden": FileNode(), "a": DirNode()})
        assert list_children(directory) == ["a", "b"]
        assert list_children(directory, show_hidden=True) == [".hidden", "a", "b"]

    def test_default_tree_layout(self):
        """A new session tree has the standard directories."""
        root = default_tree("/home/analyst")
        for path in ("/home/analyst", "/tmp", "/mnt", "/dev", "/forensic"):
            assert isinstance(get_node(root, path), DirNode)
        assert get_node(root, "/etc/hostname").content == "forensics-lab\n"


class TestGraft:
    """Tests for grafting content into a tree."""

    def test_graft_creates_nested_entries(self):
        """Slash-separated keys create intermediate directories."""
        root = default_tree()
        assert graft(root, "/mnt/usb", {"notes.txt": "hi\n", "logs/a.log": "x"})
        assert get_node(root, "/mnt/usb/notes.txt").content == "hi\n"
        assert get_node(root, "/mnt/usb/logs/a.log").content == "x"

    def test_graft_blocked_by_file(self):
        """A file at the mount point makes the graft fail."""
        root = default_tree()
        assert graft(root, "/etc/hostname", {"a": "b"}) is False

    def test_graft_replaces_existing_entries(self):
        """Grafting the same name again replaces the entry."""
        root = default_tree()
        graft(root, "/mnt/usb", {"a.txt": "old"})
        graft(root, "/mnt/usb", {"a.txt": "new"})
        assert get_node(root, "/mnt/usb/a.txt").content == "new"


class TestSerialization:
    """Tests for the stored tree form."""

    def test_node_from_shorthand(self):
        """Strings are files and plain mappings are directories."""
        node = node_from_data({"dir": {"f.txt": "text"}, "g.txt": {"type": "file", "content": "g"}})
        assert isinstance(node, DirNode)
        assert node.children["dir"].children["f.txt"].content == "text"
        assert node.children["g.txt"].content == "g"

    def test_filesystem_state_survives_storage_form(self):
        """A stored tree and cwd load back unchanged."""
        root = default_tree()
        graft(root, "/mnt/usb", {"logs/a.log": "x"})
        state = FilesystemState(root=root, cwd="/mnt/usb")
        restored = FilesystemState.from_dict(state.to_dict())
        assert restored.cwd == "/mnt/usb"
        assert restored.root == root
