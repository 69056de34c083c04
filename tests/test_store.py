"""Tests for forensim.store module."""

import pytest

from forensim.devices import Device
from forensim.errors import StorageError
from forensim.store import SCHEMA_VERSION, Store
from forensim.vfs import FilesystemState, default_tree, get_node, graft


class TestSchema:
    """Tests for schema setup."""

    def test_user_version_set(self, store):
        """Migrations record the schema version."""
        version = store._conn.execute("PRAGMA user_version").fetchone()[0]
        assert version == SCHEMA_VERSION

    def test_reopen_file_database(self, tmp_path):
        """Reopening an existing database keeps its data."""
        path = tmp_path / "db" / "forensim.db"
        first = Store(path)
        first.insert_completion("alice", "t1", "s", 10)
        first.close()

        second = Store(path)
        assert second.has_completion("alice", "t1")
        second.close()


class TestSessionState:
    """Tests for tree and device persistence."""

    def test_filesystem_round_trip(self, store):
        """A saved tree loads back with its cwd."""
        assert store.load_filesystem("alice", "s") is None
        root = default_tree()
        graft(root, "/mnt/usb", {"a.txt": "x"})
        store.save_filesystem("alice", "s", FilesystemState(root=root, cwd="/mnt/usb"))

        loaded = store.load_filesystem("alice", "s")
        assert loaded.cwd == "/mnt/usb"
        assert get_node(loaded.root, "/mnt/usb/a.txt").content == "x"

    def test_devices_keep_order(self, store):
        """Devices load in attach order with their mount state."""
        devices = [
            Device(name="sdc", content={"b": "2"}),
            Device(name="sdb", mounted=True, mount_point="/mnt/usb", read_only=True),
        ]
        store.save_devices("alice", "s", devices)
        loaded = store.load_devices("alice", "s")
        assert [d.name for d in loaded] == ["sdc", "sdb"]
        assert loaded[0].content == {"b": "2"}
        assert loaded[1].mounted and loaded[1].read_only
        assert loaded[1].mount_point == "/mnt/usb"

    def test_reset_session(self, store):
        """Resetting drops the tree and the devices."""
        store.save_filesystem("alice", "s", FilesystemState(root=default_tree()))
        store.save_devices("alice", "s", [Device(name="sdb")])
        store.reset_session("alice", "s")
        assert store.load_filesystem("alice", "s") is None
        assert store.load_devices("alice", "s") == []

    def test_sessions_are_isolated(self, store):
        """Each (user, scenario) has its own tree."""
        store.save_filesystem("alice", "s", FilesystemState(root=default_tree(), cwd="/tmp"))
        assert store.load_filesystem("bob", "s") is None
        assert store.load_filesystem("alice", "other") is None


class TestCompletions:
    """Tests for completions, badges and totals."""

    def test_completion_inserted_once(self, store):
        """The second insert of the same task is ignored."""
        assert store.insert_completion("alice", "t1", "s", 10, 5000) is True
        assert store.insert_completion("alice", "t1", "s", 10, 5000) is False
        assert len(store.completions("alice")) == 1
        assert store.total_score("alice") == 10

    def test_badge_awarded_once(self, store):
        """A badge can be held only once."""
        assert store.award_badge("alice", "Speed Runner", 30) is True
        assert store.award_badge("alice", "Speed Runner", 30) is False
        assert [b.badge_code for b in store.badges("alice")] == ["Speed Runner"]

    def test_total_includes_badges(self, store):
        """The total sums completions and badge points."""
        store.insert_completion("alice", "t1", "s", 10)
        store.insert_completion("alice", "t2", "s", 20)
        store.award_badge("alice", "Case Closer", 20)
        assert store.total_score("alice") == 50
        assert store.total_score("nobody") == 0

    def test_completions_filtered_by_scenario(self, store):
        """completions() can be narrowed to one scenario."""
        store.insert_completion("alice", "t1", "s", 10)
        store.insert_completion("alice", "u1", "other", 10)
        assert [c.task_id for c in store.completions("alice", "s")] == ["t1"]

    def test_leaderboard_order(self, store):
        """Score first, then tasks completed, then user id."""
        store.insert_completion("carol", "t1", "s", 20)
        store.insert_completion("bob", "t1", "s", 10)
        store.insert_completion("bob", "t2", "s", 10)
        store.insert_completion("alice", "t1", "s", 20)
        store.award_badge("dave", "Hint-Free Expert", 30)

        board = store.leaderboard()
        assert [entry.user_id for entry in board] == ["dave", "bob", "alice", "carol"]
        assert board[1].total_score == 20
        assert board[1].tasks_completed == 2
        assert len(store.leaderboard(limit=2)) == 2

    def test_delete_user_progress(self, store):
        """Deleting progress clears completions, badges and hints."""
        store.insert_completion("alice", "t1", "s", 10)
        store.award_badge("alice", "X", 5)
        store.unlock_hint("alice", "t1")
        store.increment_hint_usage("alice", "s")
        store.delete_user_progress("alice")
        assert store.total_score("alice") == 0
        assert not store.is_hint_unlocked("alice", "t1")
        assert store.hint_usage("alice", "s") == 0


class TestHints:
    """Tests for hint bookkeeping."""

    def test_hint_usage_counter(self, store):
        """Each fetch increments the per-scenario counter."""
        assert store.hint_usage("alice", "s") == 0
        assert store.increment_hint_usage("alice", "s") == 1
        assert store.increment_hint_usage("alice", "s") == 2
        assert store.hint_usage("alice", "other") == 0

    def test_unlock_is_idempotent(self, store):
        """Unlocking twice is harmless."""
        store.unlock_hint("alice", "t1")
        store.unlock_hint("alice", "t1")
        assert store.is_hint_unlocked("alice", "t1")


class TestErrors:
    """Tests for driver error translation."""

    def test_sqlite_errors_become_storage_errors(self, store):
        """A failing statement surfaces as StorageError."""
        with pytest.raises(StorageError):
            with store._guard() as conn:
                conn.execute("SELECT * FROM missing_table")

    def test_closed_connection(self):
        """Using a closed store raises StorageError."""
        db = Store(":memory:")
        db.close()
        with pytest.raises(StorageError):
            db.total_score("alice")
