"""
Test the SQLite storage layer: entries, tags, git metadata and cascades.
"""

import json

import pytest

from tests.fixtures.workspace import make_entry


@pytest.fixture
def storage(storage_manager):
    """Storage with a root and a two-level branch."""
    for path, kind in [
        ("/", "directory"),
        ("src", "directory"),
        ("src/a.txt", "file"),
        ("src/b", "directory"),
        ("src/b/c.txt", "file"),
        ("srcfile.txt", "file"),
    ]:
        storage_manager.upsert_entry(make_entry(path, kind))
    return storage_manager


class TestDatabaseInitialization:
    """Test database connection and initialization."""

    def test_database_enables_foreign_keys(self, storage_manager):
        fk_enabled = storage_manager.conn.execute("PRAGMA foreign_keys").fetchone()[0]
        assert fk_enabled == 1

    def test_tables_exist(self, storage_manager):
        tables = {
            row[0]
            for row in storage_manager.conn.execute(
                "SELECT name FROM sqlite_master WHERE type='table'"
            )
        }
        assert {"entries", "tags", "git_metadata"} <= tables

    def test_file_backed_database_uses_wal(self, tmp_path):
        from filexplorer.storage import StorageManager

        with StorageManager(db_path=str(tmp_path / "db" / "index.db")) as storage:
            mode = storage.conn.execute("PRAGMA journal_mode").fetchone()[0]
            assert mode.lower() == "wal"


class TestEntries:
    def test_upsert_and_get(self, storage):
        entry = storage.get_entry("src/a.txt")
        assert entry["name"] == "a.txt"
        assert entry["parent_path"] == "src"
        assert entry["type"] == "file"
        assert entry["extension"] == "txt"
        assert entry["depth"] == 2

    def test_upsert_updates_in_place(self, storage):
        storage.upsert_entry(make_entry("src/a.txt", size=99, mtime=5000))
        entry = storage.get_entry("src/a.txt")
        assert entry["size"] == 99
        assert entry["mtime"] == 5000
        assert storage.counts()["entries"] == 6

    def test_orphan_entry_is_rejected(self, storage):
        """A child can't be stored before its directory."""
        from filexplorer.storage import StorageError

        with pytest.raises(StorageError):
            storage.upsert_entry(make_entry("missing/x.txt"))
        assert storage.get_entry("missing/x.txt") is None

    def test_all_entries_come_in_index_order(self, storage):
        paths = [entry["path"] for entry in storage.get_all_entries()]
        assert paths == ["/", "src", "srcfile.txt", "src/a.txt", "src/b", "src/b/c.txt"]

    def test_get_children(self, storage):
        assert [e["path"] for e in storage.get_children("src")] == ["src/a.txt", "src/b"]


class TestBranchDeletion:
    def test_delete_branch_removes_descendants_and_tags(self, storage):
        storage.add_tag("src/b/c.txt", "lang", "txt")
        storage.add_tag("src/a.txt", "lang", "txt")

        removed = storage.delete_branch("src/b")

        assert removed == 2
        assert storage.get_entry("src/b") is None
        assert storage.get_entry("src/b/c.txt") is None
        assert storage.get_paths_for_tag("lang", "txt") == {"src/a.txt"}

    def test_delete_branch_does_not_touch_prefix_siblings(self, storage):
        """'src' must not take 'srcfile.txt' with it."""
        storage.delete_branch("src")
        assert storage.get_entry("srcfile.txt") is not None
        assert [e["path"] for e in storage.get_all_entries()] == ["/", "srcfile.txt"]

    def test_delete_branch_refuses_root(self, storage):
        assert storage.delete_branch("/") == 0
        assert storage.counts()["entries"] == 6

    def test_no_orphaned_tags_remain(self, storage):
        storage.add_tag("src/b", "team", "core")
        storage.add_tag("src/b/c.txt", "lang", "txt")
        storage.delete_branch("src")
        orphans = storage.conn.execute(
            "SELECT COUNT(*) FROM tags WHERE entry_path NOT IN (SELECT path FROM entries)"
        ).fetchone()[0]
        assert orphans == 0
        assert storage.get_all_tags() == []

    def test_delete_entry_removes_its_tags(self, storage):
        storage.add_tag("src/a.txt", "lang", "txt")
        assert storage.delete_entry("src/a.txt") == 1
        assert storage.get_tags_for_path("src/a.txt") == []


class TestTags:
    def test_add_tag_is_idempotent(self, storage):
        assert storage.add_tag("src/a.txt", "lang", "txt") is True
        assert storage.add_tag("src/a.txt", "lang", "txt") is False
        assert storage.get_tags_for_path("src/a.txt") == [{"key": "lang", "value": "txt"}]

    def test_add_tag_on_missing_entry_fails(self, storage):
        from filexplorer.storage import StorageError

        with pytest.raises(StorageError):
            storage.add_tag("nope.txt", "lang", "txt")

    def test_remove_missing_tag_is_noop(self, storage):
        assert storage.remove_tag("src/a.txt", "lang", "txt") is False

    def test_tags_for_path_sorted(self, storage):
        storage.add_tag("src/a.txt", "zeta", "1")
        storage.add_tag("src/a.txt", "alpha", "2")
        storage.add_tag("src/a.txt", "alpha", "1")
        assert storage.get_tags_for_path("src/a.txt") == [
            {"key": "alpha", "value": "1"},
            {"key": "alpha", "value": "2"},
            {"key": "zeta", "value": "1"},
        ]


class TestGitMetadata:
    def _metadata(self, **overrides):
        metadata = {
            "detected_at": 1,
            "current_branch": "main",
            "commit_count": 3,
            "branch_count": 1,
            "remotes": [{"name": "origin", "fetchUrl": "u", "pushUrl": "u"}],
        }
        metadata.update(overrides)
        return metadata

    def test_upsert_and_get(self, storage):
        assert storage.upsert_git_metadata("src", self._metadata()) is True
        row = storage.get_git_metadata("src")
        assert row["current_branch"] == "main"
        assert row["remote_count"] == 1
        assert json.loads(row["remotes"])[0]["name"] == "origin"

    def test_upsert_for_missing_directory_returns_false(self, storage):
        assert storage.upsert_git_metadata("gone", self._metadata()) is False
        assert storage.get_all_git_metadata() == []

    def test_metadata_goes_with_the_branch(self, storage):
        storage.upsert_git_metadata("src/b", self._metadata())
        storage.delete_branch("src")
        assert storage.get_git_metadata("src/b") is None

    def test_read_snapshot(self, storage):
        storage.add_tag("src/a.txt", "lang", "txt")
        storage.upsert_git_metadata("/", self._metadata())
        entries, tags, git_rows = storage.read_snapshot()
        assert len(entries) == 6
        assert tags == [{"entry_path": "src/a.txt", "key": "lang", "value": "txt"}]
        assert git_rows[0]["entry_path"] == "/"

    def test_clear_all(self, storage):
        storage.add_tag("src/a.txt", "lang", "txt")
        storage.clear_all()
        assert storage.counts() == {"entries": 0, "tags": 0, "git_metadata": 0}
