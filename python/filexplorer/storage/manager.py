"""
filexplorer Storage Manager - Main SQLite database manager.

Provides high-level interface to storage operations while delegating to
schema, queries, and mutations modules.
"""

import sqlite3
import threading
from pathlib import Path
from typing import Any, Optional

from . import mutations, queries
from .schema import StorageError, enable_wal, initialize_schema


class StorageManager:
    """
    Manages the SQLite database behind the index.

    Features:
    - Foreign keys with CASCADE deletes (entries -> tags, git metadata, children)
    - One lock serializing every statement, so the watcher, scanner and API
      handlers can share the connection
    - WAL mode when backed by a file

    The default database is ":memory:"; the index is rebuilt from disk on
    every start.
    """

    def __init__(self, db_path: str = ":memory:"):
        """
        Initialize storage with schema.

        Args:
            db_path: Path to SQLite database (":memory:" by default)
        """
        if db_path != ":memory:":
            Path(db_path).parent.mkdir(parents=True, exist_ok=True)

        self.db_path = db_path
        # check_same_thread=False: the connection is used from the event loop
        # and from worker threads; self._lock serializes access.
        self.conn = sqlite3.connect(db_path, check_same_thread=False)
        self.conn.row_factory = sqlite3.Row
        self._lock = threading.RLock()

        # Enable foreign keys (must be enabled for ALL databases, including :memory:)
        self.conn.execute("PRAGMA foreign_keys = ON")

        if db_path != ":memory:":
            enable_wal(self.conn)

        initialize_schema(self.conn)

    # Entry operations

    def upsert_entry(self, entry: dict[str, Any]) -> None:
        """
        Insert or update an entry.

        Raises:
            StorageError: If the entry's parent is not indexed
        """
        with self._lock:
            mutations.upsert_entry(self.conn, entry)

    def delete_entry(self, path: str) -> int:
        """Delete one entry (and its tags)."""
        with self._lock:
            return mutations.delete_entry(self.conn, path)

    def delete_branch(self, path: str) -> int:
        """Delete an entry and all its descendants in one transaction."""
        with self._lock:
            return mutations.delete_branch(self.conn, path)

    def get_entry(self, path: str) -> Optional[dict]:
        with self._lock:
            return queries.get_entry(self.conn, path)

    def has_entry(self, path: str) -> bool:
        return self.get_entry(path) is not None

    def get_all_entries(self) -> list[dict]:
        with self._lock:
            return queries.get_all_entries(self.conn)

    def get_children(self, path: str) -> list[dict]:
        with self._lock:
            return queries.get_children(self.conn, path)

    # Tag operations

    def add_tag(self, path: str, key: str, value: str) -> bool:
        with self._lock:
            return mutations.add_tag(self.conn, path, key, value)

    def remove_tag(self, path: str, key: str, value: str) -> bool:
        with self._lock:
            return mutations.remove_tag(self.conn, path, key, value)

    def get_all_tags(self) -> list[dict]:
        with self._lock:
            return queries.get_all_tags(self.conn)

    def get_tags_for_path(self, path: str) -> list[dict]:
        with self._lock:
            return queries.get_tags_for_path(self.conn, path)

    def get_paths_for_tag(self, key: str, value: str) -> set[str]:
        with self._lock:
            return queries.get_paths_for_tag(self.conn, key, value)

    # Git metadata operations

    def upsert_git_metadata(self, path: str, metadata: dict[str, Any]) -> bool:
        with self._lock:
            return mutations.upsert_git_metadata(self.conn, path, metadata)

    def delete_git_metadata(self, path: str) -> bool:
        with self._lock:
            return mutations.delete_git_metadata(self.conn, path)

    def get_git_metadata(self, path: str) -> Optional[dict]:
        with self._lock:
            return queries.get_git_metadata(self.conn, path)

    def get_all_git_metadata(self) -> list[dict]:
        with self._lock:
            return queries.get_all_git_metadata(self.conn)

    # Whole-store operations

    def read_snapshot(self) -> tuple[list[dict], list[dict], list[dict]]:
        """
        Read entries, tags and git metadata under one lock acquisition.

        Used by the search cache so a rebuild never mixes two store states.
        """
        with self._lock:
            return (
                queries.get_all_entries(self.conn),
                queries.get_all_tags(self.conn),
                queries.get_all_git_metadata(self.conn),
            )

    def counts(self) -> dict[str, int]:
        with self._lock:
            return {
                "entries": queries.count_rows(self.conn, "entries"),
                "tags": queries.count_rows(self.conn, "tags"),
                "git_metadata": queries.count_rows(self.conn, "git_metadata"),
            }

    def clear_all(self) -> None:
        """Clear all data from all tables."""
        with self._lock:
            mutations.clear_all(self.conn)

    def close(self):
        """Close database connection."""
        if self.conn:
            self.conn.close()
            self.conn = None

    def __enter__(self):
        """Context manager support."""
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Context manager support."""
        self.close()


__all__ = ["StorageManager", "StorageError"]
