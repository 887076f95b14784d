"""
filexplorer Storage Mutations - Write database operations.

Handles:
- Entry upserts and deletions (single entry and whole branches)
- Tag inserts and deletions
- Git metadata upserts and deletions

Multi-row deletions run inside one transaction so concurrent readers never
see half a subtree.
"""

import json
import sqlite3
from typing import Any

from .schema import StorageError

ROOT = "/"


def _branch_prefix(path: str) -> str:
    return "/" if path == ROOT else f"{path}/"


def upsert_entry(conn: sqlite3.Connection, entry: dict[str, Any]) -> None:
    """
    Insert or update an entry, keyed by path.

    Args:
        conn: SQLite connection
        entry: Dict with path, name, parent_path, type, size, mtime,
               extension, depth
    """
    try:
        conn.execute(
            """
            INSERT INTO entries (path, name, parent_path, type, size, mtime, extension, depth)
            VALUES (:path, :name, :parent_path, :type, :size, :mtime, :extension, :depth)
            ON CONFLICT(path) DO UPDATE SET
                name = excluded.name,
                parent_path = excluded.parent_path,
                type = excluded.type,
                size = excluded.size,
                mtime = excluded.mtime,
                extension = excluded.extension,
                depth = excluded.depth
            """,
            entry,
        )
    except sqlite3.IntegrityError as e:
        conn.rollback()
        raise StorageError(f"Cannot index {entry.get('path')!r}: {e}") from e
    conn.commit()


def delete_entry(conn: sqlite3.Connection, path: str) -> int:
    """
    Delete a single entry and its tags.

    Tags and git metadata go through ON DELETE CASCADE.

    Returns:
        Number of entries deleted (0 or 1; children cascade too if any)
    """
    with conn:
        conn.execute("DELETE FROM tags WHERE entry_path = ?", (path,))
        cursor = conn.execute("DELETE FROM entries WHERE path = ?", (path,))
    return cursor.rowcount


def delete_branch(conn: sqlite3.Connection, path: str) -> int:
    """
    Delete an entry and every entry below it, with their tags and metadata.

    OPTIMIZED: prefix comparison via substr() instead of LIKE, so paths
    containing '%' or '_' can't widen the match.

    Args:
        conn: SQLite connection
        path: Canonical path of the branch root (the root itself is refused)

    Returns:
        Number of entries deleted
    """
    if not path or path == ROOT:
        return 0

    prefix = _branch_prefix(path)
    params = (path, len(prefix), prefix)
    with conn:
        conn.execute(
            "DELETE FROM tags WHERE entry_path = ? OR substr(entry_path, 1, ?) = ?",
            params,
        )
        conn.execute(
            "DELETE FROM git_metadata WHERE entry_path = ? OR substr(entry_path, 1, ?) = ?",
            params,
        )
        # Children first; the parent_path cascade would catch them anyway
        descendants = conn.execute(
            "DELETE FROM entries WHERE substr(path, 1, ?) = ?",
            (len(prefix), prefix),
        ).rowcount
        own = conn.execute("DELETE FROM entries WHERE path = ?", (path,)).rowcount
    return descendants + own


def add_tag(conn: sqlite3.Connection, path: str, key: str, value: str) -> bool:
    """
    Attach a tag to an entry. Duplicate adds are a no-op.

    Returns:
        True if a new row was inserted

    Raises:
        StorageError: If the entry doesn't exist
    """
    try:
        with conn:
            cursor = conn.execute(
                "INSERT OR IGNORE INTO tags (entry_path, key, value) VALUES (?, ?, ?)",
                (path, key, value),
            )
    except sqlite3.IntegrityError as e:
        raise StorageError(f"Cannot tag {path!r}: {e}") from e
    return cursor.rowcount == 1


def remove_tag(conn: sqlite3.Connection, path: str, key: str, value: str) -> bool:
    """
    Remove a tag. Removing a tag that doesn't exist is a no-op.

    Returns:
        True if a row was deleted
    """
    with conn:
        cursor = conn.execute(
            "DELETE FROM tags WHERE entry_path = ? AND key = ? AND value = ?",
            (path, key, value),
        )
    return cursor.rowcount > 0


def upsert_git_metadata(conn: sqlite3.Connection, path: str, metadata: dict[str, Any]) -> bool:
    """
    Store repository facts for a directory.

    Returns False when the directory entry is gone (removed meanwhile).

    Args:
        conn: SQLite connection
        path: Canonical path of the repository root
        metadata: Dict with detected_at, current_branch, commit_count,
                  branch_count, remotes (list of dicts)
    """
    remotes = metadata.get("remotes") or []
    try:
        conn.execute(
            """
            INSERT INTO git_metadata (
                entry_path, detected_at, current_branch, commit_count,
                branch_count, remote_count, remotes
            ) VALUES (?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(entry_path) DO UPDATE SET
                detected_at = excluded.detected_at,
                current_branch = excluded.current_branch,
                commit_count = excluded.commit_count,
                branch_count = excluded.branch_count,
                remote_count = excluded.remote_count,
                remotes = excluded.remotes
            """,
            (
                path,
                metadata["detected_at"],
                metadata.get("current_branch"),
                metadata.get("commit_count"),
                metadata.get("branch_count"),
                len(remotes),
                json.dumps(remotes),
            ),
        )
    except sqlite3.IntegrityError:
        conn.rollback()
        return False
    conn.commit()
    return True


def delete_git_metadata(conn: sqlite3.Connection, path: str) -> bool:
    """Forget repository facts for a directory. Returns True if a row existed."""
    with conn:
        cursor = conn.execute("DELETE FROM git_metadata WHERE entry_path = ?", (path,))
    return cursor.rowcount > 0


def clear_all(conn: sqlite3.Connection) -> None:
    """Clear all data from all tables."""
    with conn:
        conn.execute("DELETE FROM tags")
        conn.execute("DELETE FROM git_metadata")
        conn.execute("DELETE FROM entries")
