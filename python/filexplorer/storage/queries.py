"""
filexplorer Storage Queries - Read-only database operations.

Handles:
- Entry lookups (single, all, children)
- Tag lookups (per path, per key/value, all)
- Git metadata lookups
"""

import sqlite3
from typing import Optional


def get_entry(conn: sqlite3.Connection, path: str) -> Optional[dict]:
    """
    Get one entry by canonical path.

    Returns:
        Dict with entry data, or None if not found
    """
    cursor = conn.execute("SELECT * FROM entries WHERE path = ?", (path,))
    row = cursor.fetchone()
    return dict(row) if row else None


def get_all_entries(conn: sqlite3.Connection) -> list[dict]:
    """
    Get every entry in index order: shallow first, then case-insensitive name.
    """
    cursor = conn.execute(
        "SELECT * FROM entries ORDER BY depth ASC, name COLLATE NOCASE ASC, path ASC"
    )
    return [dict(row) for row in cursor.fetchall()]


def get_children(conn: sqlite3.Connection, path: str) -> list[dict]:
    """Get direct children of a directory entry."""
    cursor = conn.execute(
        "SELECT * FROM entries WHERE parent_path = ? ORDER BY name COLLATE NOCASE",
        (path,),
    )
    return [dict(row) for row in cursor.fetchall()]


def get_all_tags(conn: sqlite3.Connection) -> list[dict]:
    """Get every tag as {entry_path, key, value}, in insertion order."""
    cursor = conn.execute("SELECT entry_path, key, value FROM tags ORDER BY id")
    return [dict(row) for row in cursor.fetchall()]


def get_tags_for_path(conn: sqlite3.Connection, path: str) -> list[dict]:
    """Get the tags of one entry as {key, value}, sorted by key then value."""
    cursor = conn.execute(
        "SELECT key, value FROM tags WHERE entry_path = ? ORDER BY key, value",
        (path,),
    )
    return [dict(row) for row in cursor.fetchall()]


def get_paths_for_tag(conn: sqlite3.Connection, key: str, value: str) -> set[str]:
    """Get the set of entry paths carrying exactly this (key, value)."""
    cursor = conn.execute(
        "SELECT entry_path FROM tags WHERE key = ? AND value = ?",
        (key, value),
    )
    return {row["entry_path"] for row in cursor.fetchall()}


def get_git_metadata(conn: sqlite3.Connection, path: str) -> Optional[dict]:
    """Get stored repository facts for a directory."""
    cursor = conn.execute("SELECT * FROM git_metadata WHERE entry_path = ?", (path,))
    row = cursor.fetchone()
    return dict(row) if row else None


def get_all_git_metadata(conn: sqlite3.Connection) -> list[dict]:
    """Get all stored repository facts."""
    cursor = conn.execute("SELECT * FROM git_metadata ORDER BY entry_path")
    return [dict(row) for row in cursor.fetchall()]


def count_rows(conn: sqlite3.Connection, table: str) -> int:
    """Count rows of one of the known tables."""
    if table not in ("entries", "tags", "git_metadata"):
        raise ValueError(f"Unknown table: {table}")
    return conn.execute(f"SELECT COUNT(*) FROM {table}").fetchone()[0]
