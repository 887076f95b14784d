"""
filexplorer Storage Schema - Database initialization and setup.

Handles:
- Table creation (entries, tags, git_metadata)
- Index creation
- WAL mode configuration for file-backed databases
- Foreign key setup
"""

import sqlite3


class StorageError(Exception):
    """Raised when storage operations fail."""

    pass


def enable_wal(conn: sqlite3.Connection) -> None:
    """
    Enable Write-Ahead Logging for file-backed databases.

    Args:
        conn: SQLite connection

    Raises:
        StorageError: If WAL mode cannot be enabled
    """
    cursor = conn.cursor()
    cursor.execute("PRAGMA journal_mode = WAL")
    mode = cursor.fetchone()[0]

    if not mode.upper() == "WAL":
        raise StorageError(
            f"Failed to enable WAL mode (got '{mode}'). This filesystem may not support WAL."
        )

    # SYNCHRONOUS = NORMAL: Safe with WAL; the index is rebuilt on start anyway
    conn.execute("PRAGMA synchronous = NORMAL")

    # BUSY TIMEOUT: Wait up to 10 seconds for locks
    conn.execute("PRAGMA busy_timeout = 10000")

    # TEMP STORE: Keep temp tables/indices in RAM, not disk
    conn.execute("PRAGMA temp_store = MEMORY")


def create_indexes(conn: sqlite3.Connection) -> None:
    """
    Create indexes for fast queries.

    Args:
        conn: SQLite connection
    """
    indexes = [
        "CREATE INDEX IF NOT EXISTS idx_entries_parent ON entries(parent_path)",
        "CREATE INDEX IF NOT EXISTS idx_entries_depth ON entries(depth, name COLLATE NOCASE)",
        "CREATE INDEX IF NOT EXISTS idx_tags_path ON tags(entry_path)",
        "CREATE INDEX IF NOT EXISTS idx_tags_key_value ON tags(key, value)",
    ]

    for index_sql in indexes:
        conn.execute(index_sql)


def initialize_schema(conn: sqlite3.Connection) -> None:
    """
    Create all tables if they don't exist.

    The index is rebuilt from disk on every start, so there are no
    migrations: the schema only has to match the running code.

    Args:
        conn: SQLite connection
    """
    # Entries table
    # path: canonical root-relative path, "/" for the root
    # parent_path references another entry, so a child can never outlive
    # (or precede) its directory
    conn.execute("""
        CREATE TABLE IF NOT EXISTS entries (
            path TEXT PRIMARY KEY,
            name TEXT NOT NULL,
            parent_path TEXT REFERENCES entries(path) ON DELETE CASCADE,
            type TEXT NOT NULL CHECK(type IN ('file', 'directory')),
            size INTEGER,
            mtime INTEGER,
            extension TEXT,
            depth INTEGER NOT NULL
        )
    """)

    # Tags table (user-attached key/value pairs)
    conn.execute("""
        CREATE TABLE IF NOT EXISTS tags (
            id INTEGER PRIMARY KEY,
            entry_path TEXT NOT NULL REFERENCES entries(path) ON DELETE CASCADE,
            key TEXT NOT NULL,
            value TEXT NOT NULL,
            UNIQUE(entry_path, key, value)
        )
    """)

    # Git metadata table (one row per repository root directory)
    conn.execute("""
        CREATE TABLE IF NOT EXISTS git_metadata (
            entry_path TEXT PRIMARY KEY REFERENCES entries(path) ON DELETE CASCADE,
            detected_at INTEGER NOT NULL,
            current_branch TEXT,
            commit_count INTEGER,
            branch_count INTEGER,
            remote_count INTEGER,
            remotes TEXT
        )
    """)

    create_indexes(conn)

    conn.commit()
