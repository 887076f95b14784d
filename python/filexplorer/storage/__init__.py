"""
filexplorer Storage Layer - SQLite

Holds indexed entries, user tags and git metadata.

This module re-exports the main StorageManager class and StorageError
exception:
    from filexplorer.storage import StorageManager, StorageError
"""

from .manager import StorageManager
from .schema import StorageError

__all__ = ["StorageManager", "StorageError"]
