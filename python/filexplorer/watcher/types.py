"""
Watcher type definitions.

- FsEventKind: what happened to a path
- FsEvent: one typed message on the watcher queue
- WatchMode: how the filesystem is being observed
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional


class FsEventKind(Enum):
    """Filesystem event kinds that reach the index."""

    ADD_FILE = "add-file"
    CHANGE_FILE = "change-file"
    REMOVE_FILE = "remove-file"
    ADD_DIRECTORY = "add-directory"
    REMOVE_DIRECTORY = "remove-directory"
    ERROR = "error"

    @property
    def is_directory(self) -> bool:
        return self in (FsEventKind.ADD_DIRECTORY, FsEventKind.REMOVE_DIRECTORY)

    @property
    def is_removal(self) -> bool:
        return self in (FsEventKind.REMOVE_FILE, FsEventKind.REMOVE_DIRECTORY)


class WatchMode(Enum):
    NATIVE = "native"  # OS notifications (inotify, FSEvents, ReadDirectoryChangesW)
    POLLING = "polling"  # Periodic directory snapshots


@dataclass(frozen=True)
class FsEvent:
    """
    One watcher message.

    path is absolute. generation identifies the observer that produced the
    event; events from a replaced observer are dropped by the consumer.
    """

    kind: FsEventKind
    path: Optional[str] = None
    generation: int = 0
    error: Optional[BaseException] = None
