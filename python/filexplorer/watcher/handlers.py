"""
Internal event handler for watchdog file system monitoring.

Receives raw watchdog events on the observer thread and turns them into
FsEvent messages for the watcher's queue.
"""

import asyncio
import logging
import os
from typing import Callable

from watchdog.events import (
    DirCreatedEvent,
    DirDeletedEvent,
    DirModifiedEvent,
    DirMovedEvent,
    FileCreatedEvent,
    FileDeletedEvent,
    FileModifiedEvent,
    FileMovedEvent,
    FileSystemEventHandler,
)

from filexplorer.watcher.types import FsEvent, FsEventKind

logger = logging.getLogger("filexplorer.watcher")


def thread_safe_emitter(
    loop: asyncio.AbstractEventLoop, queue: asyncio.Queue
) -> Callable[[FsEvent], None]:
    """Build an emit function usable from any thread."""

    def emit(event: FsEvent) -> None:
        try:
            loop.call_soon_threadsafe(queue.put_nowait, event)
        except RuntimeError:
            # Loop closed during shutdown
            logger.debug(f"Dropping {event.kind.value} for {event.path}: loop closed")

    return emit


class IndexEventHandler(FileSystemEventHandler):
    """
    watchdog handler bound to one observer generation.

    Moves are reported as remove(source) followed by add(destination).
    Directory modification events carry no information for the index and
    are dropped; so are open/close notifications.
    """

    def __init__(self, emit: Callable[[FsEvent], None], generation: int) -> None:
        super().__init__()
        self._emit = emit
        self.generation = generation

    def _send(self, kind: FsEventKind, path) -> None:
        self._emit(FsEvent(kind=kind, path=os.fsdecode(path), generation=self.generation))

    def dispatch(self, event) -> None:
        """Dispatch file system events to the queue."""
        if isinstance(event, DirModifiedEvent):
            return

        if isinstance(event, FileCreatedEvent):
            self._send(FsEventKind.ADD_FILE, event.src_path)
        elif isinstance(event, DirCreatedEvent):
            self._send(FsEventKind.ADD_DIRECTORY, event.src_path)
        elif isinstance(event, FileModifiedEvent):
            self._send(FsEventKind.CHANGE_FILE, event.src_path)
        elif isinstance(event, FileDeletedEvent):
            self._send(FsEventKind.REMOVE_FILE, event.src_path)
        elif isinstance(event, DirDeletedEvent):
            self._send(FsEventKind.REMOVE_DIRECTORY, event.src_path)
        elif isinstance(event, FileMovedEvent):
            self._send(FsEventKind.REMOVE_FILE, event.src_path)
            self._send(FsEventKind.ADD_FILE, event.dest_path)
        elif isinstance(event, DirMovedEvent):
            self._send(FsEventKind.REMOVE_DIRECTORY, event.src_path)
            self._send(FsEventKind.ADD_DIRECTORY, event.dest_path)
