"""
File system watcher that keeps the index current.

Typical usage:
--------------
    from filexplorer.watcher import IndexWatcher, WatchMode

    async def on_event(event):
        await service.apply_event(event)

    watcher = IndexWatcher(root, on_event, ignore_rules, poll_interval=5.0)
    await watcher.start(WatchMode.NATIVE)
    # ... runs until ...
    await watcher.stop()

ERROR CONDITIONS
================
- Root missing -> FileNotFoundError on __init__
- Root is a file -> ValueError on __init__
- start() twice -> RuntimeError
- stop() before start() -> no-op
- EMFILE / ENOSPC in native mode -> switch to polling once
- EMFILE / ENOSPC in polling mode -> logged only
- Permission error with a path -> path ignored for the session
- Callback raises -> logged, consumer keeps going
"""

from filexplorer.watcher.core import IndexWatcher, is_limit_error
from filexplorer.watcher.handlers import IndexEventHandler
from filexplorer.watcher.types import FsEvent, FsEventKind, WatchMode

__all__ = [
    "FsEvent",
    "FsEventKind",
    "IndexEventHandler",
    "IndexWatcher",
    "WatchMode",
    "is_limit_error",
]
