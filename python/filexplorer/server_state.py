"""
filexplorer server global state - shared between server, routes and lifecycle.

Populated by lifecycle.initialize_components() during startup and cleared
at shutdown. Handlers read components from here; None means "not started".
"""

import asyncio

settings = None  # config.Settings
normalizer = None  # paths.PathNormalizer
storage = None  # storage.StorageManager
ignore_rules = None  # ignore_patterns.IgnoreRules
git_collector = None  # git_metadata.GitMetadataCollector
broadcaster = None  # broadcast.ChangeBroadcaster
index_service = None  # index.IndexService
query_engine = None  # index.QueryEngine
content_service = None  # content.FileContentService
watcher = None  # watcher.IndexWatcher

# Set once the components above exist. The initial scan may still be
# running; queries then see a partial (but consistent) index.
initialization_complete: asyncio.Event = None  # Created on first access (lazy)

INITIALIZATION_TIMEOUT_SECONDS = 30


def get_initialization_event() -> asyncio.Event:
    """
    Get or create the initialization Event (lazy creation).

    asyncio.Event() must be created once an event loop exists.
    """
    global initialization_complete
    if initialization_complete is None:
        initialization_complete = asyncio.Event()
    return initialization_complete


def reset(keep_settings: bool = True) -> None:
    """Forget every component (shutdown and tests). Settings survive by default."""
    global settings, normalizer, storage, ignore_rules, git_collector, broadcaster
    global index_service, query_engine, content_service, watcher, initialization_complete
    if not keep_settings:
        settings = None
    normalizer = None
    storage = None
    ignore_rules = None
    git_collector = None
    broadcaster = None
    index_service = None
    query_engine = None
    content_service = None
    watcher = None
    initialization_complete = None


__all__ = [
    "settings",
    "normalizer",
    "storage",
    "ignore_rules",
    "git_collector",
    "broadcaster",
    "index_service",
    "query_engine",
    "content_service",
    "watcher",
    "get_initialization_event",
    "reset",
    "INITIALIZATION_TIMEOUT_SECONDS",
]
