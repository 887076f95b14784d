"""
filexplorer server lifecycle - startup, initial scan, watching and shutdown.

Handles:
1. Building the components (cheap: in-memory store, no I/O beyond the root)
2. Initial scan in a background task, so the server answers immediately
3. Starting the watcher once the scan is done
4. Graceful shutdown
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Optional

from filexplorer import server_state
from filexplorer.broadcast import ChangeBroadcaster
from filexplorer.config import Settings
from filexplorer.content import FileContentService
from filexplorer.git_metadata import GitMetadataCollector
from filexplorer.ignore_patterns import IgnoreRules
from filexplorer.index import IndexService, QueryEngine
from filexplorer.paths import PathNormalizer
from filexplorer.storage import StorageManager
from filexplorer.watcher import FsEvent, IndexWatcher, WatchMode

logger = logging.getLogger("filexplorer.lifecycle")


def initialize_components(settings: Settings) -> None:
    """Create every component and publish them in server_state."""
    normalizer = PathNormalizer(settings.root)
    storage = StorageManager(db_path=settings.db_path)
    ignore_rules = IgnoreRules(normalizer, extra_patterns=settings.ignore_patterns)
    git_collector = GitMetadataCollector(
        storage,
        normalizer,
        git_binary=settings.git_binary,
        timeout=settings.git_timeout,
        max_output=settings.git_max_output,
    )
    broadcaster = ChangeBroadcaster()
    index_service = IndexService(normalizer, storage, ignore_rules, git_collector, broadcaster)

    server_state.settings = settings
    server_state.normalizer = normalizer
    server_state.storage = storage
    server_state.ignore_rules = ignore_rules
    server_state.git_collector = git_collector
    server_state.broadcaster = broadcaster
    server_state.index_service = index_service
    server_state.query_engine = QueryEngine(lambda: index_service.cache, normalizer.root_name)
    server_state.content_service = FileContentService(normalizer, storage)

    server_state.get_initialization_event().set()
    logger.info(f"Components ready for root {normalizer.root} (store: {settings.db_path})")


async def _on_watcher_event(event: FsEvent) -> None:
    service = server_state.index_service
    if service is not None:
        await service.apply_event(event)


async def _background_scan_and_watch() -> None:
    """Initial scan, then hand over to the watcher."""
    try:
        settings = server_state.settings
        logger.info(f"Scanning {server_state.normalizer.root} ...")
        stats = await server_state.index_service.initial_scan()
        logger.info(f"Initial index ready: {stats.to_dict()}")

        watcher = IndexWatcher(
            server_state.normalizer.root,
            _on_watcher_event,
            server_state.ignore_rules,
            poll_interval=settings.poll_interval,
        )
        server_state.watcher = watcher
        await watcher.start(WatchMode.NATIVE)
    except asyncio.CancelledError:
        raise
    except Exception as e:
        logger.error(f"Background scan/watch failed: {e}", exc_info=True)


async def shutdown_components(init_task: Optional[asyncio.Task] = None) -> None:
    """Stop the watcher and git refreshes, drop subscribers and close the store."""
    if init_task is not None and not init_task.done():
        init_task.cancel()
        try:
            await init_task
        except asyncio.CancelledError:
            pass

    if server_state.watcher is not None:
        await server_state.watcher.stop()
    if server_state.index_service is not None:
        await server_state.index_service.cancel_git_refreshes()
    if server_state.git_collector is not None:
        await server_state.git_collector.close()
    if server_state.broadcaster is not None:
        server_state.broadcaster.close()
    if server_state.storage is not None:
        server_state.storage.close()
    server_state.reset()
    logger.info("filexplorer shutdown complete")


@asynccontextmanager
async def lifespan(_app):
    """
    FastMCP lifespan handler - startup and shutdown hooks.

    Startup yields right after the components exist; the scan and the
    watcher start in a background task.
    """
    settings = server_state.settings or Settings.from_env()
    initialize_components(settings)
    init_task = asyncio.create_task(_background_scan_and_watch())

    yield

    logger.info("filexplorer shutting down...")
    await shutdown_components(init_task)
