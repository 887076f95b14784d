"""
IndexService - the one mutation pipeline for the index.

Scan results, watcher events and tag writes all pass through here. After a
mutation the search cache is rebuilt and swapped in, then the change is
broadcast. The two always happen together (see _commit).
"""

import asyncio
import logging
from pathlib import Path
from typing import Any, Iterable, Optional, Union

from filexplorer.broadcast import (
    ENTRY_ADDED,
    ENTRY_REMOVED,
    ENTRY_UPDATED,
    TAG_ADDED,
    TAG_REMOVED,
    ChangeBroadcaster,
    entry_message,
    tag_message,
)
from filexplorer.errors import EntryNotFoundError, InvalidRequestError
from filexplorer.git_metadata import GitMetadataCollector
from filexplorer.ignore_patterns import IgnoreRules
from filexplorer.index.cache import SearchCache
from filexplorer.paths import ROOT, PathNormalizer
from filexplorer.storage import StorageError, StorageManager
from filexplorer.watcher.types import FsEvent, FsEventKind
from filexplorer.workspace import IndexScanner, ScanStats, build_entry, safe_stat

logger = logging.getLogger("filexplorer.index")


def _git_signature(row: Optional[dict]) -> Optional[tuple]:
    """Comparable view of a git_metadata row, ignoring when it was detected."""
    if row is None:
        return None
    return (
        row.get("current_branch"),
        row.get("commit_count"),
        row.get("branch_count"),
        row.get("remote_count"),
        row.get("remotes"),
    )


class IndexService:
    """
    Owns the store-facing side of the index.

    Usage:
        service = IndexService(normalizer, storage, ignore_rules, git, broadcaster)
        await service.initial_scan()
        await service.apply_event(event)     # from the watcher consumer
        service.add_tag("src/a.txt", "lang", "txt")
        service.cache                        # current SearchCache snapshot
    """

    def __init__(
        self,
        normalizer: PathNormalizer,
        storage: StorageManager,
        ignore_rules: IgnoreRules,
        git_collector: Optional[GitMetadataCollector] = None,
        broadcaster: Optional[ChangeBroadcaster] = None,
    ):
        self.normalizer = normalizer
        self.storage = storage
        self.ignore_rules = ignore_rules
        self.git_collector = git_collector
        self.broadcaster = broadcaster or ChangeBroadcaster()
        self.scanner = IndexScanner(normalizer, storage, ignore_rules, git_collector)
        self._cache = SearchCache()
        self._git_tasks: set[asyncio.Task] = set()

    @property
    def cache(self) -> SearchCache:
        return self._cache

    # Cache + broadcast

    def refresh_caches(self) -> SearchCache:
        """Rebuild the search cache from the store and swap it in."""
        self._cache = SearchCache.build(self.storage)
        return self._cache

    def _commit(self, *messages: dict) -> None:
        self.refresh_caches()
        for message in messages:
            self.broadcaster.publish(message)

    # Scanning

    async def initial_scan(self) -> ScanStats:
        stats = await self.scanner.scan()
        self.refresh_caches()
        return stats

    # Watcher events

    async def apply_event(self, event: FsEvent) -> bool:
        """
        Reconcile one filesystem event into the store.

        Returns True when the index changed. Changes inside .git only start a
        background repository refresh and return False.
        """
        if event.kind is FsEventKind.ERROR or not event.path:
            return False

        canonical = self.normalizer.to_canonical(event.path)
        if PathNormalizer.is_outside(canonical):
            logger.debug(f"Ignoring event outside root: {event.path}")
            return False

        if PathNormalizer.is_git_internal(canonical):
            self.refresh_repository_for(canonical)
            return False

        if event.kind in (FsEventKind.ADD_FILE, FsEventKind.ADD_DIRECTORY):
            return await self.index_path(event.path, message_kind=ENTRY_ADDED)
        if event.kind is FsEventKind.CHANGE_FILE:
            return await self.index_path(event.path, message_kind=ENTRY_UPDATED)
        if event.kind.is_removal:
            if canonical == ROOT:
                logger.warning(f"Watch root {self.normalizer.root} was removed")
                return False
            return self.remove_path(canonical) > 0
        return False

    async def index_path(
        self, path: Union[str, Path], message_kind: Optional[str] = None
    ) -> bool:
        """
        Index (or re-index) one path, adding missing ancestors first.

        New directories also get their contents indexed.

        Returns True when the store changed.
        """
        absolute = Path(path)
        if not absolute.is_absolute():
            absolute = self.normalizer.to_absolute(PathNormalizer.clean(str(path)))
        canonical = self.normalizer.to_canonical(absolute)
        if PathNormalizer.is_outside(canonical) or PathNormalizer.is_git_internal(canonical):
            return False
        if self.ignore_rules.is_ignored(canonical):
            return False

        st = safe_stat(absolute, self.ignore_rules)
        if st is None:
            return False
        entry = build_entry(self.normalizer, canonical, st)
        if entry is None:
            self.ignore_rules.mark_unsupported(canonical)
            return False
        is_dir = entry["type"] == "directory"
        if is_dir and self.ignore_rules.is_ignored(canonical, is_dir=True):
            return False

        ancestors = self._ensure_ancestors(canonical)
        if ancestors is None:
            return False

        existed = self.storage.has_entry(canonical)
        try:
            self.storage.upsert_entry(entry)
        except StorageError as e:
            logger.warning(f"Could not index {canonical}: {e}")
            return False

        repo_candidates: list[str] = []
        if is_dir:
            if not existed and not absolute.is_symlink():
                stats = await self.scanner.scan_subtree(canonical, collect_git=False)
                repo_candidates = stats.repo_candidates
        else:
            # A directory replaced by a file leaves no metadata behind
            self.storage.delete_git_metadata(canonical)

        if message_kind is None:
            message_kind = ENTRY_UPDATED if existed else ENTRY_ADDED
        messages = [entry_message(ENTRY_ADDED, ancestor) for ancestor in ancestors]
        messages.append(entry_message(message_kind, canonical))
        self._commit(*messages)
        logger.debug(f"{message_kind}: {canonical}")

        if is_dir:
            self.schedule_git_refresh([*ancestors, canonical, *repo_candidates])
        elif ancestors:
            self.schedule_git_refresh(ancestors)
        return True

    def _ensure_ancestors(self, canonical: str) -> Optional[list[str]]:
        """
        Store every missing ancestor directory of canonical, top-down.

        Returns the ancestors created, or None if one can't be indexed
        (vanished, unreadable, not a directory).
        """
        missing = []
        parent = PathNormalizer.parent_of(canonical)
        while parent is not None and not self.storage.has_entry(parent):
            missing.append(parent)
            parent = PathNormalizer.parent_of(parent)

        added = []
        for ancestor in reversed(missing):
            absolute = self.normalizer.to_absolute(ancestor)
            st = safe_stat(absolute, self.ignore_rules)
            entry = build_entry(self.normalizer, ancestor, st) if st is not None else None
            if entry is None or entry["type"] != "directory":
                logger.debug(f"Cannot index ancestor {ancestor} of {canonical}")
                return None
            try:
                self.storage.upsert_entry(entry)
            except StorageError as e:
                logger.warning(f"Could not index ancestor {ancestor}: {e}")
                return None
            added.append(ancestor)
        return added

    def remove_path(self, canonical: str) -> int:
        """
        Remove an entry; directories take their whole branch with them.

        Returns:
            Number of entries removed
        """
        canonical = PathNormalizer.clean(canonical)
        if not canonical or canonical == ROOT:
            return 0
        existing = self.storage.get_entry(canonical)
        if existing is None:
            return 0

        if existing["type"] == "directory":
            removed = self.storage.delete_branch(canonical)
        else:
            removed = self.storage.delete_entry(canonical)

        if removed:
            self._commit(entry_message(ENTRY_REMOVED, canonical))
            logger.debug(f"Removed {canonical} ({removed} entries)")
        return removed

    def refresh_repository_for(self, canonical: str) -> Optional[asyncio.Task]:
        """
        Handle a change inside a .git directory: refresh the owning repo.

        The refresh runs in the background; it broadcasts entry-updated when
        the repository's metadata changed. Returns the task, or None when
        there is nothing to refresh.
        """
        repo_path = PathNormalizer.repo_path_from_git_internal(canonical)
        if repo_path is None or self.git_collector is None:
            return None
        if not self.storage.has_entry(repo_path):
            return None
        tasks = self.schedule_git_refresh([repo_path])
        return tasks[0] if tasks else None

    # Background git collection

    def schedule_git_refresh(self, paths: Iterable[str]) -> list[asyncio.Task]:
        """
        Start one background refresh per directory.

        Watcher events never wait on git; a slow or hung git only delays
        the metadata of its own directory.
        """
        if self.git_collector is None:
            return []
        tasks = []
        for path in dict.fromkeys(paths):
            task = asyncio.ensure_future(self._refresh_git(path))
            self._git_tasks.add(task)
            task.add_done_callback(self._git_task_done)
            tasks.append(task)
        return tasks

    async def _refresh_git(self, canonical: str) -> bool:
        before = _git_signature(self.storage.get_git_metadata(canonical))
        await self.git_collector.refresh(canonical)
        if not self.storage.has_entry(canonical):
            return False
        after = _git_signature(self.storage.get_git_metadata(canonical))
        if before == after:
            return False

        self._commit(entry_message(ENTRY_UPDATED, canonical))
        logger.debug(f"Repository metadata changed: {canonical}")
        return True

    def _git_task_done(self, task: asyncio.Task) -> None:
        self._git_tasks.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error(f"Background git refresh failed: {error}", exc_info=error)

    def pending_git_refreshes(self) -> int:
        return len(self._git_tasks)

    async def wait_git_idle(self) -> None:
        """Wait for every background git refresh, including ones started meanwhile."""
        while self._git_tasks:
            await asyncio.gather(*list(self._git_tasks), return_exceptions=True)

    async def cancel_git_refreshes(self) -> None:
        tasks = list(self._git_tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    # Tags

    @staticmethod
    def _validate_tag(path: Any, key: Any, value: Any) -> tuple[str, str, str]:
        canonical = PathNormalizer.clean(path if isinstance(path, str) else None)
        key = str(key).strip() if key is not None else ""
        value = str(value).strip() if value is not None else ""
        if not canonical or not key or not value:
            raise InvalidRequestError("path, key, and value are required")
        return canonical, key, value

    def add_tag(self, path: Any, key: Any, value: Any) -> dict:
        """
        Attach (key, value) to an entry. Adding an existing tag is a no-op.

        Raises:
            InvalidRequestError: missing path, key or value
            EntryNotFoundError: path not indexed
        """
        canonical, key, value = self._validate_tag(path, key, value)
        if not self.storage.has_entry(canonical):
            raise EntryNotFoundError(f"Entry not found: {canonical}")
        try:
            self.storage.add_tag(canonical, key, value)
        except StorageError as e:
            # Entry removed between the check and the insert
            raise EntryNotFoundError(f"Entry not found: {canonical}") from e
        self._commit(tag_message(TAG_ADDED, canonical, key, value))
        return {"path": canonical, "key": key, "value": value}

    def remove_tag(self, path: Any, key: Any, value: Any) -> dict:
        """
        Detach (key, value) from an entry. Removing an absent tag is a no-op.

        Raises:
            InvalidRequestError: missing path, key or value
        """
        canonical, key, value = self._validate_tag(path, key, value)
        self.storage.remove_tag(canonical, key, value)
        self._commit(tag_message(TAG_REMOVED, canonical, key, value))
        return {"path": canonical, "key": key, "value": value}
