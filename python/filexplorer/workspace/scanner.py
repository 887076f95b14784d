"""
IndexScanner - one-time recursive walk of the root.

Handles:
- Depth-first discovery (parents are stored before their children)
- Ignore rules, permission failures and non-regular files
- Git metadata for directories holding a .git entry
- Cleanup of entries left over from a previous run (file-backed stores)
"""

import asyncio
import logging
import os
import time
from pathlib import Path
from typing import Optional

from ..git_metadata import GitMetadataCollector
from ..ignore_patterns import IgnoreRules, is_unsupported_error
from ..paths import GIT_DIR_NAME, ROOT, PathNormalizer
from ..storage import StorageManager, StorageError
from .entries import build_entry, safe_stat
from .scan_stats import ScanStats

logger = logging.getLogger("filexplorer.workspace")


class IndexScanner:
    """
    Walks the root once and upserts every entry it finds.

    The walk runs in a worker thread (it's all blocking stat/scandir calls);
    git collection for the repositories found runs afterwards on the loop.
    Scanning is idempotent: entries are keyed by path.
    """

    def __init__(
        self,
        normalizer: PathNormalizer,
        storage: StorageManager,
        ignore_rules: IgnoreRules,
        git_collector: Optional[GitMetadataCollector] = None,
    ):
        self.normalizer = normalizer
        self.storage = storage
        self.ignore_rules = ignore_rules
        self.git_collector = git_collector

    async def scan(self) -> ScanStats:
        """
        Index the whole root.

        Returns:
            ScanStats for this run
        """
        start = time.time()
        stats = ScanStats()

        stats.repo_candidates = await asyncio.to_thread(self._walk, stats)
        stats.repositories = await self._collect_git(stats.repo_candidates)

        stats.elapsed = time.time() - start
        logger.info(
            f"Scan complete: {stats.indexed} indexed, {stats.ignored} ignored, "
            f"{stats.failed_listings} unlistable, {stats.repositories} repositories, "
            f"{stats.removed} removed ({stats.elapsed:.2f}s)"
        )
        return stats

    async def scan_subtree(self, canonical: str, collect_git: bool = True) -> ScanStats:
        """
        Index the contents of a directory that was just added.

        The directory entry itself must already be stored. Used for
        directories created or moved in while watching, whose children may
        not get individual events.

        Repositories found below the directory (never the directory itself)
        end up in stats.repo_candidates. With collect_git=False they are left
        for the caller to collect.
        """
        start = time.time()
        stats = ScanStats()
        directory = self.normalizer.to_absolute(canonical)
        seen: set[str] = set()
        repo_candidates: list[str] = []

        await asyncio.to_thread(
            self._walk_tree, directory, canonical, stats, seen, repo_candidates
        )
        stats.repo_candidates = [path for path in repo_candidates if path != canonical]
        if collect_git:
            stats.repositories = await self._collect_git(stats.repo_candidates)
        stats.elapsed = time.time() - start
        if stats.indexed:
            logger.debug(f"Indexed {stats.indexed} entries below {canonical}")
        return stats

    async def _collect_git(self, repo_candidates: list[str]) -> int:
        if self.git_collector is None or not repo_candidates:
            return 0
        results = await asyncio.gather(
            *(self.git_collector.refresh(path) for path in repo_candidates)
        )
        return sum(1 for metadata in results if metadata)

    def _upsert(self, canonical: str, st: os.stat_result, stats: ScanStats) -> Optional[dict]:
        entry = build_entry(self.normalizer, canonical, st)
        if entry is None:
            # Sockets, FIFOs, devices
            self.ignore_rules.mark_unsupported(canonical)
            stats.ignored += 1
            return None
        try:
            self.storage.upsert_entry(entry)
        except StorageError as e:
            logger.warning(f"Skipping {canonical}: {e}")
            return None
        stats.indexed += 1
        return entry

    def _walk(self, stats: ScanStats) -> list[str]:
        """Blocking depth-first walk. Returns directories that contain .git."""
        root = self.normalizer.root
        root_stat = safe_stat(root, self.ignore_rules)
        if root_stat is None or not os.path.isdir(root):
            logger.error(f"Root {root} is not a readable directory; nothing indexed")
            return []

        seen: set[str] = set()
        repo_candidates: list[str] = []

        if self._upsert(ROOT, root_stat, stats) is None:
            return []
        seen.add(ROOT)

        self._walk_tree(root, ROOT, stats, seen, repo_candidates)
        stats.removed = self._remove_stale(seen)
        return repo_candidates

    def _walk_tree(
        self,
        start: Path,
        start_canonical: str,
        stats: ScanStats,
        seen: set[str],
        repo_candidates: list[str],
    ) -> None:
        """Index everything below an already-stored directory."""
        stack: list[tuple[Path, str]] = [(start, start_canonical)]
        while stack:
            directory, canonical_dir = stack.pop()
            try:
                with os.scandir(directory) as it:
                    children = sorted(it, key=lambda child: child.name)
            except OSError as e:
                if is_unsupported_error(e):
                    self.ignore_rules.mark_unsupported(directory)
                stats.failed_listings += 1
                logger.debug(f"Cannot list {directory}: {e}")
                continue

            subdirs: list[tuple[Path, str]] = []
            for child in children:
                if child.name == GIT_DIR_NAME:
                    repo_candidates.append(canonical_dir)
                    continue

                canonical = PathNormalizer.child_of(canonical_dir, child.name)
                if self.ignore_rules.is_ignored(canonical):
                    stats.ignored += 1
                    continue

                child_path = Path(child.path)
                st = safe_stat(child_path, self.ignore_rules)
                if st is None:
                    stats.ignored += 1
                    continue

                entry = build_entry(self.normalizer, canonical, st)
                if entry is not None and entry["type"] == "directory":
                    if self.ignore_rules.is_ignored(canonical, is_dir=True):
                        stats.ignored += 1
                        continue

                if self._upsert(canonical, st, stats) is None:
                    continue
                seen.add(canonical)

                # Symlinked directories are listed but not followed (loops)
                if entry["type"] == "directory" and not child.is_symlink():
                    subdirs.append((child_path, canonical))

            # Reverse so the stack pops children in name order
            stack.extend(reversed(subdirs))

    def _remove_stale(self, seen: set[str]) -> int:
        stale = [
            entry["path"]
            for entry in self.storage.get_all_entries()
            if entry["path"] not in seen
        ]
        removed = 0
        # get_all_entries is depth-ordered: ancestors go first and take
        # their descendants with them
        for path in stale:
            removed += self.storage.delete_branch(path)
        if removed:
            logger.info(f"Removed {removed} stale entries")
        return removed
