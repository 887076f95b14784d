"""
Ignore rules for the index.

One check, IgnoreRules.is_ignored(), answers for absolute and canonical
paths alike. It combines:
- a session-scoped set of paths the filesystem refused to stat
  (permission / unsupported errors); never persisted
- gitignore-style patterns (pathspec): defaults, configured extras and an
  optional .filexplorerignore file at the root

.gitignore is deliberately not loaded: the explorer shows everything on disk.
"""

import errno
import logging
import os
import threading
from pathlib import Path
from typing import Iterable, Optional, Union

from pathspec import PathSpec

from filexplorer.paths import ROOT, PathNormalizer

logger = logging.getLogger("filexplorer.ignore_patterns")

# Sockets vanish with their process and cannot be read anyway.
DEFAULT_IGNORES = [
    "*.sock",
]

IGNORE_FILE_NAME = ".filexplorerignore"

# stat()/scandir() failures that mean "this filesystem won't let us in"
UNSUPPORTED_ERRNOS = frozenset(
    code
    for code in (
        getattr(errno, "ENOTSUP", None),
        getattr(errno, "EOPNOTSUPP", None),
        errno.EPERM,
        errno.EACCES,
        errno.ENAMETOOLONG,
    )
    if code is not None
)


def is_unsupported_error(exc: BaseException) -> bool:
    """True for OSErrors that should permanently ignore the path."""
    if isinstance(exc, PermissionError):
        return True
    return isinstance(exc, OSError) and exc.errno in UNSUPPORTED_ERRNOS


def load_ignore_file(root: Path) -> list[str]:
    """
    Load project-specific patterns from .filexplorerignore.

    Returns an empty list when the file is missing or unreadable.
    """
    ignore_file = root / IGNORE_FILE_NAME
    if not ignore_file.exists():
        return []

    try:
        content = ignore_file.read_text(encoding="utf-8")
    except OSError as e:
        logger.warning(f"Could not read {IGNORE_FILE_NAME}: {e}")
        return []

    patterns = [
        line.strip()
        for line in content.splitlines()
        if line.strip() and not line.strip().startswith("#")
    ]
    if patterns:
        logger.info(f"Loaded {len(patterns)} custom patterns from {IGNORE_FILE_NAME}")
    return patterns


class IgnoreRules:
    """Single capability check for ignored paths."""

    def __init__(
        self,
        normalizer: PathNormalizer,
        extra_patterns: Optional[Iterable[str]] = None,
        load_project_file: bool = True,
    ):
        self.normalizer = normalizer
        patterns = DEFAULT_IGNORES.copy()
        if extra_patterns:
            patterns.extend(p for p in extra_patterns if p)
        if load_project_file:
            patterns.extend(load_ignore_file(normalizer.root))
        self.patterns = patterns
        self._spec = PathSpec.from_lines("gitwildmatch", patterns)
        # Holds both absolute and canonical forms; written from the watchdog
        # thread as well as the event loop.
        self._unsupported: set[str] = set()
        self._lock = threading.Lock()

    def _forms(self, path: Union[str, Path]) -> tuple[str, Optional[str]]:
        """Return (absolute, canonical) for either input form."""
        raw = os.fspath(path)
        if os.path.isabs(raw):
            canonical = self.normalizer.to_canonical(raw)
            return raw, canonical
        canonical = PathNormalizer.clean(raw) or ROOT
        return str(self.normalizer.to_absolute(canonical)), canonical

    def mark_unsupported(self, path: Union[str, Path]) -> None:
        """Ignore this path for the rest of the process lifetime."""
        absolute, canonical = self._forms(path)
        with self._lock:
            self._unsupported.add(absolute)
            if canonical and canonical != ROOT and not PathNormalizer.is_outside(canonical):
                self._unsupported.add(canonical)
        logger.debug(f"Marked unsupported: {canonical or absolute}")

    def is_ignored(self, path: Union[str, Path], is_dir: bool = False) -> bool:
        """
        Check a path given in absolute or canonical form.

        Paths outside the root are not "ignored" here; callers reject them
        separately.
        """
        absolute, canonical = self._forms(path)
        with self._lock:
            if absolute in self._unsupported or canonical in self._unsupported:
                return True
        if canonical is None or canonical == ROOT or PathNormalizer.is_outside(canonical):
            return False
        candidate = canonical + "/" if is_dir else canonical
        return self._spec.match_file(candidate)

    @property
    def unsupported_count(self) -> int:
        with self._lock:
            return len(self._unsupported)
