"""
File content service: stream one file, or fuzzy-search its lines.

Only indexed regular files are served. Reads never go through the index
cache; they hit the filesystem directly.
"""

import asyncio
import logging
import os
import re
import stat
import threading
from pathlib import Path
from typing import Optional

from filexplorer.errors import (
    EntryNotFoundError,
    InvalidRequestError,
    NotAFileError,
    RequestSuperseded,
    UnreadableFileError,
)
from filexplorer.fuzzy import fuzzy_score
from filexplorer.ignore_patterns import is_unsupported_error
from filexplorer.paths import PathNormalizer
from filexplorer.storage import StorageManager

logger = logging.getLogger("filexplorer.content")

STREAM_CHUNK_SIZE = 64 * 1024
FILE_SEARCH_THRESHOLD = 0.4
FILE_SEARCH_LIMIT = 50

SNIPPET_MAX_LENGTH = 240
SNIPPET_BEFORE = 60
SNIPPET_AFTER = 120
ELLIPSIS = "…"

_LINE_BREAK = re.compile(r"\r\n|\n|\r")

NOT_FOUND_MESSAGE = "File not found"
UNREADABLE_MESSAGE = "File cannot be read on this filesystem"


def split_lines(text: str) -> list[str]:
    """Split on CRLF, LF or lone CR."""
    return _LINE_BREAK.split(text)


def build_snippet(line: str, query: Optional[str]) -> str:
    """
    Display text for a matching line.

    Tabs become four spaces. A literal (case-insensitive) occurrence of the
    query centers the snippet on it: 60 characters before, 120 after, with
    an ellipsis wherever text was cut. Otherwise the line is capped at 240
    characters.
    """
    if not line:
        return ""
    text = line.replace("\t", "    ")
    needle = (query or "").strip().lower()

    index = text.lower().find(needle) if needle else -1
    if index == -1:
        if len(text) <= SNIPPET_MAX_LENGTH:
            return text
        return text[: SNIPPET_MAX_LENGTH - 1] + ELLIPSIS

    start = max(0, index - SNIPPET_BEFORE)
    end = min(len(text), index + len(needle) + SNIPPET_AFTER)
    snippet = text[start:end]
    if start > 0:
        snippet = ELLIPSIS + snippet
    if end < len(text):
        snippet = snippet + ELLIPSIS
    return snippet


class FileStream:
    """
    Iterator of UTF-8 text chunks over one open file.

    Never holds more than one chunk in memory. close() (or exhausting the
    iterator, or leaving a with-block) releases the file handle.
    """

    def __init__(self, path: str, absolute: Path, size: int, mtime: int, handle, chunk_size: int = STREAM_CHUNK_SIZE):
        self.path = path
        self.absolute = absolute
        self.size = size
        self.mtime = mtime
        self.chunk_size = chunk_size
        self._handle = handle

    @property
    def closed(self) -> bool:
        return self._handle is None

    def __iter__(self):
        return self

    def __next__(self) -> str:
        if self._handle is None:
            raise StopIteration
        chunk = self._handle.read(self.chunk_size)
        if not chunk:
            self.close()
            raise StopIteration
        return chunk

    def close(self) -> None:
        handle, self._handle = self._handle, None
        if handle is not None:
            handle.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()


class FileContentService:
    """Streams and searches indexed files."""

    def __init__(self, normalizer: PathNormalizer, storage: StorageManager):
        self.normalizer = normalizer
        self.storage = storage
        self._inflight: dict[str, tuple[asyncio.Future, threading.Event]] = {}
        self._superseded: set[int] = set()

    def _resolve(self, path: Optional[str]) -> tuple[str, Path]:
        """Validate that path names an indexed file; returns (canonical, absolute)."""
        canonical = PathNormalizer.clean(path)
        entry = self.storage.get_entry(canonical) if canonical else None
        if entry is None:
            raise EntryNotFoundError(NOT_FOUND_MESSAGE)
        if entry["type"] != "file":
            raise NotAFileError("Requested path is not a file")
        return canonical, self.normalizer.to_absolute(canonical)

    @staticmethod
    def _translate_os_error(error: OSError, absolute: Path):
        if isinstance(error, FileNotFoundError):
            return EntryNotFoundError(NOT_FOUND_MESSAGE)
        if isinstance(error, IsADirectoryError):
            return NotAFileError("Requested path is not a regular file")
        if is_unsupported_error(error):
            return UnreadableFileError(UNREADABLE_MESSAGE)
        logger.error(f"Failed to read {absolute}: {error}")
        return None

    def open_stream(self, path: Optional[str]) -> FileStream:
        """
        Open an indexed file for streaming.

        Raises:
            InvalidRequestError: missing path
            EntryNotFoundError: not indexed, or gone from disk
            NotAFileError: a directory or non-regular file
            UnreadableFileError: permission / unsupported filesystem
        """
        if not PathNormalizer.clean(path):
            raise InvalidRequestError("path query parameter required")
        canonical, absolute = self._resolve(path)

        try:
            st = os.stat(absolute)
            if not stat.S_ISREG(st.st_mode):
                raise NotAFileError("Requested path is not a regular file")
            handle = open(absolute, "r", encoding="utf-8", errors="replace", newline="")
        except OSError as e:
            translated = self._translate_os_error(e, absolute)
            if translated is None:
                raise
            raise translated from e

        return FileStream(
            path=canonical,
            absolute=absolute,
            size=st.st_size,
            mtime=round(st.st_mtime_ns / 1_000_000),
            handle=handle,
        )

    async def search(
        self, path: Optional[str], query: Optional[str], request_key: Optional[str] = None
    ) -> list[dict]:
        """
        Fuzzy-search the lines of an indexed file.

        A newer call with the same request_key supersedes this one, which
        then raises RequestSuperseded instead of returning stale results.
        The superseded worker stops reading and scoring at its next check.

        Raises:
            InvalidRequestError: missing path or query
            EntryNotFoundError / NotAFileError / UnreadableFileError: as open_stream
            RequestSuperseded: replaced by a newer search with the same key
        """
        needle = (query or "").strip()
        if not PathNormalizer.clean(path):
            raise InvalidRequestError("path query parameter required")
        if not needle:
            raise InvalidRequestError("q query parameter required")
        canonical, absolute = self._resolve(path)

        abandoned = threading.Event()
        task = asyncio.ensure_future(
            asyncio.to_thread(self._search_file, absolute, needle, abandoned)
        )
        if request_key is not None:
            previous = self._inflight.get(request_key)
            if previous is not None and not previous[0].done():
                self._superseded.add(id(previous[0]))
                previous[1].set()
                previous[0].cancel()
            self._inflight[request_key] = (task, abandoned)

        try:
            return await task
        except asyncio.CancelledError:
            abandoned.set()
            if id(task) in self._superseded:
                raise RequestSuperseded(f"Search superseded for {canonical}") from None
            raise
        finally:
            self._superseded.discard(id(task))
            current = self._inflight.get(request_key) if request_key is not None else None
            if current is not None and current[0] is task:
                del self._inflight[request_key]

    def _search_file(self, absolute: Path, needle: str, abandoned: threading.Event) -> list[dict]:
        chunks = []
        try:
            with open(absolute, "r", encoding="utf-8", errors="replace", newline="") as f:
                while not abandoned.is_set():
                    chunk = f.read(STREAM_CHUNK_SIZE)
                    if not chunk:
                        break
                    chunks.append(chunk)
        except OSError as e:
            translated = self._translate_os_error(e, absolute)
            if translated is None:
                raise
            raise translated from e
        if abandoned.is_set():
            return []
        return search_lines("".join(chunks), needle, abandoned=abandoned)


def search_lines(
    content: str,
    query: str,
    limit: int = FILE_SEARCH_LIMIT,
    abandoned: Optional[threading.Event] = None,
) -> list[dict]:
    """Fuzzy-match every line; best scores first, ties by line number."""
    needle = query.strip().lower()
    if not needle:
        return []

    hits = []
    for number, line in enumerate(split_lines(content), start=1):
        if abandoned is not None and abandoned.is_set():
            return []
        score = fuzzy_score(needle, line.lower(), FILE_SEARCH_THRESHOLD)
        if score is not None:
            hits.append((score, number, line))

    hits.sort(key=lambda hit: (hit[0], hit[1]))
    return [
        {"line": number, "score": score, "snippet": build_snippet(line, query)}
        for score, number, line in hits[:limit]
    ]
