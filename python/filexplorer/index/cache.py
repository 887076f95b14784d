"""
Search cache: an immutable snapshot of everything queries read.

Rebuilt in full from the store after every mutation, then swapped in by
reference. A reader holding a snapshot keeps a consistent view no matter
what is rebuilt meanwhile.
"""

import time
from dataclasses import dataclass, field
from typing import Any, Optional

from filexplorer.fuzzy import FuzzyIndex
from filexplorer.git_metadata import git_info_from_row
from filexplorer.storage import StorageManager

ENTRY_FUZZY_THRESHOLD = 0.3
TAG_FUZZY_THRESHOLD = 0.2

ENTRY_FIELDS = ("path", "name", "parent_path", "type", "size", "mtime", "extension", "depth")


@dataclass(frozen=True)
class SearchCache:
    entries: tuple = ()
    entries_by_path: dict = field(default_factory=dict)
    entry_index: FuzzyIndex = field(
        default_factory=lambda: FuzzyIndex([], ["path", "name"], ENTRY_FUZZY_THRESHOLD)
    )
    tags: tuple = ()
    tag_index: FuzzyIndex = field(
        default_factory=lambda: FuzzyIndex([], ["pair", "key", "value"], TAG_FUZZY_THRESHOLD)
    )
    values_by_key: dict = field(default_factory=dict)
    tags_by_path: dict = field(default_factory=dict)
    git_by_path: dict = field(default_factory=dict)
    built_at: int = 0

    @classmethod
    def build(cls, storage: StorageManager) -> "SearchCache":
        """Snapshot the store (one consistent read) into a new cache."""
        entry_rows, tag_rows, git_rows = storage.read_snapshot()

        git_by_path = {row["entry_path"]: git_info_from_row(row) for row in git_rows}

        entries = tuple({name: row[name] for name in ENTRY_FIELDS} for row in entry_rows)
        entries_by_path = {entry["path"]: entry for entry in entries}

        tags = tuple(
            {
                "path": row["entry_path"],
                "key": row["key"],
                "value": row["value"],
                "pair": f"{row['key']}:{row['value']}",
            }
            for row in tag_rows
        )

        values_by_key: dict[str, list[str]] = {}
        tags_by_path: dict[str, list[dict]] = {}
        for tag in tags:
            values = values_by_key.setdefault(tag["key"], [])
            if tag["value"] not in values:
                values.append(tag["value"])
            tags_by_path.setdefault(tag["path"], []).append(
                {"key": tag["key"], "value": tag["value"]}
            )
        for path_tags in tags_by_path.values():
            path_tags.sort(key=lambda t: (t["key"], t["value"]))

        return cls(
            entries=entries,
            entries_by_path=entries_by_path,
            entry_index=FuzzyIndex(entries, ["path", "name"], ENTRY_FUZZY_THRESHOLD),
            tags=tags,
            tag_index=FuzzyIndex(tags, ["pair", "key", "value"], TAG_FUZZY_THRESHOLD),
            values_by_key={key: tuple(values) for key, values in values_by_key.items()},
            tags_by_path={path: tuple(items) for path, items in tags_by_path.items()},
            git_by_path=git_by_path,
            built_at=int(time.time() * 1000),
        )

    def __len__(self) -> int:
        return len(self.entries)

    def get(self, path: str) -> Optional[dict]:
        return self.entries_by_path.get(path)

    def git_info(self, entry: dict) -> Optional[dict]:
        """Directories get git info ({"isRepo": False} at least); files get None."""
        if entry.get("type") != "directory":
            return None
        return self.git_by_path.get(entry["path"], {"isRepo": False})

    def tags_for(self, path: str) -> list[dict]:
        return [dict(tag) for tag in self.tags_for_path(path)]

    def tags_for_path(self, path: str) -> tuple:
        return self.tags_by_path.get(path, ())

    def decorate(self, entry: dict) -> dict[str, Any]:
        """Copy of entry with its git info and tags."""
        result = dict(entry)
        result["git"] = self.git_info(entry)
        result["tags"] = self.tags_for(entry["path"])
        return result
