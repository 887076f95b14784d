"""
Canonical path handling.

Every indexed node is identified by a canonical path: relative to the
watched root, "/"-separated, with "/" standing for the root itself.

    /home/me/project              -> "/"
    /home/me/project/src/main.py  -> "src/main.py"
    /home/me/other                -> "../other"   (outside, never stored)
"""

import os
from pathlib import Path
from typing import Optional, Union

ROOT = "/"
GIT_DIR_NAME = ".git"


class PathNormalizer:
    """
    Maps between absolute filesystem paths and canonical root-relative paths.

    Pure: holds the resolved root and nothing else.
    """

    def __init__(self, root: Union[str, Path]):
        self.root = Path(root).resolve()
        self._root_str = str(self.root)

    @property
    def root_name(self) -> str:
        return self.root.name or self._root_str

    def to_canonical(self, absolute_path: Union[str, Path]) -> str:
        """
        Convert an absolute path to canonical form.

        Paths outside the root come back starting with ".." (see is_outside).
        """
        relative = os.path.relpath(os.fspath(absolute_path), self._root_str)
        if relative in ("", "."):
            return ROOT
        return relative.replace(os.sep, "/")

    def to_absolute(self, canonical_path: Optional[str]) -> Path:
        """Inverse of to_canonical."""
        if not canonical_path or canonical_path == ROOT:
            return self.root
        return self.root.joinpath(*canonical_path.split("/"))

    @staticmethod
    def is_outside(canonical_path: str) -> bool:
        return canonical_path == ".." or canonical_path.startswith("../")

    @staticmethod
    def clean(raw_path: Optional[str]) -> str:
        """
        Normalize a caller-supplied canonical path.

        Accepts "/src/a.txt", "src/a.txt/" and "src/a.txt" alike.
        """
        if raw_path is None:
            return ""
        stripped = raw_path.strip()
        if not stripped:
            return ""
        trimmed = stripped.strip("/")
        return trimmed or ROOT

    @staticmethod
    def parent_of(canonical_path: str) -> Optional[str]:
        if not canonical_path or canonical_path == ROOT:
            return None
        idx = canonical_path.rfind("/")
        if idx <= 0:
            return ROOT
        return canonical_path[:idx]

    @staticmethod
    def child_of(canonical_path: str, name: str) -> str:
        if not canonical_path or canonical_path == ROOT:
            return name
        return f"{canonical_path}/{name}"

    @staticmethod
    def depth_of(canonical_path: str) -> int:
        if not canonical_path or canonical_path == ROOT:
            return 0
        return len(canonical_path.split("/"))

    def name_of(self, canonical_path: str) -> str:
        if canonical_path == ROOT:
            return self.root_name
        return canonical_path.rsplit("/", 1)[-1]

    @staticmethod
    def is_git_internal(canonical_path: str) -> bool:
        """True for a .git directory itself or anything inside one."""
        if not canonical_path or canonical_path == ROOT:
            return False
        return GIT_DIR_NAME in canonical_path.split("/")

    @staticmethod
    def repo_path_from_git_internal(canonical_path: str) -> Optional[str]:
        """
        Owning repository directory of a git-internal path.

            ".git/HEAD"          -> "/"
            "lib/.git/refs/x"    -> "lib"
            "lib/.gitignore"     -> None
        """
        if not canonical_path or canonical_path == ROOT:
            return None
        if canonical_path == GIT_DIR_NAME or canonical_path.startswith(GIT_DIR_NAME + "/"):
            return ROOT
        marker = "/" + GIT_DIR_NAME
        idx = canonical_path.find(marker)
        while idx != -1:
            suffix = canonical_path[idx + len(marker):]
            if not suffix or suffix.startswith("/"):
                return canonical_path[:idx] or ROOT
            idx = canonical_path.find(marker, idx + 1)
        return None
