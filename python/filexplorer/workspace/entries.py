"""
Stat-to-entry helpers shared by the scanner and the index service.
"""

import logging
import os
import stat
from pathlib import Path
from typing import Optional, Union

from filexplorer.ignore_patterns import IgnoreRules, is_unsupported_error
from filexplorer.paths import PathNormalizer

logger = logging.getLogger("filexplorer.workspace")


def safe_stat(path: Union[str, Path], ignore_rules: IgnoreRules) -> Optional[os.stat_result]:
    """
    stat() a path, swallowing the failures indexing tolerates.

    Permission/unsupported errors mark the path ignored for the session.
    Missing paths (and anything else) return None.
    """
    try:
        return os.stat(path)
    except FileNotFoundError:
        return None
    except OSError as e:
        if is_unsupported_error(e):
            ignore_rules.mark_unsupported(path)
        else:
            logger.debug(f"stat failed for {path}: {e}")
        return None


def entry_type(st: os.stat_result) -> Optional[str]:
    """'directory', 'file', or None for sockets, FIFOs and devices."""
    if stat.S_ISDIR(st.st_mode):
        return "directory"
    if stat.S_ISREG(st.st_mode):
        return "file"
    return None


def build_entry(normalizer: PathNormalizer, canonical: str, st: os.stat_result) -> Optional[dict]:
    """
    Build an entry row from a stat result.

    Returns None for non-regular files.
    """
    kind = entry_type(st)
    if kind is None:
        return None

    name = normalizer.name_of(canonical)
    if kind == "file":
        size = st.st_size
        extension = os.path.splitext(name)[1][1:].lower()
    else:
        size = None
        extension = ""

    return {
        "path": canonical,
        "name": name,
        "parent_path": PathNormalizer.parent_of(canonical),
        "type": kind,
        "size": size,
        "mtime": round(st.st_mtime_ns / 1_000_000),
        "extension": extension,
        "depth": PathNormalizer.depth_of(canonical),
    }
