"""
Workspace scanning.

One recursive walk at startup fills the store; the watcher keeps it
current afterwards.
"""

from .entries import build_entry, entry_type, safe_stat
from .scan_stats import ScanStats
from .scanner import IndexScanner

__all__ = ["IndexScanner", "ScanStats", "build_entry", "entry_type", "safe_stat"]
