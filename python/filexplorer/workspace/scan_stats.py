"""
Statistics tracking for index scans.
"""


class ScanStats:
    """Statistics from one full scan of the root."""

    def __init__(self):
        self.indexed = 0  # Entries upserted (root included)
        self.ignored = 0  # Paths skipped by patterns, permissions or type
        self.failed_listings = 0  # Directories whose children couldn't be listed
        self.repositories = 0  # Directories with stored git metadata
        self.removed = 0  # Stale entries dropped from a previous run
        self.elapsed = 0.0  # Seconds
        self.repo_candidates: list[str] = []  # Directories holding a .git entry

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            "indexed": self.indexed,
            "ignored": self.ignored,
            "failed_listings": self.failed_listings,
            "repositories": self.repositories,
            "removed": self.removed,
            "elapsed": round(self.elapsed, 3),
        }
