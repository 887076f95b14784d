"""
filexplorer - live, searchable index of a directory tree.

Scans a root directory into a SQLite-backed entry store, keeps it current
with a filesystem watcher (native events, falling back to polling), collects
git metadata for repository roots, and serves tree/search/tag/file-content
queries over an HTTP API and as MCP tools.
"""

__version__ = "0.1.0"
