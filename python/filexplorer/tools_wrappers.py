"""
filexplorer MCP tool wrappers - thin delegating functions for FastMCP.

Each tool waits for the components to exist, then delegates to the query
engine, index service or content service. FilexplorerError propagates;
FastMCP reports it to the client as a tool error.
"""

import asyncio
import time
from typing import Any, Optional, Union

from filexplorer import server_state

TIMEOUT_MSG = (
    "filexplorer initialization timed out after {timeout}s. "
    "Check .filexplorer/logs for details."
)


async def await_ready() -> Optional[str]:
    """
    Wait for server components to exist, with timeout.

    Returns:
        None if ready, error message string on timeout
    """
    event = server_state.get_initialization_event()
    timeout = server_state.INITIALIZATION_TIMEOUT_SECONDS
    try:
        await asyncio.wait_for(event.wait(), timeout=timeout)
    except asyncio.TimeoutError:
        return TIMEOUT_MSG.format(timeout=timeout)
    if server_state.query_engine is None:
        return TIMEOUT_MSG.format(timeout=timeout)
    return None


async def get_tree() -> dict[str, Any]:
    """
    Get the whole indexed tree.

    Every node has path, name, type (file/directory), size, mtime (ms),
    extension, depth, git (directories only), tags and children. Children
    list directories first, then files, each by case-insensitive name.

    Returns:
        {"root": node or None, "rootName": str, "generatedAt": ms}
    """
    if err := await await_ready():
        return {"error": err}
    return {
        "root": server_state.query_engine.build_tree(),
        "rootName": server_state.query_engine.root_name,
        "generatedAt": int(time.time() * 1000),
    }


async def get_entry(path: str) -> dict[str, Any]:
    """
    Get one entry with its tags and git info.

    Args:
        path: Canonical path relative to the root ("src/main.py"; "/" is the root)
    """
    if err := await await_ready():
        return {"error": err}
    return {"entry": server_state.query_engine.get_entry(path)}


async def search_entries(
    query: str = "",
    tags: Union[str, list[str], None] = None,
) -> dict[str, Any]:
    """
    Fuzzy-search entries by path and name, optionally filtered by tags.

    Examples:
        search_entries("readme")
        search_entries("", tags="lang:python")                  # all tagged entries
        search_entries("test", tags=["lang:python", "team:core"])  # every filter must match

    Args:
        query: Fuzzy text matched against path and name (empty = index order)
        tags: "key:value" filters, comma-separated string or list

    Returns:
        {"results": [entry, ...]} with at most 50 entries
    """
    if err := await await_ready():
        return {"error": err}
    return {"results": server_state.query_engine.search(query, tags)}


async def suggest(query: str = "") -> dict[str, Any]:
    """
    Autocomplete for the search box.

    "lang:p" completes tag values, other text completes paths, tags and tag
    keys; an empty query lists top directories.
    """
    if err := await await_ready():
        return {"error": err}
    return {"suggestions": server_state.query_engine.suggest(query)}


async def list_tags(path: Optional[str] = None) -> dict[str, Any]:
    """List every tag, or the tags of one entry."""
    if err := await await_ready():
        return {"error": err}
    return {"tags": server_state.query_engine.list_tags(path)}


async def search_tags(query: str, limit: int = 20) -> dict[str, Any]:
    """
    Fuzzy-search tags by "key:value", key or value.

    Args:
        query: Text to match
        limit: Max results, clamped to 1..100 (default: 20)
    """
    if err := await await_ready():
        return {"error": err}
    return {"results": server_state.query_engine.search_tags(query, limit)}


async def add_tag(path: str, key: str, value: str) -> dict[str, Any]:
    """Attach a key:value tag to an indexed entry. Adding it twice is harmless."""
    if err := await await_ready():
        return {"error": err}
    server_state.index_service.add_tag(path, key, value)
    return {"success": True}


async def remove_tag(path: str, key: str, value: str) -> dict[str, Any]:
    """Remove a key:value tag from an entry. Removing a missing tag is harmless."""
    if err := await await_ready():
        return {"error": err}
    server_state.index_service.remove_tag(path, key, value)
    return {"success": True}


async def search_file(path: str, query: str) -> dict[str, Any]:
    """
    Fuzzy-search the lines of one indexed text file.

    Returns:
        {"matches": [{"line": int, "score": float, "snippet": str}, ...]}
        best matches first, at most 50
    """
    if err := await await_ready():
        return {"error": err}
    return {"matches": await server_state.content_service.search(path, query)}


async def index_status() -> dict[str, Any]:
    """Root, watcher mode (native/polling), entry/tag/repository counts, git availability."""
    if err := await await_ready():
        return {"error": err}
    from filexplorer.http_routes import build_status

    return build_status()
