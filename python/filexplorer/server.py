"""
filexplorer server - FastMCP app with the explorer HTTP API mounted on it.

One process serves both surfaces:
- MCP tools (tools_wrappers) over stdio or streamable HTTP at /mcp
- the JSON/SSE API under /api (http_routes), HTTP mode only

CRITICAL: in stdio mode stdout is the JSON-RPC channel - NEVER print().
Use the logger instead.
"""

import logging

from fastmcp import FastMCP

from filexplorer import server_state
from filexplorer.config import Settings, settings_from_args
from filexplorer.http_routes import ROUTES
from filexplorer.lifecycle import lifespan
from filexplorer.logging_config import setup_logging
from filexplorer.stdio_hardening import handle_broken_pipe, harden_stdio
from filexplorer.tools_wrappers import (
    add_tag,
    get_entry,
    get_tree,
    index_status,
    list_tags,
    remove_tag,
    search_entries,
    search_file,
    search_tags,
    suggest,
)

logger = logging.getLogger("filexplorer.server")

INSTRUCTIONS = """\
filexplorer keeps a live index of one directory tree.

- get_tree / get_entry: browse entries (paths are relative to the root, "/" is the root)
- search_entries: fuzzy path search, narrowed with "key:value" tag filters
- suggest: completions for paths, tags and tag values
- add_tag / remove_tag / list_tags / search_tags: annotate entries
- search_file: fuzzy search inside one text file
- index_status: watcher mode and index counts

Directory entries carry git metadata when they are repository roots.
"""

# Components are created in the lifespan handler; the scan runs after startup
mcp = FastMCP("filexplorer", lifespan=lifespan, instructions=INSTRUCTIONS)

# output_schema=None: tools return plain dicts, no {"result": ...} wrapping
mcp.tool(output_schema=None)(get_tree)
mcp.tool(output_schema=None)(get_entry)
mcp.tool(output_schema=None)(search_entries)
mcp.tool(output_schema=None)(suggest)
mcp.tool(output_schema=None)(list_tags)
mcp.tool(output_schema=None)(search_tags)
mcp.tool(output_schema=None)(add_tag)
mcp.tool(output_schema=None)(remove_tag)
mcp.tool(output_schema=None)(search_file)
mcp.tool(output_schema=None)(index_status)

# Explorer API (served by the HTTP transport only)
for _path, _methods, _handler in ROUTES:
    mcp.custom_route(_path, methods=_methods)(_handler)


@handle_broken_pipe
def main(settings: Settings = None):
    """
    Stdio entry point.

    The handshake completes immediately; the initial scan and the watcher
    start in the background from the lifespan handler.
    """
    harden_stdio()
    if settings is not None:
        server_state.settings = settings
    logger.info("Starting filexplorer MCP server (stdio)")
    mcp.run(show_banner=False)


def main_http(settings: Settings = None):
    """
    HTTP entry point: MCP at /mcp plus the explorer API under /api.

    Multiple clients (the web UI, agents) share one index.
    """
    settings = settings or server_state.settings or Settings.from_env()
    server_state.settings = settings

    logger.info("Starting filexplorer server (HTTP mode)")
    logger.info(f"Indexing {settings.root}")
    logger.info(f"Listening on http://{settings.host}:{settings.port} (MCP at /mcp)")

    try:
        mcp.run(transport="http", host=settings.host, port=settings.port)
    except KeyboardInterrupt:
        logger.info("Shutting down filexplorer HTTP server...")


def main_cli(argv=None):
    """
    Console entry point.

    Usage:
        filexplorer-server --root ~/projects --port 4174
        filexplorer-server --root ~/projects --stdio

    Or via environment variables:
        FILEXPLORER_ROOT=~/projects FILEXPLORER_PORT=4174 filexplorer-server
    """
    settings, stdio = settings_from_args(argv)
    setup_logging(settings.log_dir, level=settings.log_level, console=not stdio)
    if stdio:
        main(settings)
    else:
        main_http(settings)


if __name__ == "__main__":
    main_cli()
