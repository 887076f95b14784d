"""
HTTP API for the explorer UI.

Plain Starlette handlers. server.py registers them on the FastMCP app with
custom_route; ROUTES lists them so tests can mount them on a bare
Starlette app.

Errors come back as {"error": message} with the status carried by the
FilexplorerError subclass.
"""

import asyncio
import functools
import json
import logging
import time
from typing import Any, AsyncIterator, Awaitable, Callable

from starlette.concurrency import iterate_in_threadpool
from starlette.requests import Request
from starlette.responses import HTMLResponse, JSONResponse, Response, StreamingResponse

from filexplorer import server_state
from filexplorer.api_docs import DOCS_HTML, OPENAPI_PATH, openapi_yaml
from filexplorer.broadcast import ChangeBroadcaster
from filexplorer.errors import FilexplorerError, InvalidRequestError
from filexplorer.paths import PathNormalizer

logger = logging.getLogger("filexplorer.http")

SSE_KEEPALIVE_SECONDS = 30.0

Handler = Callable[[Request], Awaitable[Response]]


def error_response(message: str, status_code: int) -> JSONResponse:
    return JSONResponse({"error": message}, status_code=status_code)


def api_handler(func: Handler) -> Handler:
    """Map FilexplorerError to JSON errors; 503 until components exist."""

    @functools.wraps(func)
    async def wrapper(request: Request) -> Response:
        if server_state.query_engine is None:
            return error_response("Index is not ready", 503)
        try:
            return await func(request)
        except FilexplorerError as e:
            return error_response(e.message, e.status_code)

    return wrapper


async def _json_body(request: Request) -> dict[str, Any]:
    try:
        body = await request.json()
    except (ValueError, UnicodeDecodeError):
        raise InvalidRequestError("Request body must be a JSON object") from None
    if not isinstance(body, dict):
        raise InvalidRequestError("Request body must be a JSON object")
    return body


# Read API


@api_handler
async def api_tree(request: Request) -> Response:
    root = server_state.query_engine.build_tree()
    return JSONResponse(
        {
            "root": root,
            "rootName": server_state.query_engine.root_name,
            "generatedAt": int(time.time() * 1000),
        }
    )


@api_handler
async def api_entry(request: Request) -> Response:
    path = request.query_params.get("path")
    if not PathNormalizer.clean(path):
        raise InvalidRequestError("path query parameter required")
    entry = server_state.query_engine.get_entry(path)
    return JSONResponse({"entry": entry})


@api_handler
async def api_search(request: Request) -> Response:
    query = request.query_params.get("q", "")
    tag_params = request.query_params.getlist("tags")
    tags = tag_params[0] if len(tag_params) == 1 else tag_params
    results = server_state.query_engine.search(query, tags)
    return JSONResponse({"results": results})


@api_handler
async def api_suggestions(request: Request) -> Response:
    suggestions = server_state.query_engine.suggest(request.query_params.get("q", ""))
    return JSONResponse({"suggestions": suggestions})


@api_handler
async def api_status(request: Request) -> Response:
    return JSONResponse(build_status())


def build_status() -> dict[str, Any]:
    watcher = server_state.watcher
    mode = watcher.mode.value if watcher is not None and watcher.mode is not None else "stopped"
    status = {
        "root": str(server_state.normalizer.root),
        "watchMode": mode,
        "gitAvailable": bool(server_state.git_collector and server_state.git_collector.available),
    }
    status.update(server_state.query_engine.status_counts())
    return status


# Tags


@api_handler
async def api_tags(request: Request) -> Response:
    if request.method == "POST":
        body = await _json_body(request)
        server_state.index_service.add_tag(body.get("path"), body.get("key"), body.get("value"))
        return JSONResponse({"success": True})

    if request.method == "DELETE":
        body = await _json_body(request)
        server_state.index_service.remove_tag(body.get("path"), body.get("key"), body.get("value"))
        return JSONResponse({"success": True})

    tags = server_state.query_engine.list_tags(request.query_params.get("path"))
    return JSONResponse({"tags": tags})


@api_handler
async def api_tags_search(request: Request) -> Response:
    raw_limit = request.query_params.get("limit")
    try:
        limit = int(raw_limit) if raw_limit is not None else None
    except ValueError:
        limit = None
    results = server_state.query_engine.search_tags(request.query_params.get("q"), limit)
    return JSONResponse({"results": results})


# File content


@api_handler
async def api_file_stream(request: Request) -> Response:
    stream = server_state.content_service.open_stream(request.query_params.get("path"))

    async def body() -> AsyncIterator[str]:
        try:
            async for chunk in iterate_in_threadpool(stream):
                yield chunk
        finally:
            stream.close()

    headers = {"X-File-Path": stream.path, "X-File-Mtime": str(stream.mtime)}
    return StreamingResponse(body(), media_type="text/plain; charset=utf-8", headers=headers)


@api_handler
async def api_file_search(request: Request) -> Response:
    path = request.query_params.get("path")
    client = request.query_params.get("client")
    request_key = f"{client}\x00{PathNormalizer.clean(path)}" if client else None
    matches = await server_state.content_service.search(
        path, request.query_params.get("q"), request_key=request_key
    )
    return JSONResponse({"matches": matches})


# Real-time channel


def format_sse(message: dict) -> str:
    return f"data: {json.dumps(message)}\n\n"


async def sse_event_stream(
    broadcaster: ChangeBroadcaster, keepalive: float = SSE_KEEPALIVE_SECONDS
) -> AsyncIterator[str]:
    """
    Yield SSE frames for one subscriber until the client goes away.

    The subscription starts with the first frame, so a response whose body
    is never iterated leaves nothing registered.
    """
    subscriber_id, queue = broadcaster.subscribe()
    try:
        yield format_sse({"type": "connected", "clientId": subscriber_id})
        while True:
            try:
                message = await asyncio.wait_for(queue.get(), timeout=keepalive)
            except asyncio.TimeoutError:
                yield ": keepalive\n\n"
                continue
            yield format_sse(message)
    finally:
        broadcaster.unsubscribe(subscriber_id)


@api_handler
async def api_events(request: Request) -> Response:
    return StreamingResponse(
        sse_event_stream(server_state.broadcaster),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )


async def openapi_document(request: Request) -> Response:
    return Response(openapi_yaml(), media_type="application/yaml")


async def api_docs_page(request: Request) -> Response:
    return HTMLResponse(DOCS_HTML)


ROUTES: list[tuple[str, list[str], Handler]] = [
    ("/api/tree", ["GET"], api_tree),
    ("/api/entry", ["GET"], api_entry),
    ("/api/search", ["GET"], api_search),
    ("/api/suggestions", ["GET"], api_suggestions),
    ("/api/tags", ["GET", "POST", "DELETE"], api_tags),
    ("/api/tags/search", ["GET"], api_tags_search),
    ("/api/file/stream", ["GET"], api_file_stream),
    ("/api/file/search", ["GET"], api_file_search),
    ("/api/status", ["GET"], api_status),
    ("/api/events", ["GET"], api_events),
    (OPENAPI_PATH, ["GET"], openapi_document),
    ("/docs", ["GET"], api_docs_page),
]
