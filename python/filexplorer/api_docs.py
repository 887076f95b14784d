"""
OpenAPI description of the /api routes, served as YAML, plus a docs page.

The document is built once from OPERATIONS; the HTML page loads
Swagger UI from a CDN and points it at /openapi.yaml.
"""

import functools
from typing import Any

import yaml

from filexplorer import __version__

OPENAPI_PATH = "/openapi.yaml"

_PATH_PARAM = {"name": "path", "in": "query", "required": True, "schema": {"type": "string"}}
_ERROR_SCHEMA = {
    "type": "object",
    "properties": {"error": {"type": "string"}},
    "required": ["error"],
}
_TAG_BODY = {
    "required": True,
    "content": {
        "application/json": {
            "schema": {
                "type": "object",
                "properties": {
                    "path": {"type": "string"},
                    "key": {"type": "string"},
                    "value": {"type": "string"},
                },
                "required": ["path", "key", "value"],
            }
        }
    },
}


def _query(name: str, required: bool = False, type_: str = "string") -> dict:
    return {"name": name, "in": "query", "required": required, "schema": {"type": type_}}


# (path, method, summary, parameters, error statuses)
OPERATIONS: list[tuple[str, str, str, list[dict], tuple[int, ...]]] = [
    ("/api/tree", "get", "Whole index as a nested tree", [], ()),
    ("/api/entry", "get", "One indexed entry", [_PATH_PARAM], (400, 404)),
    (
        "/api/search",
        "get",
        "Fuzzy search over entry paths, filtered by key:value tags",
        [_query("q"), {**_query("tags"), "explode": True}],
        (),
    ),
    ("/api/suggestions", "get", "Path and tag suggestions for a partial query", [_query("q")], ()),
    ("/api/tags", "get", "Tags of one entry, or every tag", [_query("path")], (404,)),
    ("/api/tags", "post", "Attach a tag to an entry", [], (400, 404)),
    ("/api/tags", "delete", "Detach a tag from an entry", [], (400,)),
    (
        "/api/tags/search",
        "get",
        "Fuzzy search over tags",
        [_query("q", required=True), _query("limit", type_="integer")],
        (400,),
    ),
    ("/api/file/stream", "get", "Stream a file as UTF-8 text", [_PATH_PARAM], (400, 403, 404)),
    (
        "/api/file/search",
        "get",
        "Fuzzy search over the lines of one file",
        [_PATH_PARAM, _query("q", required=True), _query("client")],
        (400, 403, 404, 409),
    ),
    ("/api/status", "get", "Index and watcher status", [], ()),
    ("/api/events", "get", "Server-Sent Events stream of index changes", [], ()),
]

_SUCCESS_MEDIA = {
    "/api/file/stream": "text/plain",
    "/api/events": "text/event-stream",
}


def build_openapi() -> dict[str, Any]:
    """OpenAPI 3 document for OPERATIONS."""
    paths: dict[str, dict] = {}
    for path, method, summary, parameters, errors in OPERATIONS:
        media = _SUCCESS_MEDIA.get(path, "application/json")
        body_type = "object" if media == "application/json" else "string"
        responses: dict[str, Any] = {
            "200": {"description": "OK", "content": {media: {"schema": {"type": body_type}}}},
            "503": {
                "description": "Index is not ready",
                "content": {"application/json": {"schema": _ERROR_SCHEMA}},
            },
        }
        for status in errors:
            responses[str(status)] = {
                "description": "Error",
                "content": {"application/json": {"schema": _ERROR_SCHEMA}},
            }
        operation: dict[str, Any] = {"summary": summary, "responses": responses}
        if parameters:
            operation["parameters"] = parameters
        if path == "/api/tags" and method != "get":
            operation["requestBody"] = _TAG_BODY
        paths.setdefault(path, {})[method] = operation

    return {
        "openapi": "3.0.3",
        "info": {"title": "filexplorer", "version": __version__},
        "paths": paths,
    }


class _NoAliasDumper(yaml.SafeDumper):
    # Shared schema dicts are written out in full instead of as anchors
    def ignore_aliases(self, data):
        return True


@functools.lru_cache(maxsize=1)
def openapi_yaml() -> str:
    return yaml.dump(
        build_openapi(),
        Dumper=_NoAliasDumper,
        default_flow_style=False,
        sort_keys=False,
        allow_unicode=True,
    )


DOCS_HTML = f"""<!DOCTYPE html>
<html lang="en">
<head>
  <meta charset="utf-8">
  <title>filexplorer API</title>
  <link rel="stylesheet" href="https://unpkg.com/swagger-ui-dist@5/swagger-ui.css">
</head>
<body>
  <div id="swagger-ui"></div>
  <script src="https://unpkg.com/swagger-ui-dist@5/swagger-ui-bundle.js"></script>
  <script>
    window.ui = SwaggerUIBundle({{ url: "{OPENAPI_PATH}", dom_id: "#swagger-ui" }});
  </script>
</body>
</html>
"""
