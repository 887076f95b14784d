"""
Server fixtures: server_state populated over the sample workspace.

The watcher and git collector are left out; routes report them as
stopped / unavailable.
"""

import asyncio

import pytest
import pytest_asyncio


def publish_components(service, normalizer, ignore_rules, broadcaster):
    """Wire an already-scanned IndexService into server_state."""
    from filexplorer import server_state
    from filexplorer.content import FileContentService
    from filexplorer.index import QueryEngine

    server_state.reset(keep_settings=False)
    server_state.normalizer = normalizer
    server_state.storage = service.storage
    server_state.ignore_rules = ignore_rules
    server_state.broadcaster = broadcaster
    server_state.index_service = service
    server_state.query_engine = QueryEngine(lambda: service.cache, normalizer.root_name)
    server_state.content_service = FileContentService(normalizer, service.storage)
    return server_state


@pytest.fixture
def live_state(workspace_root, index_service, normalizer, ignore_rules, broadcaster):
    """
    Scan the sample tree and publish it (synchronous).

    For TestClient, which runs its own event loop.
    """
    asyncio.run(index_service.initial_scan())
    yield publish_components(index_service, normalizer, ignore_rules, broadcaster)
    from filexplorer import server_state

    server_state.reset(keep_settings=False)


@pytest_asyncio.fixture
async def ready_state(scanned_service, normalizer, ignore_rules, broadcaster):
    """Published components with the initialization event set (MCP tools)."""
    state = publish_components(scanned_service, normalizer, ignore_rules, broadcaster)
    state.get_initialization_event().set()
    yield state
    state.reset(keep_settings=False)


@pytest.fixture
def api_app():
    """Bare Starlette app carrying the explorer routes."""
    from starlette.applications import Starlette
    from starlette.routing import Route

    from filexplorer.http_routes import ROUTES

    return Starlette(
        routes=[Route(path, handler, methods=methods) for path, methods, handler in ROUTES]
    )


@pytest.fixture
def api_client(api_app, live_state):
    """TestClient over the explorer routes with a live index behind them."""
    from starlette.testclient import TestClient

    with TestClient(api_app) as client:
        yield client
