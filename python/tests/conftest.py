"""
Pytest configuration and fixtures for filexplorer tests.

Specialized fixtures are organized in the fixtures/ directory:
- fixtures.workspace: on-disk trees, storage, ignore rules, index service
- fixtures.server: populated server_state for HTTP route and tool tests
- fixtures.watcher: fake observers for the watcher state machine
"""

import pytest

# Load fixture modules
pytest_plugins = [
    "tests.fixtures.workspace",
    "tests.fixtures.server",
    "tests.fixtures.watcher",
]


@pytest.fixture
def storage_manager():
    """
    Provide a StorageManager on an in-memory database.

    Closes the connection after the test.
    """
    from filexplorer.storage import StorageManager

    storage = StorageManager(db_path=":memory:")
    yield storage
    storage.close()
