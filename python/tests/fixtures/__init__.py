"""
Pytest fixtures for filexplorer tests.

Fixtures are organized by test category:
- workspace.py: temporary trees and the index components built over them
- server.py: server_state wired up for routes and MCP tools
- watcher.py: fake watchdog observers
"""
