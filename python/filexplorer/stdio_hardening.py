"""
Stdio hardening for MCP over stdio.

stdout carries JSON-RPC frames; anything else written there breaks the
client. File names are arbitrary unicode, so both streams are forced to
UTF-8 before the server starts.
"""

import functools
import io
import os
import sys
from typing import Callable, TypeVar

F = TypeVar("F", bound=Callable)


def ensure_utf8_encoding() -> None:
    """Re-wrap stdout/stderr as UTF-8 unless they already are."""
    for name in ("stdout", "stderr"):
        stream = getattr(sys, name)
        if hasattr(stream, "buffer") and (stream.encoding or "").lower() != "utf-8":
            setattr(
                sys,
                name,
                io.TextIOWrapper(
                    stream.buffer,
                    encoding="utf-8",
                    errors="backslashreplace",
                    line_buffering=stream.line_buffering,
                ),
            )


def handle_broken_pipe(func: F) -> F:
    """
    Exit quietly with status 0 when the MCP client hangs up.

    Usage:
        @handle_broken_pipe
        def main():
            mcp.run()
    """

    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except BrokenPipeError:
            try:
                sys.stderr.write("Client disconnected. Shutting down.\n")
                sys.stderr.flush()
            except OSError:
                pass  # stderr went with the pipe
            sys.exit(0)

    return wrapper  # type: ignore


def harden_stdio() -> None:
    """Call at the very start of the stdio entry point."""
    os.environ.setdefault("PYTHONIOENCODING", "utf-8")
    os.environ.setdefault("PYTHONUTF8", "1")
    ensure_utf8_encoding()
