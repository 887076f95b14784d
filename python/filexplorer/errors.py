"""
Request-scoped exceptions.

Each carries the HTTP status the route layer answers with. Filesystem,
watcher and git failures are recovered where they happen and never reach
callers as these.
"""


class FilexplorerError(Exception):
    """Base class for errors reported back to API callers."""

    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class InvalidRequestError(FilexplorerError):
    """Malformed or missing request parameters."""

    status_code = 400


class NotAFileError(InvalidRequestError):
    """A file operation was requested on a directory or special file."""


class EntryNotFoundError(FilexplorerError):
    """The canonical path is not in the index (or vanished from disk)."""

    status_code = 404


class UnreadableFileError(FilexplorerError):
    """The file exists but this filesystem refuses to let us read it."""

    status_code = 403


class RequestSuperseded(FilexplorerError):
    """A newer request for the same resource replaced this one."""

    status_code = 409


class GitUnavailableError(Exception):
    """The git executable cannot be run in this process."""
