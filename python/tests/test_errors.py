"""
Tests for the request error hierarchy.
"""

from filexplorer.errors import (
    EntryNotFoundError,
    FilexplorerError,
    InvalidRequestError,
    NotAFileError,
    RequestSuperseded,
    UnreadableFileError,
)


def test_status_codes():
    assert InvalidRequestError("x").status_code == 400
    assert NotAFileError("x").status_code == 400
    assert EntryNotFoundError("x").status_code == 404
    assert UnreadableFileError("x").status_code == 403
    assert RequestSuperseded("x").status_code == 409
    assert FilexplorerError("x").status_code == 500


def test_not_a_file_is_an_invalid_request():
    """Callers catching InvalidRequestError also see NotAFileError."""
    assert isinstance(NotAFileError("dir"), InvalidRequestError)


def test_message_is_kept():
    error = EntryNotFoundError("Entry not found: src")
    assert error.message == "Entry not found: src"
    assert str(error) == "Entry not found: src"
