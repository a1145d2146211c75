"""
Exception types for the sync system.

Convention:
- ``PreconditionError`` aborts a run before anything is fetched (exit 1).
- ``FetchError`` aborts one endpoint; the run moves on to the next one.
- ``ItemSyncError`` fails one item; the batch moves on to the next item.
- ``AlreadyRunning`` is not a failure at all: another run holds the lock.
"""

from typing import Optional


class SyncError(Exception):
    """Base class for all sync errors."""


class ConfigError(ValueError):
    """A required setting is missing or invalid."""


class PreconditionError(SyncError):
    """The run cannot start (missing credential, binary, or connectivity)."""


class AlreadyRunning(SyncError):
    """Another live process holds the run lock."""

    def __init__(self, pid: int):
        self.pid = pid
        super().__init__(f"Already running (PID: {pid})")


class FetchError(SyncError):
    """
    A remote request failed.

    ``status_code`` is kept for diagnostics when the failure was an HTTP
    response; it is None for transport errors and validation failures.
    """

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(message)

    def __str__(self) -> str:
        message = super().__str__()
        if self.status_code is not None:
            return f"{message} (HTTP: {self.status_code})"
        return message


class MalformedPageError(FetchError):
    """A response page is not well-formed JSON of the expected shape."""


class DuplicateItemError(FetchError):
    """The same identifier appeared twice within one fetch pass."""


class PageLimitExceeded(FetchError):
    """Pagination did not terminate within the configured page limit."""


class ItemSyncError(SyncError):
    """Syncing a single item failed."""

    def __init__(self, identifier: str, message: str):
        self.identifier = identifier
        super().__init__(f"{identifier}: {message}")


class MergeConflictError(ItemSyncError):
    """A mirror could not be fast-forwarded to its upstream."""


class ArchiveWriteError(ItemSyncError):
    """Writing or validating an archive record failed."""
