"""Error kinds raised by the storage layer."""

from __future__ import annotations


class StorageError(Exception):
    """Base class for all storage errors."""


class StorageUnavailable(StorageError):
    """The storage medium could not be opened or initialized."""


class Unauthenticated(StorageError):
    """A user-scoped operation was attempted with no signed-in user."""


class NotFound(StorageError):
    """No memo exists with the given id."""

    def __init__(self, memo_id: object) -> None:
        super().__init__(f"Memo not found: {memo_id!r}")
        self.memo_id = memo_id


class ValidationRejected(StorageError, ValueError):
    """A memo field violates the storage constraints."""
