"""Exception hierarchy for couchdb_versioning.

- ``StoreConnectionError``: the store is unreachable or rejected our
  credentials.  Nothing can proceed without a client handle.
- ``StoreUnavailable``: an operation failed part way; nothing was written
  for it and the next run can retry.
- ``DocumentNotFound``: the store answered 404 for a document.
- ``BulkUpdateError``: a staged batch could not be submitted.
- ``TimestampWarning``: a timestamp entry could not be persisted.  Never
  raised by the engine itself; returned so the run can continue.
"""

from __future__ import annotations


class CouchVersioningError(Exception):
    """Base exception for couchdb_versioning."""


class StoreConnectionError(CouchVersioningError):
    """Raised when the document store cannot be reached or authentication fails."""


class StoreUnavailable(CouchVersioningError):
    """Raised when a store or filesystem operation fails."""


class DocumentNotFound(StoreUnavailable):
    """Raised when the store reports that a document does not exist."""


class BulkUpdateError(CouchVersioningError):
    """Raised when a staged batch cannot be streamed to ``_bulk_docs``."""


class TimestampWarning(CouchVersioningError):
    """A timestamp entry could not be written.

    Attributes:
        key: Document key whose entry was not persisted.
        path: File that could not be written.
    """

    def __init__(self, key: str, path: str, reason: str) -> None:
        super().__init__(f"Could not update {path}: {reason}")
        self.key = key
        self.path = path
        self.reason = reason
