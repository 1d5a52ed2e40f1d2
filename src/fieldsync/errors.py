"""Error taxonomy for the outbox.

    ValidationError       bad producer input; raised before anything is stored
    StorageError          the local store is unusable; never swallowed
    SubmissionError       one remote submission failed; recorded on the event
    SchemaMigrationWarning  a migration could not be applied; startup continues
"""
from typing import Any, Optional


class FieldSyncError(Exception):
    """Base class for fieldsync errors."""


class ValidationError(FieldSyncError, ValueError):
    """Raised when a producer hands the recorder an incomplete or malformed action."""


class StorageError(FieldSyncError):
    """Raised when the local outbox store cannot be read or written."""


class SubmissionError(FieldSyncError):
    """Raised by the ingest client when one event could not be delivered."""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        body: Any = None,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class SchemaMigrationWarning(UserWarning):
    """Emitted when a schema migration fails; the store keeps its previous schema."""
