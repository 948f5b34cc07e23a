"""Error taxonomy for the review engine.

Rate limits, transport failures and validation errors reach the caller.
Storage problems are absorbed by the stores where a safe default exists.
"""

from __future__ import annotations

from typing import Optional


class ReviewEngineError(Exception):
    """Base class for all engine errors."""


class ValidationError(ReviewEngineError):
    """Bad input, rejected before any state was mutated."""


class RateLimited(ReviewEngineError):
    """A credential hit its rate limit mid-stream.

    Recoverable by starting a fresh run with another credential.
    """

    def __init__(
        self,
        message: str = "Rate limited",
        credential_id: Optional[str] = None,
        until: Optional[int] = None,
        retry_after_seconds: Optional[float] = None,
    ):
        super().__init__(message)
        self.credential_id = credential_id
        self.until = until
        self.retry_after_seconds = retry_after_seconds


class TransportFailure(ReviewEngineError):
    """The backend was unreachable or failed mid-stream."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class StorageFailure(ReviewEngineError):
    """Persisting to local storage failed."""

    def __init__(self, message: str, review=None):
        super().__init__(message)
        # Set by HistoryStore.save so callers keep the entry they built
        self.review = review


class StorageQuotaExceeded(StorageFailure):
    """The storage namespace is over its byte quota."""


class CorruptPersistedData(StorageFailure):
    """A stored value could not be deserialized."""
