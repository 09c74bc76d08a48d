"""Signature cache error taxonomy.

Every failure surfaced by the cache carries a stable ``code`` that the HTTP
layer maps to a status. None of these are retried above the repository.
"""

from __future__ import annotations

from enum import StrEnum


class CacheErrorCode(StrEnum):
    NOT_FOUND = "NOT_FOUND"
    FORBIDDEN = "FORBIDDEN"
    QUOTA_EXCEEDED = "QUOTA_EXCEEDED"
    TRANSIENT_STORE_ERROR = "TRANSIENT_STORE_ERROR"
    CONSTRAINT_VIOLATION = "CONSTRAINT_VIOLATION"


class SignatureCacheError(Exception):
    """Base class for signature cache failures."""

    code: CacheErrorCode

    def __init__(self, message: str, *, signature: str | None = None) -> None:
        self.signature = signature
        super().__init__(message)


class EntryNotFound(SignatureCacheError):
    code = CacheErrorCode.NOT_FOUND


class OwnershipConflict(SignatureCacheError):
    """The entry belongs to another caller (including lost claim races)."""

    code = CacheErrorCode.FORBIDDEN


class QuotaExceeded(SignatureCacheError):
    code = CacheErrorCode.QUOTA_EXCEEDED

    def __init__(self, limit: int, *, signature: str | None = None) -> None:
        self.limit = limit
        super().__init__(
            f"Maximum {limit} saved insights allowed",
            signature=signature,
        )


class TransientStoreError(SignatureCacheError):
    """Store timeout or connectivity failure that outlived the retry budget."""

    code = CacheErrorCode.TRANSIENT_STORE_ERROR


class ConstraintViolation(SignatureCacheError):
    code = CacheErrorCode.CONSTRAINT_VIOLATION
