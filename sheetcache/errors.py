"""
Sheet Cache Errors

Exception hierarchy plus the explicit outcome kinds returned by the storage
and freshness layers. Only the orchestrator decides which of these surface to
callers; everything below it reports outcomes instead of swallowing errors.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional


class SheetCacheError(Exception):
    """Base class for every error raised by the cache engine."""

    def __init__(self, message: str, operation: Optional[str] = None):
        self.message = message
        self.operation = operation
        super().__init__(message + (f" during {operation}" if operation else ""))


class UnknownFeedError(SheetCacheError):
    """Raised when a feed key has no entry in the feed table."""

    def __init__(self, feed_key: str):
        self.feed_key = feed_key
        super().__init__(f"Unknown feed key: {feed_key}")


class FetchError(SheetCacheError):
    """Exception raised when downloading a feed fails (network or non-2xx)."""

    def __init__(
        self,
        message: str,
        feed_key: Optional[str] = None,
        status_code: Optional[int] = None
    ):
        self.feed_key = feed_key
        self.status_code = status_code
        super().__init__(
            (f"[{feed_key}] " if feed_key else "") + message,
            operation="fetch",
        )


class StorageError(SheetCacheError):
    """Exception raised when storage operations fail."""

    def __init__(self, message: str, backend: str, operation: Optional[str] = None):
        self.backend = backend
        super().__init__(f"[{backend}] {message}", operation)


class QuotaExceededError(StorageError):
    """The key-value store rejected a write because its size budget is exhausted."""


class FreshnessError(StorageError):
    """Reading or writing a freshness record failed."""


class PersistOutcome(str, Enum):
    """What happened to a persist request."""

    INLINE = "inline"
    FILE = "file"
    SKIPPED = "skipped"
    QUOTA_EXCEEDED = "quota_exceeded"
    FAILED = "failed"


@dataclass(frozen=True)
class PersistResult:
    outcome: PersistOutcome
    size_bytes: int = 0
    error: Optional[str] = None

    @property
    def durable(self) -> bool:
        """True when the rows landed in either tier."""
        return self.outcome in (PersistOutcome.INLINE, PersistOutcome.FILE)


class MetadataOutcome(str, Enum):
    """What happened to a freshness record write."""

    WRITTEN = "written"
    FAILED = "failed"
