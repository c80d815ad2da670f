"""
Sheet Cache Storage Module

Abstraction layer for the two local stores the cache engine writes to: a
string key-value store with a practical size budget, and a file store for
payloads too large for it. Also defines the record shapes stored under a
feed's key-value entry.
"""

from __future__ import annotations

import json
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Union

from ..config import StorageTier
from ..parser import FeedRow


class KeyValueStore(ABC):
    """
    Abstract base class for string-keyed, string-valued stores.

    Implementations raise QuotaExceededError when a write does not fit the
    store's size budget and StorageError for any other failure.
    """

    name: str = "kv"

    @abstractmethod
    async def get(self, key: str) -> Optional[str]:
        """Return the stored value, or None if the key is absent."""

    @abstractmethod
    async def set(self, key: str, value: str) -> None:
        """Store a value, replacing any previous one."""

    @abstractmethod
    async def delete(self, key: str) -> None:
        """Remove a key; absent keys are ignored."""

    @abstractmethod
    async def keys(self, prefix: str = "") -> List[str]:
        """List keys starting with the prefix."""


class FileStore(ABC):
    """Abstract base class for the path-addressed store of oversized payloads."""

    name: str = "file"

    @abstractmethod
    def path_for(self, feed_key: str) -> Path:
        """Dedicated payload path of a feed key."""

    @abstractmethod
    async def ensure_dir(self) -> None:
        """Create the cache directory if needed."""

    @abstractmethod
    async def exists(self, path: Path) -> bool:
        ...

    @abstractmethod
    async def read_text(self, path: Path) -> Optional[str]:
        """Return the file content, or None if the file is missing."""

    @abstractmethod
    async def write_text(self, path: Path, text: str) -> None:
        ...

    @abstractmethod
    async def delete(self, path: Path) -> None:
        """Remove a file; missing files are ignored."""

    @abstractmethod
    async def size(self, path: Path) -> Optional[int]:
        """File size in bytes, or None if the file is missing."""

    @abstractmethod
    async def reset(self) -> None:
        """Delete the whole cache directory and recreate it empty."""


@dataclass(frozen=True)
class InlineRecord:
    """Rows stored directly under the feed's key-value entry."""

    rows: List[FeedRow]
    tier: StorageTier = StorageTier.INLINE


@dataclass(frozen=True)
class FileRecord:
    """Pointer to a file holding the serialized rows."""

    path: Path
    tier: StorageTier = StorageTier.FILE


CacheRecord = Union[InlineRecord, FileRecord]

FILE_POINTER_TYPE = "file"


def serialize_rows(rows: List[FeedRow]) -> str:
    """Compact JSON text of the rows; its length is the payload size."""
    return json.dumps(rows, ensure_ascii=False, separators=(",", ":"))


def deserialize_rows(payload: str) -> Optional[List[FeedRow]]:
    """Parse serialized rows, or None if the payload is not a row array."""
    try:
        parsed = json.loads(payload)
    except (TypeError, ValueError):
        return None
    return parsed if _is_row_array(parsed) else None


def encode_pointer(path: Path) -> str:
    return json.dumps({"type": FILE_POINTER_TYPE, "path": str(path)}, separators=(",", ":"))


def decode_record(payload: str) -> Optional[CacheRecord]:
    """
    Resolve a stored key-value payload into its record variant.

    Returns:
        InlineRecord for a row array, FileRecord for a file pointer,
        None for anything unrecognized
    """
    try:
        parsed = json.loads(payload)
    except (TypeError, ValueError):
        return None

    if _is_row_array(parsed):
        return InlineRecord(rows=parsed)

    if (
        isinstance(parsed, dict)
        and parsed.get("type") == FILE_POINTER_TYPE
        and isinstance(parsed.get("path"), str)
        and parsed["path"]
    ):
        return FileRecord(path=Path(parsed["path"]))

    return None


def _is_row_array(value: object) -> bool:
    return isinstance(value, list) and all(isinstance(item, dict) for item in value)


@dataclass(frozen=True)
class CacheEntryInfo:
    """Inspection result for one managed cache entry."""

    feed_key: str
    local_key: str
    tier: Optional[StorageTier]
    size_bytes: int
    pointer_path: Optional[Path] = None
    row_count: Optional[int] = None
