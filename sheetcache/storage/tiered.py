"""
Tiered Cache Storage

Decides whether a feed's serialized rows fit inline in the key-value store
or spill to a dedicated file referenced by a pointer record, and keeps the
two tiers consistent: exactly one cache entry per feed key.
"""

from __future__ import annotations

from pathlib import Path
from typing import Iterable, List, Optional

from . import (
    CacheEntryInfo,
    FileRecord,
    FileStore,
    InlineRecord,
    KeyValueStore,
    decode_record,
    deserialize_rows,
    encode_pointer,
    serialize_rows,
)
from ..config import StorageTier
from ..errors import PersistOutcome, PersistResult, QuotaExceededError, StorageError
from ..logging import Timer, get_logger
from ..parser import FeedRow

logger = get_logger(__name__)


class TieredStorage:
    """
    Size-aware two-tier cache storage.

    Payloads up to ``inline_max_bytes`` characters go inline; larger ones are
    written to ``files`` and the key-value entry holds a pointer. Feed keys in
    ``skip_keys`` are never persisted.
    """

    def __init__(
        self,
        kv: KeyValueStore,
        files: FileStore,
        inline_max_bytes: int = 1_500_000,
        key_prefix: str = "sheetcache:",
        skip_keys: Optional[Iterable[str]] = None
    ):
        """
        Initialize tiered storage.

        Args:
            kv: Key-value store for inline payloads and pointer records
            files: File store for oversized payloads
            inline_max_bytes: Largest payload kept inline
            key_prefix: Prefix of every key-value entry this engine manages
            skip_keys: Feed keys that must not be persisted locally
        """
        self.kv = kv
        self.files = files
        self.inline_max_bytes = inline_max_bytes
        self.key_prefix = key_prefix
        self.skip_keys = frozenset(skip_keys or ())

    def local_key(self, feed_key: str) -> str:
        return f"{self.key_prefix}{feed_key}"

    def feed_key_of(self, local_key: str) -> str:
        return local_key[len(self.key_prefix):]

    def skips(self, feed_key: str) -> bool:
        return feed_key in self.skip_keys

    async def persist(self, feed_key: str, rows: List[FeedRow]) -> PersistResult:
        """
        Store rows for a feed, fully replacing any previous entry.

        Never raises for storage failures; the outcome says whether the rows
        landed inline, in a file, or not at all.
        """
        if self.skips(feed_key):
            await self.remove(feed_key)
            logger.info("Skipping local persistence", feed_key=feed_key)
            return PersistResult(PersistOutcome.SKIPPED)

        local_key = self.local_key(feed_key)
        file_path = self.files.path_for(feed_key)
        serialized = serialize_rows(rows)
        size = len(serialized)

        if size <= self.inline_max_bytes:
            return await self._persist_inline(feed_key, local_key, file_path, serialized, len(rows))
        return await self._persist_file(feed_key, local_key, file_path, serialized, len(rows))

    async def _persist_inline(
        self,
        feed_key: str,
        local_key: str,
        file_path: Path,
        serialized: str,
        row_count: int
    ) -> PersistResult:
        size = len(serialized)
        try:
            await self.kv.set(local_key, serialized)
        except StorageError as e:
            # the previous entry must not outlive a failed replace
            await self._discard_key(local_key)
            await self._discard_file(file_path)
            outcome = (
                PersistOutcome.QUOTA_EXCEEDED
                if isinstance(e, QuotaExceededError)
                else PersistOutcome.FAILED
            )
            return PersistResult(outcome, size, str(e))

        await self._discard_file(file_path)
        logger.info(
            "Saved feed inline",
            feed_key=feed_key,
            rows=row_count,
            size_kb=round(size / 1024, 1)
        )
        return PersistResult(PersistOutcome.INLINE, size)

    async def _persist_file(
        self,
        feed_key: str,
        local_key: str,
        file_path: Path,
        serialized: str,
        row_count: int
    ) -> PersistResult:
        size = len(serialized)
        try:
            with Timer(logger, "write_file_cache", feed_key=feed_key, size=size):
                await self.files.ensure_dir()
                await self.files.write_text(file_path, serialized)
                await self.kv.set(local_key, encode_pointer(file_path))
        except StorageError as e:
            await self._discard_key(local_key)
            await self._discard_file(file_path)
            outcome = (
                PersistOutcome.QUOTA_EXCEEDED
                if isinstance(e, QuotaExceededError)
                else PersistOutcome.FAILED
            )
            return PersistResult(outcome, size, str(e))

        logger.info(
            "Saved feed to file cache",
            feed_key=feed_key,
            rows=row_count,
            size_kb=round(size / 1024, 1),
            path=str(file_path)
        )
        return PersistResult(PersistOutcome.FILE, size)

    async def load(self, feed_key: str) -> Optional[List[FeedRow]]:
        """
        Read a feed's cached rows.

        Returns:
            Rows, or None on a miss: absent entry, skipped feed, unreadable
            payload or a pointer to a missing file
        """
        if self.skips(feed_key):
            await self.remove(feed_key)
            return None

        local_key = self.local_key(feed_key)
        try:
            payload = await self.kv.get(local_key)
        except StorageError as e:
            logger.warning("Failed to read cache entry", feed_key=feed_key, error=str(e))
            return None

        if payload is None:
            return None

        record = decode_record(payload)
        if record is None:
            logger.warning("Unrecognized cache payload, treating as miss", feed_key=feed_key)
            return None

        if isinstance(record, InlineRecord):
            logger.debug("Loaded inline cache", feed_key=feed_key, rows=len(record.rows))
            return record.rows

        if isinstance(record, FileRecord):
            return await self._load_file(feed_key, record.path)

        raise TypeError(f"Unhandled cache record: {record!r}")

    async def _load_file(self, feed_key: str, path: Path) -> Optional[List[FeedRow]]:
        try:
            content = await self.files.read_text(path)
        except StorageError as e:
            logger.warning("Failed to read file cache", feed_key=feed_key, error=str(e))
            return None

        if content is None:
            logger.warning("File cache missing, treating as miss", feed_key=feed_key, path=str(path))
            return None

        rows = deserialize_rows(content)
        if rows is None:
            logger.warning("Corrupt file cache, treating as miss", feed_key=feed_key, path=str(path))
            return None

        logger.debug("Loaded file cache", feed_key=feed_key, rows=len(rows))
        return rows

    async def remove(self, feed_key: str) -> None:
        """Delete a feed's entry from both tiers."""
        local_key = self.local_key(feed_key)
        await self.remove_local_key(local_key)
        await self._discard_file(self.files.path_for(feed_key))

    async def remove_local_key(self, local_key: str) -> None:
        """Delete a key-value entry and the file its pointer references."""
        try:
            payload = await self.kv.get(local_key)
        except StorageError as e:
            logger.warning("Failed to inspect cache entry", key=local_key, error=str(e))
            payload = None

        if payload is not None:
            record = decode_record(payload)
            if isinstance(record, FileRecord):
                await self._discard_file(record.path)

        await self._discard_key(local_key)

    async def managed_keys(self) -> List[str]:
        """Key-value keys carrying this engine's prefix."""
        return await self.kv.keys(self.key_prefix)

    async def inspect(self, local_key: str, count_rows: bool = False) -> Optional[CacheEntryInfo]:
        """
        Describe one stored entry: tier, actual stored size, pointer path.

        Size is the stored string length for inline entries and the file size
        for file-backed ones (the pointer length if the file is gone).
        """
        payload = await self.kv.get(local_key)
        if payload is None:
            return None

        feed_key = self.feed_key_of(local_key)
        record = decode_record(payload)

        if isinstance(record, InlineRecord):
            return CacheEntryInfo(
                feed_key=feed_key,
                local_key=local_key,
                tier=StorageTier.INLINE,
                size_bytes=len(payload),
                row_count=len(record.rows) if count_rows else None,
            )

        if isinstance(record, FileRecord):
            file_size = await self.files.size(record.path)
            row_count = None
            if count_rows and file_size is not None:
                rows = await self._load_file(feed_key, record.path)
                row_count = len(rows) if rows is not None else None
            return CacheEntryInfo(
                feed_key=feed_key,
                local_key=local_key,
                tier=StorageTier.FILE,
                size_bytes=file_size if file_size is not None else len(payload),
                pointer_path=record.path,
                row_count=row_count,
            )

        return CacheEntryInfo(
            feed_key=feed_key,
            local_key=local_key,
            tier=None,
            size_bytes=len(payload),
        )

    async def clear(self) -> int:
        """Remove every managed key-value entry and reset the file directory."""
        keys = await self.managed_keys()
        for key in keys:
            await self._discard_key(key)
        await self.files.reset()
        return len(keys)

    async def _discard_key(self, local_key: str) -> None:
        try:
            await self.kv.delete(local_key)
        except StorageError as e:
            logger.warning("Failed to remove cache entry", key=local_key, error=str(e))

    async def _discard_file(self, path: Path) -> None:
        try:
            await self.files.delete(path)
        except StorageError as e:
            logger.warning("Failed to delete cache file", path=str(path), error=str(e))
