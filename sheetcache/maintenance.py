"""
Cache Maintenance Utilities

Full wipe, keep-only-recent-feeds trim, oversize-entry eviction and entry
inspection. All of them act on the local cache only; freshness records are
left alone, so a trimmed feed is simply re-fetched on its next read.
"""

from __future__ import annotations

from typing import Iterable, List, Optional

from .errors import StorageError
from .logging import Timer, get_logger
from .memory import MemoryCache
from .storage import CacheEntryInfo
from .storage.tiered import TieredStorage

logger = get_logger(__name__)


def matches_keep_tokens(feed_key: str, keep_tokens: Iterable[str]) -> bool:
    """Whether a feed key contains any retained token (e.g. a year)."""
    return any(token and token in feed_key for token in keep_tokens)


class CacheMaintenance:
    """Destructive housekeeping over the entries a TieredStorage manages."""

    def __init__(self, storage: TieredStorage, memory: Optional[MemoryCache] = None):
        self.storage = storage
        self.memory = memory

    async def clear_all(self) -> int:
        """
        Remove every managed entry and recreate an empty file directory.

        Returns:
            Number of key-value entries removed
        """
        with Timer(logger, "clear_all"):
            removed = await self.storage.clear()
        if self.memory is not None:
            self.memory.reset()
        logger.info("Cleared cache entries and reset file cache directory", removed=removed)
        return removed

    async def trim_old(self, keep_tokens: Iterable[str]) -> List[str]:
        """
        Remove entries whose feed key contains none of the keep tokens.

        Args:
            keep_tokens: Tokens to retain, e.g. ``["2024", "2025"]``

        Returns:
            Feed keys removed
        """
        keep = [str(token) for token in keep_tokens]
        removed: List[str] = []

        for local_key in await self.storage.managed_keys():
            feed_key = self.storage.feed_key_of(local_key)
            if matches_keep_tokens(feed_key, keep):
                continue
            await self.storage.remove_local_key(local_key)
            self._forget(feed_key)
            removed.append(feed_key)

        if removed:
            logger.info("Removed outdated caches", removed=removed, keep=keep)
        else:
            logger.info("No outdated caches detected", keep=keep)
        return removed

    async def trim_large(self, max_bytes: int) -> List[str]:
        """
        Remove entries whose stored size exceeds max_bytes.

        Returns:
            Feed keys removed
        """
        removed: List[str] = []

        for info in await self.inspect_entries():
            if info.size_bytes <= max_bytes:
                continue
            await self.storage.remove_local_key(info.local_key)
            self._forget(info.feed_key)
            removed.append(info.feed_key)
            logger.info(
                "Removed oversize cache",
                feed_key=info.feed_key,
                size_kb=round(info.size_bytes / 1024, 1)
            )

        if not removed:
            logger.info("No caches exceeded threshold", max_kb=round(max_bytes / 1024))
        return removed

    async def inspect_entries(self, count_rows: bool = False) -> List[CacheEntryInfo]:
        """Describe every managed entry; unreadable ones are skipped with a warning."""
        entries: List[CacheEntryInfo] = []
        for local_key in await self.storage.managed_keys():
            try:
                info = await self.storage.inspect(local_key, count_rows=count_rows)
            except StorageError as e:
                logger.warning("Failed to inspect cache entry", key=local_key, error=str(e))
                continue
            if info is not None:
                entries.append(info)
        return entries

    def _forget(self, feed_key: str) -> None:
        if self.memory is not None:
            self.memory.invalidate(feed_key)
