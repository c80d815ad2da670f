"""
Cache Orchestrator

Read path of the cache engine: serve a feed from the local cache while its
freshness record is valid, otherwise fetch, parse, project, persist and
stamp it. This is the single place deciding which failures reach callers:
fetch errors propagate, storage and metadata failures are logged and
absorbed, and unreadable local data is simply a miss.
"""

from __future__ import annotations

import asyncio
from typing import Dict, Iterable, List, Optional

from .config import FeedRegistry
from .errors import MetadataOutcome, PersistOutcome, PersistResult
from .freshness import FreshnessOracle
from .logging import Timer, get_logger
from .memory import MemoryCache
from .parser import FeedRow, parse
from .projector import ColumnProjector
from .sources import FeedSource
from .storage.tiered import TieredStorage

logger = get_logger(__name__)


class CacheOrchestrator:
    """
    Coordinates freshness checks, local storage and network fetches.

    Concurrent requests for the same stale feed each fetch independently
    unless ``dedupe_inflight`` is set, in which case they share one fetch.
    """

    def __init__(
        self,
        registry: FeedRegistry,
        storage: TieredStorage,
        oracle: FreshnessOracle,
        source: FeedSource,
        projector: Optional[ColumnProjector] = None,
        memory: Optional[MemoryCache] = None,
        dedupe_inflight: bool = False,
        max_concurrency: int = 5
    ):
        """
        Initialize the orchestrator.

        Args:
            registry: Feed table (URLs, schemas, persistence policy)
            storage: Two-tier local storage
            oracle: Freshness oracle over the shared record store
            source: Remote feed source
            projector: Column projector (built from the registry if None)
            memory: Optional first-level in-process cache
            dedupe_inflight: Share one fetch between concurrent same-key callers
            max_concurrency: Maximum feeds fetched at once by get_all_sheets
        """
        self.registry = registry
        self.storage = storage
        self.oracle = oracle
        self.source = source
        self.projector = projector or ColumnProjector(registry.schema_table())
        self.memory = memory
        self.dedupe_inflight = dedupe_inflight
        self.max_concurrency = max_concurrency
        self._inflight: Dict[str, asyncio.Future] = {}

    async def get_sheet(self, feed_key: str, url: Optional[str] = None) -> List[FeedRow]:
        """
        Rows of one feed, from cache when valid, otherwise from the network.

        Args:
            feed_key: Feed to read
            url: Export URL; looked up in the feed table when omitted

        Returns:
            Feed rows

        Raises:
            UnknownFeedError: If no URL is given and the key is not configured
            FetchError: If a required network fetch fails
        """
        if url is None:
            url = self.registry.get(feed_key).url

        if self.memory is not None:
            rows = self.memory.get(feed_key, self.oracle.ttl_for(feed_key))
            if rows is not None:
                logger.debug("Using in-memory cache", feed_key=feed_key, rows=len(rows))
                return rows

        if await self.oracle.is_valid(feed_key):
            rows = await self.storage.load(feed_key)
            if rows is not None:
                logger.info("Using local cache", feed_key=feed_key, rows=len(rows))
                self._remember(feed_key, rows)
                return rows
            logger.info("Freshness record valid but local cache missing", feed_key=feed_key)
        else:
            logger.info("Cache stale or missing", feed_key=feed_key)

        return await self._fetch(feed_key, url)

    async def get_sheet_by_key(self, feed_key: str) -> List[FeedRow]:
        """Same as get_sheet, rejecting keys missing from the feed table."""
        return await self.get_sheet(feed_key, self.registry.get(feed_key).url)

    async def get_all_sheets(
        self,
        feed_keys: Optional[Iterable[str]] = None,
        exclude: Optional[Iterable[str]] = None
    ) -> Dict[str, List[FeedRow]]:
        """
        Read several feeds concurrently.

        The first failure propagates and the remaining reads are cancelled.

        Args:
            feed_keys: Feeds to read (every configured feed if None)
            exclude: Feeds to leave out

        Returns:
            Mapping of feed key to rows, in feed key order
        """
        keys = self.registry.resolve_keys(feed_keys, exclude)
        semaphore = asyncio.Semaphore(self.max_concurrency)

        async def read(feed_key: str) -> List[FeedRow]:
            async with semaphore:
                return await self.get_sheet(feed_key)

        tasks = [asyncio.ensure_future(read(key)) for key in keys]
        try:
            results = await asyncio.gather(*tasks)
        except BaseException:
            for task in tasks:
                task.cancel()
            raise

        return dict(zip(keys, results))

    async def refresh_all(
        self,
        feed_keys: Optional[Iterable[str]] = None,
        exclude: Optional[Iterable[str]] = None
    ) -> Dict[str, int]:
        """
        Re-fetch feeds one after another, ignoring cache validity.

        Returns:
            Mapping of feed key to refreshed row count

        Raises:
            FetchError: On the first feed that fails to download
        """
        keys = self.registry.resolve_keys(feed_keys, exclude)
        counts: Dict[str, int] = {}

        for key in keys:
            logger.info("Refreshing feed", feed_key=key)
            rows = await self._fetch(key, self.registry.get(key).url)
            counts[key] = len(rows)

        logger.info("Refresh complete", feeds=len(keys))
        return counts

    async def _fetch(self, feed_key: str, url: str) -> List[FeedRow]:
        if not self.dedupe_inflight:
            return await self._fetch_and_store(feed_key, url)

        future = self._inflight.get(feed_key)
        if future is None:
            future = asyncio.ensure_future(self._fetch_and_store(feed_key, url))
            self._inflight[feed_key] = future
            future.add_done_callback(lambda done, key=feed_key: self._forget_inflight(key, done))
        else:
            logger.debug("Joining in-flight fetch", feed_key=feed_key)

        rows = await asyncio.shield(future)
        return [dict(row) for row in rows]

    def _forget_inflight(self, feed_key: str, future: asyncio.Future) -> None:
        if self._inflight.get(feed_key) is future:
            del self._inflight[feed_key]

    async def _fetch_and_store(self, feed_key: str, url: str) -> List[FeedRow]:
        with Timer(logger, "fetch_feed", feed_key=feed_key):
            text = await self.source.fetch_text(feed_key, url)

        rows = self.projector.project(feed_key, parse(text))

        persisted = await self.storage.persist(feed_key, rows)
        self._report_persist(feed_key, persisted)

        if await self.oracle.mark_fetched(feed_key, len(rows)) is MetadataOutcome.FAILED:
            logger.warning("Freshness metadata not updated; feed will be re-fetched", feed_key=feed_key)

        if persisted.outcome is not PersistOutcome.SKIPPED:
            self._remember(feed_key, rows)

        logger.info(
            "Fetched fresh data",
            feed_key=feed_key,
            rows=len(rows),
            tier=persisted.outcome.value
        )
        return rows

    def _report_persist(self, feed_key: str, result: PersistResult) -> None:
        if result.outcome is PersistOutcome.QUOTA_EXCEEDED:
            logger.warning(
                "Local store full; serving rows without caching them",
                feed_key=feed_key,
                size_bytes=result.size_bytes,
                error=result.error
            )
        elif result.outcome is PersistOutcome.FAILED:
            logger.warning(
                "Failed to persist feed; serving rows without caching them",
                feed_key=feed_key,
                size_bytes=result.size_bytes,
                error=result.error
            )

    def _remember(self, feed_key: str, rows: List[FeedRow]) -> None:
        if self.memory is not None and not self.storage.skips(feed_key):
            self.memory.put(feed_key, rows)
