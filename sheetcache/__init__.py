"""
Sheet Cache

Offline cache engine for spreadsheet CSV exports: parses delimiter-ambiguous
CSV into rows, stores them under a size-aware two-tier local strategy, and
governs validity with a shared, remotely tracked freshness timestamp.
"""

__version__ = "1.0.0"

from .config import (
    FeedConfig,
    FeedRegistry,
    FreshnessBackend,
    LogLevel,
    SheetCacheSettings,
    StorageTier,
    default_feed_registry,
    load_feed_registry,
)
from .errors import (
    FetchError,
    FreshnessError,
    QuotaExceededError,
    SheetCacheError,
    StorageError,
    UnknownFeedError,
)
from .freshness import FreshnessOracle, FreshnessRecord, FreshnessStore
from .freshness.local_store import InMemoryFreshnessStore, LocalFreshnessStore
from .maintenance import CacheMaintenance
from .memory import MemoryCache
from .orchestrator import CacheOrchestrator
from .parser import FeedRow, parse
from .projector import ColumnProjector
from .sources import FeedSource, HttpFeedSource
from .storage.local_storage import LocalFileStore, SQLiteKeyValueStore
from .storage.memory_storage import MemoryKeyValueStore
from .storage.tiered import TieredStorage

__all__ = [
    "FeedConfig",
    "FeedRegistry",
    "FreshnessBackend",
    "LogLevel",
    "SheetCacheSettings",
    "StorageTier",
    "default_feed_registry",
    "load_feed_registry",
    "FetchError",
    "FreshnessError",
    "QuotaExceededError",
    "SheetCacheError",
    "StorageError",
    "UnknownFeedError",
    "FreshnessOracle",
    "FreshnessRecord",
    "FreshnessStore",
    "InMemoryFreshnessStore",
    "LocalFreshnessStore",
    "CacheMaintenance",
    "MemoryCache",
    "CacheOrchestrator",
    "FeedRow",
    "parse",
    "ColumnProjector",
    "FeedSource",
    "HttpFeedSource",
    "LocalFileStore",
    "SQLiteKeyValueStore",
    "MemoryKeyValueStore",
    "TieredStorage",
]
