"""
Sheet Cache Configuration Module

Pydantic-based configuration management with environment variable overrides,
plus the explicit feed table (feed key -> URL, schema, persistence policy)
that drives the cache engine.
"""

from __future__ import annotations

import os
import re
from enum import Enum
from pathlib import Path
from typing import Dict, Iterable, List, Optional

import yaml
from pydantic import BaseModel, Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .errors import UnknownFeedError


class LogLevel(str, Enum):
    """Supported log levels for structured logging."""

    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class StorageTier(str, Enum):
    """Physical storage a cache entry's payload lives in."""

    INLINE = "inline"
    FILE = "file"


class FreshnessBackend(str, Enum):
    """Supported backends for the shared freshness records."""

    LOCAL = "local"
    AZURE_BLOB = "azure-blob"


class SheetCacheSettings(BaseSettings):
    """
    Main configuration class for the sheet cache engine.

    Supports environment variable overrides with the SHEETCACHE_ prefix.
    """

    model_config = SettingsConfigDict(
        env_prefix="SHEETCACHE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        case_sensitive=False,
    )

    # Logging Configuration
    log_level: LogLevel = Field(
        default=LogLevel.INFO,
        description="Logging level for structured logs"
    )

    # Cache Validity
    ttl_hours: float = Field(
        default=24.0,
        gt=0,
        description="Hours after which a freshness record is considered stale"
    )

    # Storage Tier Configuration
    inline_max_bytes: int = Field(
        default=1_500_000,
        ge=1,
        description="Largest serialized payload stored directly in the key-value store"
    )

    key_prefix: str = Field(
        default="sheetcache:",
        min_length=1,
        description="Prefix of every key-value entry managed by the engine"
    )

    cache_root: Path = Field(
        default=Path("./.sheetcache"),
        description="Root directory for the local key-value store, file tier and manifest"
    )

    kv_max_bytes: Optional[int] = Field(
        default=None,
        ge=4096,
        description="Optional size budget of the local key-value store"
    )

    # Maintenance Defaults
    trim_max_bytes: int = Field(
        default=1_000_000,
        ge=1,
        description="Default threshold for trimming oversized cache entries"
    )

    keep_tokens: List[str] = Field(
        default_factory=lambda: ["2024", "2025"],
        description="Default feed key tokens retained by trim-by-recency"
    )

    # Freshness Store Configuration
    freshness_backend: FreshnessBackend = Field(
        default=FreshnessBackend.LOCAL,
        description="Backend holding the shared freshness records"
    )

    azure_storage_account: Optional[str] = Field(
        default=None,
        description="Azure Storage Account name"
    )

    azure_container_name: str = Field(
        default="sheets-cache",
        description="Azure Blob Storage container for freshness records"
    )

    # Network / Concurrency
    http_timeout_seconds: Optional[float] = Field(
        default=None,
        gt=0,
        description="Timeout for feed downloads; None keeps the client default"
    )

    max_concurrency: int = Field(
        default=5,
        ge=1,
        le=20,
        description="Maximum number of feeds fetched concurrently by get_all_sheets"
    )

    dedupe_inflight: bool = Field(
        default=False,
        description="Share one in-flight fetch between concurrent callers of the same feed"
    )

    memory_cache: bool = Field(
        default=False,
        description="Keep served rows in a first-level in-process cache"
    )

    feeds_file: Optional[Path] = Field(
        default=None,
        description="YAML file with the feed table; built-in feeds when unset"
    )

    @field_validator("cache_root", "feeds_file")
    @classmethod
    def validate_paths(cls, v: Optional[Path]) -> Optional[Path]:
        """Ensure paths are absolute and expanded."""
        if v is None:
            return v
        return Path(v).expanduser().resolve()

    @model_validator(mode="after")
    def validate_azure_config(self) -> "SheetCacheSettings":
        """Validate Azure configuration when using the azure-blob backend."""
        if self.freshness_backend == FreshnessBackend.AZURE_BLOB and not self.azure_storage_account:
            raise ValueError(
                "azure_storage_account is required when using azure-blob freshness backend"
            )
        return self

    @property
    def kv_path(self) -> Path:
        return self.cache_root / "kv.sqlite3"

    @property
    def file_cache_dir(self) -> Path:
        return self.cache_root / "files"

    @property
    def manifest_path(self) -> Path:
        return self.cache_root / "freshness.json"


# Column headers each declared feed schema retains, in output order.
SCHEMAS: Dict[str, List[str]] = {
    "sales": ["Payer", "Name Payer", "Sales revenue", "Billing Date"],
    "orders": ["Bill-To Party", "Name bill-to", "Gross value", "Document Date"],
    "balance": ["Customer", "Name", "Balance"],
}


class FeedConfig(BaseModel):
    """
    Model for one remote tabular feed.

    A feed with neither a schema nor explicit columns passes through unprojected.
    """

    feed_key: str = Field(
        ...,
        min_length=1,
        description="Stable identifier joining URL, local key and freshness record"
    )

    url: str = Field(
        ...,
        min_length=1,
        description="CSV export URL of the feed"
    )

    schema_name: Optional[str] = Field(
        default=None,
        description="Name of a declared schema in SCHEMAS"
    )

    projected_columns: Optional[List[str]] = Field(
        default=None,
        description="Explicit ordered column list; overrides schema_name"
    )

    skip_local_persistence: bool = Field(
        default=False,
        description="Never persist locally; every read goes to the network"
    )

    ttl_hours: Optional[float] = Field(
        default=None,
        gt=0,
        description="Per-feed TTL override; the global TTL applies when unset"
    )

    @field_validator("feed_key")
    @classmethod
    def validate_feed_key(cls, v: str) -> str:
        return v.strip()

    @field_validator("schema_name")
    @classmethod
    def validate_schema_name(cls, v: Optional[str]) -> Optional[str]:
        if v is not None and v not in SCHEMAS:
            raise ValueError(f"Unknown schema '{v}', expected one of {sorted(SCHEMAS)}")
        return v

    @property
    def columns(self) -> Optional[List[str]]:
        """Ordered headers retained by projection, or None for pass-through."""
        if self.projected_columns is not None:
            return list(self.projected_columns)
        if self.schema_name is not None:
            return list(SCHEMAS[self.schema_name])
        return None


class FeedRegistry:
    """Explicit table of every feed known to the engine, keyed by feed key."""

    def __init__(self, feeds: Iterable[FeedConfig]):
        self._feeds: Dict[str, FeedConfig] = {}
        for feed in feeds:
            if feed.feed_key in self._feeds:
                raise ValueError(f"Duplicate feed key: {feed.feed_key}")
            self._feeds[feed.feed_key] = feed

    def __contains__(self, feed_key: object) -> bool:
        return feed_key in self._feeds

    def __iter__(self):
        return iter(self._feeds.values())

    def __len__(self) -> int:
        return len(self._feeds)

    def keys(self) -> List[str]:
        return list(self._feeds)

    def get(self, feed_key: str) -> FeedConfig:
        """Look up a feed, raising UnknownFeedError for unconfigured keys."""
        try:
            return self._feeds[feed_key]
        except KeyError:
            raise UnknownFeedError(feed_key) from None

    def columns_for(self, feed_key: str) -> Optional[List[str]]:
        feed = self._feeds.get(feed_key)
        return feed.columns if feed else None

    def schema_table(self) -> Dict[str, Optional[List[str]]]:
        """Feed key -> projected columns, as consumed by the column projector."""
        return {key: feed.columns for key, feed in self._feeds.items()}

    def resolve_keys(
        self,
        include: Optional[Iterable[str]] = None,
        exclude: Optional[Iterable[str]] = None
    ) -> List[str]:
        """
        Select feed keys for a batch operation.

        Args:
            include: Keys to select, in order; unknown keys are ignored
            exclude: Keys to drop from the selection

        Returns:
            Ordered list of known feed keys
        """
        if include is not None:
            keys = [key for key in include if key in self._feeds]
        else:
            keys = list(self._feeds)

        if exclude:
            excluded = set(exclude)
            keys = [key for key in keys if key not in excluded]

        return keys


_ENV_PATTERN = re.compile(r"\$\{([^}]+)\}")


def _substitute_env(value: str) -> str:
    """Replace ${ENV_VAR} placeholders, leaving unknown variables untouched."""
    return _ENV_PATTERN.sub(lambda m: os.environ.get(m.group(1), m.group(0)), value)


def load_feed_registry(feeds_file: Path) -> FeedRegistry:
    """
    Load the feed table from a YAML file.

    Expected layout::

        feeds:
          sales2025:
            url: https://...
            schema: sales
          balance2025:
            url: ${BALANCE_URL}
            schema: balance
            skip_local_persistence: true

    Raises:
        FileNotFoundError: If the file doesn't exist
        ValueError: If the file has no feeds mapping
    """
    feeds_file = Path(feeds_file)
    if not feeds_file.exists():
        raise FileNotFoundError(f"Feeds file not found: {feeds_file}")

    with open(feeds_file, "r", encoding="utf-8") as f:
        document = yaml.safe_load(f) or {}

    entries = document.get("feeds")
    if not isinstance(entries, dict) or not entries:
        raise ValueError(f"No 'feeds' mapping found in {feeds_file}")

    feeds = []
    for feed_key, entry in entries.items():
        entry = dict(entry or {})
        if "schema" in entry:
            entry["schema_name"] = entry.pop("schema")
        if "columns" in entry:
            entry["projected_columns"] = entry.pop("columns")
        entry["url"] = _substitute_env(str(entry.get("url", "")))
        feeds.append(FeedConfig(feed_key=str(feed_key), **entry))

    return FeedRegistry(feeds)


_PUB = "https://docs.google.com/spreadsheets/d/e/{doc}/pub?gid={gid}&single=true&output=csv"
_DOC_2025 = "2PACX-1vTG9rEF1fDFT7Z4M4Q7ejMGFmLtbS3gsORfFOP19ESNV00TticfgHxfnmvPOd28Nm23783aXLafj-TL"
_DOC_2024 = "2PACX-1vT6ovPvxxcXY5Ufs1-xUGnubbpASr0NqQNZwAcmX3Qp-zs9tkgCe3vKQlSdP-4P5nX_U_YoTlKSYUbf"


def default_feed_registry() -> FeedRegistry:
    """Built-in feed table used when no feeds file is configured."""
    return FeedRegistry([
        FeedConfig(
            feed_key="sales2025",
            url=_PUB.format(doc=_DOC_2025, gid=616087206),
            schema_name="sales",
        ),
        FeedConfig(
            feed_key="orders2025",
            url=_PUB.format(doc=_DOC_2025, gid=724538995),
            schema_name="orders",
        ),
        FeedConfig(
            feed_key="balance2025",
            url=_PUB.format(doc=_DOC_2025, gid=440325138),
            schema_name="balance",
            skip_local_persistence=True,
        ),
        FeedConfig(
            feed_key="sales2024",
            url=_PUB.format(doc=_DOC_2024, gid=466675476),
            schema_name="sales",
        ),
        FeedConfig(
            feed_key="orders2024",
            url=_PUB.format(doc=_DOC_2024, gid=729827210),
            schema_name="orders",
        ),
    ])


def build_feed_registry(app_settings: SheetCacheSettings) -> FeedRegistry:
    """Feed table from the configured YAML file, or the built-in one."""
    if app_settings.feeds_file is not None:
        return load_feed_registry(app_settings.feeds_file)
    return default_feed_registry()


# Global settings instance
settings = SheetCacheSettings()
