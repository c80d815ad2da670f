"""
Freshness Oracle

Shared per-feed records of when a feed was last fetched, and the TTL rule
deciding whether a locally cached copy may be served without a re-fetch.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any, Callable, Mapping, Optional

from pydantic import BaseModel, Field

from ..errors import FreshnessError, MetadataOutcome
from ..logging import get_logger

logger = get_logger(__name__)

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def coerce_row_count(value: Any, feed_key: str) -> int:
    """Row count from a stored record; unreadable values count as 0."""
    if value is None or value == "":
        return 0
    try:
        return max(int(value), 0)
    except (TypeError, ValueError, OverflowError):
        logger.warning("Invalid row count in freshness record", feed_key=feed_key, value=value)
        return 0


class FreshnessRecord(BaseModel):
    """Remote metadata of the last successful fetch of a feed."""

    feed_key: str = Field(
        ...,
        description="Feed the record belongs to"
    )

    last_fetched_at: Optional[datetime] = Field(
        default=None,
        description="Server-assigned time of the last fetch"
    )

    row_count: int = Field(
        default=0,
        ge=0,
        description="Rows produced by the last fetch"
    )


class FreshnessStore(ABC):
    """
    Abstract base class for the shared record store.

    The store, not the caller, assigns ``last_fetched_at`` on upsert.
    Implementations raise FreshnessError on failure.
    """

    @abstractmethod
    async def get(self, feed_key: str) -> Optional[FreshnessRecord]:
        """Current record of a feed, or None if it was never fetched."""

    @abstractmethod
    async def upsert(self, feed_key: str, row_count: int) -> FreshnessRecord:
        """Write a record stamped with the store's current time."""


class FreshnessOracle:
    """
    TTL-based validity check over a FreshnessStore.

    A feed is valid iff its record exists, carries a timestamp, and is younger
    than the feed's TTL (the global default unless overridden per feed).
    """

    def __init__(
        self,
        store: FreshnessStore,
        ttl_hours: float = 24.0,
        ttl_overrides: Optional[Mapping[str, float]] = None,
        clock: Clock = utc_now
    ):
        self.store = store
        self.ttl_hours = ttl_hours
        self.ttl_overrides = dict(ttl_overrides or {})
        self.clock = clock

    def ttl_for(self, feed_key: str) -> float:
        return self.ttl_overrides.get(feed_key, self.ttl_hours)

    def age_hours(self, record: FreshnessRecord) -> Optional[float]:
        if record.last_fetched_at is None:
            return None
        fetched_at = record.last_fetched_at
        if fetched_at.tzinfo is None:
            fetched_at = fetched_at.replace(tzinfo=timezone.utc)
        return (self.clock() - fetched_at).total_seconds() / 3600

    def is_record_valid(self, feed_key: str, record: Optional[FreshnessRecord]) -> bool:
        if record is None:
            return False
        age = self.age_hours(record)
        if age is None:
            return False
        return age < self.ttl_for(feed_key)

    async def is_valid(self, feed_key: str) -> bool:
        """Whether the cached copy of a feed may be served without a re-fetch."""
        try:
            record = await self.store.get(feed_key)
        except FreshnessError as e:
            logger.warning("Failed to read freshness record", feed_key=feed_key, error=str(e))
            return False

        valid = self.is_record_valid(feed_key, record)
        logger.debug(
            "Checked freshness",
            feed_key=feed_key,
            valid=valid,
            age_hours=round(self.age_hours(record), 2) if record and record.last_fetched_at else None
        )
        return valid

    async def mark_fetched(self, feed_key: str, row_count: int) -> MetadataOutcome:
        """Record a completed fetch; failures are reported, not raised."""
        try:
            await self.store.upsert(feed_key, row_count)
        except FreshnessError as e:
            logger.warning("Failed to update freshness metadata", feed_key=feed_key, error=str(e))
            return MetadataOutcome.FAILED
        return MetadataOutcome.WRITTEN
