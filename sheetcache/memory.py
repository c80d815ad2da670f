"""
First-level in-process cache of served rows.

Created once by the caller and injected into the orchestrator; lives as long
as the process unless reset by a maintenance call.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Dict, List, Optional

from .freshness import Clock, utc_now
from .parser import FeedRow


@dataclass
class _MemoryEntry:
    rows: List[FeedRow]
    stored_at: datetime


class MemoryCache:
    """
    Rows per feed key, expiring after the TTL the caller supplies on read.

    Rows are copied on the way in and out; callers own what they receive.
    """

    def __init__(self, clock: Clock = utc_now):
        self.clock = clock
        self._entries: Dict[str, _MemoryEntry] = {}

    def __contains__(self, feed_key: object) -> bool:
        return feed_key in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def get(self, feed_key: str, ttl_hours: float) -> Optional[List[FeedRow]]:
        entry = self._entries.get(feed_key)
        if entry is None:
            return None
        age_hours = (self.clock() - entry.stored_at).total_seconds() / 3600
        if age_hours >= ttl_hours:
            del self._entries[feed_key]
            return None
        return [dict(row) for row in entry.rows]

    def put(self, feed_key: str, rows: List[FeedRow]) -> None:
        self._entries[feed_key] = _MemoryEntry(
            rows=[dict(row) for row in rows],
            stored_at=self.clock()
        )

    def invalidate(self, feed_key: str) -> None:
        self._entries.pop(feed_key, None)

    def reset(self) -> None:
        self._entries.clear()
