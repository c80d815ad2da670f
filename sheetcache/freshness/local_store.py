"""
Local Freshness Stores

A JSON manifest file for single-host use and an in-memory store whose clock
can be driven by tests. Both stamp records with their own clock, standing in
for a server-assigned timestamp.
"""

from __future__ import annotations

import json
import os
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Optional

from . import Clock, FreshnessRecord, FreshnessStore, coerce_row_count, utc_now
from ..errors import FreshnessError
from ..logging import get_logger

logger = get_logger(__name__)


class InMemoryFreshnessStore(FreshnessStore):
    """Dictionary-backed store; the injected clock plays the server clock."""

    def __init__(self, clock: Clock = utc_now):
        self.clock = clock
        self.records: Dict[str, FreshnessRecord] = {}

    async def get(self, feed_key: str) -> Optional[FreshnessRecord]:
        record = self.records.get(feed_key)
        return record.model_copy() if record else None

    async def upsert(self, feed_key: str, row_count: int) -> FreshnessRecord:
        record = FreshnessRecord(
            feed_key=feed_key,
            last_fetched_at=self.clock(),
            row_count=row_count,
        )
        self.records[feed_key] = record
        return record


class LocalFreshnessStore(FreshnessStore):
    """
    Freshness records kept in one JSON manifest on local disk.

    Layout: ``{"<feed_key>": {"lastFetchedAt": "<iso>", "rowCount": n}}``.
    """

    def __init__(self, manifest_path: Path, clock: Clock = utc_now):
        self.manifest_path = Path(manifest_path).resolve()
        self.clock = clock

    def _read_manifest(self) -> Dict[str, Any]:
        try:
            with open(self.manifest_path, "r", encoding="utf-8") as f:
                manifest = json.load(f)
        except FileNotFoundError:
            return {}
        except (OSError, ValueError) as e:
            raise FreshnessError(f"Failed to read {self.manifest_path}: {e}", "local-manifest", "get")
        return manifest if isinstance(manifest, dict) else {}

    def _write_manifest(self, manifest: Dict[str, Any]) -> None:
        tmp_path = self.manifest_path.with_name(self.manifest_path.name + ".tmp")
        try:
            self.manifest_path.parent.mkdir(parents=True, exist_ok=True)
            with open(tmp_path, "w", encoding="utf-8") as f:
                json.dump(manifest, f, indent=2, sort_keys=True)
            os.replace(tmp_path, self.manifest_path)
        except OSError as e:
            raise FreshnessError(
                f"Failed to write {self.manifest_path}: {e}", "local-manifest", "upsert"
            )

    async def get(self, feed_key: str) -> Optional[FreshnessRecord]:
        entry = self._read_manifest().get(feed_key)
        if not isinstance(entry, dict):
            return None

        last_fetched_at = None
        raw_timestamp = entry.get("lastFetchedAt")
        if raw_timestamp:
            try:
                last_fetched_at = datetime.fromisoformat(raw_timestamp)
            except (TypeError, ValueError):
                logger.warning("Invalid timestamp in manifest", feed_key=feed_key, value=raw_timestamp)

        return FreshnessRecord(
            feed_key=feed_key,
            last_fetched_at=last_fetched_at,
            row_count=coerce_row_count(entry.get("rowCount"), feed_key),
        )

    async def upsert(self, feed_key: str, row_count: int) -> FreshnessRecord:
        manifest = self._read_manifest()
        record = FreshnessRecord(
            feed_key=feed_key,
            last_fetched_at=self.clock(),
            row_count=row_count,
        )
        manifest[feed_key] = {
            "feedKey": feed_key,
            "lastFetchedAt": record.last_fetched_at.isoformat(),
            "rowCount": row_count,
        }
        self._write_manifest(manifest)
        return record
