"""
Column Projector

Compacts parsed rows down to the columns a feed declares, dropping rows
that end up empty. Pure functions; run once per fetch.
"""

from __future__ import annotations

from typing import Dict, List, Mapping, Optional, Sequence

from .parser import FeedRow


def project_row(row: Mapping[str, str], columns: Sequence[str]) -> FeedRow:
    """Keep only the given columns, in order, defaulting missing ones to ''."""
    return {column: row.get(column, "") for column in columns}


def project_rows(rows: Sequence[Mapping[str, str]], columns: Optional[Sequence[str]]) -> List[FeedRow]:
    """
    Project rows onto a column list.

    Args:
        rows: Parsed rows
        columns: Ordered headers to keep, or None to pass rows through

    Returns:
        Projected rows without the ones whose retained values are all blank
    """
    if columns is None:
        return [dict(row) for row in rows]

    projected = []
    for row in rows:
        compact = project_row(row, columns)
        if any(str(value or "").strip() for value in compact.values()):
            projected.append(compact)
    return projected


class ColumnProjector:
    """Applies the per-feed schema table (feed key -> columns) to parsed rows."""

    def __init__(self, schemas: Mapping[str, Optional[Sequence[str]]]):
        self._schemas: Dict[str, Optional[List[str]]] = {
            key: list(columns) if columns is not None else None
            for key, columns in schemas.items()
        }

    def columns_for(self, feed_key: str) -> Optional[List[str]]:
        return self._schemas.get(feed_key)

    def project(self, feed_key: str, rows: Sequence[Mapping[str, str]]) -> List[FeedRow]:
        return project_rows(rows, self.columns_for(feed_key))
