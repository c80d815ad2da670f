"""
In-Memory Key-Value Store

Process-local implementation of KeyValueStore with an optional byte budget.
Used for ephemeral caches and as the test double for quota pressure.
"""

from __future__ import annotations

from typing import Dict, List, Optional

from . import KeyValueStore
from ..errors import QuotaExceededError


class MemoryKeyValueStore(KeyValueStore):
    """Dictionary-backed store; usage is measured as key plus value length."""

    name = "memory"

    def __init__(self, max_bytes: Optional[int] = None):
        self.max_bytes = max_bytes
        self._data: Dict[str, str] = {}

    @property
    def used_bytes(self) -> int:
        return sum(len(key) + len(value) for key, value in self._data.items())

    async def get(self, key: str) -> Optional[str]:
        return self._data.get(key)

    async def set(self, key: str, value: str) -> None:
        if self.max_bytes is not None:
            current = self._data.get(key)
            released = len(key) + len(current) if current is not None else 0
            if self.used_bytes - released + len(key) + len(value) > self.max_bytes:
                raise QuotaExceededError(
                    f"Store full while writing {key} ({len(value)} chars)", self.name, "set"
                )
        self._data[key] = value

    async def delete(self, key: str) -> None:
        self._data.pop(key, None)

    async def keys(self, prefix: str = "") -> List[str]:
        return sorted(key for key in self._data if key.startswith(prefix))
