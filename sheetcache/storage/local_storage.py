"""
Local Storage Backends

SQLite-backed key-value store (optionally capped to a byte budget) and a
filesystem store for payloads that spill out of it.
"""

from __future__ import annotations

import os
import shutil
import sqlite3
import threading
from pathlib import Path
from typing import List, Optional

from . import FileStore, KeyValueStore
from ..errors import QuotaExceededError, StorageError
from ..logging import get_logger

logger = get_logger(__name__)


class SQLiteKeyValueStore(KeyValueStore):
    """
    Key-value store persisted in a single SQLite table.

    When ``max_bytes`` is given the database is capped with
    ``PRAGMA max_page_count`` and writes past the cap fail with
    QuotaExceededError, like a full device-local store would.
    """

    name = "sqlite"

    def __init__(self, db_path: Path, max_bytes: Optional[int] = None):
        """
        Initialize the SQLite store.

        Args:
            db_path: Path to the SQLite database file
            max_bytes: Optional size budget of the database file
        """
        self.db_path = Path(db_path).resolve()
        self.max_bytes = max_bytes
        self._lock = threading.Lock()

        try:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
            self.conn = sqlite3.connect(
                str(self.db_path),
                check_same_thread=False,
                isolation_level=None,  # Auto-commit mode
            )
            self.conn.execute(
                "CREATE TABLE IF NOT EXISTS kv (key TEXT PRIMARY KEY, value TEXT NOT NULL)"
            )
            if max_bytes is not None:
                page_size = self.conn.execute("PRAGMA page_size").fetchone()[0]
                self.conn.execute(f"PRAGMA max_page_count = {max(max_bytes // page_size, 2)}")
        except sqlite3.Error as e:
            raise StorageError(f"Failed to open {self.db_path}: {e}", self.name, "initialize")

        logger.debug(
            "Initialized SQLite key-value store",
            db_path=str(self.db_path),
            max_bytes=max_bytes
        )

    def close(self) -> None:
        with self._lock:
            self.conn.close()

    async def get(self, key: str) -> Optional[str]:
        try:
            with self._lock:
                row = self.conn.execute("SELECT value FROM kv WHERE key = ?", (key,)).fetchone()
        except sqlite3.Error as e:
            raise StorageError(f"Failed to read {key}: {e}", self.name, "get")
        return row[0] if row else None

    async def set(self, key: str, value: str) -> None:
        try:
            with self._lock:
                self.conn.execute(
                    "INSERT INTO kv (key, value) VALUES (?, ?) "
                    "ON CONFLICT(key) DO UPDATE SET value = excluded.value",
                    (key, value),
                )
        except sqlite3.OperationalError as e:
            if "full" in str(e).lower():
                raise QuotaExceededError(
                    f"Store full while writing {key} ({len(value)} chars)", self.name, "set"
                )
            raise StorageError(f"Failed to write {key}: {e}", self.name, "set")
        except sqlite3.Error as e:
            raise StorageError(f"Failed to write {key}: {e}", self.name, "set")

    async def delete(self, key: str) -> None:
        try:
            with self._lock:
                self.conn.execute("DELETE FROM kv WHERE key = ?", (key,))
        except sqlite3.Error as e:
            raise StorageError(f"Failed to delete {key}: {e}", self.name, "delete")

    async def keys(self, prefix: str = "") -> List[str]:
        # substr comparison keeps LIKE wildcards in the prefix literal
        try:
            with self._lock:
                rows = self.conn.execute(
                    "SELECT key FROM kv WHERE substr(key, 1, ?) = ? ORDER BY key",
                    (len(prefix), prefix),
                ).fetchall()
        except sqlite3.Error as e:
            raise StorageError(f"Failed to list keys: {e}", self.name, "keys")
        return [row[0] for row in rows]


class LocalFileStore(FileStore):
    """
    Filesystem store with one JSON file per feed key under a cache directory.
    """

    name = "local-file"

    def __init__(self, root_path: Path):
        """
        Initialize the file store.

        Args:
            root_path: Directory holding the payload files
        """
        self.root_path = Path(root_path).resolve()

    def path_for(self, feed_key: str) -> Path:
        return self.root_path / f"{feed_key}.json"

    async def ensure_dir(self) -> None:
        try:
            self.root_path.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StorageError(f"Failed to create {self.root_path}: {e}", self.name, "ensure_dir")

    async def exists(self, path: Path) -> bool:
        return Path(path).is_file()

    async def read_text(self, path: Path) -> Optional[str]:
        path = Path(path)
        try:
            return path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except (OSError, UnicodeDecodeError) as e:
            raise StorageError(f"Failed to read {path}: {e}", self.name, "read")

    async def write_text(self, path: Path, text: str) -> None:
        path = Path(path)
        tmp_path = path.with_name(path.name + ".tmp")
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path.write_text(text, encoding="utf-8")
            os.replace(tmp_path, path)
        except OSError as e:
            tmp_path.unlink(missing_ok=True)
            raise StorageError(f"Failed to write {path}: {e}", self.name, "write")

    async def delete(self, path: Path) -> None:
        try:
            Path(path).unlink(missing_ok=True)
        except OSError as e:
            raise StorageError(f"Failed to delete {path}: {e}", self.name, "delete")

    async def size(self, path: Path) -> Optional[int]:
        try:
            return Path(path).stat().st_size
        except FileNotFoundError:
            return None
        except OSError as e:
            raise StorageError(f"Failed to stat {path}: {e}", self.name, "size")

    async def reset(self) -> None:
        try:
            shutil.rmtree(self.root_path, ignore_errors=False)
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.warning(
                "Failed to reset file cache directory",
                root_path=str(self.root_path),
                error=str(e)
            )
        finally:
            await self.ensure_dir()
