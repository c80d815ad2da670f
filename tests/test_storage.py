"""
Unit Tests for the Storage Tier Selector and Local Stores
"""

import tempfile
import unittest
from pathlib import Path

from sheetcache.config import StorageTier
from sheetcache.errors import PersistOutcome, QuotaExceededError, StorageError
from sheetcache.storage import (
    FileRecord,
    InlineRecord,
    decode_record,
    encode_pointer,
    serialize_rows,
)
from sheetcache.storage.local_storage import LocalFileStore, SQLiteKeyValueStore
from sheetcache.storage.memory_storage import MemoryKeyValueStore
from sheetcache.storage.tiered import TieredStorage


class FlakyKeyValueStore(MemoryKeyValueStore):
    """In-memory store whose writes fail while ``failing`` is set"""

    def __init__(self):
        super().__init__()
        self.failing = False

    async def set(self, key, value):
        if self.failing:
            raise StorageError("disk I/O error", self.name, "set")
        await super().set(key, value)


ROWS = [
    {"Code": "1", "Name": "Ärger, \"quoted\""},
    {"Code": "2", "Name": "B\nmultiline"},
]


class TestCacheRecords(unittest.TestCase):
    """Tagged record decoding"""

    def test_row_array_is_inline(self):
        record = decode_record(serialize_rows(ROWS))

        self.assertIsInstance(record, InlineRecord)
        self.assertEqual(record.rows, ROWS)

    def test_pointer_is_file(self):
        record = decode_record(encode_pointer(Path("/tmp/cache/sales2025.json")))

        self.assertIsInstance(record, FileRecord)
        self.assertEqual(record.path, Path("/tmp/cache/sales2025.json"))

    def test_unrecognized_payloads(self):
        for payload in ("not json", "42", '{"type": "file"}', '[1, 2]', '{"rows": []}'):
            self.assertIsNone(decode_record(payload), payload)


class TestTieredStorage(unittest.IsolatedAsyncioTestCase):
    """Unit tests for TieredStorage"""

    async def asyncSetUp(self):
        self.tmp = tempfile.TemporaryDirectory()
        self.addCleanup(self.tmp.cleanup)
        self.kv = MemoryKeyValueStore()
        self.files = LocalFileStore(Path(self.tmp.name) / "files")
        self.size = len(serialize_rows(ROWS))

    def make_storage(self, inline_max_bytes, skip_keys=None, kv=None):
        return TieredStorage(
            kv=kv or self.kv,
            files=self.files,
            inline_max_bytes=inline_max_bytes,
            key_prefix="test:",
            skip_keys=skip_keys,
        )

    async def test_payload_at_threshold_stored_inline(self):
        """Test a payload exactly at the threshold goes inline"""
        storage = self.make_storage(inline_max_bytes=self.size)

        result = await storage.persist("orders2025", ROWS)

        self.assertEqual(result.outcome, PersistOutcome.INLINE)
        self.assertEqual(result.size_bytes, self.size)
        self.assertTrue(result.durable)
        self.assertIsInstance(decode_record(await self.kv.get("test:orders2025")), InlineRecord)
        self.assertFalse(await self.files.exists(self.files.path_for("orders2025")))
        self.assertEqual(await storage.load("orders2025"), ROWS)

    async def test_payload_over_threshold_stored_in_file(self):
        """Test a payload one character over the threshold spills to a file"""
        storage = self.make_storage(inline_max_bytes=self.size - 1)

        result = await storage.persist("orders2025", ROWS)

        self.assertEqual(result.outcome, PersistOutcome.FILE)
        record = decode_record(await self.kv.get("test:orders2025"))
        self.assertIsInstance(record, FileRecord)
        self.assertEqual(record.path, self.files.path_for("orders2025"))
        self.assertEqual(await self.files.read_text(record.path), serialize_rows(ROWS))
        self.assertEqual(await storage.load("orders2025"), ROWS)

    async def test_switching_tiers_removes_stale_file(self):
        storage = self.make_storage(inline_max_bytes=self.size - 1)
        await storage.persist("orders2025", ROWS)
        file_path = self.files.path_for("orders2025")
        self.assertTrue(await self.files.exists(file_path))

        result = await storage.persist("orders2025", ROWS[:1])

        self.assertEqual(result.outcome, PersistOutcome.INLINE)
        self.assertFalse(await self.files.exists(file_path))
        self.assertEqual(await storage.load("orders2025"), ROWS[:1])

    async def test_switching_to_file_replaces_inline_entry(self):
        storage = self.make_storage(inline_max_bytes=self.size - 1)
        await storage.persist("orders2025", ROWS[:1])

        await storage.persist("orders2025", ROWS)

        self.assertIsInstance(decode_record(await self.kv.get("test:orders2025")), FileRecord)
        self.assertEqual(await storage.load("orders2025"), ROWS)

    async def test_quota_exceeded_is_soft_failure(self):
        """Test a full key-value store leaves no entry and raises nothing"""
        kv = MemoryKeyValueStore(max_bytes=self.size // 2)
        storage = self.make_storage(inline_max_bytes=self.size, kv=kv)

        result = await storage.persist("orders2025", ROWS)

        self.assertEqual(result.outcome, PersistOutcome.QUOTA_EXCEEDED)
        self.assertFalse(result.durable)
        self.assertIsNotNone(result.error)
        self.assertIsNone(await kv.get("test:orders2025"))
        self.assertIsNone(await storage.load("orders2025"))

    async def test_quota_exceeded_replaces_previous_entry(self):
        """Test an entry that no longer fits does not leave the old rows behind"""
        kv = MemoryKeyValueStore(max_bytes=self.size)
        storage = self.make_storage(inline_max_bytes=10 * self.size, kv=kv)
        await storage.persist("orders2025", ROWS[:1])

        result = await storage.persist("orders2025", ROWS * 3)

        self.assertEqual(result.outcome, PersistOutcome.QUOTA_EXCEEDED)
        self.assertIsNone(await storage.load("orders2025"))

    async def test_failed_inline_write_drops_previous_entry(self):
        """Test a non-quota write failure does not leave the old rows served"""
        kv = FlakyKeyValueStore()
        storage = self.make_storage(inline_max_bytes=self.size, kv=kv)
        await storage.persist("orders2025", ROWS)

        kv.failing = True
        result = await storage.persist("orders2025", ROWS[:1])

        self.assertEqual(result.outcome, PersistOutcome.FAILED)
        self.assertIsNotNone(result.error)
        kv.failing = False
        self.assertIsNone(await kv.get("test:orders2025"))
        self.assertIsNone(await storage.load("orders2025"))

    async def test_quota_on_inline_write_removes_old_file(self):
        """Test a formerly file-backed feed leaves no orphan file behind"""
        kv = MemoryKeyValueStore(max_bytes=200)
        storage = self.make_storage(inline_max_bytes=self.size - 1, kv=kv)
        await storage.persist("orders2025", ROWS)
        file_path = self.files.path_for("orders2025")
        self.assertTrue(await self.files.exists(file_path))

        storage.inline_max_bytes = 10 * self.size
        result = await storage.persist("orders2025", ROWS * 4)

        self.assertEqual(result.outcome, PersistOutcome.QUOTA_EXCEEDED)
        self.assertFalse(await self.files.exists(file_path))
        self.assertIsNone(await kv.get("test:orders2025"))

    async def test_missing_entry_is_miss(self):
        storage = self.make_storage(inline_max_bytes=self.size)

        self.assertIsNone(await storage.load("orders2025"))

    async def test_corrupt_inline_payload_is_miss(self):
        storage = self.make_storage(inline_max_bytes=self.size)
        await self.kv.set("test:orders2025", "{not json")

        self.assertIsNone(await storage.load("orders2025"))

    async def test_pointer_to_missing_file_is_miss(self):
        storage = self.make_storage(inline_max_bytes=self.size - 1)
        await storage.persist("orders2025", ROWS)
        await self.files.delete(self.files.path_for("orders2025"))

        self.assertIsNone(await storage.load("orders2025"))

    async def test_corrupt_file_is_miss(self):
        storage = self.make_storage(inline_max_bytes=self.size - 1)
        await storage.persist("orders2025", ROWS)
        await self.files.write_text(self.files.path_for("orders2025"), "[{truncated")

        self.assertIsNone(await storage.load("orders2025"))

    async def test_skip_keys_never_persisted(self):
        """Test skip feeds drop existing entries and always miss"""
        await self.kv.set("test:balance2025", serialize_rows(ROWS))
        storage = self.make_storage(inline_max_bytes=self.size, skip_keys=["balance2025"])

        self.assertIsNone(await storage.load("balance2025"))
        self.assertIsNone(await self.kv.get("test:balance2025"))

        result = await storage.persist("balance2025", ROWS)

        self.assertEqual(result.outcome, PersistOutcome.SKIPPED)
        self.assertEqual(await self.kv.keys("test:"), [])

    async def test_inspect_reports_tier_and_size(self):
        storage = self.make_storage(inline_max_bytes=self.size - 1)
        await storage.persist("big", ROWS)
        await storage.persist("small", ROWS[:1])

        big = await storage.inspect("test:big", count_rows=True)
        small = await storage.inspect("test:small", count_rows=True)

        self.assertEqual(big.tier, StorageTier.FILE)
        self.assertEqual(big.size_bytes, self.files.path_for("big").stat().st_size)
        self.assertEqual(big.row_count, 2)
        self.assertEqual(small.tier, StorageTier.INLINE)
        self.assertEqual(small.size_bytes, len(serialize_rows(ROWS[:1])))
        self.assertEqual(small.row_count, 1)

    async def test_clear_keeps_foreign_keys(self):
        storage = self.make_storage(inline_max_bytes=self.size - 1)
        await storage.persist("big", ROWS)
        await storage.persist("small", ROWS[:1])
        await self.kv.set("other:key", "value")

        removed = await storage.clear()

        self.assertEqual(removed, 2)
        self.assertEqual(await self.kv.keys(), ["other:key"])
        self.assertTrue(self.files.root_path.is_dir())
        self.assertEqual(list(self.files.root_path.iterdir()), [])


class TestSQLiteKeyValueStore(unittest.IsolatedAsyncioTestCase):
    """Unit tests for SQLiteKeyValueStore"""

    async def asyncSetUp(self):
        self.tmp = tempfile.TemporaryDirectory()
        self.addCleanup(self.tmp.cleanup)
        self.db_path = Path(self.tmp.name) / "kv.sqlite3"

    async def test_set_get_delete(self):
        store = SQLiteKeyValueStore(self.db_path)
        self.addCleanup(store.close)

        await store.set("a", "1")
        await store.set("a", "2")
        self.assertEqual(await store.get("a"), "2")

        await store.delete("a")
        await store.delete("a")
        self.assertIsNone(await store.get("a"))

    async def test_keys_prefix_is_literal(self):
        """Test LIKE wildcards in a prefix are matched literally"""
        store = SQLiteKeyValueStore(self.db_path)
        self.addCleanup(store.close)
        for key in ("sheet_cache:a", "sheetXcache:b", "sheet_cache:c", "other"):
            await store.set(key, "v")

        self.assertEqual(await store.keys("sheet_cache:"), ["sheet_cache:a", "sheet_cache:c"])
        self.assertEqual(len(await store.keys()), 4)

    async def test_values_survive_reopen(self):
        store = SQLiteKeyValueStore(self.db_path)
        await store.set("k", serialize_rows(ROWS))
        store.close()

        reopened = SQLiteKeyValueStore(self.db_path)
        self.addCleanup(reopened.close)
        self.assertEqual(await reopened.get("k"), serialize_rows(ROWS))

    async def test_size_budget_raises_quota_error(self):
        store = SQLiteKeyValueStore(self.db_path, max_bytes=8192)
        self.addCleanup(store.close)

        await store.set("small", "x")
        with self.assertRaises(QuotaExceededError):
            await store.set("huge", "x" * 200_000)

        self.assertEqual(await store.get("small"), "x")
        self.assertIsNone(await store.get("huge"))


class TestMemoryKeyValueStore(unittest.IsolatedAsyncioTestCase):
    """Budget accounting of the in-memory store"""

    async def test_overwrite_releases_previous_value(self):
        store = MemoryKeyValueStore(max_bytes=10)

        await store.set("k", "123456789")
        await store.set("k", "987654321")

        self.assertEqual(store.used_bytes, 10)
        with self.assertRaises(QuotaExceededError):
            await store.set("j", "1")


if __name__ == "__main__":
    unittest.main()
