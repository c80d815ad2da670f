"""
CLI Tests

Runs the Typer app against a temporary cache root and a YAML feed table,
with the HTTP source replaced by a canned one.
"""

import tempfile
import textwrap
import unittest
from collections import Counter
from pathlib import Path
from unittest.mock import AsyncMock, patch

from typer.testing import CliRunner

from sheetcache.cli import app
from sheetcache.errors import FetchError, StorageError
from sheetcache.sources import FeedSource
from sheetcache.storage.local_storage import SQLiteKeyValueStore

FEEDS_YAML = """
feeds:
  orders2025:
    url: https://sheets.test/orders2025.csv
    columns: [Code, Name]
  orders2024:
    url: https://sheets.test/orders2024.csv
    columns: [Code, Name]
"""


class CannedSource(FeedSource):
    def __init__(self, payloads):
        self.payloads = payloads
        self.calls = Counter()

    async def fetch_text(self, feed_key, url):
        self.calls[feed_key] += 1
        payload = self.payloads[feed_key]
        if isinstance(payload, Exception):
            raise payload
        return payload


class TestCli(unittest.TestCase):
    """End-to-end CLI commands"""

    def setUp(self):
        self.runner = CliRunner()
        self.tmp = tempfile.TemporaryDirectory()
        self.addCleanup(self.tmp.cleanup)

        root = Path(self.tmp.name)
        self.cache_root = root / "cache"
        self.feeds_file = root / "feeds.yaml"
        self.feeds_file.write_text(textwrap.dedent(FEEDS_YAML), encoding="utf-8")

        self.source = CannedSource({
            "orders2025": "Code,Name\n1,A\n2,B\n",
            "orders2024": "Code;Name;Extra\n9;Z;x\n",
        })
        patcher = patch("sheetcache.cli.HttpFeedSource", return_value=self.source)
        patcher.start()
        self.addCleanup(patcher.stop)

    def invoke(self, *args):
        return self.runner.invoke(
            app,
            ["--cache-root", str(self.cache_root), "--feeds", str(self.feeds_file), *args],
        )

    def test_get_then_cached(self):
        result = self.invoke("get", "orders2025")

        self.assertEqual(result.exit_code, 0, result.output)
        self.assertIn("orders2025 (2 rows)", result.output)

        result = self.invoke("get", "orders2025")

        self.assertEqual(result.exit_code, 0, result.output)
        self.assertEqual(self.source.calls["orders2025"], 1)
        self.assertTrue((self.cache_root / "kv.sqlite3").is_file())
        self.assertTrue((self.cache_root / "freshness.json").is_file())

    def test_get_unknown_feed(self):
        result = self.invoke("get", "stock")

        self.assertEqual(result.exit_code, 1)
        self.assertIn("Unknown feed key", result.output)

    def test_refresh(self):
        result = self.invoke("refresh", "--exclude", "orders2024")

        self.assertEqual(result.exit_code, 0, result.output)
        self.assertIn("Refreshed 1 feed(s)", result.output)
        self.assertEqual(self.source.calls["orders2025"], 1)
        self.assertEqual(self.source.calls["orders2024"], 0)

    def test_refresh_failure_exits_nonzero(self):
        self.source.payloads["orders2024"] = FetchError("HTTP 500", "orders2024", status_code=500)

        result = self.invoke("refresh")

        self.assertEqual(result.exit_code, 1)
        self.assertIn("Refresh failed", result.output)

    def test_status_and_maintenance(self):
        self.assertEqual(self.invoke("refresh").exit_code, 0)

        result = self.invoke("status")
        self.assertEqual(result.exit_code, 0, result.output)
        self.assertIn("orders2025", result.output)
        self.assertIn("inline", result.output)

        result = self.invoke("trim-old", "--keep", "2025")
        self.assertEqual(result.exit_code, 0, result.output)
        self.assertIn("orders2024", result.output)

        result = self.invoke("trim-large", "--max-bytes", "1000000")
        self.assertEqual(result.exit_code, 0, result.output)
        self.assertIn("No caches exceeded", result.output)

        result = self.invoke("clear")
        self.assertEqual(result.exit_code, 0, result.output)
        self.assertIn("Cleared 1 cache entry", result.output)

    def test_maintenance_commands_report_storage_errors(self):
        """Test a locked key-value store exits 1 with a message, not a traceback"""
        locked = AsyncMock(side_effect=StorageError("database is locked", "sqlite", "keys"))

        with patch.object(SQLiteKeyValueStore, "keys", new=locked):
            for args, message in [
                (["clear"], "Clear failed"),
                (["trim-old", "--keep", "2025"], "Trim failed"),
                (["trim-large", "--max-bytes", "10"], "Trim failed"),
                (["status"], "Status failed"),
            ]:
                result = self.invoke(*args)

                self.assertEqual(result.exit_code, 1, result.output)
                self.assertIn(message, result.output)
                self.assertIn("database is locked", result.output)

    def test_bad_feeds_file(self):
        result = self.runner.invoke(
            app,
            ["--cache-root", str(self.cache_root), "--feeds", str(self.cache_root / "missing.yaml"), "status"],
        )

        self.assertEqual(result.exit_code, 1)
        self.assertIn("Configuration error", result.output)


if __name__ == "__main__":
    unittest.main()
