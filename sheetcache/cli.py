"""
Sheet Cache CLI

Typer-based command-line interface for reading, refreshing and maintaining
the offline spreadsheet cache.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from pathlib import Path
from typing import Annotated, Awaitable, List, Optional, TypeVar

import typer
from rich.console import Console
from rich.markup import escape
from rich.table import Table
from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from sheetcache.config import (
    FeedRegistry,
    FreshnessBackend,
    LogLevel,
    SheetCacheSettings,
    build_feed_registry,
)
from sheetcache.errors import FetchError, SheetCacheError
from sheetcache.freshness import FreshnessOracle, FreshnessStore
from sheetcache.freshness.local_store import LocalFreshnessStore
from sheetcache.logging import configure_logging, get_logger, set_correlation_id
from sheetcache.maintenance import CacheMaintenance
from sheetcache.memory import MemoryCache
from sheetcache.orchestrator import CacheOrchestrator
from sheetcache.sources import FeedSource, HttpFeedSource
from sheetcache.storage.local_storage import LocalFileStore, SQLiteKeyValueStore
from sheetcache.storage.tiered import TieredStorage

app = typer.Typer(
    name="sheetcache",
    help="Offline cache for spreadsheet CSV feeds",
    add_completion=False,
    rich_markup_mode="rich",
    no_args_is_help=True
)

console = Console()
logger = get_logger(__name__)

T = TypeVar("T")


@dataclass
class CacheComponents:
    """Everything one CLI invocation works with."""

    settings: SheetCacheSettings
    registry: FeedRegistry
    storage: TieredStorage
    oracle: FreshnessOracle
    orchestrator: CacheOrchestrator
    maintenance: CacheMaintenance


def create_freshness_store(app_settings: SheetCacheSettings) -> FreshnessStore:
    """Create the configured freshness store."""
    if app_settings.freshness_backend == FreshnessBackend.LOCAL:
        return LocalFreshnessStore(app_settings.manifest_path)
    if app_settings.freshness_backend == FreshnessBackend.AZURE_BLOB:
        from sheetcache.freshness.azure_store import AzureBlobFreshnessStore
        return AzureBlobFreshnessStore(
            storage_account=app_settings.azure_storage_account,
            container_name=app_settings.azure_container_name
        )
    raise typer.BadParameter(f"Unsupported freshness backend: {app_settings.freshness_backend}")


def create_components(
    app_settings: SheetCacheSettings,
    registry: Optional[FeedRegistry] = None,
    freshness_store: Optional[FreshnessStore] = None,
    source: Optional[FeedSource] = None
) -> CacheComponents:
    """Wire settings, feed table, stores and source into an orchestrator."""
    registry = registry or build_feed_registry(app_settings)

    storage = TieredStorage(
        kv=SQLiteKeyValueStore(app_settings.kv_path, max_bytes=app_settings.kv_max_bytes),
        files=LocalFileStore(app_settings.file_cache_dir),
        inline_max_bytes=app_settings.inline_max_bytes,
        key_prefix=app_settings.key_prefix,
        skip_keys=[feed.feed_key for feed in registry if feed.skip_local_persistence]
    )
    oracle = FreshnessOracle(
        freshness_store or create_freshness_store(app_settings),
        ttl_hours=app_settings.ttl_hours,
        ttl_overrides={feed.feed_key: feed.ttl_hours for feed in registry if feed.ttl_hours}
    )
    memory = MemoryCache() if app_settings.memory_cache else None

    orchestrator = CacheOrchestrator(
        registry=registry,
        storage=storage,
        oracle=oracle,
        source=source or HttpFeedSource(timeout=app_settings.http_timeout_seconds),
        memory=memory,
        dedupe_inflight=app_settings.dedupe_inflight,
        max_concurrency=app_settings.max_concurrency
    )
    return CacheComponents(
        settings=app_settings,
        registry=registry,
        storage=storage,
        oracle=oracle,
        orchestrator=orchestrator,
        maintenance=CacheMaintenance(storage, memory)
    )


def _components(ctx: typer.Context) -> CacheComponents:
    if ctx.obj is None:
        ctx.obj = create_components(SheetCacheSettings())
    return ctx.obj


def _run_or_exit(coro: Awaitable[T], failure: str) -> T:
    """Run a command coroutine, turning engine errors into exit code 1."""
    try:
        return asyncio.run(coro)
    except SheetCacheError as e:
        console.print(f"[red]{failure}:[/red] {escape(str(e))}")
        raise typer.Exit(1)


@app.callback()
def main(
    ctx: typer.Context,

    feeds: Annotated[Optional[Path], typer.Option(
        "--feeds", "-f",
        help="YAML feed table (built-in feeds when omitted)"
    )] = None,

    cache_root: Annotated[Optional[Path], typer.Option(
        "--cache-root", "-c",
        help="Directory holding the local cache"
    )] = None,

    log_level: Annotated[LogLevel, typer.Option(
        "--log-level", "-l",
        help="Logging level"
    )] = LogLevel.INFO,

    json_logs: Annotated[bool, typer.Option(
        "--json-logs",
        help="Emit JSON log lines"
    )] = False
):
    """Shared options for every command."""
    configure_logging(log_level=log_level, use_json=json_logs, use_rich=not json_logs)
    set_correlation_id()

    overrides = {"log_level": log_level}
    if feeds is not None:
        overrides["feeds_file"] = feeds
    if cache_root is not None:
        overrides["cache_root"] = cache_root

    try:
        ctx.obj = create_components(SheetCacheSettings(**overrides))
    except (SheetCacheError, ValueError, FileNotFoundError) as e:
        console.print(f"[red]Configuration error:[/red] {e}")
        raise typer.Exit(1)


@app.command()
def get(
    ctx: typer.Context,
    feed_key: Annotated[str, typer.Argument(help="Feed key to read")],
    limit: Annotated[int, typer.Option(
        "--limit", "-n",
        help="Rows to display",
        min=0
    )] = 20
):
    """Read one feed through the cache and print its first rows."""
    components = _components(ctx)
    try:
        rows = asyncio.run(components.orchestrator.get_sheet_by_key(feed_key))
    except SheetCacheError as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(1)

    table = Table(title=f"{feed_key} ({len(rows)} rows)")
    headers = list(rows[0].keys()) if rows else []
    for header in headers:
        table.add_column(header, overflow="fold")
    for row in rows[:limit]:
        table.add_row(*(row.get(header, "") for header in headers))
    console.print(table)


@app.command()
def refresh(
    ctx: typer.Context,
    include: Annotated[Optional[List[str]], typer.Option(
        "--include", "-i",
        help="Feed keys to refresh (all when omitted)"
    )] = None,
    exclude: Annotated[Optional[List[str]], typer.Option(
        "--exclude", "-x",
        help="Feed keys to skip"
    )] = None,
    retries: Annotated[int, typer.Option(
        "--retries", "-r",
        help="Attempts per refresh run on fetch errors",
        min=1, max=10
    )] = 1
):
    """Re-download feeds ignoring cache validity."""
    components = _components(ctx)

    async def _run() -> dict:
        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(retries),
            wait=wait_exponential(multiplier=1, min=1, max=10),
            retry=retry_if_exception_type(FetchError),
            reraise=True
        ):
            with attempt:
                return await components.orchestrator.refresh_all(include, exclude)
        return {}

    try:
        counts = asyncio.run(_run())
    except SheetCacheError as e:
        console.print(f"[red]Refresh failed:[/red] {e}")
        raise typer.Exit(1)

    for feed_key, row_count in counts.items():
        console.print(f"[green]{feed_key}[/green]: {row_count:,} rows")
    console.print(f"[blue]Refreshed {len(counts)} feed(s)[/blue]")


@app.command()
def clear(ctx: typer.Context):
    """Remove every cached feed and reset the file cache directory."""
    components = _components(ctx)
    removed = _run_or_exit(components.maintenance.clear_all(), "Clear failed")
    console.print(f"[green]Cleared {removed} cache entr{'y' if removed == 1 else 'ies'}[/green]")


@app.command("trim-old")
def trim_old(
    ctx: typer.Context,
    keep: Annotated[Optional[List[str]], typer.Option(
        "--keep", "-k",
        help="Feed key tokens to retain (e.g. a year); settings default when omitted"
    )] = None
):
    """Remove cached feeds whose key contains none of the keep tokens."""
    components = _components(ctx)
    tokens = keep or components.settings.keep_tokens
    removed = _run_or_exit(components.maintenance.trim_old(tokens), "Trim failed")
    if removed:
        console.print(f"[yellow]Removed:[/yellow] {', '.join(removed)}")
    else:
        console.print("[green]No outdated caches detected[/green]")


@app.command("trim-large")
def trim_large(
    ctx: typer.Context,
    max_bytes: Annotated[Optional[int], typer.Option(
        "--max-bytes", "-m",
        help="Largest entry size kept; settings default when omitted",
        min=1
    )] = None
):
    """Remove cached feeds larger than a size threshold."""
    components = _components(ctx)
    threshold = max_bytes or components.settings.trim_max_bytes
    removed = _run_or_exit(components.maintenance.trim_large(threshold), "Trim failed")
    if removed:
        console.print(f"[yellow]Removed:[/yellow] {', '.join(removed)}")
    else:
        console.print(f"[green]No caches exceeded {threshold:,} bytes[/green]")


@app.command()
def status(ctx: typer.Context):
    """Display cached entries and freshness of every configured feed."""
    components = _components(ctx)
    _run_or_exit(_show_status(components), "Status failed")


async def _show_status(components: CacheComponents) -> None:
    entries = {
        info.feed_key: info
        for info in await components.maintenance.inspect_entries(count_rows=True)
    }

    table = Table(title="Sheet Cache Status")
    table.add_column("Feed", style="cyan")
    table.add_column("Tier")
    table.add_column("Size", justify="right")
    table.add_column("Rows", justify="right")
    table.add_column("Fresh", justify="center")

    feed_keys = components.registry.keys() + sorted(set(entries) - set(components.registry.keys()))
    for feed_key in feed_keys:
        info = entries.get(feed_key)
        valid = await components.oracle.is_valid(feed_key)
        if info is None:
            tier = "skip" if components.storage.skips(feed_key) else "-"
            size = rows = "-"
        else:
            tier = info.tier.value if info.tier else "corrupt"
            size = f"{info.size_bytes / 1024:.1f} KB"
            rows = f"{info.row_count:,}" if info.row_count is not None else "-"
        table.add_row(feed_key, tier, size, rows, "[green]yes[/green]" if valid else "[red]no[/red]")

    console.print(table)


if __name__ == "__main__":
    app()
