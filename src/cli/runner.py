# src/cli/runner.py

"""Headless CLI modes: scan, watch, history and config."""

import asyncio
import json
import logging
import sys
from typing import Any

from rich.console import Console
from rich.table import Table

from src.config.settings import Settings
from src.extractors.dom_reader import PageDocument
from src.extractors.page_loader import PageLoader
from src.models.deal import DealHistoryEntry
from src.models.product import Product
from src.services.page_observer import PollingPageObserver
from src.services.rescan_scheduler import RescanScheduler
from src.services.runtime import Runtime
from src.storage.config_store import CONFIG_KEYS, ConfigStore
from src.storage.deal_history_db import DealHistoryDB
from src.storage.kv_store import JsonFileKeyValueStore

logger = logging.getLogger("affilifind.cli")

# Stderr console for status messages so stdout stays clean for JSON
_err = Console(stderr=True)

CLI_TAB_ID = 1


def _page_source(loader: PageLoader, url: str):
    async def read() -> PageDocument:
        return await asyncio.to_thread(loader.load, url)
    return read


def _print_product(product: Product) -> None:
    """Render the detected product as a two-column table."""
    table = Table(title="Detected Product", show_lines=True, title_style="bold cyan")
    table.add_column("Field", style="bold")
    table.add_column("Value", overflow="fold")
    for name, value in product.to_dict().items():
        text = str(value)
        table.add_row(name, text if len(text) <= 300 else text[:297] + "...")
    Console().print(table)


def _print_deal(scheduler: RescanScheduler) -> None:
    deal = scheduler.deal
    if deal is None:
        _err.print("[yellow]No deal found.[/yellow]")
        return
    if not deal.has_offer:
        _err.print(f"[yellow]Matched {deal.merchant}, no affiliate offer.[/yellow]")
        return
    record = deal.to_record()
    table = Table(title="Deal", show_lines=True, title_style="bold green")
    table.add_column("Merchant", style="magenta")
    table.add_column("Discount", justify="right")
    table.add_column("Coupon")
    table.add_column("Affiliate URL", overflow="fold", style="dim")
    discount = record["discountPercent"]
    table.add_row(
        str(record["merchant"] or "—"),
        f"{discount:g}%" if discount is not None else "—",
        record["couponCode"] or "—",
        record["affiliateUrl"],
    )
    Console().print(table)


def _scan_result(scheduler: RescanScheduler) -> dict[str, Any]:
    return {
        "product": scheduler.product.to_dict() if scheduler.product else None,
        "deal": scheduler.deal.raw if scheduler.deal else None,
        "mounted": bool(scheduler.presenter and scheduler.presenter.mounted),
    }


async def cli_scan(
    url: str,
    as_json: bool = False,
    runtime: Runtime | None = None,
    loader: PageLoader | None = None,
) -> int:
    """Load ``url``, run one scan and print the product and deal."""
    runtime = runtime or Runtime()
    loader = loader or PageLoader()
    try:
        await runtime.start_session()
        scheduler = runtime.open_tab(CLI_TAB_ID, _page_source(loader, url))
        _err.print(f"[bold]Scanning:[/bold] {url}")
        await scheduler.start()

        if scheduler.product is None:
            _err.print("[yellow]No product detected.[/yellow]")
            return 1

        if as_json:
            json.dump(_scan_result(scheduler), sys.stdout, ensure_ascii=False, indent=2)
            sys.stdout.write("\n")
        else:
            _print_product(scheduler.product)
            _print_deal(scheduler)
        return 0
    finally:
        runtime.close()


async def cli_watch(
    url: str,
    interval: float = Settings.POLL_INTERVAL,
    cycles: int | None = None,
    runtime: Runtime | None = None,
    loader: PageLoader | None = None,
) -> int:
    """Scan ``url`` and keep rescanning as the page changes."""
    runtime = runtime or Runtime()
    loader = loader or PageLoader()
    source = _page_source(loader, url)
    try:
        await runtime.start_session()
        scheduler = runtime.open_tab(CLI_TAB_ID, source)
        observer = PollingPageObserver(source, scheduler, interval=interval)
        _err.print(f"[bold]Watching:[/bold] {url}  [dim]every {interval:g}s[/dim]")

        await scheduler.start()
        last_key = scheduler.last_key
        if scheduler.product is not None:
            _print_product(scheduler.product)
            _print_deal(scheduler)

        done = 0
        while cycles is None or done < cycles:
            await asyncio.sleep(interval)
            await observer.poll_once()
            await scheduler.wait_idle()
            if scheduler.last_key != last_key and scheduler.product is not None:
                last_key = scheduler.last_key
                _print_product(scheduler.product)
                _print_deal(scheduler)
            done += 1
        return 0 if scheduler.product is not None else 1
    finally:
        runtime.close()


def _print_history(entries: list[DealHistoryEntry]) -> None:
    table = Table(title="Deal History", show_lines=True, title_style="bold cyan")
    table.add_column("#", style="dim", width=4)
    table.add_column("Product", max_width=50)
    table.add_column("Merchant", style="magenta")
    table.add_column("Saved", justify="right", style="green")
    table.add_column("Added", style="dim")
    for idx, entry in enumerate(entries, 1):
        saved = (
            f"{entry.savings_value:,.2f} {entry.product.get('currency') or ''}".strip()
            if entry.savings_value is not None
            else "—"
        )
        table.add_row(
            str(idx),
            str(entry.product.get("title") or "—")[:50],
            str(entry.deal.get("merchant") or "—"),
            saved,
            str(entry.added_at),
        )
    Console().print(table)


def run_history(db: DealHistoryDB | None = None) -> int:
    """Print the deal history ledger, newest first."""
    db = db or DealHistoryDB()
    try:
        entries = db.list()
    finally:
        db.close()
    if not entries:
        _err.print("[yellow]Deal history is empty.[/yellow]")
        return 0
    _print_history(entries)
    return 0


def parse_assignments(assignments: list[str]) -> dict[str, str]:
    """Turn ``key=value`` strings into a dict; raises ValueError."""
    updates: dict[str, str] = {}
    for item in assignments:
        key, sep, value = item.partition("=")
        key = key.strip()
        if not sep or not key:
            raise ValueError(f"Expected key=value, got {item!r}")
        if key not in CONFIG_KEYS:
            raise ValueError(
                f"Unknown config key {key!r} (valid: {', '.join(CONFIG_KEYS)})"
            )
        updates[key] = value.strip()
    return updates


async def run_config(
    assignments: list[str] | None = None,
    config_store: ConfigStore | None = None,
) -> int:
    """Show the persisted configuration, applying any updates first."""
    config_store = config_store or ConfigStore(
        JsonFileKeyValueStore(Settings.CONFIG_PATH)
    )
    if assignments:
        try:
            updates = parse_assignments(assignments)
        except ValueError as exc:
            _err.print(f"[red]{exc}[/red]")
            return 1
        await config_store.set(updates)
        _err.print(f"[green]✓ Updated {', '.join(sorted(updates))}[/green]")

    config = await config_store.get()
    table = Table(title="Configuration", title_style="bold cyan")
    table.add_column("Key", style="bold")
    table.add_column("Value")
    for key, value in config.to_dict().items():
        if key == "apiKey" and value:
            value = value[:4] + "…"
        table.add_row(key, str(value))
    Console().print(table)
    return 0
