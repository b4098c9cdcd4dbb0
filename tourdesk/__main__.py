"""Command line interface: python -m tourdesk {export,list,watch,probe,template}."""
from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Optional

import typer

from .const import NO_DATE_DISPLAY, TABLE_ORDERS, UNKNOWN_TITLE
from .errors import SettingsError
from .export import FORMAT_CSV, FORMAT_XLSX, export_filename, orders_to_csv, orders_to_xlsx, passenger_template_csv
from .grouping import TABS, ProjectionParams
from .registry import SyncRegistry
from .settings import load_settings
from .tables import TABLES

_LOGGER = logging.getLogger(__name__)

app = typer.Typer(help="Tour-booking dashboard data tools")


def _registry() -> SyncRegistry:
    try:
        settings = load_settings()
    except SettingsError as exc:
        raise typer.BadParameter(str(exc))
    return SyncRegistry.from_settings(settings)


def _choice(name: str, value: str, allowed) -> str:
    if value not in allowed:
        raise typer.BadParameter(f"{name} must be one of {', '.join(allowed)}, got {value!r}")
    return value


# ---------------------------------------------------------------------
# CLI
# ---------------------------------------------------------------------

@app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log at DEBUG level."),
):
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@app.command()
def export(
    fmt: str = typer.Option(
        FORMAT_CSV, "--format", "-f", help="csv or xlsx.",
        callback=lambda x: _choice("format", x, (FORMAT_CSV, FORMAT_XLSX)),
    ),
    tab: str = typer.Option("active", "--tab", help="active, completed or all.",
                            callback=lambda x: _choice("tab", x, TABS)),
    search: str = typer.Option("", "--search", "-s", help="Lead passenger name or tour title."),
    date: Optional[str] = typer.Option(None, "--date", "-d", help="Departure date (YYYY-MM-DD)."),
    output: Optional[Path] = typer.Option(None, "--output", "-o", help="Target file."),
):
    """Fetch provider orders and write them as CSV or XLSX."""
    params = ProjectionParams(search=search, selected_date=date, tab=tab)
    orders = asyncio.run(_load_orders(params))
    if orders is None:
        raise typer.Exit(code=1)
    if not orders:
        typer.echo("No orders to export!")
        return
    target = output or Path(export_filename(fmt))
    if fmt == FORMAT_XLSX:
        target.write_bytes(orders_to_xlsx(orders))
    else:
        target.write_text(orders_to_csv(orders), encoding="utf-8")
    typer.echo(f"Exported {len(orders)} orders to {target}")


async def _load_orders(params: ProjectionParams):
    registry = _registry()
    try:
        coordinator = registry.get(TABLE_ORDERS)
        if not await coordinator.async_refresh():
            return None
        return coordinator.project(params).visible_members()
    finally:
        await registry.shutdown()


@app.command("list")
def list_orders(
    tab: str = typer.Option("active", "--tab", help="active, completed or all.",
                            callback=lambda x: _choice("tab", x, TABS)),
    search: str = typer.Option("", "--search", "-s", help="Lead passenger name or tour title."),
    date: Optional[str] = typer.Option(None, "--date", "-d", help="Departure date (YYYY-MM-DD)."),
    page: int = typer.Option(1, "--page", "-p", help="Page number, TOURDESK_PAGE_SIZE orders per page."),
):
    """Print one page of provider orders in dashboard order."""
    params = ProjectionParams(search=search, selected_date=date, tab=tab)
    result = asyncio.run(_load_page(params, page))
    if result is None:
        raise typer.Exit(code=1)
    for order in result.items:
        typer.echo(
            f"{order.id}  {order.get('departure_date') or NO_DATE_DISPLAY}  "
            f"{order.get('tour_title') or UNKNOWN_TITLE}  {order.get('status')}"
        )
    typer.echo(f"Page {result.page}/{result.pages} ({result.total} orders)")


async def _load_page(params: ProjectionParams, page: int):
    registry = _registry()
    try:
        coordinator = registry.get(TABLE_ORDERS)
        if not await coordinator.async_refresh():
            return None
        return coordinator.page(params, page)
    finally:
        await registry.shutdown()


@app.command()
def watch(
    table: str = typer.Option(TABLE_ORDERS, "--table", "-t", help="orders, tours or passengers.",
                              callback=lambda x: _choice("table", x, sorted(TABLES))),
    seconds: Optional[float] = typer.Option(None, "--seconds", help="Stop after this many seconds."),
):
    """Load a table, follow its change stream and log tab counts on every change."""
    try:
        asyncio.run(_watch(table, seconds))
    except KeyboardInterrupt:
        pass


async def _watch(table: str, seconds: float | None) -> None:
    registry = _registry()
    try:
        coordinator = registry.get(table)
        if not await coordinator.async_refresh():
            raise typer.Exit(code=1)

        def log_counts(_collection) -> None:
            counts = coordinator.project(ProjectionParams(tab="all")).counts
            _LOGGER.info("%s changed: %s", table, counts)

        coordinator.add_listener(log_counts)
        log_counts(coordinator.data)
        async with coordinator.live() as subscribed:
            if not subscribed:
                raise typer.Exit(code=1)
            if seconds is None:
                await asyncio.Event().wait()
            else:
                await asyncio.sleep(seconds)
    finally:
        await registry.shutdown()


@app.command()
def probe():
    """Report which optional columns exist in this deployment."""
    results = asyncio.run(_probe())
    for (table, column), available in results.items():
        state = "unknown" if available is None else ("present" if available else "absent")
        typer.echo(f"{table}.{column}: {state}")


async def _probe() -> dict:
    registry = _registry()
    try:
        results = {}
        for name, spec in TABLES.items():
            if spec.visibility_column:
                column = spec.visibility_column
                results[(name, column)] = await registry.capabilities.has_column(name, column)
        return results
    finally:
        await registry.shutdown()


@app.command()
def template(
    output: Path = typer.Option(Path("passenger-template.csv"), "--output", "-o", help="Target file."),
):
    """Write the passenger bulk-import template."""
    output.write_text(passenger_template_csv(), encoding="utf-8")
    typer.echo(f"Wrote {output}")


if __name__ == "__main__":
    app()
