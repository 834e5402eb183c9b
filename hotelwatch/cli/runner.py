# hotelwatch/cli/runner.py

"""Headless CLI commands built on the async price pipeline."""

import logging

from rich.console import Console
from rich.table import Table

from hotelwatch.models.price_drop import DropEvent
from hotelwatch.models.price_observation import PriceObservation
from hotelwatch.services.alert_queue_processor import (
    AlertQueueProcessor,
    create_alert_sender,
)
from hotelwatch.services.drop_event_recorder import DropEventRecorder
from hotelwatch.services.price_alerts import PriceAlertService
from hotelwatch.services.price_observer import PriceObservationCoordinator
from hotelwatch.storage.price_history_store import PriceHistoryStore
from hotelwatch.storage.table_client import TableClient, create_table_client

logger = logging.getLogger("hotelwatch.cli")

# Stderr console for status messages so stdout stays clean for tables
_err = Console(stderr=True)


def build_pipeline(
    client: TableClient,
) -> tuple[PriceObservationCoordinator, PriceHistoryStore, DropEventRecorder]:
    """Wire the coordinator with its store, recorder and alert fan-out."""
    history = PriceHistoryStore(client)
    recorder = DropEventRecorder(client, alerts=PriceAlertService(client))
    coordinator = PriceObservationCoordinator(history, recorder)
    return coordinator, history, recorder


def _fmt_time(obs_time: object) -> str:
    return str(obs_time)[:19].replace("T", " ") if obs_time else "—"


def _print_history(
    hotel_id: str, observations: list[PriceObservation],
) -> None:
    table = Table(
        title=f"Price History: {hotel_id}",
        show_lines=True,
        title_style="bold cyan",
    )
    table.add_column("#", style="dim", width=4)
    table.add_column("Observed", style="dim")
    table.add_column("Price", justify="right", style="green")
    table.add_column("Source", style="magenta")

    for idx, obs in enumerate(observations, 1):
        table.add_row(
            str(idx),
            _fmt_time(obs.observed_at),
            f"{obs.currency} {obs.price:,.2f}",
            obs.source,
        )
    Console().print(table)


def _print_drops(events: list[DropEvent]) -> None:
    table = Table(
        title="Price Drops",
        show_lines=True,
        title_style="bold cyan",
    )
    table.add_column("Hotel", style="bold")
    table.add_column("Recorded", style="dim")
    table.add_column("Before", justify="right")
    table.add_column("After", justify="right", style="green")
    table.add_column("Drop", justify="right", style="red")

    for ev in events:
        table.add_row(
            ev.hotel_id,
            _fmt_time(ev.created_at),
            f"{ev.previous_price:,.2f}",
            f"{ev.new_price:,.2f}",
            f"-{ev.drop_percent}%",
        )
    Console().print(table)


async def run_observe(
    hotel_id: str,
    price: float,
    client: TableClient | None = None,
) -> int:
    """Observe one price, wait for drop recording, show the latest entry."""
    client = client or create_table_client()
    coordinator, history, _ = build_pipeline(client)

    await coordinator.observe(hotel_id, price)
    await coordinator.drain()

    latest = await history.get_latest(hotel_id)
    if latest is None:
        _err.print(f"[yellow]No price recorded for {hotel_id}.[/yellow]")
        return 1
    _err.print(
        f"[green]✓ Latest for {hotel_id}: "
        f"{latest.currency} {latest.price:,.2f}[/green]"
    )
    return 0


async def run_history(
    hotel_id: str,
    limit: int | None,
    client: TableClient | None = None,
) -> int:
    """Print the recorded price history of a hotel."""
    client = client or create_table_client()
    history = PriceHistoryStore(client)
    observations = await history.history(hotel_id, limit=limit)
    if not observations:
        _err.print(f"[yellow]No history for {hotel_id}.[/yellow]")
        return 1
    _print_history(hotel_id, observations)
    return 0


async def run_drops(
    hotel_id: str | None,
    limit: int,
    client: TableClient | None = None,
) -> int:
    """Print recorded price drop events."""
    client = client or create_table_client()
    recorder = DropEventRecorder(client)
    events = await recorder.recent(hotel_id, limit=limit)
    if not events:
        _err.print("[yellow]No price drops recorded.[/yellow]")
        return 0
    _print_drops(events)
    return 0


def run_process_alerts(client: TableClient | None = None) -> int:
    """Deliver due price alerts and print the run summary."""
    client = client or create_table_client()
    _err.print("[bold]Processing price alert queue...[/bold]")
    processor = AlertQueueProcessor(client, create_alert_sender())
    summary = processor.process()

    if summary.error:
        _err.print(f"[red]Error: {summary.error}[/red]")

    table = Table(
        title="Price Alert Run",
        show_lines=True,
        title_style="bold cyan",
    )
    table.add_column("Metric", style="bold")
    table.add_column("Value", justify="right")
    for label, value in (
        ("Status", summary.status),
        ("Groups", summary.total_groups),
        ("Processed", summary.processed_count),
        ("Emails sent", summary.success_count),
        ("Failed", summary.failure_count),
        ("Dead", summary.dead_count),
        ("Skipped", summary.skipped_count),
        ("Deferred", summary.deferred_count),
    ):
        table.add_row(label, str(value))
    Console().print(table)

    return 1 if summary.status == "failed" else 0
