"""CLI entrypoint using Typer.

This module defines the command-line interface for the sports store.
Commands are organized into subcommand groups for schema management, data
ingestion and queries, and statistics.

Example:
    $ sports-store --help
    $ sports-store schema init
    $ sports-store data insert stats.json --entity player_stats --source espn
    $ sports-store stats aggregates P1 --timeframe 30d
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Annotated, Any, NoReturn

import pandas as pd
import typer
from pydantic import ValidationError
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from sports_store import __version__
from sports_store.cache.manager import SportsDataManager
from sports_store.config import Settings
from sports_store.logging import configure_from_settings
from sports_store.storage.query import QueryFilters, QueryRequest
from sports_store.storage.writer import InsertRequest
from sports_store.types import (
    CacheStrategy,
    EntityType,
    QueryMode,
    SportsStoreError,
    Timeframe,
)

# Initialize console for rich output
console = Console()

# Rows shown in query result tables
MAX_DISPLAY_ROWS = 50

# Create main app
app = typer.Typer(
    name="sports-store",
    help="Sports time-series storage CLI",
    no_args_is_help=True,
    rich_markup_mode="rich",
)

# Create subcommand groups
schema_app = typer.Typer(
    name="schema",
    help="Schema and storage policy commands",
    no_args_is_help=True,
)
data_app = typer.Typer(
    name="data",
    help="Data ingestion, query and retention commands",
    no_args_is_help=True,
)
stats_app = typer.Typer(
    name="stats",
    help="Aggregate and cost statistics commands",
    no_args_is_help=True,
)

# Register subcommand groups
app.add_typer(schema_app, name="schema")
app.add_typer(data_app, name="data")
app.add_typer(stats_app, name="stats")


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(f"[bold blue]sports-store[/bold blue] version {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: Annotated[
        bool | None,
        typer.Option(
            "--version",
            "-v",
            help="Show version and exit",
            callback=version_callback,
            is_eager=True,
        ),
    ] = None,
    verbose: Annotated[
        bool,
        typer.Option(
            "--verbose",
            "-V",
            help="Enable verbose output",
        ),
    ] = False,
) -> None:
    """Sports time-series storage CLI.

    Initialize hypertables and policies, load and query sports data, and
    inspect aggregates and query spend.
    """
    configure_from_settings(Settings(), verbose=verbose)


def _open_manager() -> SportsDataManager:
    """Build a manager from the environment and initialize it."""
    manager = SportsDataManager(Settings())
    try:
        manager.initialize()
    except SportsStoreError as e:
        manager.close()
        _fail(e)
    return manager


def _fail(error: Exception) -> NoReturn:
    console.print(f"[red]Error:[/red] {error}")
    raise typer.Exit(code=1)


# =============================================================================
# Schema Commands
# =============================================================================


@schema_app.command("init")
def schema_init() -> None:
    """Create hypertables, indexes, policies and rollup views.

    Safe to run repeatedly.
    """
    manager = _open_manager()
    try:
        policies = manager.schema.list_policies()
    finally:
        manager.close()
    console.print(
        Panel(
            f"[green]Schema ready[/green] on {manager.database.dialect}\n"
            f"Registered policies: {len(policies)}",
            title="Schema",
        )
    )


@schema_app.command("policies")
def schema_policies() -> None:
    """List registered compression, retention and refresh policies."""
    manager = _open_manager()
    try:
        policies = manager.schema.list_policies()
    finally:
        manager.close()

    table = Table(title="Storage Policies")
    table.add_column("Table", style="cyan")
    table.add_column("Policy")
    table.add_column("Interval", style="green")
    for policy in policies:
        table.add_row(policy["table_name"], policy["policy_type"], policy["interval"])
    console.print(table)


# =============================================================================
# Data Commands
# =============================================================================


def _load_points(path: Path) -> list[Any]:
    """Read points from a JSON array or a JSON-lines file."""
    text = path.read_text(encoding="utf-8")
    if path.suffix == ".jsonl":
        return [json.loads(line) for line in text.splitlines() if line.strip()]
    data = json.loads(text)
    if isinstance(data, dict):
        return [data]
    return list(data)


@data_app.command("insert")
def data_insert(
    file: Annotated[
        Path,
        typer.Argument(
            help="JSON array or JSON-lines file of points",
            exists=True,
            dir_okay=False,
            readable=True,
        ),
    ],
    entity: Annotated[
        EntityType,
        typer.Option("--entity", "-e", help="Entity type of the points"),
    ],
    source: Annotated[
        str,
        typer.Option("--source", "-s", help="Default data source"),
    ] = "cli",
    confidence: Annotated[
        float,
        typer.Option("--confidence", "-c", min=0.0, max=1.0, help="Default confidence"),
    ] = 1.0,
    dedupe: Annotated[
        bool,
        typer.Option("--dedupe", help="Collapse duplicate points in the batch"),
    ] = False,
) -> None:
    """Insert a batch of points from a file."""
    try:
        points = _load_points(file)
    except json.JSONDecodeError as e:
        _fail(e)

    manager = _open_manager()
    try:
        result = manager.insert_data(
            InsertRequest(
                entity_type=entity,
                points=points,
                source=source,
                confidence=confidence,
                deduplicate=dedupe,
            )
        )
    except SportsStoreError as e:
        _fail(e)
    finally:
        manager.close()

    color = "green" if result.errors == 0 else "yellow"
    console.print(f"[{color}]Inserted: {result.inserted}[/{color}]")
    console.print(f"Deduplicated: {result.deduplicated}")
    console.print(f"Errors: {result.errors}")


@data_app.command("query")
def data_query(
    entity: Annotated[
        EntityType,
        typer.Option("--entity", "-e", help="Entity type to query"),
    ],
    start: Annotated[
        str,
        typer.Option("--start", help="Range start (ISO-8601)"),
    ],
    end: Annotated[
        str,
        typer.Option("--end", help="Range end (ISO-8601)"),
    ],
    player_id: Annotated[str | None, typer.Option("--player-id")] = None,
    game_id: Annotated[str | None, typer.Option("--game-id")] = None,
    team: Annotated[str | None, typer.Option("--team")] = None,
    position: Annotated[str | None, typer.Option("--position")] = None,
    season: Annotated[int | None, typer.Option("--season")] = None,
    week: Annotated[int | None, typer.Option("--week")] = None,
    model_id: Annotated[str | None, typer.Option("--model-id")] = None,
    contest_type: Annotated[str | None, typer.Option("--contest-type")] = None,
    limit: Annotated[int | None, typer.Option("--limit", min=1)] = None,
    aggregate: Annotated[
        bool,
        typer.Option("--aggregate", help="Return rollup buckets instead of rows"),
    ] = False,
    cache: Annotated[
        CacheStrategy | None,
        typer.Option("--cache", help="Cache strategy for this query"),
    ] = None,
    csv: Annotated[
        Path | None,
        typer.Option("--csv", help="Write results to a CSV file"),
    ] = None,
) -> None:
    """Query raw points or aggregate buckets in a time range."""
    try:
        request = QueryRequest(
            entity_type=entity,
            filters=QueryFilters(
                start_time=start,
                end_time=end,
                player_id=player_id,
                game_id=game_id,
                team=team,
                position=position,
                season=season,
                week=week,
                model_id=model_id,
                contest_type=contest_type,
                limit=limit,
            ),
            mode=QueryMode.AGGREGATE if aggregate else QueryMode.RAW,
            cache_strategy=cache,
        )
    except ValidationError as e:
        _fail(e)

    manager = _open_manager()
    try:
        frame = manager.query_frame(request)
    except SportsStoreError as e:
        _fail(e)
    finally:
        manager.close()

    if csv is not None:
        frame.to_csv(csv, index=False)
        console.print(f"[green]Wrote {len(frame)} rows to {csv}[/green]")
        return
    _print_frame(frame, title=f"{entity.value} ({request.mode.value})")


def _print_frame(frame: pd.DataFrame, title: str) -> None:
    """Render the first rows of a DataFrame as a rich table."""
    if frame.empty:
        console.print("[yellow]No rows matched.[/yellow]")
        return
    table = Table(title=title)
    for column in frame.columns:
        table.add_column(str(column))
    for row in frame.head(MAX_DISPLAY_ROWS).itertuples(index=False):
        table.add_row(*("" if pd.isna(v) else str(v) for v in row))
    console.print(table)
    if len(frame) > MAX_DISPLAY_ROWS:
        console.print(f"... and {len(frame) - MAX_DISPLAY_ROWS} more rows")


@data_app.command("cleanup")
def data_cleanup() -> None:
    """Delete rows past each entity's retention horizon."""
    manager = _open_manager()
    try:
        report = manager.cleanup_old_data()
    except SportsStoreError as e:
        _fail(e)
    finally:
        manager.close()

    table = Table(title="Retention Cleanup")
    table.add_column("Table", style="cyan")
    table.add_column("Deleted", justify="right")
    for name, count in report["per_table"].items():
        table.add_row(name, str(count))
    console.print(table)
    console.print(f"Database size: {report['database_size'] / 1024 ** 2:.2f} MB")


# =============================================================================
# Stats Commands
# =============================================================================


@stats_app.command("aggregates")
def stats_aggregates(
    player_id: Annotated[str, typer.Argument(help="Player identifier")],
    timeframe: Annotated[
        Timeframe,
        typer.Option("--timeframe", "-t", help="Lookback window"),
    ] = Timeframe.WEEK,
) -> None:
    """Show pooled fantasy aggregates for a player."""
    manager = _open_manager()
    try:
        aggregates = manager.get_aggregates(player_id, timeframe)
    except SportsStoreError as e:
        _fail(e)
    finally:
        manager.close()

    table = Table(title=f"Aggregates for {player_id} ({timeframe.value})")
    table.add_column("Metric", style="cyan")
    table.add_column("Value", justify="right")
    for name, value in aggregates.to_dict().items():
        table.add_row(name, str(value))
    console.print(table)


@stats_app.command("costs")
def stats_costs() -> None:
    """Show query spend, storage estimate and recommendations."""
    manager = _open_manager()
    try:
        metrics = manager.get_cost_metrics()
        cache_stats = manager.get_cache_stats()
    finally:
        manager.close()

    console.print(
        Panel(
            f"[bold]Daily cost:[/bold] ${metrics.daily_cost:.4f}\n"
            f"[bold]Month to date:[/bold] ${metrics.monthly_cost:.4f}\n"
            f"[bold]Monthly projection:[/bold] ${metrics.monthly_projection:.2f}\n"
            f"[bold]Queries today:[/bold] {metrics.query_count}\n"
            f"[bold]Storage:[/bold] {metrics.storage_estimate:.4f} GB\n"
            f"[bold]Compression ratio:[/bold] {metrics.compression_ratio:.0%}\n"
            f"[bold]Cache hit rate:[/bold] {cache_stats.hit_rate:.1%}",
            title="Costs",
        )
    )
    if metrics.recommendations:
        console.print("\n[bold]Recommendations:[/bold]")
        for recommendation in metrics.recommendations:
            console.print(f"  - {recommendation}")


if __name__ == "__main__":
    app()
