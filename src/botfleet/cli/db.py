"""
CLI: ``botfleet db``: database management commands.
"""

from __future__ import annotations

import typer
from sqlalchemy import func, inspect, select

from botfleet.cli.utils import console, load_settings, output
from botfleet.core.orm import FleetBase, create_fleet_engine, init_schema

app = typer.Typer(no_args_is_help=True)


@app.command()
def init(
    database: str | None = typer.Option(None, "--database", "-d", help="Database path or URL"),
) -> None:
    """Initialise database schema (create tables)."""
    settings = load_settings(database)
    engine = create_fleet_engine(settings.database_url)
    try:
        init_schema(engine)
        created = sorted(inspect(engine).get_table_names())
    finally:
        engine.dispose()
    console.print(f"[green]Schema ready[/green] at {settings.database_url}")
    for name in created:
        console.print(f"  [cyan]{name}[/cyan]")


@app.command()
def tables(
    database: str | None = typer.Option(None, "--database", "-d"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Show row counts for all botfleet tables."""
    settings = load_settings(database)
    engine = create_fleet_engine(settings.database_url)
    try:
        init_schema(engine)
        with engine.connect() as conn:
            counts = {
                name: conn.scalar(select(func.count()).select_from(table)) or 0
                for name, table in sorted(FleetBase.metadata.tables.items())
            }
    finally:
        engine.dispose()
    output(counts, as_json=json_out, title="Table Counts")
