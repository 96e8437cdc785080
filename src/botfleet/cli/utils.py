"""
CLI utility helpers: fleet wiring, async bridging and output formatting.
"""

from __future__ import annotations

import asyncio
import json
from collections.abc import Awaitable, Callable
from typing import Any, NoReturn, TypeVar

import typer
from rich.console import Console
from rich.table import Table

from botfleet.core.errors import FleetError
from botfleet.core.settings import FleetSettings
from botfleet.fleet import Fleet, build_fleet

console = Console()
err_console = Console(stderr=True)

T = TypeVar("T")


# ── Fleet helpers ────────────────────────────────────────────────────────


def load_settings(database: str | None = None) -> FleetSettings:
    """Settings from the environment, with ``--database`` applied on top."""
    overrides: dict[str, Any] = {}
    if database:
        overrides["database_url"] = database if "://" in database else f"sqlite:///{database}"
    return FleetSettings(**overrides)


def run_with_fleet(
    database: str | None,
    action: Callable[[Fleet], Awaitable[T]],
    *,
    as_json: bool = False,
) -> T:
    """Build a fleet, run *action* on it, close it; fleet errors exit non-zero."""

    async def _run() -> T:
        fleet = build_fleet(load_settings(database))
        try:
            return await action(fleet)
        finally:
            await fleet.close()

    try:
        return asyncio.run(_run())
    except FleetError as exc:
        fail(exc, as_json=as_json)
    except ValueError as exc:
        err_console.print(f"[bold red]Error[/bold red]: {exc}")
        raise typer.Exit(code=2) from exc


def fail(exc: FleetError, *, as_json: bool = False) -> NoReturn:
    """Render a fleet error and exit with status 1."""
    if as_json:
        console.print_json(json.dumps(exc.to_dict(), default=str))
    elif exc.is_caller_error:
        err_console.print(f"[bold red]Error[/bold red] ({exc.category.value}): {exc.message}")
    else:
        cause = f" ({exc.cause})" if exc.cause is not None else ""
        err_console.print(
            f"[bold red]Error[/bold red] ({exc.category.value}): {exc.message}{cause}"
        )
    raise typer.Exit(code=1)


# ── Output helpers ───────────────────────────────────────────────────────


def _to_dict(obj: Any) -> dict[str, Any]:
    if hasattr(obj, "to_dict"):
        return obj.to_dict()
    if isinstance(obj, dict):
        return obj
    return {"value": str(obj)}


def output(data: Any, *, as_json: bool = False, title: str = "") -> None:
    """Render an object, a list of objects or ``None`` to the terminal."""
    if as_json:
        payload = [_to_dict(d) for d in data] if isinstance(data, list | tuple) else (
            _to_dict(data) if data is not None else None
        )
        console.print_json(json.dumps(payload, default=str))
        return

    if data is None:
        console.print("[dim]Nothing to show.[/dim]")
        return
    if isinstance(data, list | tuple):
        if not data:
            console.print("[dim]No items.[/dim]")
            return
        _print_table(list(data), title=title)
    else:
        _print_dict(_to_dict(data), title=title)


def _print_table(items: list, *, title: str = "") -> None:
    """Render a list of records as a Rich table."""
    first = _to_dict(items[0])
    table = Table(title=title or None, show_lines=False, pad_edge=False)
    for col in first:
        table.add_column(col, overflow="fold")
    for item in items:
        d = _to_dict(item)
        table.add_row(*(str(v) for v in d.values()))
    console.print(table)


def _print_dict(data: dict[str, Any], *, title: str = "") -> None:
    """Render a single dict as key-value pairs."""
    if title:
        console.print(f"[bold]{title}[/bold]")
    for k, v in data.items():
        console.print(f"  [cyan]{k}[/cyan]: {v}")
