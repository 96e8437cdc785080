"""
CLI: ``botfleet billing``: feed billing events and list received ones.
"""

from __future__ import annotations

import json
from pathlib import Path

import typer

from botfleet.billing.events import extract_tenant_id
from botfleet.cli.utils import err_console, output, run_with_fleet

app = typer.Typer(no_args_is_help=True)


@app.command("event")
def event(
    payload_file: Path = typer.Argument(
        ..., exists=True, dir_okay=False, help="JSON file holding the billing event"
    ),
    tenant_id: str | None = typer.Option(
        None, "--tenant", "-t", help="Tenant id (default: the event's metadata)"
    ),
    database: str | None = typer.Option(None, "--database", "-d"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Apply one billing event, as the webhook layer would."""
    try:
        payload = json.loads(payload_file.read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        err_console.print(f"[bold red]Error[/bold red]: invalid JSON: {exc}")
        raise typer.Exit(code=2) from exc

    event_id = payload.get("id")
    event_type = payload.get("type")
    tenant = tenant_id or extract_tenant_id(payload)
    if not event_id or not event_type:
        err_console.print("[bold red]Error[/bold red]: event needs 'id' and 'type'")
        raise typer.Exit(code=2)
    if not tenant:
        err_console.print("[bold red]Error[/bold red]: no tenant id (use --tenant)")
        raise typer.Exit(code=2)

    async def _handle(fleet):
        return await fleet.events.handle(tenant, event_id, event_type, payload)

    outcome = run_with_fleet(database, _handle, as_json=json_out)
    output(outcome, as_json=json_out, title=f"Billing event {event_id}")


@app.command("events")
def events(
    limit: int = typer.Option(50, "--limit", "-n", min=1),
    database: str | None = typer.Option(None, "--database", "-d"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """List the most recently received billing events."""

    async def _list(fleet):
        return fleet.entitlements.recent_events(limit)

    output(run_with_fleet(database, _list, as_json=json_out), as_json=json_out, title="Billing Events")
