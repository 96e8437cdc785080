"""
CLI: ``botfleet worker``: create, configure, start and stop workers.
"""

from __future__ import annotations

import typer

from botfleet.cli.utils import console, output, run_with_fleet

app = typer.Typer(no_args_is_help=True)


@app.command("create")
def create(
    tenant_id: str = typer.Argument(..., help="Owning tenant id"),
    name: str | None = typer.Option(None, "--name", "-n", help="Display name"),
    database: str | None = typer.Option(None, "--database", "-d"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Create a worker slot for a tenant (counts against its plan)."""

    async def _create(fleet):
        return fleet.create_worker(tenant_id, name)

    output(run_with_fleet(database, _create, as_json=json_out), as_json=json_out, title="Worker")


@app.command("list")
def list_workers(
    tenant_id: str | None = typer.Option(None, "--tenant", "-t", help="Only this tenant"),
    database: str | None = typer.Option(None, "--database", "-d"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """List workers, newest first."""

    async def _list(fleet):
        return fleet.list_workers(tenant_id)

    output(run_with_fleet(database, _list, as_json=json_out), as_json=json_out, title="Workers")


@app.command("show")
def show(
    worker_id: int = typer.Argument(...),
    database: str | None = typer.Option(None, "--database", "-d"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Show one worker with its settings."""

    async def _show(fleet):
        worker = fleet.registry.require_worker(worker_id)
        return {**worker.to_dict(), "settings": fleet.registry.get_settings(worker_id).to_dict()}

    output(run_with_fleet(database, _show, as_json=json_out), as_json=json_out, title="Worker")


@app.command("token")
def token(
    worker_id: int = typer.Argument(...),
    value: str = typer.Option(..., "--token", prompt="Bot token", hide_input=True),
    database: str | None = typer.Option(None, "--database", "-d"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Set (overwrite) the worker's bot token."""

    async def _set(fleet):
        return fleet.set_credential(worker_id, value)

    output(run_with_fleet(database, _set, as_json=json_out), as_json=json_out, title="Worker")


@app.command("settings")
def settings(
    worker_id: int = typer.Argument(...),
    prefix: str | None = typer.Option(None, "--prefix", "-p", help="Command prefix"),
    enable: list[str] = typer.Option([], "--enable", "-e", help="Feature to switch on"),
    disable: list[str] = typer.Option([], "--disable", "-x", help="Feature to switch off"),
    database: str | None = typer.Option(None, "--database", "-d"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Show the worker's settings, or update prefix and feature toggles."""
    features = {name: True for name in enable}
    features.update({name: False for name in disable})

    async def _settings(fleet):
        if prefix is None and not features:
            fleet.registry.require_worker(worker_id)
            return fleet.registry.get_settings(worker_id)
        return fleet.upsert_settings(worker_id, prefix=prefix, features=features or None)

    output(run_with_fleet(database, _settings, as_json=json_out), as_json=json_out, title="Settings")


@app.command("start")
def start(
    worker_id: int = typer.Argument(...),
    database: str | None = typer.Option(None, "--database", "-d"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Start the worker's process."""

    async def _start(fleet):
        return await fleet.request_start(worker_id)

    output(run_with_fleet(database, _start, as_json=json_out), as_json=json_out, title="Started")


@app.command("stop")
def stop(
    worker_id: int = typer.Argument(...),
    database: str | None = typer.Option(None, "--database", "-d"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Stop the worker's process. Always leaves the worker stopped."""

    async def _stop(fleet):
        return await fleet.request_stop(worker_id)

    output(run_with_fleet(database, _stop, as_json=json_out), as_json=json_out, title="Stopped")


@app.command("delete")
def delete(
    worker_id: int = typer.Argument(...),
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation"),
    database: str | None = typer.Option(None, "--database", "-d"),
) -> None:
    """Stop the worker and remove it with its settings."""
    if not yes:
        typer.confirm(f"Delete worker {worker_id}?", abort=True)

    async def _delete(fleet):
        await fleet.controller.delete_worker(worker_id)

    run_with_fleet(database, _delete)
    console.print(f"[green]Deleted[/green] worker {worker_id}")


@app.command("metrics")
def metrics(
    worker_id: int = typer.Argument(...),
    database: str | None = typer.Option(None, "--database", "-d"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Show live process metrics (status, restarts, uptime, cpu, memory)."""

    async def _describe(fleet):
        return await fleet.describe(worker_id)

    description = run_with_fleet(database, _describe, as_json=json_out)
    if description is None and not json_out:
        console.print("[dim]No process known to the supervisor (stopped).[/dim]")
        return
    output(description, as_json=json_out, title=f"Worker {worker_id}")


@app.command("logs")
def logs(
    worker_id: int = typer.Argument(...),
    tail: int = typer.Option(100, "--tail", "-n", min=1),
    database: str | None = typer.Option(None, "--database", "-d"),
) -> None:
    """Print the last lines of the worker's output."""

    async def _logs(fleet):
        return await fleet.logs(worker_id, tail)

    for line in run_with_fleet(database, _logs):
        typer.echo(line)
