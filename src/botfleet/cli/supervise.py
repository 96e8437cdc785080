"""
CLI: ``botfleet reconcile`` / ``health`` / ``serve``: fleet-wide operations.
"""

from __future__ import annotations

import asyncio
import signal
import sys

import typer

from botfleet.cli.utils import console, load_settings, output, run_with_fleet
from botfleet.core.logging import configure_logging, get_logger
from botfleet.fleet import build_fleet

logger = get_logger(__name__)


def reconcile(
    tenant_id: str | None = typer.Option(None, "--tenant", "-t", help="Only this tenant"),
    database: str | None = typer.Option(None, "--database", "-d"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Replay every worker's desired state against the supervisor."""

    async def _reconcile(fleet):
        return await fleet.controller.reconcile(tenant_id)

    output(run_with_fleet(database, _reconcile, as_json=json_out), as_json=json_out, title="Reconcile")


def health(
    database: str | None = typer.Option(None, "--database", "-d"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Check that the configured supervisor backend is reachable."""

    async def _health(fleet):
        return await fleet.supervisor.health()

    result = run_with_fleet(database, _health, as_json=json_out)
    output(result, as_json=json_out, title="Supervisor Health")
    if not result.healthy:
        raise typer.Exit(code=1)


def serve(
    interval: float = typer.Option(
        0.0, "--interval", "-i", min=0.0, help="Seconds between reconcile passes (0 = only at startup)"
    ),
    database: str | None = typer.Option(None, "--database", "-d"),
) -> None:
    """Run the orchestrator: reconcile, then supervise until interrupted.

    With the ``process`` backend the workers are children of this command
    and stop with it.
    """
    settings = load_settings(database)
    configure_logging(
        level=settings.log_level, json_format=settings.log_json, stream=sys.stderr
    )

    async def _serve() -> None:
        fleet = build_fleet(settings)
        stop = asyncio.Event()
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, stop.set)
            except (NotImplementedError, RuntimeError):
                pass  # not supported on this platform / thread
        try:
            report = await fleet.controller.reconcile()
            console.print(
                f"[bold green]Serving[/bold green] ({fleet.supervisor.backend_name}): "
                f"{len(report.started)} started, {len(report.stopped)} stopped, "
                f"{len(report.failed)} failed"
            )
            while not stop.is_set():
                try:
                    await asyncio.wait_for(stop.wait(), timeout=interval or None)
                except TimeoutError:
                    await fleet.controller.reconcile()
        finally:
            logger.info("fleet.shutdown")
            await fleet.close()

    asyncio.run(_serve())
    console.print("[dim]Stopped.[/dim]")
