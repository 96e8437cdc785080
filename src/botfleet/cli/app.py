"""
Root Typer application for the botfleet CLI.
"""

from __future__ import annotations

import sys

import typer
from typer import Typer

from botfleet.core.logging import configure_logging

app = Typer(
    name="botfleet",
    help="botfleet: multi-tenant bot process orchestrator.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)


# ── Version callback ─────────────────────────────────────────────────────


def _version_callback(value: bool) -> None:
    if value:
        from botfleet import __version__

        typer.echo(f"botfleet {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool | None = typer.Option(  # noqa: UP007
        None,
        "--version",
        "-V",
        help="Show version and exit.",
        callback=_version_callback,
        is_eager=True,
    ),
    log_level: str = typer.Option(
        "WARNING", "--log-level", envvar="BOTFLEET_LOG_LEVEL", help="Log level of the CLI"
    ),
) -> None:
    """botfleet CLI: manage workers, plans and billing events."""
    configure_logging(level=log_level, stream=sys.stderr)


# ── Sub-command registration ─────────────────────────────────────────────

from botfleet.cli.billing import app as billing_app  # noqa: E402
from botfleet.cli.db import app as db_app  # noqa: E402
from botfleet.cli.entitlements import app as entitlement_app  # noqa: E402
from botfleet.cli.supervise import health, reconcile, serve  # noqa: E402
from botfleet.cli.workers import app as worker_app  # noqa: E402

app.add_typer(db_app, name="db", help="Database operations.")
app.add_typer(worker_app, name="worker", help="Worker lifecycle and settings.")
app.add_typer(entitlement_app, name="entitlement", help="Tenant plans and quotas.")
app.add_typer(billing_app, name="billing", help="Billing events.")
app.command("reconcile")(reconcile)
app.command("health")(health)
app.command("serve")(serve)
