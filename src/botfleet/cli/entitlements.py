"""
CLI: ``botfleet entitlement``: inspect and override tenant plans.
"""

from __future__ import annotations

import typer

from botfleet.cli.utils import console, output, run_with_fleet
from botfleet.core.models import PlanStatus

app = typer.Typer(no_args_is_help=True)


@app.command("show")
def show(
    tenant_id: str = typer.Argument(..., help="Tenant id"),
    history: bool = typer.Option(False, "--history", help="Show every recorded entitlement"),
    database: str | None = typer.Option(None, "--database", "-d"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Show the tenant's current entitlement (or its full history)."""

    async def _show(fleet):
        if history:
            return fleet.entitlements.history(tenant_id)
        return fleet.get_entitlement(tenant_id)

    result = run_with_fleet(database, _show, as_json=json_out)
    if result is None and not json_out:
        console.print(f"[dim]No entitlement recorded for {tenant_id} (free plan).[/dim]")
        return
    output(result, as_json=json_out, title=f"Entitlement {tenant_id}")


@app.command("set")
def set_status(
    tenant_id: str = typer.Argument(..., help="Tenant id"),
    status: PlanStatus = typer.Argument(..., help="New plan status"),
    quota: int | None = typer.Option(None, "--quota", min=0, help="Quota override while active"),
    apply: bool = typer.Option(
        True, "--apply/--no-apply", help="Start or stop the tenant's workers to match"
    ),
    database: str | None = typer.Option(None, "--database", "-d"),
    json_out: bool = typer.Option(False, "--json"),
) -> None:
    """Record a plan status for the tenant by hand."""

    async def _set(fleet):
        previous = fleet.get_entitlement(tenant_id)
        entitlement = fleet.entitlements.upsert_entitlement(tenant_id, status, quota_override=quota)
        changed = previous is None or previous.status is not entitlement.status
        report = None
        if apply and changed:
            report = await fleet.controller.on_entitlement_changed(tenant_id, status)
        return entitlement, report

    entitlement, report = run_with_fleet(database, _set, as_json=json_out)
    if json_out:
        output(
            {
                "entitlement": entitlement.to_dict(),
                "report": report.to_dict() if report is not None else None,
            },
            as_json=True,
        )
        return
    output(entitlement, title=f"Entitlement {tenant_id}")
    if report is not None:
        output(report, title="Transitions")
