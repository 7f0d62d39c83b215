"""Manage VPN client profiles."""

from __future__ import annotations

from typing import Any

import tabulate
import typer
from rich import print

from netenforce.ctl import helpers
from netenforce.models import OperationReport
from netenforce.vpnclient import DRIVERS, list_profile_ids

app = typer.Typer(no_args_is_help=True)


def print_report(report: OperationReport) -> None:
    output: list[dict[str, Any]] = [
        {"step": step.step, "ok": step.ok, "message": step.message}
        for step in report.steps
    ]
    print(tabulate.tabulate(output, headers="keys"))
    if not report.ok:
        raise typer.Exit(code=1)


@app.command(name="list")
def list_() -> None:
    """List all VPN client profiles."""
    output: list[dict[str, Any]] = [
        {"profile": profile_id, "protocol": protocol}
        for protocol in DRIVERS
        for profile_id in list_profile_ids(protocol)
    ]
    print(tabulate.tabulate(output, headers="keys"))


@app.command()
def show(ctx: typer.Context, profile_id: str) -> None:
    """Show the addressing and state of a VPN client profile."""
    client = helpers.get_client(ctx, profile_id)

    async def _collect() -> dict[str, Any]:
        return {
            "profile": client.profile_id,
            "protocol": client.protocol,
            "interface": client.interface_name,
            "subnet": str(await client.get_subnet() or ""),
            "gateway": str(await client.get_vpn_ip4s() or ""),
            "remote-ip": str(await client.get_remote_ip() or ""),
            "link-up": await client.is_link_up(),
        }

    output = helpers.run(_collect())
    print(tabulate.tabulate(output.items()))


@app.command()
def start(ctx: typer.Context, profile_id: str) -> None:
    """Start a VPN client profile."""
    client = helpers.get_client(ctx, profile_id)
    print_report(helpers.run(client.start()))


@app.command()
def stop(ctx: typer.Context, profile_id: str) -> None:
    """Stop a VPN client profile."""
    client = helpers.get_client(ctx, profile_id)
    print_report(helpers.run(client.stop()))


@app.command()
def destroy(ctx: typer.Context, profile_id: str) -> None:
    """Stop a VPN client profile and remove all of its files."""
    client = helpers.get_client(ctx, profile_id)
    print_report(helpers.run(client.destroy()))


if __name__ == "__main__":
    app()
