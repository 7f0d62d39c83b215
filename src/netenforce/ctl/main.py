#!/usr/bin/env python3

import logging

import typer

from netenforce.ctl import helpers, identity, vpnclient

logging.basicConfig()
logger = logging.getLogger()

app = typer.Typer(help="netenforce CLI policy manager.", no_args_is_help=True)
app.add_typer(vpnclient.app, name="vpnclient", help="Manage VPN client profiles.")
app.add_typer(identity.app, name="identity", help="Manage identity policies.")


@app.callback()
def main(ctx: typer.Context) -> None:
    """Load the service settings before running a command."""
    helpers.load_service_settings(ctx)


if __name__ == "__main__":
    app()
