"""Shared functions used throughout the netenforcectl CLI tool."""

from __future__ import annotations

import asyncio
from typing import Any, Coroutine, TypeVar

import typer

from netenforce import config
from netenforce.errors import ConfigError
from netenforce.models.settings import load_settings
from netenforce.vpnclient import DRIVERS, DockerVPNClient, list_profile_ids

T = TypeVar("T")


def load_service_settings(ctx: typer.Context) -> None:
    """Apply the service settings so paths match the daemon's."""
    try:
        load_settings(config.SERVICE_CONFIG_PATH).apply()
    except ConfigError as e:
        ctx.fail(str(e))


def run(coro: Coroutine[Any, Any, T]) -> T:
    return asyncio.run(coro)


def find_protocol(profile_id: str) -> str | None:
    """Return the protocol a profile has settings for."""
    for protocol in DRIVERS:
        if profile_id in list_profile_ids(protocol):
            return protocol
    return None


def get_client(ctx: typer.Context, profile_id: str) -> DockerVPNClient:
    """Return the VPN client of a profile, failing if it doesn't exist."""
    protocol = find_protocol(profile_id)
    if protocol is None:
        ctx.fail(f"VPN client profile '{profile_id}' doesn't exist.")
    return DockerVPNClient(profile_id, DRIVERS[protocol]())
