"""Manage network routes."""

from __future__ import annotations

import asyncio
import logging
import socket
from ipaddress import IPv4Address, IPv4Interface, IPv4Network
from typing import Any, Literal

from pyroute2 import IPRoute

from netenforce import config
from netenforce.models import StepResult

logger = logging.getLogger("netenforce")


def table_id(name: str) -> int | None:
    """Resolve a named routing table from the iproute2 rt_tables files."""
    if name.isdigit():
        return int(name)
    files = []
    for path in config.RT_TABLES_PATHS:
        if path.is_dir():
            files.extend(sorted(path.glob("*.conf")))
        elif path.exists():
            files.append(path)
    for path in files:
        for line in path.read_text(encoding="utf-8").splitlines():
            fields = line.split("#", 1)[0].split()
            if len(fields) == 2 and fields[1] == name and fields[0].isdigit():  # noqa: PLR2004
                return int(fields[0])
    return None


def command(
    command: Literal["replace", "add", "del"],
    dst: IPv4Network | IPv4Address,
    ifname: str | None = None,
    gateway: IPv4Address | None = None,
    table: int | None = None,
) -> StepResult:
    """Perform route actions."""
    step = f"{command} route {dst} via '{gateway}/{ifname}' in table {table}"
    route_params: dict[str, Any] = {"dst": str(IPv4Network(dst))}
    if gateway:
        route_params["gateway"] = str(gateway)
    if table is not None:
        route_params["table"] = table
    try:
        with IPRoute() as ipr:
            if ifname:
                if not (idx := ipr.link_lookup(ifname=ifname)):
                    logger.warning("Interface %s not found, route not set", ifname)
                    return StepResult(step=step, ok=False, message="no such interface")
                route_params["oif"] = idx[0]
            ipr.route(command, **route_params)
    except Exception as e:  # noqa: BLE001
        logger.warning(
            "Operation '%s' failed for route: %s via '%s/%s' table %s: %s",
            command,
            dst,
            gateway,
            ifname,
            table,
            e,
        )
        return StepResult(step=step, ok=False, message=str(e))
    logger.info(
        "Operation '%s' succeeded for route: %s via '%s/%s' table %s",
        command,
        dst,
        gateway,
        ifname,
        table,
    )
    return StepResult(step=step)


async def add_route_to_table(
    dst: IPv4Address,
    ifname: str,
    table_name: str,
) -> StepResult:
    """Add a host route through an interface into a named table."""
    table = table_id(table_name)
    if table is None:
        logger.error("Routing table '%s' isn't defined", table_name)
        return StepResult(
            step=f"add route {dst} to table {table_name}",
            ok=False,
            message="unknown routing table",
        )
    return await asyncio.to_thread(
        command,
        "replace",
        dst,
        ifname=ifname,
        table=table,
    )


def local_subnets4() -> list[IPv4Network]:
    """Return the IPv4 subnets attached to the local interfaces."""
    subnets: list[IPv4Network] = []
    with IPRoute() as ipr:
        for msg in ipr.get_addr(family=socket.AF_INET):
            address = msg.get_attr("IFA_ADDRESS")
            if not address:
                continue
            subnets.append(IPv4Interface(f"{address}/{msg['prefixlen']}").network)
    return subnets
