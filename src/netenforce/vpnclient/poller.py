"""Wait for a VPN client interface to come up."""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable

from netenforce import config
from netenforce.network import interface

logger = logging.getLogger("netenforce")


async def wait_for_link_up(
    ifname: str,
    attempts: int | None = None,
    interval: float | None = None,
    check: Callable[[str], Awaitable[bool]] | None = None,
) -> bool:
    """Poll the interface carrier at a fixed interval.

    Returns True as soon as the carrier is present, False once the attempts
    are used up. Running out of attempts isn't an error.
    """
    attempts = config.LINK_UP_ATTEMPTS if attempts is None else attempts
    interval = config.LINK_UP_INTERVAL if interval is None else interval
    check = check or interface.has_carrier

    for attempt in range(attempts):
        if await check(ifname):
            logger.info("Interface %s is up after %d attempts", ifname, attempt + 1)
            return True
        if attempt < attempts - 1:
            await asyncio.sleep(interval)

    logger.warning("Interface %s isn't up after %d attempts", ifname, attempts)
    return False
