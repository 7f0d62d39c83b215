"""Query interface state."""

from __future__ import annotations

import asyncio
import logging

from netenforce import config

logger = logging.getLogger("netenforce")


def _read_carrier(ifname: str) -> str | None:
    path = config.SYS_CLASS_NET.joinpath(ifname, "carrier")
    try:
        return path.read_text(encoding="utf-8").strip()
    except OSError:
        # The file is absent while the interface doesn't exist and unreadable
        # while it is administratively down.
        return None


async def has_carrier(ifname: str) -> bool:
    """Return True if the interface reports a carrier."""
    return await asyncio.to_thread(_read_carrier, ifname) == "1"


def interface_name(prefix: str, suffix: str) -> str:
    """Build an interface name that fits in IFNAMSIZ."""
    return f"{prefix}{suffix}"[: config.IFNAMSIZ]
