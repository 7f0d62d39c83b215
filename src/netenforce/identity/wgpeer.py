"""WireGuard peers as identities."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from netenforce.network import command

if TYPE_CHECKING:
    from netenforce.identity.base import Identity
    from netenforce.identity.registry import IdentityRegistry

logger = logging.getLogger("netenforce")

WG = "/usr/bin/wg"


class WGPeer:
    """Peers of a WireGuard interface, identified by their public key."""

    namespace = "wg_peer"

    def __init__(self, interface: str = "wg0") -> None:
        self.interface = interface

    async def _allowed_ips(self) -> dict[str, list[str]]:
        proc = await command.run(WG, "show", self.interface, "allowed-ips")
        if not proc.ok:
            logger.error("Failed to list peers of %s: %s", self.interface, proc.error())
            return {}
        peers: dict[str, list[str]] = {}
        for line in proc.stdout.splitlines():
            fields = line.split()
            if not fields:
                continue
            public_key, *allowed_ips = fields
            peers[public_key] = [ip for ip in allowed_ips if ip != "(none)"]
        return peers

    async def list_identities(
        self,
        registry: IdentityRegistry,
    ) -> dict[str, Identity]:
        """Return the peers of the interface, keyed by public key."""
        return {
            public_key: registry.get_or_create(
                self,
                public_key,
                {"interface": self.interface, "allowedIPs": allowed_ips},
            )
            for public_key, allowed_ips in (await self._allowed_ips()).items()
        }

    async def get_ip_unique_id_mappings(self) -> dict[str, str]:
        """Map each peer address to the public key of the peer."""
        mappings: dict[str, str] = {}
        for public_key, allowed_ips in (await self._allowed_ips()).items():
            for ip in allowed_ips:
                if ip.endswith(("/32", "/128")):
                    mappings[ip.split("/", 1)[0]] = public_key
        return mappings
