"""VPN client profiles."""

from .base import ProfileEnvironment, route_ipset_name
from .docker import DockerVPNClient, ProtocolDriver, list_profile_ids
from .openconnect import OpenConnectDriver

DRIVERS: dict[str, type[ProtocolDriver]] = {OpenConnectDriver.protocol: OpenConnectDriver}

__all__ = [
    "DRIVERS",
    "DockerVPNClient",
    "OpenConnectDriver",
    "ProfileEnvironment",
    "ProtocolDriver",
    "list_profile_ids",
    "route_ipset_name",
]
