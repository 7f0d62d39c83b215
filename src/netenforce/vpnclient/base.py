"""Enforcement environment shared by every VPN client profile."""

from __future__ import annotations

import logging

from netenforce.models import Family, OperationReport
from netenforce.network import ipset

logger = logging.getLogger("netenforce")


def route_ipset_name(profile_id: str) -> str:
    """Name of the set mapping destinations to the profile's routing mark."""
    return f"c_rt_vc_{profile_id[:13]}_set"


class ProfileEnvironment:
    """Create and remove the route ipsets of VPN client profiles."""

    def __init__(self) -> None:
        self._created: set[str] = set()

    def is_created(self, profile_id: str) -> bool:
        return profile_id in self._created

    async def ensure(self, profile_id: str) -> OperationReport:
        """Create the route ipset of a profile once per process."""
        report = OperationReport(operation=f"ensure vpn client env {profile_id}")
        if profile_id in self._created:
            return report
        report.add(
            await ipset.create(
                route_ipset_name(profile_id),
                "list:set",
                Family.INET,
                "skbinfo",
            ),
        )
        self._created.add(profile_id)
        return report

    async def destroy(self, profile_id: str) -> OperationReport:
        report = OperationReport(operation=f"destroy vpn client env {profile_id}")
        name = route_ipset_name(profile_id)
        report.add(await ipset.flush(name))
        report.add(await ipset.destroy(name))
        self._created.discard(profile_id)
        return report
