"""Manages dnsmasq restarts after configuration changes."""

from __future__ import annotations

import logging

from netenforce import config
from netenforce.network import command
from netenforce.scheduler import CoalescingQueue

logger = logging.getLogger("netenforce")


class DNSMasq:
    """Restart requests for the DNS service, coalesced over a short window."""

    def __init__(self, delay: float | None = None) -> None:
        self.queue = CoalescingQueue(
            config.DNSMASQ_RESTART_DELAY if delay is None else delay,
        )

    def schedule_restart_dns_service(self) -> None:
        """Request a restart. Requests within the window collapse into one."""
        self.queue.schedule("restart", self.restart_dns_service)

    async def restart_dns_service(self) -> bool:
        logger.info("Restarting %s.", config.DNSMASQ_SERVICE)
        proc = await command.run("/usr/bin/systemctl", "restart", config.DNSMASQ_SERVICE)
        if not proc.ok:
            logger.error("Failed to restart %s: %s", config.DNSMASQ_SERVICE, proc.error())
        return proc.ok
