"""Runs the core of the application.

Sets up the identity registry, applies the policy files present at start and
observes the policy directory.
"""

from __future__ import annotations

import asyncio
import logging

from netenforce import config, shared
from netenforce.identity import IdentityRegistry
from netenforce.services import policies
from netenforce.services.dnsmasq import DNSMasq
from netenforce.store import EventBus, JsonStore

logger = logging.getLogger("netenforce")


async def enforcer() -> None:
    """Enforce identity policies until asked to stop."""
    logger.info("#" * 100)
    logger.info(
        "Starting netenforce daemon as %s process.",
        "primary" if config.IS_PRIMARY else "secondary",
    )

    store = JsonStore(config.STATE_PATH)
    registry = IdentityRegistry(
        store=store,
        publisher=EventBus(),
        dnsmasq=DNSMasq(),
    )

    config.POLICY_DIR.mkdir(parents=True, exist_ok=True)
    for file_path in sorted(config.POLICY_DIR.glob(pattern="*.yaml")):
        await policies.manage_policy_file(registry, file_path)

    # Start the event handler.
    logger.info("Monitoring identity policy changes in %s.", config.POLICY_DIR)
    observer = policies.observe_policies(registry, asyncio.get_running_loop())
    observer.start()

    # Keep the program running, but terminate if needed.
    try:
        while not shared.STOP_EVENT.is_set():
            await asyncio.sleep(1)
    finally:
        logger.info("Stopping netenforce daemon.")
        observer.stop()
        await asyncio.to_thread(observer.join)
        await registry.shutdown()
