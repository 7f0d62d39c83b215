"""Miscellaneous functions used throughout the service."""

from __future__ import annotations

import logging
import subprocess
import sys

from netenforce import shared

logger = logging.getLogger("netenforce")

KERNEL_MODULES: list[str] = [
    "ip_set",
    "ip_set_hash_net",
    "ip_set_list_set",
    "xt_set",
    "xt_mark",
    "xt_comment",
    "xt_MASQUERADE",
]


def signal_handler(*_: object) -> None:
    """Shut down the program gracefully."""
    logger.info("SIGTERM received. Stopping all tasks.")
    shared.STOP_EVENT.set()


def check_system_requirements() -> None:
    """Check if required kernel modules are installed."""
    module: str = ""
    try:
        for module in KERNEL_MODULES:
            logger.debug("Verifying kernel module %s is installed", module)
            subprocess.run(  # noqa: S603
                ["/usr/sbin/modinfo", module],
                check=True,
                stdout=subprocess.PIPE,
            )
    except (subprocess.CalledProcessError, FileNotFoundError):
        logger.critical("The '%s' kernel module isn't installed. Exiting.", module)
        sys.exit(1)
