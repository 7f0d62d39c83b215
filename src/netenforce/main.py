#!/usr/bin/env python3
"""Starts the identity policy enforcement service."""

import asyncio
import logging
import signal
import sys
from logging.handlers import RotatingFileHandler

from netenforce import config, core, helpers
from netenforce.errors import ConfigError
from netenforce.models.settings import load_settings

# LOGGER
# Get logger
logger = logging.getLogger()


def main() -> None:
    """Run the netenforce service."""
    # Load the configuration
    try:
        settings = load_settings(config.SERVICE_CONFIG_PATH)
    except ConfigError as e:
        print(e, file=sys.stderr)  # noqa: T201
        sys.exit(1)
    settings.apply()

    # Configure logging
    logger.setLevel(level=logging.INFO)
    formatter = logging.Formatter(
        fmt=(
            "%(asctime)s(File:%(name)s,Line:%(lineno)d,"
            "%(funcName)s) - %(levelname)s - %(message)s"
        ),
        datefmt="%m/%d/%Y %H:%M:%S %p",
    )
    config.LOG_PATH.parent.mkdir(parents=True, exist_ok=True)
    rothandler = RotatingFileHandler(
        config.LOG_PATH,
        maxBytes=100000,
        backupCount=5,
    )
    rothandler.setFormatter(formatter)
    logger.addHandler(rothandler)
    logger.addHandler(logging.StreamHandler(sys.stdout))

    # check for required kernel modules.
    helpers.check_system_requirements()

    # Used to gracefully shutdown, allows the pending work to finish when a
    # signal is received.
    signal.signal(signal.SIGINT, helpers.signal_handler)
    signal.signal(signal.SIGTERM, helpers.signal_handler)

    # Start the enforcer
    try:
        asyncio.run(core.enforcer())
    except Exception:
        logger.critical("netenforce ended prematurely.", exc_info=True)
        sys.exit(1)


if __name__ == "__main__":
    main()
