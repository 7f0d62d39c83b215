"""Allocate container bridge subnets that don't collide with local subnets."""

from __future__ import annotations

import logging
import random
from ipaddress import IPv4Address, IPv4Network
from typing import Iterable

from netenforce import config
from netenforce.errors import SubnetExhaustedError

logger = logging.getLogger("netenforce")


def generate_random_network(
    local_subnets: Iterable[IPv4Network],
    rng: random.Random | None = None,
    attempts: int | None = None,
) -> IPv4Network:
    """Pick a random private /24 that doesn't overlap any local subnet.

    Candidates are drawn from 10.0.0.0/8, 172.16.0.0/12 and 192.168.0.0/16 in
    turn. A collision moves on to the next range.
    """
    rng = rng or random.Random()  # noqa: S311
    attempts = config.SUBNET_ALLOCATION_ATTEMPTS if attempts is None else attempts
    local_subnets = list(local_subnets)
    ranges = config.PRIVATE_RANGES

    index = 0
    for _ in range(attempts):
        start, random_bits = ranges[index % len(ranges)]
        offset = rng.randrange(2**random_bits) * 256
        candidate = IPv4Network(f"{IPv4Address(int(start.network_address) + offset)}/24")
        if not any(candidate.overlaps(subnet) for subnet in local_subnets):
            return candidate
        logger.debug("Subnet %s collides with a local subnet", candidate)
        index += 1

    msg = f"No free /24 found in {attempts} attempts"
    raise SubnetExhaustedError(msg)


def host_address(subnet: IPv4Network, offset: int) -> IPv4Address:
    return subnet.network_address + offset
