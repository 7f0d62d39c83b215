"""Manage ipsets used as enforcement sets."""

from __future__ import annotations

import logging

from netenforce.models import Family, StepResult
from netenforce.network import command

logger = logging.getLogger("netenforce")

IPSET = "/usr/sbin/ipset"


SET_ABSENT = "does not exist"


async def _ipset(
    step: str,
    *args: str,
    stdin: str | None = None,
    absent_ok: bool = False,
) -> StepResult:
    proc = await command.run(IPSET, *args, stdin=stdin)
    if not proc.ok and absent_ok and SET_ABSENT in proc.stderr:
        logger.debug("Can't %s, the set doesn't exist", step)
        return StepResult(step=step, message="absent")
    if not proc.ok:
        logger.error("Failed to %s: %s", step, proc.error())
        return StepResult(step=step, ok=False, message=proc.error())
    return StepResult(step=step)


async def create(
    name: str,
    set_type: str = "hash:net",
    family: Family = Family.INET,
    *options: str,
) -> StepResult:
    """Create a set, keeping it if it already exists."""
    args = ["create", "-exist", name, set_type]
    if family == Family.INET6:
        args.extend(["family", "inet6"])
    args.extend(options)
    return await _ipset(f"create ipset {name}", *args)


async def flush(name: str) -> StepResult:
    """Remove all members of a set. A missing set isn't an error."""
    return await _ipset(f"flush ipset {name}", "flush", name, absent_ok=True)


async def destroy(name: str) -> StepResult:
    """Destroy a set. A missing set isn't an error."""
    return await _ipset(f"destroy ipset {name}", "destroy", name, absent_ok=True)


async def add(name: str, member: str) -> StepResult:
    """Add a member to a set. Adding an existing member isn't an error."""
    return await _ipset(f"add {member} to ipset {name}", "add", "-exist", name, member)


async def delete(name: str, member: str) -> StepResult:
    """Remove a member from a set. Removing an absent member isn't an error."""
    return await _ipset(
        f"remove {member} from ipset {name}",
        "del",
        "-exist",
        name,
        member,
    )


async def batch(commands: list[str]) -> StepResult:
    """Apply a list of ipset commands, e.g. 'add <set> <member>', in one call."""
    if not commands:
        return StepResult(step="ipset batch", message="nothing to do")
    return await _ipset(
        f"apply {len(commands)} ipset commands",
        "restore",
        "-exist",
        stdin="\n".join(commands) + "\n",
    )
