"""Build and apply ip(6)tables rules identified by their comment."""

from __future__ import annotations

import logging
from typing import Literal

from pydantic import BaseModel, ConfigDict

from netenforce import config
from netenforce.models import Family, StepResult
from netenforce.network import command

logger = logging.getLogger("netenforce")

IPTABLES = "/usr/sbin/iptables"
IP6TABLES = "/usr/sbin/ip6tables"


class Rule(BaseModel):
    """Define an ip(6)tables rule.

    Rules have no identifier of their own. The comment is the handle used to
    find them again, so a rule must always be built with the same comment to
    be removable later on.
    """

    model_config = ConfigDict(frozen=True)

    table: str = "filter"
    chain: str
    jump: str
    family: Family = Family.INET
    source: str | None = None
    match_set: str | None = None
    match_dir: str = "src"
    comment: str | None = None

    def args(self, operation: Literal["-A", "-C", "-D", "-I"]) -> list[str]:
        """Return the argument vector for an operation on this rule."""
        binary = IPTABLES if self.family == Family.INET else IP6TABLES
        output = [binary, "-w", "-t", self.table, operation, self.chain]
        if self.source:
            output.extend(["-s", self.source])
        if self.match_set:
            output.extend(["-m", "set", "--match-set", self.match_set, self.match_dir])
        if self.comment:
            output.extend(["-m", "comment", "--comment", self.comment])
        output.extend(["-j", *self.jump.split()])
        return output

    def __str__(self) -> str:
        return " ".join(self.args("-A")[2:])


async def exists(rule: Rule) -> bool:
    """Check if a rule is present."""
    proc = await command.run(*rule.args("-C"))
    return proc.ok


async def append(rule: Rule) -> StepResult:
    """Append a rule unless it is already present."""
    step = f"append rule '{rule}'"
    if await exists(rule):
        logger.debug("Rule '%s' already present", rule)
        return StepResult(step=step, message="already present")
    proc = await command.run(*rule.args("-A"))
    if not proc.ok:
        logger.error("Failed to append rule '%s': %s", rule, proc.error())
        return StepResult(step=step, ok=False, message=proc.error())
    logger.info("Appended rule '%s'", rule)
    return StepResult(step=step)


async def delete(rule: Rule) -> StepResult:
    """Delete a rule. A rule that isn't present is not an error."""
    step = f"delete rule '{rule}'"
    if not await exists(rule):
        logger.debug("Rule '%s' not present", rule)
        return StepResult(step=step, message="absent")
    proc = await command.run(*rule.args("-D"))
    if not proc.ok:
        logger.error("Failed to delete rule '%s': %s", rule, proc.error())
        return StepResult(step=step, ok=False, message=proc.error())
    logger.info("Deleted rule '%s'", rule)
    return StepResult(step=step)


def masquerade(source: str) -> Rule:
    """Return the NAT rule masquerading traffic from a source address."""
    return Rule(
        table=config.NAT_TABLE,
        chain=config.NAT_POSTROUTING_CHAIN,
        source=source,
        jump="MASQUERADE",
    )
