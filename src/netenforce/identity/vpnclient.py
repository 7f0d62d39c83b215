"""Translate an identity's vpnClient policy into mangle rules.

Two rule variants exist per identity and IP family, both matching the
identity's ipset as source and tagged with its policy key:

* active: sets the fwmark from the profile's route ipset so traffic is routed
  through the VPN client.
* neutralized: clears the VPN client bits in the fwmark, overriding any VPN
  client routing applied earlier in the chain.

At most one of them is present after a policy is applied.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from pydantic import ValidationError

from netenforce import config
from netenforce.models import (
    Family,
    OperationReport,
    RuleVariant,
    StepResult,
    VpnClientPolicy,
)
from netenforce.models.policy import coerce_profile_id
from netenforce.network import iptables
from netenforce.vpnclient.base import route_ipset_name

if TYPE_CHECKING:
    from netenforce.identity.base import Identity

logger = logging.getLogger("netenforce")


def vpn_client_rule(
    identity: Identity,
    profile_id: str,
    family: Family,
    variant: RuleVariant,
) -> iptables.Rule:
    """Build one rule variant of an identity for a profile."""
    if variant == RuleVariant.ACTIVE:
        jump = f"SET --map-set {route_ipset_name(profile_id)} dst,dst --map-mark"
    else:
        jump = f"MARK --set-xmark 0x0000/{config.MASK_VC}"
    return iptables.Rule(
        table=config.MANGLE_TABLE,
        chain=config.VPN_CLIENT_CHAIN,
        family=family,
        match_set=identity.ipset_name(family),
        match_dir="src",
        comment=identity.policy_key,
        jump=jump,
    )


async def _append(
    identity: Identity,
    profile_id: str,
    variant: RuleVariant,
) -> OperationReport:
    report = OperationReport(operation=f"add {variant.value} rule")
    for family in Family:
        report.add(
            await iptables.append(vpn_client_rule(identity, profile_id, family, variant)),
        )
    return report


async def _delete(
    identity: Identity,
    profile_id: str,
    *variants: RuleVariant,
) -> OperationReport:
    report = OperationReport(operation="delete rules")
    for variant in variants:
        for family in Family:
            report.add(
                await iptables.delete(
                    vpn_client_rule(identity, profile_id, family, variant),
                ),
            )
    return report


async def apply_vpn_client_policy(
    identity: Identity,
    policy: dict[str, Any] | VpnClientPolicy,
) -> OperationReport:
    """Apply a vpnClient policy on an identity.

    state True adds the active rule, None adds the neutralized rule and False
    removes both. Switching profile first removes both variants of the
    previous profile. Failures are logged and reported, never raised.
    """
    report = OperationReport(operation=f"vpnClient {identity.guid}")
    try:
        if isinstance(policy, VpnClientPolicy):
            policy = policy.model_dump(by_alias=True)
        if not isinstance(policy, dict):
            logger.warning("Invalid vpnClient policy on %s: %r", identity.guid, policy)
            report.skipped = "invalid policy"
            return report
        profile_id = coerce_profile_id(policy.get("profileId"))

        if identity.profile_id and profile_id != identity.profile_id:
            logger.info(
                "VPN profile id %s differs from the previous profile id %s,"
                " removing old rules on identity %s",
                profile_id,
                identity.profile_id,
                identity.guid,
            )
            report.add(
                await _delete(
                    identity,
                    identity.profile_id,
                    RuleVariant.ACTIVE,
                    RuleVariant.NEUTRALIZED,
                ),
            )

        identity.profile_id = profile_id
        if not profile_id:
            logger.warning("VPN client profileId is not specified for %s", identity.guid)
            report.skipped = "no profile id"
            return report

        try:
            state = VpnClientPolicy.model_validate(policy).state
        except ValidationError as e:
            logger.warning("Invalid vpnClient policy on %s: %s", identity.guid, e)
            report.skipped = "invalid policy"
            return report

        # The ipsets have to exist before a rule can refer to them.
        report.add(await identity.registry.profiles.ensure(profile_id))
        report.add(await identity.create_env())

        if state is True:
            report.add(await _append(identity, profile_id, RuleVariant.ACTIVE))
            report.add(await _delete(identity, profile_id, RuleVariant.NEUTRALIZED))
        elif state is None:
            report.add(await _delete(identity, profile_id, RuleVariant.ACTIVE))
            report.add(await _append(identity, profile_id, RuleVariant.NEUTRALIZED))
        else:
            report.add(
                await _delete(
                    identity,
                    profile_id,
                    RuleVariant.ACTIVE,
                    RuleVariant.NEUTRALIZED,
                ),
            )
    except Exception as e:
        logger.exception("Failed to set VPN client access on %s", identity.guid)
        report.add(StepResult(step="vpnClient", ok=False, message=str(e)))
    return report
