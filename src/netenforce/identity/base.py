"""Network identities and their enforcement environment.

An identity is a network entity, e.g. a WireGuard peer, on which policies are
enforced. Each identity owns a pair of ipsets (IPv4 and IPv6) holding its
addresses and a dnsmasq configuration file binding those addresses to a DNS
group. Every other enforcement primitive (toggles, VPN client rules) refers to
the ipsets.
"""

from __future__ import annotations

import asyncio
import copy
import ipaddress
import logging
import pathlib
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Protocol

from jinja2 import Environment, FileSystemLoader

from netenforce import config
from netenforce.identity.vpnclient import apply_vpn_client_policy
from netenforce.models import Family, OperationReport, StepResult, Toggle
from netenforce.network import ipset
from netenforce.store import EVENT_CHANNEL, POLICY_CHANGED

if TYPE_CHECKING:
    from netenforce.identity.registry import IdentityRegistry

logger = logging.getLogger("netenforce")

BASE_DIR = pathlib.Path(__file__).parent
TEMPLATES_DIR = BASE_DIR.joinpath("templates")
TEMPLATES_ENV = Environment(loader=FileSystemLoader(TEMPLATES_DIR), autoescape=True)

TOGGLE_SETS: dict[Toggle, str] = {
    Toggle.QOS: "IPSET_QOS_OFF",
    Toggle.ACL: "IPSET_ACL_OFF",
    Toggle.DNS_CACHING: "IPSET_NO_DNS_BOOST",
}


class IdentityKind(Protocol):
    """Capabilities a kind of identity has to provide.

    The namespace is a short tag, at most 8 characters, used in every resource
    name derived from an identity.
    """

    namespace: str

    async def list_identities(
        self,
        registry: IdentityRegistry,
    ) -> dict[str, Identity]: ...

    async def get_ip_unique_id_mappings(self) -> dict[str, str]: ...


def enforcement_ipset_name(namespace: str, uid: str, family: Family = Family.INET) -> str:
    name = f"c_{namespace}_{uid[:12]}_set"
    return name if family == Family.INET else f"{name}6"


def dnsmasq_group_id(namespace: str, uid: str) -> str:
    return f"{namespace}_{uid}"


def address_set_key(namespace: str, uid: str) -> str:
    """Key of the persisted set of addresses dnsmasq matches on."""
    return f"{namespace}:addresses:{uid}"


def policy_key(namespace: str, uid: str) -> str:
    return f"policy:{namespace}:{uid}"


def dnsmasq_config_directory() -> pathlib.Path:
    return config.USER_CONFIG_FOLDER.joinpath("dnsmasq")


def dnsmasq_config_prefix(namespace: str, uid: str) -> str:
    # Unique ids such as WireGuard keys may hold a '/'.
    return f"{namespace}_{uid}".replace("/", "_")


def render_dnsmasq_config(namespace: str, uid: str) -> str:
    template = TEMPLATES_ENV.get_template("dnsmasq-identity.conf.j2")
    return template.render(
        address_set=address_set_key(namespace, uid),
        group_id=dnsmasq_group_id(namespace, uid),
    )


def _strip_host_prefix(ip: str) -> str:
    # dnsmasq doesn't match on CIDR, store host routes as plain addresses.
    if ip.endswith(("/32", "/128")):
        return ip.split("/", 1)[0]
    return ip


def _classify(ip: str) -> Family | None:
    try:
        network = ipaddress.ip_network(ip, strict=False)
    except ValueError:
        return None
    return Family.INET if network.version == 4 else Family.INET6  # noqa: PLR2004


class Identity:
    """A network entity subject to policy enforcement.

    Instances are only created through ``IdentityRegistry.get_or_create`` so
    there is exactly one per namespace and unique id.
    """

    def __init__(
        self,
        kind: IdentityKind,
        uid: str,
        registry: IdentityRegistry,
        attributes: dict[str, Any] | None = None,
    ) -> None:
        self.kind = kind
        self.uid = uid
        self.registry = registry
        self.attributes: dict[str, Any] = attributes or {}
        self.policy: dict[str, Any] = {}
        self.monitoring = False
        self.profile_id: str | None = None
        self._ips: list[str] | None = None
        self._handlers: dict[str, Callable[[Any], Awaitable[Any]]] = {
            "acl": self.acl,
            "aclTimer": self.acl_timer,
            "dnsmasq": self.dnsmasq,
            "monitor": self.spoof,
            "qos": self.qos,
            "tags": self.tags,
            "vpnClient": self.vpn_client,
        }

    def __repr__(self) -> str:
        return f"Identity({self.guid!r})"

    @property
    def namespace(self) -> str:
        return self.kind.namespace

    @property
    def guid(self) -> str:
        return f"{self.namespace}:{self.uid}"

    @property
    def policy_key(self) -> str:
        return policy_key(self.namespace, self.uid)

    def ipset_name(self, family: Family = Family.INET) -> str:
        return enforcement_ipset_name(self.namespace, self.uid, family)

    def get_ips(self) -> list[str]:
        return list(self._ips) if self._ips else []

    def is_monitoring(self) -> bool:
        return self.monitoring

    def to_json(self) -> dict[str, Any]:
        return {
            **self.attributes,
            "uid": self.uid,
            "namespace": self.namespace,
            "ips": self.get_ips(),
            "policy": copy.deepcopy(self.policy),
            "monitoring": self.monitoring,
        }

    # Policy persistence and notification

    async def load_policy(self) -> dict[str, Any]:
        self.policy = await self.registry.store.get_json(self.policy_key) or {}
        return self.policy

    async def save_policy(self) -> None:
        await self.registry.store.set_json(self.policy_key, self.policy)

    async def set_policy(self, name: str, value: Any) -> None:  # noqa: ANN401
        """Set, persist and announce a policy field."""
        self.policy[name] = value
        await self.save_policy()
        if self.registry.publisher is not None:
            self.registry.publisher.publish(
                EVENT_CHANNEL,
                POLICY_CHANGED,
                self.uid,
                {"name": name, "data": value},
            )

    def schedule_apply_policy(self) -> None:
        """Apply the policy soon. Requests close together run only once."""
        self.registry.policy_queue.schedule(self.guid, self.apply_policy)

    async def apply_policy(self) -> OperationReport:
        """Enforce every field of the persisted policy."""
        report = OperationReport(operation=f"apply policy {self.guid}")
        await self.load_policy()
        for name, value in self.policy.items():
            handler = self._handlers.get(name)
            if handler is None:
                logger.debug("No handler for policy '%s' on %s", name, self.guid)
                continue
            try:
                result = await handler(value)
            except Exception as e:
                logger.exception("Failed to apply policy '%s' on %s", name, self.guid)
                report.add(StepResult(step=f"policy {name}", ok=False, message=str(e)))
                continue
            if isinstance(result, OperationReport):
                report.add(result)
        return report

    # Enforcement environment

    async def create_env(self) -> OperationReport:
        return await self.registry.ensure_enforcement_env(self.namespace, self.uid)

    async def destroy_env(self) -> OperationReport:
        """Flush the ipsets and delete the dnsmasq configuration."""
        report = OperationReport(operation=f"destroy env {self.guid}")
        for family in Family:
            report.add(await ipset.flush(self.ipset_name(family)))

        directory = dnsmasq_config_directory()
        prefix = dnsmasq_config_prefix(self.namespace, self.uid)

        def _remove_files() -> list[pathlib.Path]:
            paths = [directory.joinpath(f"{prefix}.conf")]
            paths.extend(directory.glob(f"{prefix}_*.conf"))
            for path in paths:
                path.unlink(missing_ok=True)
            return paths

        try:
            removed = await asyncio.to_thread(_remove_files)
            report.add(StepResult(step=f"remove {len(removed)} dnsmasq config files"))
        except OSError as e:
            logger.error("Failed to remove dnsmasq config for %s: %s", self.guid, e)
            report.add(
                StepResult(step="remove dnsmasq config", ok=False, message=str(e)),
            )
        self.registry.dnsmasq.schedule_restart_dns_service()
        return report

    async def update_ips(self, ips: list[str]) -> OperationReport:
        """Make the ipsets and the persisted address set hold exactly ips."""
        report = OperationReport(operation=f"update ips {self.guid}")
        if self._ips is not None and set(ips) == set(self._ips):
            logger.info("IP addresses of identity %s are not changed", self.guid)
            report.skipped = "unchanged"
            return report
        logger.info(
            "IP addresses of identity %s changed from %s to %s",
            self.guid,
            self._ips,
            ips,
        )
        for family in Family:
            report.add(await ipset.flush(self.ipset_name(family)))

        commands: list[str] = []
        for ip in ips:
            family = _classify(ip)
            if family is None:
                logger.debug("Ignoring invalid address '%s' of %s", ip, self.guid)
                continue
            commands.append(f"add {self.ipset_name(family)} {ip}")
        report.add(await ipset.batch(commands))

        key = address_set_key(self.namespace, self.uid)
        desired = {_strip_host_prefix(ip) for ip in ips}
        try:
            current = await self.registry.store.smembers(key)
            if removed := sorted(current - desired):
                await self.registry.store.srem(key, removed)
            if added := sorted(desired - current):
                await self.registry.store.sadd(key, added)
            report.add(StepResult(step=f"update address set {key}"))
        except Exception as e:
            logger.exception("Failed to update address set %s", key)
            report.add(
                StepResult(step=f"update address set {key}", ok=False, message=str(e)),
            )

        self._ips = list(ips)
        return report

    # Toggles

    async def toggle(self, toggle: Toggle, on: bool) -> OperationReport:  # noqa: FBT001
        """Enable (remove from the off set) or disable a feature."""
        off_set: str = getattr(config, TOGGLE_SETS[toggle])
        report = OperationReport(operation=f"{toggle.value} {on} {self.guid}")
        for family in Family:
            if on:
                report.add(await ipset.delete(off_set, self.ipset_name(family)))
            else:
                report.add(await ipset.add(off_set, self.ipset_name(family)))
        return report

    async def qos(self, state: Any) -> OperationReport:  # noqa: ANN401
        return await self.toggle(Toggle.QOS, state is True)

    async def acl(self, state: Any) -> OperationReport:  # noqa: ANN401
        return await self.toggle(Toggle.ACL, state is True)

    async def dnsmasq(self, policy: dict[str, Any]) -> OperationReport:
        return await self.toggle(Toggle.DNS_CACHING, policy.get("dnsCaching") is True)

    async def acl_timer(self, policy: dict[str, Any] | None = None) -> None:
        """Set the acl policy to policy['state'] at the UNIX time policy['time']."""
        policy = policy or {}
        timers = self.registry.timers
        timers.cancel(self.guid)
        if "state" not in policy:
            return
        deadline = policy.get("time")
        if isinstance(deadline, bool):
            return
        try:
            deadline = float(deadline)  # type: ignore[arg-type]
        except (TypeError, ValueError):
            logger.warning("Invalid acl timer deadline %r on %s", deadline, self.guid)
            return
        if deadline <= timers.clock():
            return
        next_state = policy["state"]

        async def _fire() -> None:
            logger.info("Set acl on %s to %s in acl timer", self.guid, next_state)
            await self.set_policy("acl", next_state)

        timers.schedule_at(self.guid, deadline, _fire)

    async def vpn_client(self, policy: dict[str, Any]) -> OperationReport:
        return await apply_vpn_client_policy(self, policy)

    async def spoof(self, state: Any) -> None:  # noqa: ANN401
        self.monitoring = bool(state)

    async def tags(self, _: Any) -> None:  # noqa: ANN401
        # not supported
        return
