"""Keep one identity instance per namespace and unique id."""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Any

from netenforce import config
from netenforce.identity.base import (
    Identity,
    IdentityKind,
    dnsmasq_config_directory,
    dnsmasq_config_prefix,
    enforcement_ipset_name,
    render_dnsmasq_config,
)
from netenforce.models import Family, OperationReport, StepResult
from netenforce.network import ipset
from netenforce.scheduler import CoalescingQueue, TimerRegistry
from netenforce.services.dnsmasq import DNSMasq
from netenforce.store import EVENT_CHANNEL, POLICY_CHANGED
from netenforce.vpnclient.base import ProfileEnvironment

if TYPE_CHECKING:
    from netenforce.store import KeyValueStore, Publisher

logger = logging.getLogger("netenforce")

POLICY_APPLY_DELAY = 1.0


class IdentityRegistry:
    """Owns the identities and the state shared between them.

    That is the instances themselves, which enforcement environments have
    been created in this process, the pending acl timers and the collaborators
    (store, publisher, dnsmasq) the identities talk to.
    """

    def __init__(
        self,
        store: KeyValueStore,
        publisher: Publisher | None = None,
        dnsmasq: DNSMasq | None = None,
        timers: TimerRegistry | None = None,
        profiles: ProfileEnvironment | None = None,
        primary: bool | None = None,
        policy_apply_delay: float = POLICY_APPLY_DELAY,
    ) -> None:
        self.store = store
        self.publisher = publisher
        self.dnsmasq = dnsmasq or DNSMasq()
        self.timers = timers or TimerRegistry()
        self.profiles = profiles or ProfileEnvironment()
        self.primary = config.IS_PRIMARY if primary is None else primary
        self.policy_queue = CoalescingQueue(policy_apply_delay)
        self._instances: dict[tuple[str, str], Identity] = {}
        self._env_created: set[tuple[str, str]] = set()

    def __len__(self) -> int:
        return len(self._instances)

    def get(self, namespace: str, uid: str) -> Identity | None:
        return self._instances.get((namespace, uid))

    def get_or_create(
        self,
        kind: IdentityKind,
        uid: str,
        attributes: dict[str, Any] | None = None,
    ) -> Identity:
        """Return the identity of kind and uid, creating it on first use."""
        key = (kind.namespace, uid)
        if identity := self._instances.get(key):
            if attributes:
                identity.attributes.update(attributes)
            return identity

        identity = Identity(kind, uid, self, attributes)
        if self.primary and uid and self.publisher is not None:
            self.publisher.subscribe_once(
                EVENT_CHANNEL,
                POLICY_CHANGED,
                uid,
                lambda _channel, _type, _id, obj: self._on_policy_changed(identity, obj),
            )
        self._instances[key] = identity
        return identity

    def _on_policy_changed(self, identity: Identity, obj: Any) -> None:  # noqa: ANN401
        logger.info("Identity policy is changed on %s: %s", identity.guid, obj)
        identity.schedule_apply_policy()

    def is_env_created(self, namespace: str, uid: str) -> bool:
        return (namespace, uid) in self._env_created

    async def ensure_enforcement_env(self, namespace: str, uid: str) -> OperationReport:
        """Write the dnsmasq config and create the ipsets of an identity.

        The config file is rewritten on every call, the ipsets are created once
        per process. Nothing is raised, failures end up in the report.
        """
        report = OperationReport(operation=f"ensure env {namespace}:{uid}")
        path = dnsmasq_config_directory().joinpath(
            f"{dnsmasq_config_prefix(namespace, uid)}.conf",
        )
        content = render_dnsmasq_config(namespace, uid)

        def _write() -> None:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(content, encoding="utf-8")

        try:
            await asyncio.to_thread(_write)
            report.add(StepResult(step=f"write {path}"))
        except OSError as e:
            logger.error("Failed to create dnsmasq config for identity %s: %s", uid, e)
            report.add(StepResult(step=f"write {path}", ok=False, message=str(e)))
        self.dnsmasq.schedule_restart_dns_service()

        if (namespace, uid) in self._env_created:
            return report

        for family in Family:
            report.add(
                await ipset.create(
                    enforcement_ipset_name(namespace, uid, family),
                    "hash:net",
                    family,
                ),
            )
        self._env_created.add((namespace, uid))
        return report

    async def get_init_data(self, kind: IdentityKind) -> dict[str, dict[str, Any]]:
        """Return the serialized identities of a kind, with their policies."""
        output: dict[str, dict[str, Any]] = {}
        for uid, identity in (await kind.list_identities(self)).items():
            await identity.load_policy()
            output[uid] = identity.to_json()
        return output

    async def shutdown(self) -> None:
        """Cancel timers and let pending work finish."""
        self.timers.cancel_all()
        await self.policy_queue.drain()
        await self.dnsmasq.queue.drain()
