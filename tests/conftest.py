"""Shared fixtures: a simulated host and an isolated configuration."""

from __future__ import annotations

from typing import Any, Callable

import pytest

from netenforce import config
from netenforce.identity import IdentityRegistry
from netenforce.network import command
from netenforce.network.command import CommandResult
from netenforce.scheduler import TimerRegistry
from netenforce.services.dnsmasq import DNSMasq
from netenforce.store import EventBus, JsonStore


class FakeSystem:
    """Simulates the ipset, iptables and service commands of a host.

    Every command is recorded. ipsets and rules keep state so tests can assert
    on the resulting host state instead of on the command sequence.
    """

    def __init__(self) -> None:
        self.calls: list[tuple[str, ...]] = []
        self.stdins: list[str | None] = []
        self.ipsets: dict[str, set[str]] = {}
        self.ipset_types: dict[str, tuple[str, ...]] = {}
        self.rules: list[tuple[str, ...]] = []
        self.responses: dict[tuple[str, ...], tuple[int, str]] = {}
        self.failing: list[Callable[[tuple[str, ...]], bool]] = []

    def fail_when(self, predicate: Callable[[tuple[str, ...]], bool]) -> None:
        self.failing.append(predicate)

    def respond(self, prefix: tuple[str, ...], stdout: str, returncode: int = 0) -> None:
        """Answer commands starting with prefix with stdout."""
        self.responses[prefix] = (returncode, stdout)

    def commands(self, binary: str) -> list[tuple[str, ...]]:
        return [call for call in self.calls if call[0].endswith(binary)]

    def rules_in(self, table: str, chain: str) -> list[tuple[str, ...]]:
        return [rule[3:] for rule in self.rules if rule[1:3] == (table, chain)]

    async def run(self, *args: str, stdin: str | None = None) -> CommandResult:
        self.calls.append(args)
        self.stdins.append(stdin)
        if any(predicate(args) for predicate in self.failing):
            return self._result(args, 1, stderr="simulated failure")
        binary = args[0].rsplit("/", 1)[-1]
        if binary == "ipset":
            return self._ipset(args, stdin)
        if binary in ("iptables", "ip6tables"):
            return self._iptables(args)
        for prefix, (returncode, stdout) in self.responses.items():
            if args[: len(prefix)] == prefix:
                return self._result(args, returncode, stdout=stdout)
        return self._result(args, 0)

    @staticmethod
    def _result(
        args: tuple[str, ...],
        returncode: int,
        stdout: str = "",
        stderr: str = "",
    ) -> CommandResult:
        return CommandResult(
            args=list(args),
            returncode=returncode,
            stdout=stdout,
            stderr=stderr,
        )

    def _ipset_command(self, fields: list[str]) -> str | None:
        fields = [field for field in fields if field != "-exist"]
        operation, name, *rest = fields
        if operation == "create":
            self.ipsets.setdefault(name, set())
            self.ipset_types.setdefault(name, tuple(rest))
            return None
        if name not in self.ipsets:
            return f"The set with the given name does not exist: {name}"
        if operation == "flush":
            self.ipsets[name].clear()
        elif operation == "destroy":
            del self.ipsets[name]
            self.ipset_types.pop(name, None)
        elif operation == "add":
            self.ipsets[name].add(rest[0])
        elif operation == "del":
            self.ipsets[name].discard(rest[0])
        return None

    def _ipset(self, args: tuple[str, ...], stdin: str | None) -> CommandResult:
        if args[1] == "restore":
            for line in (stdin or "").splitlines():
                if error := self._ipset_command(line.split()):
                    return self._result(args, 1, stderr=error)
            return self._result(args, 0)
        if error := self._ipset_command(list(args[1:])):
            return self._result(args, 1, stderr=error)
        return self._result(args, 0)

    def _iptables(self, args: tuple[str, ...]) -> CommandResult:
        binary, _wait, _t, table, operation, chain, *rest = args
        rule = (binary.rsplit("/", 1)[-1], table, chain, *rest)
        if operation == "-C":
            return self._result(args, 0 if rule in self.rules else 1)
        if operation == "-A":
            self.rules.append(rule)
            return self._result(args, 0)
        if operation == "-D":
            if rule not in self.rules:
                return self._result(args, 1, stderr="Bad rule")
            self.rules.remove(rule)
            return self._result(args, 0)
        return self._result(args, 2, stderr=f"unsupported operation {operation}")


class StaticKind:
    """Identity kind with a fixed set of identities."""

    def __init__(self, namespace: str = "test", uids: list[str] | None = None) -> None:
        self.namespace = namespace
        self.uids = uids or []

    async def list_identities(self, registry: IdentityRegistry) -> dict[str, Any]:
        return {uid: registry.get_or_create(self, uid) for uid in self.uids}

    async def get_ip_unique_id_mappings(self) -> dict[str, str]:
        return {}


class FakeClock:
    def __init__(self, now: float = 1_000_000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


@pytest.fixture(autouse=True)
def netenforce_config(tmp_path, monkeypatch):
    """Point every path of the service into a temporary directory."""
    hidden = tmp_path.joinpath("hidden")
    monkeypatch.setattr(config, "HIDDEN_FOLDER", hidden)
    monkeypatch.setattr(config, "USER_CONFIG_FOLDER", hidden.joinpath("config"))
    monkeypatch.setattr(config, "STATE_PATH", hidden.joinpath("run", "state.json"))
    monkeypatch.setattr(config, "POLICY_DIR", hidden.joinpath("config", "policies"))
    monkeypatch.setattr(
        config,
        "DOCKER_VPN_CLIENT_DIR",
        hidden.joinpath("run", "docker_vpn_client"),
    )
    monkeypatch.setattr(config, "DOCKER_WORKING_DIR", hidden.joinpath("run", "docker"))
    monkeypatch.setattr(config, "SYS_CLASS_NET", tmp_path.joinpath("sys", "class", "net"))
    rt_tables = tmp_path.joinpath("rt_tables")
    rt_tables.write_text("255\tlocal\n254\tmain\n# comment\n201\twan_routable\n")
    monkeypatch.setattr(config, "RT_TABLES_PATHS", (rt_tables,))
    monkeypatch.setattr(config, "LINK_UP_INTERVAL", 0)
    monkeypatch.setattr(config, "DNSMASQ_RESTART_DELAY", 0)
    monkeypatch.setattr(config, "DNSMASQ_SERVICE", "dnsmasq")
    monkeypatch.setattr(config, "IS_PRIMARY", True)
    monkeypatch.setattr(config, "LOG_PATH", tmp_path.joinpath("netenforce.log"))
    monkeypatch.setattr(config, "SERVICE_CONFIG_PATH", tmp_path.joinpath("netenforce.yaml"))
    return hidden


@pytest.fixture
def fake(monkeypatch) -> FakeSystem:
    system = FakeSystem()
    monkeypatch.setattr(command, "run", system.run)
    return system


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def kind() -> StaticKind:
    return StaticKind()


@pytest.fixture
async def registry(fake, clock):
    """Primary registry with in-memory state and no delays."""
    registry = IdentityRegistry(
        store=JsonStore(),
        publisher=EventBus(),
        dnsmasq=DNSMasq(delay=0),
        timers=TimerRegistry(clock=clock),
        primary=True,
        policy_apply_delay=0,
    )
    yield registry
    await registry.shutdown()
