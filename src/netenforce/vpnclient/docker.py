"""VPN clients running as docker-compose services.

The protocol specific part, preparing the compose file and the files it
mounts, is delegated to a ``ProtocolDriver``. This module takes care of the
host side: the bridge network and its subnet, the compose service, NAT for
the container address and the route towards it.
"""

from __future__ import annotations

import asyncio
import logging
import shutil
from ipaddress import IPv4Address, IPv4Network
from typing import TYPE_CHECKING, Any, Callable, Iterable, Protocol

import yaml

from netenforce import config
from netenforce.models import OperationReport, StepResult
from netenforce.network import command, interface, iptables, route
from netenforce.vpnclient import poller
from netenforce.vpnclient.base import ProfileEnvironment
from netenforce.vpnclient.subnet import generate_random_network, host_address

if TYPE_CHECKING:
    import pathlib
    import random

logger = logging.getLogger("netenforce")

SYSTEMCTL = "/usr/bin/systemctl"
DOCKER = "/usr/bin/docker"


class ProtocolDriver(Protocol):
    """Capabilities a docker based VPN protocol has to provide."""

    protocol: str

    async def prepare_assets(self, client: DockerVPNClient) -> None:
        """Put the compose file and the files it mounts in the config directory."""

    async def is_link_up_inside_container(self, client: DockerVPNClient) -> bool: ...

    async def get_dns_servers(self, client: DockerVPNClient) -> list[str]: ...


def _read_text(path: pathlib.Path) -> str | None:
    try:
        return path.read_text(encoding="utf-8").strip()
    except OSError:
        return None


def list_profile_ids(protocol: str) -> list[str]:
    """Return the profiles of a protocol that have settings."""
    directory = config.DOCKER_VPN_CLIENT_DIR.joinpath(protocol)
    if not directory.is_dir():
        return []
    return sorted(path.stem for path in directory.glob("*.settings"))


class DockerVPNClient:
    """A VPN client profile running in its own container."""

    def __init__(
        self,
        profile_id: str,
        driver: ProtocolDriver,
        profiles: ProfileEnvironment | None = None,
        local_subnets: Callable[[], Iterable[IPv4Network]] | None = None,
        rng: random.Random | None = None,
    ) -> None:
        self.profile_id = profile_id
        self.driver = driver
        self.profiles = profiles or ProfileEnvironment()
        self.local_subnets = local_subnets or route.local_subnets4
        self.rng = rng

    @property
    def protocol(self) -> str:
        return self.driver.protocol

    @property
    def interface_name(self) -> str:
        return interface.interface_name("vpn_", self.profile_id)

    @property
    def settings_path(self) -> pathlib.Path:
        return config.DOCKER_VPN_CLIENT_DIR.joinpath(
            self.protocol,
            f"{self.profile_id}.settings",
        )

    @property
    def subnet_path(self) -> pathlib.Path:
        return config.DOCKER_VPN_CLIENT_DIR.joinpath(
            self.protocol,
            f"{self.profile_id}.subnet",
        )

    @property
    def config_directory(self) -> pathlib.Path:
        return config.DOCKER_VPN_CLIENT_DIR.joinpath(self.protocol, self.profile_id)

    @property
    def working_directory(self) -> pathlib.Path:
        return config.DOCKER_WORKING_DIR.joinpath(self.profile_id)

    @property
    def compose_path(self) -> pathlib.Path:
        return self.working_directory.joinpath(config.COMPOSE_FILE_NAME)

    @property
    def unit(self) -> str:
        return config.COMPOSE_UNIT.format(profile_id=self.profile_id)

    async def get_subnet(self) -> IPv4Network | None:
        """Return the persisted subnet of the profile, if any."""
        content = await asyncio.to_thread(_read_text, self.subnet_path)
        if not content:
            return None
        try:
            return IPv4Network(content)
        except ValueError:
            logger.error("Invalid subnet '%s' in %s", content, self.subnet_path)
            return None

    async def get_remote_ip(self) -> IPv4Address | None:
        """Return the container address, always .2 of the subnet."""
        if subnet := await self.get_subnet():
            return host_address(subnet, 2)
        return None

    async def get_vpn_ip4s(self) -> IPv4Address | None:
        """Return the bridge address, always .1 of the subnet."""
        if subnet := await self.get_subnet():
            return host_address(subnet, 1)
        return None

    async def ensure_subnet(self) -> IPv4Network:
        """Return the persisted subnet, allocating and persisting one if absent."""
        if subnet := await self.get_subnet():
            return subnet
        local_subnets = await asyncio.to_thread(lambda: list(self.local_subnets()))
        subnet = generate_random_network(local_subnets, self.rng)
        logger.info("Allocated subnet %s to VPN client %s", subnet, self.profile_id)
        try:
            await asyncio.to_thread(self._write_subnet, subnet)
        except OSError as e:
            logger.error("Failed to persist subnet of %s: %s", self.profile_id, e)
        return subnet

    def _write_subnet(self, subnet: IPv4Network) -> None:
        self.subnet_path.parent.mkdir(parents=True, exist_ok=True)
        self.subnet_path.write_text(str(subnet), encoding="utf-8")

    async def update_compose(self) -> OperationReport:
        """Bind the compose file to the bridge name, subnet and interface name.

        The compose file has to define a network named 'default' and a single
        service.
        """
        report = OperationReport(operation=f"update compose {self.profile_id}")
        step = f"rewrite {self.compose_path}"
        try:
            content = await asyncio.to_thread(
                self.compose_path.read_text,
                encoding="utf-8",
            )
            compose: dict[str, Any] = yaml.safe_load(content)
        except (OSError, yaml.YAMLError) as e:
            logger.error("Failed to read %s: %s", self.compose_path, e)
            report.add(StepResult(step=step, ok=False, message=str(e)))
            return report
        if not isinstance(compose, dict):
            logger.error("Invalid compose file %s", self.compose_path)
            report.add(StepResult(step=step, ok=False, message="invalid compose file"))
            return report

        networks = compose.get("networks")
        if not isinstance(networks, dict) or "default" not in networks:
            logger.error("default network is not found in %s", self.compose_path)
            report.add(StepResult(step=step, ok=False, message="no default network"))
            return report
        default_network = networks["default"] or {}
        services = compose.get("services") or {}
        service: Any = None
        if isinstance(services, dict):
            service = next(iter(services.values()), None) or {}
        if not isinstance(default_network, dict) or not isinstance(service, dict):
            logger.error("Unexpected structure of %s", self.compose_path)
            report.add(StepResult(step=step, ok=False, message="invalid compose file"))
            return report

        default_network["driver_opts"] = {
            "com.docker.network.bridge.name": self.interface_name,
        }
        subnet = await self.ensure_subnet()
        default_network["ipam"] = {"config": [{"subnet": str(subnet)}]}
        networks["default"] = default_network

        if services:
            service_networks = service.get("networks")
            if isinstance(service_networks, dict) and "default" in service_networks:
                service_default = service_networks["default"]
                if not isinstance(service_default, dict):
                    service_default = {}
                service_default["ipv4_address"] = str(host_address(subnet, 2))
                service_networks["default"] = service_default
            service["container_name"] = self.interface_name
            compose["services"] = {self.interface_name: service}

        try:
            await asyncio.to_thread(
                self.compose_path.write_text,
                yaml.safe_dump(compose, sort_keys=False),
                encoding="utf-8",
            )
        except OSError as e:
            logger.error("Failed to write %s: %s", self.compose_path, e)
            report.add(StepResult(step=step, ok=False, message=str(e)))
            return report
        report.add(StepResult(step=step))
        return report

    def _materialize(self) -> None:
        self.working_directory.mkdir(parents=True, exist_ok=True)
        shutil.copytree(
            self.config_directory,
            self.working_directory,
            dirs_exist_ok=True,
        )

    async def _systemctl(self, action: str) -> StepResult:
        step = f"{action} {self.unit}"
        proc = await command.run(SYSTEMCTL, action, self.unit)
        if not proc.ok:
            logger.error("Failed to %s: %s", step, proc.error())
            return StepResult(step=step, ok=False, message=proc.error())
        logger.info("Succeeded to %s", step)
        return StepResult(step=step)

    async def start(self) -> OperationReport:
        """Prepare, start and wait for the VPN client container.

        Every step is attempted even if an earlier one failed, only running out
        of subnets aborts.
        """
        report = OperationReport(operation=f"start {self.protocol} {self.profile_id}")
        try:
            await self.driver.prepare_assets(self)
            report.add(StepResult(step="prepare assets"))
        except Exception as e:
            logger.exception("Failed to prepare assets of %s", self.profile_id)
            report.add(StepResult(step="prepare assets", ok=False, message=str(e)))

        try:
            await asyncio.to_thread(self._materialize)
            report.add(StepResult(step=f"copy to {self.working_directory}"))
        except OSError as e:
            logger.error(
                "Failed to copy %s to %s: %s",
                self.config_directory,
                self.working_directory,
                e,
            )
            report.add(
                StepResult(
                    step=f"copy to {self.working_directory}",
                    ok=False,
                    message=str(e),
                ),
            )

        report.add(await self.update_compose())
        report.add(await self._systemctl("start"))

        if remote_ip := await self.get_remote_ip():
            report.add(await iptables.append(iptables.masquerade(str(remote_ip))))

        if await poller.wait_for_link_up(self.interface_name):
            if remote_ip := await self.get_remote_ip():
                # Packets from the WAN interfaces have to be routable to the container.
                report.add(
                    await route.add_route_to_table(
                        remote_ip,
                        self.interface_name,
                        config.WAN_ROUTABLE_TABLE,
                    ),
                )
        return report

    async def stop(self) -> OperationReport:
        report = OperationReport(operation=f"stop {self.protocol} {self.profile_id}")
        if remote_ip := await self.get_remote_ip():
            report.add(await iptables.delete(iptables.masquerade(str(remote_ip))))
        report.add(await self._systemctl("stop"))
        return report

    async def destroy(self) -> OperationReport:
        """Stop the client and remove everything it left on disk."""
        report = OperationReport(operation=f"destroy {self.protocol} {self.profile_id}")
        report.add(await self.stop())
        report.add(await self.profiles.destroy(self.profile_id))

        for path in (self.settings_path, self.subnet_path):
            await asyncio.to_thread(path.unlink, missing_ok=True)
        for directory in (self.config_directory, self.working_directory):
            try:
                await asyncio.to_thread(shutil.rmtree, directory)
            except FileNotFoundError:
                continue
            except OSError as e:
                logger.error("Failed to remove directory %s: %s", directory, e)
                report.add(
                    StepResult(step=f"remove {directory}", ok=False, message=str(e)),
                )
        return report

    async def is_link_up(self) -> bool:
        """Return True if the container runs and the tunnel inside it is up."""
        proc = await command.run(
            DOCKER,
            "container",
            "ls",
            "-f",
            f"name={self.interface_name}",
            "--format",
            "{{.Status}}",
        )
        if not proc.ok:
            logger.error("Failed to run docker container ls on %s", self.profile_id)
            return False
        if not proc.stdout.strip().startswith("Up "):
            return False
        return await self.driver.is_link_up_inside_container(self)

    async def get_routed_subnets(self) -> list[IPv4Network]:
        """Only the container address is routed, not the whole bridge subnet."""
        if not await self.is_link_up():
            return []
        if remote_ip := await self.get_remote_ip():
            return [IPv4Network(remote_ip)]
        return []

    async def get_dns_servers(self) -> list[str]:
        return await self.driver.get_dns_servers(self)
