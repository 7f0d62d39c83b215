"""OpenConnect VPN clients running in a container."""

from __future__ import annotations

import asyncio
import logging
import os
import pathlib
import shlex
from typing import TYPE_CHECKING

from jinja2 import Environment, FileSystemLoader
from pydantic import BaseModel, ValidationError

from netenforce import config
from netenforce.errors import ConfigError
from netenforce.network import command

if TYPE_CHECKING:
    from netenforce.vpnclient.docker import DockerVPNClient

logger = logging.getLogger("netenforce")

BASE_DIR = pathlib.Path(__file__).parent
TEMPLATES_DIR = BASE_DIR.joinpath("templates")
TEMPLATES_ENV = Environment(loader=FileSystemLoader(TEMPLATES_DIR), autoescape=True)

DOCKER = "/usr/bin/docker"
PASSWORD_FILE = "password"
RESOLV_CONF = "/etc/resolv.conf"


class OpenConnectSettings(BaseModel):
    """Settings of an OpenConnect profile, stored as JSON."""

    server: str
    user: str
    password: str
    server_cert: str | None = None
    image: str = "netenforce/openconnect:latest"


class OpenConnectDriver:
    protocol = "openconnect"

    def load_settings(self, client: DockerVPNClient) -> OpenConnectSettings:
        try:
            content = client.settings_path.read_text(encoding="utf-8")
        except OSError as e:
            msg = f"Failed to read {client.settings_path}: {e}"
            raise ConfigError(msg) from e
        try:
            return OpenConnectSettings.model_validate_json(content)
        except ValidationError as e:
            msg = f"Invalid settings in {client.settings_path}: {e}"
            raise ConfigError(msg) from e

    def render_compose(self, settings: OpenConnectSettings) -> str:
        args = ["openconnect", "-u", settings.user, "--passwd-on-stdin"]
        if settings.server_cert:
            args.extend(["--servercert", settings.server_cert])
        args.append(settings.server)
        openconnect = shlex.join(args)
        template = TEMPLATES_ENV.get_template("openconnect-compose.yaml.j2")
        return template.render(
            image=settings.image,
            command=f"sh -c {shlex.quote(f'{openconnect} < /data/{PASSWORD_FILE}')}",
        )

    def _write_assets(self, client: DockerVPNClient) -> None:
        settings = self.load_settings(client)
        directory = client.config_directory
        directory.mkdir(parents=True, exist_ok=True)
        directory.joinpath(config.COMPOSE_FILE_NAME).write_text(
            self.render_compose(settings),
            encoding="utf-8",
        )
        password_path = directory.joinpath(PASSWORD_FILE)
        fd = os.open(password_path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(settings.password)
        password_path.chmod(0o600)

    async def prepare_assets(self, client: DockerVPNClient) -> None:
        """Write the compose file and the password file of the profile."""
        await asyncio.to_thread(self._write_assets, client)
        logger.info("Prepared openconnect assets of %s", client.profile_id)

    async def is_link_up_inside_container(self, client: DockerVPNClient) -> bool:
        proc = await command.run(
            DOCKER,
            "exec",
            client.interface_name,
            "cat",
            "/sys/class/net/tun0/carrier",
        )
        return proc.ok and proc.stdout.strip() == "1"

    async def get_dns_servers(self, client: DockerVPNClient) -> list[str]:
        """Return the nameservers the tunnel pushed into the container."""
        proc = await command.run(DOCKER, "exec", client.interface_name, "cat", RESOLV_CONF)
        if not proc.ok:
            logger.warning("Failed to read DNS servers of %s", client.profile_id)
            return []
        servers: list[str] = []
        for line in proc.stdout.splitlines():
            fields = line.split()
            if len(fields) >= 2 and fields[0] == "nameserver":  # noqa: PLR2004
                servers.append(fields[1])
        return servers
