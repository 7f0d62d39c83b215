"""Service settings loaded from the optional YAML configuration file."""

from __future__ import annotations

import logging
from pathlib import Path

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from netenforce import config
from netenforce.errors import ConfigError

logger = logging.getLogger("netenforce")


class ServiceSettings(BaseModel):
    """Define the service settings. Every value overrides one in config."""

    model_config = ConfigDict(extra="forbid")

    hidden_folder: Path = Field(default_factory=lambda: config.HIDDEN_FOLDER)
    state_path: Path | None = None
    policy_dir: Path | None = None
    primary: bool = True
    dnsmasq_service: str = config.DNSMASQ_SERVICE
    dnsmasq_restart_delay: float = Field(default=config.DNSMASQ_RESTART_DELAY, ge=0)
    log_path: Path = Field(default_factory=lambda: config.LOG_PATH)

    def apply(self) -> None:
        """Write the settings into the global configuration."""
        config.HIDDEN_FOLDER = self.hidden_folder
        config.USER_CONFIG_FOLDER = self.hidden_folder.joinpath("config")
        config.STATE_PATH = self.state_path or self.hidden_folder.joinpath(
            "run",
            "state.json",
        )
        config.POLICY_DIR = self.policy_dir or config.USER_CONFIG_FOLDER.joinpath(
            "policies",
        )
        config.DOCKER_VPN_CLIENT_DIR = self.hidden_folder.joinpath(
            "run",
            "docker_vpn_client",
        )
        config.DOCKER_WORKING_DIR = self.hidden_folder.joinpath("run", "docker")
        config.IS_PRIMARY = self.primary
        config.DNSMASQ_SERVICE = self.dnsmasq_service
        config.DNSMASQ_RESTART_DELAY = self.dnsmasq_restart_delay
        config.LOG_PATH = self.log_path


def load_settings(path: Path) -> ServiceSettings:
    """Load the service settings, falling back to defaults if absent."""
    if not path.exists():
        logger.info("No configuration found at '%s', using defaults.", path)
        return ServiceSettings()

    with path.open(encoding="utf-8") as f:
        try:
            data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            msg = f"Invalid YAML found in {path}"
            raise ConfigError(msg) from e
    try:
        return ServiceSettings(**data)
    except (TypeError, ValidationError) as e:
        msg = f"Invalid configuration in {path}: {e}"
        raise ConfigError(msg) from e
