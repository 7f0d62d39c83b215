"""Store global configuration."""

from __future__ import annotations

import logging
from ipaddress import IPv4Network
from pathlib import Path

logger = logging.getLogger("netenforce")

# Service configuration file. Optional, every value has a default.
SERVICE_CONFIG_PATH = Path("/etc/netenforce/netenforce.yaml")
# Log file of the daemon
LOG_PATH = Path("/var/log/netenforce/netenforce.log")

# Runtime and user configuration folders
HIDDEN_FOLDER = Path("/home/pi/.netenforce")
USER_CONFIG_FOLDER = HIDDEN_FOLDER.joinpath("config")
# Persisted key/value state
STATE_PATH = HIDDEN_FOLDER.joinpath("run", "state.json")
# Identity policy files watched by the daemon
POLICY_DIR = USER_CONFIG_FOLDER.joinpath("policies")

# Is this process the one that applies policies. Only the primary process
# subscribes to policy change events.
IS_PRIMARY = True

# DNS
DNSMASQ_SERVICE = "dnsmasq"
DNSMASQ_RESTART_DELAY = 5.0

# Global "off" sets. Membership of an identity set disables the feature.
IPSET_QOS_OFF = "c_qos_off_set"
IPSET_ACL_OFF = "c_acl_off_set"
IPSET_NO_DNS_BOOST = "c_no_dns_boost_set"

# VPN client routing
MANGLE_TABLE = "mangle"
VPN_CLIENT_CHAIN = "FW_RT_TAG_DEVICE_5"
# fwmark bits reserved for VPN client routing
MASK_VC = "0xff0000"
NAT_TABLE = "nat"
NAT_POSTROUTING_CHAIN = "FW_POSTROUTING"
WAN_ROUTABLE_TABLE = "wan_routable"
RT_TABLES_PATHS = (
    Path("/etc/iproute2/rt_tables"),
    Path("/etc/iproute2/rt_tables.d"),
)

# Containerized VPN clients
DOCKER_VPN_CLIENT_DIR = HIDDEN_FOLDER.joinpath("run", "docker_vpn_client")
DOCKER_WORKING_DIR = HIDDEN_FOLDER.joinpath("run", "docker")
COMPOSE_FILE_NAME = "docker-compose.yaml"
COMPOSE_UNIT = "docker-compose@{profile_id}"
# Candidate ranges for the container bridge network, with the number of random
# bits available above the /24 boundary.
PRIVATE_RANGES: tuple[tuple[IPv4Network, int], ...] = (
    (IPv4Network("10.0.0.0/8"), 16),
    (IPv4Network("172.16.0.0/12"), 12),
    (IPv4Network("192.168.0.0/16"), 8),
)
SUBNET_ALLOCATION_ATTEMPTS = 1000

# Link-up polling
SYS_CLASS_NET = Path("/sys/class/net")
LINK_UP_ATTEMPTS = 30
LINK_UP_INTERVAL = 1.0

# Linux interface names are limited to 15 characters
IFNAMSIZ = 15
