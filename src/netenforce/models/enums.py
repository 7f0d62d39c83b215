"""Various enums used throughout the package."""

from enum import Enum, IntEnum


class Family(IntEnum):
    """Define the IP families an enforcement set or rule applies to."""

    INET = 4
    INET6 = 6


class Toggle(str, Enum):
    """Define the features toggled through global "off" sets."""

    QOS = "qos"
    ACL = "acl"
    DNS_CACHING = "dnsCaching"


class RuleVariant(str, Enum):
    """Define the two VPN client rule variants.

    ACTIVE routes matched traffic through the profile, NEUTRALIZED clears the
    VPN client bits in the fwmark.
    """

    ACTIVE = "active"
    NEUTRALIZED = "neutralized"
