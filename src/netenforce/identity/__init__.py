"""Identities and their enforcement."""

from .base import Identity, IdentityKind
from .registry import IdentityRegistry
from .wgpeer import WGPeer

KINDS: dict[str, IdentityKind] = {WGPeer.namespace: WGPeer()}

__all__ = ["KINDS", "Identity", "IdentityKind", "IdentityRegistry", "WGPeer"]
