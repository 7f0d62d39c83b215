"""Models of the policies enforced on identities."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, StrictBool, field_validator


class VpnClientPolicy(BaseModel):
    """Define the vpnClient policy of an identity.

    ``state`` True forces the identity through the profile, None overrides
    any VPN client routing and False means the policy doesn't apply. Only
    real booleans count, ``"yes"`` or ``1`` make the policy invalid.
    """

    model_config = ConfigDict(populate_by_name=True)

    state: StrictBool | None
    profile_id: str | None = Field(default=None, alias="profileId")

    @field_validator("profile_id", mode="before")
    @classmethod
    def _coerce_profile_id(cls, v: Any) -> str | None:  # noqa: ANN401
        return coerce_profile_id(v)


def coerce_profile_id(value: Any) -> str | None:  # noqa: ANN401
    """Return a profile id as a string, numeric ids included."""
    if value is None:
        return None
    return str(value)


class IdentityPolicyFile(BaseModel):
    """Define an identity policy file as dropped in the policy directory."""

    namespace: str = Field(max_length=8)
    uid: str = Field(min_length=1)
    ips: list[str] = Field(default_factory=list)
    policy: dict[str, Any] = Field(default_factory=dict)

    @field_validator("ips", mode="before")
    @classmethod
    def _coerce_ips(cls, v: list[str] | None) -> list[str]:
        if v is None:
            return []
        return v

    @field_validator("policy", mode="before")
    @classmethod
    def _coerce_policy(cls, v: dict[str, Any] | None) -> dict[str, Any]:
        if v is None:
            return {}
        return v
