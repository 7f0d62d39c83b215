"""Models used by the service."""

from .enums import Family, RuleVariant, Toggle
from .policy import IdentityPolicyFile, VpnClientPolicy
from .results import OperationReport, StepResult

__all__ = [
    "Family",
    "IdentityPolicyFile",
    "OperationReport",
    "RuleVariant",
    "StepResult",
    "Toggle",
    "VpnClientPolicy",
]
