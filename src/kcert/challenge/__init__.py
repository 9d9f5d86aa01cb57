"""Pluggable challenge provisioning.

Exports the abstract bases, the provisioning state handle, and the
registry.
"""

from kcert.challenge.base import ChallengeProvider, DnsChallengeProvider, ProvisioningState
from kcert.challenge.registry import ProviderRegistry, enabled_kinds

__all__ = [
    "ChallengeProvider",
    "DnsChallengeProvider",
    "ProviderRegistry",
    "ProvisioningState",
    "enabled_kinds",
]
