"""Fleet manager and instance identity protocols.

Scaling a unit's own group to zero is a two-step capability: resolve which
group owns this instance, then request the capacity change.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol


class CapacityError(Exception):
    """Raised when the fleet manager cannot be queried or updated."""

    def __init__(self, message: str, code: str = "capacity_error") -> None:
        super().__init__(message)
        self.code = code


class MetadataError(Exception):
    """Raised when instance metadata cannot be read."""

    def __init__(self, message: str, code: str = "metadata_error") -> None:
        super().__init__(message)
        self.code = code


class CapacityController(Protocol):
    """Fleet manager operations used by the builder."""

    def describe_owning_group(self, instance_id: str) -> str | None:
        """Return the capacity group owning an instance, or None."""
        ...

    def set_desired_capacity(self, group: str, desired: int) -> None:
        """Set the desired number of units in a group."""
        ...


class InstanceIdentity(Protocol):
    """Identity of the compute unit the process runs on."""

    def instance_id(self) -> str: ...

    def public_ipv4(self) -> str: ...


@dataclass
class StaticIdentity:
    """Identity given explicitly (operator overrides, local runs)."""

    instance: str | None = None
    ipv4: str | None = None

    def instance_id(self) -> str:
        if not self.instance:
            raise MetadataError("No instance id configured", code="missing_identity")
        return self.instance

    def public_ipv4(self) -> str:
        if not self.ipv4:
            raise MetadataError("No public IPv4 configured", code="missing_identity")
        return self.ipv4


__all__ = [
    "CapacityController",
    "CapacityError",
    "InstanceIdentity",
    "MetadataError",
    "StaticIdentity",
]
