"""Fleet manager and instance identity collaborators."""

from build_handoff.fleet.base import (
    CapacityController,
    CapacityError,
    InstanceIdentity,
    MetadataError,
    StaticIdentity,
)
from build_handoff.fleet.http import HttpCapacityController
from build_handoff.fleet.metadata import InstanceMetadataClient

__all__ = [
    "CapacityController",
    "CapacityError",
    "HttpCapacityController",
    "InstanceIdentity",
    "InstanceMetadataClient",
    "MetadataError",
    "StaticIdentity",
]
