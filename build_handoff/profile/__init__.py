"""Pipeline profiles.

This module handles:
- Profile schema validation
- Loading profiles from YAML/JSON and the built-in default
"""

from build_handoff.profile.io import (
    ProfileError,
    default_profile,
    load_profile,
    profile_to_yaml_string,
    resolve_profile,
)
from build_handoff.profile.schema import (
    ArtifactSchema,
    BuilderSchema,
    ConsumerSchema,
    PipelineProfile,
    ServiceUnitSchema,
)

__all__ = [
    "ArtifactSchema",
    "BuilderSchema",
    "ConsumerSchema",
    "PipelineProfile",
    "ProfileError",
    "ServiceUnitSchema",
    "default_profile",
    "load_profile",
    "profile_to_yaml_string",
    "resolve_profile",
]
