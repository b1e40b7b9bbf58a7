"""Pydantic models for pipeline profile validation.

A pipeline profile declares what the builder publishes (artifacts and
their well-known keys), how the build is run, and how the consumer turns
the published artifacts into a running service. Profiles are loaded from
YAML/JSON files before either side starts.
"""

import re
import shlex
from typing import Annotated

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from build_handoff.types import ArtifactKind, validate_key

ROLE_PATTERN = re.compile(r"^[a-zA-Z0-9_.\-]+$")
UNIT_NAME_PATTERN = re.compile(r"^[a-zA-Z0-9_.@\-]+\.service$")
OWNER_PATTERN = re.compile(r"^[a-z_][a-z0-9_\-]*(:[a-z_][a-z0-9_\-]*)?$")

# Placeholder substituted with the consumer staging directory in unit fields
STAGING_PLACEHOLDER = "{staging_dir}"


def _is_relative_inside(path: str) -> bool:
    return not path.startswith("/") and ".." not in path.split("/")


class ArtifactSchema(BaseModel):
    """Schema for one published artifact.

    Attributes:
        role: Well-known role (e.g. boot, hostpkg, images).
        key: Object key the artifact is published under.
        source: File name or glob matched under the build product directory.
        kind: How the consumer materializes it (file, tar, zip).
        destination: Path inside the staging directory. For files, the
            target file (defaults to the key's base name); for archives,
            the directory to unpack into (defaults to the staging root).
        required: Whether the consumer waits for this artifact.
        primary: The artifact whose presence signals the handoff.
    """

    model_config = ConfigDict(extra="forbid")

    role: Annotated[str, Field(min_length=1, max_length=64)]
    key: Annotated[str, Field(min_length=1, max_length=1024)]
    source: Annotated[str, Field(min_length=1)]
    kind: ArtifactKind = ArtifactKind.FILE
    destination: str | None = None
    required: bool = True
    primary: bool = False

    @field_validator("role")
    @classmethod
    def validate_role(cls, v: str) -> str:
        if not ROLE_PATTERN.match(v):
            raise ValueError(f"role contains invalid characters: '{v}'")
        return v

    @field_validator("key")
    @classmethod
    def validate_artifact_key(cls, v: str) -> str:
        return validate_key(v)

    @field_validator("destination")
    @classmethod
    def validate_destination(cls, v: str | None) -> str | None:
        if v is not None and not _is_relative_inside(v):
            raise ValueError("destination must be relative to the staging directory")
        return v

    def staging_target(self) -> str:
        """Return the destination inside the staging directory."""
        if self.destination:
            return self.destination
        if self.kind == ArtifactKind.FILE:
            return self.key.rsplit("/", 1)[-1]
        return "."


class HelperBinarySchema(BaseModel):
    """A locally available binary copied into the staging directory."""

    model_config = ConfigDict(extra="forbid")

    source: str = Field(description="Absolute path on the consumer")
    destination: str = Field(description="Path relative to the staging directory")

    @field_validator("source")
    @classmethod
    def validate_source(cls, v: str) -> str:
        if not v.startswith("/"):
            raise ValueError("source must be an absolute path")
        return v

    @field_validator("destination")
    @classmethod
    def validate_destination(cls, v: str) -> str:
        if not _is_relative_inside(v):
            raise ValueError("destination must be relative to the staging directory")
        return v


class ServiceUnitSchema(BaseModel):
    """Service manager unit started on the consumer.

    String fields may contain {staging_dir}, replaced at install time.
    """

    model_config = ConfigDict(extra="forbid")

    name: str = Field(default="artifact.service")
    description: str = Field(default="Handoff artifact service")
    exec_start: Annotated[str, Field(min_length=1)]
    exec_stop: str | None = None
    user: str | None = None
    group: str | None = None
    type: str = Field(default="simple")
    after: str = Field(default="multi-user.target")
    wanted_by: str = Field(default="multi-user.target")
    environment: dict[str, str] = Field(default_factory=dict)

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        if not UNIT_NAME_PATTERN.match(v):
            raise ValueError(f"unit name must look like 'name.service', got '{v}'")
        return v


class BuilderSchema(BaseModel):
    """Builder side of the pipeline.

    Attributes:
        build_command: External build process (argv list or shell-style string).
        provision_commands: Shell commands run before the build (fail-fast).
        agent_unit: Management agent unit ensured running after provisioning.
        agent_install_commands: Commands installing the agent when it is not
            already active.
        build_dir: Working directory, exported to the build as BUILD_DIR.
        product_dir: Build output tree, relative to build_dir or absolute.
        build_log_glob: Glob (under build_dir) locating the build's own log.
        upload_prefix: Key prefix for the full product tree ("" disables).
        build_log_prefix: Key prefix for build logs.
    """

    model_config = ConfigDict(extra="forbid")

    build_command: list[str]
    provision_commands: list[str] = Field(default_factory=list)
    agent_unit: str | None = None
    agent_install_commands: list[str] = Field(default_factory=list)
    build_dir: str = Field(default="/opt/build")
    product_dir: str = Field(default="out")
    build_log_glob: str = Field(default="build-*.log")
    upload_prefix: str = Field(default="target/")
    build_log_prefix: str = Field(default="build-logs/")
    environment: dict[str, str] = Field(default_factory=dict)

    @field_validator("build_command", mode="before")
    @classmethod
    def split_build_command(cls, v: object) -> object:
        """Accept a shell-style string as well as an argv list."""
        if isinstance(v, str):
            return shlex.split(v)
        return v

    @field_validator("build_command")
    @classmethod
    def validate_build_command(cls, v: list[str]) -> list[str]:
        if not v:
            raise ValueError("build_command must not be empty")
        return v

    @field_validator("upload_prefix", "build_log_prefix")
    @classmethod
    def validate_prefix(cls, v: str) -> str:
        if v and (v.startswith("/") or not v.endswith("/")):
            raise ValueError("key prefixes must be relative and end with '/'")
        return v


class ConsumerSchema(BaseModel):
    """Consumer side of the pipeline.

    Attributes:
        base_commands: Commands installing base services (phase 1).
        agent_unit: Management agent unit enabled and started in phase 1.
        runtime_commands: Commands installing the runtime (phase 3).
        workdir: Working directory for shell commands.
        staging_dir: Local directory the artifacts are materialized into.
        helpers: Local binaries copied into the staging directory.
        owner: user[:group] given ownership of the staging directory.
        service: Unit definition started in phase 5.
        endpoint_scheme: Scheme of the published endpoint.
        endpoint_port: Port of the published endpoint.
    """

    model_config = ConfigDict(extra="forbid")

    base_commands: list[str] = Field(default_factory=list)
    agent_unit: str | None = None
    runtime_commands: list[str] = Field(default_factory=list)
    workdir: str = Field(default="/root")
    staging_dir: str = Field(default="/opt/stage")
    helpers: list[HelperBinarySchema] = Field(default_factory=list)
    owner: str | None = None
    service: ServiceUnitSchema
    endpoint_scheme: str = Field(default="https")
    endpoint_port: int = Field(default=8443, ge=1, le=65535)

    @field_validator("staging_dir", "workdir")
    @classmethod
    def validate_absolute(cls, v: str) -> str:
        if not v.startswith("/"):
            raise ValueError("must be an absolute path")
        return v

    @field_validator("owner")
    @classmethod
    def validate_owner(cls, v: str | None) -> str | None:
        if v is not None and not OWNER_PATTERN.match(v):
            raise ValueError(f"owner must be 'user' or 'user:group', got '{v}'")
        return v


class PipelineProfile(BaseModel):
    """Complete pipeline profile."""

    model_config = ConfigDict(extra="forbid")

    name: Annotated[str, Field(min_length=1, max_length=255)]
    description: str | None = None
    artifacts: Annotated[list[ArtifactSchema], Field(min_length=1)]
    builder: BuilderSchema
    consumer: ConsumerSchema

    @model_validator(mode="after")
    def validate_artifacts(self) -> "PipelineProfile":
        roles = [a.role for a in self.artifacts]
        if len(set(roles)) != len(roles):
            raise ValueError("artifact roles must be unique")
        keys = [a.key for a in self.artifacts]
        if len(set(keys)) != len(keys):
            raise ValueError("artifact keys must be unique")
        primaries = [a for a in self.artifacts if a.primary]
        if len(primaries) > 1:
            raise ValueError("at most one artifact can be primary")
        if primaries and not primaries[0].required:
            raise ValueError("the primary artifact must be required")
        if not any(a.required for a in self.artifacts):
            raise ValueError("at least one artifact must be required")
        return self

    def primary_artifact(self) -> ArtifactSchema:
        """Return the artifact signalling the handoff.

        The marked primary, or else the first required artifact.
        """
        for artifact in self.artifacts:
            if artifact.primary:
                return artifact
        return next(a for a in self.artifacts if a.required)

    def required_keys(self) -> list[str]:
        """Keys the consumer waits for, primary first."""
        primary = self.primary_artifact()
        keys = [primary.key]
        keys.extend(a.key for a in self.artifacts if a.required and a is not primary)
        return keys

    def publish_order(self) -> list[ArtifactSchema]:
        """Artifacts in upload order, primary last."""
        primary = self.primary_artifact()
        return [a for a in self.artifacts if a is not primary] + [primary]


__all__ = [
    "ArtifactSchema",
    "BuilderSchema",
    "ConsumerSchema",
    "HelperBinarySchema",
    "PipelineProfile",
    "STAGING_PLACEHOLDER",
    "ServiceUnitSchema",
]
