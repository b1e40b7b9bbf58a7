"""Shared type definitions for build_handoff.

This module contains dataclasses, enums, and helpers shared across
subpackages to avoid circular imports.
"""

from dataclasses import dataclass
from enum import Enum


class StreamId(str, Enum):
    """Progress stream a controller writes to."""

    BUILD = "build"
    TARGET = "target"


class FailurePolicy(str, Enum):
    """What a controller does when a state fails."""

    ABORT = "abort"
    CONTINUE = "continue"


class BuilderState(str, Enum):
    """States of the builder lifecycle."""

    PROVISION = "provision"
    RUN_BUILD = "run_build"
    UPLOAD_ARTIFACTS = "upload_artifacts"
    SCALE_TO_ZERO = "scale_to_zero"
    HALT = "halt"
    UPLOAD_PARTIAL_LOGS = "upload_partial_logs"
    EXIT_NON_ZERO = "exit_non_zero"


class ConsumerPhase(str, Enum):
    """Ordered phases of the consumer bootstrap."""

    INSTALL_BASE_SERVICES = "install_base_services"
    AWAIT_ARTIFACTS = "await_artifacts"
    INSTALL_RUNTIME = "install_runtime"
    STAGE_ARTIFACTS = "stage_artifacts"
    INSTALL_SERVICE = "install_service"
    PUBLISH_AND_RECYCLE = "publish_and_recycle"


class ArtifactKind(str, Enum):
    """How the consumer materializes an artifact in its staging directory."""

    FILE = "file"
    TAR = "tar"
    ZIP = "zip"


@dataclass(frozen=True)
class ProgressEvent:
    """One timestamped, human-readable telemetry line.

    Attributes:
        timestamp: Epoch milliseconds, taken when the event was emitted.
        stream: Stream the event belongs to.
        message: Self-describing message text.
        step: Step ordinal for numbered progress, None for free text.
    """

    timestamp: int
    stream: StreamId
    message: str
    step: int | None = None

    def to_wire(self) -> dict[str, object]:
        """Convert to the log sink event shape."""
        return {"timestamp": self.timestamp, "message": self.message}


@dataclass
class ArtifactInfo:
    """Information about an uploaded artifact."""

    key: str
    filename: str
    size_bytes: int
    sha256: str
    role: str | None = None


def validate_key(key: str) -> str:
    """Validate an artifact key and return it unchanged.

    Args:
        key: Store-relative object key.

    Returns:
        The key.

    Raises:
        ValueError: If the key is empty, absolute, or escapes the bucket.
    """
    if not key or not key.strip():
        raise ValueError("artifact key must not be empty")
    if key.startswith("/"):
        raise ValueError(f"artifact key must be relative: {key}")
    if "\\" in key:
        raise ValueError(f"artifact key must not contain backslashes: {key}")
    if any(part in ("", ".", "..") for part in key.split("/")):
        raise ValueError(f"artifact key has an invalid path segment: {key}")
    return key


__all__ = [
    "ArtifactInfo",
    "ArtifactKind",
    "BuilderState",
    "ConsumerPhase",
    "FailurePolicy",
    "ProgressEvent",
    "StreamId",
    "validate_key",
]
