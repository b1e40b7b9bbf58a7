"""Builder side of the handoff.

This module handles:
- Running the external build process
- Artifact discovery and manifest generation
- The builder lifecycle (upload, scale to zero, halt)
"""

from build_handoff.builder.lifecycle import (
    AlreadyRanError,
    BuilderController,
    BuilderOutcome,
)
from build_handoff.builder.runner import BuildExecutionError, BuildResult

__all__ = [
    "AlreadyRanError",
    "BuildExecutionError",
    "BuildResult",
    "BuilderController",
    "BuilderOutcome",
]
