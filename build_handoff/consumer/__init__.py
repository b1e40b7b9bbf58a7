"""Consumer side of the handoff.

This module handles:
- The six-phase consumer bootstrap
- Staging downloaded artifacts
- Installing and starting the service unit
"""

from build_handoff.consumer.bootstrap import (
    BootstrapAborted,
    BootstrapResult,
    ConsumerBootstrap,
)
from build_handoff.consumer.service import (
    SystemdServiceManager,
    UnitAlreadyExistsError,
    render_unit,
)
from build_handoff.consumer.staging import StagingError

__all__ = [
    "BootstrapAborted",
    "BootstrapResult",
    "ConsumerBootstrap",
    "StagingError",
    "SystemdServiceManager",
    "UnitAlreadyExistsError",
    "render_unit",
]
