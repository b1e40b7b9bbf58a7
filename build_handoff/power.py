"""Power control of the local compute unit.

The builder halts its own instance once its work is done; the consumer
reboots its instance so the freshly installed service comes up in steady
state. Both go through a PowerControl so that controllers can be exercised
without touching the host.
"""

from __future__ import annotations

import logging
from typing import Protocol

from build_handoff.commands import CommandRunner

logger = logging.getLogger(__name__)

HALT_COMMAND = ["shutdown", "-h", "now"]
REBOOT_COMMAND = ["reboot"]


class PowerControl(Protocol):
    """Halt or reboot the local compute unit."""

    def halt(self) -> None: ...

    def reboot(self) -> None: ...


class SystemPowerControl:
    """Power control through the operating system's shutdown commands."""

    def __init__(self, runner: CommandRunner | None = None) -> None:
        self.runner = runner or CommandRunner()

    def halt(self) -> None:
        logger.warning("Halting instance")
        self.runner.run(HALT_COMMAND)

    def reboot(self) -> None:
        logger.warning("Rebooting instance")
        self.runner.run(REBOOT_COMMAND)


class DisabledPowerControl:
    """Power control that only logs; used with --no-halt / --no-reboot."""

    def halt(self) -> None:
        logger.warning("Halt requested but disabled; leaving instance running")

    def reboot(self) -> None:
        logger.warning("Reboot requested but disabled; leaving instance running")


__all__ = [
    "DisabledPowerControl",
    "HALT_COMMAND",
    "PowerControl",
    "REBOOT_COMMAND",
    "SystemPowerControl",
]
