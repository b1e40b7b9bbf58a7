"""Shell command execution.

Commands given as strings run under bash with errexit and pipefail, so a
multi-command snippet stops at its first failing command. Commands given
as argv lists run directly. A non-zero exit raises CommandFailedError
unless the caller explicitly tolerates failure with check=False.
"""

from __future__ import annotations

import logging
import os
import shlex
import subprocess
from dataclasses import dataclass
from pathlib import Path

logger = logging.getLogger(__name__)

DEFAULT_SHELL = "/bin/bash"

# Conventional exit codes for commands that timed out or could not start
TIMEOUT_EXIT_CODE = 124
NOT_EXECUTABLE_EXIT_CODE = 127


class CommandFailedError(Exception):
    """Raised when a command exits non-zero (or cannot run at all)."""

    def __init__(
        self,
        command: str,
        exit_code: int,
        output: str = "",
        code: str = "command_failed",
    ) -> None:
        super().__init__(f"Command failed with exit code {exit_code}: {command}")
        self.command = command
        self.exit_code = exit_code
        self.output = output
        self.code = code


@dataclass
class CompletedCommand:
    """Result of a finished command."""

    command: str
    exit_code: int
    output: str

    @property
    def ok(self) -> bool:
        return self.exit_code == 0


class CommandRunner:
    """Run commands with fail-fast semantics."""

    def __init__(
        self,
        cwd: Path | None = None,
        env: dict[str, str] | None = None,
        timeout: float | None = None,
        shell: str = DEFAULT_SHELL,
    ) -> None:
        self.cwd = cwd
        self.env = env
        self.timeout = timeout
        self.shell = shell

    def _argv(self, command: str | list[str]) -> list[str]:
        if isinstance(command, str):
            return [self.shell, "-o", "errexit", "-o", "pipefail", "-c", command]
        return list(command)

    def run(
        self,
        command: str | list[str],
        check: bool = True,
        cwd: Path | None = None,
    ) -> CompletedCommand:
        """Run one command to completion.

        Args:
            command: Shell snippet or argv list.
            check: Raise CommandFailedError on non-zero exit.
            cwd: Working directory override.

        Returns:
            CompletedCommand with exit code and combined output.

        Raises:
            CommandFailedError: If check is set and the command failed.
        """
        display = command if isinstance(command, str) else shlex.join(command)
        workdir = cwd or self.cwd
        logger.info("Running: %s", display)

        env: dict[str, str] | None = None
        if self.env:
            env = dict(os.environ)
            env.update(self.env)

        try:
            result = subprocess.run(
                self._argv(command),
                cwd=workdir,
                env=env,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                text=True,
                timeout=self.timeout,
                check=False,
            )
            exit_code = result.returncode
            output = result.stdout or ""
        except subprocess.TimeoutExpired as e:
            exit_code = TIMEOUT_EXIT_CODE
            output = e.output if isinstance(e.output, str) else ""
            logger.error("Timed out after %ss: %s", self.timeout, display)
        except OSError as e:
            exit_code = NOT_EXECUTABLE_EXIT_CODE
            output = str(e)
            logger.error("Failed to execute %s: %s", display, e)

        for line in output.splitlines():
            logger.debug("  %s", line)

        completed = CompletedCommand(command=display, exit_code=exit_code, output=output)
        if exit_code != 0:
            if check:
                raise CommandFailedError(display, exit_code, output)
            logger.warning("Ignoring exit code %d of: %s", exit_code, display)
        return completed

    def run_all(self, commands: list[str], cwd: Path | None = None) -> None:
        """Run commands in order, stopping at the first failure."""
        for command in commands:
            self.run(command, check=True, cwd=cwd)


__all__ = [
    "CommandFailedError",
    "CommandRunner",
    "CompletedCommand",
    "NOT_EXECUTABLE_EXIT_CODE",
    "TIMEOUT_EXIT_CODE",
]
