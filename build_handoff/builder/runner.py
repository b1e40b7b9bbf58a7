"""Build runner for the external build process.

This module handles:
- Starting the build command in its own process session
- Capturing stdout/stderr to a timestamped log file
- Enforcing an optional timeout on the whole process group

The build process is opaque: its exit status is the only success signal.
A build killed by a signal reports a negative exit code, as subprocess does.
"""

from __future__ import annotations

import logging
import os
import shlex
import signal
import subprocess
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import TextIO

from build_handoff.commands import NOT_EXECUTABLE_EXIT_CODE, TIMEOUT_EXIT_CODE

logger = logging.getLogger(__name__)

# Seconds between SIGTERM and SIGKILL when a build overruns its timeout
TERMINATE_GRACE = 10.0


class BuildExecutionError(Exception):
    """Raised when the build process times out or cannot be started."""

    def __init__(
        self,
        message: str,
        exit_code: int,
        code: str = "build_error",
    ) -> None:
        super().__init__(message)
        self.exit_code = exit_code
        self.code = code


@dataclass
class BuildResult:
    """Outcome of one build process.

    Attributes:
        success: True when the process exited 0.
        exit_code: Process exit status (negative when killed by a signal).
        log_path: File holding the captured output.
        started_at: UTC start time.
        finished_at: UTC finish time.
        command: Shell-quoted command line.
        error_message: Summary of the failure, if any.
    """

    success: bool
    exit_code: int
    log_path: Path
    started_at: datetime
    finished_at: datetime
    command: str
    error_message: str | None = None

    @property
    def duration(self) -> float:
        return (self.finished_at - self.started_at).total_seconds()


def default_log_path(build_dir: Path, now: datetime | None = None) -> Path:
    """Return build-<YYYYmmdd_HHMMSS>.log inside build_dir."""
    now = now or datetime.now()
    return build_dir / f"build-{now.strftime('%Y%m%d_%H%M%S')}.log"


def _write_header(log: TextIO, command: str, build_dir: Path, started: datetime) -> None:
    log.write(f"# Command: {command}\n")
    log.write(f"# Started: {started.isoformat()}\n")
    log.write(f"# CWD: {build_dir}\n")
    log.write("# " + "=" * 70 + "\n\n")
    log.flush()


def _write_footer(log_path: Path, lines: list[str]) -> None:
    with log_path.open("a") as log:
        log.write("\n")
        for line in lines:
            log.write(f"# {line}\n")


def _terminate_group(proc: subprocess.Popen) -> None:
    """SIGTERM the build's process group, then SIGKILL it if it lingers."""
    for sig in (signal.SIGTERM, signal.SIGKILL):
        try:
            os.killpg(proc.pid, sig)
        except ProcessLookupError:
            return
        try:
            proc.wait(timeout=TERMINATE_GRACE)
            return
        except subprocess.TimeoutExpired:
            logger.warning("Build process group ignored %s", sig.name)


def run_build_process(
    command: list[str],
    build_dir: Path,
    log_path: Path | None = None,
    timeout: int | None = None,
    env_override: dict[str, str] | None = None,
) -> BuildResult:
    """Run the build command in build_dir and wait for it.

    BUILD_DIR is exported to the process. Output goes to log_path
    (build-<timestamp>.log in build_dir when not given).

    Raises:
        BuildExecutionError: On timeout (exit code 124, after the whole
            process group has been terminated) or when the command cannot
            be started (exit code 127).
    """
    build_dir.mkdir(parents=True, exist_ok=True)
    log_path = log_path or default_log_path(build_dir)
    cmd_str = shlex.join(command)

    env = {**os.environ, "BUILD_DIR": str(build_dir), **(env_override or {})}

    logger.info("Executing build: %s (cwd %s)", cmd_str, build_dir)
    started_at = datetime.now(timezone.utc)

    with log_path.open("w") as log:
        _write_header(log, cmd_str, build_dir, started_at)
        try:
            proc = subprocess.Popen(
                command,
                cwd=build_dir,
                stdout=log,
                stderr=subprocess.STDOUT,
                env=env,
                start_new_session=True,
            )
        except OSError as e:
            message = f"Failed to execute build: {e}"
            logger.error(message)
            raise BuildExecutionError(
                message, exit_code=NOT_EXECUTABLE_EXIT_CODE, code="execution_error"
            ) from e

        try:
            exit_code = proc.wait(timeout=timeout)
        except subprocess.TimeoutExpired as e:
            _terminate_group(proc)
            message = f"Build timed out after {timeout} seconds"
            logger.error("%s. See log: %s", message, log_path)
            _write_footer(log_path, [f"TIMEOUT after {timeout} seconds"])
            raise BuildExecutionError(
                message, exit_code=TIMEOUT_EXIT_CODE, code="build_timeout"
            ) from e

    finished_at = datetime.now(timezone.utc)
    error_message = None
    if exit_code != 0:
        error_message = f"Build failed with exit code {exit_code}"
        logger.error("%s. See log: %s", error_message, log_path)

    result = BuildResult(
        success=exit_code == 0,
        exit_code=exit_code,
        log_path=log_path,
        started_at=started_at,
        finished_at=finished_at,
        command=cmd_str,
        error_message=error_message,
    )
    _write_footer(
        log_path,
        [
            f"Finished: {finished_at.isoformat()}",
            f"Exit code: {exit_code}",
            f"Duration: {result.duration:.1f}s",
        ],
    )
    return result


__all__ = [
    "BuildExecutionError",
    "BuildResult",
    "default_log_path",
    "run_build_process",
]
