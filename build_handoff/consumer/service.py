"""Service manager integration for the consumer.

Renders the profile's unit definition and drives systemd through
systemctl. Installing a unit is guarded: an existing unit file is only
replaced when the caller forces it.
"""

from __future__ import annotations

import logging
import os
import tempfile
from pathlib import Path

from build_handoff.commands import CommandRunner, CompletedCommand
from build_handoff.profile.schema import STAGING_PLACEHOLDER, ServiceUnitSchema

logger = logging.getLogger(__name__)

DEFAULT_UNIT_DIR = Path("/etc/systemd/system")

UNIT_FILE_MODE = 0o644


class UnitAlreadyExistsError(Exception):
    """Raised when a unit file exists and replacing it was not requested."""

    def __init__(self, path: Path, code: str = "unit_exists") -> None:
        super().__init__(
            f"Unit file already exists: {path} (use --force-unit to replace it)"
        )
        self.path = path
        self.code = code


def _substitute(value: str, staging_dir: str) -> str:
    return value.replace(STAGING_PLACEHOLDER, staging_dir)


def render_unit(schema: ServiceUnitSchema, staging_dir: str) -> str:
    """Render a unit file from its schema.

    Args:
        schema: Unit definition.
        staging_dir: Replaces {staging_dir} in every string field.

    Returns:
        Unit file content.
    """
    lines = [
        "[Unit]",
        f"Description={schema.description}",
        f"After={schema.after}",
        "",
        "[Service]",
        f"Type={schema.type}",
    ]
    if schema.user:
        lines.append(f"User={schema.user}")
    if schema.group:
        lines.append(f"Group={schema.group}")
    for name, value in sorted(schema.environment.items()):
        lines.append(f'Environment="{name}={_substitute(value, staging_dir)}"')
    lines.append(f"ExecStart={_substitute(schema.exec_start, staging_dir)}")
    if schema.exec_stop:
        lines.append(f"ExecStop={_substitute(schema.exec_stop, staging_dir)}")
    lines.extend(
        [
            "",
            "[Install]",
            f"WantedBy={schema.wanted_by}",
        ]
    )
    return "\n".join(lines) + "\n"


class SystemdServiceManager:
    """Install and control units through systemctl."""

    def __init__(
        self,
        runner: CommandRunner | None = None,
        unit_dir: Path = DEFAULT_UNIT_DIR,
    ) -> None:
        self.runner = runner or CommandRunner()
        self.unit_dir = unit_dir

    def unit_path(self, name: str) -> Path:
        return self.unit_dir / name

    def install_unit(self, name: str, content: str, force: bool = False) -> Path:
        """Write a unit file atomically.

        Raises:
            UnitAlreadyExistsError: If the unit exists and force is not set.
        """
        path = self.unit_path(name)
        if path.exists() and not force:
            raise UnitAlreadyExistsError(path)
        if path.exists():
            logger.warning("Replacing existing unit file %s", path)

        self.unit_dir.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=self.unit_dir, prefix=f".{name}.")
        try:
            with os.fdopen(fd, "w") as f:
                f.write(content)
            os.chmod(tmp_name, UNIT_FILE_MODE)
            os.replace(tmp_name, path)
        except OSError:
            Path(tmp_name).unlink(missing_ok=True)
            raise
        logger.info("Installed unit file %s", path)
        return path

    def daemon_reload(self) -> None:
        self.runner.run(["systemctl", "daemon-reload"])

    def enable(self, unit: str) -> None:
        self.runner.run(["systemctl", "enable", unit])

    def restart(self, unit: str) -> None:
        self.runner.run(["systemctl", "restart", unit])

    def enable_now(self, unit: str) -> None:
        self.runner.run(["systemctl", "enable", "--now", unit])

    def is_active(self, unit: str) -> bool:
        return self.runner.run(
            ["systemctl", "is-active", "--quiet", unit], check=False
        ).ok

    def status(self, unit: str) -> CompletedCommand:
        """Return `systemctl status` output; a non-zero exit is tolerated."""
        return self.runner.run(["systemctl", "status", "--no-pager", unit], check=False)


__all__ = [
    "DEFAULT_UNIT_DIR",
    "SystemdServiceManager",
    "UnitAlreadyExistsError",
    "render_unit",
]
