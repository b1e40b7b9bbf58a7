"""Consumer bootstrap.

The consumer turns a freshly booted instance into a running service in six
strictly ordered phases, reporting "Step k of 6" after each one:

1. Install base services and start the management agent
2. Wait until the builder has published every required artifact
3. Install the runtime
4. Stage the artifacts
5. Install and start the service unit
6. Publish the endpoint, upload the boot log and reboot

Every phase is fail-fast. Two operations are tolerated instead: inspecting
the unit status, and uploading the boot log in the last phase.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path

from build_handoff.builder.artifacts import MANIFEST_KEY, parse_manifest_checksums
from build_handoff.commands import CommandFailedError, CommandRunner
from build_handoff.consumer.service import SystemdServiceManager, render_unit
from build_handoff.consumer.staging import copy_helpers, stage_artifacts
from build_handoff.fleet.base import InstanceIdentity
from build_handoff.power import PowerControl
from build_handoff.profile.schema import PipelineProfile
from build_handoff.store.base import ObjectNotFoundError, ObjectStore
from build_handoff.store.wait import ArtifactWaitTimeout, WaitResult, wait_for_keys
from build_handoff.telemetry.reporter import ProgressReporter, StepCounter
from build_handoff.types import ConsumerPhase

logger = logging.getLogger(__name__)

TOTAL_STEPS = len(ConsumerPhase)

# Key of the consumer's boot/init log
BOOT_LOG_KEY = "target-cloud-init-output.log"

DEFAULT_BOOT_LOG = Path("/var/log/cloud-init-output.log")

DOWNLOADS_DIRNAME = ".downloads"


class BootstrapAborted(Exception):
    """Raised when a phase fails; carries the process exit code."""

    def __init__(
        self,
        phase: ConsumerPhase,
        exit_code: int,
        message: str = "",
        code: str = "bootstrap_aborted",
    ) -> None:
        super().__init__(
            message or f"Bootstrap aborted in {phase.value} with exit code {exit_code}"
        )
        self.phase = phase
        self.exit_code = exit_code
        self.code = code


@dataclass
class BootstrapResult:
    """What a completed bootstrap did."""

    endpoint: str
    wait: WaitResult | None = None
    staged: list[Path] = field(default_factory=list)
    unit_path: Path | None = None
    boot_log_uploaded: bool = False
    rebooted: bool = False


def _exit_code_for(error: Exception) -> int:
    if isinstance(error, ArtifactWaitTimeout):
        return 124
    if isinstance(error, CommandFailedError):
        return error.exit_code or 1
    return 1


class ConsumerBootstrap:
    """Run the consumer bootstrap once."""

    def __init__(
        self,
        profile: PipelineProfile,
        store: ObjectStore,
        reporter: ProgressReporter,
        identity: InstanceIdentity,
        service_manager: SystemdServiceManager,
        power: PowerControl,
        runner: CommandRunner | None = None,
        boot_log_path: Path = DEFAULT_BOOT_LOG,
        poll_interval: float = 60.0,
        wait_timeout: float | None = None,
        wait_max_attempts: int | None = None,
        reboot_delay: float = 5.0,
        force_unit: bool = False,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.profile = profile
        self.store = store
        self.reporter = reporter
        self.identity = identity
        self.service_manager = service_manager
        self.power = power
        self.runner = runner or CommandRunner()
        self.boot_log_path = boot_log_path
        self.poll_interval = poll_interval
        self.wait_timeout = wait_timeout
        self.wait_max_attempts = wait_max_attempts
        self.reboot_delay = reboot_delay
        self.force_unit = force_unit
        self.sleep = sleep
        self.clock = clock

        self.steps = StepCounter(reporter, TOTAL_STEPS)
        self.workdir = Path(profile.consumer.workdir)
        self.staging_dir = Path(profile.consumer.staging_dir)
        self._result = BootstrapResult(endpoint="")

    def run(self) -> BootstrapResult:
        """Run all six phases in order.

        Raises:
            BootstrapAborted: If any phase fails.
        """
        phases: list[tuple[ConsumerPhase, Callable[[], None]]] = [
            (ConsumerPhase.INSTALL_BASE_SERVICES, self._install_base_services),
            (ConsumerPhase.AWAIT_ARTIFACTS, self._await_artifacts),
            (ConsumerPhase.INSTALL_RUNTIME, self._install_runtime),
            (ConsumerPhase.STAGE_ARTIFACTS, self._stage_artifacts),
            (ConsumerPhase.INSTALL_SERVICE, self._install_service),
            (ConsumerPhase.PUBLISH_AND_RECYCLE, self._publish_and_recycle),
        ]
        for phase, action in phases:
            logger.info("Entering phase %s", phase.value)
            try:
                action()
            except Exception as e:
                exit_code = _exit_code_for(e)
                logger.error("Phase %s failed: %s", phase.value, e)
                # Once the endpoint has been published it stays the last line.
                if self.steps.last_step < TOTAL_STEPS:
                    self.reporter.emit(
                        f"Bootstrap aborted in {phase.value} with exit code {exit_code}"
                    )
                raise BootstrapAborted(phase, exit_code, str(e)) from e
        return self._result

    def _install_base_services(self) -> None:
        consumer = self.profile.consumer
        self.runner.run_all(consumer.base_commands, cwd=self.workdir)
        if consumer.agent_unit:
            self.service_manager.enable(consumer.agent_unit)
            self.service_manager.restart(consumer.agent_unit)
        self.steps.step(
            1,
            "Core libraries installed and services running - "
            "awaiting sync with build instance",
        )

    def _await_artifacts(self) -> None:
        self._result.wait = wait_for_keys(
            self.store,
            self.profile.required_keys(),
            interval=self.poll_interval,
            timeout=self.wait_timeout,
            max_attempts=self.wait_max_attempts,
            sleep=self.sleep,
            clock=self.clock,
        )
        self.steps.step(
            2, "Build artifacts available - downloading and installing runtime"
        )

    def _install_runtime(self) -> None:
        self.runner.run_all(self.profile.consumer.runtime_commands, cwd=self.workdir)
        self.steps.step(
            3, "Runtime installed - unpacking and configuring build artifacts"
        )

    def _stage_artifacts(self) -> None:
        consumer = self.profile.consumer
        checksums = self._manifest_checksums()
        available = [
            a
            for a in self.profile.artifacts
            if a.required or self.store.exists(a.key)
        ]
        self._result.staged = stage_artifacts(
            self.store,
            available,
            self.staging_dir,
            self.staging_dir / DOWNLOADS_DIRNAME,
            checksums,
        )
        copy_helpers(consumer.helpers, self.staging_dir)
        if consumer.owner:
            self.runner.run(["chown", "-R", consumer.owner, str(self.staging_dir)])
        self.steps.step(4, f"Creating and starting {consumer.service.name}")

    def _manifest_checksums(self) -> dict[str, str]:
        try:
            data = self.store.get(MANIFEST_KEY)
        except ObjectNotFoundError:
            logger.info("No manifest published; skipping checksum verification")
            return {}
        return parse_manifest_checksums(data)

    def _install_service(self) -> None:
        unit = self.profile.consumer.service
        content = render_unit(unit, str(self.staging_dir))
        manager = self.service_manager
        self._result.unit_path = manager.install_unit(
            unit.name, content, force=self.force_unit
        )
        manager.daemon_reload()
        manager.enable(unit.name)
        manager.restart(unit.name)
        status = manager.status(unit.name)
        if not status.ok:
            logger.warning(
                "%s status exited %d after restart", unit.name, status.exit_code
            )
        self.steps.step(5, f"{unit.name} is running")

    def _publish_and_recycle(self) -> None:
        consumer = self.profile.consumer
        ip = self.identity.public_ipv4()
        endpoint = f"{consumer.endpoint_scheme}://{ip}:{consumer.endpoint_port}"
        self._result.endpoint = endpoint
        self.steps.step(6, f"Setup complete - service reachable at {endpoint}")

        # The endpoint line is the last message of the run; from here on
        # failures are only logged locally.
        self._upload_boot_log()
        if self.reboot_delay > 0:
            self.sleep(self.reboot_delay)
        self._result.rebooted = True
        self.power.reboot()

    def _upload_boot_log(self) -> None:
        if not self.boot_log_path.is_file():
            logger.info("No boot log at %s", self.boot_log_path)
            return
        try:
            self.store.put_file(BOOT_LOG_KEY, self.boot_log_path)
        except Exception as e:
            logger.warning("Failed to upload %s: %s", BOOT_LOG_KEY, e)
            return
        self._result.boot_log_uploaded = True


__all__ = [
    "BOOT_LOG_KEY",
    "BootstrapAborted",
    "BootstrapResult",
    "ConsumerBootstrap",
    "TOTAL_STEPS",
]
