"""Builder lifecycle controller.

The builder runs as a linear state machine:

    PROVISION -> RUN_BUILD -> UPLOAD_ARTIFACTS -> SCALE_TO_ZERO -> HALT

and, when provisioning or the build fails:

    UPLOAD_PARTIAL_LOGS -> EXIT_NON_ZERO

Each state declares a failure policy. ABORT states turn a failure into
the run's exit code; CONTINUE states log and emit the failure and move on.
Uploads and the capacity change are CONTINUE so that a broken store or an
uncooperative fleet manager never keeps the instance running. The
controller runs at most once: on success the instance halts itself.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path

from build_handoff.builder.artifacts import (
    MANIFEST_KEY,
    describe_artifact,
    find_artifact_source,
    find_build_logs,
    generate_manifest,
    list_product_files,
    manifest_to_bytes,
)
from build_handoff.builder.runner import (
    BuildExecutionError,
    BuildResult,
    run_build_process,
)
from build_handoff.commands import CommandFailedError, CommandRunner
from build_handoff.consumer.service import SystemdServiceManager
from build_handoff.fleet.base import CapacityController, InstanceIdentity
from build_handoff.power import PowerControl
from build_handoff.profile.schema import PipelineProfile
from build_handoff.store.base import ObjectStore
from build_handoff.telemetry.reporter import ProgressReporter
from build_handoff.types import ArtifactInfo, BuilderState, FailurePolicy

logger = logging.getLogger(__name__)

STATE_POLICIES: dict[BuilderState, FailurePolicy] = {
    BuilderState.PROVISION: FailurePolicy.ABORT,
    BuilderState.RUN_BUILD: FailurePolicy.ABORT,
    BuilderState.UPLOAD_ARTIFACTS: FailurePolicy.CONTINUE,
    BuilderState.SCALE_TO_ZERO: FailurePolicy.CONTINUE,
    BuilderState.HALT: FailurePolicy.ABORT,
    BuilderState.UPLOAD_PARTIAL_LOGS: FailurePolicy.CONTINUE,
    BuilderState.EXIT_NON_ZERO: FailurePolicy.CONTINUE,
}

# Key of the builder's boot/init log
BOOT_LOG_KEY = "build-cloud-init-output.log"

DEFAULT_BOOT_LOG = Path("/var/log/cloud-init-output.log")

HALT_GRACE_DELAY = 30.0


class AlreadyRanError(Exception):
    """Raised when a controller is run a second time."""

    def __init__(self, code: str = "already_ran") -> None:
        super().__init__("The builder lifecycle runs at most once per instance")
        self.code = code


@dataclass
class BuilderOutcome:
    """What one builder run did.

    Attributes:
        exit_code: Process exit code for the run (build's code on failure).
        states: States entered, in order.
        build: Build result, if the build ran to completion.
        uploaded_keys: Keys successfully written to the store.
        failed_uploads: Keys that could not be written.
        group: Capacity group owning this instance, if resolved.
        capacity_updated: Whether the group was scaled to zero.
        halted: Whether the halt action was invoked.
    """

    exit_code: int = 0
    states: list[BuilderState] = field(default_factory=list)
    build: BuildResult | None = None
    uploaded_keys: list[str] = field(default_factory=list)
    failed_uploads: list[str] = field(default_factory=list)
    group: str | None = None
    capacity_updated: bool = False
    halted: bool = False


def _normalize_exit_code(code: int) -> int:
    # subprocess reports death by signal N as -N; shells report 128 + N
    if code < 0:
        return 128 - code
    return code


class BuilderController:
    """Run the builder side of the handoff once."""

    def __init__(
        self,
        profile: PipelineProfile,
        store: ObjectStore,
        reporter: ProgressReporter,
        identity: InstanceIdentity,
        power: PowerControl,
        capacity: CapacityController | None = None,
        runner: CommandRunner | None = None,
        service_manager: SystemdServiceManager | None = None,
        boot_log_path: Path = DEFAULT_BOOT_LOG,
        build_timeout: int | None = None,
        halt_grace_delay: float = HALT_GRACE_DELAY,
        sleep: Callable[[float], None] = time.sleep,
        build_process: Callable[..., BuildResult] = run_build_process,
    ) -> None:
        self.profile = profile
        self.store = store
        self.reporter = reporter
        self.identity = identity
        self.power = power
        self.capacity = capacity
        self.runner = runner or CommandRunner()
        self.service_manager = service_manager or SystemdServiceManager(self.runner)
        self.boot_log_path = boot_log_path
        self.build_timeout = build_timeout
        self.halt_grace_delay = halt_grace_delay
        self.sleep = sleep
        self.build_process = build_process

        self.build_dir = Path(profile.builder.build_dir)
        product_dir = Path(profile.builder.product_dir)
        self.product_dir = (
            product_dir if product_dir.is_absolute() else self.build_dir / product_dir
        )

        self._ran = False
        self._outcome = BuilderOutcome()

    def run(self) -> BuilderOutcome:
        """Run the lifecycle and return its outcome.

        Raises:
            AlreadyRanError: If called more than once.
        """
        if self._ran:
            raise AlreadyRanError()
        self._ran = True
        outcome = self._outcome

        exit_code = self._enter(BuilderState.PROVISION, self._provision)
        if exit_code == 0:
            exit_code = self._enter(BuilderState.RUN_BUILD, self._run_build)

        if exit_code != 0:
            self._enter(BuilderState.UPLOAD_PARTIAL_LOGS, self._upload_partial_logs)
            self._enter(
                BuilderState.EXIT_NON_ZERO, lambda: self._exit_non_zero(exit_code)
            )
            outcome.exit_code = exit_code
            return outcome

        self._enter(BuilderState.UPLOAD_ARTIFACTS, self._upload_artifacts)
        self._enter(BuilderState.SCALE_TO_ZERO, self._scale_to_zero)
        outcome.exit_code = self._enter(BuilderState.HALT, self._halt)
        return outcome

    def _enter(self, state: BuilderState, action: Callable[[], int | None]) -> int:
        """Run one state under its failure policy and return an exit code."""
        self._outcome.states.append(state)
        policy = STATE_POLICIES[state]
        logger.debug("Entering %s (policy=%s)", state.value, policy.value)

        if policy == FailurePolicy.ABORT:
            try:
                return _normalize_exit_code(action() or 0)
            except (CommandFailedError, BuildExecutionError) as e:
                logger.error("%s failed: %s", state.value, e)
                self.reporter.emit(f"ERROR: {state.value} failed: {e}")
                return _normalize_exit_code(e.exit_code) or 1
            except Exception as e:
                logger.exception("%s failed", state.value)
                self.reporter.emit(f"ERROR: {state.value} failed: {e}")
                return 1

        try:
            action()
        except Exception as e:
            logger.warning("%s failed, continuing: %s", state.value, e)
            self.reporter.emit(f"WARNING: {state.value} failed: {e}")
        return 0

    # States

    def _provision(self) -> int:
        self.build_dir.mkdir(parents=True, exist_ok=True)
        self.runner.run_all(self.profile.builder.provision_commands, cwd=self.build_dir)
        self.reporter.emit("Prerequisites installed")
        if self.profile.builder.agent_unit:
            self._setup_agent(self.profile.builder.agent_unit)
        return 0

    def _setup_agent(self, unit: str) -> None:
        manager = self.service_manager
        if manager.is_active(unit):
            self.reporter.emit(f"Management agent {unit} is already running")
        else:
            self.reporter.emit(f"Installing management agent {unit}...")
            self.runner.run_all(
                self.profile.builder.agent_install_commands, cwd=self.build_dir
            )
            manager.enable_now(unit)
            status = manager.status(unit)
            if not status.ok:
                logger.warning(
                    "%s status exited %d after start", unit, status.exit_code
                )
        self.reporter.emit("Management agent setup completed")

    def _run_build(self) -> int:
        self.reporter.emit("Starting build process...")
        result = self.build_process(
            self.profile.builder.build_command,
            self.build_dir,
            timeout=self.build_timeout,
            env_override=self.profile.builder.environment or None,
        )
        self._outcome.build = result
        if result.success:
            self.reporter.emit("Build script execution completed successfully")
            return 0
        return result.exit_code

    def _upload_artifacts(self) -> None:
        builder = self.profile.builder
        self.reporter.emit("Uploading build artifacts...")

        if builder.upload_prefix:
            product_files = list_product_files(self.product_dir)
            if product_files:
                self.reporter.emit("Uploading product files...")
            for path in product_files:
                relative = path.relative_to(self.product_dir).as_posix()
                self._upload_file(builder.upload_prefix + relative, path)

        self._upload_build_logs()

        # Manifest first, then the well-known keys with the primary last
        declared: list[tuple[ArtifactInfo, Path]] = []
        for artifact in self.profile.publish_order():
            source = find_artifact_source(self.product_dir, artifact.source)
            if source is None:
                logger.warning(
                    "Artifact %s (%s) not found in %s",
                    artifact.role,
                    artifact.source,
                    self.product_dir,
                )
                self.reporter.emit(
                    f"WARNING: Artifact {artifact.role} not found ({artifact.source})"
                )
                self._outcome.failed_uploads.append(artifact.key)
                continue
            declared.append((describe_artifact(source, artifact.key, artifact.role), source))

        build = self._outcome.build
        manifest = generate_manifest(
            [info for info, _ in declared],
            profile_name=self.profile.name,
            build_command=build.command if build else None,
            exit_code=build.exit_code if build else None,
            started_at=build.started_at if build else None,
            finished_at=build.finished_at if build else None,
        )
        self._upload_bytes(MANIFEST_KEY, manifest_to_bytes(manifest))

        for info, source in declared:
            self._upload_file(info.key, source)

        self._upload_boot_log()

        failed = len(self._outcome.failed_uploads)
        if failed:
            self.reporter.emit(f"Build artifacts uploaded with {failed} failure(s)")
        else:
            self.reporter.emit("Build artifacts uploaded successfully")

    def _scale_to_zero(self) -> None:
        if self.capacity is None:
            self.reporter.emit(
                "No fleet manager configured; skipping capacity group shutdown"
            )
            return

        self.reporter.emit("Initiating capacity group shutdown...")
        instance_id = self.identity.instance_id()
        group = self.capacity.describe_owning_group(instance_id)
        if not group:
            self.reporter.emit(
                f"No capacity group owns instance {instance_id}; skipping shutdown"
            )
            return

        self._outcome.group = group
        self.reporter.emit(f"Found capacity group: {group}")
        try:
            self.capacity.set_desired_capacity(group, 0)
        except Exception as e:
            logger.error("Failed to scale %s to zero: %s", group, e)
            self.reporter.emit(f"Failed to shut down capacity group {group}: {e}")
            return
        self._outcome.capacity_updated = True
        self.reporter.emit(f"Successfully shut down capacity group {group}")

    def _halt(self) -> int:
        self.reporter.emit("All tasks completed. Shutting down instance...")
        if self.halt_grace_delay > 0:
            self.sleep(self.halt_grace_delay)
        self._outcome.halted = True
        self.power.halt()
        return 0

    def _upload_partial_logs(self) -> None:
        self._upload_build_logs()
        self._upload_boot_log()

    def _exit_non_zero(self, exit_code: int) -> None:
        self.reporter.emit(f"Build script failed with exit code: {exit_code}")

    # Best-effort uploads

    def _upload_build_logs(self) -> None:
        builder = self.profile.builder
        logs = find_build_logs(self.build_dir, builder.build_log_glob)
        build = self._outcome.build
        if build and build.log_path.is_file() and build.log_path not in logs:
            logs.append(build.log_path)
        if not logs:
            logger.warning("No build log found in %s", self.build_dir)
        for path in logs:
            self._upload_file(builder.build_log_prefix + path.name, path)

    def _upload_boot_log(self) -> None:
        if self.boot_log_path.is_file():
            self._upload_file(BOOT_LOG_KEY, self.boot_log_path)
        else:
            logger.info("No boot log at %s", self.boot_log_path)

    def _upload_file(self, key: str, path: Path) -> bool:
        try:
            self.store.put_file(key, path)
        except Exception as e:
            return self._upload_failed(key, e)
        self._outcome.uploaded_keys.append(key)
        return True

    def _upload_bytes(self, key: str, data: bytes) -> bool:
        try:
            self.store.put(key, data)
        except Exception as e:
            return self._upload_failed(key, e)
        self._outcome.uploaded_keys.append(key)
        return True

    def _upload_failed(self, key: str, error: Exception) -> bool:
        logger.warning("Failed to upload %s: %s", key, error)
        self.reporter.emit(f"WARNING: Failed to upload {key}")
        self._outcome.failed_uploads.append(key)
        return False


__all__ = [
    "AlreadyRanError",
    "BOOT_LOG_KEY",
    "BuilderController",
    "BuilderOutcome",
    "HALT_GRACE_DELAY",
    "STATE_POLICIES",
]
