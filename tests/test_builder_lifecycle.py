"""Tests for the builder lifecycle controller.

The build process, store, sink, fleet manager and power control are all
replaced by fakes from conftest.
"""

from datetime import datetime, timezone

import pytest

from build_handoff.builder.artifacts import MANIFEST_KEY
from build_handoff.builder.lifecycle import (
    BOOT_LOG_KEY,
    STATE_POLICIES,
    AlreadyRanError,
    BuilderController,
)
from build_handoff.builder.runner import BuildExecutionError, BuildResult
from build_handoff.types import BuilderState, FailurePolicy
from conftest import (
    FakeCapacity,
    FakeIdentity,
    FakePower,
    FakeRunner,
    FakeServiceManager,
)


def fake_build(exit_code=0, products=True):
    """Build process double writing a product tree and a build log."""

    def build_process(command, build_dir, timeout=None, env_override=None):
        now = datetime.now(timezone.utc)
        log_path = build_dir / "build-20240101_000000.log"
        log_path.write_text("build output\n")
        if products:
            out = build_dir / "out" / "vsoc"
            out.mkdir(parents=True, exist_ok=True)
            (build_dir / "out" / "u-boot.bin").write_bytes(b"boot")
            (out / "cvd-host_package.tar.gz").write_bytes(b"host")
            (out / "aaos-img-eng.zip").write_bytes(b"img")
        return BuildResult(
            success=exit_code == 0,
            exit_code=exit_code,
            log_path=log_path,
            started_at=now,
            finished_at=now,
            command=" ".join(command),
        )

    return build_process


@pytest.fixture
def parts(tmp_path, memory_store, build_reporter, sink):
    boot_log = tmp_path / "cloud-init-output.log"
    boot_log.write_text("boot\n")
    return {
        "store": memory_store,
        "reporter": build_reporter,
        "sink": sink,
        "capacity": FakeCapacity(),
        "power": FakePower(),
        "runner": FakeRunner(),
        "boot_log": boot_log,
        "sleeps": [],
    }


def make_controller(profile, parts, build_process=None, **kwargs):
    return BuilderController(
        profile,
        parts["store"],
        parts["reporter"],
        FakeIdentity(),
        power=parts["power"],
        capacity=parts["capacity"],
        runner=parts["runner"],
        boot_log_path=parts["boot_log"],
        sleep=parts["sleeps"].append,
        build_process=build_process or fake_build(),
        **kwargs,
    )


class TestStatePolicies:
    def test_every_state_has_a_policy(self):
        assert set(STATE_POLICIES) == set(BuilderState)

    def test_uploads_and_capacity_continue(self):
        assert STATE_POLICIES[BuilderState.UPLOAD_ARTIFACTS] == FailurePolicy.CONTINUE
        assert STATE_POLICIES[BuilderState.SCALE_TO_ZERO] == FailurePolicy.CONTINUE
        assert STATE_POLICIES[BuilderState.RUN_BUILD] == FailurePolicy.ABORT


class TestSuccessfulBuild:
    """Build exit 0: upload, scale to zero, halt."""

    def test_states_in_order(self, profile, parts):
        outcome = make_controller(profile, parts).run()

        assert outcome.exit_code == 0
        assert outcome.states == [
            BuilderState.PROVISION,
            BuilderState.RUN_BUILD,
            BuilderState.UPLOAD_ARTIFACTS,
            BuilderState.SCALE_TO_ZERO,
            BuilderState.HALT,
        ]

    def test_exactly_one_capacity_call(self, profile, parts):
        outcome = make_controller(profile, parts).run()

        assert parts["capacity"].described == ["i-0123456789"]
        assert parts["capacity"].calls == [("builder-group", 0)]
        assert outcome.capacity_updated is True
        assert outcome.group == "builder-group"

    def test_halts_after_grace_delay(self, profile, parts):
        outcome = make_controller(profile, parts, halt_grace_delay=30).run()

        assert parts["sleeps"] == [30]
        assert parts["power"].halts == 1
        assert outcome.halted is True

    def test_uploads(self, profile, parts):
        """Well-known keys, product tree, logs and manifest are published."""
        store = parts["store"]
        make_controller(profile, parts).run()

        assert store.objects["u-boot.bin"] == b"boot"
        assert store.objects["cvd-host_package.tar.gz"] == b"host"
        assert store.objects["images.zip"] == b"img"
        assert "target/vsoc/aaos-img-eng.zip" in store.objects
        assert "build-logs/build-20240101_000000.log" in store.objects
        assert store.objects[BOOT_LOG_KEY] == b"boot\n"
        assert MANIFEST_KEY in store.objects

    def test_manifest_before_keys_primary_last(self, profile, parts):
        store = parts["store"]
        make_controller(profile, parts).run()

        order = store.put_order
        declared = ["cvd-host_package.tar.gz", "images.zip", "u-boot.bin"]
        positions = [order.index(k) for k in declared]
        assert positions == sorted(positions)
        assert order.index(MANIFEST_KEY) < positions[0]

    def test_provision_commands_run_first(self, profile, parts):
        make_controller(profile, parts).run()
        assert parts["runner"].displayed() == ["apt-get install -y build-deps"]

    def test_progress_messages(self, profile, parts):
        make_controller(profile, parts).run()
        messages = parts["sink"].messages("build")

        assert messages[0] == "Prerequisites installed"
        assert "Build script execution completed successfully" in messages
        assert "Found capacity group: builder-group" in messages
        assert messages[-1] == "All tasks completed. Shutting down instance..."


class TestFailureTolerance:
    """Uploads and the capacity change never prevent the halt."""

    def test_upload_failure_still_scales_and_halts(self, profile, parts):
        parts["store"].fail_all_puts = True
        outcome = make_controller(profile, parts).run()

        assert outcome.exit_code == 0
        assert outcome.failed_uploads
        assert parts["capacity"].calls == [("builder-group", 0)]
        assert parts["power"].halts == 1
        assert "WARNING: Failed to upload u-boot.bin" in parts["sink"].messages("build")

    def test_single_upload_failure_keeps_others(self, profile, parts):
        parts["store"].fail_puts = {"images.zip"}
        outcome = make_controller(profile, parts).run()

        assert outcome.failed_uploads == ["images.zip"]
        assert "u-boot.bin" in parts["store"].objects

    def test_capacity_call_raising_still_halts(self, profile, parts):
        parts["capacity"].fail_set = True
        outcome = make_controller(profile, parts).run()

        assert parts["capacity"].calls == [("builder-group", 0)]
        assert outcome.capacity_updated is False
        assert parts["power"].halts == 1

    def test_describe_raising_still_halts(self, profile, parts):
        parts["capacity"].fail_describe = True
        outcome = make_controller(profile, parts).run()

        assert parts["capacity"].calls == []
        assert parts["power"].halts == 1
        assert outcome.exit_code == 0

    def test_no_owning_group(self, profile, parts):
        parts["capacity"].group = None
        outcome = make_controller(profile, parts).run()

        assert parts["capacity"].calls == []
        assert parts["power"].halts == 1
        assert outcome.group is None

    def test_no_fleet_manager(self, profile, parts):
        parts["capacity"] = None
        outcome = make_controller(profile, parts).run()
        assert outcome.halted is True

    def test_missing_artifact_is_reported(self, profile, parts):
        outcome = make_controller(profile, parts, build_process=fake_build(products=False)).run()

        assert set(outcome.failed_uploads) >= {"u-boot.bin", "images.zip"}
        assert parts["power"].halts == 1

    def test_sink_failure_does_not_matter(self, profile, parts):
        parts["sink"].fail = True
        outcome = make_controller(profile, parts).run()
        assert outcome.exit_code == 0
        assert parts["power"].halts == 1


class TestFailedBuild:
    """Build exit != 0: no capacity call, no halt, build's exit code."""

    def test_exit_code_propagates(self, profile, parts):
        outcome = make_controller(profile, parts, build_process=fake_build(exit_code=2)).run()

        assert outcome.exit_code == 2
        assert parts["capacity"].calls == []
        assert parts["capacity"].described == []
        assert parts["power"].halts == 0
        assert outcome.states[-2:] == [
            BuilderState.UPLOAD_PARTIAL_LOGS,
            BuilderState.EXIT_NON_ZERO,
        ]

    def test_partial_logs_uploaded(self, profile, parts):
        make_controller(profile, parts, build_process=fake_build(exit_code=2)).run()
        store = parts["store"]

        assert "build-logs/build-20240101_000000.log" in store.objects
        assert BOOT_LOG_KEY in store.objects
        assert "u-boot.bin" not in store.objects

    def test_failure_message(self, profile, parts):
        make_controller(profile, parts, build_process=fake_build(exit_code=2)).run()
        assert parts["sink"].messages("build")[-1] == "Build script failed with exit code: 2"

    def test_signal_exit_code(self, profile, parts):
        outcome = make_controller(profile, parts, build_process=fake_build(exit_code=-9)).run()
        assert outcome.exit_code == 137

    def test_build_timeout(self, profile, parts):
        def timed_out(command, build_dir, timeout=None, env_override=None):
            raise BuildExecutionError("timed out", exit_code=124, code="build_timeout")

        outcome = make_controller(profile, parts, build_process=timed_out).run()

        assert outcome.exit_code == 124
        assert parts["capacity"].calls == []
        assert "ERROR: run_build failed: timed out" in parts["sink"].messages("build")

    def test_unexpected_build_error(self, profile, parts):
        def broken(command, build_dir, timeout=None, env_override=None):
            raise ValueError("bad build result")

        outcome = make_controller(profile, parts, build_process=broken).run()

        assert outcome.exit_code == 1
        assert outcome.states[-2:] == [
            BuilderState.UPLOAD_PARTIAL_LOGS,
            BuilderState.EXIT_NON_ZERO,
        ]
        assert parts["power"].halts == 0
        messages = parts["sink"].messages("build")
        assert "ERROR: run_build failed: bad build result" in messages
        assert messages[-1] == "Build script failed with exit code: 1"

    def test_provision_failure(self, profile, parts):
        parts["runner"] = FakeRunner(failures={"build-deps": 100})
        calls = []

        def never(*args, **kwargs):
            calls.append(args)
            raise AssertionError("build must not run")

        outcome = make_controller(profile, parts, build_process=never).run()

        assert outcome.exit_code == 100
        assert calls == []
        assert BuilderState.RUN_BUILD not in outcome.states
        assert parts["power"].halts == 0


class TestAgentSetup:
    """Provisioning ensures the management agent runs when one is configured."""

    def with_agent(self, profile):
        builder = profile.builder.model_copy(
            update={
                "agent_unit": "agent.service",
                "agent_install_commands": ["snap install agent --classic"],
            }
        )
        return profile.model_copy(update={"builder": builder})

    def test_installs_inactive_agent(self, profile, parts):
        manager = FakeServiceManager(active=False)
        outcome = make_controller(
            self.with_agent(profile), parts, service_manager=manager
        ).run()

        assert outcome.exit_code == 0
        assert manager.calls == [
            ("is-active", "agent.service"),
            ("enable-now", "agent.service"),
            ("status", "agent.service"),
        ]
        assert parts["runner"].displayed() == [
            "apt-get install -y build-deps",
            "snap install agent --classic",
        ]
        messages = parts["sink"].messages("build")
        assert messages[:3] == [
            "Prerequisites installed",
            "Installing management agent agent.service...",
            "Management agent setup completed",
        ]

    def test_running_agent_left_alone(self, profile, parts):
        manager = FakeServiceManager(active=True)
        make_controller(self.with_agent(profile), parts, service_manager=manager).run()

        assert manager.calls == [("is-active", "agent.service")]
        assert parts["runner"].displayed() == ["apt-get install -y build-deps"]
        messages = parts["sink"].messages("build")
        assert "Management agent agent.service is already running" in messages
        assert "Management agent setup completed" in messages

    def test_agent_install_failure_aborts(self, profile, parts):
        parts["runner"] = FakeRunner(failures={"snap install": 1})
        outcome = make_controller(
            self.with_agent(profile), parts, service_manager=FakeServiceManager()
        ).run()

        assert outcome.exit_code == 1
        assert BuilderState.RUN_BUILD not in outcome.states
        assert parts["power"].halts == 0

    def test_systemd_manager_by_default(self, profile, parts):
        controller = make_controller(self.with_agent(profile), parts)
        parts["runner"].failures = {"is-active": 3}

        controller.run()

        assert parts["runner"].displayed()[1:4] == [
            "systemctl is-active --quiet agent.service",
            "snap install agent --classic",
            "systemctl enable --now agent.service",
        ]


class TestRunsOnce:
    def test_second_run_rejected(self, profile, parts):
        controller = make_controller(profile, parts)
        controller.run()
        with pytest.raises(AlreadyRanError) as exc_info:
            controller.run()
        assert exc_info.value.code == "already_ran"
        assert parts["power"].halts == 1
