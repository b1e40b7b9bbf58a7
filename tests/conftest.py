"""Shared fakes and fixtures for build_handoff tests."""

from __future__ import annotations

import io
import stat
import tarfile
import zipfile
from collections.abc import Mapping, Sequence
from pathlib import Path

import pytest

from build_handoff.commands import CommandFailedError, CompletedCommand
from build_handoff.profile.schema import PipelineProfile
from build_handoff.store.base import ObjectNotFoundError, StoreError
from build_handoff.telemetry.reporter import ProgressReporter
from build_handoff.types import StreamId


class MemoryStore:
    """In-memory ObjectStore that records every call."""

    def __init__(self) -> None:
        self.objects: dict[str, bytes] = {}
        self.put_order: list[str] = []
        self.exists_calls: list[str] = []
        self.fail_puts: set[str] = set()
        self.fail_all_puts = False

    def put(self, key: str, data: bytes) -> None:
        if self.fail_all_puts or key in self.fail_puts:
            raise StoreError(f"injected failure for {key}")
        self.objects[key] = bytes(data)
        self.put_order.append(key)

    def put_file(self, key: str, path: Path) -> None:
        self.put(key, path.read_bytes())

    def get(self, key: str) -> bytes:
        if key not in self.objects:
            raise ObjectNotFoundError(key)
        return self.objects[key]

    def get_file(self, key: str, dest: Path) -> Path:
        dest.parent.mkdir(parents=True, exist_ok=True)
        dest.write_bytes(self.get(key))
        return dest

    def exists(self, key: str) -> bool:
        self.exists_calls.append(key)
        return key in self.objects


class RecordingSink:
    """LogSink keeping events per stream."""

    def __init__(self, fail: bool = False) -> None:
        self.streams: dict[str, list[dict[str, object]]] = {}
        self.fail = fail
        self.attempts = 0

    def put_events(
        self, stream_name: str, events: Sequence[Mapping[str, object]]
    ) -> None:
        self.attempts += 1
        if self.fail:
            raise ConnectionError("sink unavailable")
        self.streams.setdefault(stream_name, []).extend(dict(e) for e in events)

    def messages(self, stream_name: str) -> list[str]:
        return [str(e["message"]) for e in self.streams.get(stream_name, [])]


class FakeCapacity:
    """CapacityController recording capacity changes."""

    def __init__(
        self,
        group: str | None = "builder-group",
        fail_describe: bool = False,
        fail_set: bool = False,
    ) -> None:
        self.group = group
        self.fail_describe = fail_describe
        self.fail_set = fail_set
        self.described: list[str] = []
        self.calls: list[tuple[str, int]] = []

    def describe_owning_group(self, instance_id: str) -> str | None:
        self.described.append(instance_id)
        if self.fail_describe:
            raise RuntimeError("fleet manager unavailable")
        return self.group

    def set_desired_capacity(self, group: str, desired: int) -> None:
        self.calls.append((group, desired))
        if self.fail_set:
            raise RuntimeError("capacity change rejected")


class FakeIdentity:
    def __init__(self, instance: str = "i-0123456789", ipv4: str = "203.0.113.7"):
        self.instance = instance
        self.ipv4 = ipv4

    def instance_id(self) -> str:
        return self.instance

    def public_ipv4(self) -> str:
        return self.ipv4


class FakePower:
    def __init__(self) -> None:
        self.halts = 0
        self.reboots = 0

    def halt(self) -> None:
        self.halts += 1

    def reboot(self) -> None:
        self.reboots += 1


class FakeRunner:
    """CommandRunner double; commands containing a key of `failures` fail."""

    def __init__(self, failures: dict[str, int] | None = None) -> None:
        self.failures = failures or {}
        self.commands: list[str | list[str]] = []

    def _exit_code(self, display: str) -> int:
        for fragment, code in self.failures.items():
            if fragment in display:
                return code
        return 0

    def run(self, command, check=True, cwd=None) -> CompletedCommand:
        self.commands.append(command)
        display = command if isinstance(command, str) else " ".join(command)
        exit_code = self._exit_code(display)
        if exit_code and check:
            raise CommandFailedError(display, exit_code)
        return CompletedCommand(command=display, exit_code=exit_code, output="")

    def run_all(self, commands, cwd=None) -> None:
        for command in commands:
            self.run(command, check=True, cwd=cwd)

    def displayed(self) -> list[str]:
        return [c if isinstance(c, str) else " ".join(c) for c in self.commands]


class FakeServiceManager:
    """Service manager double recording systemctl-level calls."""

    def __init__(self, exists: bool = False, active: bool = False) -> None:
        self.calls: list[tuple[str, ...]] = []
        self.units: dict[str, str] = {}
        self.exists = exists
        self.active = active

    def install_unit(self, name: str, content: str, force: bool = False) -> Path:
        from build_handoff.consumer.service import UnitAlreadyExistsError

        path = Path("/etc/systemd/system") / name
        if self.exists and not force:
            raise UnitAlreadyExistsError(path)
        self.calls.append(("install", name))
        self.units[name] = content
        return path

    def daemon_reload(self) -> None:
        self.calls.append(("daemon-reload",))

    def enable(self, unit: str) -> None:
        self.calls.append(("enable", unit))

    def restart(self, unit: str) -> None:
        self.calls.append(("restart", unit))

    def enable_now(self, unit: str) -> None:
        self.calls.append(("enable-now", unit))

    def is_active(self, unit: str) -> bool:
        self.calls.append(("is-active", unit))
        return self.active

    def status(self, unit: str) -> CompletedCommand:
        self.calls.append(("status", unit))
        return CompletedCommand(command=f"systemctl status {unit}", exit_code=3, output="")


class SteppingClock:
    """Monotonic clock advanced by a fake sleep."""

    def __init__(self) -> None:
        self.now = 0.0
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


@pytest.fixture
def memory_store() -> MemoryStore:
    return MemoryStore()


@pytest.fixture
def sink() -> RecordingSink:
    return RecordingSink()


@pytest.fixture
def build_reporter(sink: RecordingSink) -> ProgressReporter:
    return ProgressReporter(sink, StreamId.BUILD)


@pytest.fixture
def target_reporter(sink: RecordingSink) -> ProgressReporter:
    return ProgressReporter(sink, StreamId.TARGET)


def make_profile(tmp_path: Path, **consumer_overrides) -> PipelineProfile:
    """Small profile whose directories live under tmp_path."""
    consumer = {
        "base_commands": ["apt-get install -y base"],
        "agent_unit": "agent.service",
        "runtime_commands": ["install-runtime"],
        "workdir": str(tmp_path),
        "staging_dir": str(tmp_path / "stage"),
        "service": {
            "name": "cvd.service",
            "exec_start": "{staging_dir}/bin/launch",
            "exec_stop": "{staging_dir}/bin/stop",
        },
    }
    consumer.update(consumer_overrides)
    return PipelineProfile.model_validate(
        {
            "name": "test-pipeline",
            "artifacts": [
                {
                    "role": "boot",
                    "key": "u-boot.bin",
                    "source": "u-boot.bin",
                    "destination": "bootloader",
                    "primary": True,
                },
                {
                    "role": "hostpkg",
                    "key": "cvd-host_package.tar.gz",
                    "source": "cvd-host_package.tar.gz",
                    "kind": "tar",
                },
                {
                    "role": "images",
                    "key": "images.zip",
                    "source": "*-img-*.zip",
                    "kind": "zip",
                },
            ],
            "builder": {
                "build_command": ["/opt/build.sh"],
                "provision_commands": ["apt-get install -y build-deps"],
                "build_dir": str(tmp_path / "build"),
                "product_dir": "out",
            },
            "consumer": consumer,
        }
    )


@pytest.fixture
def profile(tmp_path: Path) -> PipelineProfile:
    return make_profile(tmp_path)


def tar_bytes(files: dict[str, bytes], mode: int = 0o755) -> bytes:
    """Gzipped tar archive holding the given files."""
    buf = io.BytesIO()
    with tarfile.open(fileobj=buf, mode="w:gz") as tar:
        for name, data in files.items():
            info = tarfile.TarInfo(name)
            info.size = len(data)
            info.mode = mode
            tar.addfile(info, io.BytesIO(data))
    return buf.getvalue()


def zip_bytes(files: dict[str, bytes], mode: int = 0o755) -> bytes:
    """Zip archive holding the given files with Unix permission bits."""
    buf = io.BytesIO()
    with zipfile.ZipFile(buf, "w") as archive:
        for name, data in files.items():
            info = zipfile.ZipInfo(name)
            info.external_attr = (stat.S_IFREG | mode) << 16
            archive.writestr(info, data)
    return buf.getvalue()


def write_products(product_dir: Path) -> None:
    """Lay out a build product tree matching the test profile's artifacts."""
    vsoc = product_dir / "vsoc_x86_64"
    vsoc.mkdir(parents=True, exist_ok=True)
    (product_dir / "u-boot.bin").write_bytes(b"u-boot")
    (vsoc / "cvd-host_package.tar.gz").write_bytes(
        tar_bytes({"bin/launch_cvd": b"#!/bin/sh\n", "bin/stop_cvd": b"#!/bin/sh\n"})
    )
    (vsoc / "aaos-img-eng.zip").write_bytes(zip_bytes({"super.img": b"super"}))


def publish_artifacts(store: MemoryStore) -> None:
    """Put the test profile's three artifacts straight into a store."""
    store.put("cvd-host_package.tar.gz", tar_bytes({"bin/launch_cvd": b"#!/bin/sh\n"}))
    store.put("images.zip", zip_bytes({"super.img": b"super"}))
    store.put("u-boot.bin", b"u-boot")
