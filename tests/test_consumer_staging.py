"""Tests for consumer/staging.py module."""

import hashlib
import stat

import pytest

from build_handoff.consumer.staging import (
    StagingError,
    copy_helpers,
    extract_tar,
    extract_zip,
    stage_artifacts,
    verify_checksum,
)
from build_handoff.profile.schema import ArtifactSchema, HelperBinarySchema
from build_handoff.types import ArtifactKind
from conftest import MemoryStore, tar_bytes, zip_bytes


class TestVerifyChecksum:
    def test_match(self, tmp_path):
        path = tmp_path / "f"
        path.write_bytes(b"data")
        verify_checksum(path, hashlib.sha256(b"data").hexdigest().upper())

    def test_mismatch(self, tmp_path):
        path = tmp_path / "f"
        path.write_bytes(b"data")
        with pytest.raises(StagingError) as exc_info:
            verify_checksum(path, "0" * 64)
        assert exc_info.value.code == "checksum_mismatch"


class TestExtract:
    """Tests for archive extraction."""

    def test_extract_tar(self, tmp_path):
        archive = tmp_path / "host.tar.gz"
        archive.write_bytes(tar_bytes({"bin/launch_cvd": b"#!/bin/sh\n"}))

        extract_tar(archive, tmp_path / "stage")

        assert (tmp_path / "stage" / "bin" / "launch_cvd").read_bytes() == b"#!/bin/sh\n"

    def test_tar_traversal_refused(self, tmp_path):
        archive = tmp_path / "evil.tar.gz"
        archive.write_bytes(tar_bytes({"../escape": b"x"}))

        with pytest.raises(StagingError) as exc_info:
            extract_tar(archive, tmp_path / "stage")

        assert exc_info.value.code == "path_traversal"
        assert not (tmp_path / "escape").exists()

    def test_tar_empty(self, tmp_path):
        archive = tmp_path / "empty.tar.gz"
        archive.write_bytes(tar_bytes({}))
        with pytest.raises(StagingError) as exc_info:
            extract_tar(archive, tmp_path / "stage")
        assert exc_info.value.code == "empty_archive"

    def test_tar_corrupt(self, tmp_path):
        archive = tmp_path / "bad.tar.gz"
        archive.write_bytes(b"not a tar")
        with pytest.raises(StagingError) as exc_info:
            extract_tar(archive, tmp_path / "stage")
        assert exc_info.value.code == "extraction_error"

    def test_extract_zip_keeps_modes(self, tmp_path):
        archive = tmp_path / "images.zip"
        archive.write_bytes(zip_bytes({"boot.img": b"img", "bin/run": b"#!"}, mode=0o755))

        extract_zip(archive, tmp_path / "stage")

        run = tmp_path / "stage" / "bin" / "run"
        assert (tmp_path / "stage" / "boot.img").read_bytes() == b"img"
        assert stat.S_IMODE(run.stat().st_mode) == 0o755

    def test_zip_traversal_refused(self, tmp_path):
        archive = tmp_path / "evil.zip"
        archive.write_bytes(zip_bytes({"../escape.txt": b"x"}))
        with pytest.raises(StagingError) as exc_info:
            extract_zip(archive, tmp_path / "stage")
        assert exc_info.value.code == "path_traversal"

    def test_zip_corrupt(self, tmp_path):
        archive = tmp_path / "bad.zip"
        archive.write_bytes(b"not a zip")
        with pytest.raises(StagingError) as exc_info:
            extract_zip(archive, tmp_path / "stage")
        assert exc_info.value.code == "extraction_error"


class TestStageArtifacts:
    """Tests for stage_artifacts."""

    @pytest.fixture
    def store(self) -> MemoryStore:
        store = MemoryStore()
        store.put("u-boot.bin", b"boot")
        store.put("cvd-host_package.tar.gz", tar_bytes({"bin/launch_cvd": b"run"}))
        store.put("images.zip", zip_bytes({"super.img": b"super"}))
        return store

    @pytest.fixture
    def artifacts(self) -> list[ArtifactSchema]:
        return [
            ArtifactSchema(role="boot", key="u-boot.bin", source="u", destination="bootloader"),
            ArtifactSchema(
                role="hostpkg", key="cvd-host_package.tar.gz", source="h", kind=ArtifactKind.TAR
            ),
            ArtifactSchema(role="images", key="images.zip", source="i", kind=ArtifactKind.ZIP),
        ]

    def test_stages_every_kind(self, tmp_path, store, artifacts):
        stage = tmp_path / "stage"
        stage_artifacts(store, artifacts, stage, tmp_path / "dl")

        assert (stage / "bootloader").read_bytes() == b"boot"
        assert (stage / "bin" / "launch_cvd").read_bytes() == b"run"
        assert (stage / "super.img").read_bytes() == b"super"

    def test_verifies_checksums(self, tmp_path, store, artifacts):
        checksums = {"u-boot.bin": hashlib.sha256(b"tampered").hexdigest()}
        with pytest.raises(StagingError):
            stage_artifacts(store, artifacts, tmp_path / "stage", tmp_path / "dl", checksums)

    def test_checksums_pass(self, tmp_path, store, artifacts):
        checksums = {"u-boot.bin": hashlib.sha256(b"boot").hexdigest()}
        staged = stage_artifacts(store, artifacts, tmp_path / "stage", tmp_path / "dl", checksums)
        assert len(staged) == 3


class TestCopyHelpers:
    def test_copies_executable(self, tmp_path):
        source = tmp_path / "mkenvimage"
        source.write_bytes(b"\x7fELF")
        source.chmod(0o644)
        helpers = [HelperBinarySchema(source=str(source), destination="bin/mkenvimage")]

        copied = copy_helpers(helpers, tmp_path / "stage")

        assert copied == [tmp_path / "stage" / "bin" / "mkenvimage"]
        assert copied[0].stat().st_mode & stat.S_IXUSR

    def test_missing_helper(self, tmp_path):
        helpers = [HelperBinarySchema(source=str(tmp_path / "nope"), destination="bin/x")]
        with pytest.raises(StagingError) as exc_info:
            copy_helpers(helpers, tmp_path / "stage")
        assert exc_info.value.code == "helper_not_found"
