"""Materializing downloaded artifacts in the staging directory.

This module handles:
- Downloading declared artifacts and verifying their checksums
- Unpacking tar and zip archives without escaping the staging directory
- Copying local helper binaries into the staging tree
"""

from __future__ import annotations

import logging
import shutil
import stat
import tarfile
import zipfile
from pathlib import Path, PurePosixPath

from build_handoff.builder.artifacts import compute_file_hash
from build_handoff.profile.schema import ArtifactSchema, HelperBinarySchema
from build_handoff.store.base import ObjectStore
from build_handoff.types import ArtifactKind

logger = logging.getLogger(__name__)


class StagingError(Exception):
    """Raised when an artifact cannot be verified or materialized."""

    def __init__(self, message: str, code: str = "staging_error") -> None:
        super().__init__(message)
        self.code = code


def verify_checksum(path: Path, expected: str) -> None:
    """Compare a file's SHA-256 against the expected hex digest.

    Raises:
        StagingError: If the digests differ.
    """
    actual = compute_file_hash(path)
    if actual.lower() != expected.lower():
        raise StagingError(
            f"Checksum mismatch for {path.name}: expected {expected}, got {actual}",
            code="checksum_mismatch",
        )
    logger.debug("Checksum verified for %s", path.name)


def _check_member_name(name: str, archive: Path) -> None:
    member_path = PurePosixPath(name)
    if member_path.is_absolute() or ".." in member_path.parts:
        raise StagingError(
            f"Refusing to extract {name} from {archive.name}: path traversal detected",
            code="path_traversal",
        )


def extract_tar(archive_path: Path, dest_dir: Path) -> None:
    """Unpack a (possibly compressed) tar archive into dest_dir.

    Raises:
        StagingError: If the archive is unreadable, empty, or unsafe.
    """
    dest_dir.mkdir(parents=True, exist_ok=True)
    try:
        with tarfile.open(archive_path, "r:*") as tar:
            members = tar.getmembers()
            if not members:
                raise StagingError(
                    f"Archive {archive_path.name} is empty", code="empty_archive"
                )
            for member in members:
                _check_member_name(member.name, archive_path)
            tar.extractall(dest_dir, filter="data")
    except tarfile.TarError as e:
        raise StagingError(
            f"Failed to extract {archive_path.name}: {e}", code="extraction_error"
        ) from e
    logger.info("Extracted %s into %s", archive_path.name, dest_dir)


def extract_zip(archive_path: Path, dest_dir: Path) -> None:
    """Unpack a zip archive into dest_dir, keeping Unix permission bits.

    Raises:
        StagingError: If the archive is unreadable, empty, or unsafe.
    """
    dest_dir.mkdir(parents=True, exist_ok=True)
    try:
        with zipfile.ZipFile(archive_path) as archive:
            infos = archive.infolist()
            if not infos:
                raise StagingError(
                    f"Archive {archive_path.name} is empty", code="empty_archive"
                )
            for info in infos:
                _check_member_name(info.filename, archive_path)
            for info in infos:
                extracted = Path(archive.extract(info, dest_dir))
                mode = (info.external_attr >> 16) & 0o777
                if mode and not info.is_dir():
                    extracted.chmod(mode)
    except zipfile.BadZipFile as e:
        raise StagingError(
            f"Failed to extract {archive_path.name}: {e}", code="extraction_error"
        ) from e
    logger.info("Extracted %s into %s", archive_path.name, dest_dir)


def stage_artifact(
    store: ObjectStore,
    artifact: ArtifactSchema,
    staging_dir: Path,
    downloads_dir: Path,
    checksum: str | None = None,
) -> Path:
    """Download one artifact and materialize it under staging_dir.

    Args:
        store: Object store holding the artifact.
        artifact: Artifact declaration.
        staging_dir: Staging root.
        downloads_dir: Where archives are downloaded before unpacking.
        checksum: Expected SHA-256, verified when given.

    Returns:
        Path of the staged file or of the directory it was unpacked into.
    """
    target = staging_dir / artifact.staging_target()

    if artifact.kind == ArtifactKind.FILE:
        target.parent.mkdir(parents=True, exist_ok=True)
        store.get_file(artifact.key, target)
        if checksum:
            verify_checksum(target, checksum)
        logger.info("Staged %s at %s", artifact.key, target)
        return target

    downloads_dir.mkdir(parents=True, exist_ok=True)
    archive = downloads_dir / PurePosixPath(artifact.key).name
    store.get_file(artifact.key, archive)
    if checksum:
        verify_checksum(archive, checksum)
    if artifact.kind == ArtifactKind.TAR:
        extract_tar(archive, target)
    else:
        extract_zip(archive, target)
    return target


def stage_artifacts(
    store: ObjectStore,
    artifacts: list[ArtifactSchema],
    staging_dir: Path,
    downloads_dir: Path,
    checksums: dict[str, str] | None = None,
) -> list[Path]:
    """Stage every artifact in declaration order."""
    checksums = checksums or {}
    staging_dir.mkdir(parents=True, exist_ok=True)
    return [
        stage_artifact(
            store, artifact, staging_dir, downloads_dir, checksums.get(artifact.key)
        )
        for artifact in artifacts
    ]


def copy_helpers(helpers: list[HelperBinarySchema], staging_dir: Path) -> list[Path]:
    """Copy local helper binaries into the staging tree, keeping them executable.

    Raises:
        StagingError: If a helper source does not exist.
    """
    copied = []
    for helper in helpers:
        source = Path(helper.source)
        if not source.is_file():
            raise StagingError(
                f"Helper binary not found: {source}", code="helper_not_found"
            )
        dest = staging_dir / helper.destination
        dest.parent.mkdir(parents=True, exist_ok=True)
        shutil.copy2(source, dest)
        dest.chmod(dest.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
        logger.info("Copied helper %s to %s", source, dest)
        copied.append(dest)
    return copied


__all__ = [
    "StagingError",
    "copy_helpers",
    "extract_tar",
    "extract_zip",
    "stage_artifact",
    "stage_artifacts",
    "verify_checksum",
]
