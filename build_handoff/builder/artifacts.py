"""Artifact discovery and handoff manifest generation.

This module handles:
- Locating declared artifacts and the build log in the build output
- Listing the full product tree for upload
- Computing checksums
- Generating and parsing the handoff manifest
"""

from __future__ import annotations

import hashlib
import json
import logging
from dataclasses import asdict
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from build_handoff.types import ArtifactInfo

logger = logging.getLogger(__name__)

# Key of the manifest listing every declared artifact and its checksum
MANIFEST_KEY = "handoff-manifest.json"

MANIFEST_VERSION = "1.0"

# Default chunk size for hashing
HASH_CHUNK_SIZE = 64 * 1024  # 64KB


def compute_file_hash(
    file_path: Path,
    chunk_size: int = HASH_CHUNK_SIZE,
) -> str:
    """Compute SHA-256 hash of a file.

    Args:
        file_path: Path to the file.
        chunk_size: Size of chunks for streaming hash.

    Returns:
        SHA-256 hex digest.
    """
    sha256 = hashlib.sha256()
    with file_path.open("rb") as f:
        while chunk := f.read(chunk_size):
            sha256.update(chunk)
    return sha256.hexdigest()


def list_product_files(product_dir: Path) -> list[Path]:
    """List every file in the build product tree, sorted.

    Returns an empty list if the directory does not exist.
    """
    if not product_dir.is_dir():
        logger.warning("Build product directory does not exist: %s", product_dir)
        return []
    return sorted(p for p in product_dir.rglob("*") if p.is_file())


def find_artifact_source(product_dir: Path, pattern: str) -> Path | None:
    """Find the file backing a declared artifact.

    The pattern (a file name or glob) is matched recursively. When several
    files match, the shallowest one wins, then the lexically first.

    Args:
        product_dir: Build product tree.
        pattern: File name or glob.

    Returns:
        Path of the matching file, or None.
    """
    if not product_dir.is_dir():
        return None
    matches = [p for p in product_dir.rglob(pattern) if p.is_file()]
    if not matches:
        return None
    matches.sort(key=lambda p: (len(p.relative_to(product_dir).parts), p.as_posix()))
    if len(matches) > 1:
        logger.warning(
            "%d files match %s; using %s", len(matches), pattern, matches[0]
        )
    return matches[0]


def find_build_logs(build_dir: Path, pattern: str) -> list[Path]:
    """Find build logs matching pattern directly inside build_dir.

    The search is not recursive; build trees can be very large.

    Returns:
        Matching files, oldest first.
    """
    if not build_dir.is_dir():
        return []
    logs = [p for p in build_dir.glob(pattern) if p.is_file()]
    return sorted(logs, key=lambda p: (p.stat().st_mtime, p.name))


def describe_artifact(path: Path, key: str, role: str | None = None) -> ArtifactInfo:
    """Build ArtifactInfo for a local file about to be published."""
    return ArtifactInfo(
        key=key,
        filename=path.name,
        size_bytes=path.stat().st_size,
        sha256=compute_file_hash(path),
        role=role,
    )


def generate_manifest(
    artifacts: list[ArtifactInfo],
    profile_name: str | None = None,
    build_command: str | None = None,
    exit_code: int | None = None,
    started_at: datetime | None = None,
    finished_at: datetime | None = None,
) -> dict[str, Any]:
    """Generate a handoff manifest.

    Args:
        artifacts: Declared artifacts with checksums.
        profile_name: Pipeline profile name.
        build_command: The build command that produced them.
        exit_code: Build exit code.
        started_at: Build start time.
        finished_at: Build finish time.

    Returns:
        Manifest dictionary suitable for JSON serialization.
    """
    now = datetime.now(timezone.utc)

    manifest: dict[str, Any] = {
        "version": MANIFEST_VERSION,
        "generated_at": now.isoformat(),
        "artifacts": [asdict(a) for a in artifacts],
    }

    if profile_name:
        manifest["profile"] = profile_name
    if build_command or exit_code is not None:
        build: dict[str, Any] = {}
        if build_command:
            build["command"] = build_command
        if exit_code is not None:
            build["exit_code"] = exit_code
        if started_at:
            build["started_at"] = started_at.isoformat()
        if finished_at:
            build["finished_at"] = finished_at.isoformat()
        manifest["build"] = build

    manifest["summary"] = {
        "total_artifacts": len(artifacts),
        "total_size_bytes": sum(a.size_bytes for a in artifacts),
    }

    return manifest


def manifest_to_bytes(manifest: dict[str, Any]) -> bytes:
    """Serialize a manifest for upload."""
    return json.dumps(manifest, indent=2, sort_keys=True).encode("utf-8")


def parse_manifest_checksums(data: bytes) -> dict[str, str]:
    """Return {key: sha256} from serialized manifest bytes.

    Raises:
        ValueError: If the manifest is malformed.
    """
    try:
        manifest = json.loads(data)
    except json.JSONDecodeError as e:
        raise ValueError(f"Invalid manifest JSON: {e}") from e
    if not isinstance(manifest, dict) or not isinstance(
        manifest.get("artifacts"), list
    ):
        raise ValueError("Manifest has no artifacts list")

    checksums: dict[str, str] = {}
    for entry in manifest["artifacts"]:
        if isinstance(entry, dict) and entry.get("key") and entry.get("sha256"):
            checksums[str(entry["key"])] = str(entry["sha256"]).lower()
    return checksums


__all__ = [
    "HASH_CHUNK_SIZE",
    "MANIFEST_KEY",
    "compute_file_hash",
    "describe_artifact",
    "find_artifact_source",
    "find_build_logs",
    "generate_manifest",
    "list_product_files",
    "manifest_to_bytes",
    "parse_manifest_checksums",
]
