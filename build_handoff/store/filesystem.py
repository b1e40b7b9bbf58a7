"""Filesystem-backed object store.

Objects live under <root>/<bucket>/<key>. Every write goes to a temporary
file in the destination directory and is published with os.replace, so a
reader polling for a key never observes a partially written object.
Useful on a shared volume and for local runs.
"""

from __future__ import annotations

import logging
import os
import shutil
import tempfile
from collections.abc import Callable
from pathlib import Path
from typing import BinaryIO

from build_handoff.store.base import ObjectNotFoundError, StoreError
from build_handoff.types import validate_key

logger = logging.getLogger(__name__)

# Prefix of in-flight temporary files; never visible as keys
TMP_PREFIX = ".handoff-tmp-"

COPY_CHUNK_SIZE = 1024 * 1024  # 1 MiB


class FilesystemObjectStore:
    """Object store rooted at a local (or shared) directory."""

    def __init__(self, root: Path, bucket: str) -> None:
        self.root = root
        self.bucket = bucket

    @property
    def bucket_dir(self) -> Path:
        return self.root / self.bucket

    def _path(self, key: str) -> Path:
        return self.bucket_dir / validate_key(key)

    def _publish(self, key: str, write: Callable[[BinaryIO], object]) -> None:
        """Write through a temp file and atomically rename into place."""
        path = self._path(key)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(prefix=TMP_PREFIX, dir=path.parent)
        except OSError as e:
            raise StoreError(f"Failed to prepare {key}: {e}", code="io_error") from e

        tmp_path = Path(tmp_name)
        try:
            with os.fdopen(fd, "wb") as f:
                write(f)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_path, path)
        except OSError as e:
            tmp_path.unlink(missing_ok=True)
            raise StoreError(f"Failed to write {key}: {e}", code="io_error") from e

        logger.debug("Stored %s (%d bytes)", key, path.stat().st_size)

    def put(self, key: str, data: bytes) -> None:
        self._publish(key, lambda f: f.write(data))

    def put_file(self, key: str, path: Path) -> None:
        try:
            src = path.open("rb")
        except OSError as e:
            raise StoreError(
                f"Failed to read {path} for {key}: {e}", code="io_error"
            ) from e
        with src:
            self._publish(
                key, lambda f: shutil.copyfileobj(src, f, COPY_CHUNK_SIZE)
            )

    def get(self, key: str) -> bytes:
        path = self._path(key)
        try:
            return path.read_bytes()
        except FileNotFoundError:
            raise ObjectNotFoundError(key) from None
        except OSError as e:
            raise StoreError(f"Failed to read {key}: {e}", code="io_error") from e

    def get_file(self, key: str, dest: Path) -> Path:
        path = self._path(key)
        if not path.is_file():
            raise ObjectNotFoundError(key)
        try:
            dest.parent.mkdir(parents=True, exist_ok=True)
            shutil.copyfile(path, dest)
        except FileNotFoundError:
            raise ObjectNotFoundError(key) from None
        except OSError as e:
            raise StoreError(
                f"Failed to copy {key} to {dest}: {e}", code="io_error"
            ) from e
        return dest

    def exists(self, key: str) -> bool:
        return self._path(key).is_file()

    def list_keys(self, prefix: str = "") -> list[str]:
        """List published keys under an optional prefix."""
        if not self.bucket_dir.is_dir():
            return []
        keys = []
        for path in sorted(self.bucket_dir.rglob("*")):
            if not path.is_file() or path.name.startswith(TMP_PREFIX):
                continue
            key = path.relative_to(self.bucket_dir).as_posix()
            if key.startswith(prefix):
                keys.append(key)
        return keys


__all__ = ["FilesystemObjectStore"]
