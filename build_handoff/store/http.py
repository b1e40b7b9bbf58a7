"""HTTP object store binding.

Talks to an object gateway exposing whole-object PUT/GET/HEAD on
<base_url>/<bucket>/<key> (S3-compatible path-style addressing, with
authentication handled by the gateway or a presigning proxy).
A 404 means "not present yet", never an error.
"""

from __future__ import annotations

import logging
import os
import tempfile
from pathlib import Path
from urllib.parse import quote

import httpx

from build_handoff.store.base import ObjectNotFoundError, StoreError
from build_handoff.types import validate_key

logger = logging.getLogger(__name__)

# Timeout for whole-object transfers (seconds)
TRANSFER_TIMEOUT = 3600

# Chunk size for downloads (bytes)
DOWNLOAD_CHUNK_SIZE = 64 * 1024  # 64 KB


def _store_error(e: httpx.HTTPError, action: str, key: str) -> StoreError:
    """Translate an httpx error into a StoreError."""
    if isinstance(e, httpx.HTTPStatusError):
        return StoreError(
            f"HTTP error {action} {key}: "
            f"{e.response.status_code} {e.response.reason_phrase}",
            code="http_error",
        )
    if isinstance(e, httpx.TimeoutException):
        return StoreError(f"Timeout {action} {key}", code="timeout")
    return StoreError(f"Network error {action} {key}: {e}", code="network_error")


class HttpObjectStore:
    """Object store backed by an HTTP object gateway."""

    def __init__(
        self,
        client: httpx.Client,
        base_url: str,
        bucket: str,
        timeout: float = 30.0,
        transfer_timeout: float = TRANSFER_TIMEOUT,
    ) -> None:
        self.client = client
        self.base_url = base_url.rstrip("/")
        self.bucket = bucket
        self.timeout = timeout
        self.transfer_timeout = transfer_timeout

    def url_for(self, key: str) -> str:
        """Return the object URL for a key."""
        return f"{self.base_url}/{self.bucket}/{quote(validate_key(key))}"

    def put(self, key: str, data: bytes) -> None:
        url = self.url_for(key)
        try:
            response = self.client.put(
                url,
                content=data,
                headers={"Content-Type": "application/octet-stream"},
                timeout=self.transfer_timeout,
            )
            response.raise_for_status()
        except httpx.HTTPError as e:
            raise _store_error(e, "uploading", key) from e
        logger.debug("Uploaded %s (%d bytes)", key, len(data))

    def put_file(self, key: str, path: Path) -> None:
        url = self.url_for(key)
        try:
            size = path.stat().st_size
            with path.open("rb") as f:
                response = self.client.put(
                    url,
                    content=f,
                    headers={
                        "Content-Type": "application/octet-stream",
                        "Content-Length": str(size),
                    },
                    timeout=self.transfer_timeout,
                )
                response.raise_for_status()
        except OSError as e:
            raise StoreError(
                f"Failed to read {path} for {key}: {e}", code="io_error"
            ) from e
        except httpx.HTTPError as e:
            raise _store_error(e, "uploading", key) from e
        logger.debug("Uploaded %s from %s (%d bytes)", key, path, size)

    def get(self, key: str) -> bytes:
        url = self.url_for(key)
        try:
            response = self.client.get(url, timeout=self.transfer_timeout)
            if response.status_code == 404:
                raise ObjectNotFoundError(key)
            response.raise_for_status()
            return response.content
        except httpx.HTTPError as e:
            raise _store_error(e, "downloading", key) from e

    def get_file(self, key: str, dest: Path) -> Path:
        """Stream key into dest through a temp file renamed into place."""
        url = self.url_for(key)
        dest.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(prefix=".download-", dir=dest.parent)
        tmp_path = Path(tmp_name)
        try:
            with os.fdopen(fd, "wb") as f, self.client.stream(
                "GET", url, timeout=self.transfer_timeout
            ) as response:
                if response.status_code == 404:
                    raise ObjectNotFoundError(key)
                response.raise_for_status()
                for chunk in response.iter_bytes(DOWNLOAD_CHUNK_SIZE):
                    f.write(chunk)
            os.replace(tmp_path, dest)
        except httpx.HTTPError as e:
            tmp_path.unlink(missing_ok=True)
            raise _store_error(e, "downloading", key) from e
        except Exception:
            # Remove the partial download
            tmp_path.unlink(missing_ok=True)
            raise
        logger.debug("Downloaded %s to %s", key, dest)
        return dest

    def exists(self, key: str) -> bool:
        url = self.url_for(key)
        try:
            response = self.client.head(url, timeout=self.timeout)
            if response.status_code == 404:
                return False
            response.raise_for_status()
            return True
        except httpx.HTTPError as e:
            raise _store_error(e, "checking", key) from e


__all__ = ["HttpObjectStore"]
