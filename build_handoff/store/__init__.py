"""Object handoff store.

This module handles:
- The ObjectStore protocol and its errors
- Filesystem and HTTP bindings
- Fixed-interval waiting for keys to appear
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import httpx

from build_handoff.store.base import ObjectNotFoundError, ObjectStore, StoreError
from build_handoff.store.filesystem import FilesystemObjectStore
from build_handoff.store.http import HttpObjectStore
from build_handoff.store.wait import ArtifactWaitTimeout, WaitResult, wait_for_keys

if TYPE_CHECKING:
    from build_handoff.config import Settings


def open_store(settings: Settings, client: httpx.Client | None = None) -> ObjectStore:
    """Create the object store binding selected by settings.

    Args:
        settings: Application settings.
        client: HTTPX client for the HTTP binding (created if not given).

    Returns:
        ObjectStore instance for the configured bucket.

    Raises:
        ValueError: If the HTTP binding is selected without an endpoint.
    """
    if settings.store_backend == "http":
        if not settings.store_endpoint:
            raise ValueError("store_endpoint is required for the http store backend")
        return HttpObjectStore(
            client or httpx.Client(),
            settings.store_endpoint,
            settings.bucket,
            timeout=settings.request_timeout,
        )
    return FilesystemObjectStore(settings.store_root, settings.bucket)


__all__ = [
    "ArtifactWaitTimeout",
    "FilesystemObjectStore",
    "HttpObjectStore",
    "ObjectNotFoundError",
    "ObjectStore",
    "StoreError",
    "WaitResult",
    "open_store",
    "wait_for_keys",
]
