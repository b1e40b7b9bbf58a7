"""Object store protocol and errors.

The object store is the only synchronization channel between builder and
consumer. Keys are only ever created, never updated or deleted by the
core, and a key is either absent or fully present.
"""

from __future__ import annotations

from pathlib import Path
from typing import Protocol


class StoreError(Exception):
    """Raised when an object store operation fails."""

    def __init__(self, message: str, code: str = "store_error") -> None:
        super().__init__(message)
        self.code = code


class ObjectNotFoundError(StoreError):
    """Raised when a key is not (yet) present in the store."""

    def __init__(self, key: str) -> None:
        super().__init__(f"Object not found: {key}", code="object_not_found")
        self.key = key


class ObjectStore(Protocol):
    """Key-addressed whole-object blob store."""

    def put(self, key: str, data: bytes) -> None:
        """Store an object under key."""
        ...

    def get(self, key: str) -> bytes:
        """Return the object stored under key.

        Raises:
            ObjectNotFoundError: If the key is absent.
        """
        ...

    def exists(self, key: str) -> bool:
        """Return True if the key is fully present."""
        ...

    def put_file(self, key: str, path: Path) -> None:
        """Upload a local file under key."""
        ...

    def get_file(self, key: str, dest: Path) -> Path:
        """Download key into dest and return dest.

        Raises:
            ObjectNotFoundError: If the key is absent.
        """
        ...


__all__ = ["ObjectNotFoundError", "ObjectStore", "StoreError"]
