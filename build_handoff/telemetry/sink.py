"""Log sink bindings.

A log sink is an append-only collection of named streams inside one log
group. The core only ever appends; it never reads events back.

This module handles:
- The LogSink protocol consumed by ProgressReporter
- A file binding (JSON lines, one file per stream)
- An HTTP binding for a log ingestion service
"""

from __future__ import annotations

import json
import logging
from collections.abc import Mapping, Sequence
from pathlib import Path
from typing import Protocol

import httpx

logger = logging.getLogger(__name__)


class LogSinkError(Exception):
    """Raised when events cannot be delivered to the sink."""

    def __init__(self, message: str, code: str = "log_sink_error") -> None:
        super().__init__(message)
        self.code = code


class LogSink(Protocol):
    """Append-only sink of timestamped events."""

    def put_events(
        self, stream_name: str, events: Sequence[Mapping[str, object]]
    ) -> None:
        """Append events to a stream.

        Args:
            stream_name: Name of the stream inside the sink's log group.
            events: Events shaped as {"timestamp": ms, "message": str}.
        """
        ...


class FileLogSink:
    """Log sink writing JSON lines under <root>/<group>/<stream>.jsonl."""

    def __init__(self, root: Path, group: str) -> None:
        self.root = root
        self.group = group

    def stream_path(self, stream_name: str) -> Path:
        """Return the file backing a stream."""
        return self.root / self.group / f"{stream_name}.jsonl"

    def put_events(
        self, stream_name: str, events: Sequence[Mapping[str, object]]
    ) -> None:
        path = self.stream_path(stream_name)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            with path.open("a", encoding="utf-8") as f:
                for event in events:
                    f.write(json.dumps(dict(event), sort_keys=True) + "\n")
        except OSError as e:
            raise LogSinkError(
                f"Failed to append to {path}: {e}", code="io_error"
            ) from e


class HttpLogSink:
    """Log sink posting event batches to a log ingestion service.

    Events go to POST <endpoint>/groups/<group>/streams/<stream>/events
    as {"events": [...]}.
    """

    def __init__(
        self,
        client: httpx.Client,
        endpoint: str,
        group: str,
        timeout: float = 30.0,
    ) -> None:
        self.client = client
        self.endpoint = endpoint.rstrip("/")
        self.group = group
        self.timeout = timeout

    def put_events(
        self, stream_name: str, events: Sequence[Mapping[str, object]]
    ) -> None:
        url = f"{self.endpoint}/groups/{self.group}/streams/{stream_name}/events"
        try:
            response = self.client.post(
                url,
                json={"events": [dict(e) for e in events]},
                timeout=self.timeout,
            )
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise LogSinkError(
                f"HTTP error putting events to {stream_name}: "
                f"{e.response.status_code}",
                code="http_error",
            ) from e
        except httpx.TimeoutException as e:
            raise LogSinkError(
                f"Timeout putting events to {stream_name}", code="timeout"
            ) from e
        except httpx.RequestError as e:
            raise LogSinkError(
                f"Network error putting events to {stream_name}: {e}",
                code="network_error",
            ) from e


__all__ = ["FileLogSink", "HttpLogSink", "LogSink", "LogSinkError"]
