"""Progress telemetry.

This module handles:
- Log sink bindings (file, HTTP)
- Best-effort progress reporting with numbered steps
- Selecting a sink binding from settings
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import httpx

from build_handoff.telemetry.reporter import ProgressReporter, StepCounter
from build_handoff.telemetry.sink import (
    FileLogSink,
    HttpLogSink,
    LogSink,
    LogSinkError,
)

if TYPE_CHECKING:
    from build_handoff.config import Settings


def open_log_sink(settings: Settings, client: httpx.Client | None = None) -> LogSink:
    """Create the log sink binding selected by settings.

    Args:
        settings: Application settings.
        client: HTTPX client for the HTTP binding (created if not given).

    Returns:
        LogSink instance.

    Raises:
        ValueError: If the HTTP binding is selected without an endpoint.
    """
    if settings.log_backend == "http":
        if not settings.log_endpoint:
            raise ValueError("log_endpoint is required for the http log backend")
        return HttpLogSink(
            client or httpx.Client(),
            settings.log_endpoint,
            settings.log_group,
            timeout=settings.request_timeout,
        )
    return FileLogSink(settings.log_dir, settings.log_group)


__all__ = [
    "FileLogSink",
    "HttpLogSink",
    "LogSink",
    "LogSinkError",
    "ProgressReporter",
    "StepCounter",
    "open_log_sink",
]
