"""Best-effort progress reporting.

ProgressReporter turns a message into a ProgressEvent and makes exactly one
attempt to deliver it. Delivery failures are logged locally and swallowed;
telemetry never fails the pipeline. StepCounter adds the "Step k of N"
prefix used by the consumer, since the sink has no structured step field.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from datetime import datetime

from build_handoff.telemetry.sink import LogSink
from build_handoff.types import ProgressEvent, StreamId

logger = logging.getLogger(__name__)


def epoch_millis() -> int:
    """Return the current time in epoch milliseconds."""
    return int(time.time() * 1000)


class ProgressReporter:
    """Emit progress events to one stream of a log sink."""

    def __init__(
        self,
        sink: LogSink,
        stream: StreamId,
        stream_name: str | None = None,
        clock: Callable[[], int] = epoch_millis,
    ) -> None:
        self.sink = sink
        self.stream = stream
        self.stream_name = stream_name or stream.value
        self.clock = clock
        self.events: list[ProgressEvent] = []
        self._last_timestamp = 0

    def emit(self, message: str, step: int | None = None) -> ProgressEvent:
        """Emit one progress event.

        Args:
            message: Human-readable, self-describing message.
            step: Optional step ordinal carried alongside the message.

        Returns:
            The emitted event (also when delivery failed).
        """
        # Within one stream timestamps never go backwards.
        timestamp = max(self.clock(), self._last_timestamp)
        self._last_timestamp = timestamp
        event = ProgressEvent(
            timestamp=timestamp,
            stream=self.stream,
            message=message,
            step=step,
        )
        self.events.append(event)

        local_time = datetime.fromtimestamp(timestamp / 1000).strftime(
            "%Y-%m-%d %H:%M:%S"
        )
        logger.info("[%s] %s", local_time, message)

        try:
            self.sink.put_events(self.stream_name, [event.to_wire()])
        except Exception as e:
            logger.warning(
                "Dropped progress event for stream %s: %s", self.stream_name, e
            )
        return event


class StepCounter:
    """Numbered progress on top of a ProgressReporter."""

    def __init__(self, reporter: ProgressReporter, total: int) -> None:
        if total < 1:
            raise ValueError("total must be at least 1")
        self.reporter = reporter
        self.total = total
        self.last_step = 0

    def step(self, step: int, message: str) -> ProgressEvent:
        """Emit "Step <step> of <total> - <message>".

        Raises:
            ValueError: If the step is out of range or not strictly
                greater than the previous one.
        """
        if not 1 <= step <= self.total:
            raise ValueError(f"step {step} is outside 1..{self.total}")
        if step <= self.last_step:
            raise ValueError(
                f"step {step} emitted after step {self.last_step}; "
                "steps must be strictly increasing"
            )
        self.last_step = step
        return self.reporter.emit(f"Step {step} of {self.total} - {message}", step)


__all__ = ["ProgressReporter", "StepCounter", "epoch_millis"]
