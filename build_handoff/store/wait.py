"""Waiting for keys to appear in the object store.

The consumer blocks here until the builder has published every artifact it
depends on. Polling uses a fixed interval with no backoff growth. A missing
key means "not ready yet"; a transport error during a poll is logged and
treated the same way. Keys are only ever created, so a key that has been
seen once is not checked again.

The wait is unbounded unless a timeout or a maximum number of attempts is
given, in which case ArtifactWaitTimeout is raised when the bound is hit.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Iterable
from dataclasses import dataclass

from build_handoff.store.base import ObjectStore, StoreError

logger = logging.getLogger(__name__)


class ArtifactWaitTimeout(Exception):
    """Raised when keys did not appear within the configured bound."""

    def __init__(
        self,
        missing: list[str],
        attempts: int,
        elapsed: float,
        code: str = "artifact_wait_timeout",
    ) -> None:
        super().__init__(
            f"Timed out after {attempts} poll(s) / {elapsed:.0f}s waiting for: "
            + ", ".join(missing)
        )
        self.missing = missing
        self.attempts = attempts
        self.elapsed = elapsed
        self.code = code


@dataclass
class WaitResult:
    """Result of a completed wait.

    Attributes:
        keys: Keys that were waited for.
        attempts: Number of polls issued (a poll checks every pending key).
        elapsed: Seconds spent waiting.
    """

    keys: list[str]
    attempts: int
    elapsed: float


def wait_for_keys(
    store: ObjectStore,
    keys: Iterable[str],
    interval: float,
    timeout: float | None = None,
    max_attempts: int | None = None,
    sleep: Callable[[float], None] = time.sleep,
    clock: Callable[[], float] = time.monotonic,
    on_poll: Callable[[int, list[str]], None] | None = None,
) -> WaitResult:
    """Poll the store until every key exists.

    Args:
        store: Object store to poll.
        keys: Keys that must all be present.
        interval: Seconds to sleep between polls.
        timeout: Give up after this many seconds (None = no limit).
        max_attempts: Give up after this many polls (None = no limit).
        sleep: Sleep function (injectable for tests).
        clock: Monotonic clock (injectable for tests).
        on_poll: Called after each unsuccessful poll with the attempt number
            and the keys still missing.

    Returns:
        WaitResult once every key exists.

    Raises:
        ArtifactWaitTimeout: If a bound is hit first.
        ValueError: If interval is not positive or keys is empty.
    """
    pending = list(dict.fromkeys(keys))
    if not pending:
        raise ValueError("at least one key is required")
    if interval <= 0:
        raise ValueError("interval must be positive")

    wanted = list(pending)
    started = clock()
    attempts = 0

    logger.info("Waiting for %d key(s): %s", len(pending), ", ".join(pending))

    while True:
        attempts += 1
        still_missing = []
        for key in pending:
            try:
                present = store.exists(key)
            except StoreError as e:
                logger.warning("Existence check for %s failed: %s", key, e)
                present = False
            if not present:
                still_missing.append(key)
        pending = still_missing

        elapsed = clock() - started
        if not pending:
            logger.info(
                "All %d key(s) present after %d poll(s) (%.0fs)",
                len(wanted),
                attempts,
                elapsed,
            )
            return WaitResult(keys=wanted, attempts=attempts, elapsed=elapsed)

        logger.info("File not ready yet: %s (poll %d)", ", ".join(pending), attempts)
        if on_poll is not None:
            on_poll(attempts, list(pending))

        if max_attempts is not None and attempts >= max_attempts:
            raise ArtifactWaitTimeout(pending, attempts, elapsed)
        if timeout is not None and elapsed + interval > timeout:
            raise ArtifactWaitTimeout(pending, attempts, elapsed)

        sleep(interval)


__all__ = ["ArtifactWaitTimeout", "WaitResult", "wait_for_keys"]
