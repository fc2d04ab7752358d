"""Stuck detection and polling schedule for transcript status.

Both are pure functions of (status, updated_at, now) so callers (API, CLI,
tests) can evaluate them without touching the database.
"""

import time
from datetime import datetime, timezone
from typing import Callable, Optional

import structlog

from sdr_pipeline.models.enums import TranscriptStatus

logger = structlog.get_logger(__name__)

DEFAULT_STUCK_THRESHOLD_SECONDS = 300


def _as_utc(value: datetime) -> datetime:
    # Naive datetimes are stored as UTC
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def seconds_since(updated_at: datetime, now: datetime) -> float:
    return (_as_utc(now) - _as_utc(updated_at)).total_seconds()


def is_stuck(
    status: TranscriptStatus | str,
    updated_at: Optional[datetime],
    now: datetime,
    threshold_seconds: float = DEFAULT_STUCK_THRESHOLD_SECONDS,
) -> bool:
    """Return True if a transcript has sat in processing longer than the threshold.

    Args:
        status: Current transcript status.
        updated_at: Last time the transcript row was touched.
        now: Reference time.
        threshold_seconds: Age after which a processing transcript counts as stuck.

    Returns:
        True only for processing transcripts older than the threshold.
    """
    if TranscriptStatus(status) != TranscriptStatus.PROCESSING or updated_at is None:
        return False
    return seconds_since(updated_at, now) > threshold_seconds


def next_poll_interval(
    status: TranscriptStatus | str,
    updated_at: Optional[datetime],
    now: datetime,
    base_interval: float = 3.0,
    max_interval: float = 60.0,
    threshold_seconds: float = DEFAULT_STUCK_THRESHOLD_SECONDS,
) -> Optional[float]:
    """Suggest how long a client should wait before polling again.

    Returns None once the status is terminal. While work progresses the base
    interval is used; once stuck the interval doubles for every further
    threshold period elapsed, capped at max_interval.
    """
    status = TranscriptStatus(status)
    if status.is_terminal:
        return None
    if not is_stuck(status, updated_at, now, threshold_seconds):
        return base_interval

    overdue = seconds_since(updated_at, now) - threshold_seconds
    exponent = 1 + int(overdue // threshold_seconds) if threshold_seconds > 0 else 1
    return min(base_interval * (2 ** exponent), max_interval)


def wait_for_terminal(
    fetch: Callable[[], tuple[TranscriptStatus | str, Optional[datetime]]],
    base_interval: float = 3.0,
    max_interval: float = 60.0,
    threshold_seconds: float = DEFAULT_STUCK_THRESHOLD_SECONDS,
    timeout_seconds: Optional[float] = None,
    sleep: Callable[[float], None] = time.sleep,
    clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
) -> TranscriptStatus:
    """Poll until the transcript reaches a terminal status.

    Args:
        fetch: Returns the current (status, updated_at).
        base_interval: Polling interval while processing is healthy.
        max_interval: Upper bound for the back-off interval.
        threshold_seconds: Stuck threshold.
        timeout_seconds: Give up after this long and return the last status.
        sleep: Sleep function (injectable for tests).
        clock: Current-time function (injectable for tests).

    Returns:
        The last observed status.
    """
    started = clock()
    while True:
        status, updated_at = fetch()
        now = clock()
        interval = next_poll_interval(
            status, updated_at, now,
            base_interval=base_interval,
            max_interval=max_interval,
            threshold_seconds=threshold_seconds,
        )
        if interval is None:
            return TranscriptStatus(status)
        if timeout_seconds is not None and seconds_since(started, now) >= timeout_seconds:
            logger.warning("wait_for_terminal_timeout", status=TranscriptStatus(status).value)
            return TranscriptStatus(status)
        sleep(interval)
