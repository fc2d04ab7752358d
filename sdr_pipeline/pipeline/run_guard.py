"""In-process exclusivity for transcript runs."""

import threading
from contextlib import contextmanager
from typing import Iterator

import structlog

from sdr_pipeline.errors import AlreadyProcessingError

logger = structlog.get_logger(__name__)


class RunGuard:
    """Tracks which transcripts have an active run in this process.

    At most one run (processing, retry or re-grade) may hold a transcript at a
    time. A second acquire raises AlreadyProcessingError instead of waiting.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._active: set[str] = set()

    def acquire(self, transcript_id: str) -> None:
        with self._lock:
            if transcript_id in self._active:
                logger.info("run_guard_rejected", transcript_id=transcript_id)
                raise AlreadyProcessingError(transcript_id)
            self._active.add(transcript_id)
        logger.debug("run_guard_acquired", transcript_id=transcript_id)

    def release(self, transcript_id: str) -> None:
        with self._lock:
            self._active.discard(transcript_id)
        logger.debug("run_guard_released", transcript_id=transcript_id)

    def is_active(self, transcript_id: str) -> bool:
        with self._lock:
            return transcript_id in self._active

    @contextmanager
    def hold(self, transcript_id: str) -> Iterator[None]:
        self.acquire(transcript_id)
        try:
            yield
        finally:
            self.release(transcript_id)
