"""Transcript status machine.

pending → processing → {completed | partial | failed}
Any terminal status may re-enter processing (retry or re-grade).
"""

from dataclasses import dataclass, field
from typing import Optional

from sdr_pipeline.errors import InvalidStatusTransition
from sdr_pipeline.models.enums import TranscriptStatus

ALLOWED_TRANSITIONS: dict[TranscriptStatus, frozenset[TranscriptStatus]] = {
    TranscriptStatus.PENDING: frozenset({TranscriptStatus.PROCESSING}),
    TranscriptStatus.PROCESSING: frozenset({
        TranscriptStatus.COMPLETED,
        TranscriptStatus.PARTIAL,
        TranscriptStatus.FAILED,
    }),
    TranscriptStatus.COMPLETED: frozenset({TranscriptStatus.PROCESSING}),
    TranscriptStatus.PARTIAL: frozenset({TranscriptStatus.PROCESSING}),
    TranscriptStatus.FAILED: frozenset({TranscriptStatus.PROCESSING}),
}

RETRYABLE_STATUSES = frozenset({TranscriptStatus.FAILED, TranscriptStatus.PARTIAL})


def can_transition(current: TranscriptStatus | str, new: TranscriptStatus | str) -> bool:
    """Check if a status change is allowed."""
    return TranscriptStatus(new) in ALLOWED_TRANSITIONS[TranscriptStatus(current)]


def transition(current: TranscriptStatus | str, new: TranscriptStatus | str) -> TranscriptStatus:
    """Validate a status change and return the new status.

    Raises:
        InvalidStatusTransition: If the status machine does not allow it.
    """
    if not can_transition(current, new):
        raise InvalidStatusTransition(TranscriptStatus(current).value, TranscriptStatus(new).value)
    return TranscriptStatus(new)


@dataclass
class TranscriptTally:
    """Counts over a transcript's calls used to pick its final status."""

    total_calls: int = 0
    classified: int = 0
    classification_failed: int = 0
    meaningful: int = 0
    graded: int = 0
    grading_failed: int = 0
    segmentation_error: Optional[str] = None
    extra_errors: list[str] = field(default_factory=list)

    @property
    def has_failures(self) -> bool:
        return self.classification_failed > 0 or self.grading_failed > 0


def resolve_final_status(tally: TranscriptTally) -> TranscriptStatus:
    """Pick the terminal status for a finished run.

    completed: every call classified and every meaningful call graded.
    failed: segmentation produced nothing, or nothing downstream succeeded.
    partial: anything in between.
    """
    if tally.segmentation_error or tally.total_calls == 0:
        return TranscriptStatus.FAILED
    if not tally.has_failures:
        return TranscriptStatus.COMPLETED
    if tally.classified == 0 and tally.graded == 0:
        return TranscriptStatus.FAILED
    return TranscriptStatus.PARTIAL


def summarize_errors(tally: TranscriptTally, max_chars: int = 1000) -> Optional[str]:
    """Build the human-readable processing_error for a transcript."""
    messages: list[str] = []
    if tally.segmentation_error:
        messages.append(tally.segmentation_error)
    elif tally.total_calls == 0:
        messages.append("No calls detected in transcript")
    if tally.classification_failed:
        messages.append(
            f"Classification failed for {tally.classification_failed}/{tally.total_calls} segments"
        )
    if tally.grading_failed:
        messages.append(f"{tally.grading_failed}/{tally.meaningful} calls failed grading")
    messages.extend(tally.extra_errors)

    if not messages:
        return None
    return truncate_error("; ".join(messages), max_chars)


def truncate_error(message: str, max_chars: int = 1000) -> str:
    if len(message) <= max_chars:
        return message
    return message[: max_chars - 3] + "..."
