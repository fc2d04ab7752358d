"""Enumeration types for the call pipeline models."""

from enum import Enum


class TranscriptStatus(str, Enum):
    """Processing status of a daily transcript."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    PARTIAL = "partial"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset({
    TranscriptStatus.COMPLETED,
    TranscriptStatus.PARTIAL,
    TranscriptStatus.FAILED,
})


class CallType(str, Enum):
    """Interaction type of a single call segment."""

    CONVERSATION = "conversation"    # Two-way dialogue with a prospect
    VOICEMAIL = "voicemail"          # VM greeting or left message, no live exchange
    HANGUP = "hangup"                # Immediate disconnect, negligible content
    INTERNAL = "internal"            # Rep talking to a colleague or the dialer
    REMINDER = "reminder"            # Confirming an already booked appointment


class CallAnalysisStatus(str, Enum):
    """Per-call progress through classification and grading."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    SKIPPED = "skipped"
    FAILED = "failed"


class LetterGrade(str, Enum):
    """Overall grade bands, best first."""

    A_PLUS = "A+"
    A = "A"
    B = "B"
    C = "C"
    D = "D"
    F = "F"


class Sentiment(str, Enum):
    """Sentiment of a key moment inside a call."""

    POSITIVE = "positive"
    NEGATIVE = "negative"
    NEUTRAL = "neutral"


class CapabilityBackend(str, Enum):
    """Implementation used for an injected pipeline capability."""

    HEURISTIC = "heuristic"
    LLM = "llm"


class UploadMethod(str, Enum):
    """How the transcript text reached the system."""

    TEXT = "text"
    AUDIO = "audio"
