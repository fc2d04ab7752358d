"""Pydantic models and enums for the call pipeline."""

from sdr_pipeline.models.calls import (
    GradeResult,
    KeyMoment,
    RawSegment,
    SegmentClassification,
)
from sdr_pipeline.models.enums import (
    TERMINAL_STATUSES,
    CallAnalysisStatus,
    CallType,
    CapabilityBackend,
    LetterGrade,
    Sentiment,
    TranscriptStatus,
    UploadMethod,
)

__all__ = [
    # Enums
    "CallAnalysisStatus",
    "CallType",
    "CapabilityBackend",
    "LetterGrade",
    "Sentiment",
    "TERMINAL_STATUSES",
    "TranscriptStatus",
    "UploadMethod",
    # Stage contracts
    "GradeResult",
    "KeyMoment",
    "RawSegment",
    "SegmentClassification",
]
