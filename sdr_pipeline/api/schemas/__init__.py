"""API schemas package."""

from .requests import CoachingFeedbackRequest, TranscriptUploadRequest
from .responses import (
    CallListResponse,
    CallResponse,
    CommandAcceptedResponse,
    GradeResponse,
    TranscriptDetailResponse,
    TranscriptListResponse,
    TranscriptSummary,
)

__all__ = [
    # Requests
    "CoachingFeedbackRequest",
    "TranscriptUploadRequest",
    # Responses
    "CallListResponse",
    "CallResponse",
    "CommandAcceptedResponse",
    "GradeResponse",
    "TranscriptDetailResponse",
    "TranscriptListResponse",
    "TranscriptSummary",
]
