"""
Response schemas for the API.

These define the output structure for API endpoints.

Key Design Decisions:
- Every list includes a count for pagination preparation
- All IDs are strings
- Transcript responses carry derived stuck/polling hints so clients never
  compute them
"""

from datetime import date, datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from sdr_pipeline.models import CallAnalysisStatus, CallType, KeyMoment, LetterGrade, TranscriptStatus


# =============================================================================
# Grades
# =============================================================================

class GradeResponse(BaseModel):
    """Rubric grade of one call, including the rep's coaching feedback."""
    model_config = ConfigDict(from_attributes=True, protected_namespaces=())

    id: str
    call_id: str
    sdr_id: str
    overall_grade: LetterGrade
    opener_score: int
    engagement_score: int
    objection_handling_score: int
    appointment_setting_score: int
    professionalism_score: int
    meeting_scheduled: Optional[bool] = None
    call_summary: str
    strengths: list[str]
    improvements: list[str]
    key_moments: list[KeyMoment]
    coaching_notes: str
    model_name: Optional[str] = None
    coaching_feedback_helpful: Optional[bool] = None
    coaching_feedback_note: Optional[str] = None
    coaching_feedback_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime


# =============================================================================
# Calls
# =============================================================================

class CallResponse(BaseModel):
    """One call segment with its grade eager-loaded."""
    model_config = ConfigDict(from_attributes=True)

    id: str
    daily_transcript_id: str
    sdr_id: str
    call_index: int
    raw_text: str
    start_timestamp: Optional[str] = None
    duration_estimate_seconds: Optional[int] = None
    call_type: Optional[CallType] = None
    is_meaningful: bool
    prospect_name: Optional[str] = None
    prospect_company: Optional[str] = None
    classification_reasoning: Optional[str] = None
    analysis_status: CallAnalysisStatus
    processing_error: Optional[str] = None
    grade: Optional[GradeResponse] = None


class CallListResponse(BaseModel):
    """List of calls."""
    calls: list[CallResponse]
    total_count: int


# =============================================================================
# Transcripts
# =============================================================================

class TranscriptSummary(BaseModel):
    """Transcript listing entry with progress counts."""
    id: str
    sdr_id: str
    transcript_date: date
    upload_method: str
    processing_status: TranscriptStatus
    processing_error: Optional[str] = None
    total_calls_detected: int
    meaningful_calls_count: int
    graded_calls_count: int = 0
    is_stuck: bool = False
    created_at: datetime
    updated_at: datetime


class TranscriptListResponse(BaseModel):
    """List of transcripts."""
    transcripts: list[TranscriptSummary]
    total_count: int
    next_poll_seconds: Optional[float] = Field(
        None, description="Suggested polling interval while any listed transcript is still processing"
    )


class TranscriptDetailResponse(TranscriptSummary):
    """Single transcript with polling hint and its calls."""
    next_poll_seconds: Optional[float] = Field(
        None, description="Seconds until the next poll; null once the status is terminal"
    )
    calls: list[CallResponse] = Field(default_factory=list)


# =============================================================================
# Commands
# =============================================================================

class CommandAcceptedResponse(BaseModel):
    """Returned when a background command (upload, retry, re-grade) is accepted."""
    transcript_id: str
    call_id: Optional[str] = None
    status: TranscriptStatus
    message: str
