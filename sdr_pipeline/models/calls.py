"""Data contracts exchanged between pipeline stages and capabilities.

Stage Flow:
1. Segmentation     → list[RawSegment]
2. Classification   → list[SegmentClassification]
3. Grading          → GradeResult (one per meaningful segment)
"""

from typing import Any, Optional

from pydantic import BaseModel, Field, field_validator

from sdr_pipeline.models.enums import CallType, LetterGrade, Sentiment


# =============================================================================
# Stage 1: Segmentation
# =============================================================================

class RawSegment(BaseModel):
    """One call cut out of a daily transcript.

    raw_text is an exact slice of the source; concatenating every segment of
    a transcript in order reproduces the source text.
    """

    raw_text: str
    start_timestamp: Optional[str] = Field(
        None, description="First timestamp of the segment as written in the source"
    )
    approx_duration_seconds: Optional[int] = Field(
        None, ge=0, description="Gap to the next segment's first timestamp"
    )


# =============================================================================
# Stage 2: Classification
# =============================================================================

class SegmentClassification(BaseModel):
    """Classification of one segment, positionally matched to the input batch."""

    segment_index: int = Field(ge=0)
    call_type: CallType
    is_meaningful: bool = False
    prospect_name: Optional[str] = None
    prospect_company: Optional[str] = None
    reasoning: str = ""

    @field_validator("call_type", mode="before")
    @classmethod
    def _normalize_call_type(cls, value: Any) -> Any:
        if isinstance(value, str):
            return value.strip().lower()
        return value


# =============================================================================
# Stage 3: Grading
# =============================================================================

class KeyMoment(BaseModel):
    """A notable point in the call used for coaching."""

    timestamp: Optional[str] = None
    description: str = Field(min_length=1)
    sentiment: Sentiment = Sentiment.NEUTRAL


class GradeResult(BaseModel):
    """Rubric grade for one meaningful conversation.

    overall_grade is optional on input; the grading stage always recomputes
    it from the five dimension scores.
    """

    opener_score: int = Field(ge=1, le=10)
    engagement_score: int = Field(ge=1, le=10)
    objection_handling_score: int = Field(ge=1, le=10)
    appointment_setting_score: int = Field(ge=1, le=10)
    professionalism_score: int = Field(ge=1, le=10)

    overall_grade: Optional[LetterGrade] = None
    meeting_scheduled: Optional[bool] = None

    call_summary: str = ""
    strengths: list[str] = Field(default_factory=list)
    improvements: list[str] = Field(default_factory=list)
    key_moments: list[KeyMoment] = Field(default_factory=list)
    coaching_notes: str = ""

    raw_json: dict[str, Any] = Field(default_factory=dict)

    @property
    def dimension_scores(self) -> tuple[int, int, int, int, int]:
        return (
            self.opener_score,
            self.engagement_score,
            self.objection_handling_score,
            self.appointment_setting_score,
            self.professionalism_score,
        )
