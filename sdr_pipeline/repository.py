"""
Data access for transcripts, calls and grades.

All pipeline and API code goes through TranscriptRepository so status
changes are validated by the status machine in one place.
"""

from datetime import date
from typing import Iterable, Optional

import structlog
from sqlalchemy import select
from sqlalchemy.orm import Session, selectinload

from sdr_pipeline.database import utcnow
from sdr_pipeline.db_models import Call, CallGrade, DailyTranscript
from sdr_pipeline.errors import ConsistencyError, NotFoundError
from sdr_pipeline.models import (
    CallAnalysisStatus,
    GradeResult,
    RawSegment,
    SegmentClassification,
    TranscriptStatus,
    UploadMethod,
)
from sdr_pipeline.pipeline import state as status_machine

logger = structlog.get_logger(__name__)

# Grade columns owned by the pipeline; everything else (feedback) is preserved on re-grade
GRADE_PIPELINE_FIELDS = (
    "opener_score",
    "engagement_score",
    "objection_handling_score",
    "appointment_setting_score",
    "professionalism_score",
    "meeting_scheduled",
    "call_summary",
    "strengths",
    "improvements",
    "coaching_notes",
)


class TranscriptRepository:
    """Queries and mutations over a single SQLAlchemy session."""

    def __init__(self, session: Session):
        self.session = session

    def commit(self) -> None:
        self.session.commit()

    # =========================================================================
    # Transcripts
    # =========================================================================

    def create_transcript(
        self,
        sdr_id: str,
        transcript_date: date,
        raw_text: str,
        upload_method: UploadMethod | str = UploadMethod.TEXT,
    ) -> DailyTranscript:
        transcript = DailyTranscript(
            sdr_id=sdr_id,
            transcript_date=transcript_date,
            raw_text=raw_text,
            upload_method=UploadMethod(upload_method).value,
            processing_status=TranscriptStatus.PENDING.value,
        )
        self.session.add(transcript)
        self.session.flush()
        logger.info("transcript_created", transcript_id=transcript.id, sdr_id=sdr_id, chars=len(raw_text))
        return transcript

    def get_transcript(self, transcript_id: str) -> DailyTranscript:
        transcript = self.session.get(DailyTranscript, transcript_id)
        if transcript is None:
            raise NotFoundError("Transcript", transcript_id)
        return transcript

    def list_transcripts(
        self,
        sdr_id: Optional[str] = None,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
        statuses: Optional[Iterable[TranscriptStatus | str]] = None,
    ) -> list[DailyTranscript]:
        query = select(DailyTranscript).options(
            selectinload(DailyTranscript.calls).selectinload(Call.grade)
        )
        if sdr_id:
            query = query.where(DailyTranscript.sdr_id == sdr_id)
        if date_from:
            query = query.where(DailyTranscript.transcript_date >= date_from)
        if date_to:
            query = query.where(DailyTranscript.transcript_date <= date_to)
        if statuses:
            values = [TranscriptStatus(s).value for s in statuses]
            query = query.where(DailyTranscript.processing_status.in_(values))
        query = query.order_by(DailyTranscript.transcript_date.desc(), DailyTranscript.created_at.desc())
        return list(self.session.scalars(query))

    def set_status(
        self,
        transcript: DailyTranscript,
        new_status: TranscriptStatus,
        error: Optional[str] = None,
    ) -> None:
        """Move a transcript through the status machine.

        Raises:
            InvalidStatusTransition: If the change is not allowed.
        """
        old = transcript.processing_status
        status_machine.transition(old, new_status)
        transcript.processing_status = TranscriptStatus(new_status).value
        transcript.processing_error = error
        transcript.updated_at = utcnow()
        logger.info(
            "transcript_status_changed",
            transcript_id=transcript.id,
            from_status=old,
            to_status=transcript.processing_status,
        )

    def touch(self, transcript: DailyTranscript) -> None:
        """Record progress so the run is not mistaken for a stuck one."""
        transcript.updated_at = utcnow()

    def refresh_counts(self, transcript: DailyTranscript) -> None:
        calls = transcript.calls
        transcript.total_calls_detected = len(calls)
        transcript.meaningful_calls_count = sum(1 for c in calls if c.is_meaningful)

    def tally(self, transcript: DailyTranscript) -> status_machine.TranscriptTally:
        """Count classification and grading results across the transcript's calls."""
        calls = transcript.calls
        meaningful = [c for c in calls if c.is_meaningful]
        return status_machine.TranscriptTally(
            total_calls=len(calls),
            classified=sum(1 for c in calls if c.is_classified),
            classification_failed=sum(1 for c in calls if not c.is_classified),
            meaningful=len(meaningful),
            graded=sum(1 for c in meaningful if c.grade is not None),
            grading_failed=sum(1 for c in meaningful if c.grade is None),
        )

    # =========================================================================
    # Calls
    # =========================================================================

    def replace_calls(self, transcript: DailyTranscript, segments: list[RawSegment]) -> list[Call]:
        """Store freshly segmented calls, discarding any previous split."""
        if transcript.calls:
            transcript.calls.clear()
            self.session.flush()

        for index, segment in enumerate(segments, start=1):
            transcript.calls.append(
                Call(
                    sdr_id=transcript.sdr_id,
                    call_index=index,
                    raw_text=segment.raw_text,
                    start_timestamp=segment.start_timestamp,
                    duration_estimate_seconds=segment.approx_duration_seconds,
                    analysis_status=CallAnalysisStatus.PENDING.value,
                )
            )
        self.refresh_counts(transcript)
        self.session.flush()
        return list(transcript.calls)

    def get_call(self, call_id: str) -> Call:
        call = self.session.get(Call, call_id)
        if call is None:
            raise NotFoundError("Call", call_id)
        return call

    def list_calls(
        self,
        transcript_id: Optional[str] = None,
        sdr_id: Optional[str] = None,
        only_meaningful: bool = False,
    ) -> list[Call]:
        """List calls with their grade eager-loaded."""
        query = select(Call).options(selectinload(Call.grade))
        if transcript_id:
            query = query.where(Call.daily_transcript_id == transcript_id)
        if sdr_id:
            query = query.where(Call.sdr_id == sdr_id)
        if only_meaningful:
            query = query.where(Call.is_meaningful.is_(True))
        query = query.order_by(Call.daily_transcript_id, Call.call_index)
        return list(self.session.scalars(query))

    def save_classification(self, call: Call, classification: SegmentClassification) -> None:
        if call.grade is not None:
            raise ConsistencyError(f"Call {call.id} is graded; its classification is immutable")
        call.call_type = classification.call_type.value
        call.is_meaningful = classification.is_meaningful
        call.prospect_name = classification.prospect_name
        call.prospect_company = classification.prospect_company
        call.classification_reasoning = classification.reasoning
        call.processing_error = None
        call.analysis_status = (
            CallAnalysisStatus.PENDING.value if call.is_meaningful else CallAnalysisStatus.SKIPPED.value
        )

    def mark_call(self, call: Call, status: CallAnalysisStatus, error: Optional[str] = None) -> None:
        call.analysis_status = status.value
        call.processing_error = error

    # =========================================================================
    # Grades
    # =========================================================================

    def upsert_grade(self, call: Call, result: GradeResult, model_name: str) -> CallGrade:
        """Create or wholesale-replace a call's grade.

        Every pipeline-authored field is overwritten; feedback fields are kept.

        Raises:
            ConsistencyError: If the call is not meaningful.
        """
        if not call.is_meaningful:
            raise ConsistencyError(f"Call {call.id} is not meaningful and cannot be graded")

        grade = call.grade
        if grade is None:
            grade = CallGrade(call_id=call.id, sdr_id=call.sdr_id)
            call.grade = grade

        for field_name in GRADE_PIPELINE_FIELDS:
            setattr(grade, field_name, getattr(result, field_name))
        grade.overall_grade = result.overall_grade.value
        grade.key_moments = [m.model_dump(mode="json") for m in result.key_moments]
        grade.model_name = model_name
        grade.raw_json = result.raw_json
        grade.updated_at = utcnow()

        call.analysis_status = CallAnalysisStatus.COMPLETED.value
        call.processing_error = None
        return grade

    def get_grade(self, grade_id: str) -> CallGrade:
        grade = self.session.get(CallGrade, grade_id)
        if grade is None:
            raise NotFoundError("Grade", grade_id)
        return grade

    def submit_feedback(self, grade_id: str, helpful: bool, note: Optional[str] = None) -> CallGrade:
        """Record a rep's verdict on the coaching they received."""
        grade = self.get_grade(grade_id)
        grade.coaching_feedback_helpful = helpful
        grade.coaching_feedback_note = note
        grade.coaching_feedback_at = utcnow()
        logger.info("coaching_feedback_recorded", grade_id=grade_id, helpful=helpful)
        return grade
