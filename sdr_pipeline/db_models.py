"""
ORM models for daily transcripts, call segments and call grades.
"""

import uuid

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship

from sdr_pipeline.database import Base, utcnow
from sdr_pipeline.models.enums import CallAnalysisStatus, TranscriptStatus, UploadMethod


def _new_id() -> str:
    return str(uuid.uuid4())


class DailyTranscript(Base):
    __tablename__ = "daily_transcripts"

    id = Column(String(36), primary_key=True, default=_new_id)
    sdr_id = Column(String(100), nullable=False, index=True)
    transcript_date = Column(Date, nullable=False, index=True)
    raw_text = Column(Text, nullable=False)
    upload_method = Column(String(20), nullable=False, default=UploadMethod.TEXT.value)
    total_calls_detected = Column(Integer, nullable=False, default=0)
    meaningful_calls_count = Column(Integer, nullable=False, default=0)
    processing_status = Column(
        String(20), nullable=False, default=TranscriptStatus.PENDING.value, index=True
    )
    processing_error = Column(Text, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    calls = relationship(
        "Call",
        back_populates="transcript",
        order_by="Call.call_index",
        cascade="all, delete-orphan",
    )

    @property
    def status(self) -> TranscriptStatus:
        return TranscriptStatus(self.processing_status)

    def __repr__(self):
        return (
            f"<DailyTranscript(id={self.id!r}, sdr_id={self.sdr_id!r}, "
            f"date={self.transcript_date}, status={self.processing_status!r})>"
        )


class Call(Base):
    __tablename__ = "calls"
    __table_args__ = (
        UniqueConstraint("daily_transcript_id", "call_index", name="uq_calls_transcript_index"),
    )

    id = Column(String(36), primary_key=True, default=_new_id)
    daily_transcript_id = Column(
        String(36), ForeignKey("daily_transcripts.id", ondelete="CASCADE"), nullable=False, index=True
    )
    sdr_id = Column(String(100), nullable=False, index=True)
    call_index = Column(Integer, nullable=False)
    raw_text = Column(Text, nullable=False)
    start_timestamp = Column(String(20), nullable=True)
    duration_estimate_seconds = Column(Integer, nullable=True)

    # Classification (null until classified)
    call_type = Column(String(20), nullable=True)
    is_meaningful = Column(Boolean, nullable=False, default=False)
    prospect_name = Column(String(200), nullable=True)
    prospect_company = Column(String(200), nullable=True)
    classification_reasoning = Column(Text, nullable=True)

    analysis_status = Column(String(20), nullable=False, default=CallAnalysisStatus.PENDING.value)
    processing_error = Column(Text, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    transcript = relationship("DailyTranscript", back_populates="calls")
    grade = relationship(
        "CallGrade",
        back_populates="call",
        uselist=False,
        cascade="all, delete-orphan",
    )

    @property
    def is_classified(self) -> bool:
        return self.call_type is not None

    def __repr__(self):
        return f"<Call(id={self.id!r}, index={self.call_index}, type={self.call_type!r})>"


class CallGrade(Base):
    __tablename__ = "call_grades"

    id = Column(String(36), primary_key=True, default=_new_id)
    call_id = Column(String(36), ForeignKey("calls.id", ondelete="CASCADE"), nullable=False, unique=True)
    sdr_id = Column(String(100), nullable=False, index=True)

    overall_grade = Column(String(2), nullable=False)
    opener_score = Column(Integer, nullable=False)
    engagement_score = Column(Integer, nullable=False)
    objection_handling_score = Column(Integer, nullable=False)
    appointment_setting_score = Column(Integer, nullable=False)
    professionalism_score = Column(Integer, nullable=False)
    meeting_scheduled = Column(Boolean, nullable=True)

    call_summary = Column(Text, nullable=False)
    strengths = Column(JSON, nullable=False, default=list)
    improvements = Column(JSON, nullable=False, default=list)
    key_moments = Column(JSON, nullable=False, default=list)
    coaching_notes = Column(Text, nullable=False)

    model_name = Column(String(100), nullable=True)
    raw_json = Column(JSON, nullable=True)

    # Written only by the feedback command; re-grades leave these alone
    coaching_feedback_helpful = Column(Boolean, nullable=True)
    coaching_feedback_note = Column(Text, nullable=True)
    coaching_feedback_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    call = relationship("Call", back_populates="grade")

    def __repr__(self):
        return f"<CallGrade(id={self.id!r}, call_id={self.call_id!r}, grade={self.overall_grade!r})>"
