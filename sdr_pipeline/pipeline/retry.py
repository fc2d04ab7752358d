"""Retry Manager - resume failed transcripts and re-grade single calls.

Both operations are idempotent in effect: retrying a transcript only redoes
work that is missing, and re-grading replaces a call's grade wholesale while
keeping the rep's coaching feedback.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Optional

import structlog
from sqlalchemy.orm import Session

from sdr_pipeline.database import utcnow
from sdr_pipeline.db_models import Call, DailyTranscript
from sdr_pipeline.errors import AlreadyProcessingError, CapabilityError, ConsistencyError, NotRetryableError
from sdr_pipeline.models import CallAnalysisStatus, TranscriptStatus
from sdr_pipeline.pipeline.capabilities import model_name_of
from sdr_pipeline.pipeline.monitoring import is_stuck
from sdr_pipeline.pipeline.orchestrator import PipelineOrchestrator, ProcessingOutcome, ProcessingRun
from sdr_pipeline.pipeline.stages.grading import grade_segment
from sdr_pipeline.pipeline.state import RETRYABLE_STATUSES, truncate_error
from sdr_pipeline.repository import TranscriptRepository

logger = structlog.get_logger(__name__)


@dataclass
class RegradeOutcome:
    """Result of re-grading one call."""

    call_id: str
    transcript_id: str
    succeeded: bool
    overall_grade: Optional[str]
    error: Optional[str]
    transcript_status: TranscriptStatus


class RetryManager:
    """Transcript-level retry and call-level re-grade on top of the orchestrator."""

    def __init__(self, orchestrator: PipelineOrchestrator):
        self.orchestrator = orchestrator

    @property
    def settings(self):
        return self.orchestrator.settings

    # =========================================================================
    # Transcript Retry
    # =========================================================================

    def check_retryable(self, transcript: DailyTranscript, now: Optional[datetime] = None) -> None:
        """Raise unless the transcript may be retried right now.

        Raises:
            AlreadyProcessingError: If a live run owns the transcript.
            NotRetryableError: If the status does not allow a retry.
        """
        status = transcript.status
        if status in RETRYABLE_STATUSES:
            return
        if status == TranscriptStatus.PROCESSING:
            stuck = is_stuck(status, transcript.updated_at, now or utcnow(), self.settings.stuck_threshold_seconds)
            if stuck and not self.orchestrator.run_guard.is_active(transcript.id):
                return
            raise AlreadyProcessingError(transcript.id)
        if status == TranscriptStatus.COMPLETED:
            raise NotRetryableError(
                f"Transcript {transcript.id} is completed; re-grade individual calls instead"
            )
        raise NotRetryableError(f"Transcript {transcript.id} has not been processed yet")

    def begin_retry(self, session: Session, transcript_id: str, now: Optional[datetime] = None) -> DailyTranscript:
        """Validate and claim a transcript for retry without running it.

        The caller must follow up with resume(); the claim is released there.
        """
        repo = TranscriptRepository(session)
        transcript = repo.get_transcript(transcript_id)
        self.check_retryable(transcript, now)
        self.orchestrator.claim(repo, transcript, now)
        logger.info("transcript_retry_claimed", transcript_id=transcript_id)
        return transcript

    def resume(self, session: Session, transcript_id: str, resplit: bool = False) -> ProcessingOutcome:
        """Run the outstanding stages for a claimed transcript."""
        return self.orchestrator.process_transcript(session, transcript_id, resplit=resplit, claimed=True)

    def retry_transcript(
        self,
        session: Session,
        transcript_id: str,
        resplit: bool = False,
        now: Optional[datetime] = None,
    ) -> ProcessingOutcome:
        """Retry a failed, partial or stuck transcript.

        Stored segments and classifications are reused; only unclassified
        segments are classified and only ungraded meaningful segments are
        graded. A transcript with no segments is segmented again.

        Raises:
            NotFoundError: If the transcript does not exist.
            AlreadyProcessingError: If another run owns the transcript.
            NotRetryableError: If the transcript is pending or completed.
        """
        self.begin_retry(session, transcript_id, now)
        return self.resume(session, transcript_id, resplit=resplit)

    # =========================================================================
    # Call Re-grade
    # =========================================================================

    def begin_regrade(self, session: Session, call_id: str, now: Optional[datetime] = None) -> Call:
        """Validate and claim a call's transcript for re-grading.

        Raises:
            NotFoundError: If the call does not exist.
            ConsistencyError: If the call is not meaningful.
            AlreadyProcessingError: If another run owns the transcript.
        """
        repo = TranscriptRepository(session)
        call = repo.get_call(call_id)
        if not call.is_meaningful:
            raise ConsistencyError(f"Call {call_id} is not a meaningful conversation and cannot be graded")
        self.orchestrator.claim(repo, call.transcript, now)
        logger.info("call_regrade_claimed", call_id=call_id, transcript_id=call.daily_transcript_id)
        return call

    def run_regrade(self, session: Session, call_id: str) -> RegradeOutcome:
        """Grade a claimed call again and re-finalize its transcript.

        On failure the previous grade is left untouched.
        """
        repo = TranscriptRepository(session)
        call = repo.get_call(call_id)
        transcript = call.transcript
        run = ProcessingRun(transcript_id=transcript.id)
        grader = self.orchestrator.capabilities.grader

        try:
            succeeded = False
            error: Optional[str] = None
            try:
                result = grade_segment(
                    call.raw_text,
                    call.is_meaningful,
                    grader,
                    timeout=self.settings.grade_timeout_seconds,
                )
            except CapabilityError as e:
                error = truncate_error(f"Re-grade failed: {e}", self.settings.processing_error_max_chars)
                fallback_status = (
                    CallAnalysisStatus.COMPLETED if call.grade is not None else CallAnalysisStatus.FAILED
                )
                repo.mark_call(call, fallback_status, error)
                logger.warning("call_regrade_failed", call_id=call_id, error=str(e))
            else:
                repo.upsert_grade(call, result, model_name_of(grader))
                succeeded = True
                logger.info("call_regraded", call_id=call_id, grade=result.overall_grade.value)

            outcome = self.orchestrator.finalize(repo, transcript, run)
            return RegradeOutcome(
                call_id=call_id,
                transcript_id=transcript.id,
                succeeded=succeeded,
                overall_grade=call.grade.overall_grade if call.grade is not None else None,
                error=error,
                transcript_status=outcome.status,
            )
        except Exception:
            session.rollback()
            transcript = repo.get_transcript(transcript.id)
            if transcript.status == TranscriptStatus.PROCESSING:
                self.orchestrator.finalize(repo, transcript, run)
            raise
        finally:
            self.orchestrator.release(transcript.id)

    def regrade_call(self, session: Session, call_id: str, now: Optional[datetime] = None) -> RegradeOutcome:
        """Re-run only the grader for one call, preserving coaching feedback."""
        self.begin_regrade(session, call_id, now)
        return self.run_regrade(session, call_id)
