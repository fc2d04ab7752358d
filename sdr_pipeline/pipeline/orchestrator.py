"""Pipeline Orchestrator - drives one transcript through all stages.

Stage Flow:
    segmentation → classification (batched) → grading (concurrent)

The orchestrator owns the transcript status machine:
    pending → processing → {completed | partial | failed}

Stage failures (capability errors, timeouts, malformed output) are recorded
on the affected calls and summarized on the transcript; they never abort
sibling calls. Only unexpected errors propagate, after the transcript has
been marked failed.
"""

from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

import structlog
from sqlalchemy.orm import Session

from sdr_pipeline.config.settings import Settings, get_settings
from sdr_pipeline.database import utcnow
from sdr_pipeline.db_models import Call, DailyTranscript
from sdr_pipeline.errors import AlreadyProcessingError, CapabilityError
from sdr_pipeline.models import CallAnalysisStatus, GradeResult, TranscriptStatus
from sdr_pipeline.pipeline.capabilities import Capabilities, build_capabilities, model_name_of
from sdr_pipeline.pipeline.monitoring import is_stuck
from sdr_pipeline.pipeline.run_guard import RunGuard
from sdr_pipeline.pipeline.stages.classification import classify_segments
from sdr_pipeline.pipeline.stages.grading import grade_segment
from sdr_pipeline.pipeline.stages.segmentation import HeuristicSplitter, run_segmentation
from sdr_pipeline.pipeline.state import resolve_final_status, summarize_errors, truncate_error
from sdr_pipeline.repository import TranscriptRepository

logger = structlog.get_logger(__name__)


@dataclass
class ProcessingRun:
    """Bookkeeping for one orchestrator run over a transcript."""

    transcript_id: str
    started_at: datetime = field(default_factory=utcnow)
    finished_at: Optional[datetime] = None
    segments_created: int = 0
    classified: int = 0
    classification_failures: int = 0
    graded: int = 0
    grading_failures: int = 0
    segmentation_error: Optional[str] = None
    errors: list[dict] = field(default_factory=list)
    stage_durations: dict[str, float] = field(default_factory=dict)


@dataclass
class ProcessingOutcome:
    """What a run left behind on the transcript."""

    transcript_id: str
    status: TranscriptStatus
    total_calls: int
    meaningful_calls: int
    graded_calls: int
    error: Optional[str]
    run: ProcessingRun


class PipelineOrchestrator:
    """Runs the segmentation, classification and grading stages for transcripts."""

    def __init__(
        self,
        capabilities: Optional[Capabilities] = None,
        settings: Optional[Settings] = None,
        run_guard: Optional[RunGuard] = None,
    ):
        self.settings = settings or get_settings()
        self.capabilities = capabilities or build_capabilities(self.settings)
        self.run_guard = run_guard or RunGuard()
        self._fallback_splitter = HeuristicSplitter(gap_seconds=self.settings.split_gap_seconds)

    # =========================================================================
    # Claiming
    # =========================================================================

    def claim(self, repo: TranscriptRepository, transcript: DailyTranscript, now: Optional[datetime] = None) -> None:
        """Take exclusive ownership of a transcript and move it to processing.

        A transcript already in processing can only be claimed when it is
        stuck and no run in this process holds it.

        Raises:
            AlreadyProcessingError: If another run owns the transcript.
            InvalidStatusTransition: If the status cannot enter processing.
        """
        self.run_guard.acquire(transcript.id)
        try:
            if transcript.status == TranscriptStatus.PROCESSING:
                if not is_stuck(
                    transcript.status,
                    transcript.updated_at,
                    now or utcnow(),
                    self.settings.stuck_threshold_seconds,
                ):
                    raise AlreadyProcessingError(transcript.id)
                logger.warning("stuck_transcript_reclaimed", transcript_id=transcript.id)
                repo.touch(transcript)
            else:
                repo.set_status(transcript, TranscriptStatus.PROCESSING)
            repo.commit()
        except Exception:
            self.run_guard.release(transcript.id)
            raise

    def release(self, transcript_id: str) -> None:
        self.run_guard.release(transcript_id)

    # =========================================================================
    # Full Run
    # =========================================================================

    def process_transcript(
        self,
        session: Session,
        transcript_id: str,
        resplit: bool = False,
        claimed: bool = False,
    ) -> ProcessingOutcome:
        """Run every outstanding stage for a transcript.

        Work already done is reused: existing segments are kept unless
        resplit is set, classified calls are not re-classified and graded
        calls are not re-graded.

        Args:
            session: Database session owned by this run.
            transcript_id: Transcript to process.
            resplit: Discard existing calls (and their grades) and segment again.
            claimed: True if the caller already claimed the transcript.

        Returns:
            ProcessingOutcome with the final status.
        """
        repo = TranscriptRepository(session)
        transcript = repo.get_transcript(transcript_id)
        if not claimed:
            self.claim(repo, transcript)

        try:
            return self._run(repo, transcript, resplit)
        finally:
            self.release(transcript_id)

    def _run(self, repo: TranscriptRepository, transcript: DailyTranscript, resplit: bool) -> ProcessingOutcome:
        run = ProcessingRun(transcript_id=transcript.id)
        logger.info("pipeline_start", transcript_id=transcript.id, resplit=resplit)

        try:
            calls = list(transcript.calls)
            if resplit or not calls:
                calls = self._run_segmentation(repo, transcript, run)

            if calls:
                self._run_classification(repo, transcript, [c for c in calls if not c.is_classified], run)
                self._run_grading(
                    repo, transcript, [c for c in calls if c.is_meaningful and c.grade is None], run
                )
        except Exception as e:
            repo.session.rollback()
            run.errors.append({"stage": "orchestrator", "error": str(e), "type": type(e).__name__})
            logger.error("pipeline_failed", transcript_id=transcript.id, error=str(e), exc_info=True)
            transcript = repo.get_transcript(transcript.id)
            if transcript.status == TranscriptStatus.PROCESSING:
                repo.set_status(
                    transcript,
                    TranscriptStatus.FAILED,
                    truncate_error(f"Pipeline failed: {e}", self.settings.processing_error_max_chars),
                )
                repo.commit()
            raise

        return self.finalize(repo, transcript, run)

    # =========================================================================
    # Stages
    # =========================================================================

    def _run_segmentation(
        self, repo: TranscriptRepository, transcript: DailyTranscript, run: ProcessingRun
    ) -> list[Call]:
        """Stage 1: split the transcript and persist the segments immediately."""
        stage_start = utcnow()
        logger.info("stage_segmentation_start", transcript_id=transcript.id, chars=len(transcript.raw_text))

        fallback = self._fallback_splitter if self.settings.splitter_fallback_to_heuristic else None
        try:
            segments, trace = run_segmentation(
                transcript.raw_text,
                self.capabilities.splitter,
                timeout=self.settings.split_timeout_seconds,
                fallback=fallback,
            )
        except CapabilityError as e:
            run.segmentation_error = f"Splitter failed: {e}"
            run.errors.append({"stage": "segmentation", "error": str(e)})
            logger.error("stage_segmentation_failed", transcript_id=transcript.id, error=str(e))
            return []

        if not any(s.raw_text.strip() for s in segments):
            run.segmentation_error = "No calls detected in transcript"
            logger.warning("stage_segmentation_empty", transcript_id=transcript.id)
            return []

        calls = repo.replace_calls(transcript, segments)
        repo.touch(transcript)
        repo.commit()

        run.segments_created = len(calls)
        run.stage_durations["segmentation"] = (utcnow() - stage_start).total_seconds()
        logger.info(
            "stage_segmentation_complete",
            transcript_id=transcript.id,
            segments=len(calls),
            used_fallback=trace.used_fallback,
            splitter=trace.splitter,
        )
        return calls

    def _run_classification(
        self,
        repo: TranscriptRepository,
        transcript: DailyTranscript,
        calls: list[Call],
        run: ProcessingRun,
    ) -> None:
        """Stage 2: classify unclassified calls in batches."""
        if not calls:
            return
        stage_start = utcnow()
        logger.info("stage_classification_start", transcript_id=transcript.id, calls=len(calls))

        outcomes = classify_segments(
            [c.raw_text for c in calls],
            self.capabilities.classifier,
            batch_size=self.settings.classify_batch_size,
            timeout=self.settings.classify_timeout_seconds,
        )
        for call, outcome in zip(calls, outcomes):
            if outcome.succeeded:
                repo.save_classification(call, outcome.classification)
                run.classified += 1
            else:
                repo.mark_call(call, CallAnalysisStatus.FAILED, outcome.error)
                run.classification_failures += 1
                run.errors.append({"stage": "classification", "call_index": call.call_index, "error": outcome.error})

        repo.refresh_counts(transcript)
        repo.touch(transcript)
        repo.commit()

        run.stage_durations["classification"] = (utcnow() - stage_start).total_seconds()
        logger.info(
            "stage_classification_complete",
            transcript_id=transcript.id,
            classified=run.classified,
            failed=run.classification_failures,
            meaningful=transcript.meaningful_calls_count,
        )

    def _run_grading(
        self,
        repo: TranscriptRepository,
        transcript: DailyTranscript,
        calls: list[Call],
        run: ProcessingRun,
    ) -> None:
        """Stage 3: grade meaningful calls concurrently.

        Capability calls run on a worker pool; every database write happens
        here on the run's own thread.
        """
        if not calls:
            return
        stage_start = utcnow()
        logger.info("stage_grading_start", transcript_id=transcript.id, calls=len(calls))

        for call in calls:
            repo.mark_call(call, CallAnalysisStatus.PROCESSING)
        repo.commit()

        grader = self.capabilities.grader
        model_name = model_name_of(grader)
        timeout = self.settings.grade_timeout_seconds
        executor = ThreadPoolExecutor(
            max_workers=max(1, self.settings.grade_max_workers), thread_name_prefix="grade"
        )
        try:
            # The time limit applies per grade inside its worker, not to the wait here
            futures = [
                (call, executor.submit(grade_segment, call.raw_text, call.is_meaningful, grader, timeout))
                for call in calls
            ]
            for call, future in futures:
                try:
                    result: GradeResult = future.result()
                except CapabilityError as e:
                    self._record_grading_failure(repo, call, e, run)
                else:
                    repo.upsert_grade(call, result, model_name)
                    run.graded += 1
                    logger.debug(
                        "call_graded",
                        transcript_id=transcript.id,
                        call_index=call.call_index,
                        grade=result.overall_grade.value,
                    )
                repo.touch(transcript)
                repo.commit()
        finally:
            # Timed-out capability calls keep running in their own threads
            executor.shutdown(wait=False, cancel_futures=True)

        run.stage_durations["grading"] = (utcnow() - stage_start).total_seconds()
        logger.info(
            "stage_grading_complete",
            transcript_id=transcript.id,
            graded=run.graded,
            failed=run.grading_failures,
        )

    def _record_grading_failure(
        self, repo: TranscriptRepository, call: Call, error: Exception, run: ProcessingRun
    ) -> None:
        message = truncate_error(f"Grading failed: {error}", self.settings.processing_error_max_chars)
        repo.mark_call(call, CallAnalysisStatus.FAILED, message)
        run.grading_failures += 1
        run.errors.append({"stage": "grading", "call_index": call.call_index, "error": str(error)})
        logger.warning("call_grading_failed", call_id=call.id, call_index=call.call_index, error=str(error))

    # =========================================================================
    # Finalization
    # =========================================================================

    def finalize(
        self,
        repo: TranscriptRepository,
        transcript: DailyTranscript,
        run: ProcessingRun,
    ) -> ProcessingOutcome:
        """Pick the terminal status from the stored calls and persist it."""
        repo.refresh_counts(transcript)
        tally = repo.tally(transcript)
        tally.segmentation_error = run.segmentation_error
        status = resolve_final_status(tally)
        error = summarize_errors(tally, self.settings.processing_error_max_chars)

        repo.set_status(transcript, status, error)
        repo.commit()

        run.finished_at = utcnow()
        logger.info(
            "pipeline_complete",
            transcript_id=transcript.id,
            status=status.value,
            duration_seconds=round((run.finished_at - run.started_at).total_seconds(), 2),
            total_calls=tally.total_calls,
            meaningful=tally.meaningful,
            graded=tally.graded,
            error=error,
        )
        return ProcessingOutcome(
            transcript_id=transcript.id,
            status=status,
            total_calls=tally.total_calls,
            meaningful_calls=tally.meaningful,
            graded_calls=tally.graded,
            error=error,
            run=run,
        )
