"""
Transcript Routes

Upload a daily transcript, list and poll transcripts, and retry failed runs.
Processing runs in the background; clients poll GET /transcripts/{id}.
"""

from datetime import date, datetime
from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends, Query, status
from sqlalchemy.orm import Session

from sdr_pipeline.api.deps import (
    get_app_settings,
    get_clock,
    get_db,
    get_orchestrator,
    get_session_factory,
    raise_http_error,
)
from sdr_pipeline.api.schemas import (
    CallResponse,
    CommandAcceptedResponse,
    TranscriptDetailResponse,
    TranscriptListResponse,
    TranscriptSummary,
    TranscriptUploadRequest,
)
from sdr_pipeline.config.settings import Settings
from sdr_pipeline.db_models import DailyTranscript
from sdr_pipeline.errors import PipelineError
from sdr_pipeline.models import TranscriptStatus
from sdr_pipeline.pipeline.monitoring import is_stuck, next_poll_interval
from sdr_pipeline.pipeline.orchestrator import PipelineOrchestrator
from sdr_pipeline.pipeline.retry import RetryManager
from sdr_pipeline.repository import TranscriptRepository
from sdr_pipeline.services import pipeline_runner
from sdr_pipeline.services.pipeline_runner import SessionFactory

router = APIRouter()


def _summary_fields(transcript: DailyTranscript, now: datetime, settings: Settings) -> dict:
    return {
        "id": transcript.id,
        "sdr_id": transcript.sdr_id,
        "transcript_date": transcript.transcript_date,
        "upload_method": transcript.upload_method,
        "processing_status": transcript.processing_status,
        "processing_error": transcript.processing_error,
        "total_calls_detected": transcript.total_calls_detected,
        "meaningful_calls_count": transcript.meaningful_calls_count,
        "graded_calls_count": sum(1 for c in transcript.calls if c.grade is not None),
        "is_stuck": is_stuck(
            transcript.processing_status, transcript.updated_at, now, settings.stuck_threshold_seconds
        ),
        "created_at": transcript.created_at,
        "updated_at": transcript.updated_at,
    }


# =============================================================================
# Upload
# =============================================================================

@router.post(
    "/transcripts",
    response_model=CommandAcceptedResponse,
    status_code=status.HTTP_202_ACCEPTED,
)
def upload_transcript(
    request: TranscriptUploadRequest,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    orchestrator: PipelineOrchestrator = Depends(get_orchestrator),
    session_factory: SessionFactory = Depends(get_session_factory),
) -> CommandAcceptedResponse:
    """
    Store a daily transcript and start processing it.

    Returns immediately with status "processing"; poll the transcript for
    progress.
    """
    try:
        transcript = pipeline_runner.submit_transcript(
            db,
            orchestrator,
            sdr_id=request.sdr_id,
            transcript_date=request.transcript_date,
            raw_text=request.raw_text,
            upload_method=request.upload_method,
        )
    except PipelineError as e:
        raise_http_error(e)

    background_tasks.add_task(
        pipeline_runner.run_transcript_job,
        session_factory,
        orchestrator,
        transcript.id,
    )
    return CommandAcceptedResponse(
        transcript_id=transcript.id,
        status=TranscriptStatus.PROCESSING,
        message="Transcript accepted for processing",
    )


# =============================================================================
# Listing / Polling
# =============================================================================

@router.get("/transcripts", response_model=TranscriptListResponse)
def list_transcripts(
    sdr_id: Optional[str] = Query(default=None, description="Filter by owner"),
    date_from: Optional[date] = Query(default=None),
    date_to: Optional[date] = Query(default=None),
    status_filter: Optional[list[TranscriptStatus]] = Query(default=None, alias="status"),
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_app_settings),
    now: datetime = Depends(get_clock),
) -> TranscriptListResponse:
    """
    List transcripts, newest first.

    Filters: owner, inclusive date range, and one or more statuses.
    """
    transcripts = TranscriptRepository(db).list_transcripts(
        sdr_id=sdr_id,
        date_from=date_from,
        date_to=date_to,
        statuses=status_filter,
    )
    items = [TranscriptSummary(**_summary_fields(t, now, settings)) for t in transcripts]
    any_active = any(not t.status.is_terminal for t in transcripts)
    return TranscriptListResponse(
        transcripts=items,
        total_count=len(items),
        next_poll_seconds=settings.poll_list_interval_seconds if any_active else None,
    )


@router.get("/transcripts/{transcript_id}", response_model=TranscriptDetailResponse)
def get_transcript(
    transcript_id: str,
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_app_settings),
    now: datetime = Depends(get_clock),
) -> TranscriptDetailResponse:
    """Transcript detail with its calls and a polling hint."""
    try:
        transcript = TranscriptRepository(db).get_transcript(transcript_id)
    except PipelineError as e:
        raise_http_error(e)

    return TranscriptDetailResponse(
        **_summary_fields(transcript, now, settings),
        next_poll_seconds=next_poll_interval(
            transcript.processing_status,
            transcript.updated_at,
            now,
            base_interval=settings.poll_interval_seconds,
            max_interval=settings.poll_max_interval_seconds,
            threshold_seconds=settings.stuck_threshold_seconds,
        ),
        calls=[CallResponse.model_validate(c) for c in transcript.calls],
    )


# =============================================================================
# Retry
# =============================================================================

@router.post(
    "/transcripts/{transcript_id}/retry",
    response_model=CommandAcceptedResponse,
    status_code=status.HTTP_202_ACCEPTED,
)
def retry_transcript(
    transcript_id: str,
    background_tasks: BackgroundTasks,
    resplit: bool = Query(default=False, description="Discard existing calls and segment again"),
    db: Session = Depends(get_db),
    orchestrator: PipelineOrchestrator = Depends(get_orchestrator),
    session_factory: SessionFactory = Depends(get_session_factory),
    now: datetime = Depends(get_clock),
) -> CommandAcceptedResponse:
    """
    Retry a failed, partial or stuck transcript.

    Only missing work is redone. Returns 409 if the transcript is already
    processing or cannot be retried.
    """
    try:
        RetryManager(orchestrator).begin_retry(db, transcript_id, now)
    except PipelineError as e:
        raise_http_error(e)

    background_tasks.add_task(
        pipeline_runner.run_transcript_job,
        session_factory,
        orchestrator,
        transcript_id,
        resplit,
    )
    return CommandAcceptedResponse(
        transcript_id=transcript_id,
        status=TranscriptStatus.PROCESSING,
        message="Retry started",
    )
