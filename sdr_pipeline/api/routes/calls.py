"""
Call Routes

List calls with their grades and trigger a single-call re-grade.
"""

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends, Query, status
from sqlalchemy.orm import Session

from sdr_pipeline.api.deps import (
    get_clock,
    get_db,
    get_orchestrator,
    get_session_factory,
    raise_http_error,
)
from sdr_pipeline.api.schemas import CallListResponse, CallResponse, CommandAcceptedResponse
from sdr_pipeline.errors import PipelineError
from sdr_pipeline.models import TranscriptStatus
from sdr_pipeline.pipeline.orchestrator import PipelineOrchestrator
from sdr_pipeline.pipeline.retry import RetryManager
from sdr_pipeline.repository import TranscriptRepository
from sdr_pipeline.services import pipeline_runner
from sdr_pipeline.services.pipeline_runner import SessionFactory

router = APIRouter()


@router.get("/calls", response_model=CallListResponse)
def list_calls(
    transcript_id: Optional[str] = Query(default=None),
    sdr_id: Optional[str] = Query(default=None),
    only_meaningful: bool = Query(default=False, description="Return conversations only"),
    db: Session = Depends(get_db),
) -> CallListResponse:
    """List calls in call order, each with its grade (if any)."""
    calls = TranscriptRepository(db).list_calls(
        transcript_id=transcript_id,
        sdr_id=sdr_id,
        only_meaningful=only_meaningful,
    )
    return CallListResponse(
        calls=[CallResponse.model_validate(c) for c in calls],
        total_count=len(calls),
    )


@router.get("/calls/{call_id}", response_model=CallResponse)
def get_call(call_id: str, db: Session = Depends(get_db)) -> CallResponse:
    try:
        call = TranscriptRepository(db).get_call(call_id)
    except PipelineError as e:
        raise_http_error(e)
    return CallResponse.model_validate(call)


@router.post(
    "/calls/{call_id}/regrade",
    response_model=CommandAcceptedResponse,
    status_code=status.HTTP_202_ACCEPTED,
)
def regrade_call(
    call_id: str,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    orchestrator: PipelineOrchestrator = Depends(get_orchestrator),
    session_factory: SessionFactory = Depends(get_session_factory),
    now: datetime = Depends(get_clock),
) -> CommandAcceptedResponse:
    """
    Grade one call again.

    The previous grade is replaced on success and kept on failure; coaching
    feedback survives either way. Returns 422 for calls that are not
    conversations and 409 while the transcript is being processed.
    """
    try:
        call = RetryManager(orchestrator).begin_regrade(db, call_id, now)
    except PipelineError as e:
        raise_http_error(e)

    transcript_id = call.daily_transcript_id
    background_tasks.add_task(
        pipeline_runner.run_regrade_job,
        session_factory,
        orchestrator,
        call_id,
    )
    return CommandAcceptedResponse(
        transcript_id=transcript_id,
        call_id=call_id,
        status=TranscriptStatus.PROCESSING,
        message="Re-grade started",
    )
