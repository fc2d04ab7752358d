"""
Pipeline Runner Service

Bridges the pipeline with the web API and the CLI.

Design Decisions:
- Commands (upload, retry, re-grade) validate and claim synchronously, so a
  second caller gets "already processing" immediately
- The actual run happens in the background on its own database session
- Every background failure is logged; the transcript status carries the
  user-facing error
"""

from datetime import date
from functools import lru_cache
from typing import Callable

import structlog
from sqlalchemy.orm import Session

from sdr_pipeline.config.settings import get_settings
from sdr_pipeline.db_models import DailyTranscript
from sdr_pipeline.models import UploadMethod
from sdr_pipeline.pipeline.capabilities import build_capabilities
from sdr_pipeline.pipeline.orchestrator import PipelineOrchestrator
from sdr_pipeline.pipeline.retry import RetryManager
from sdr_pipeline.pipeline.run_guard import RunGuard
from sdr_pipeline.repository import TranscriptRepository

logger = structlog.get_logger(__name__)

SessionFactory = Callable[[], Session]


@lru_cache
def get_orchestrator() -> PipelineOrchestrator:
    """Process-wide orchestrator sharing one RunGuard."""
    settings = get_settings()
    return PipelineOrchestrator(
        capabilities=build_capabilities(settings),
        settings=settings,
        run_guard=RunGuard(),
    )


def submit_transcript(
    session: Session,
    orchestrator: PipelineOrchestrator,
    sdr_id: str,
    transcript_date: date,
    raw_text: str,
    upload_method: UploadMethod | str = UploadMethod.TEXT,
) -> DailyTranscript:
    """Store a new transcript and claim it for processing.

    Returns:
        The transcript, already in processing status. Run it with
        run_transcript_job().
    """
    repo = TranscriptRepository(session)
    transcript = repo.create_transcript(sdr_id, transcript_date, raw_text, upload_method)
    repo.commit()
    orchestrator.claim(repo, transcript)
    return transcript


def run_transcript_job(
    session_factory: SessionFactory,
    orchestrator: PipelineOrchestrator,
    transcript_id: str,
    resplit: bool = False,
) -> None:
    """Background entry point for a claimed transcript (new upload or retry)."""
    session = session_factory()
    try:
        outcome = orchestrator.process_transcript(session, transcript_id, resplit=resplit, claimed=True)
        logger.info("transcript_job_finished", transcript_id=transcript_id, status=outcome.status.value)
    except Exception as e:
        logger.exception("transcript_job_crashed", transcript_id=transcript_id, error=str(e))
    finally:
        session.close()


def run_regrade_job(
    session_factory: SessionFactory,
    orchestrator: PipelineOrchestrator,
    call_id: str,
) -> None:
    """Background entry point for a claimed call re-grade."""
    session = session_factory()
    try:
        outcome = RetryManager(orchestrator).run_regrade(session, call_id)
        logger.info(
            "regrade_job_finished",
            call_id=call_id,
            succeeded=outcome.succeeded,
            transcript_status=outcome.transcript_status.value,
        )
    except Exception as e:
        logger.exception("regrade_job_crashed", call_id=call_id, error=str(e))
    finally:
        session.close()
