"""
FastAPI dependencies for database sessions and the pipeline.

Tests override these with app.dependency_overrides to point background runs
at an in-memory database and stub capabilities.
"""

from datetime import datetime

from fastapi import HTTPException, status

from sdr_pipeline import database
from sdr_pipeline.config.settings import Settings, get_settings
from sdr_pipeline.database import get_db, utcnow
from sdr_pipeline.errors import (
    AlreadyProcessingError,
    ConsistencyError,
    InvalidStatusTransition,
    NotFoundError,
    NotRetryableError,
    PipelineError,
)
from sdr_pipeline.pipeline.orchestrator import PipelineOrchestrator
from sdr_pipeline.services import pipeline_runner
from sdr_pipeline.services.pipeline_runner import SessionFactory

__all__ = [
    "get_clock",
    "get_db",
    "get_orchestrator",
    "get_session_factory",
    "get_app_settings",
    "raise_http_error",
]


def get_session_factory() -> SessionFactory:
    """Session factory used by background runs (they outlive the request session)."""
    return database.SessionLocal


def get_orchestrator() -> PipelineOrchestrator:
    return pipeline_runner.get_orchestrator()


def get_app_settings() -> Settings:
    return get_settings()


def get_clock() -> datetime:
    return utcnow()


def raise_http_error(error: PipelineError) -> None:
    """Translate a pipeline error into the matching HTTP error."""
    if isinstance(error, NotFoundError):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(error)) from error
    if isinstance(error, (AlreadyProcessingError, NotRetryableError, InvalidStatusTransition)):
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(error)) from error
    if isinstance(error, ConsistencyError):
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(error)) from error
    raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(error)) from error
