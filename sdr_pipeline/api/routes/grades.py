"""Grade Routes - coaching feedback from the rep."""

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from sdr_pipeline.api.deps import get_db, raise_http_error
from sdr_pipeline.api.schemas import CoachingFeedbackRequest, GradeResponse
from sdr_pipeline.errors import PipelineError
from sdr_pipeline.repository import TranscriptRepository

router = APIRouter()


@router.get("/grades/{grade_id}", response_model=GradeResponse)
def get_grade(grade_id: str, db: Session = Depends(get_db)) -> GradeResponse:
    try:
        grade = TranscriptRepository(db).get_grade(grade_id)
    except PipelineError as e:
        raise_http_error(e)
    return GradeResponse.model_validate(grade)


@router.post("/grades/{grade_id}/feedback", response_model=GradeResponse)
def submit_feedback(
    grade_id: str,
    request: CoachingFeedbackRequest,
    db: Session = Depends(get_db),
) -> GradeResponse:
    """
    Record whether the coaching on a grade was helpful.

    Feedback is kept when the call is later re-graded.
    """
    repo = TranscriptRepository(db)
    try:
        grade = repo.submit_feedback(grade_id, request.helpful, request.note)
    except PipelineError as e:
        raise_http_error(e)
    repo.commit()
    return GradeResponse.model_validate(grade)
