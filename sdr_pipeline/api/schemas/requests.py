"""
Request schemas for the API.

These define the expected input structure for API endpoints.
Using Pydantic v2 for validation and serialization.
"""

from datetime import date
from typing import Optional

from pydantic import BaseModel, Field

from sdr_pipeline.models import UploadMethod


class TranscriptUploadRequest(BaseModel):
    """Request to store and process one SDR's daily transcript."""
    sdr_id: str = Field(..., min_length=1, max_length=100, description="Owner of the transcript")
    transcript_date: date = Field(..., description="Day the calls were made")
    raw_text: str = Field(..., min_length=1, description="Full dialer transcript text")
    upload_method: UploadMethod = Field(default=UploadMethod.TEXT)

    model_config = {
        "json_schema_extra": {
            "examples": [
                {
                    "sdr_id": "sdr-042",
                    "transcript_date": "2026-03-02",
                    "raw_text": "Speaker 1 | 00:00\nHi, is this Mark? This is Dana from Brightwave.\n",
                    "upload_method": "text",
                }
            ]
        }
    }


class CoachingFeedbackRequest(BaseModel):
    """A rep's verdict on the coaching attached to a grade."""
    helpful: bool = Field(..., description="Whether the coaching was helpful")
    note: Optional[str] = Field(default=None, max_length=2000, description="Optional free-text note")
