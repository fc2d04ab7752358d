"""API routes package."""

from . import calls, grades, transcripts

__all__ = ["calls", "grades", "transcripts"]
