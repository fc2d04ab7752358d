"""Tests for the transcript status machine and final-status rules."""

import pytest

from sdr_pipeline.errors import InvalidStatusTransition
from sdr_pipeline.models import TranscriptStatus
from sdr_pipeline.pipeline.state import (
    TranscriptTally,
    can_transition,
    resolve_final_status,
    summarize_errors,
    transition,
    truncate_error,
)

TERMINAL = [TranscriptStatus.COMPLETED, TranscriptStatus.PARTIAL, TranscriptStatus.FAILED]


class TestTransitions:
    """Tests for allowed status changes."""

    def test_pending_only_enters_processing(self):
        assert can_transition(TranscriptStatus.PENDING, TranscriptStatus.PROCESSING)
        for status in TERMINAL:
            assert not can_transition(TranscriptStatus.PENDING, status)

    @pytest.mark.parametrize("status", TERMINAL)
    def test_processing_reaches_every_terminal_status(self, status):
        assert transition(TranscriptStatus.PROCESSING, status) == status

    @pytest.mark.parametrize("status", TERMINAL)
    def test_terminal_statuses_can_reenter_processing(self, status):
        assert can_transition(status, TranscriptStatus.PROCESSING)
        assert status.is_terminal

    def test_processing_cannot_restart(self):
        with pytest.raises(InvalidStatusTransition) as exc_info:
            transition("processing", "processing")
        assert exc_info.value.current == "processing"

    def test_terminal_cannot_jump_to_another_terminal(self):
        with pytest.raises(InvalidStatusTransition):
            transition(TranscriptStatus.FAILED, TranscriptStatus.COMPLETED)

    def test_unknown_status_is_rejected(self):
        with pytest.raises(ValueError):
            can_transition("pending", "archived")


class TestResolveFinalStatus:
    """Tests for picking completed / partial / failed."""

    def test_everything_succeeded(self):
        tally = TranscriptTally(total_calls=10, classified=10, meaningful=3, graded=3)
        assert resolve_final_status(tally) == TranscriptStatus.COMPLETED

    def test_no_meaningful_calls_is_still_completed(self):
        tally = TranscriptTally(total_calls=4, classified=4)
        assert resolve_final_status(tally) == TranscriptStatus.COMPLETED

    def test_segmentation_error_fails(self):
        tally = TranscriptTally(segmentation_error="Splitter failed: boom")
        assert resolve_final_status(tally) == TranscriptStatus.FAILED

    def test_zero_calls_fails(self):
        assert resolve_final_status(TranscriptTally()) == TranscriptStatus.FAILED

    def test_one_grade_missing_is_partial(self):
        tally = TranscriptTally(total_calls=10, classified=10, meaningful=3, graded=2, grading_failed=1)
        assert resolve_final_status(tally) == TranscriptStatus.PARTIAL

    def test_all_grades_failed_is_partial(self):
        tally = TranscriptTally(total_calls=10, classified=10, meaningful=3, grading_failed=3)
        assert resolve_final_status(tally) == TranscriptStatus.PARTIAL

    def test_all_classification_failed_is_failed(self):
        tally = TranscriptTally(total_calls=10, classification_failed=10)
        assert resolve_final_status(tally) == TranscriptStatus.FAILED


class TestErrorSummary:
    """Tests for processing_error text."""

    def test_no_errors(self):
        assert summarize_errors(TranscriptTally(total_calls=2, classified=2)) is None

    def test_counts_are_reported(self):
        tally = TranscriptTally(
            total_calls=10, classified=8, classification_failed=2, meaningful=3, graded=2, grading_failed=1
        )
        assert summarize_errors(tally) == (
            "Classification failed for 2/10 segments; 1/3 calls failed grading"
        )

    def test_empty_transcript_message(self):
        assert summarize_errors(TranscriptTally()) == "No calls detected in transcript"

    def test_truncation(self):
        assert truncate_error("x" * 50, max_chars=10) == "xxxxxxx..."
        assert truncate_error("short", max_chars=10) == "short"
