"""Tests for the pipeline orchestrator and run exclusivity."""

from datetime import timedelta

import pytest

from sdr_pipeline.database import utcnow
from sdr_pipeline.errors import AlreadyProcessingError, InvalidStatusTransition
from sdr_pipeline.models import CallAnalysisStatus, CallType, LetterGrade, TranscriptStatus
from sdr_pipeline.pipeline.capabilities import Capabilities, build_capabilities
from sdr_pipeline.pipeline.orchestrator import PipelineOrchestrator
from sdr_pipeline.pipeline.retry import RetryManager
from sdr_pipeline.pipeline.run_guard import RunGuard


class BrokenSplitter:
    model_name = "broken-splitter"

    def split(self, text):
        raise RuntimeError("model offline")


class TestHappyPath:
    """Tests for a transcript where every stage succeeds."""

    def test_sample_day_completes(self, orchestrator, make_transcript, db_session, sample_types):
        transcript = make_transcript()
        outcome = orchestrator.process_transcript(db_session, transcript.id)

        assert outcome.status == TranscriptStatus.COMPLETED
        assert outcome.error is None
        assert (outcome.total_calls, outcome.meaningful_calls, outcome.graded_calls) == (10, 3, 3)

        db_session.refresh(transcript)
        assert transcript.status == TranscriptStatus.COMPLETED
        assert transcript.total_calls_detected == 10
        assert transcript.meaningful_calls_count == 3
        assert [CallType(c.call_type) for c in transcript.calls] == sample_types
        assert [c.call_index for c in transcript.calls] == list(range(1, 11))

    def test_meaningful_flag_follows_call_type(self, orchestrator, make_transcript, db_session):
        transcript = make_transcript()
        orchestrator.process_transcript(db_session, transcript.id)

        for call in transcript.calls:
            assert call.is_meaningful == (call.call_type == CallType.CONVERSATION.value)
            if call.is_meaningful:
                assert call.grade is not None
                assert call.analysis_status == CallAnalysisStatus.COMPLETED.value
            else:
                assert call.grade is None
                assert call.analysis_status == CallAnalysisStatus.SKIPPED.value

    def test_letter_grade_is_recomputed(self, orchestrator, make_transcript, db_session):
        transcript = make_transcript()
        orchestrator.process_transcript(db_session, transcript.id)

        grades = [c.grade for c in transcript.calls if c.grade is not None]
        assert {g.overall_grade for g in grades} == {LetterGrade.B.value}
        assert all(g.raw_json["model_overall_grade"] == "A+" for g in grades)
        assert all(g.model_name == "stub-grader" for g in grades)

    def test_default_capabilities_process_sample_day(self, test_settings, make_transcript, db_session):
        orchestrator = PipelineOrchestrator(
            capabilities=build_capabilities(test_settings), settings=test_settings, run_guard=RunGuard()
        )
        transcript = make_transcript()
        outcome = orchestrator.process_transcript(db_session, transcript.id)

        assert outcome.status == TranscriptStatus.COMPLETED
        assert (outcome.total_calls, outcome.meaningful_calls, outcome.graded_calls) == (10, 3, 3)
        booked = [c.grade.meeting_scheduled for c in transcript.calls if c.grade is not None]
        assert booked == [True, False, True]

    def test_guard_released_after_run(self, orchestrator, make_transcript, db_session):
        transcript = make_transcript()
        orchestrator.process_transcript(db_session, transcript.id)
        assert not orchestrator.run_guard.is_active(transcript.id)


class TestStageFailures:
    """Tests for failure isolation and final status."""

    def test_grading_timeout_gives_partial_then_retry_completes(
        self, orchestrator, make_transcript, db_session, grader, splitter
    ):
        grader.block_on = "Lena Park"
        transcript = make_transcript()
        outcome = orchestrator.process_transcript(db_session, transcript.id)

        assert outcome.status == TranscriptStatus.PARTIAL
        assert outcome.error == "1/3 calls failed grading"
        lena = next(c for c in transcript.calls if "Lena Park" in c.raw_text)
        assert lena.grade is None
        assert lena.analysis_status == CallAnalysisStatus.FAILED.value
        assert lena.processing_error.startswith("Grading failed:")
        assert len(grader.graded) == 3

        grader.release.set()
        outcome = RetryManager(orchestrator).retry_transcript(db_session, transcript.id)

        assert outcome.status == TranscriptStatus.COMPLETED
        assert outcome.error is None
        assert len(grader.graded) == 4
        assert splitter.calls == 1
        assert lena.grade is not None

    def test_hung_grades_do_not_starve_queued_calls(
        self, test_settings, capabilities, make_transcript, db_session, grader
    ):
        """With every worker stuck on a hung grade, the queued call is still graded."""
        settings = test_settings.model_copy(update={"grade_max_workers": 2})
        orchestrator = PipelineOrchestrator(capabilities=capabilities, settings=settings, run_guard=RunGuard())
        grader.block_on = ("Dana Reyes", "Marcus Bell")
        transcript = make_transcript()

        outcome = orchestrator.process_transcript(db_session, transcript.id)

        assert outcome.status == TranscriptStatus.PARTIAL
        assert outcome.graded_calls == 1
        assert outcome.error == "2/3 calls failed grading"
        lena = next(c for c in transcript.calls if "Lena Park" in c.raw_text)
        assert lena.grade is not None
        assert lena.analysis_status == CallAnalysisStatus.COMPLETED.value
        for marker in ("Dana Reyes", "Marcus Bell"):
            hung = next(c for c in transcript.calls if marker in c.raw_text)
            assert hung.grade is None
            assert hung.processing_error == "Grading failed: grade timed out after 1.0s"

    def test_grader_exception_is_isolated(self, orchestrator, make_transcript, db_session, grader):
        grader.fail_on = "Marcus Bell"
        transcript = make_transcript()
        outcome = orchestrator.process_transcript(db_session, transcript.id)

        assert outcome.status == TranscriptStatus.PARTIAL
        assert outcome.graded_calls == 2
        marcus = next(c for c in transcript.calls if "Marcus Bell" in c.raw_text)
        assert "grader exploded" in marcus.processing_error

    def test_all_grades_failing_is_partial(self, orchestrator, make_transcript, db_session, grader):
        grader.fail_on = "Alex"
        transcript = make_transcript()
        outcome = orchestrator.process_transcript(db_session, transcript.id)

        assert outcome.status == TranscriptStatus.PARTIAL
        assert outcome.error == "3/3 calls failed grading"

    def test_classification_failure_gives_partial_then_retry(
        self, orchestrator, make_transcript, db_session, classifier, grader
    ):
        classifier.fail_on = "Lena Park"
        transcript = make_transcript()
        outcome = orchestrator.process_transcript(db_session, transcript.id)

        assert outcome.status == TranscriptStatus.PARTIAL
        assert outcome.error == "Classification failed for 4/10 segments"
        failed = [c.call_index for c in transcript.calls if not c.is_classified]
        assert failed == [5, 6, 7, 8]
        assert outcome.graded_calls == 1

        classifier.fail_on = None
        outcome = RetryManager(orchestrator).retry_transcript(db_session, transcript.id)

        assert outcome.status == TranscriptStatus.COMPLETED
        # only the four failed segments are sent again
        assert classifier.batches[-1] == 4
        assert outcome.graded_calls == 3
        assert len(grader.graded) == 3

    def test_splitter_failure_without_fallback_fails(
        self, test_settings, classifier, grader, make_transcript, db_session
    ):
        settings = test_settings.model_copy(update={"splitter_fallback_to_heuristic": False})
        orchestrator = PipelineOrchestrator(
            capabilities=Capabilities(splitter=BrokenSplitter(), classifier=classifier, grader=grader),
            settings=settings,
            run_guard=RunGuard(),
        )
        transcript = make_transcript()
        outcome = orchestrator.process_transcript(db_session, transcript.id)

        assert outcome.status == TranscriptStatus.FAILED
        assert outcome.error.startswith("Splitter failed:")
        assert "model offline" in outcome.error
        assert transcript.calls == []

    def test_splitter_failure_uses_heuristic_fallback(
        self, test_settings, classifier, grader, make_transcript, db_session
    ):
        orchestrator = PipelineOrchestrator(
            capabilities=Capabilities(splitter=BrokenSplitter(), classifier=classifier, grader=grader),
            settings=test_settings,
            run_guard=RunGuard(),
        )
        transcript = make_transcript()
        outcome = orchestrator.process_transcript(db_session, transcript.id)

        assert outcome.status == TranscriptStatus.COMPLETED
        assert outcome.total_calls == 10

    def test_empty_transcript_fails(self, orchestrator, make_transcript, db_session):
        transcript = make_transcript(raw_text="   \n")
        outcome = orchestrator.process_transcript(db_session, transcript.id)

        assert outcome.status == TranscriptStatus.FAILED
        assert outcome.error == "No calls detected in transcript"
        assert transcript.total_calls_detected == 0

    def test_long_errors_are_truncated(self, test_settings, classifier, grader, make_transcript, db_session):
        class VerboseSplitter:
            def split(self, text):
                raise RuntimeError("x" * 5000)

        settings = test_settings.model_copy(
            update={"splitter_fallback_to_heuristic": False, "processing_error_max_chars": 200}
        )
        orchestrator = PipelineOrchestrator(
            capabilities=Capabilities(splitter=VerboseSplitter(), classifier=classifier, grader=grader),
            settings=settings,
            run_guard=RunGuard(),
        )
        transcript = make_transcript()
        outcome = orchestrator.process_transcript(db_session, transcript.id)
        assert len(outcome.error) == 200
        assert outcome.error.endswith("...")


class TestClaiming:
    """Tests for one active run per transcript."""

    def test_second_claim_is_rejected(self, orchestrator, make_transcript, repo):
        transcript = make_transcript()
        orchestrator.claim(repo, transcript)

        with pytest.raises(AlreadyProcessingError):
            orchestrator.claim(repo, transcript)
        assert orchestrator.run_guard.is_active(transcript.id)

    def test_processing_row_without_guard_is_rejected_until_stuck(self, orchestrator, make_transcript, repo):
        transcript = make_transcript()
        orchestrator.claim(repo, transcript)
        # simulates a run lost with a previous process
        orchestrator.release(transcript.id)

        with pytest.raises(AlreadyProcessingError):
            orchestrator.claim(repo, transcript, now=utcnow())
        assert not orchestrator.run_guard.is_active(transcript.id)

        orchestrator.claim(repo, transcript, now=utcnow() + timedelta(seconds=400))
        assert orchestrator.run_guard.is_active(transcript.id)
        assert transcript.status == TranscriptStatus.PROCESSING

    def test_stuck_transcript_can_be_rerun(self, orchestrator, make_transcript, repo, db_session):
        transcript = make_transcript()
        orchestrator.claim(repo, transcript)
        orchestrator.release(transcript.id)
        transcript.updated_at = utcnow() - timedelta(seconds=600)
        repo.commit()

        outcome = orchestrator.process_transcript(db_session, transcript.id)
        assert outcome.status == TranscriptStatus.COMPLETED

    def test_claim_moves_pending_to_processing(self, orchestrator, make_transcript, repo):
        transcript = make_transcript()
        orchestrator.claim(repo, transcript)
        assert transcript.status == TranscriptStatus.PROCESSING

    def test_completed_transcript_can_be_claimed_again(self, orchestrator, make_transcript, db_session, repo):
        transcript = make_transcript()
        orchestrator.process_transcript(db_session, transcript.id)
        orchestrator.claim(repo, transcript)
        assert transcript.status == TranscriptStatus.PROCESSING

    def test_failed_claim_releases_guard(self, orchestrator, make_transcript, repo):
        transcript = make_transcript()
        transcript.processing_status = "bogus"
        with pytest.raises(ValueError):
            orchestrator.claim(repo, transcript)
        assert not orchestrator.run_guard.is_active(transcript.id)
