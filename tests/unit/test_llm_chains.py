"""Tests for LLM JSON handling and the LLM-backed capabilities."""

import json

import pytest
from langchain_core.language_models import FakeListLLM
from pydantic import Field

from sdr_pipeline.config.prompts import CLASSIFIER_SYSTEM_PROMPT, GRADER_SYSTEM_PROMPT, SPLITTER_SYSTEM_PROMPT
from sdr_pipeline.config.settings import Settings
from sdr_pipeline.errors import MalformedOutputError
from sdr_pipeline.llm.chains import (
    LLMChainError,
    LLMClassifier,
    LLMGrader,
    LLMSplitter,
    parse_json_response,
    unwrap_items,
)
from sdr_pipeline.models import CallType, CapabilityBackend, LetterGrade
from sdr_pipeline.pipeline.capabilities import build_capabilities
from sdr_pipeline.pipeline.stages.grading import RubricGrader, finalize_grade


def fake_llm(*responses) -> FakeListLLM:
    return FakeListLLM(responses=[r if isinstance(r, str) else json.dumps(r) for r in responses])


GRADE_PAYLOAD = {
    "opener_score": "9",
    "engagement_score": 8.6,
    "objection_handling_score": 12,
    "appointment_setting_score": 10,
    "professionalism_score": 9,
    "overall_grade": "a+",
    "meeting_scheduled": True,
    "call_summary": "Booked a Thursday demo.",
    "strengths": ["Clear opener"],
    "improvements": ["Confirm attendees"],
    "key_moments": [{"timestamp": "09:01:02", "description": "Time agreed", "sentiment": "positive"}],
    "coaching_notes": "Confirm who else should attend.",
}


class TestParseJsonResponse:
    """Tests for recovering JSON from model output."""

    def test_plain_object(self):
        assert parse_json_response('{"a": 1}') == {"a": 1}

    def test_markdown_fence(self):
        assert parse_json_response('```json\n[{"a": 1}]\n```') == [{"a": 1}]

    def test_trailing_comma(self):
        assert parse_json_response('{"a": [1, 2,],}') == {"a": [1, 2]}

    def test_prose_around_json(self):
        response = 'Sure! Here is the result:\n{"call_type": "voicemail", "note": "ends with }"}\nHope that helps.'
        assert parse_json_response(response) == {"call_type": "voicemail", "note": "ends with }"}

    def test_empty_response(self):
        with pytest.raises(LLMChainError, match="Empty response"):
            parse_json_response("   ")


class TestUnwrapItems:
    """Tests for list extraction from wrapper objects."""

    def test_bare_list(self):
        assert unwrap_items([1, 2]) == [1, 2]

    @pytest.mark.parametrize("key", ["segments", "calls", "data", "results"])
    def test_wrapper_keys(self, key):
        assert unwrap_items({key: [{"x": 1}]}) == [{"x": 1}]

    def test_single_object(self):
        assert unwrap_items({"x": 1}) == [{"x": 1}]

    def test_scalar_is_malformed(self):
        with pytest.raises(MalformedOutputError):
            unwrap_items("nope")


class TestLLMClassifier:
    """Tests for the classification chain."""

    def test_results_sorted_by_index(self):
        llm = fake_llm({
            "results": [
                {"segment_index": 1, "call_type": "Voicemail", "is_meaningful": False},
                {"segment_index": 0, "call_type": "conversation", "is_meaningful": True,
                 "prospect_name": "Dana Reyes"},
            ]
        })
        results = LLMClassifier(llm, model_name="fake").classify(["call one", "call two"])
        assert [r.segment_index for r in results] == [0, 1]
        assert results[0].prospect_name == "Dana Reyes"
        assert results[1].call_type == CallType.VOICEMAIL

    def test_unknown_call_type_is_malformed(self):
        llm = fake_llm([{"segment_index": 0, "call_type": "fax"}])
        with pytest.raises(MalformedOutputError):
            LLMClassifier(llm, model_name="fake").classify(["beep"])

    def test_model_name_defaults_to_llm_type(self):
        assert LLMClassifier(fake_llm("[]")).model_name == "FakeListLLM"


class TestLLMGrader:
    """Tests for the grading chain."""

    def test_scores_coerced_and_letter_normalized(self):
        result = LLMGrader(fake_llm(GRADE_PAYLOAD), model_name="fake").grade("call text")
        assert result.dimension_scores == (9, 9, 10, 10, 9)
        assert result.overall_grade == LetterGrade.A_PLUS
        assert result.raw_json["overall_grade"] == "a+"
        assert result.key_moments[0].description == "Time agreed"

    def test_unknown_letter_is_dropped_and_recomputed(self):
        payload = dict(GRADE_PAYLOAD, overall_grade="B-", professionalism_score=1)
        result = LLMGrader(fake_llm(payload), model_name="fake").grade("call text")
        assert result.overall_grade is None
        # (9 + 9 + 10 + 10 + 1) / 5 = 7.8
        assert finalize_grade(result).overall_grade == LetterGrade.B

    def test_missing_score_is_malformed(self):
        payload = {k: v for k, v in GRADE_PAYLOAD.items() if k != "opener_score"}
        with pytest.raises(MalformedOutputError):
            LLMGrader(fake_llm(payload), model_name="fake").grade("call text")


class TestLLMSplitter:
    """Tests for the splitting chain."""

    def test_proposals_are_anchored_to_source(self, sample_transcript, sample_calls):
        first_lines = [block.splitlines()[0] for _, block in sample_calls]
        llm = fake_llm({
            "segments": [
                {"start_timestamp": line[1:9], "first_line": line}
                for line in first_lines
            ]
            # the model repeats the first call
            + [{"start_timestamp": first_lines[0][1:9], "first_line": first_lines[0]}]
        })
        segments = LLMSplitter(llm, model_name="fake").split(sample_transcript)
        assert len(segments) == len(sample_calls)
        assert "".join(s.raw_text for s in segments) == sample_transcript


class RecordingLLM(FakeListLLM):
    """FakeListLLM that keeps every rendered prompt."""

    prompts: list[str] = Field(default_factory=list)

    def _call(self, prompt, stop=None, run_manager=None, **kwargs):
        self.prompts.append(prompt)
        return super()._call(prompt, stop=stop, run_manager=run_manager, **kwargs)


class TestPromptOverrides:
    """Tests for system prompts configured through settings."""

    STRICT = "Grade like a strict sales manager. Nobody gets an A for a voicemail."

    @pytest.fixture
    def recording_llm(self, monkeypatch):
        llm = RecordingLLM(responses=[json.dumps(GRADE_PAYLOAD)])
        monkeypatch.setattr("sdr_pipeline.llm.client.create_llm_client", lambda settings=None: llm)
        return llm

    def test_configured_grader_prompt_reaches_the_chain(self, test_settings, recording_llm):
        settings = test_settings.model_copy(
            update={"grader_backend": CapabilityBackend.LLM, "grader_system_prompt": self.STRICT}
        )
        capabilities = build_capabilities(settings)
        assert isinstance(capabilities.grader, LLMGrader)
        assert capabilities.grader.system_prompt == self.STRICT

        capabilities.grader.grade("[00:01] Alex: Hi, is this Dana?")

        assert self.STRICT in recording_llm.prompts[0]
        assert GRADER_SYSTEM_PROMPT not in recording_llm.prompts[0]

    def test_unset_prompt_keeps_the_default(self, test_settings, recording_llm):
        settings = test_settings.model_copy(
            update={"classifier_backend": CapabilityBackend.LLM, "splitter_backend": CapabilityBackend.LLM}
        )
        capabilities = build_capabilities(settings)
        assert capabilities.classifier.system_prompt == CLASSIFIER_SYSTEM_PROMPT
        assert capabilities.splitter.system_prompt == SPLITTER_SYSTEM_PROMPT

    def test_prompts_load_from_environment(self, monkeypatch, recording_llm):
        monkeypatch.setenv("SDR_CLASSIFIER_BACKEND", "llm")
        monkeypatch.setenv("SDR_CLASSIFIER_SYSTEM_PROMPT", "Label calls for the EMEA team.")
        monkeypatch.setenv("SDR_SPLITTER_BACKEND", "llm")
        monkeypatch.setenv("SDR_SPLITTER_SYSTEM_PROMPT", "Split on dialer beeps.")

        capabilities = build_capabilities(Settings(database_url="sqlite://"))

        assert capabilities.classifier.system_prompt == "Label calls for the EMEA team."
        assert capabilities.splitter.system_prompt == "Split on dialer beeps."
        assert isinstance(capabilities.grader, RubricGrader)
