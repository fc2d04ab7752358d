"""Tests for transcript parsing and call segmentation."""

import pytest

from sdr_pipeline.errors import CapabilityError, MalformedOutputError
from sdr_pipeline.models import RawSegment
from sdr_pipeline.pipeline.stages.segmentation import (
    HeuristicSplitter,
    SegmentationTrace,
    anchor_proposals,
    chunk_transcript,
    dedupe_proposals,
    run_segmentation,
    segment_transcript,
    validate_partition,
)
from sdr_pipeline.pipeline.stages.turns import parse_line, parse_turns, split_lines, timestamp_to_seconds


class TestLineParsing:
    """Tests for speaker/timestamp header recognition."""

    def test_timestamp_to_seconds(self):
        assert timestamp_to_seconds("01:30") == 90
        assert timestamp_to_seconds("1:02:03") == 3723
        assert timestamp_to_seconds("garbage") is None

    @pytest.mark.parametrize(
        "line,speaker,timestamp",
        [
            ("[00:12] Speaker 2: Hello?", "Speaker 2", "00:12"),
            ("Alex (00:12): Hello?", "Alex", "00:12"),
            ("00:12 Alex: Hello?", "Alex", "00:12"),
            ("jsmith | 09:14:03 | Hi there", "jsmith", "09:14:03"),
            ("Alex: Hello?", "Alex", None),
        ],
    )
    def test_header_shapes(self, line, speaker, timestamp):
        parsed = parse_line(0, line)
        assert parsed.is_header
        assert parsed.speaker == speaker
        assert parsed.timestamp == timestamp

    def test_prose_is_not_a_header(self):
        assert not parse_line(0, "Note: the prospect was driving").is_header
        assert not parse_line(0, "just some words").is_header

    def test_continuation_lines_join_the_turn(self):
        lines = split_lines("[00:01] Alex: first part\nsecond part\n[00:05] Dana: reply\n")
        turns = parse_turns(lines)
        assert len(turns) == 2
        assert turns[0].text == "first part second part"
        assert turns[0].end_line == 2


class TestHeuristicSegmentation:
    """Tests for segment_transcript on realistic dialer output."""

    def test_sample_day_splits_into_ten_calls(self, sample_transcript, sample_calls):
        segments = segment_transcript(sample_transcript)
        assert len(segments) == len(sample_calls)
        for segment, (_, block) in zip(segments, sample_calls):
            assert segment.raw_text.strip() == block.strip()

    def test_partition_is_lossless(self, sample_transcript):
        segments = segment_transcript(sample_transcript)
        assert "".join(s.raw_text for s in segments) == sample_transcript

    def test_start_timestamps_and_durations(self, sample_transcript):
        segments = segment_transcript(sample_transcript)
        assert segments[0].start_timestamp == "09:00:05"
        # 09:03:00 - 09:00:05
        assert segments[0].approx_duration_seconds == 175
        assert segments[-1].approx_duration_seconds is None

    def test_no_timestamps_returns_single_segment(self):
        text = "Alex: hi there\nDana: hello\n"
        trace = SegmentationTrace()
        segments = segment_transcript(text, trace=trace)
        assert segments == [RawSegment(raw_text=text)]
        assert trace.used_fallback

    def test_preamble_stays_with_first_call(self, sample_calls):
        text = "Dialer export for Alex\n" + sample_calls[0][1]
        segments = segment_transcript(text)
        assert segments[0].raw_text.startswith("Dialer export for Alex")
        assert "".join(s.raw_text for s in segments) == text

    def test_clock_rewind_starts_new_call(self):
        text = (
            "[00:00:05] Alex: So anyway the pricing works per seat\n"
            "[00:00:10] Dana: Got it\n"
            "[00:00:02] Alex: So where were we on the contract\n"
            "[00:00:04] Omar: The legal review\n"
        )
        trace = SegmentationTrace()
        segments = segment_transcript(text, trace=trace)
        assert len(segments) == 2
        assert [b.reason for b in trace.boundaries] == ["clock_rewind"]

    def test_speaker_reset_starts_new_call(self):
        text = (
            "[00:10] Speaker 2: pricing per seat works for us\n"
            "[00:14] Speaker 3: agreed on the seat count\n"
            "[00:18] Speaker 1: ringing through now\n"
        )
        trace = SegmentationTrace()
        segment_transcript(text, trace=trace)
        assert [b.reason for b in trace.boundaries] == ["speaker_reset"]

    def test_short_gap_without_greeting_does_not_split(self):
        text = (
            "[00:00:05] Alex: Is now a good time to talk pricing\n"
            "[00:00:50] Dana: Sorry, had to grab the door. Go on.\n"
        )
        assert len(segment_transcript(text, gap_seconds=30)) == 1

    def test_gap_after_sign_off_splits_without_greeting(self):
        text = (
            "[00:00:05] Alex: Thanks again, have a great day\n"
            "[00:02:00] Dana: Yeah so about that contract\n"
        )
        trace = SegmentationTrace()
        assert len(segment_transcript(text, trace=trace)) == 2
        assert trace.boundaries[0].reason == "gap_after_sign_off"

    def test_empty_text_returns_single_empty_segment(self):
        assert segment_transcript("") == [RawSegment(raw_text="")]

    def test_heuristic_splitter_capability(self, sample_transcript):
        assert len(HeuristicSplitter().split(sample_transcript)) == 10


class TestChunkingAndAnchoring:
    """Tests for LLM proposal support."""

    def test_short_text_is_one_chunk(self):
        assert chunk_transcript("a\nb\n", max_chars=100) == ["a\nb\n"]

    def test_chunks_overlap(self):
        text = "".join(f"line {i}\n" for i in range(20))
        chunks = chunk_transcript(text, max_chars=40, overlap_lines=2)
        assert len(chunks) > 1
        first_tail = chunks[0].splitlines()[-2:]
        assert chunks[1].splitlines()[:2] == first_tail

    def test_dedupe_drops_repeated_proposals(self):
        proposals = [
            {"start_timestamp": "09:00:05", "first_line": "[09:00:05] Alex: Hi"},
            {"start_timestamp": "09:00:05", "first_line": "[09:00:05]  Alex:  Hi"},
            {"start_timestamp": "09:03:00", "first_line": "[09:03:00] Voicemail: You've reached"},
        ]
        assert len(dedupe_proposals(proposals)) == 2

    def test_anchor_maps_proposals_onto_source_lines(self, sample_transcript, sample_calls):
        proposals = [
            {"first_line": sample_calls[0][1].splitlines()[0]},
            {"first_line": sample_calls[4][1].splitlines()[0]},
        ]
        segments = anchor_proposals(sample_transcript, proposals)
        assert len(segments) == 2
        assert "".join(s.raw_text for s in segments) == sample_transcript
        assert segments[1].raw_text.startswith("[09:08:00]")

    def test_anchor_with_no_match_is_malformed(self, sample_transcript):
        with pytest.raises(MalformedOutputError):
            anchor_proposals(sample_transcript, [{"first_line": "this line is nowhere in the transcript"}])


class TestRunSegmentation:
    """Tests for the stage entry point."""

    def test_rejects_lossy_partition(self):
        with pytest.raises(MalformedOutputError):
            validate_partition("abc", [RawSegment(raw_text="ab")])

    def test_rejects_empty_output(self):
        with pytest.raises(MalformedOutputError):
            validate_partition("abc", [])

    def test_failed_splitter_falls_back(self, sample_transcript):
        class BrokenSplitter:
            def split(self, text):
                raise RuntimeError("model offline")

        segments, trace = run_segmentation(
            sample_transcript, BrokenSplitter(), timeout=5, fallback=HeuristicSplitter()
        )
        assert len(segments) == 10
        assert trace.used_fallback
        assert trace.splitter == "HeuristicSplitter"

    def test_failed_splitter_without_fallback_raises(self, sample_transcript):
        class LossySplitter:
            def split(self, text):
                return [RawSegment(raw_text=text[:10])]

        with pytest.raises(CapabilityError):
            run_segmentation(sample_transcript, LossySplitter(), timeout=5)
