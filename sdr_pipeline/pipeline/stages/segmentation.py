"""Stage 1: Segmentation - split one day's dialer transcript into calls.

Approach:
1. Parse lines into speaker turns (speaker label + timestamp when present)
2. Propose a boundary at each turn that looks like the start of a new call
3. Cut the source at those turns so segments partition the text exactly
4. Optionally let an LLM splitter propose boundaries, anchored back onto
   source lines; fall back to the heuristic result when it fails
"""

import json
from dataclasses import dataclass, field
from typing import Any, Optional

import structlog

from sdr_pipeline.errors import CapabilityError, MalformedOutputError
from sdr_pipeline.models import RawSegment
from sdr_pipeline.pipeline.capabilities import SplitCapability, call_capability
from sdr_pipeline.pipeline.stages.turns import Turn, parse_turns, split_lines

logger = structlog.get_logger(__name__)

DEFAULT_GAP_SECONDS = 30
DEDUPE_PREFIX_CHARS = 100


# =============================================================================
# Inspectable Intermediate Structures
# =============================================================================

@dataclass
class BoundaryDecision:
    """A turn where a new segment was started."""
    line_index: int
    timestamp: Optional[str]
    reason: str


@dataclass
class SegmentationTrace:
    """Inspectable trace of one segmentation run."""
    turns_parsed: int = 0
    timestamps_found: int = 0
    boundaries: list[BoundaryDecision] = field(default_factory=list)
    used_fallback: bool = False
    splitter: str = "heuristic"


@dataclass
class _SegmentState:
    turns: int = 0
    speaker_numbers: set[int] = field(default_factory=set)
    has_voicemail: bool = False


# =============================================================================
# Boundary Rules
# =============================================================================

def _boundary_reason(
    turn: Turn,
    segment: _SegmentState,
    previous_seconds: Optional[int],
    previous_signed_off: bool,
    gap_seconds: int,
) -> Optional[str]:
    """Decide whether this turn opens a new call; returns the rule that fired."""
    gap = None
    if turn.seconds is not None and previous_seconds is not None:
        gap = turn.seconds - previous_seconds

    if gap is not None and gap < 0:
        return "clock_rewind"

    number = turn.speaker_number
    if (
        number is not None
        and segment.turns >= 2
        and segment.speaker_numbers
        and number < min(segment.speaker_numbers)
    ):
        return "speaker_reset"

    if turn.has_voicemail_system and not segment.has_voicemail:
        return "voicemail_preamble"

    long_gap = gap is not None and gap >= gap_seconds
    greeting = turn.opens_with_greeting

    if greeting and long_gap:
        return "gap_greeting"
    if greeting and previous_signed_off:
        return "greeting_after_sign_off"
    if long_gap and previous_signed_off:
        return "gap_after_sign_off"
    return None


def _find_cut_turns(turns: list[Turn], gap_seconds: int, trace: SegmentationTrace) -> list[int]:
    """Return indices of turns that start a new segment (excluding the first)."""
    cuts: list[int] = []
    segment = _SegmentState()
    previous_seconds: Optional[int] = None
    previous_signed_off = False

    for i, turn in enumerate(turns):
        if i > 0:
            reason = _boundary_reason(turn, segment, previous_seconds, previous_signed_off, gap_seconds)
            if reason:
                cuts.append(i)
                trace.boundaries.append(
                    BoundaryDecision(line_index=turn.start_line, timestamp=turn.timestamp, reason=reason)
                )
                segment = _SegmentState()

        segment.turns += 1
        if turn.speaker_number is not None:
            segment.speaker_numbers.add(turn.speaker_number)
        if turn.has_voicemail_system:
            segment.has_voicemail = True
        if turn.seconds is not None:
            previous_seconds = turn.seconds
        previous_signed_off = turn.signs_off

    return cuts


# =============================================================================
# Segment Assembly
# =============================================================================

def _build_segments(lines: list[str], cut_lines: list[int]) -> list[RawSegment]:
    """Cut source lines at the given line indices into RawSegments.

    The first segment always starts at line 0 so that any preamble before the
    first header stays attached to it.
    """
    starts = sorted({0, *[c for c in cut_lines if 0 < c < len(lines)]})
    bounds = list(zip(starts, starts[1:] + [len(lines)]))

    first_seen: list[tuple[Optional[str], Optional[int]]] = []
    for start, end in bounds:
        stamp: tuple[Optional[str], Optional[int]] = (None, None)
        for turn in parse_turns(lines[start:end]):
            if turn.timestamp is not None:
                stamp = (turn.timestamp, turn.seconds)
                break
        first_seen.append(stamp)

    segments: list[RawSegment] = []
    for k, (start, end) in enumerate(bounds):
        timestamp, seconds = first_seen[k]
        duration = None
        if k + 1 < len(bounds):
            next_seconds = first_seen[k + 1][1]
            if seconds is not None and next_seconds is not None and next_seconds > seconds:
                duration = next_seconds - seconds
        segments.append(
            RawSegment(
                raw_text="".join(lines[start:end]),
                start_timestamp=timestamp,
                approx_duration_seconds=duration,
            )
        )
    return segments


def segment_transcript(
    text: str,
    gap_seconds: int = DEFAULT_GAP_SECONDS,
    trace: Optional[SegmentationTrace] = None,
) -> list[RawSegment]:
    """Split a daily transcript into call segments using heuristics.

    Args:
        text: Full raw transcript text.
        gap_seconds: Minimum silence between turns that, combined with a
            greeting or a sign-off, starts a new call.
        trace: Optional trace to record boundary decisions into.

    Returns:
        Ordered segments whose raw_text concatenation equals text. Transcripts
        without any parseable timestamp come back as a single segment.
    """
    trace = trace if trace is not None else SegmentationTrace()
    lines = split_lines(text)
    turns = parse_turns(lines)
    trace.turns_parsed = len(turns)
    trace.timestamps_found = sum(1 for t in turns if t.seconds is not None)

    if trace.timestamps_found == 0:
        trace.used_fallback = True
        logger.debug("segmentation_no_timestamps", lines=len(lines))
        return [RawSegment(raw_text=text)]

    cut_turns = _find_cut_turns(turns, gap_seconds, trace)
    segments = _build_segments(lines, [turns[i].start_line for i in cut_turns])

    logger.debug(
        "segmentation_heuristic_complete",
        turns=len(turns),
        segments=len(segments),
        reasons=[b.reason for b in trace.boundaries],
    )
    return segments


class HeuristicSplitter:
    """Rule-based SplitCapability."""

    model_name = "heuristic-splitter"

    def __init__(self, gap_seconds: int = DEFAULT_GAP_SECONDS):
        self.gap_seconds = gap_seconds

    def split(self, text: str) -> list[RawSegment]:
        return segment_transcript(text, gap_seconds=self.gap_seconds)


# =============================================================================
# LLM Proposal Support (chunking + anchoring)
# =============================================================================

def chunk_transcript(text: str, max_chars: int = 25000, overlap_lines: int = 30) -> list[str]:
    """Split a long transcript into overlapping chunks on line boundaries.

    Consecutive chunks share overlap_lines lines so a call spanning a chunk
    border is seen whole by at least one chunk.
    """
    if len(text) <= max_chars:
        return [text]

    chunks: list[str] = []
    current: list[str] = []
    current_len = 0
    for line in split_lines(text):
        if current_len + len(line) > max_chars and current:
            chunks.append("".join(current))
            current = current[-overlap_lines:] if overlap_lines > 0 else []
            current_len = sum(len(part) for part in current)
        current.append(line)
        current_len += len(line)

    if current:
        chunks.append("".join(current))
    return chunks


def _normalize(line: str) -> str:
    return " ".join(line.split())


def _first_line(value: Any) -> str:
    if not isinstance(value, str):
        return ""
    for line in value.splitlines():
        if line.strip():
            return _normalize(line)
    return ""


def dedupe_proposals(proposals: list[dict]) -> list[dict]:
    """Drop proposals repeated across overlapping chunks.

    Two proposals are duplicates when they share a start timestamp and the
    first characters of their text.
    """
    seen: set[str] = set()
    unique: list[dict] = []
    for proposal in proposals:
        needle = proposal.get("first_line") or proposal.get("raw_text") or ""
        key = json.dumps([
            proposal.get("start_timestamp"),
            _normalize(str(needle))[:DEDUPE_PREFIX_CHARS],
        ])
        if key in seen:
            continue
        seen.add(key)
        unique.append(proposal)
    return unique


def anchor_proposals(text: str, proposals: list[dict]) -> list[RawSegment]:
    """Map model-proposed segments back onto exact source lines.

    Each proposal's first line is located in the source (searching forward
    from the previous anchor); the source is then cut at those lines. Text
    the model rewrote or skipped therefore stays in the output.

    Raises:
        MalformedOutputError: If no proposal can be located in the source.
    """
    lines = split_lines(text)
    normalized = [_normalize(line) for line in lines]
    anchors: list[int] = []
    cursor = 0

    for proposal in proposals:
        needle = _first_line(proposal.get("first_line")) or _first_line(proposal.get("raw_text"))
        if not needle:
            continue
        for j in range(cursor, len(lines)):
            candidate = normalized[j]
            if candidate and (candidate == needle or (len(needle) >= 20 and candidate.startswith(needle[:80]))):
                anchors.append(j)
                cursor = j + 1
                break

    if not anchors:
        raise MalformedOutputError("Splitter output could not be anchored to the transcript")

    return _build_segments(lines, anchors)


# =============================================================================
# Stage Entry Point
# =============================================================================

def validate_partition(text: str, segments: list[RawSegment]) -> None:
    """Ensure segments are a lossless, non-empty partition of text."""
    if not segments:
        raise MalformedOutputError("Splitter returned no segments")
    if "".join(s.raw_text for s in segments) != text:
        raise MalformedOutputError("Splitter segments do not reproduce the transcript text")


def run_segmentation(
    text: str,
    splitter: SplitCapability,
    timeout: Optional[float] = None,
    fallback: Optional[SplitCapability] = None,
) -> tuple[list[RawSegment], SegmentationTrace]:
    """Run the split capability and validate its output.

    Args:
        text: Full raw transcript text.
        splitter: Capability proposing the segments.
        timeout: Seconds allowed for the capability call.
        fallback: Capability used when the primary fails or returns an
            invalid partition.

    Returns:
        Tuple of (segments, trace).

    Raises:
        CapabilityError: If the splitter (and fallback, when given) fail.
    """
    trace = SegmentationTrace(splitter=type(splitter).__name__)
    try:
        segments = call_capability(splitter.split, text, timeout=timeout, name="split")
        validate_partition(text, segments)
        return segments, trace
    except CapabilityError as e:
        if fallback is None or fallback is splitter:
            raise
        logger.warning("segmentation_fallback", splitter=trace.splitter, error=str(e))

    trace.used_fallback = True
    trace.splitter = type(fallback).__name__
    segments = call_capability(fallback.split, text, timeout=timeout, name="split_fallback")
    validate_partition(text, segments)
    return segments, trace
