"""Line and speaker-turn parsing shared by the segmentation, classification
and grading stages.

Dialer exports mix several line shapes:

    Speaker 1 | 00:12            (header, content on the following lines)
    jsmith | 09:14:03 | Hi there (header with inline content)
    [00:12] Speaker 2: Hello?
    Alex (00:12): Hello?
    00:12 Alex: Hello?
    Alex: Hello?                 (no timestamp)

Lines that match none of these continue the current turn.
"""

import re
from dataclasses import dataclass, field
from typing import Optional

# =============================================================================
# Line Patterns
# =============================================================================

TIMESTAMP = r"\d{1,2}:\d{2}(?::\d{2})?"
_SPEAKER = r"[A-Za-z][\w .'\-]{0,40}?"

PIPE_HEADER = re.compile(
    r"^\s*(?P<speaker>[^|\[\]\n]{1,60}?)\s*\|\s*(?P<ts>" + TIMESTAMP + r")\s*(?:\|\s*(?P<text>.*))?$"
)
BRACKET_LINE = re.compile(
    r"^\s*\[(?P<ts>" + TIMESTAMP + r")\]\s*(?:(?P<speaker>" + _SPEAKER + r")\s*:)?\s*(?P<text>.*)$"
)
PAREN_LINE = re.compile(
    r"^\s*(?P<speaker>" + _SPEAKER + r")\s*\((?P<ts>" + TIMESTAMP + r")\)\s*:?\s*(?P<text>.*)$"
)
TIMESTAMP_FIRST_LINE = re.compile(
    r"^\s*(?P<ts>" + TIMESTAMP + r")\s*(?:-\s*)?(?P<speaker>" + _SPEAKER + r")\s*:\s*(?P<text>.*)$"
)
SPEAKER_ONLY_LINE = re.compile(
    r"^\s*(?P<speaker>[A-Z][\w.'\-]*(?:\s[A-Z0-9][\w.'\-]*){0,3})\s*:\s+(?P<text>\S.*)$"
)

_LINE_PATTERNS = (PIPE_HEADER, BRACKET_LINE, PAREN_LINE, TIMESTAMP_FIRST_LINE, SPEAKER_ONLY_LINE)

NUMBERED_SPEAKER = re.compile(r"^speaker\s*(\d+)$", re.IGNORECASE)

# Words that start prose rather than a speaker label ("Note: ...", "The: ...")
NON_SPEAKER_WORDS = {
    "the", "a", "an", "and", "but", "so", "if", "or", "note", "notes", "re",
    "subject", "ps", "i", "we", "they", "it", "this", "that", "also", "okay",
    "ok", "yes", "no", "well", "then", "now", "question", "answer",
}

# =============================================================================
# Conversational Cues
# =============================================================================

GREETING = re.compile(
    r"^\W*(?:"
    r"(?:hello|hi|hey|good\s+(?:morning|afternoon|evening))\b"
    r"|(?:is\s+this|am\s+i\s+speaking\s+(?:to|with)|this\s+is|my\s+name\s+is)\s"
    r")",
    re.IGNORECASE,
)

SIGN_OFF = re.compile(
    r"\b(?:bye(?:[\s-]bye)?|goodbye|take\s+care|talk\s+(?:to\s+you\s+)?(?:soon|later)"
    r"|have\s+a\s+(?:good|great|nice|wonderful)\s+(?:one|day|afternoon|evening|weekend))\b",
    re.IGNORECASE,
)

VOICEMAIL_SYSTEM = re.compile(
    r"(?:"
    r"(?:please\s+)?leave\s+(?:a|your)\s+(?:brief\s+)?(?:name\s+and\s+)?message\s+(?:after|at)"
    r"|after\s+the\s+(?:tone|beep)"
    r"|(?:not|un)\s*available\s+to\s+take\s+(?:your|the|this)\s+call"
    r"|record\s+your\s+message"
    r"|(?:you(?:'ve|\s+have)\s+reached|welcome\s+to)\s+(?:the\s+)?(?:voice\s*mail|mailbox)"
    r"|voice\s*mail\s*box"
    r"|the\s+(?:person|party|number|subscriber)\s+you\s+(?:are\s+(?:trying\s+to\s+reach|calling)|have\s+dialed)"
    r"|press\s+(?:\d|one|two|zero)\b"
    r"|thank\s+you\s+for\s+calling"
    r"|please\s+listen\s+carefully"
    r"|(?:your\s+)?call\s+(?:has\s+been|is\s+being)\s+forwarded"
    r")",
    re.IGNORECASE,
)

SIGN_OFF_WINDOW = 200


# =============================================================================
# Structures
# =============================================================================

@dataclass
class ParsedLine:
    """One source line with whatever header information it carries."""
    index: int
    raw: str
    speaker: Optional[str] = None
    timestamp: Optional[str] = None
    seconds: Optional[int] = None
    text: str = ""
    is_header: bool = False


@dataclass
class Turn:
    """A run of lines spoken by one speaker, starting at a header line."""
    start_line: int
    end_line: int  # exclusive
    speaker: Optional[str] = None
    timestamp: Optional[str] = None
    seconds: Optional[int] = None
    content: list[str] = field(default_factory=list)

    @property
    def text(self) -> str:
        return " ".join(part for part in self.content if part)

    @property
    def speaker_number(self) -> Optional[int]:
        if not self.speaker:
            return None
        match = NUMBERED_SPEAKER.match(self.speaker.strip())
        return int(match.group(1)) if match else None

    @property
    def opens_with_greeting(self) -> bool:
        return bool(GREETING.match(self.text[:120]))

    @property
    def signs_off(self) -> bool:
        return bool(SIGN_OFF.search(self.text[-SIGN_OFF_WINDOW:]))

    @property
    def has_voicemail_system(self) -> bool:
        return bool(VOICEMAIL_SYSTEM.search(self.text))


# =============================================================================
# Parsing
# =============================================================================

def timestamp_to_seconds(timestamp: str) -> Optional[int]:
    """Convert "MM:SS" or "HH:MM:SS" to seconds."""
    try:
        parts = [int(p) for p in timestamp.strip().split(":")]
    except ValueError:
        return None
    if len(parts) == 2:
        minutes, seconds = parts
        return minutes * 60 + seconds
    if len(parts) == 3:
        hours, minutes, seconds = parts
        return hours * 3600 + minutes * 60 + seconds
    return None


def _is_valid_speaker(label: str) -> bool:
    label = label.strip()
    if not label or len(label) > 60:
        return False
    first_word = label.split()[0].lower().rstrip(".,;:")
    return first_word not in NON_SPEAKER_WORDS


def parse_line(index: int, raw: str) -> ParsedLine:
    """Recognize a speaker/timestamp header on a single line."""
    line = raw.rstrip("\r\n")
    for pattern in _LINE_PATTERNS:
        match = pattern.match(line)
        if not match:
            continue
        groups = match.groupdict()
        speaker = (groups.get("speaker") or "").strip() or None
        if speaker is not None and not _is_valid_speaker(speaker):
            continue
        ts = groups.get("ts")
        if speaker is None and ts is None:
            continue
        return ParsedLine(
            index=index,
            raw=raw,
            speaker=speaker,
            timestamp=ts,
            seconds=timestamp_to_seconds(ts) if ts else None,
            text=(groups.get("text") or "").strip(),
            is_header=True,
        )
    return ParsedLine(index=index, raw=raw, text=line.strip())


def split_lines(text: str) -> list[str]:
    """Split text into lines, keeping line endings so joins are lossless."""
    return text.splitlines(keepends=True)


def parse_turns(lines: list[str]) -> list[Turn]:
    """Group source lines into speaker turns.

    Lines before the first header line are not part of any turn.
    """
    turns: list[Turn] = []
    current: Optional[Turn] = None

    for idx, raw in enumerate(lines):
        parsed = parse_line(idx, raw)
        if parsed.is_header:
            if current is not None:
                current.end_line = idx
                turns.append(current)
            current = Turn(
                start_line=idx,
                end_line=idx + 1,
                speaker=parsed.speaker,
                timestamp=parsed.timestamp,
                seconds=parsed.seconds,
                content=[parsed.text] if parsed.text else [],
            )
        elif current is not None and parsed.text:
            current.content.append(parsed.text)

    if current is not None:
        current.end_line = len(lines)
        turns.append(current)

    return turns


def turns_from_text(text: str) -> list[Turn]:
    return parse_turns(split_lines(text))


def speakers_in(turns: list[Turn]) -> list[str]:
    """Distinct speaker labels in order of first appearance."""
    seen: list[str] = []
    for turn in turns:
        label = (turn.speaker or "").strip()
        if label and label.lower() not in (s.lower() for s in seen):
            seen.append(label)
    return seen


def count_alternations(turns: list[Turn]) -> int:
    """Number of times the speaker changes between consecutive labelled turns."""
    changes = 0
    previous: Optional[str] = None
    for turn in turns:
        label = (turn.speaker or "").strip().lower()
        if not label:
            continue
        if previous is not None and label != previous:
            changes += 1
        previous = label
    return changes
