"""Stage 3: Grading - score meaningful conversations on the five-part rubric.

The letter grade is never taken from a capability: it is recomputed from the
equally weighted mean of the five dimension scores.
"""

import re
from dataclasses import dataclass
from typing import Optional

import structlog

from sdr_pipeline.errors import ConsistencyError, GradingError, MalformedOutputError
from sdr_pipeline.models import GradeResult, KeyMoment, LetterGrade, Sentiment
from sdr_pipeline.pipeline.capabilities import GradeCapability, call_capability
from sdr_pipeline.pipeline.stages.classification import extract_prospect
from sdr_pipeline.pipeline.stages.turns import Turn, turns_from_text

logger = structlog.get_logger(__name__)

# Lower bound of each band, best first
GRADE_BANDS: list[tuple[float, LetterGrade]] = [
    (9.5, LetterGrade.A_PLUS),
    (8.5, LetterGrade.A),
    (7.0, LetterGrade.B),
    (5.5, LetterGrade.C),
    (4.0, LetterGrade.D),
]

NEUTRAL_OBJECTION_SCORE = 5


def letter_grade_for(mean_score: float) -> LetterGrade:
    """Map a mean rubric score to its letter band."""
    for lower_bound, grade in GRADE_BANDS:
        if mean_score >= lower_bound:
            return grade
    return LetterGrade.F


def mean_score(result: GradeResult) -> float:
    scores = result.dimension_scores
    return sum(scores) / len(scores)


# =============================================================================
# Rubric Patterns
# =============================================================================

SELF_INTRO = re.compile(r"\b(?:this\s+is|my\s+name\s+is|it's)\s+[A-Z][a-z]+", re.IGNORECASE)
COMPANY_INTRO = re.compile(r"\b(?:from|with|over\s+at)\s+[A-Z][\w&]+")
REASON_FOR_CALL = re.compile(
    r"\b(?:reason\s+(?:I'm|i\s+am|for\s+my)\s+call|reaching\s+out|calling\s+(?:because|about|to\s+see)|"
    r"the\s+reason|saw\s+that|noticed\s+that|we\s+help|we\s+work\s+with)\b",
    re.IGNORECASE,
)
PERMISSION = re.compile(
    r"\b(?:do\s+you\s+have\s+(?:a\s+)?(?:minute|moment|second|30\s+seconds)|bad\s+time|"
    r"caught\s+you\s+at|quick\s+(?:minute|second))\b",
    re.IGNORECASE,
)
OBJECTION = re.compile(
    r"\b(?:not\s+interested|no\s+thanks|no\s+thank\s+you|too\s+busy|not\s+a\s+good\s+time|"
    r"send\s+(?:me\s+)?(?:an\s+)?(?:email|info|something)|already\s+(?:have|use|work\s+with)|"
    r"no\s+budget|don't\s+have\s+(?:the\s+)?budget|not\s+(?:the\s+)?right\s+person|call\s+(?:me\s+)?back\s+later|"
    r"we're\s+(?:all\s+)?set|happy\s+with)\b",
    re.IGNORECASE,
)
ACKNOWLEDGE = re.compile(
    r"\b(?:totally\s+(?:get|understand)|i\s+(?:get|understand|hear)\s+(?:that|you|it)|understood|"
    r"makes\s+sense|fair\s+enough|that's\s+fair|appreciate\s+that|i\s+hear\s+you|no\s+worries)\b",
    re.IGNORECASE,
)
MEETING_ASK = re.compile(
    r"\b(?:would\s+you\s+be\s+open|open\s+to|grab\s+(?:some\s+)?time|find\s+(?:a\s+)?time|"
    r"set\s+up\s+(?:a\s+)?(?:call|meeting|demo|time)|schedule|book\s+(?:a\s+)?(?:call|meeting|demo|time)|"
    r"(?:can|could|shall)\s+we\s+meet|(?:\d+|fifteen|twenty|thirty)[\s-]+minutes?|meeting|demo)\b",
    re.IGNORECASE,
)
# A bare "at 50" is a count, not a time
CONCRETE_TIME = re.compile(
    r"\b(?:monday|tuesday|wednesday|thursday|friday|saturday|sunday|tomorrow|noon|"
    r"\d{1,2}(?::\d{2})?\s*(?:am|pm)\b|\d{1,2}(?::\d{2})?\s*[ap]\.m\.|"
    r"at\s+\d{1,2}:\d{2}\b|at\s+\d{1,2}\s*o'clock)",
    re.IGNORECASE,
)
ACCEPTANCE = re.compile(
    r"\b(?:works\s+(?:for\s+me|great|fine)|that\s+works|sounds\s+(?:good|great|fine)|sure|yes|yeah|yep|"
    r"perfect|see\s+you\s+then|let's\s+do\s+(?:it|that)|i'll\s+be\s+there|book\s+it)\b",
    re.IGNORECASE,
)
DECLINE = re.compile(
    r"\b(?:not\s+interested|no\s+thanks|no\s+thank\s+you|don't\s+call|take\s+me\s+off|remove\s+me|"
    r"not\s+right\s+now|maybe\s+(?:later|next)|i'll\s+think\s+about\s+it)\b",
    re.IGNORECASE,
)
CALENDAR_CONFIRM = re.compile(
    r"\b(?:calendar\s+invite|send\s+(?:you\s+|over\s+)?(?:an?\s+|the\s+)?invite|best\s+email|your\s+email|"
    r"confirm\s+your\s+email)\b",
    re.IGNORECASE,
)
COURTESY = re.compile(r"\b(?:thank\s+you|thanks|appreciate)\b", re.IGNORECASE)
FILLER = re.compile(r"\b(?:um+|uh+|erm|you\s+know|kinda|gonna)\b", re.IGNORECASE)
PROFANITY = re.compile(r"\b(?:damn|hell|crap|shit|fuck\w*)\b", re.IGNORECASE)
CLOSING = re.compile(
    r"\b(?:have\s+a\s+(?:good|great|nice)|take\s+care|talk\s+(?:to\s+you\s+)?soon|bye|goodbye)\b",
    re.IGNORECASE,
)


def _clamp(score: int) -> int:
    return max(1, min(10, score))


# =============================================================================
# Call Anatomy
# =============================================================================

@dataclass
class CallAnatomy:
    """Speaker turns split into rep and prospect sides."""
    turns: list[Turn]
    rep_label: Optional[str]

    def is_rep(self, turn: Turn) -> bool:
        return (turn.speaker or "").strip().lower() == (self.rep_label or "").lower()

    @property
    def rep_turns(self) -> list[Turn]:
        return [t for t in self.turns if self.is_rep(t)]

    @property
    def prospect_turns(self) -> list[Turn]:
        return [t for t in self.turns if t.speaker and not self.is_rep(t)]

    @property
    def first_rep_turn(self) -> Optional[Turn]:
        reps = self.rep_turns
        return reps[0] if reps else None


def analyze_call(text: str) -> CallAnatomy:
    """Identify the rep as the first speaker who introduces themselves."""
    turns = turns_from_text(text)
    rep_label = None
    for turn in turns:
        if turn.speaker and SELF_INTRO.search(turn.text):
            rep_label = turn.speaker.strip()
            break
    if rep_label is None:
        labelled = [t for t in turns if t.speaker]
        rep_label = labelled[0].speaker.strip() if labelled else None
    return CallAnatomy(turns=turns, rep_label=rep_label)


# =============================================================================
# Dimension Scoring
# =============================================================================

def score_opener(anatomy: CallAnatomy, prospect_name: Optional[str]) -> int:
    opener = anatomy.first_rep_turn
    if opener is None:
        return 1
    text = opener.text
    score = 4
    if SELF_INTRO.search(text):
        score += 2
    if COMPANY_INTRO.search(text):
        score += 1
    if REASON_FOR_CALL.search(" ".join(t.text for t in anatomy.rep_turns[:2])):
        score += 1
    if PERMISSION.search(text):
        score += 1
    if prospect_name and prospect_name.split()[0] in text:
        score += 1
    return _clamp(score)


def score_engagement(anatomy: CallAnatomy) -> int:
    rep_questions = sum(t.text.count("?") for t in anatomy.rep_turns)
    prospect_turns = len(anatomy.prospect_turns)
    return _clamp(3 + min(rep_questions, 4) + min(prospect_turns // 2, 3))


def _first_objection_index(anatomy: CallAnatomy) -> Optional[int]:
    for i, turn in enumerate(anatomy.turns):
        if turn.speaker and not anatomy.is_rep(turn) and OBJECTION.search(turn.text):
            return i
    return None


def score_objection_handling(anatomy: CallAnatomy) -> int:
    index = _first_objection_index(anatomy)
    if index is None:
        return NEUTRAL_OBJECTION_SCORE

    after = anatomy.turns[index + 1:]
    rep_after = [t for t in after if anatomy.is_rep(t)]
    prospect_after = [t for t in after if t.speaker and not anatomy.is_rep(t)]

    score = 3
    if rep_after and ACKNOWLEDGE.search(rep_after[0].text):
        score += 2
    if rep_after and "?" in rep_after[0].text:
        score += 2
    if len(prospect_after) >= 2:
        score += 2
    if any(ACCEPTANCE.search(t.text) for t in prospect_after):
        score += 1
    return _clamp(score)


def _is_time_proposal(text: str) -> bool:
    return bool(CONCRETE_TIME.search(text)) and bool(
        MEETING_ASK.search(text) or CALENDAR_CONFIRM.search(text)
    )


def detect_meeting_scheduled(anatomy: CallAnatomy) -> Optional[bool]:
    """True only for a concrete time the prospect accepted.

    The rep has to put a specific time on the table for a meeting and the
    prospect has to agree in a later turn. A "yeah" or "sure" after a head
    count or a callback promise does not book anything.

    Returns False when a meeting was discussed or declined without a
    confirmed time, and None when the call never got that far.
    """
    meeting_discussed = False
    proposal_open = False
    for turn in anatomy.turns:
        if not turn.speaker:
            continue
        if MEETING_ASK.search(turn.text):
            meeting_discussed = True
        if anatomy.is_rep(turn):
            if _is_time_proposal(turn.text):
                proposal_open = True
            continue
        if DECLINE.search(turn.text):
            proposal_open = False
        elif proposal_open and ACCEPTANCE.search(turn.text):
            return True

    declined = any(DECLINE.search(t.text) for t in anatomy.prospect_turns)
    if meeting_discussed or declined:
        return False
    return None


def score_appointment_setting(anatomy: CallAnatomy, meeting_scheduled: Optional[bool]) -> int:
    rep_text = " ".join(t.text for t in anatomy.rep_turns)
    if meeting_scheduled:
        score = 8
        if CALENDAR_CONFIRM.search(rep_text):
            score += 1
        if CONCRETE_TIME.search(rep_text):
            score += 1
        return _clamp(score)
    if MEETING_ASK.search(rep_text):
        return 5 if CONCRETE_TIME.search(rep_text) else 4
    return 2


def score_professionalism(anatomy: CallAnatomy) -> int:
    rep_text = " ".join(t.text for t in anatomy.rep_turns)
    score = 7
    if COURTESY.search(rep_text):
        score += 1
    if anatomy.rep_turns and CLOSING.search(anatomy.rep_turns[-1].text):
        score += 1
    fillers = len(FILLER.findall(rep_text))
    score -= min(fillers // 2, 3)
    if PROFANITY.search(rep_text):
        score -= 3
    return _clamp(score)


# =============================================================================
# Coaching Artifacts
# =============================================================================

DIMENSION_LABELS = {
    "opener_score": "opener",
    "engagement_score": "engagement",
    "objection_handling_score": "objection handling",
    "appointment_setting_score": "appointment setting",
    "professionalism_score": "professionalism",
}

STRENGTH_NOTES = {
    "opener_score": "Clear, confident opener that introduced the rep and the reason for the call",
    "engagement_score": "Asked questions and kept the prospect talking",
    "objection_handling_score": "Acknowledged the objection and kept the conversation moving",
    "appointment_setting_score": "Pushed for a concrete next step with a specific time",
    "professionalism_score": "Courteous and professional throughout, with a clean close",
}

IMPROVEMENT_NOTES = {
    "opener_score": "Open with your name, company and a one-line reason for calling before pitching",
    "engagement_score": "Ask more open-ended discovery questions and let the prospect talk",
    "objection_handling_score": "Acknowledge the objection first, then ask a question to uncover what is behind it",
    "appointment_setting_score": "Ask directly for a meeting and offer two specific time slots",
    "professionalism_score": "Cut filler words and close with a clear next step and a friendly goodbye",
}


def _coaching_artifacts(
    scores: dict[str, int],
    anatomy: CallAnatomy,
    meeting_scheduled: Optional[bool],
    prospect_name: Optional[str],
) -> tuple[str, list[str], list[str], list[KeyMoment], str]:
    ranked = sorted(scores.items(), key=lambda item: item[1], reverse=True)

    strengths = [STRENGTH_NOTES[k] for k, v in ranked if v >= 7]
    if not strengths:
        best = ranked[0][0]
        strengths = [f"Strongest area on this call was {DIMENSION_LABELS[best]}"]

    improvements = [IMPROVEMENT_NOTES[k] for k, v in reversed(ranked) if v <= 6]
    if not improvements:
        weakest = ranked[-1][0]
        improvements = [IMPROVEMENT_NOTES[weakest]]

    who = prospect_name or "the prospect"
    outcome = {
        True: "A meeting was booked for a specific time.",
        False: "No meeting was booked.",
        None: "The call ended before a next step came up.",
    }[meeting_scheduled]
    objection_index = _first_objection_index(anatomy)
    objection_note = " The prospect raised an objection." if objection_index is not None else ""
    summary = (
        f"Call with {who} lasting {len(anatomy.turns)} turns "
        f"({len(anatomy.prospect_turns)} from the prospect).{objection_note} {outcome}"
    )

    moments: list[KeyMoment] = []
    opener = anatomy.first_rep_turn or (anatomy.turns[0] if anatomy.turns else None)
    moments.append(
        KeyMoment(
            timestamp=opener.timestamp if opener else None,
            description="Opener",
            sentiment=Sentiment.POSITIVE if scores["opener_score"] >= 7 else Sentiment.NEUTRAL,
        )
    )
    if objection_index is not None:
        moments.append(
            KeyMoment(
                timestamp=anatomy.turns[objection_index].timestamp,
                description="Prospect objection",
                sentiment=Sentiment.NEGATIVE,
            )
        )
    if meeting_scheduled:
        booked = next((t for t in reversed(anatomy.turns) if CONCRETE_TIME.search(t.text)), None)
        moments.append(
            KeyMoment(
                timestamp=booked.timestamp if booked else None,
                description="Meeting time agreed",
                sentiment=Sentiment.POSITIVE,
            )
        )

    weakest = ranked[-1][0]
    coaching_notes = (
        f"Focus area: {DIMENSION_LABELS[weakest]}. {IMPROVEMENT_NOTES[weakest]}. "
        f"Keep doing this: {strengths[0][0].lower() + strengths[0][1:]}."
    )
    return summary, strengths, improvements, moments, coaching_notes


class RubricGrader:
    """Deterministic GradeCapability scoring the transcript against the rubric."""

    model_name = "rubric-grader"

    def grade(self, text: str) -> GradeResult:
        anatomy = analyze_call(text)
        prospect_name, _ = extract_prospect(text, anatomy.turns)
        meeting_scheduled = detect_meeting_scheduled(anatomy)

        scores = {
            "opener_score": score_opener(anatomy, prospect_name),
            "engagement_score": score_engagement(anatomy),
            "objection_handling_score": score_objection_handling(anatomy),
            "appointment_setting_score": score_appointment_setting(anatomy, meeting_scheduled),
            "professionalism_score": score_professionalism(anatomy),
        }
        summary, strengths, improvements, moments, notes = _coaching_artifacts(
            scores, anatomy, meeting_scheduled, prospect_name
        )
        return GradeResult(
            **scores,
            meeting_scheduled=meeting_scheduled,
            call_summary=summary,
            strengths=strengths,
            improvements=improvements,
            key_moments=moments,
            coaching_notes=notes,
            raw_json={"rep_label": anatomy.rep_label, **scores},
        )


# =============================================================================
# Stage Entry Point
# =============================================================================

def finalize_grade(result: GradeResult) -> GradeResult:
    """Recompute the letter grade and check that coaching output is usable.

    The capability's own letter, if any, is preserved in raw_json.

    Raises:
        MalformedOutputError: If the capability did not return a GradeResult.
        GradingError: If any coaching artifact is empty.
    """
    if not isinstance(result, GradeResult):
        raise MalformedOutputError(f"Grader returned {type(result).__name__}, not a grade")

    missing = [
        name for name, value in (
            ("call_summary", result.call_summary.strip()),
            ("strengths", [s for s in result.strengths if s.strip()]),
            ("improvements", [s for s in result.improvements if s.strip()]),
            ("key_moments", result.key_moments),
            ("coaching_notes", result.coaching_notes.strip()),
        )
        if not value
    ]
    if missing:
        raise GradingError(f"Grade is missing coaching output: {', '.join(missing)}")

    computed = letter_grade_for(mean_score(result))
    raw_json = dict(result.raw_json)
    if result.overall_grade is not None and result.overall_grade != computed:
        raw_json["model_overall_grade"] = result.overall_grade.value
        logger.debug(
            "grade_letter_recomputed",
            model_grade=result.overall_grade.value,
            computed=computed.value,
        )
    return result.model_copy(update={"overall_grade": computed, "raw_json": raw_json})


def grade_segment(
    text: str,
    is_meaningful: bool,
    grader: GradeCapability,
    timeout: Optional[float] = None,
) -> GradeResult:
    """Grade one segment.

    Args:
        text: Segment raw text.
        is_meaningful: Classification result for the segment.
        grader: Capability producing the grade.
        timeout: Seconds allowed for the capability call.

    Returns:
        Finalized GradeResult with a recomputed overall grade.

    Raises:
        ConsistencyError: If the segment is not meaningful.
        CapabilityError: If grading fails, times out or returns unusable output.
    """
    if not is_meaningful:
        raise ConsistencyError("Only meaningful segments can be graded")
    result = call_capability(grader.grade, text, timeout=timeout, name="grade")
    return finalize_grade(result)
