"""Stage 2: Classification - label each segment by interaction type.

Rules (applied in order, first match wins):
1. hangup        - negligible content and nobody on the other end said anything
2. voicemail     - voicemail system or left message, no live back-and-forth
3. reminder      - short call confirming an already booked meeting
4. conversation  - rep pitched or greeted and a prospect answered
5. internal      - everything else (colleague chatter, dialer noise)

is_meaningful is always derived from call_type, whatever a capability says.
"""

import re
from dataclasses import dataclass
from typing import Optional

import structlog

from sdr_pipeline.errors import CapabilityError, MalformedOutputError
from sdr_pipeline.models import CallType, SegmentClassification
from sdr_pipeline.pipeline.capabilities import ClassifyCapability, call_capability
from sdr_pipeline.pipeline.stages.turns import (
    Turn,
    count_alternations,
    speakers_in,
    turns_from_text,
)

logger = structlog.get_logger(__name__)

DEFAULT_BATCH_SIZE = 10
HANGUP_MAX_WORDS = 12
REMINDER_MAX_TURNS = 10

# =============================================================================
# Pattern Definitions
# =============================================================================

DISCONNECT_PATTERNS = re.compile(
    r"(?:\b(?:hung\s+up|call\s+(?:ended|dropped|failed)|line\s+(?:went\s+dead|disconnected)|disconnected|dial\s+tone)\b"
    r"|\((?:silence|no\s+answer|click)\))",
    re.IGNORECASE,
)

STAGE_DIRECTION = re.compile(r"\([^)]*\)|\[[^\]]*\]")

LEFT_MESSAGE_PATTERNS = re.compile(
    r"(?:\b(?:call\s+me\s+back|give\s+me\s+a\s+(?:call|ring)\s+back|my\s+(?:number|direct\s+line)\s+is|"
    r"you\s+can\s+reach\s+me\s+at|leaving\s+(?:you\s+)?a\s+(?:quick\s+)?(?:message|voicemail))\b)",
    re.IGNORECASE,
)

REMINDER_PATTERNS = re.compile(
    r"(?:\b(?:just\s+(?:a\s+)?(?:quick\s+)?remind(?:er|ing)|calling\s+to\s+remind|"
    r"confirm(?:ing)?\s+(?:our|your|the|we're\s+still\s+on\s+for)\s+(?:meeting|call|appointment|demo)|"
    r"still\s+(?:on|good)\s+for\s+(?:our|the|your)?\s*(?:meeting|call|demo|appointment|today|tomorrow)|"
    r"reminder\s+(?:about|for)\s+(?:our|the|your))\b)",
    re.IGNORECASE,
)

SALES_INTRO_PATTERNS = re.compile(
    r"(?:\b(?:this\s+is\s+\w+\s+(?:from|with|over\s+at)|my\s+name\s+is\s+\w+|calling\s+from|"
    r"reason\s+(?:I'm|i\s+am|for\s+my)\s+call|reaching\s+out|is\s+this\s+\w+|am\s+i\s+speaking\s+(?:to|with))\b)",
    re.IGNORECASE,
)

INTERNAL_CHATTER_PATTERNS = re.compile(
    r"\b(?:dialer|crm|salesforce|hubspot|outreach|call\s+list|the\s+list|quota|standup|stand-up|"
    r"lunch|coffee|break|manager|my\s+numbers|next\s+dial|headset)\b",
    re.IGNORECASE,
)

PROSPECT_NAME_PATTERNS = [
    re.compile(r"\bis\s+this\s+(?P<name>[A-Z][a-z]+(?:\s+[A-Z][a-z]+)?)\b"),
    re.compile(r"\b(?:am\s+i\s+speaking\s+(?:to|with)|looking\s+for)\s+(?P<name>[A-Z][a-z]+(?:\s+[A-Z][a-z]+)?)\b"),
    re.compile(r"^\W*(?:Hi|Hey|Hello)[,\s]+(?P<name>[A-Z][a-z]+)\b(?!\s+(?:this|it's))"),
]

PROSPECT_COMPANY_PATTERNS = [
    re.compile(
        r"\b(?:over\s+at|things\s+at|your\s+team\s+at|you(?:'re|\s+are)\s+(?:at|with)|role\s+at|folks\s+at)\s+"
        r"(?P<company>[A-Z][\w&\-]*(?:\s+[A-Z][\w&\-]*){0,3})"
    ),
]

# Speaker labels that are not people on the prospect's side
SYSTEM_SPEAKERS = {"system", "voicemail", "ivr", "automated", "recording", "operator", "unknown"}
GENERIC_NAME_WORDS = {"there", "team", "everyone", "all", "guys", "folks", "again", "yes", "this"}


# =============================================================================
# Rule-Based Capability
# =============================================================================

@dataclass
class SegmentFeatures:
    """Signals extracted from one segment's text."""
    word_count: int
    speakers: list[str]
    human_speakers: list[str]
    alternations: int
    has_voicemail_system: bool
    left_message: bool
    disconnect: bool
    reminder: bool
    sales_intro: bool
    internal_chatter: bool


def extract_features(text: str, turns: Optional[list[Turn]] = None) -> SegmentFeatures:
    turns = turns if turns is not None else turns_from_text(text)
    speakers = speakers_in(turns)
    human = [s for s in speakers if s.lower() not in SYSTEM_SPEAKERS]
    voicemail_system = any(t.has_voicemail_system for t in turns) or bool(
        turns == [] and re.search(r"voice\s*mail|after\s+the\s+(?:tone|beep)", text, re.IGNORECASE)
    )
    return SegmentFeatures(
        word_count=len(text.split()),
        speakers=speakers,
        human_speakers=human,
        alternations=count_alternations(turns),
        has_voicemail_system=voicemail_system,
        left_message=bool(LEFT_MESSAGE_PATTERNS.search(text)),
        disconnect=bool(DISCONNECT_PATTERNS.search(text)),
        reminder=bool(REMINDER_PATTERNS.search(text)),
        sales_intro=bool(SALES_INTRO_PATTERNS.search(text)),
        internal_chatter=bool(INTERNAL_CHATTER_PATTERNS.search(text)),
    )


def _spoken_words(turns: list[Turn]) -> int:
    return sum(len(t.text.split()) for t in turns)


def _says_something(text: str) -> bool:
    """True when a turn has words beyond stage directions like "(click)"."""
    remainder = DISCONNECT_PATTERNS.sub(" ", STAGE_DIRECTION.sub(" ", text))
    return bool(re.search(r"[A-Za-z]", remainder))


def has_live_exchange(turns: list[Turn]) -> bool:
    """At least two human speakers actually said something to each other."""
    voices = {
        t.speaker.strip().lower()
        for t in turns
        if t.speaker
        and t.speaker.strip().lower() not in SYSTEM_SPEAKERS
        and _says_something(t.text)
    }
    return len(voices) >= 2 and count_alternations(turns) >= 1


def classify_text(text: str) -> tuple[CallType, str]:
    """Apply the classification rules to one segment.

    Returns:
        Tuple of (call_type, reasoning).
    """
    turns = turns_from_text(text)
    features = extract_features(text, turns)
    spoken = _spoken_words(turns) if turns else features.word_count
    two_sided = len(features.human_speakers) >= 2 and features.alternations >= 1
    exchange = has_live_exchange(turns)
    voicemail_cues = features.has_voicemail_system or features.left_message

    if spoken == 0:
        return CallType.HANGUP, "Empty segment"
    if not voicemail_cues and not exchange and (
        spoken <= HANGUP_MAX_WORDS or (features.disconnect and features.alternations < 2)
    ):
        return CallType.HANGUP, "Negligible content before the line dropped"

    if voicemail_cues and features.alternations < 2:
        return CallType.VOICEMAIL, "Voicemail greeting or left message without live back-and-forth"

    if features.reminder and two_sided and len(turns) <= REMINDER_MAX_TURNS:
        return CallType.REMINDER, "Short call confirming an existing appointment"

    if exchange and features.sales_intro:
        return CallType.CONVERSATION, "Rep introduced the call and a prospect responded"

    if (
        exchange and turns[0].opens_with_greeting
        and not features.has_voicemail_system and not features.internal_chatter
        and spoken <= HANGUP_MAX_WORDS
    ):
        return CallType.CONVERSATION, "Prospect answered before the call ended"

    if (
        exchange and features.alternations >= 3
        and not features.has_voicemail_system and not features.internal_chatter
    ):
        return CallType.CONVERSATION, "Sustained two-way dialogue"

    if features.has_voicemail_system:
        return CallType.VOICEMAIL, "Automated phone system without a live prospect"

    return CallType.INTERNAL, "No prospect on the line; rep talking to colleagues or the dialer"


def extract_prospect(text: str, turns: Optional[list[Turn]] = None) -> tuple[Optional[str], Optional[str]]:
    """Find the prospect's name and company mentioned by the rep."""
    turns = turns if turns is not None else turns_from_text(text)
    candidates = [t.text for t in turns] or [text]

    name = None
    for content in candidates:
        for pattern in PROSPECT_NAME_PATTERNS:
            match = pattern.search(content)
            if match and match.group("name").split()[0].lower() not in GENERIC_NAME_WORDS:
                name = match.group("name").strip()
                break
        if name:
            break

    company = None
    for pattern in PROSPECT_COMPANY_PATTERNS:
        match = pattern.search(text)
        if match:
            company = match.group("company").strip()
            break

    return name, company


class RuleBasedClassifier:
    """Deterministic ClassifyCapability built on the rules above."""

    model_name = "rule-based-classifier"

    def classify(self, texts: list[str]) -> list[SegmentClassification]:
        results = []
        for index, text in enumerate(texts):
            call_type, reasoning = classify_text(text)
            name, company = (None, None)
            if call_type in (CallType.CONVERSATION, CallType.REMINDER):
                name, company = extract_prospect(text)
            results.append(
                SegmentClassification(
                    segment_index=index,
                    call_type=call_type,
                    is_meaningful=call_type == CallType.CONVERSATION,
                    prospect_name=name,
                    prospect_company=company,
                    reasoning=reasoning,
                )
            )
        return results


# =============================================================================
# Stage Entry Point
# =============================================================================

@dataclass
class ClassificationOutcome:
    """Result for one input segment: a classification or the error that prevented it."""
    position: int
    classification: Optional[SegmentClassification] = None
    error: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.classification is not None


def enforce_meaningful(classification: SegmentClassification) -> SegmentClassification:
    """Make is_meaningful agree with call_type."""
    meaningful = classification.call_type == CallType.CONVERSATION
    if classification.is_meaningful != meaningful:
        logger.debug(
            "classification_meaningful_overridden",
            call_type=classification.call_type.value,
            reported=classification.is_meaningful,
        )
        return classification.model_copy(update={"is_meaningful": meaningful})
    return classification


def _validate_batch(batch_size: int, results: list[SegmentClassification]) -> list[SegmentClassification]:
    if not isinstance(results, list) or len(results) != batch_size:
        got = len(results) if isinstance(results, list) else type(results).__name__
        raise MalformedOutputError(f"Classifier returned {got} results for {batch_size} segments")
    for expected, result in enumerate(results):
        if not isinstance(result, SegmentClassification):
            raise MalformedOutputError(f"Classifier returned {type(result).__name__}, not a classification")
        if result.segment_index != expected:
            raise MalformedOutputError(
                f"Classifier segment_index {result.segment_index} does not match input position {expected}"
            )
    return results


def classify_segments(
    texts: list[str],
    classifier: ClassifyCapability,
    batch_size: int = DEFAULT_BATCH_SIZE,
    timeout: Optional[float] = None,
) -> list[ClassificationOutcome]:
    """Classify segments in batches, isolating failures per batch.

    Args:
        texts: Segment texts in call order.
        classifier: Capability performing the classification.
        batch_size: Segments per capability call.
        timeout: Seconds allowed for each capability call.

    Returns:
        One outcome per input text, in input order.
    """
    outcomes: list[ClassificationOutcome] = []
    batch_size = max(1, batch_size)

    for batch_start in range(0, len(texts), batch_size):
        batch = texts[batch_start:batch_start + batch_size]
        batch_label = f"{batch_start // batch_size + 1}/{(len(texts) + batch_size - 1) // batch_size}"
        try:
            results = call_capability(classifier.classify, batch, timeout=timeout, name="classify")
            results = _validate_batch(len(batch), results)
        except CapabilityError as e:
            logger.warning("classification_batch_failed", batch=batch_label, size=len(batch), error=str(e))
            outcomes.extend(
                ClassificationOutcome(position=batch_start + i, error=f"Classification failed: {e}")
                for i in range(len(batch))
            )
            continue

        logger.debug("classification_batch_complete", batch=batch_label, size=len(batch))
        outcomes.extend(
            ClassificationOutcome(position=batch_start + i, classification=enforce_meaningful(result))
            for i, result in enumerate(results)
        )

    return outcomes
