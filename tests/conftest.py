"""Pytest configuration and fixtures."""

import os

# Keep the module-level engine off disk; tests bind their own engines
os.environ.setdefault("SDR_DATABASE_URL", "sqlite://")

import threading
from datetime import date

import pytest
from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool

from sdr_pipeline.config.settings import Settings
from sdr_pipeline.database import Base, create_session_factory, init_db
from sdr_pipeline.models import CallType, GradeResult, KeyMoment, RawSegment, SegmentClassification
from sdr_pipeline.pipeline.capabilities import Capabilities
from sdr_pipeline.pipeline.orchestrator import PipelineOrchestrator
from sdr_pipeline.pipeline.run_guard import RunGuard
from sdr_pipeline.repository import TranscriptRepository

# =============================================================================
# Sample Day
# =============================================================================

SAMPLE_CALLS: list[tuple[CallType, str]] = [
    (CallType.CONVERSATION, """\
[09:00:05] Alex: Hi, is this Dana Reyes? This is Alex from Brightline. Do you have a quick minute?
[09:00:12] Dana: Sure, what is this about?
[09:00:18] Alex: The reason for my call is that we help sales teams cut ramp time. How are things over at Northwind Logistics?
[09:00:40] Dana: Busy, honestly. We're hiring a lot of reps this quarter.
[09:00:52] Alex: Would you be open to a twenty minute demo on Thursday at 2pm?
[09:01:05] Dana: Thursday at 2pm works for me.
[09:01:10] Alex: Perfect, I'll send a calendar invite. Thanks Dana, have a great day!
[09:01:15] Dana: You too, bye.
"""),
    (CallType.VOICEMAIL, """\
[09:03:00] Voicemail: You've reached the voicemail of Sam Lee. Please leave a message after the tone.
[09:03:08] Alex: Hi Sam, this is Alex from Brightline. Call me back at 555-0100. Thanks, bye.
"""),
    (CallType.HANGUP, """\
[09:05:00] Alex: Hello, is this Priya?
[09:05:03] Priya: (click)
"""),
    (CallType.INTERNAL, """\
[09:06:30] Alex: Hey Jordan, is the dialer skipping numbers for you too?
[09:06:36] Jordan: Yeah, the list keeps jumping. I'll ping the manager after standup.
[09:06:45] Alex: Cool, grabbing coffee before my next dial.
"""),
    (CallType.CONVERSATION, """\
[09:08:00] Alex: Hi, is this Marcus Bell? My name is Alex with Brightline.
[09:08:06] Marcus: Yes, speaking.
[09:08:09] Alex: I'm reaching out because we help teams at companies like yours. How is your team at Contoso handling onboarding today?
[09:08:25] Marcus: We're happy with our current vendor, not interested.
[09:08:31] Alex: Totally understand. What would have to change for you to look at something new?
[09:08:45] Marcus: Honestly, nothing right now. Send me an email.
[09:08:50] Alex: Will do. Thanks for your time Marcus, take care.
"""),
    (CallType.VOICEMAIL, """\
[09:10:00] System: The person you are trying to reach is not available. Please record your message after the tone.
[09:10:09] Alex: Hi, this is Alex from Brightline, leaving a quick message. My number is 555-0100.
"""),
    (CallType.CONVERSATION, """\
[09:12:00] Alex: Good morning, is this Lena Park? This is Alex from Brightline, did I catch you at a bad time?
[09:12:08] Lena: No, go ahead.
[09:12:12] Alex: We work with revenue teams at companies like Fabrikam to shorten ramp time. What does onboarding look like for you?
[09:12:30] Lena: It takes about three months right now, which is too long.
[09:12:40] Alex: That makes sense. Could we set up a thirty minute call tomorrow at 10am to walk through it?
[09:12:52] Lena: Sure, tomorrow at 10am sounds good.
[09:12:58] Alex: Great, what's your best email for the calendar invite? Thanks Lena, talk soon.
[09:13:05] Lena: lena@fabrikam.com. Bye.
"""),
    (CallType.REMINDER, """\
[09:15:00] Alex: Hi Tom, it's Alex from Brightline. Just a quick reminder about our demo tomorrow at 3pm.
[09:15:08] Tom: Yep, still on for tomorrow.
[09:15:12] Alex: Great, see you then. Bye.
"""),
    (CallType.HANGUP, """\
[09:17:00] Alex: Hello, this is Alex from Brightline.
[09:17:02] Prospect: (click) line disconnected
"""),
    (CallType.INTERNAL, """\
[09:25:00] Alex: Hey Sam, can you check whether the CRM logged my last call?
[09:25:06] Sam: Looks like it did. Want to grab lunch after this block?
[09:25:12] Alex: Sure, give me ten minutes.
"""),
]

SAMPLE_TRANSCRIPT = "\n".join(text for _, text in SAMPLE_CALLS)
SAMPLE_TYPES = [call_type for call_type, _ in SAMPLE_CALLS]
SAMPLE_DATE = date(2024, 3, 4)

# =============================================================================
# Deterministic Capabilities
# =============================================================================

class BlankLineSplitter:
    """Starts a new segment after every blank line; keeps blank lines with the preceding call."""

    model_name = "blank-line-splitter"

    def __init__(self):
        self.calls = 0

    def split(self, text: str) -> list[RawSegment]:
        self.calls += 1
        segments: list[RawSegment] = []
        current = ""
        for line in text.splitlines(keepends=True):
            if current and current.endswith("\n\n"):
                segments.append(RawSegment(raw_text=current))
                current = ""
            current += line
        if current:
            segments.append(RawSegment(raw_text=current))
        return segments


class ScriptedClassifier:
    """Looks each segment up in SAMPLE_CALLS; unknown text is internal."""

    model_name = "scripted-classifier"

    def __init__(self, fail_on: str | None = None):
        self.fail_on = fail_on
        self.batches: list[int] = []

    def classify(self, texts: list[str]) -> list[SegmentClassification]:
        self.batches.append(len(texts))
        if self.fail_on and any(self.fail_on in t for t in texts):
            raise RuntimeError("classifier unavailable")
        results = []
        for index, text in enumerate(texts):
            call_type = next(
                (ct for ct, block in SAMPLE_CALLS if block.strip() and block.strip() in text),
                CallType.INTERNAL,
            )
            results.append(
                SegmentClassification(
                    segment_index=index,
                    call_type=call_type,
                    # Deliberately wrong; the pipeline must derive it from call_type
                    is_meaningful=call_type != CallType.CONVERSATION,
                    reasoning="scripted",
                )
            )
        return results


class StubGrader:
    """Returns fixed scores; can block or fail on segments containing a marker.

    block_on takes one marker or a tuple of them.
    """

    model_name = "stub-grader"

    def __init__(self, scores=(8, 7, 6, 9, 8), block_on=None, fail_on: str | None = None):
        self.scores = scores
        self.block_on = block_on
        self.fail_on = fail_on
        self.release = threading.Event()
        self.graded: list[str] = []
        self._lock = threading.Lock()

    def _blocks(self, text: str) -> bool:
        markers = (self.block_on,) if isinstance(self.block_on, str) else (self.block_on or ())
        return any(marker in text for marker in markers)

    def grade(self, text: str) -> GradeResult:
        with self._lock:
            self.graded.append(text)
        if self._blocks(text) and not self.release.is_set():
            self.release.wait(10)
        if self.fail_on and self.fail_on in text:
            raise RuntimeError("grader exploded")
        opener, engagement, objection, appointment, professionalism = self.scores
        return GradeResult(
            opener_score=opener,
            engagement_score=engagement,
            objection_handling_score=objection,
            appointment_setting_score=appointment,
            professionalism_score=professionalism,
            overall_grade="A+",
            meeting_scheduled="tomorrow" in text,
            call_summary="Rep opened well and asked for a meeting.",
            strengths=["Clear opener"],
            improvements=["Ask more discovery questions"],
            key_moments=[KeyMoment(timestamp="00:05", description="Opener")],
            coaching_notes="Slow down and ask one more question before pitching.",
            raw_json={"source": "stub"},
        )


# =============================================================================
# Fixtures
# =============================================================================

@pytest.fixture
def sample_transcript() -> str:
    return SAMPLE_TRANSCRIPT


@pytest.fixture
def sample_calls() -> list[tuple[CallType, str]]:
    return list(SAMPLE_CALLS)


@pytest.fixture
def sample_types() -> list[CallType]:
    return list(SAMPLE_TYPES)


@pytest.fixture
def engine():
    """In-memory SQLite shared across threads."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    init_db(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return create_session_factory(engine)


@pytest.fixture
def db_session(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def repo(db_session) -> TranscriptRepository:
    return TranscriptRepository(db_session)


@pytest.fixture
def test_settings() -> Settings:
    return Settings(
        database_url="sqlite://",
        split_timeout_seconds=5.0,
        classify_timeout_seconds=5.0,
        grade_timeout_seconds=1.0,
        grade_max_workers=4,
        classify_batch_size=4,
        stuck_threshold_seconds=300,
    )


@pytest.fixture
def grader():
    grader = StubGrader()
    yield grader
    grader.release.set()


@pytest.fixture
def classifier() -> ScriptedClassifier:
    return ScriptedClassifier()


@pytest.fixture
def splitter() -> BlankLineSplitter:
    return BlankLineSplitter()


@pytest.fixture
def capabilities(splitter, classifier, grader) -> Capabilities:
    return Capabilities(splitter=splitter, classifier=classifier, grader=grader)


@pytest.fixture
def orchestrator(capabilities, test_settings) -> PipelineOrchestrator:
    return PipelineOrchestrator(capabilities=capabilities, settings=test_settings, run_guard=RunGuard())


@pytest.fixture
def make_transcript(repo):
    """Create and commit a pending transcript."""

    def _make(raw_text: str = SAMPLE_TRANSCRIPT, sdr_id: str = "sdr-alex", transcript_date: date = SAMPLE_DATE):
        transcript = repo.create_transcript(sdr_id, transcript_date, raw_text)
        repo.commit()
        return transcript

    return _make


@pytest.fixture
def client(session_factory, orchestrator):
    """API client whose background runs use the in-memory database and stub capabilities."""
    from fastapi.testclient import TestClient

    from sdr_pipeline.api import deps
    from sdr_pipeline.api.main import app

    def override_get_db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[deps.get_db] = override_get_db
    app.dependency_overrides[deps.get_session_factory] = lambda: session_factory
    app.dependency_overrides[deps.get_orchestrator] = lambda: orchestrator

    yield TestClient(app)

    app.dependency_overrides.clear()
