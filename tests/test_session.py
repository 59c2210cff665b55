"""End-to-end tests for a meeting session: the Johnson family quarterly review."""

from __future__ import annotations

import pytest

from src.config import Settings
from src.errors import SessionClosedError, SessionNotFoundError, UpstreamUnavailable
from src.extraction.rules import RuleBasedDetector
from src.facilitator.models import AdvisoryKind
from src.ingestion.models import AdmitStatus, Gap, RawSegment
from src.retrieval.corpus import InMemoryCorpus
from src.retrieval.models import CorpusDocument, RetrievalMode, RetrievalQuery, SourceTier
from src.session import MeetingSession, SessionStore, build_gateway
from src.tasks.gateway import HttpPlannerGateway, InMemoryGateway
from src.tasks.models import DispatchOutcome, TaskStatus

JOHNSON_REVIEW = [
    ("Emma Thompson",
     "Good afternoon, Sarah and Michael. Thank you for joining us today for your quarterly review."),
    ("Sarah Johnson",
     "Thank you, Emma. We're looking forward to discussing our portfolio performance."),
    ("Emma Thompson",
     "Let's schedule a follow-up meeting to discuss the tax implications in detail."),
    ("Michael Johnson",
     "I'd like to explore more ESG investment options. Can you prepare a proposal?"),
    ("David Chen",
     "Absolutely. I'll prepare a comprehensive ESG proposal by Friday."),
]


def _seg(seq: int) -> RawSegment:
    speaker, text = JOHNSON_REVIEW[seq - 1]
    return RawSegment(seq, speaker, text, seq * 1000, seq * 1000 + 900)


class _OverloadedDetector:
    """Rule detector behind a model that is overloaded for the first *failures* calls."""

    def __init__(self, failures: int) -> None:
        self.failures = failures
        self._rules = RuleBasedDetector()

    def detect(self, turn):
        if self.failures:
            self.failures -= 1
            raise UpstreamUnavailable("LLM unavailable: overloaded")
        return self._rules.detect(turn)


@pytest.fixture
def corpus() -> InMemoryCorpus:
    return InMemoryCorpus(context_weight=0.0)


@pytest.fixture
def gateway() -> InMemoryGateway:
    return InMemoryGateway()


@pytest.fixture
def session(config, corpus, gateway, clock):
    session = MeetingSession(
        session_id="johnson",
        config=config,
        corpus=corpus,
        gateway=gateway,
        detector=RuleBasedDetector(),
        title="Johnson review",
        clock=clock,
    )
    yield session
    if not session.ended:
        session.end(timeout=5)


class TestLiveMeeting:
    def test_transcript_produces_proposed_tasks(self, session) -> None:
        for seq in range(1, 6):
            assert session.admit(_seg(seq)) is AdmitStatus.ACCEPTED

        tasks = session.tasks.list_tasks()
        assert [t.description for t in tasks] == [
            "Let's schedule a follow-up meeting to discuss the tax implications in detail",
            "Can you prepare a proposal",
            "I'll prepare a comprehensive ESG proposal by Friday",
        ]
        assert all(t.status is TaskStatus.PROPOSED for t in tasks)
        assert tasks[2].owner == "David Chen"
        assert tasks[2].due_date == "Friday"
        assert tasks[0].source_segment_range == (3, 3)

    def test_redelivered_segments_do_not_duplicate_cards(self, session) -> None:
        for seq in (1, 2, 3, 3, 4, 5, 5):
            session.admit(_seg(seq))
        assert len(session.tasks.list_tasks()) == 3

    def test_out_of_order_feed(self, session) -> None:
        for seq in (2, 1, 5, 3, 4):
            session.admit(_seg(seq))
        assert session.ingestor.watermark == 5
        assert len(session.tasks.list_tasks()) == 3

    def test_advisories_follow_the_conversation(self, session) -> None:
        for seq in range(1, 6):
            session.admit(_seg(seq))

        prompts = session.latest_advisories
        suggestions = [p.topic for p in prompts if p.kind is AdvisoryKind.SUGGESTION]
        assert suggestions == ["risk tolerance", "estate planning"]
        [follow_up] = [p for p in prompts if p.kind is AdvisoryKind.FOLLOW_UP_DETECTED]
        assert follow_up.task_id == "t1"

    def test_time_reminder_uses_session_clock(self, session, clock) -> None:
        session.admit(_seg(1))
        clock.advance_ms(40 * 60_000)
        kinds = {p.kind for p in session.advisories()}
        assert AdvisoryKind.TIME_REMINDER in kinds

    def test_gap_reaches_extraction(self, session, clock) -> None:
        session.admit(_seg(1))
        session.admit(_seg(2))
        session.admit(_seg(4))
        clock.advance_ms(5000)
        delivered = session.tick()

        assert delivered[0] == Gap(3, 3)
        assert session.ingestor.watermark == 4
        assert [t.source_segment_range for t in session.tasks.list_tasks()] == [(4, 4)]

    def test_live_query_uses_corpus(self, session, corpus) -> None:
        corpus.index(
            CorpusDocument(
                "esg-policy",
                "ESG Suitability Policy",
                "ESG proposals must include a suitability assessment.",
                SourceTier.COMPLIANCE,
            )
        )
        session.admit(_seg(4))
        result = session.answer(RetrievalQuery("ESG proposal"))
        assert [h.source_id for h in result.hits] == ["esg-policy"]


class TestEndSession:
    def test_end_drains_dispatch_and_indexes_transcript(self, session, corpus, gateway) -> None:
        for seq in range(1, 6):
            session.admit(_seg(seq))
        session.tasks.move_status("t3", TaskStatus.PROPOSED, TaskStatus.TODO, 1)
        record = session.tasks.approve("t3", 2)

        summary = session.end(timeout=5)

        assert summary.segments == 5
        assert summary.gaps == 0
        assert summary.tasks == 3
        assert summary.pending_dispatches == ()
        assert summary.chunks_indexed == 5
        assert session.tasks.dispatch_record("t3").outcome is DispatchOutcome.CONFIRMED
        assert record.idempotency_key in gateway.delivered

        notes = [d for d in corpus.documents() if d.priority_tier is SourceTier.MEETING_NOTES]
        assert len(notes) == 5
        assert notes[4].source_label == "Johnson review transcript 00:05"

    def test_post_meeting_query_finds_transcript(self, session) -> None:
        for seq in range(1, 6):
            session.admit(_seg(seq))
        session.end(timeout=5)

        result = session.answer(
            RetrievalQuery("ESG proposal Friday", mode=RetrievalMode.POST_MEETING)
        )
        assert result.hits[0].source_id == "johnson-turn-4"
        assert result.hits[0].tier is SourceTier.MEETING_NOTES

    def test_end_flushes_open_gaps(self, session) -> None:
        session.admit(_seg(1))
        session.admit(_seg(3))
        summary = session.end(timeout=5)
        assert summary.gaps == 1
        assert summary.segments == 2

    def test_session_is_read_only_after_end(self, session) -> None:
        session.admit(_seg(1))
        session.end(timeout=5)

        with pytest.raises(SessionClosedError):
            session.admit(_seg(2))
        with pytest.raises(SessionClosedError):
            session.tasks.create_manual_task("Late task")
        with pytest.raises(SessionClosedError):
            session.end()
        assert len(session.ingestor.entries()) == 1


class TestSessionStore:
    def test_create_and_get(self, corpus, gateway) -> None:
        store = SessionStore(Settings(_env_file=None), corpus=corpus, gateway=gateway)
        session = store.create(title="Johnson review", gap_timeout_ms=1000)
        assert store.get(session.session_id) is session
        assert session.config.gap_timeout_ms == 1000
        session.end(timeout=5)

    def test_unknown_session(self, corpus, gateway) -> None:
        store = SessionStore(Settings(_env_file=None), corpus=corpus, gateway=gateway)
        with pytest.raises(SessionNotFoundError):
            store.get("missing")

    def test_gateway_selection(self) -> None:
        assert isinstance(build_gateway(Settings(_env_file=None)), InMemoryGateway)
        configured = Settings(_env_file=None, planner_gateway_url="https://planner.example.com")
        assert isinstance(build_gateway(configured), HttpPlannerGateway)


class TestDetectorOutage:
    def _session(self, config, corpus, gateway, clock, failures: int) -> MeetingSession:
        return MeetingSession(
            session_id="johnson",
            config=config,
            corpus=corpus,
            gateway=gateway,
            detector=_OverloadedDetector(failures),
            title="Johnson review",
            clock=clock,
        )

    def test_redelivery_retries_failed_detection(self, config, corpus, gateway, clock) -> None:
        session = self._session(config, corpus, gateway, clock, failures=1)

        assert session.admit(_seg(5)) is AdmitStatus.BUFFERED
        clock.advance_ms(5000)
        session.tick()
        assert session.tasks.list_tasks() == []
        assert session.extractor.backlog == [(5, 5)]

        assert session.admit(_seg(5)) is AdmitStatus.DUPLICATE
        [task] = session.tasks.list_tasks()
        assert task.source_segment_range == (5, 5)
        assert session.end(timeout=5).unextracted_ranges == ()

    def test_next_segment_retries_failed_detection(self, config, corpus, gateway, clock) -> None:
        session = self._session(config, corpus, gateway, clock, failures=1)
        commitment = RawSegment(1, "David Chen", "I'll prepare the ESG proposal by Friday.", 0, 900)
        thanks = RawSegment(2, "Emma Thompson", "Thank you, David.", 1000, 1900)

        assert session.admit(commitment) is AdmitStatus.ACCEPTED
        assert session.tasks.list_tasks() == []
        assert session.admit(thanks) is AdmitStatus.ACCEPTED

        [task] = session.tasks.list_tasks()
        assert task.source_segment_range == (1, 1)
        assert task.owner == "David Chen"
        session.end(timeout=5)

    def test_end_reports_turns_never_extracted(self, config, corpus, gateway, clock) -> None:
        session = self._session(config, corpus, gateway, clock, failures=1_000)
        session.admit(_seg(1))
        session.admit(_seg(2))

        summary = session.end(timeout=5)
        assert summary.unextracted_ranges == ((1, 1), (2, 2))
        assert summary.tasks == 0
