"""Meeting session: wires the pipeline components for one client meeting.

Segments pushed into the ingestor flow, in order, to the extractor and on to
the task registry; the facilitator view is recomputed on every stream entry
and task change.  ``end()`` tears the session down: open gaps are declared,
in-flight dispatches drained, the registry closed, and the transcript indexed
as meeting notes for post-meeting queries.
"""

from __future__ import annotations

import logging
import threading
import time
import uuid
from collections.abc import Callable
from dataclasses import dataclass

from src.config import Settings
from src.errors import SessionClosedError, SessionNotFoundError, UpstreamUnavailable
from src.extraction.extractor import ActionItemDetector, ActionItemExtractor, build_detector
from src.facilitator.engine import evaluate
from src.facilitator.models import AdvisoryPrompt, SessionState
from src.ingestion.chunking import speaker_turn_chunk
from src.ingestion.ingestor import TranscriptIngestor
from src.ingestion.models import AdmitStatus, RawSegment, StreamEntry
from src.pipeline_config import SessionConfig
from src.retrieval.assistant import KnowledgeAssistant
from src.retrieval.corpus import InMemoryCorpus, KnowledgeCorpus
from src.retrieval.models import CorpusDocument, RetrievalQuery, RetrievalResult, SourceTier
from src.tasks.gateway import DispatchGateway, HttpPlannerGateway, InMemoryGateway
from src.tasks.lifecycle import TaskLifecycleManager
from src.tasks.models import DispatchRecord

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SessionSummary:
    """Outcome of tearing a session down."""

    session_id: str
    segments: int
    gaps: int
    tasks: int
    pending_dispatches: tuple[DispatchRecord, ...]
    chunks_indexed: int
    unextracted_ranges: tuple[tuple[int, int], ...] = ()


def _format_offset(ms: int | None) -> str:
    seconds = (ms or 0) // 1000
    return f"{seconds // 60:02d}:{seconds % 60:02d}"


class MeetingSession:
    """One live meeting and its pipeline.

    Args:
        session_id: Identifier used for transcript notes in the corpus.
        config: Per-session configuration, passed on to every component.
        corpus: Shared knowledge corpus.
        gateway: External planner for approved tasks.
        detector: Action-item detector behind the extractor.
        title: Meeting title, used to label transcript notes.
        clock: Monotonic clock in seconds; injectable for tests.
    """

    def __init__(
        self,
        session_id: str,
        config: SessionConfig,
        corpus: KnowledgeCorpus,
        gateway: DispatchGateway,
        detector: ActionItemDetector,
        title: str = "",
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.session_id = session_id
        self.title = title or session_id
        self.config = config
        self._corpus = corpus
        self._clock = clock
        self._started_at = clock()
        self._ended = False
        self._lock = threading.Lock()

        self.ingestor = TranscriptIngestor(config.gap_timeout_ms, clock=clock)
        self.extractor = ActionItemExtractor(detector)
        self.tasks = TaskLifecycleManager(gateway, config)
        self.assistant = KnowledgeAssistant(corpus, config, transcript=self.ingestor)
        self.latest_advisories: list[AdvisoryPrompt] = []

        self.ingestor.subscribe(self._on_entry)
        self.tasks.subscribe(lambda _task: self._refresh_advisories())

    @property
    def ended(self) -> bool:
        return self._ended

    def admit(self, raw: RawSegment) -> AdmitStatus:
        """Admit one transcript segment (single writer per session)."""
        with self._lock:
            status = self.ingestor.admit(raw)
            if status is not AdmitStatus.ACCEPTED and self.extractor.backlog:
                self._extract([])
            return status

    def tick(self) -> list[StreamEntry]:
        """Let gap timeouts fire without a new segment."""
        with self._lock:
            delivered = self.ingestor.tick()
            if not delivered and self.extractor.backlog:
                self._extract([])
            return delivered

    def _on_entry(self, entry: StreamEntry) -> None:
        self._extract([entry])
        self._refresh_advisories()

    def _extract(self, entries: list[StreamEntry]) -> None:
        try:
            for proposal in self.extractor.process(entries):
                self.tasks.ingest_proposal(proposal)
        except UpstreamUnavailable as exc:
            logger.warning(
                "Action-item detection deferred for segments %s: %s",
                self.extractor.backlog,
                exc,
            )

    def elapsed_ms(self) -> int:
        return int((self._clock() - self._started_at) * 1000)

    def state(self) -> SessionState:
        return SessionState(
            entries=tuple(self.ingestor.entries()),
            elapsed_ms=self.elapsed_ms(),
            scheduled_ms=self.config.scheduled_duration_ms,
            tasks=tuple(self.tasks.list_tasks()),
            topic_checklist=self.config.topic_checklist,
            visibility_threshold=self.config.visibility_threshold,
        )

    def advisories(self) -> list[AdvisoryPrompt]:
        """Current advisory prompts (recomputed, so time reminders stay fresh)."""
        self._refresh_advisories()
        return self.latest_advisories

    def _refresh_advisories(self) -> None:
        self.latest_advisories = evaluate(self.state(), self.config.time_reminder_fraction)

    def answer(self, query: RetrievalQuery) -> RetrievalResult:
        return self.assistant.answer(query)

    def end(self, timeout: float | None = None) -> SessionSummary:
        """Tear the session down. Idempotent only in the sense that a second call raises."""
        with self._lock:
            if self._ended:
                raise SessionClosedError(f"Session {self.session_id} already ended")
            self.ingestor.close()
            try:
                for proposal in self.extractor.flush():
                    self.tasks.ingest_proposal(proposal)
            except UpstreamUnavailable as exc:
                logger.error(
                    "Session %s ended with segments %s never extracted: %s",
                    self.session_id,
                    self.extractor.backlog,
                    exc,
                )
            unextracted = tuple(self.extractor.backlog)
            pending = self.tasks.close(timeout=timeout)
            self._ended = True

        entries = self.ingestor.entries()
        chunks = speaker_turn_chunk(entries)
        for chunk in chunks:
            self._corpus.index(
                CorpusDocument(
                    id=f"{self.session_id}-turn-{chunk.chunk_index}",
                    source_label=f"{self.title} transcript {_format_offset(chunk.start_offset_ms)}",
                    content=f"{chunk.speaker}: {chunk.content}",
                    priority_tier=SourceTier.MEETING_NOTES,
                )
            )

        segments = len(self.ingestor.segments())
        summary = SessionSummary(
            session_id=self.session_id,
            segments=segments,
            gaps=len(entries) - segments,
            tasks=len(self.tasks.list_tasks()),
            pending_dispatches=tuple(pending),
            chunks_indexed=len(chunks),
            unextracted_ranges=unextracted,
        )
        logger.info(
            "Session %s ended: %d segments, %d gaps, %d tasks, %d pending dispatches",
            self.session_id,
            summary.segments,
            summary.gaps,
            summary.tasks,
            len(pending),
        )
        return summary


def build_corpus(settings: Settings, config: SessionConfig) -> KnowledgeCorpus:
    """Supabase corpus when configured, otherwise an in-process one."""
    if settings.supabase_url and settings.supabase_key:
        from src.retrieval.search import SupabaseCorpus, get_supabase_client

        return SupabaseCorpus(
            get_supabase_client(settings.supabase_url, settings.supabase_key),
            openai_api_key=settings.openai_api_key,
            embedding_model=settings.embedding_model,
        )
    return InMemoryCorpus(context_weight=config.context_weight)


def build_gateway(settings: Settings) -> DispatchGateway:
    """HTTP planner gateway when a URL is configured, otherwise the in-process planner."""
    if settings.planner_gateway_url:
        return HttpPlannerGateway(settings.planner_gateway_url)
    return InMemoryGateway()


class SessionStore:
    """Process-wide registry of meeting sessions sharing one corpus and gateway."""

    def __init__(
        self,
        settings: Settings,
        corpus: KnowledgeCorpus | None = None,
        gateway: DispatchGateway | None = None,
    ) -> None:
        self._settings = settings
        base = SessionConfig.from_settings(settings)
        self.corpus = corpus if corpus is not None else build_corpus(settings, base)
        self.gateway = gateway if gateway is not None else build_gateway(settings)
        self._sessions: dict[str, MeetingSession] = {}
        self._lock = threading.Lock()

    def create(self, title: str = "", **overrides: object) -> MeetingSession:
        config = SessionConfig.from_settings(self._settings, **overrides)
        session = MeetingSession(
            session_id=uuid.uuid4().hex[:12],
            config=config,
            corpus=self.corpus,
            gateway=self.gateway,
            detector=build_detector(config, self._settings),
            title=title,
        )
        with self._lock:
            self._sessions[session.session_id] = session
        return session

    def get(self, session_id: str) -> MeetingSession:
        with self._lock:
            session = self._sessions.get(session_id)
        if session is None:
            raise SessionNotFoundError(f"Session {session_id} not found")
        return session
