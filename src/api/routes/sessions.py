"""Session endpoints: open a meeting, feed its transcript, and end it."""

from __future__ import annotations

from collections import Counter

from fastapi import APIRouter, Depends

from src.api.deps import get_store, http_error
from src.api.models import (
    AdmitResponse,
    AdvisoryOut,
    BriefRequest,
    BriefResponse,
    DispatchOut,
    EndSessionResponse,
    ParticipantIn,
    RiskFlagIn,
    SegmentIn,
    SessionCreateRequest,
    SessionResponse,
    StreamEntryOut,
    TaskOut,
    TranscriptImportRequest,
    TranscriptImportResponse,
    TranscriptResponse,
)
from src.briefing import Participant, RiskFlag, build_brief
from src.errors import PipelineError
from src.ingestion.models import Gap, RawSegment, StreamEntry
from src.ingestion.parsers import parse_transcript
from src.session import MeetingSession, SessionStore

router = APIRouter()


def _session_response(session: MeetingSession) -> SessionResponse:
    return SessionResponse(
        session_id=session.session_id,
        title=session.title,
        ended=session.ended,
        watermark=session.ingestor.watermark,
        pending_segments=session.ingestor.pending_count,
    )


def _entry_out(entry: StreamEntry) -> StreamEntryOut:
    if isinstance(entry, Gap):
        return StreamEntryOut(kind="gap", start_seq=entry.start_seq, end_seq=entry.end_seq)
    return StreamEntryOut(
        kind="segment",
        sequence_id=entry.sequence_id,
        speaker_id=entry.speaker_id,
        text=entry.text,
        start_offset_ms=entry.start_offset_ms,
        end_offset_ms=entry.end_offset_ms,
    )


@router.post("/api/sessions", response_model=SessionResponse, status_code=201)
async def create_session(
    request: SessionCreateRequest,
    store: SessionStore = Depends(get_store),
) -> SessionResponse:
    """Open a live meeting session."""
    overrides: dict[str, object] = {}
    if request.gap_timeout_ms is not None:
        overrides["gap_timeout_ms"] = request.gap_timeout_ms
    if request.visibility_threshold is not None:
        overrides["visibility_threshold"] = request.visibility_threshold
    if request.scheduled_duration_min is not None:
        overrides["scheduled_duration_ms"] = request.scheduled_duration_min * 60_000
    if request.extraction_backend is not None:
        overrides["extraction_backend"] = request.extraction_backend

    session = store.create(title=request.title, **overrides)
    return _session_response(session)


@router.get("/api/sessions/{session_id}", response_model=SessionResponse)
async def get_session(session_id: str, store: SessionStore = Depends(get_store)) -> SessionResponse:
    try:
        session = store.get(session_id)
    except PipelineError as exc:
        raise http_error(exc) from exc
    return _session_response(session)


@router.post("/api/sessions/{session_id}/segments", response_model=AdmitResponse)
def admit_segment(
    session_id: str,
    segment: SegmentIn,
    store: SessionStore = Depends(get_store),
) -> AdmitResponse:
    """Admit one transcript segment from the live feed (at-least-once)."""
    try:
        session = store.get(session_id)
        status = session.admit(RawSegment(**segment.model_dump()))
    except PipelineError as exc:
        raise http_error(exc) from exc
    return AdmitResponse(
        sequence_id=segment.sequence_id,
        status=status,
        watermark=session.ingestor.watermark,
    )


@router.post("/api/sessions/{session_id}/transcript", response_model=TranscriptImportResponse)
def import_transcript(
    session_id: str,
    request: TranscriptImportRequest,
    store: SessionStore = Depends(get_store),
) -> TranscriptImportResponse:
    """Replay a recorded transcript (VTT or JSON) through the live feed."""
    try:
        session = store.get(session_id)
        segments = parse_transcript(request.content, request.format)
        statuses = Counter(str(session.admit(raw)) for raw in segments)
    except PipelineError as exc:
        raise http_error(exc) from exc
    return TranscriptImportResponse(
        segments=len(segments),
        statuses=dict(statuses),
        watermark=session.ingestor.watermark,
    )


@router.post("/api/sessions/{session_id}/tick", response_model=list[StreamEntryOut])
def tick(session_id: str, store: SessionStore = Depends(get_store)) -> list[StreamEntryOut]:
    """Fire any elapsed gap timeouts; returns the entries this delivered."""
    try:
        delivered = store.get(session_id).tick()
    except PipelineError as exc:
        raise http_error(exc) from exc
    return [_entry_out(e) for e in delivered]


@router.get("/api/sessions/{session_id}/transcript", response_model=TranscriptResponse)
async def get_transcript(
    session_id: str,
    since: int = 0,
    store: SessionStore = Depends(get_store),
) -> TranscriptResponse:
    """Delivered transcript entries from position *since* onward."""
    try:
        session = store.get(session_id)
    except PipelineError as exc:
        raise http_error(exc) from exc
    return TranscriptResponse(
        session_id=session_id,
        watermark=session.ingestor.watermark,
        entries=[_entry_out(e) for e in session.ingestor.entries_since(max(since, 0))],
    )


@router.get("/api/sessions/{session_id}/advisories", response_model=list[AdvisoryOut])
async def get_advisories(
    session_id: str,
    store: SessionStore = Depends(get_store),
) -> list[AdvisoryOut]:
    """Current facilitator prompts for the session."""
    try:
        prompts = store.get(session_id).advisories()
    except PipelineError as exc:
        raise http_error(exc) from exc
    return [AdvisoryOut.model_validate(p) for p in prompts]


@router.post("/api/sessions/{session_id}/brief", response_model=BriefResponse)
def get_brief(
    session_id: str,
    request: BriefRequest,
    store: SessionStore = Depends(get_store),
) -> BriefResponse:
    """Assemble the pre-meeting brief for the session."""
    try:
        session = store.get(session_id)
        brief = build_brief(
            title=session.title,
            scheduled_at=request.scheduled_at,
            participants=[Participant(**p.model_dump()) for p in request.participants],
            previous_highlights=request.previous_highlights,
            tasks=session.tasks.list_tasks(),
            risk_flags=[RiskFlag(**f.model_dump()) for f in request.risk_flags],
            corpus=store.corpus,
            agenda_topics=request.agenda_topics,
        )
    except PipelineError as exc:
        raise http_error(exc) from exc
    return BriefResponse(
        title=brief.title,
        scheduled_at=brief.scheduled_at,
        participants=[ParticipantIn.model_validate(p) for p in brief.participants],
        previous_highlights=list(brief.previous_highlights),
        open_tasks=[TaskOut.model_validate(t) for t in brief.open_tasks],
        risk_flags=[RiskFlagIn.model_validate(f) for f in brief.risk_flags],
        suggested_services=list(brief.suggested_services),
    )


@router.post("/api/sessions/{session_id}/end", response_model=EndSessionResponse)
def end_session(session_id: str, store: SessionStore = Depends(get_store)) -> EndSessionResponse:
    """End the meeting: flush the stream, drain dispatches, index the transcript."""
    try:
        summary = store.get(session_id).end()
    except PipelineError as exc:
        raise http_error(exc) from exc
    return EndSessionResponse(
        session_id=summary.session_id,
        segments=summary.segments,
        gaps=summary.gaps,
        tasks=summary.tasks,
        chunks_indexed=summary.chunks_indexed,
        pending_dispatches=[DispatchOut.model_validate(r) for r in summary.pending_dispatches],
        unextracted_ranges=list(summary.unextracted_ranges),
    )
