"""Pydantic request/response schemas for the Advisor Meeting API."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from src.briefing import RiskSeverity, RiskType
from src.facilitator.models import AdvisoryKind
from src.ingestion.models import AdmitStatus
from src.pipeline_config import ExtractionBackend
from src.retrieval.models import RetrievalMode, SourceTier
from src.tasks.models import DispatchOutcome, TaskStatus


class SessionCreateRequest(BaseModel):
    """Request body for POST /api/sessions. Unset fields fall back to settings."""

    title: str = ""
    gap_timeout_ms: int | None = Field(default=None, ge=0)
    visibility_threshold: float | None = Field(default=None, ge=0.0, le=1.0)
    scheduled_duration_min: int | None = Field(default=None, ge=0)
    extraction_backend: ExtractionBackend | None = None


class SessionResponse(BaseModel):
    session_id: str
    title: str
    ended: bool = False
    watermark: int = 0
    pending_segments: int = 0


class SegmentIn(BaseModel):
    """One segment from the live transcript feed."""

    sequence_id: int
    speaker_id: str
    text: str
    start_offset_ms: int
    end_offset_ms: int


class AdmitResponse(BaseModel):
    sequence_id: int
    status: AdmitStatus
    watermark: int


class TranscriptImportRequest(BaseModel):
    """A recorded transcript file replayed through the live feed."""

    content: str
    format: str = "vtt"


class TranscriptImportResponse(BaseModel):
    segments: int
    statuses: dict[str, int]
    watermark: int


class StreamEntryOut(BaseModel):
    """A delivered transcript entry: a segment, or a gap marker."""

    kind: str  # "segment" | "gap"
    sequence_id: int | None = None
    speaker_id: str | None = None
    text: str | None = None
    start_offset_ms: int | None = None
    end_offset_ms: int | None = None
    start_seq: int | None = None
    end_seq: int | None = None


class TranscriptResponse(BaseModel):
    session_id: str
    watermark: int
    entries: list[StreamEntryOut]


class TaskOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    description: str
    status: TaskStatus
    version: int
    origin_proposal_id: str
    owner: str | None = None
    due_date: str | None = None
    category: str = "General"
    confidence: float | None = None
    evidence_text: str = ""
    source_segment_range: tuple[int, int] | None = None
    retired_proposal_ids: list[str] = []
    rejection_reason: str | None = None


class BoardResponse(BaseModel):
    """Board view: visible tasks per column, plus every task for audit views."""

    columns: dict[str, list[TaskOut]]
    tasks: list[TaskOut]


class TaskCreateRequest(BaseModel):
    description: str
    owner: str | None = None
    due_date: str | None = None
    category: str = "General"


class MoveRequest(BaseModel):
    """Board drag-and-drop between columns."""

    from_column: str
    to_column: str
    expected_version: int


class ApproveRequest(BaseModel):
    expected_version: int


class RejectRequest(BaseModel):
    expected_version: int
    reason: str | None = None


class VersionResponse(BaseModel):
    task_id: str
    version: int


class DispatchOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    task_id: str
    idempotency_key: str
    dispatch_attempt_id: str
    outcome: DispatchOutcome
    attempts: int = 0
    last_error: str | None = None


class EndSessionResponse(BaseModel):
    session_id: str
    segments: int
    gaps: int
    tasks: int
    chunks_indexed: int
    pending_dispatches: list[DispatchOut]
    unextracted_ranges: list[tuple[int, int]] = []


class QueryRequest(BaseModel):
    """Request body for POST /api/sessions/{id}/query."""

    question: str
    mode: RetrievalMode = RetrievalMode.LIVE
    context_window: int | None = Field(default=None, ge=1)
    synthesize: bool = False


class HitOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    snippet: str
    source_id: str
    source_label: str
    score: float
    tier: SourceTier


class QueryResponse(BaseModel):
    mode: RetrievalMode
    no_match: bool
    hits: list[HitOut]
    answer: str | None = None
    model: str | None = None
    usage: dict[str, Any] | None = None


class AdvisoryOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    kind: AdvisoryKind
    message: str
    topic: str | None = None
    task_id: str | None = None


class DocumentIn(BaseModel):
    """A corpus document from the document feed."""

    id: str
    source_label: str
    content: str
    priority_tier: SourceTier = SourceTier.DOCUMENT


class DocumentResponse(BaseModel):
    id: str
    indexed: bool = True


class ParticipantIn(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    name: str
    role: str
    email: str = ""
    is_advisor: bool = False


class RiskFlagIn(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    type: RiskType
    message: str
    severity: RiskSeverity = RiskSeverity.MEDIUM


class BriefRequest(BaseModel):
    scheduled_at: str = ""
    participants: list[ParticipantIn] = []
    previous_highlights: list[str] = []
    risk_flags: list[RiskFlagIn] = []
    agenda_topics: list[str] = []


class BriefResponse(BaseModel):
    title: str
    scheduled_at: str
    participants: list[ParticipantIn]
    previous_highlights: list[str]
    open_tasks: list[TaskOut]
    risk_flags: list[RiskFlagIn]
    suggested_services: list[str]
