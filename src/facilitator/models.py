"""Data models for facilitator advisories."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum

from src.ingestion.models import StreamEntry
from src.tasks.models import Task


class AdvisoryKind(StrEnum):
    SUGGESTION = "suggestion"
    TIME_REMINDER = "time_reminder"
    FOLLOW_UP_DETECTED = "follow_up_detected"


@dataclass(frozen=True)
class AdvisoryPrompt:
    kind: AdvisoryKind
    message: str
    topic: str | None = None
    task_id: str | None = None


@dataclass(frozen=True)
class SessionState:
    """Everything the facilitator looks at, captured at one instant."""

    entries: tuple[StreamEntry, ...]
    elapsed_ms: int
    scheduled_ms: int
    tasks: tuple[Task, ...] = ()
    topic_checklist: dict[str, tuple[str, ...]] = field(default_factory=dict)
    visibility_threshold: float = 0.5
