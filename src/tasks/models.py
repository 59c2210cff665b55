"""Data models for the task registry and external dispatch."""

from __future__ import annotations

import hashlib
from dataclasses import dataclass, field
from enum import StrEnum

from src.extraction.models import SegmentRange

# Origin marker for tasks created by hand rather than from a proposal.
MANUAL_ORIGIN = "manual"


class TaskStatus(StrEnum):
    PROPOSED = "proposed"
    TODO = "todo"
    IN_PROGRESS = "in-progress"
    DONE = "done"
    DISPATCHED = "dispatched"
    REJECTED = "rejected"


TERMINAL_STATUSES = frozenset({TaskStatus.DISPATCHED, TaskStatus.REJECTED})

# Allowed status moves.  Board columns can be dragged backwards as well as forwards.
TRANSITIONS: dict[TaskStatus, frozenset[TaskStatus]] = {
    TaskStatus.PROPOSED: frozenset({TaskStatus.TODO, TaskStatus.REJECTED}),
    TaskStatus.TODO: frozenset(
        {TaskStatus.IN_PROGRESS, TaskStatus.DISPATCHED, TaskStatus.REJECTED}
    ),
    TaskStatus.IN_PROGRESS: frozenset({TaskStatus.TODO, TaskStatus.DONE, TaskStatus.REJECTED}),
    TaskStatus.DONE: frozenset({TaskStatus.IN_PROGRESS, TaskStatus.DISPATCHED}),
    TaskStatus.DISPATCHED: frozenset(),
    TaskStatus.REJECTED: frozenset(),
}

# Kanban board column -> status.  The board is only a view of the state machine.
BOARD_COLUMNS: dict[str, TaskStatus] = {
    "proposed": TaskStatus.PROPOSED,
    "todo": TaskStatus.TODO,
    "in-progress": TaskStatus.IN_PROGRESS,
    "done": TaskStatus.DONE,
}


def can_transition(current: TaskStatus, target: TaskStatus) -> bool:
    return target in TRANSITIONS[current]


@dataclass(frozen=True)
class Task:
    """Read-only snapshot of a task. Only the lifecycle manager creates new versions."""

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
    source_segment_range: SegmentRange | None = None
    retired_proposal_ids: tuple[str, ...] = ()
    rejection_reason: str | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def is_manual(self) -> bool:
        return self.origin_proposal_id == MANUAL_ORIGIN


@dataclass(frozen=True)
class TaskEvent:
    """Audit trail entry: one committed change to a task."""

    task_id: str
    version: int
    action: str
    status: TaskStatus
    detail: str | None = None


class DispatchOutcome(StrEnum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    FAILED = "failed"


def idempotency_key(task_id: str, version: int) -> str:
    """Deterministic key for dispatching *task_id* as it stood at *version*."""
    return hashlib.sha256(f"{task_id}:{version}".encode()).hexdigest()[:32]


@dataclass(frozen=True)
class DispatchRecord:
    """State of one task's handoff to the external planner."""

    task_id: str
    idempotency_key: str
    dispatch_attempt_id: str
    outcome: DispatchOutcome = DispatchOutcome.PENDING
    attempts: int = 0
    last_error: str | None = None
    task: Task | None = field(default=None, compare=False)
