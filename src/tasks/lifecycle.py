"""Task lifecycle manager: the canonical task registry and its state machine.

Every mutation is an optimistic compare-and-set on the task's ``version``
under that task's own lock; there is no registry-wide lock around task
updates, so board moves and extraction updates on unrelated tasks never
wait on each other.  The registry lock only guards creation and the
proposal index.

Callers only ever receive frozen :class:`Task` snapshots.
"""

from __future__ import annotations

import itertools
import logging
import threading
from collections.abc import Callable
from dataclasses import replace
from typing import NoReturn

from src.errors import (
    ConflictError,
    SessionClosedError,
    TaskNotFoundError,
    TransitionError,
    ValidationError,
)
from src.extraction.models import ActionItemProposal, ranges_overlap
from src.pipeline_config import SessionConfig
from src.tasks.dispatch import Dispatcher
from src.tasks.gateway import DispatchGateway
from src.tasks.models import (
    BOARD_COLUMNS,
    MANUAL_ORIGIN,
    TERMINAL_STATUSES,
    DispatchOutcome,
    DispatchRecord,
    Task,
    TaskEvent,
    TaskStatus,
    can_transition,
    idempotency_key,
)

logger = logging.getLogger(__name__)

TaskListener = Callable[[Task], None]

# Supersede is automated, so it re-reads and retries on a version conflict.
MAX_SUPERSEDE_ATTEMPTS = 5

_APPROVABLE = frozenset({TaskStatus.TODO, TaskStatus.DONE})


class _Slot:
    """Registry cell: the current snapshot of one task and the lock guarding it."""

    __slots__ = ("lock", "task")

    def __init__(self, task: Task) -> None:
        self.lock = threading.Lock()
        self.task = task


class TaskLifecycleManager:
    """Owns the task registry and drives tasks to dispatch or rejection.

    Args:
        gateway: External planner that approved tasks are handed to.
        config: Session configuration (visibility bar, dispatch retry budget).
    """

    def __init__(self, gateway: DispatchGateway, config: SessionConfig) -> None:
        self._config = config
        self._slots: dict[str, _Slot] = {}
        self._registry_lock = threading.Lock()
        self._by_proposal: dict[str, str] = {}
        self._dispatch_keys: dict[str, str] = {}
        self._ids = itertools.count(1)
        self._events: list[TaskEvent] = []
        self._events_lock = threading.Lock()
        self._listeners: list[TaskListener] = []
        self._closed = False
        self.dispatcher = Dispatcher(
            gateway,
            max_attempts=config.dispatch_max_attempts,
            backoff_min_s=config.dispatch_backoff_min_s,
            backoff_max_s=config.dispatch_backoff_max_s,
            workers=config.dispatch_workers,
            on_settled=self._on_dispatch_settled,
        )

    # -- reads ---------------------------------------------------------------

    def get(self, task_id: str) -> Task:
        return self._slot(task_id).task

    def list_tasks(self, status: TaskStatus | None = None) -> list[Task]:
        with self._registry_lock:
            tasks = [slot.task for slot in self._slots.values()]
        if status is not None:
            tasks = [t for t in tasks if t.status is status]
        return tasks

    def is_visible(self, task: Task, threshold: float | None = None) -> bool:
        """Proposed cards below the confidence bar stay hidden from the board."""
        bar = self._config.visibility_threshold if threshold is None else threshold
        if task.status is not TaskStatus.PROPOSED or task.confidence is None:
            return True
        return task.confidence >= bar

    def board(self, threshold: float | None = None) -> dict[str, list[Task]]:
        """Board view: one list of visible tasks per column."""
        columns: dict[str, list[Task]] = {name: [] for name in BOARD_COLUMNS}
        by_status = {status: name for name, status in BOARD_COLUMNS.items()}
        for task in self.list_tasks():
            column = by_status.get(task.status)
            if column is not None and self.is_visible(task, threshold):
                columns[column].append(task)
        return columns

    def history(self, task_id: str | None = None) -> list[TaskEvent]:
        with self._events_lock:
            events = list(self._events)
        if task_id is None:
            return events
        return [e for e in events if e.task_id == task_id]

    def dispatch_record(self, task_id: str) -> DispatchRecord | None:
        key = self._dispatch_keys.get(task_id)
        return self.dispatcher.get(key) if key else None

    def subscribe(self, listener: TaskListener) -> None:
        """Call *listener* with the new snapshot after every committed mutation."""
        self._listeners.append(listener)

    # -- creation ------------------------------------------------------------

    def ingest_proposal(self, proposal: ActionItemProposal) -> str:
        """Apply an extractor proposal and return the id of the task carrying it.

        A proposal overlapping an existing ``PROPOSED`` task supersedes it in
        place (same id, new version).  One overlapping a task a human has
        already acted on is absorbed: recorded in the audit trail, task left
        untouched.  Otherwise a new ``PROPOSED`` task is created.
        """
        self._check_open()
        with self._registry_lock:
            known = self._by_proposal.get(proposal.id)
            if known is not None:
                return known
            target = self._find_overlapping(proposal)
            if target is None:
                task = Task(
                    id=f"t{next(self._ids)}",
                    description=proposal.text,
                    status=TaskStatus.PROPOSED,
                    version=1,
                    origin_proposal_id=proposal.id,
                    owner=proposal.suggested_owner,
                    due_date=proposal.suggested_due_date,
                    category=proposal.category,
                    confidence=proposal.confidence,
                    evidence_text=proposal.evidence_text,
                    source_segment_range=proposal.source_segment_range,
                )
                self._slots[task.id] = _Slot(task)
                self._by_proposal[proposal.id] = task.id
            else:
                self._by_proposal[proposal.id] = target.task.id

        if target is None:
            self._committed(task, "proposed", detail=proposal.id)
            return task.id
        return self._supersede(target, proposal)

    def _find_overlapping(self, proposal: ActionItemProposal) -> _Slot | None:
        match: _Slot | None = None
        for slot in self._slots.values():
            span = slot.task.source_segment_range
            if span is not None and ranges_overlap(span, proposal.source_segment_range):
                match = slot
        return match

    def _supersede(self, slot: _Slot, proposal: ActionItemProposal) -> str:
        for _ in range(MAX_SUPERSEDE_ATTEMPTS):
            current = slot.task
            if current.status is not TaskStatus.PROPOSED:
                self._record(
                    TaskEvent(
                        task_id=current.id,
                        version=current.version,
                        action="absorbed",
                        status=current.status,
                        detail=proposal.id,
                    )
                )
                logger.info(
                    "Proposal %s absorbed by task %s (%s)", proposal.id, current.id, current.status
                )
                return current.id

            start = min(current.source_segment_range[0], proposal.source_segment_range[0])  # type: ignore[index]
            end = max(current.source_segment_range[1], proposal.source_segment_range[1])  # type: ignore[index]
            updated = replace(
                current,
                description=proposal.text,
                owner=proposal.suggested_owner or current.owner,
                due_date=proposal.suggested_due_date or current.due_date,
                category=proposal.category,
                confidence=proposal.confidence,
                evidence_text=proposal.evidence_text,
                origin_proposal_id=proposal.id,
                source_segment_range=(start, end),
                retired_proposal_ids=current.retired_proposal_ids + (current.origin_proposal_id,),
                version=current.version + 1,
            )
            try:
                self._compare_and_set(slot, current.version, updated)
            except ConflictError:
                logger.debug("Supersede of %s lost a race; re-reading", current.id)
                continue
            self._committed(updated, "superseded", detail=proposal.id)
            return updated.id

        raise ConflictError(slot.task.id, slot.task.version, slot.task.version)

    def create_manual_task(
        self,
        description: str,
        owner: str | None = None,
        due_date: str | None = None,
        category: str = "General",
    ) -> Task:
        """Create a task by hand; it starts in ``TODO`` with the manual origin marker."""
        self._check_open()
        if not description.strip():
            raise ValidationError("Task description must not be empty")
        with self._registry_lock:
            task = Task(
                id=f"t{next(self._ids)}",
                description=description.strip(),
                status=TaskStatus.TODO,
                version=1,
                origin_proposal_id=MANUAL_ORIGIN,
                owner=owner,
                due_date=due_date,
                category=category,
            )
            self._slots[task.id] = _Slot(task)
        self._committed(task, "created")
        return task

    # -- transitions ---------------------------------------------------------

    def move_status(
        self,
        task_id: str,
        from_status: TaskStatus,
        to_status: TaskStatus,
        expected_version: int,
    ) -> int:
        """Move a task between non-terminal statuses.

        Returns:
            The task's new version.

        Raises:
            ConflictError: *expected_version* is stale.
            TransitionError: The task is not in *from_status*, the move is not
                in the transition table, or the target is terminal (use
                :meth:`approve` / :meth:`reject`).
        """
        slot = self._slot(task_id)
        with slot.lock:
            self._check_open()
            task = self._check_version(slot, expected_version)
            if task.status is not from_status:
                self._refuse(task, f"task is {task.status}, not {from_status}")
            if to_status in TERMINAL_STATUSES:
                self._refuse(task, f"{to_status} is only reachable through approve/reject")
            if not can_transition(task.status, to_status):
                self._refuse(task, f"{task.status} -> {to_status} is not allowed")
            updated = replace(task, status=to_status, version=task.version + 1)
            slot.task = updated
        self._committed(updated, "moved", detail=f"{from_status}->{to_status}")
        return updated.version

    def move_to_column(
        self,
        task_id: str,
        from_column: str,
        to_column: str,
        expected_version: int,
    ) -> int:
        """Board drag-and-drop: map the source and destination columns to statuses."""
        try:
            from_status = BOARD_COLUMNS[from_column]
            to_status = BOARD_COLUMNS[to_column]
        except KeyError as exc:
            raise ValidationError(f"Unknown board column: {exc.args[0]!r}") from exc
        return self.move_status(task_id, from_status, to_status, expected_version)

    def approve(self, task_id: str, expected_version: int) -> DispatchRecord:
        """Approve a ``TODO`` or ``DONE`` task for handoff to the external planner.

        The task becomes ``DISPATCHED`` and exactly one dispatch record is
        queued under a key derived from the task id and its new version.
        Returns as soon as the record is queued.
        """
        slot = self._slot(task_id)
        with slot.lock:
            self._check_open()
            task = self._check_version(slot, expected_version)
            if task.status not in _APPROVABLE:
                self._refuse(task, f"cannot approve a {task.status} task")
            updated = replace(task, status=TaskStatus.DISPATCHED, version=task.version + 1)
            key = idempotency_key(task.id, updated.version)
            record = self.dispatcher.enqueue(
                DispatchRecord(
                    task_id=task.id,
                    idempotency_key=key,
                    dispatch_attempt_id=f"{key[:12]}-0",
                    task=updated,
                )
            )
            self._dispatch_keys[task.id] = key
            slot.task = updated
        self._committed(updated, "approved", detail=key)
        return record

    def reject(self, task_id: str, expected_version: int, reason: str | None = None) -> int:
        """Discard a task. Terminal. Returns the new version."""
        slot = self._slot(task_id)
        with slot.lock:
            self._check_open()
            task = self._check_version(slot, expected_version)
            if not can_transition(task.status, TaskStatus.REJECTED):
                self._refuse(task, f"cannot reject a {task.status} task")
            updated = replace(
                task,
                status=TaskStatus.REJECTED,
                version=task.version + 1,
                rejection_reason=reason,
            )
            slot.task = updated
        self._committed(updated, "rejected", detail=reason)
        return updated.version

    def redispatch(self, task_id: str) -> DispatchRecord:
        """Queue a failed dispatch again under its original idempotency key."""
        self._check_open()
        record = self.dispatch_record(task_id)
        if record is None:
            raise TaskNotFoundError(f"Task {task_id} has no dispatch record")
        if record.outcome is not DispatchOutcome.FAILED:
            raise TransitionError(f"Dispatch of {task_id} is {record.outcome}, not failed")
        logger.info("Re-dispatching task %s with key %s", task_id, record.idempotency_key)
        return self.dispatcher.enqueue(replace(record, outcome=DispatchOutcome.PENDING))

    def close(self, timeout: float | None = None) -> list[DispatchRecord]:
        """Close the registry for writes after draining in-flight dispatches.

        Returns:
            Dispatch records still pending (an operational alarm condition).
        """
        pending = self.dispatcher.drain(timeout=timeout)
        self._closed = True
        return pending

    # -- internals -----------------------------------------------------------

    def _slot(self, task_id: str) -> _Slot:
        slot = self._slots.get(task_id)
        if slot is None:
            raise TaskNotFoundError(f"Task {task_id} not found")
        return slot

    def _check_open(self) -> None:
        if self._closed:
            raise SessionClosedError("Task registry is closed")

    @staticmethod
    def _check_version(slot: _Slot, expected_version: int) -> Task:
        task = slot.task
        if task.version != expected_version:
            raise ConflictError(task.id, expected_version, task.version)
        return task

    @staticmethod
    def _compare_and_set(slot: _Slot, expected_version: int, updated: Task) -> None:
        with slot.lock:
            if slot.task.version != expected_version:
                raise ConflictError(slot.task.id, expected_version, slot.task.version)
            slot.task = updated

    @staticmethod
    def _refuse(task: Task, reason: str) -> NoReturn:
        logger.warning("Refused transition on task %s (v%d): %s", task.id, task.version, reason)
        raise TransitionError(f"Task {task.id}: {reason}")

    def _record(self, event: TaskEvent) -> None:
        with self._events_lock:
            self._events.append(event)

    def _committed(self, task: Task, action: str, detail: str | None = None) -> None:
        self._record(
            TaskEvent(
                task_id=task.id,
                version=task.version,
                action=action,
                status=task.status,
                detail=detail,
            )
        )
        for listener in self._listeners:
            listener(task)

    def _on_dispatch_settled(self, record: DispatchRecord) -> None:
        task = record.task or self._slots[record.task_id].task
        self._record(
            TaskEvent(
                task_id=record.task_id,
                version=task.version,
                action=f"dispatch-{record.outcome}",
                status=task.status,
                detail=record.last_error,
            )
        )
