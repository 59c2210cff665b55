"""Error taxonomy shared by the meeting pipeline components.

A transcript gap is not an error; it travels downstream as a
:class:`~src.ingestion.models.Gap` marker.
"""

from __future__ import annotations


class PipelineError(Exception):
    """Base class for all pipeline errors."""


class ValidationError(PipelineError):
    """Malformed input. Rejected immediately, never retried."""


class SegmentConflictError(PipelineError):
    """A transcript segment re-arrived with the same id but different content."""

    def __init__(self, sequence_id: int) -> None:
        super().__init__(f"Segment {sequence_id} re-delivered with different content")
        self.sequence_id = sequence_id


class ConflictError(PipelineError):
    """Stale ``expected_version``. The caller must re-read the task and retry."""

    def __init__(self, task_id: str, expected_version: int, actual_version: int) -> None:
        super().__init__(
            f"Task {task_id} is at version {actual_version}, expected {expected_version}"
        )
        self.task_id = task_id
        self.expected_version = expected_version
        self.actual_version = actual_version


class TransitionError(PipelineError):
    """Illegal status move. Treated as a no-op rejection and logged for audit."""


class TaskNotFoundError(PipelineError):
    """No task with the given id exists in the registry."""


class SessionClosedError(PipelineError):
    """The session (or its task registry) no longer accepts writes."""


class UpstreamUnavailable(PipelineError):
    """The corpus or dispatch gateway could not be reached."""


class SessionNotFoundError(PipelineError):
    """No meeting session with the given id is registered."""
