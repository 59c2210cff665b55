"""Shared API dependencies: the session store and pipeline-error mapping."""

from __future__ import annotations

import logging
from functools import lru_cache

from fastapi import HTTPException

from src.config import get_settings
from src.errors import (
    ConflictError,
    PipelineError,
    SegmentConflictError,
    SessionClosedError,
    SessionNotFoundError,
    TaskNotFoundError,
    TransitionError,
    UpstreamUnavailable,
    ValidationError,
)
from src.session import SessionStore

logger = logging.getLogger(__name__)

_STATUS_CODES: tuple[tuple[type[PipelineError], int], ...] = (
    (ValidationError, 422),
    (TransitionError, 422),
    (ConflictError, 409),
    (SegmentConflictError, 409),
    (SessionClosedError, 409),
    (TaskNotFoundError, 404),
    (SessionNotFoundError, 404),
    (UpstreamUnavailable, 503),
)


@lru_cache(maxsize=1)
def get_store() -> SessionStore:
    """Return the process-wide session store."""
    return SessionStore(get_settings())


def http_error(exc: PipelineError) -> HTTPException:
    """Map a pipeline error onto an HTTP error with a JSON detail."""
    for error_type, status_code in _STATUS_CODES:
        if isinstance(exc, error_type):
            break
    else:
        status_code = 500
        logger.error("Unmapped pipeline error: %s", exc)

    if isinstance(exc, ConflictError):
        detail: str | dict[str, object] = {
            "message": str(exc),
            "task_id": exc.task_id,
            "expected_version": exc.expected_version,
            "actual_version": exc.actual_version,
        }
    else:
        detail = str(exc)
    return HTTPException(status_code=status_code, detail=detail)
