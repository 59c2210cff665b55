"""Task board endpoints: list, create, move, approve, reject, and dispatch status."""

from __future__ import annotations

from fastapi import APIRouter, Depends

from src.api.deps import get_store, http_error
from src.api.models import (
    ApproveRequest,
    BoardResponse,
    DispatchOut,
    MoveRequest,
    RejectRequest,
    TaskCreateRequest,
    TaskOut,
    VersionResponse,
)
from src.errors import PipelineError
from src.session import SessionStore

router = APIRouter()


@router.get("/api/sessions/{session_id}/tasks", response_model=BoardResponse)
async def list_tasks(
    session_id: str,
    threshold: float | None = None,
    store: SessionStore = Depends(get_store),
) -> BoardResponse:
    """Board view of the session's tasks.

    Proposed cards below the visibility threshold are left out of the columns
    but still listed under ``tasks``.
    """
    try:
        manager = store.get(session_id).tasks
    except PipelineError as exc:
        raise http_error(exc) from exc
    board = manager.board(threshold)
    return BoardResponse(
        columns={
            column: [TaskOut.model_validate(t) for t in tasks] for column, tasks in board.items()
        },
        tasks=[TaskOut.model_validate(t) for t in manager.list_tasks()],
    )


@router.post("/api/sessions/{session_id}/tasks", response_model=TaskOut, status_code=201)
async def create_task(
    session_id: str,
    request: TaskCreateRequest,
    store: SessionStore = Depends(get_store),
) -> TaskOut:
    """Add a task by hand; it lands in the To Do column."""
    try:
        task = store.get(session_id).tasks.create_manual_task(
            request.description,
            owner=request.owner,
            due_date=request.due_date,
            category=request.category,
        )
    except PipelineError as exc:
        raise http_error(exc) from exc
    return TaskOut.model_validate(task)


@router.post("/api/sessions/{session_id}/tasks/{task_id}/move", response_model=VersionResponse)
async def move_task(
    session_id: str,
    task_id: str,
    request: MoveRequest,
    store: SessionStore = Depends(get_store),
) -> VersionResponse:
    """Drag a card between board columns (optimistic, version-checked)."""
    try:
        version = store.get(session_id).tasks.move_to_column(
            task_id, request.from_column, request.to_column, request.expected_version
        )
    except PipelineError as exc:
        raise http_error(exc) from exc
    return VersionResponse(task_id=task_id, version=version)


@router.post(
    "/api/sessions/{session_id}/tasks/{task_id}/approve",
    response_model=DispatchOut,
    status_code=202,
)
async def approve_task(
    session_id: str,
    task_id: str,
    request: ApproveRequest,
    store: SessionStore = Depends(get_store),
) -> DispatchOut:
    """Approve a task for the external planner. Returns once the dispatch is queued."""
    try:
        record = store.get(session_id).tasks.approve(task_id, request.expected_version)
    except PipelineError as exc:
        raise http_error(exc) from exc
    return DispatchOut.model_validate(record)


@router.post("/api/sessions/{session_id}/tasks/{task_id}/reject", response_model=VersionResponse)
async def reject_task(
    session_id: str,
    task_id: str,
    request: RejectRequest,
    store: SessionStore = Depends(get_store),
) -> VersionResponse:
    try:
        version = store.get(session_id).tasks.reject(
            task_id, request.expected_version, request.reason
        )
    except PipelineError as exc:
        raise http_error(exc) from exc
    return VersionResponse(task_id=task_id, version=version)


@router.post(
    "/api/sessions/{session_id}/tasks/{task_id}/redispatch",
    response_model=DispatchOut,
    status_code=202,
)
async def redispatch_task(
    session_id: str,
    task_id: str,
    store: SessionStore = Depends(get_store),
) -> DispatchOut:
    """Retry a failed dispatch under its original idempotency key."""
    try:
        record = store.get(session_id).tasks.redispatch(task_id)
    except PipelineError as exc:
        raise http_error(exc) from exc
    return DispatchOut.model_validate(record)


@router.get("/api/sessions/{session_id}/dispatches", response_model=list[DispatchOut])
async def list_dispatches(
    session_id: str,
    store: SessionStore = Depends(get_store),
) -> list[DispatchOut]:
    try:
        dispatcher = store.get(session_id).tasks.dispatcher
    except PipelineError as exc:
        raise http_error(exc) from exc
    return [DispatchOut.model_validate(r) for r in dispatcher.records()]
