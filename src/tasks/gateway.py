"""Dispatch gateway contract and implementations for the external planner."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import Any, Protocol

import httpx

from src.errors import UpstreamUnavailable
from src.tasks.models import DispatchRecord

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class GatewayReply:
    """Ack (``accepted=True``) or Reject from the external system."""

    accepted: bool
    detail: str | None = None


class DispatchGateway(Protocol):
    """Consumed interface of the calendar/planner system of record.

    ``submit`` must be idempotent per ``record.idempotency_key``.  Transport
    failures raise :class:`UpstreamUnavailable`; a Reject is a definitive
    answer and is not retried.
    """

    def submit(self, record: DispatchRecord) -> GatewayReply: ...


def _task_payload(record: DispatchRecord) -> dict[str, Any]:
    task = record.task
    payload: dict[str, Any] = {"task_id": record.task_id}
    if task is not None:
        payload.update(
            {
                "title": task.description,
                "owner": task.owner,
                "due_date": task.due_date,
                "category": task.category,
                "evidence": task.evidence_text,
            }
        )
    return payload


class HttpPlannerGateway:
    """Posts approved tasks to a planner webhook with an ``Idempotency-Key`` header.

    A 409 from the planner means the key was already delivered and counts as Ack.
    """

    def __init__(
        self,
        base_url: str,
        timeout: float = 10.0,
        client: httpx.Client | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._client = client or httpx.Client(timeout=timeout)

    def submit(self, record: DispatchRecord) -> GatewayReply:
        try:
            r = self._client.post(
                f"{self._base_url}/tasks",
                json=_task_payload(record),
                headers={"Idempotency-Key": record.idempotency_key},
            )
        except httpx.TransportError as exc:
            raise UpstreamUnavailable(f"Planner unreachable: {exc}") from exc

        if r.status_code >= 500 or r.status_code == 429:
            raise UpstreamUnavailable(f"Planner returned {r.status_code}")
        if r.status_code == 409 or r.is_success:
            return GatewayReply(accepted=True)
        return GatewayReply(accepted=False, detail=f"{r.status_code}: {r.text[:200]}")


class InMemoryGateway:
    """In-process planner that records deliveries by idempotency key.

    Used when no planner URL is configured: approved tasks are kept (and
    logged) instead of sent anywhere.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self.delivered: dict[str, DispatchRecord] = {}
        self.submit_count = 0

    def submit(self, record: DispatchRecord) -> GatewayReply:
        with self._lock:
            self.submit_count += 1
            if record.idempotency_key not in self.delivered:
                self.delivered[record.idempotency_key] = record
                logger.info("Planner accepted task %s", record.task_id)
        return GatewayReply(accepted=True)
