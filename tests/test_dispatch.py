"""Tests for keyed dispatch delivery and the planner gateways (no network)."""

from __future__ import annotations

import json
import threading

import httpx
import pytest

from src.errors import SessionClosedError, UpstreamUnavailable
from src.tasks.dispatch import Dispatcher
from src.tasks.gateway import GatewayReply, HttpPlannerGateway, InMemoryGateway
from src.tasks.models import DispatchOutcome, DispatchRecord, Task, TaskStatus, idempotency_key


def _record(task_id: str = "t1", version: int = 2) -> DispatchRecord:
    key = idempotency_key(task_id, version)
    task = Task(
        id=task_id,
        description="Prepare ESG proposal",
        status=TaskStatus.DISPATCHED,
        version=version,
        origin_proposal_id="prop-5-5",
        owner="David Chen",
        due_date="Friday",
        category="Investment",
    )
    return DispatchRecord(
        task_id=task_id,
        idempotency_key=key,
        dispatch_attempt_id=f"{key[:12]}-0",
        task=task,
    )


class _FlakyGateway:
    """Raises UpstreamUnavailable for the first *failures* calls, then answers *reply*."""

    def __init__(self, failures: int, reply: GatewayReply | None = None) -> None:
        self.failures = failures
        self.reply = reply or GatewayReply(accepted=True)
        self.calls: list[DispatchRecord] = []

    def submit(self, record: DispatchRecord) -> GatewayReply:
        self.calls.append(record)
        if len(self.calls) <= self.failures:
            raise UpstreamUnavailable("planner down")
        return self.reply


def _dispatcher(gateway, max_attempts: int = 4, **kwargs) -> Dispatcher:
    return Dispatcher(
        gateway,
        max_attempts=max_attempts,
        backoff_min_s=0.0,
        backoff_max_s=0.0,
        workers=2,
        **kwargs,
    )


# ---------------------------------------------------------------------------
# Dispatcher
# ---------------------------------------------------------------------------


class TestDeliver:
    def test_retries_reuse_the_idempotency_key(self) -> None:
        gateway = _FlakyGateway(failures=2)
        record = _record()
        settled = _dispatcher(gateway).deliver(record)

        assert settled.outcome is DispatchOutcome.CONFIRMED
        assert settled.attempts == 3
        assert {c.idempotency_key for c in gateway.calls} == {record.idempotency_key}
        assert [c.dispatch_attempt_id for c in gateway.calls] == [
            f"{record.idempotency_key[:12]}-{n}" for n in (1, 2, 3)
        ]

    def test_exhausted_budget_fails_with_last_error(self) -> None:
        gateway = _FlakyGateway(failures=10)
        settled = _dispatcher(gateway, max_attempts=3).deliver(_record())

        assert settled.outcome is DispatchOutcome.FAILED
        assert settled.attempts == 3
        assert settled.last_error == "planner down"
        assert len(gateway.calls) == 3

    def test_reject_is_not_retried(self) -> None:
        gateway = _FlakyGateway(failures=0, reply=GatewayReply(accepted=False, detail="unknown owner"))
        settled = _dispatcher(gateway).deliver(_record())

        assert settled.outcome is DispatchOutcome.FAILED
        assert settled.last_error == "unknown owner"
        assert len(gateway.calls) == 1

    def test_unexpected_error_fails_record(self) -> None:
        class _Broken:
            def submit(self, record):
                raise RuntimeError("bad payload")

        settled = _dispatcher(_Broken()).deliver(_record())
        assert settled.outcome is DispatchOutcome.FAILED
        assert "bad payload" in settled.last_error

    def test_replay_of_confirmed_key_is_a_no_op(self) -> None:
        gateway = InMemoryGateway()
        dispatcher = _dispatcher(gateway)
        first = dispatcher.deliver(_record())
        replay = dispatcher.deliver(_record())

        assert replay == first
        assert replay.outcome is DispatchOutcome.CONFIRMED
        assert gateway.submit_count == 1

    def test_on_settled_called_once(self) -> None:
        settled: list[DispatchRecord] = []
        dispatcher = _dispatcher(InMemoryGateway(), on_settled=settled.append)
        dispatcher.deliver(_record())
        assert [r.outcome for r in settled] == [DispatchOutcome.CONFIRMED]


class TestEnqueueAndDrain:
    def test_enqueue_delivers_in_background(self) -> None:
        gateway = InMemoryGateway()
        dispatcher = _dispatcher(gateway)
        record = dispatcher.enqueue(_record())
        assert record.outcome is DispatchOutcome.PENDING

        assert dispatcher.drain(timeout=5) == []
        assert dispatcher.get(record.idempotency_key).outcome is DispatchOutcome.CONFIRMED

    def test_enqueue_confirmed_key_returns_prior_record(self) -> None:
        gateway = InMemoryGateway()
        dispatcher = _dispatcher(gateway)
        confirmed = dispatcher.deliver(_record())

        assert dispatcher.enqueue(_record()) == confirmed
        dispatcher.drain(timeout=5)
        assert gateway.submit_count == 1

    def test_enqueue_after_drain_refused(self) -> None:
        dispatcher = _dispatcher(InMemoryGateway())
        dispatcher.drain()
        with pytest.raises(SessionClosedError):
            dispatcher.enqueue(_record())

    def test_drain_timeout_reports_pending(self) -> None:
        release = threading.Event()
        started = threading.Event()

        class _Blocking:
            def submit(self, record):
                started.set()
                release.wait(5)
                return GatewayReply(accepted=True)

        dispatcher = _dispatcher(_Blocking())
        record = dispatcher.enqueue(_record())
        assert started.wait(5)

        pending = dispatcher.drain(timeout=0.05)
        release.set()

        assert [r.idempotency_key for r in pending] == [record.idempotency_key]


# ---------------------------------------------------------------------------
# HTTP planner gateway
# ---------------------------------------------------------------------------


def _http_gateway(handler) -> HttpPlannerGateway:
    client = httpx.Client(transport=httpx.MockTransport(handler))
    return HttpPlannerGateway("https://planner.example.com/", client=client)


class TestHttpPlannerGateway:
    def test_posts_task_with_idempotency_header(self) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(201, json={"id": "cal-1"})

        record = _record()
        reply = _http_gateway(handler).submit(record)

        assert reply.accepted
        [request] = seen
        assert str(request.url) == "https://planner.example.com/tasks"
        assert request.headers["Idempotency-Key"] == record.idempotency_key
        body = json.loads(request.content)
        assert body["task_id"] == "t1"
        assert body["title"] == "Prepare ESG proposal"
        assert body["due_date"] == "Friday"

    def test_conflict_means_already_delivered(self) -> None:
        reply = _http_gateway(lambda r: httpx.Response(409)).submit(_record())
        assert reply.accepted

    @pytest.mark.parametrize("status", [429, 500, 503])
    def test_retryable_statuses_raise(self, status: int) -> None:
        with pytest.raises(UpstreamUnavailable):
            _http_gateway(lambda r: httpx.Response(status)).submit(_record())

    def test_client_error_is_a_reject(self) -> None:
        reply = _http_gateway(lambda r: httpx.Response(422, text="owner unknown")).submit(_record())
        assert not reply.accepted
        assert reply.detail == "422: owner unknown"

    def test_connection_error_raises(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        with pytest.raises(UpstreamUnavailable):
            _http_gateway(handler).submit(_record())

    def test_dispatcher_retries_through_http_failures(self) -> None:
        statuses = iter([503, 503, 200])

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(next(statuses))

        settled = _dispatcher(_http_gateway(handler)).deliver(_record())
        assert settled.outcome is DispatchOutcome.CONFIRMED
        assert settled.attempts == 3

    @pytest.mark.parametrize(
        "error", [httpx.ReadError, httpx.WriteError, httpx.RemoteProtocolError]
    )
    def test_dropped_connection_is_retried(self, error) -> None:
        calls: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            if len(calls) < 3:
                raise error("connection dropped", request=request)
            return httpx.Response(201)

        settled = _dispatcher(_http_gateway(handler), max_attempts=3).deliver(_record())
        assert settled.outcome is DispatchOutcome.CONFIRMED
        assert len(calls) == 3
        assert {r.headers["Idempotency-Key"] for r in calls} == {settled.idempotency_key}


class TestInMemoryGateway:
    def test_records_each_key_once(self) -> None:
        gateway = InMemoryGateway()
        record = _record()
        assert gateway.submit(record).accepted
        assert gateway.submit(record).accepted
        assert list(gateway.delivered) == [record.idempotency_key]
        assert gateway.submit_count == 2
