"""Off-critical-path delivery of approved tasks with bounded, keyed retries.

Deliveries run on a worker pool so ``approve()`` returns as soon as the
record is queued.  A record is retried with the same idempotency key on
:class:`UpstreamUnavailable`, with exponential backoff, until the gateway
answers or the attempt budget runs out.  Either way the record ends
``CONFIRMED`` or ``FAILED``; ``FAILED`` keeps the last error.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from concurrent.futures import Future, ThreadPoolExecutor, wait
from dataclasses import replace

from tenacity import (
    Retrying,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from src.errors import SessionClosedError, UpstreamUnavailable
from src.tasks.gateway import DispatchGateway
from src.tasks.models import DispatchOutcome, DispatchRecord

logger = logging.getLogger(__name__)

SettledCallback = Callable[[DispatchRecord], None]


class Dispatcher:
    """Queues and delivers dispatch records to a gateway.

    Args:
        gateway: The external planner.
        max_attempts: Attempt budget per delivery.
        backoff_min_s: First retry delay (and exponential multiplier).
        backoff_max_s: Retry delay cap.
        workers: Worker threads.
        on_settled: Called with each record once it is confirmed or failed.
    """

    def __init__(
        self,
        gateway: DispatchGateway,
        max_attempts: int = 5,
        backoff_min_s: float = 0.5,
        backoff_max_s: float = 30.0,
        workers: int = 4,
        on_settled: SettledCallback | None = None,
    ) -> None:
        self._gateway = gateway
        self._max_attempts = max_attempts
        self._backoff_min_s = backoff_min_s
        self._backoff_max_s = backoff_max_s
        self._on_settled = on_settled
        self._executor = ThreadPoolExecutor(max_workers=workers, thread_name_prefix="dispatch")
        self._lock = threading.Lock()
        self._records: dict[str, DispatchRecord] = {}
        self._futures: set[Future[DispatchRecord]] = set()
        self._closed = False

    def get(self, key: str) -> DispatchRecord | None:
        with self._lock:
            return self._records.get(key)

    def records(self) -> list[DispatchRecord]:
        with self._lock:
            return list(self._records.values())

    def enqueue(self, record: DispatchRecord) -> DispatchRecord:
        """Queue *record* for background delivery and return it immediately.

        A key that is already confirmed is not queued again; the confirmed
        record is returned instead.
        """
        with self._lock:
            if self._closed:
                raise SessionClosedError("Dispatcher is drained")
            existing = self._records.get(record.idempotency_key)
            if existing is not None and existing.outcome is DispatchOutcome.CONFIRMED:
                return existing
            self._records[record.idempotency_key] = record
            future = self._executor.submit(self.deliver, record)
            self._futures.add(future)
        future.add_done_callback(self._forget)
        return record

    def _forget(self, future: Future[DispatchRecord]) -> None:
        with self._lock:
            self._futures.discard(future)

    def deliver(self, record: DispatchRecord) -> DispatchRecord:
        """Deliver *record* synchronously, honouring the idempotency ledger.

        Replaying a key that is already confirmed makes no gateway call and
        returns the prior outcome.
        """
        key = record.idempotency_key
        with self._lock:
            existing = self._records.get(key)
            if existing is not None and existing.outcome is DispatchOutcome.CONFIRMED:
                logger.info("Dispatch %s already confirmed; replay is a no-op", key)
                return existing
            self._records[key] = record

        current = record
        last_error: str | None = record.last_error
        try:
            for attempt in Retrying(
                stop=stop_after_attempt(self._max_attempts),
                wait=wait_exponential(
                    multiplier=self._backoff_min_s,
                    min=self._backoff_min_s,
                    max=self._backoff_max_s,
                ),
                retry=retry_if_exception_type(UpstreamUnavailable),
                before_sleep=before_sleep_log(logger, logging.WARNING),
                reraise=True,
            ):
                with attempt:
                    number = record.attempts + attempt.retry_state.attempt_number
                    current = replace(
                        current,
                        attempts=number,
                        dispatch_attempt_id=f"{key[:12]}-{number}",
                        last_error=last_error,
                    )
                    self._store(current)
                    try:
                        reply = self._gateway.submit(current)
                    except UpstreamUnavailable as exc:
                        last_error = str(exc)
                        raise
        except UpstreamUnavailable:
            logger.error(
                "Dispatch of task %s failed after %d attempts: %s",
                record.task_id,
                current.attempts,
                last_error,
            )
            settled = replace(current, outcome=DispatchOutcome.FAILED, last_error=last_error)
        except Exception as exc:
            logger.exception("Dispatch of task %s raised unexpectedly", record.task_id)
            settled = replace(current, outcome=DispatchOutcome.FAILED, last_error=repr(exc))
        else:
            if reply.accepted:
                settled = replace(current, outcome=DispatchOutcome.CONFIRMED, last_error=None)
            else:
                logger.warning("Planner rejected task %s: %s", record.task_id, reply.detail)
                settled = replace(current, outcome=DispatchOutcome.FAILED, last_error=reply.detail)

        self._store(settled)
        if self._on_settled is not None:
            self._on_settled(settled)
        return settled

    def _store(self, record: DispatchRecord) -> None:
        with self._lock:
            self._records[record.idempotency_key] = record

    def drain(self, timeout: float | None = None) -> list[DispatchRecord]:
        """Stop accepting work and wait for in-flight deliveries.

        Returns:
            Records still ``PENDING`` afterwards (only possible on *timeout*).
            These are logged as an operational alarm.
        """
        with self._lock:
            self._closed = True
            in_flight = list(self._futures)
        wait(in_flight, timeout=timeout)
        self._executor.shutdown(wait=timeout is None)

        pending = [r for r in self.records() if r.outcome is DispatchOutcome.PENDING]
        for record in pending:
            logger.error(
                "ALARM: dispatch of task %s still pending at session teardown (key %s)",
                record.task_id,
                record.idempotency_key,
            )
        return pending
