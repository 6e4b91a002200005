"""
Fire-and-forget handoff of finished audit scopes to a log sink.

send() serializes the scope on the caller's thread, so serialization
errors reach whoever asked for the send, then queues the record and
returns. A single worker thread delivers queued records to the sink
through a circuit breaker. Delivery is best effort: failures are logged
and counted, never retried, and never reported back to the sender.
"""

import logging
import queue
import threading
from typing import Any

from audittrail.circuit_breaker import CircuitBreaker
from audittrail.config import settings
from audittrail.scope import AuditScope
from audittrail.sink import AuditSink, build_sink

logger = logging.getLogger(__name__)

_STOP = object()


class AuditDispatcherClosedError(RuntimeError):
    """Raised when sending through a dispatcher that has been closed."""


class AuditDispatcher:
    """
    Background delivery of audit records.

    Live scopes never cross into the worker thread: only their serialized
    dicts are queued, so the single-writer rule of AuditScope holds.
    """

    def __init__(
        self,
        sink: AuditSink,
        queue_size: int = 1000,
        circuit_breaker: CircuitBreaker | None = None,
        name: str = "AuditDispatcher",
    ):
        """
        Initialize the dispatcher and start its worker thread.

        Args:
            sink: Where records are delivered
            queue_size: Maximum number of undelivered records held
            circuit_breaker: Breaker protecting the sink (a default one is created if omitted)
            name: Name for logging and the worker thread
        """
        self.sink = sink
        self.name = name
        self.circuit_breaker = circuit_breaker or CircuitBreaker(
            failure_threshold=settings.circuit_breaker_failure_threshold,
            timeout=settings.circuit_breaker_timeout,
            name=f"{name}CircuitBreaker",
        )

        self.delivered = 0
        self.failed = 0
        self.dropped = 0
        self._closed = False
        self._stats_lock = threading.Lock()
        self._send_lock = threading.Lock()
        self._queue: queue.Queue = queue.Queue(maxsize=queue_size)
        self._worker = threading.Thread(target=self._run, name=name, daemon=True)
        self._worker.start()

        logger.info(f"{name} started: sink={sink.name}, queue_size={queue_size}")

    def send(self, scope: AuditScope) -> None:
        """
        Serialize scope and queue it for delivery.

        Raises:
            AuditSerializationError: If the scope cannot be serialized
            AuditDispatcherClosedError: If the dispatcher has been closed
        """
        record = scope.to_dict()

        with self._send_lock:
            if self._closed:
                raise AuditDispatcherClosedError(f"{self.name} is closed")
            try:
                self._queue.put_nowait(record)
                return
            except queue.Full:
                with self._stats_lock:
                    self.dropped += 1
        logger.warning(f"{self.name}: queue full, dropping audit record '{scope.name}'")

    def flush(self) -> None:
        """Block until every queued record has been handled."""
        self._queue.join()

    def close(self, timeout: float | None = None) -> None:
        """Deliver what is queued, stop the worker and close the sink."""
        with self._send_lock:
            if self._closed:
                return
            self._closed = True
            self._queue.put(_STOP)
        self._worker.join(timeout=timeout if timeout is not None else settings.shutdown_timeout)
        if self._worker.is_alive():
            logger.warning(f"{self.name}: worker did not stop within timeout")

        self.sink.close()
        logger.info(f"{self.name} closed: {self.get_state()}")

    def get_state(self) -> dict[str, Any]:
        """Get delivery counters and circuit breaker state for monitoring."""
        with self._stats_lock:
            return {
                "name": self.name,
                "sink": self.sink.name,
                "closed": self._closed,
                "queued": self._queue.qsize(),
                "delivered": self.delivered,
                "failed": self.failed,
                "dropped": self.dropped,
                "circuit_breaker": self.circuit_breaker.get_state(),
            }

    def _run(self) -> None:
        while True:
            item = self._queue.get()
            try:
                if item is _STOP:
                    return
                self._deliver(item)
            finally:
                self._queue.task_done()

    def _deliver(self, record: dict[str, Any]) -> None:
        try:
            self.circuit_breaker.call(self.sink.write, record)
        except Exception as e:
            with self._stats_lock:
                self.failed += 1
            logger.error(
                f"{self.name}: failed to deliver audit record '{record.get('name')}': {e}"
            )
            return

        with self._stats_lock:
            self.delivered += 1


# Global dispatcher instance
audit_dispatcher: AuditDispatcher | None = None


def get_dispatcher() -> AuditDispatcher:
    """Get or create global dispatcher instance."""
    global audit_dispatcher
    if audit_dispatcher is None:
        audit_dispatcher = AuditDispatcher(
            sink=build_sink(settings.sink_backend, settings.sink_path),
            queue_size=settings.queue_size,
        )
    return audit_dispatcher


def close_dispatcher() -> None:
    """Close the global dispatcher if one was created."""
    global audit_dispatcher
    if audit_dispatcher is not None:
        audit_dispatcher.close()
        audit_dispatcher = None
