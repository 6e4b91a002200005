"""
Tests for fire-and-forget delivery through the audit dispatcher.
"""

import threading

import pytest

from audittrail.circuit_breaker import CircuitBreaker
from audittrail.dispatcher import AuditDispatcher, AuditDispatcherClosedError
from audittrail.scope import AuditScope, AuditSerializationError
from audittrail.sink import AuditSink, MemoryAuditSink


class FailingSink(AuditSink):
    name = "failing"

    def __init__(self):
        self.attempts = 0

    def write(self, record):
        self.attempts += 1
        raise OSError("disk full")


class BlockingSink(MemoryAuditSink):
    """Holds the worker inside write() until released."""

    def __init__(self):
        super().__init__()
        self.entered = threading.Event()
        self.release = threading.Event()

    def write(self, record):
        self.entered.set()
        self.release.wait(timeout=5)
        super().write(record)


class TestDelivery:
    """Test normal delivery."""

    def test_send_delivers_serialized_scope(self, dispatcher, memory_sink, op_scope):
        dispatcher.send(op_scope)
        dispatcher.flush()

        assert memory_sink.records == [op_scope.to_dict()]
        assert dispatcher.get_state()["delivered"] == 1

    def test_send_order_preserved(self, dispatcher, memory_sink):
        for i in range(10):
            dispatcher.send(AuditScope.new(f"op{i}"))
        dispatcher.flush()

        assert [r["name"] for r in memory_sink.records] == [f"op{i}" for i in range(10)]

    def test_record_is_snapshot_at_send(self, dispatcher, memory_sink):
        """Changes made to a scope after sending do not reach the sink."""
        au = AuditScope.new("au")
        au.log_event("sent")
        dispatcher.send(au)
        au.log_event("after send")
        dispatcher.flush()

        assert [e["log"]["name"] for e in memory_sink.records[0]["events"]] == ["sent"]

    def test_partial_scope_can_be_sent(self, dispatcher, memory_sink):
        """An abandoned scope is forwarded as-is."""
        au = AuditScope.new("abandoned")
        au.log_event("got this far")
        dispatcher.send(au)
        dispatcher.flush()

        assert memory_sink.records[0]["duration"] is None
        assert len(memory_sink.records[0]["events"]) == 1

    def test_serialization_error_reaches_sender(self, dispatcher, memory_sink):
        au = AuditScope.new("broken")
        au.events.append(object())

        with pytest.raises(AuditSerializationError):
            dispatcher.send(au)

        dispatcher.flush()
        assert memory_sink.records == []


class TestFailures:
    """Test best-effort behaviour when the sink misbehaves."""

    def test_sink_failure_counted_and_worker_survives(self):
        sink = FailingSink()
        d = AuditDispatcher(
            sink=sink,
            circuit_breaker=CircuitBreaker(failure_threshold=100, timeout=60, name="T"),
        )
        try:
            d.send(AuditScope.new("a"))
            d.send(AuditScope.new("b"))
            d.flush()

            state = d.get_state()
            assert state["failed"] == 2
            assert state["delivered"] == 0
            assert sink.attempts == 2
        finally:
            d.close(timeout=2)

    def test_circuit_opens_and_stops_calling_sink(self):
        sink = FailingSink()
        d = AuditDispatcher(
            sink=sink,
            circuit_breaker=CircuitBreaker(failure_threshold=2, timeout=60, name="T"),
        )
        try:
            for i in range(5):
                d.send(AuditScope.new(f"op{i}"))
            d.flush()

            state = d.get_state()
            assert sink.attempts == 2
            assert state["failed"] == 5
            assert state["circuit_breaker"]["state"] == "open"
        finally:
            d.close(timeout=2)

    def test_full_queue_drops_record(self):
        sink = BlockingSink()
        d = AuditDispatcher(sink=sink, queue_size=1)
        try:
            d.send(AuditScope.new("first"))
            assert sink.entered.wait(timeout=5)

            d.send(AuditScope.new("second"))
            d.send(AuditScope.new("third"))

            assert d.get_state()["dropped"] == 1
            sink.release.set()
            d.flush()

            assert [r["name"] for r in sink.records] == ["first", "second"]
        finally:
            sink.release.set()
            d.close(timeout=2)


class TestClose:
    """Test shutdown."""

    def test_close_delivers_pending_records(self, memory_sink):
        d = AuditDispatcher(sink=memory_sink)
        for i in range(3):
            d.send(AuditScope.new(f"op{i}"))
        d.close(timeout=2)

        assert len(memory_sink.records) == 3
        assert d.get_state()["closed"] is True

    def test_send_after_close_raises(self, memory_sink):
        d = AuditDispatcher(sink=memory_sink)
        d.close(timeout=2)

        with pytest.raises(AuditDispatcherClosedError):
            d.send(AuditScope.new("late"))

    def test_close_is_idempotent(self, memory_sink):
        d = AuditDispatcher(sink=memory_sink)
        d.close(timeout=2)
        d.close(timeout=2)
