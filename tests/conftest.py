"""
Pytest configuration and fixtures.
Shared test utilities and sample scopes.
"""

import pytest

from audittrail.circuit_breaker import CircuitBreaker
from audittrail.dispatcher import AuditDispatcher
from audittrail.scope import AuditScope
from audittrail.sink import MemoryAuditSink


@pytest.fixture
def memory_sink():
    """Return an empty in-memory sink."""
    return MemoryAuditSink()


@pytest.fixture
def dispatcher(memory_sink):
    """Dispatcher delivering into memory_sink, closed after the test."""
    d = AuditDispatcher(
        sink=memory_sink,
        queue_size=100,
        circuit_breaker=CircuitBreaker(failure_threshold=3, timeout=60, name="TestBreaker"),
        name="TestDispatcher",
    )
    yield d
    d.close(timeout=2)


@pytest.fixture
def op_scope():
    """
    The reference trail:
    op -> log start, scope sub (log work-done), log end
    """
    op = AuditScope.new("op")
    op.log_event("start")
    sub = AuditScope.new("sub")
    sub.log_event("work-done")
    op.append_scope(sub)
    op.log_event("end")
    return op


@pytest.fixture
def sample_record():
    """A serialized trail as a remote producer would submit it."""
    return {
        "time": "2026-10-19T09:30:00.000000+00:00",
        "name": "login",
        "duration": 0.0042,
        "events": [
            {"log": {"time": "2026-10-19T09:30:00.001000+00:00", "name": "start"}},
            {
                "scope": {
                    "time": "2026-10-19T09:30:00.002000+00:00",
                    "name": "check_password",
                    "duration": 0.002,
                    "events": [
                        {"log": {"time": "2026-10-19T09:30:00.003000+00:00", "name": "hash ok"}}
                    ],
                }
            },
            {"log": {"time": "2026-10-19T09:30:00.004000+00:00", "name": "end"}},
        ],
    }
