"""
Timing wrappers for audit scopes.

The recorder protocol (AuditScope.log_event / append_scope) captures what
happened. The helpers here capture how long it took: they measure a unit
of work on the monotonic clock and store the elapsed seconds on the scope
that describes it.

Usage:

    def handle(au: AuditScope):
        audit_log(au, "handling {}", request_id)
        nested_segment(au, "load_entry", lambda child: load_entry(child, key))

Guarantees
----------
- the work runs exactly once
- duration is recorded even if the work raises
- exceptions are never suppressed
- the work's return value is passed through unchanged
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from functools import wraps
from typing import TypeVar

from audittrail.scope import AuditScope

logger = logging.getLogger(__name__)

T = TypeVar("T")


def audit_segment(scope: AuditScope, work: Callable[[], T]) -> T:
    """
    Run work() and record its elapsed time on scope.duration.

    Args:
        scope: Scope describing the work
        work: Zero-argument callable to measure

    Returns:
        Whatever work() returns

    Raises:
        Exception: Anything work() raises, after the duration is recorded
    """
    start = time.perf_counter()
    try:
        return work()
    finally:
        _record(scope, time.perf_counter() - start)


@contextmanager
def timed(scope: AuditScope) -> Iterator[AuditScope]:
    """Context manager form of audit_segment()."""
    start = time.perf_counter()
    try:
        yield scope
    finally:
        _record(scope, time.perf_counter() - start)


def nested_segment(parent: AuditScope, name: str, work: Callable[[AuditScope], T]) -> T:
    """
    Run work(child) in a new timed child scope and attach it to parent.

    The child is appended once the work has finished, whether it returned
    or raised, so a failed step still shows up in the parent's trail with
    the events it managed to record.
    """
    child = AuditScope.new(name)
    try:
        return audit_segment(child, lambda: work(child))
    finally:
        parent.append_scope(child)


def audited_segment(name: str | None = None):
    """
    Decorator form of nested_segment().

    The decorated function must take the parent scope as its first
    argument. It is called with a fresh child scope in that position.

    Usage:
        @audited_segment()
        def load_entry(au: AuditScope, key: str):
            audit_log(au, "loading {}", key)
            ...

        load_entry(root, "admin")
    """

    def decorator(func):
        segment_name = name or func.__name__

        @wraps(func)
        def wrapper(parent: AuditScope, *args, **kwargs):
            return nested_segment(
                parent, segment_name, lambda child: func(child, *args, **kwargs)
            )

        return wrapper

    return decorator


def _record(scope: AuditScope, elapsed: float) -> None:
    scope.duration = elapsed
    logger.debug("[SEGMENT] %s duration_ms=%.2f", scope.name, scope.duration * 1000)
