"""
Log sink backends.

A sink receives finished audit records (the serialized form of a root
AuditScope) and stores or forwards them. Sinks are called from the
dispatcher worker thread only.
"""

import json
import logging
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)


class AuditSink(ABC):
    """Destination for serialized audit records."""

    name = "sink"

    @abstractmethod
    def write(self, record: dict[str, Any]) -> None:
        """Deliver one record. Raise on failure."""

    def close(self) -> None:
        """Release any resources held by the sink."""


class LoggingAuditSink(AuditSink):
    """Writes each record as a single JSON line on the audittrail.records logger."""

    name = "logging"

    def __init__(self, logger_name: str = "audittrail.records"):
        self.records_logger = logging.getLogger(logger_name)

    def write(self, record: dict[str, Any]) -> None:
        self.records_logger.info(json.dumps(record, ensure_ascii=False))


class JsonlAuditSink(AuditSink):
    """Appends one JSON document per line to a file."""

    name = "jsonl"

    def __init__(self, path: str):
        self.path = Path(path)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        logger.info(f"JSONL audit sink writing to {self.path}")

    def write(self, record: dict[str, Any]) -> None:
        with open(self.path, "a", encoding="utf-8") as handle:
            handle.write(json.dumps(record, ensure_ascii=False))
            handle.write("\n")


class MemoryAuditSink(AuditSink):
    """Keeps delivered records in memory."""

    name = "memory"

    def __init__(self):
        self.records: list[dict[str, Any]] = []

    def write(self, record: dict[str, Any]) -> None:
        self.records.append(record)


def build_sink(backend: str, path: str | None = None) -> AuditSink:
    """
    Create a sink from its configured backend name.

    Args:
        backend: One of "logging", "jsonl", "memory"
        path: Output file for the jsonl backend

    Raises:
        ValueError: If the backend is unknown or jsonl has no path
    """
    backend = backend.lower()
    if backend == "logging":
        return LoggingAuditSink()
    if backend == "jsonl":
        if not path:
            raise ValueError("The jsonl audit sink requires a path")
        return JsonlAuditSink(path)
    if backend == "memory":
        return MemoryAuditSink()
    raise ValueError(f"Unknown audit sink backend: {backend}")
