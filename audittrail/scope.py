"""
Audit scope data model.

An AuditScope is the audit trail of one unit of work. Code running inside
that unit of work is handed the scope and appends to it:

- log_event() records a timestamped leaf entry
- append_scope() attaches a finished child scope

When the work is done the root scope is serialized as one structured
record and handed to the log sink. The record shape is:

    Scope = {time, name, duration, events: [Event]}
    Log   = {time, name}
    Event = {"log": Log} | {"scope": Scope}

Audited code only writes to a scope. Nothing here lets it read its own
history back; the only way out is serialization.

Nesting depth is only bounded by memory: rendering and parsing walk the
tree with an explicit stack instead of recursing.
"""

from __future__ import annotations

import json
import re
from datetime import datetime, timezone
from typing import Annotated, Any, Union

from dateutil.parser import isoparse
from pydantic import (
    BaseModel,
    ConfigDict,
    Discriminator,
    Field,
    Tag,
    ValidationError,
    field_validator,
)

_RFC3339 = re.compile(
    r"^\d{4}-\d{2}-\d{2}[Tt ]\d{2}:\d{2}:\d{2}(\.\d+)?([Zz]|[+-]\d{2}:\d{2})$"
)

_END = object()


class AuditSerializationError(RuntimeError):
    """Raised when a scope cannot be rendered into its structured record."""


class AuditRecordError(ValueError):
    """Raised when a structured record is not a valid audit scope."""


def rfc3339_now() -> str:
    """Current UTC time as an RFC-3339 string."""
    return datetime.now(timezone.utc).isoformat()


def _check_timestamp(value: str) -> str:
    if not _RFC3339.match(value):
        raise ValueError(f"not an RFC-3339 timestamp with time and offset: {value!r}")
    try:
        parsed = isoparse(value)
    except (ValueError, OverflowError) as e:
        raise ValueError(f"not an RFC-3339 timestamp: {value!r}") from e
    if parsed.tzinfo is None:
        raise ValueError(f"RFC-3339 timestamp has no offset: {value!r}")
    return value


class AuditLog(BaseModel):
    """A single leaf entry in a scope."""

    model_config = ConfigDict(extra="forbid")

    time: str = Field(..., description="When the entry was logged")
    name: str = Field(..., description="Formatted message text")

    check_time = field_validator("time")(_check_timestamp)


class LogEvent(BaseModel):
    model_config = ConfigDict(extra="forbid")

    log: AuditLog


class ScopeEvent(BaseModel):
    model_config = ConfigDict(extra="forbid")

    scope: AuditScope


def _event_kind(value: Any) -> str | None:
    if isinstance(value, dict):
        if "log" in value:
            return "log"
        if "scope" in value:
            return "scope"
        return None
    if isinstance(value, LogEvent):
        return "log"
    if isinstance(value, ScopeEvent):
        return "scope"
    return None


AuditEvent = Annotated[
    Union[Annotated[LogEvent, Tag("log")], Annotated[ScopeEvent, Tag("scope")]],
    Discriminator(_event_kind),
]


class _ScopeFields(BaseModel):
    """One scope of an incoming record, with its events left unparsed."""

    model_config = ConfigDict(extra="forbid")

    time: str
    name: str
    duration: float | None = Field(default=None, ge=0)
    events: list[dict[str, Any]] = Field(default_factory=list)

    check_time = field_validator("time")(_check_timestamp)


class AuditScope(BaseModel):
    """
    Ordered audit trail of one unit of work.

    time and name are fixed when the scope is created. duration stays
    None until a timing wrapper (see audittrail.segment) measures the
    work. events only ever grows, in recording order.
    """

    model_config = ConfigDict(extra="forbid", validate_assignment=True)

    time: str = Field(..., frozen=True, description="Scope creation time")
    name: str = Field(..., frozen=True, description="What this scope represents")
    duration: float | None = Field(
        default=None, ge=0, description="Elapsed seconds, set by the timing wrapper"
    )
    events: list[AuditEvent] = Field(default_factory=list)

    check_time = field_validator("time")(_check_timestamp)

    @classmethod
    def new(cls, name: str) -> AuditScope:
        """Start a new, empty scope stamped with the current time."""
        return cls(time=rfc3339_now(), name=name)

    def append_scope(self, scope: AuditScope) -> None:
        """Attach a child scope after everything recorded so far."""
        self.events.append(ScopeEvent(scope=scope))

    def log_event(self, data: str) -> None:
        """Record a leaf entry stamped with the current time."""
        self.events.append(LogEvent(log=AuditLog(time=rfc3339_now(), name=data)))

    def to_dict(self) -> dict[str, Any]:
        """
        Render the scope and its whole subtree as plain JSON-compatible data.

        Raises:
            AuditSerializationError: If the tree contains a cycle or an
                event that is neither a log entry nor a scope
        """
        record = _scope_fields(self)
        ancestors = {id(self)}
        stack = [(self, record["events"], iter(self.events))]

        while stack:
            scope, rendered, events = stack[-1]
            event = next(events, _END)
            if event is _END:
                stack.pop()
                ancestors.discard(id(scope))
                continue

            if isinstance(event, LogEvent):
                rendered.append({"log": {"time": event.log.time, "name": event.log.name}})
            elif isinstance(event, ScopeEvent):
                child = event.scope
                if id(child) in ancestors:
                    raise AuditSerializationError(
                        f"Cannot serialize audit scope '{self.name}': "
                        f"scope '{child.name}' is nested inside itself"
                    )
                child_record = _scope_fields(child)
                rendered.append({"scope": child_record})
                ancestors.add(id(child))
                stack.append((child, child_record["events"], iter(child.events)))
            else:
                raise AuditSerializationError(
                    f"Cannot serialize audit scope '{self.name}': "
                    f"unsupported event {type(event).__name__} in scope '{scope.name}'"
                )

        return record

    def to_json(self, pretty: bool = False) -> str:
        """Render the scope as a JSON document."""
        record = self.to_dict()
        try:
            return _dump_json(record, indent=2 if pretty else None)
        except (TypeError, ValueError) as e:
            raise AuditSerializationError(f"Cannot serialize audit scope '{self.name}': {e}") from e

    @classmethod
    def from_dict(cls, data: Any) -> AuditScope:
        """
        Rebuild a scope from a structured record.

        Raises:
            AuditRecordError: If the record does not have the audit scope shape
        """
        root, root_events = _parse_scope(data, "record")
        stack = [(root, iter(enumerate(root_events)), "record")]

        while stack:
            scope, events, path = stack[-1]
            entry = next(events, _END)
            if entry is _END:
                stack.pop()
                continue

            index, raw = entry
            event_path = f"{path}.events[{index}]"
            kind = _event_kind(raw)
            if kind == "log":
                try:
                    scope.events.append(LogEvent.model_validate(raw))
                except ValidationError as e:
                    raise AuditRecordError(f"Invalid audit record at {event_path}: {e}") from e
            elif kind == "scope":
                if len(raw) != 1:
                    raise AuditRecordError(
                        f"Invalid audit record at {event_path}: unexpected keys {sorted(raw)}"
                    )
                child_path = f"{event_path}.scope"
                child, child_events = _parse_scope(raw["scope"], child_path)
                scope.append_scope(child)
                stack.append((child, iter(enumerate(child_events)), child_path))
            else:
                raise AuditRecordError(
                    f"Invalid audit record at {event_path}: expected a 'log' or 'scope' event"
                )

        return root

    @classmethod
    def from_json(cls, raw: str | bytes) -> AuditScope:
        # json.loads recurses; records nested deeper than the interpreter
        # recursion limit must come in through from_dict
        try:
            data = json.loads(raw)
        except RecursionError as e:
            raise AuditRecordError("Invalid audit record: JSON nesting too deep to parse") from e
        except ValueError as e:
            raise AuditRecordError(f"Invalid audit record: {e}") from e
        return cls.from_dict(data)

    def __str__(self) -> str:
        return self.to_json(pretty=True)


def _scope_fields(scope: AuditScope) -> dict[str, Any]:
    return {"time": scope.time, "name": scope.name, "duration": scope.duration, "events": []}


def _parse_scope(data: Any, path: str) -> tuple[AuditScope, list[dict[str, Any]]]:
    try:
        fields = _ScopeFields.model_validate(data)
    except ValidationError as e:
        raise AuditRecordError(f"Invalid audit record at {path}: {e}") from e
    scope = AuditScope(time=fields.time, name=fields.name, duration=fields.duration)
    return scope, fields.events


def _dump_json(value: Any, indent: int | None = None) -> str:
    """
    json.dumps() equivalent for dicts, lists and scalars that does not
    recurse. Output matches json.dumps(value, indent=indent) when indented
    and json.dumps(value, separators=(",", ":")) when compact.
    """
    key_sep = ": " if indent is not None else ":"
    out: list[str] = []
    frames: list[list] = []

    def emit(item: Any, depth: int) -> None:
        if isinstance(item, dict):
            out.append("{")
            frames.append([iter(item.items()), True, depth + 1, True])
        elif isinstance(item, list):
            out.append("[")
            frames.append([iter(item), False, depth + 1, True])
        else:
            out.append(json.dumps(item, ensure_ascii=False, allow_nan=False))

    emit(value, 0)
    while frames:
        frame = frames[-1]
        items, is_object, depth, first = frame
        item = next(items, _END)
        if item is _END:
            frames.pop()
            if not first:
                out.append(_newline(indent, depth - 1))
            out.append("}" if is_object else "]")
            continue

        if not first:
            out.append(",")
        frame[3] = False
        out.append(_newline(indent, depth))
        if is_object:
            key, item = item
            if not isinstance(key, str):
                raise TypeError(f"keys must be str, not {type(key).__name__}")
            out.append(json.dumps(key, ensure_ascii=False))
            out.append(key_sep)
        emit(item, depth)

    return "".join(out)


def _newline(indent: int | None, depth: int) -> str:
    if indent is None:
        return ""
    return "\n" + " " * (indent * depth)


ScopeEvent.model_rebuild()
AuditScope.model_rebuild()
