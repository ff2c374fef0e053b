"""Wire-format messages received from an instrumented process."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any

_U64_MAX = 2**64 - 1
_I64_MIN = -(2**63)
_I64_MAX = 2**63 - 1


@dataclass
class Location:
    """A source location."""

    file: str | None = None
    module_path: str | None = None
    line: int | None = None
    column: int | None = None

    def __str__(self) -> str:
        if self.file is not None:
            parts = [self.file]
            if self.line is not None:
                parts.append(str(self.line))
                if self.column is not None:
                    parts.append(str(self.column))
            return ":".join(parts)
        if self.module_path is not None:
            return self.module_path
        return "<unknown location>"


@dataclass
class FieldMessage:
    """A field: a name (string or index into metadata names) and one value."""

    name: str | int | None = None
    metadata_id: int | None = None
    bool_val: bool | None = None
    str_val: str | None = None
    i64_val: int | None = None
    u64_val: int | None = None
    debug_val: str | None = None

    def __post_init__(self) -> None:
        if self.name is not None and not isinstance(self.name, (str, int)):
            raise TypeError(f"field name must be a string or an index, not {self.name!r}")
        set_values = [kind for kind, value in self._values() if value is not None]
        if len(set_values) > 1:
            raise ValueError(f"a field holds one value, got {', '.join(set_values)}")
        if self.u64_val is not None and not 0 <= self.u64_val <= _U64_MAX:
            raise ValueError(f"u64 value out of range: {self.u64_val}")
        if self.i64_val is not None and not _I64_MIN <= self.i64_val <= _I64_MAX:
            raise ValueError(f"i64 value out of range: {self.i64_val}")

    def _values(self) -> list[tuple[str, Any]]:
        return [
            ("bool", self.bool_val),
            ("str", self.str_val),
            ("i64", self.i64_val),
            ("u64", self.u64_val),
            ("debug", self.debug_val),
        ]

    @property
    def value(self) -> tuple[str, Any] | None:
        """The set value as ``(kind, value)``, or None if no value is set."""
        for kind, value in self._values():
            if value is not None:
                return kind, value
        return None


@dataclass
class AttributeMessage:
    field: FieldMessage | None = None
    unit: str | None = None


@dataclass
class MetadataMessage:
    """Metadata for a span, registered under ``id``."""

    field_names: list[str] = field(default_factory=list)
    target: str = ""
    id: int | None = None


@dataclass
class PollStats:
    polls: int = 0
    first_poll: datetime | None = None
    last_poll_started: datetime | None = None
    last_poll_ended: datetime | None = None
    busy_time: timedelta | None = None


@dataclass
class TaskStatsMessage:
    created_at: datetime | None = None
    dropped_at: datetime | None = None
    poll_stats: PollStats | None = None
    wakes: int = 0
    waker_clones: int = 0
    waker_drops: int = 0
    last_wake: datetime | None = None
    self_wakes: int = 0
    scheduled_time: timedelta | None = None


@dataclass
class TaskMessage:
    id: int | None = None
    metadata: int | None = None
    fields: list[FieldMessage] = field(default_factory=list)
    location: Location | None = None


@dataclass
class TaskUpdate:
    new_tasks: list[TaskMessage] = field(default_factory=list)
    stats_update: dict[int, TaskStatsMessage] = field(default_factory=dict)
    dropped_events: int = 0


@dataclass
class TaskDetailsMessage:
    """Details for one task; histograms are passed through as given."""

    task_id: int | None = None
    now: datetime | None = None
    poll_times_histogram: Any = None
    scheduled_times_histogram: Any = None


@dataclass
class ResourceKind:
    """A resource kind: either a known kind code or a free-form name."""

    TIMER = 0

    known: int | None = None
    other: str | None = None

    def __post_init__(self) -> None:
        if self.known is not None and self.other is not None:
            raise ValueError("a resource kind is either known or other, not both")


@dataclass
class ResourceStatsMessage:
    created_at: datetime | None = None
    dropped_at: datetime | None = None
    attributes: list[AttributeMessage] = field(default_factory=list)


@dataclass
class ResourceMessage:
    id: int | None = None
    kind: ResourceKind | None = None
    metadata: int | None = None
    concrete_type: str = ""
    location: Location | None = None
    is_internal: bool = False
    parent_resource_id: int | None = None


@dataclass
class ResourceUpdate:
    new_resources: list[ResourceMessage] = field(default_factory=list)
    stats_update: dict[int, ResourceStatsMessage] = field(default_factory=dict)
    dropped_events: int = 0


@dataclass
class AsyncOpStatsMessage:
    created_at: datetime | None = None
    dropped_at: datetime | None = None
    task_id: int | None = None
    poll_stats: PollStats | None = None
    attributes: list[AttributeMessage] = field(default_factory=list)


@dataclass
class AsyncOpMessage:
    id: int | None = None
    metadata: int | None = None
    source: str = ""
    parent_async_op_id: int | None = None
    resource_id: int | None = None


@dataclass
class AsyncOpUpdate:
    new_async_ops: list[AsyncOpMessage] = field(default_factory=list)
    stats_update: dict[int, AsyncOpStatsMessage] = field(default_factory=dict)
    dropped_events: int = 0


@dataclass
class Update:
    """One update from the instrumented process."""

    now: datetime | None = None
    task_update: TaskUpdate | None = None
    resource_update: ResourceUpdate | None = None
    async_op_update: AsyncOpUpdate | None = None
    new_metadata: list[MetadataMessage] | None = None