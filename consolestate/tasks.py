"""Tasks reported by the instrumented process, their statistics and lints."""

from __future__ import annotations

import enum
import logging
from collections.abc import Iterator, Sequence
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Protocol

from .fields import (
    Field,
    FieldValue,
    Metadata,
    Span,
    ValueKind,
    format_location,
    make_formatted_fields,
)
from .messages import TaskMessage, TaskStatsMessage, TaskUpdate
from .store import Id, Ids, Store, Visibility
from .util import percent_of

log = logging.getLogger(__name__)

_ZERO = timedelta(0)


def _later(a: datetime | None, b: datetime | None) -> bool:
    """Compare optional timestamps, treating a missing one as earliest."""
    if a is None:
        return False
    if b is None:
        return True
    return a > b


class TaskState(enum.IntEnum):
    """What a task is doing, in the order states sort."""

    COMPLETED = 0
    IDLE = 1
    RUNNING = 2
    SCHEDULED = 3

    def render(self, utf8: bool = True) -> Span:
        if self is TaskState.RUNNING:
            return Span("\u25B6" if utf8 else "BUSY", "green")
        if self is TaskState.SCHEDULED:
            return Span("\u23EB" if utf8 else "SCHED")
        if self is TaskState.IDLE:
            return Span("\u23F8" if utf8 else "IDLE")
        return Span("\u23F9" if utf8 else "DONE")


class Lint(enum.Enum):
    """The outcome of checking one task with one linter."""

    OK = "ok"
    WARNING = "warning"
    RECHECK = "recheck"


class Linter(Protocol):
    """Anything that can check a task and report a :class:`Lint`."""

    def check(self, task: Task) -> Lint: ...


@dataclass
class TaskStats:
    """Statistics that change over the lifetime of a task."""

    created_at: datetime
    polls: int = 0
    dropped_at: datetime | None = None
    busy: timedelta = _ZERO
    scheduled: timedelta = _ZERO
    last_poll_started: datetime | None = None
    last_poll_ended: datetime | None = None
    idle: timedelta | None = None
    total: timedelta | None = None
    wakes: int = 0
    waker_clones: int = 0
    waker_drops: int = 0
    last_wake: datetime | None = None
    self_wakes: int = 0

    @classmethod
    def from_message(cls, message: TaskStatsMessage) -> TaskStats:
        if message.created_at is None:
            raise ValueError("task span was never created")
        if message.poll_stats is None:
            raise ValueError("task should have poll stats")
        created_at = message.created_at
        dropped_at = message.dropped_at
        total = None if dropped_at is None else max(dropped_at - created_at, _ZERO)
        poll_stats = message.poll_stats
        busy = poll_stats.busy_time or _ZERO
        scheduled = message.scheduled_time or _ZERO
        idle = None if total is None else max(total - (busy + scheduled), _ZERO)
        return cls(
            created_at=created_at,
            polls=poll_stats.polls,
            dropped_at=dropped_at,
            busy=busy,
            scheduled=scheduled,
            last_poll_started=poll_stats.last_poll_started,
            last_poll_ended=poll_stats.last_poll_ended,
            idle=idle,
            total=total,
            wakes=message.wakes,
            waker_clones=message.waker_clones,
            waker_drops=message.waker_drops,
            last_wake=message.last_wake,
            self_wakes=message.self_wakes,
        )


@dataclass
class Task:
    """A task, identified by a sequential id rather than its remote span id."""

    id: Id
    task_id: int | None
    span_id: int
    id_str: str
    short_desc: str
    formatted_fields: list[list[Span]]
    stats: TaskStats
    target: str
    name: str | None
    location: str
    kind: str
    warnings: list[Any] = field(default_factory=list)

    def is_running(self) -> bool:
        """True if the task is being polled right now."""
        return _later(self.stats.last_poll_started, self.stats.last_poll_ended)

    def is_scheduled(self) -> bool:
        return _later(self.stats.last_wake, self.stats.last_poll_started)

    def is_blocking(self) -> bool:
        return self.kind in ("block_on", "blocking")

    def is_completed(self) -> bool:
        return self.stats.total is not None

    def state(self) -> TaskState:
        if self.is_completed():
            return TaskState.COMPLETED
        if self.is_running():
            return TaskState.RUNNING
        if self.is_scheduled():
            return TaskState.SCHEDULED
        return TaskState.IDLE

    def total(self, since: datetime) -> timedelta:
        if self.stats.total is not None:
            return self.stats.total
        return max(since - self.stats.created_at, _ZERO)

    def busy(self, since: datetime) -> timedelta:
        started = self.stats.last_poll_started
        if started is not None and _later(started, self.stats.last_poll_ended):
            return self.stats.busy + max(since - started, _ZERO)
        return self.stats.busy

    def scheduled(self, since: datetime) -> timedelta:
        wake = self.stats.last_wake
        if wake is not None and _later(wake, self.stats.last_poll_started):
            return self.stats.scheduled + max(since - wake, _ZERO)
        return self.stats.scheduled

    def idle(self, since: datetime) -> timedelta:
        if self.stats.idle is not None:
            return self.stats.idle
        return max(self.total(since) - (self.busy(since) + self.scheduled(since)), _ZERO)

    @property
    def total_polls(self) -> int:
        return self.stats.polls

    @property
    def last_wake(self) -> datetime | None:
        return self.stats.last_wake

    @property
    def wakes(self) -> int:
        return self.stats.wakes

    @property
    def self_wakes(self) -> int:
        return self.stats.self_wakes

    @property
    def waker_clones(self) -> int:
        return self.stats.waker_clones

    @property
    def waker_drops(self) -> int:
        return self.stats.waker_drops

    def since_wake(self, now: datetime) -> timedelta | None:
        """Time since the last wake, or None if never woken or woken after ``now``."""
        last_wake = self.stats.last_wake
        if last_wake is None or now < last_wake:
            return None
        return now - last_wake

    def waker_count(self) -> int:
        """The number of wakers currently alive for this task."""
        return max(self.stats.waker_clones - self.stats.waker_drops, 0)

    def self_wake_percent(self) -> int:
        return percent_of(self.stats.self_wakes, self.stats.wakes)

    def is_awakened(self) -> bool:
        """True if the task has been woken and not yet polled since."""
        return self.total_polls == 0 or _later(self.stats.last_wake, self.stats.last_poll_started)

    def lint(self, linters: Sequence[Linter]) -> bool:
        """Re-run ``linters``; return True if the task must be checked again later."""
        self.warnings.clear()
        recheck = False
        for linter in linters:
            result = linter.check(self)
            if result is Lint.WARNING:
                log.info("found a warning for task %s: %r", self.id, linter)
                self.warnings.append(linter)
            elif result is Lint.RECHECK:
                recheck = True
        return recheck


@dataclass
class Details:
    """Detailed information about one task."""

    span_id: int
    poll_times_histogram: Any = None
    scheduled_times_histogram: Any = None


class SortBy(enum.IntEnum):
    """Columns of the tasks table that can be sorted on."""

    WARNS = 0
    TID = 1
    STATE = 2
    NAME = 3
    TOTAL = 4
    BUSY = 5
    SCHEDULED = 6
    IDLE = 7
    POLLS = 8
    TARGET = 9
    LOCATION = 10

    @classmethod
    def from_index(cls, index: int) -> SortBy:
        try:
            return cls(index)
        except ValueError:
            raise ValueError(f"no task column at index {index}") from None

    @classmethod
    def default(cls) -> SortBy:
        return cls.TOTAL

    def sort(self, now: datetime, tasks: list[Task | None]) -> None:
        """Sort ``tasks`` in place; missing entries, then missing values, come first."""

        def extract(task: Task) -> Any:
            if self is SortBy.WARNS:
                return len(task.warnings)
            if self is SortBy.TID:
                return task.task_id
            if self is SortBy.STATE:
                return task.state()
            if self is SortBy.NAME:
                return task.name
            if self is SortBy.TOTAL:
                return task.total(now)
            if self is SortBy.BUSY:
                return task.busy(now)
            if self is SortBy.SCHEDULED:
                return task.scheduled(now)
            if self is SortBy.IDLE:
                return task.idle(now)
            if self is SortBy.POLLS:
                return task.total_polls
            if self is SortBy.TARGET:
                return task.target
            return task.location

        def key(task: Task | None) -> tuple[Any, ...]:
            if task is None:
                return (0,)
            value = extract(task)
            return (1,) if value is None else (2, value)

        tasks.sort(key=key)


class TasksState:
    """All known tasks, the linters run over them and dropped-event counts."""

    def __init__(self, linters: Sequence[Linter] = ()) -> None:
        self.tasks: Store[Task] = Store("Task")
        self.pending_lint: set[Id] = set()
        self.linters: list[Linter] = list(linters)
        self.dropped_events = 0

    @property
    def ids(self) -> Ids:
        return self.tasks.ids

    def take_new_tasks(self) -> list[Task]:
        """Return the tasks added since the last call."""
        return self.tasks.take_new_items()

    def update_tasks(
        self,
        metas: dict[int, Metadata],
        update: TaskUpdate,
        visibility: Visibility,
    ) -> None:
        stats_update = dict(update.stats_update)
        linters = self.linters
        next_pending_lint: set[Id] = set()

        def build(ids: Ids, message: TaskMessage) -> tuple[Id, Task] | None:
            if message.id is None:
                log.warning("task has no id, skipping: %r", message)
                return None
            span_id = message.id
            if message.metadata is None:
                log.warning("task has no metadata id, skipping: %r", message)
                return None
            meta = metas.get(message.metadata)
            if meta is None:
                log.warning("no metadata %s for task, skipping", message.metadata)
                return None

            name: str | None = None
            task_id: int | None = None
            kind = ""
            fields: list[Field] = []
            for field_message in message.fields:
                parsed = Field.from_message(field_message, meta)
                if parsed is None:
                    continue
                if parsed.name == Field.NAME:
                    name = str(parsed.value)
                elif parsed.name == Field.TASK_ID:
                    task_id = (
                        parsed.value.value if parsed.value.kind is ValueKind.U64 else None
                    )
                elif parsed.name == Field.KIND:
                    kind = str(parsed.value)
                else:
                    fields.append(parsed)
            # The target has no column of its own, so it is shown among the fields.
            fields.append(Field("target", FieldValue(ValueKind.STR, meta.target)))
            formatted_fields = make_formatted_fields(fields)

            stats_message = stats_update.pop(span_id, None)
            if stats_message is None:
                return None
            stats = TaskStats.from_message(stats_message)

            id = ids.id_for(span_id)
            if task_id is not None and name is not None:
                short_desc = f"{task_id} ({name})"
            elif task_id is not None:
                short_desc = str(task_id)
            else:
                short_desc = name or ""

            task = Task(
                id=id,
                task_id=task_id,
                span_id=span_id,
                id_str="" if task_id is None else str(task_id),
                short_desc=short_desc,
                formatted_fields=formatted_fields,
                stats=stats,
                target=meta.target,
                name=name,
                location=format_location(message.location),
                kind=kind,
            )
            if task.lint(linters):
                next_pending_lint.add(id)
            return id, task

        self.tasks.insert_with(visibility, update.new_tasks, build)

        for stats_message, task in self.tasks.updated(stats_update):
            log.debug("processing stats update for %r", task.id)
            task.stats = TaskStats.from_message(stats_message)
            if task.lint(linters):
                next_pending_lint.add(task.id)
            else:
                self.pending_lint.discard(task.id)

        for id in self.pending_lint:
            task = self.tasks.get(id)
            if task is not None and task.lint(linters):
                next_pending_lint.add(id)
        self.pending_lint = next_pending_lint

        self.dropped_events += update.dropped_events

    def retain_active(self, now: datetime, retain_for: timedelta) -> None:
        """Drop tasks that completed at least ``retain_for`` ago."""

        def keep(_id: Id, task: Task) -> bool:
            dropped_at = task.stats.dropped_at
            if dropped_at is None:
                return True
            return retain_for > max(now - dropped_at, _ZERO)

        self.tasks.retain(keep)

    def warnings(self) -> Iterator[Linter]:
        """Yield the linters that currently warn about at least one task."""
        for linter in self.linters:
            if any(
                warning is linter for task in self.tasks.values() for warning in task.warnings
            ):
                yield linter

    def task(self, id: Id) -> Task | None:
        return self.tasks.get(id)