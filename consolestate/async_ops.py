"""Async operations performed on resources by tasks."""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any

from .fields import Metadata, Span, attributes_from_messages, make_formatted_attributes
from .messages import AsyncOpMessage, AsyncOpStatsMessage, AsyncOpUpdate
from .store import Id, Ids, Store, Visibility

log = logging.getLogger(__name__)

_ZERO = timedelta(0)


@dataclass
class AsyncOpStats:
    """Statistics that change over the lifetime of an async operation."""

    created_at: datetime
    dropped_at: datetime | None = None
    polls: int = 0
    busy: timedelta = _ZERO
    last_poll_started: datetime | None = None
    last_poll_ended: datetime | None = None
    idle: timedelta | None = None
    total: timedelta | None = None
    task_id: Id | None = None
    task_id_str: str = "n/a"
    formatted_attributes: list[list[Span]] = field(default_factory=list)

    @classmethod
    def from_message(
        cls, message: AsyncOpStatsMessage, meta: Metadata, task_ids: Ids
    ) -> AsyncOpStats:
        attributes = attributes_from_messages(message.attributes, meta)
        if message.created_at is None:
            raise ValueError("async op span was never created")
        created_at = message.created_at
        dropped_at = message.dropped_at
        total = None if dropped_at is None else max(dropped_at - created_at, _ZERO)
        if message.poll_stats is None:
            raise ValueError("task should have poll stats")
        poll_stats = message.poll_stats
        busy = poll_stats.busy_time or _ZERO
        idle = None if total is None else max(total - busy, _ZERO)
        formatted = make_formatted_attributes(attributes)
        task_id = None if message.task_id is None else task_ids.id_for(message.task_id)
        return cls(
            created_at=created_at,
            dropped_at=dropped_at,
            polls=poll_stats.polls,
            busy=busy,
            last_poll_started=poll_stats.last_poll_started,
            last_poll_ended=poll_stats.last_poll_ended,
            idle=idle,
            total=total,
            task_id=task_id,
            task_id_str="n/a" if task_id is None else str(task_id),
            formatted_attributes=formatted,
        )


@dataclass
class AsyncOp:
    """An async operation, identified by a sequential id."""

    id: Id
    parent_id: str
    resource_id: Id
    meta_id: int
    source: str
    stats: AsyncOpStats

    @property
    def task_id(self) -> Id | None:
        return self.stats.task_id

    @property
    def task_id_str(self) -> str:
        return self.stats.task_id_str

    @property
    def total_polls(self) -> int:
        return self.stats.polls

    @property
    def formatted_attributes(self) -> list[list[Span]]:
        return self.stats.formatted_attributes

    def total(self, since: datetime) -> timedelta:
        if self.stats.total is not None:
            return self.stats.total
        return max(since - self.stats.created_at, _ZERO)

    def busy(self, since: datetime) -> timedelta:
        started = self.stats.last_poll_started
        if started is not None and self.stats.last_poll_ended is None:
            return self.stats.busy + max(since - started, _ZERO)
        return self.stats.busy

    def idle(self, since: datetime) -> timedelta:
        if self.stats.idle is not None:
            return self.stats.idle
        return max(self.total(since) - self.busy(since), _ZERO)

    def dropped(self) -> bool:
        return self.stats.total is not None


class SortBy(enum.IntEnum):
    """Columns of the async ops table that can be sorted on."""

    AID = 0
    TASK = 1
    SOURCE = 2
    TOTAL = 3
    BUSY = 4
    IDLE = 5
    POLLS = 6

    @classmethod
    def from_index(cls, index: int) -> SortBy:
        try:
            return cls(index)
        except ValueError:
            raise ValueError(f"no async op column at index {index}") from None

    @classmethod
    def default(cls) -> SortBy:
        return cls.AID

    def sort(self, now: datetime, ops: list[AsyncOp | None]) -> None:
        """Sort ``ops`` in place; missing entries, then missing values, come first."""

        def extract(op: AsyncOp) -> Any:
            if self is SortBy.AID:
                return op.id
            if self is SortBy.TASK:
                return op.task_id
            if self is SortBy.SOURCE:
                return op.source
            if self is SortBy.TOTAL:
                return op.total(now)
            if self is SortBy.BUSY:
                return op.busy(now)
            if self is SortBy.IDLE:
                return op.idle(now)
            return op.total_polls

        def key(op: AsyncOp | None) -> tuple[Any, ...]:
            if op is None:
                return (0,)
            value = extract(op)
            return (1,) if value is None else (2, value)

        ops.sort(key=key)


class AsyncOpsState:
    """All known async ops and the count of events the remote dropped."""

    def __init__(self) -> None:
        self.ops: Store[AsyncOp] = Store("AsyncOp")
        self.dropped_events = 0

    def take_new_async_ops(self) -> list[AsyncOp]:
        """Return the async ops added since the last call."""
        return self.ops.take_new_items()

    def async_ops(self) -> list[AsyncOp]:
        """Return all async ops."""
        return list(self.ops.values())

    def update_async_ops(
        self,
        metas: dict[int, Metadata],
        update: AsyncOpUpdate,
        resource_ids: Ids,
        task_ids: Ids,
        visibility: Visibility,
    ) -> None:
        stats_update = dict(update.stats_update)

        def build(ids: Ids, message: AsyncOpMessage) -> tuple[Id, AsyncOp] | None:
            if message.id is None:
                log.warning("skipping async op with no id: %r", message)
                return None
            span_id = message.id
            if message.metadata is None:
                log.warning("async op has no metadata id, skipping: %r", message)
                return None
            meta = metas.get(message.metadata)
            if meta is None:
                log.warning("no metadata %s for async op, skipping", message.metadata)
                return None

            stats_message = stats_update.pop(span_id, None)
            if stats_message is None:
                return None
            stats = AsyncOpStats.from_message(stats_message, meta, task_ids)

            id = ids.id_for(span_id)
            if message.resource_id is None:
                return None
            resource_id = resource_ids.id_for(message.resource_id)
            if message.parent_async_op_id is None:
                parent_id = "n/a"
            else:
                parent_id = str(ids.id_for(message.parent_async_op_id))

            op = AsyncOp(
                id=id,
                parent_id=parent_id,
                resource_id=resource_id,
                meta_id=message.metadata,
                source=message.source,
                stats=stats,
            )
            return id, op

        self.ops.insert_with(visibility, update.new_async_ops, build)

        for stats_message, op in self.ops.updated(stats_update):
            meta = metas.get(op.meta_id)
            if meta is not None:
                log.debug("processing stats update for %r", op.id)
                op.stats = AsyncOpStats.from_message(stats_message, meta, task_ids)

        self.dropped_events += update.dropped_events

    def retain_active(self, now: datetime, retain_for: timedelta) -> None:
        """Drop async ops that were dropped at least ``retain_for`` ago."""

        def keep(_id: Id, op: AsyncOp) -> bool:
            dropped_at = op.stats.dropped_at
            if dropped_at is None:
                return True
            return retain_for > max(now - dropped_at, _ZERO)

        self.ops.retain(keep)