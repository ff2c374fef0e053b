"""Resources reported by the instrumented process."""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any

from .fields import (
    Metadata,
    Span,
    attributes_from_messages,
    format_location,
    make_formatted_attributes,
)
from .messages import ResourceKind, ResourceMessage, ResourceStatsMessage, ResourceUpdate
from .store import Id, Ids, Store, Visibility

log = logging.getLogger(__name__)

_ZERO = timedelta(0)


class _UnknownKind(ValueError):
    """A known resource kind code that is not recognised."""


class TypeVisibility(enum.IntEnum):
    """Whether a resource type is public or internal to the runtime."""

    PUBLIC = 0
    INTERNAL = 1

    def render(self, utf8: bool = True) -> Span:
        if self is TypeVisibility.INTERNAL:
            return Span("\U0001F512" if utf8 else "INT", "red")
        return Span("\u2705" if utf8 else "PUB", "green")


@dataclass
class ResourceStats:
    created_at: datetime
    dropped_at: datetime | None = None
    total: timedelta | None = None
    formatted_attributes: list[list[Span]] = field(default_factory=list)

    @classmethod
    def from_message(cls, message: ResourceStatsMessage, meta: Metadata) -> ResourceStats:
        if message.created_at is None:
            raise ValueError("resource span was never created")
        attributes = attributes_from_messages(message.attributes, meta)
        formatted = make_formatted_attributes(attributes)
        created_at = message.created_at
        dropped_at = message.dropped_at
        total = None if dropped_at is None else max(dropped_at - created_at, _ZERO)
        return cls(created_at, dropped_at, total, formatted)


@dataclass
class Resource:
    """A resource, identified by a sequential id rather than its remote span id."""

    id: Id
    span_id: int
    id_str: str
    parent: str
    parent_id: str
    meta_id: int
    kind: str
    stats: ResourceStats
    target: str
    concrete_type: str
    location: str
    visibility: TypeVisibility

    @property
    def formatted_attributes(self) -> list[list[Span]]:
        return self.stats.formatted_attributes

    def total(self, since: datetime) -> timedelta:
        if self.stats.total is not None:
            return self.stats.total
        return max(since - self.stats.created_at, _ZERO)

    def dropped(self) -> bool:
        return self.stats.total is not None


class SortBy(enum.IntEnum):
    """Columns of the resources table that can be sorted on."""

    ID = 0
    PARENT_ID = 1
    KIND = 2
    TOTAL = 3
    TARGET = 4
    CONCRETE_TYPE = 5
    VISIBILITY = 6
    LOCATION = 7
    ATTRIBUTES = 8

    @classmethod
    def from_index(cls, index: int) -> SortBy:
        try:
            return cls(index)
        except ValueError:
            raise ValueError(f"no resource column at index {index}") from None

    @classmethod
    def default(cls) -> SortBy:
        return cls.ID

    def sort(self, now: datetime, resources: list[Resource | None]) -> None:
        """Sort ``resources`` in place; missing entries come first."""

        def extract(resource: Resource) -> Any:
            if self is SortBy.ID:
                return resource.id
            if self is SortBy.PARENT_ID:
                return resource.parent_id
            if self is SortBy.KIND:
                return resource.kind
            if self is SortBy.TOTAL:
                return resource.total(now)
            if self is SortBy.TARGET:
                return resource.target
            if self is SortBy.CONCRETE_TYPE:
                return resource.concrete_type
            if self is SortBy.VISIBILITY:
                return resource.visibility
            if self is SortBy.LOCATION:
                return resource.location
            # Only the first attribute's key is used.
            attrs = resource.formatted_attributes
            if attrs and attrs[0]:
                return attrs[0][0].content
            return None

        def key(resource: Resource | None) -> tuple[Any, ...]:
            if resource is None:
                return (0,)
            value = extract(resource)
            return (0,) if value is None else (1, value)

        resources.sort(key=key)


def kind_from_message(kind: ResourceKind) -> str:
    """Return the display name of a resource kind."""
    if kind.known is not None:
        if kind.known == ResourceKind.TIMER:
            return "Timer"
        raise _UnknownKind(f"failed to parse known kind from {kind.known}")
    if kind.other is not None:
        return kind.other
    raise ValueError("a resource should have a kind field")


class ResourcesState:
    """All known resources and the count of events the remote dropped."""

    def __init__(self) -> None:
        self.resources: Store[Resource] = Store("Resource")
        self.dropped_events = 0

    @property
    def ids(self) -> Ids:
        return self.resources.ids

    def take_new_resources(self) -> list[Resource]:
        return self.resources.take_new_items()

    def update_resources(
        self,
        metas: dict[int, Metadata],
        update: ResourceUpdate,
        visibility: Visibility,
    ) -> None:
        parents: dict[Id, Resource] = {}
        for message in update.new_resources:
            if message.parent_resource_id is None:
                continue
            parent = self.resources.get_by_span(message.parent_resource_id)
            if parent is not None:
                parents[parent.id] = parent

        stats_update = dict(update.stats_update)

        def build(ids: Ids, message: ResourceMessage) -> tuple[Id, Resource] | None:
            if message.id is None:
                log.warning("skipping resource with no id: %r", message)
                return None
            span_id = message.id
            if message.metadata is None:
                log.warning("resource has no metadata id, skipping: %r", message)
                return None
            meta = metas.get(message.metadata)
            if meta is None:
                log.warning("no metadata %s for resource, skipping", message.metadata)
                return None
            if message.kind is None:
                return None
            try:
                kind = kind_from_message(message.kind)
            except _UnknownKind as err:
                log.warning("resource kind cannot be parsed: %s", err)
                return None

            stats_message = stats_update.pop(span_id, None)
            if stats_message is None:
                return None
            stats = ResourceStats.from_message(stats_message, meta)

            id = ids.id_for(span_id)
            if message.parent_resource_id is None:
                parent = "n/a"
                parent_id = "n/a"
            else:
                pid = ids.id_for(message.parent_resource_id)
                known = parents.get(pid)
                if known is not None:
                    parent = f"{known.id} ({known.target}::{known.concrete_type})"
                else:
                    parent = str(pid)
                parent_id = str(pid)

            resource = Resource(
                id=id,
                span_id=span_id,
                id_str=str(id),
                parent=parent,
                parent_id=parent_id,
                meta_id=message.metadata,
                kind=kind,
                stats=stats,
                target=meta.target,
                concrete_type=message.concrete_type,
                location=format_location(message.location),
                visibility=(
                    TypeVisibility.INTERNAL if message.is_internal else TypeVisibility.PUBLIC
                ),
            )
            return id, resource

        self.resources.insert_with(visibility, update.new_resources, build)
        self.dropped_events += update.dropped_events

        for stats_message, resource in self.resources.updated(stats_update):
            meta = metas.get(resource.meta_id)
            if meta is not None:
                log.debug("processing stats update for %r", resource.id)
                resource.stats = ResourceStats.from_message(stats_message, meta)

    def retain_active(self, now: datetime, retain_for: timedelta) -> None:
        """Drop resources that were dropped at least ``retain_for`` ago."""

        def keep(_id: Id, resource: Resource) -> bool:
            dropped_at = resource.stats.dropped_at
            if dropped_at is None:
                return True
            return retain_for > max(now - dropped_at, _ZERO)

        self.resources.retain(keep)