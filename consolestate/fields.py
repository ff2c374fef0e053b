"""Span fields, attributes and metadata, and how they are displayed."""

from __future__ import annotations

import enum
import logging
import re
from collections.abc import Iterable
from dataclasses import dataclass, replace
from datetime import timedelta
from functools import total_ordering
from typing import Any, ClassVar

from .messages import AttributeMessage, FieldMessage, Location, MetadataMessage

log = logging.getLogger(__name__)

KEY_STYLE = "light_blue bold"
DELIM_STYLE = "light_blue dim"
VALUE_STYLE = "yellow"
UNIT_STYLE = "light_blue"

_DRIVE_LETTER = re.compile(r"^[a-zA-Z]:\\")
_REGISTRY_PATH = re.compile(
    r".*[/\\]\.cargo[/\\](registry[/\\]src[/\\][^/\\]*[/\\]|git[/\\]checkouts[/\\])"
)


@dataclass(frozen=True)
class Span:
    """A piece of styled text; ``style`` is None for unstyled text."""

    content: str
    style: str | None = None


class ValueKind(enum.IntEnum):
    """The kind of a field value, in the order values of different kinds sort."""

    BOOL = 0
    STR = 1
    U64 = 2
    I64 = 3
    DEBUG = 4


_KINDS_BY_NAME = {
    "bool": ValueKind.BOOL,
    "str": ValueKind.STR,
    "u64": ValueKind.U64,
    "i64": ValueKind.I64,
    "debug": ValueKind.DEBUG,
}


@total_ordering
@dataclass(frozen=True)
class FieldValue:
    """A typed field value."""

    kind: ValueKind
    value: Any

    def __lt__(self, other: object) -> bool:
        if not isinstance(other, FieldValue):
            return NotImplemented
        return (self.kind, self.value) < (other.kind, other.value)

    def __str__(self) -> str:
        if self.kind is ValueKind.BOOL:
            return "true" if self.value else "false"
        return str(self.value)

    def truncate_registry_path(self) -> FieldValue:
        """Shorten package-registry paths; text values become debug values."""
        if self.kind in (ValueKind.STR, ValueKind.DEBUG):
            return FieldValue(ValueKind.DEBUG, truncate_registry_path(self.value))
        return self

    def ensure_nonempty(self) -> FieldValue | None:
        """Return None for an empty text value, otherwise ``self``."""
        if self.kind in (ValueKind.STR, ValueKind.DEBUG) and not self.value:
            return None
        return self


@dataclass
class Metadata:
    """Metadata for a span: its field names and target."""

    field_names: list[str]
    target: str
    id: int

    @classmethod
    def from_message(cls, message: MetadataMessage, id: int) -> Metadata:
        return cls(list(message.field_names), message.target, id)


@dataclass
class Field:
    """A named field value."""

    SPAWN_LOCATION: ClassVar[str] = "spawn.location"
    KIND: ClassVar[str] = "kind"
    NAME: ClassVar[str] = "task.name"
    TASK_ID: ClassVar[str] = "task.id"

    name: str
    value: FieldValue

    @classmethod
    def from_message(cls, message: FieldMessage, meta: Metadata) -> Field | None:
        """Build a field from its wire form, or None if it is invalid or empty."""
        name = message.name
        if name is None:
            return None
        if isinstance(name, str):
            resolved = name
        else:
            if message.metadata_id != meta.id:
                log.warning(
                    "skipping malformed field name (metadata id mismatch): "
                    "index=%s field meta=%s task meta=%s",
                    name,
                    message.metadata_id,
                    meta.id,
                )
                return None
            if not 0 <= name < len(meta.field_names):
                log.warning("missing field name for index %s (meta=%s)", name, meta.id)
                return None
            resolved = meta.field_names[name]

        raw = message.value
        if raw is None:
            return None
        kind, payload = raw
        value = FieldValue(_KINDS_BY_NAME[kind], payload).ensure_nonempty()
        if value is None:
            return None
        if resolved == cls.SPAWN_LOCATION:
            value = value.truncate_registry_path()
        return cls(resolved, value)

    def sort_key(self) -> tuple[int, str]:
        """Name first, spawn location last, everything else by name."""
        if self.name == Field.NAME:
            return (0, "")
        if self.name == Field.SPAWN_LOCATION:
            return (2, "")
        return (1, self.name)


@dataclass
class Attribute:
    """A field together with an optional unit."""

    field: Field
    unit: str | None = None

    def sort_key(self) -> tuple[Any, ...]:
        return (*self.field.sort_key(), self.unit is not None, self.unit or "")


def make_formatted_fields(fields: Iterable[Field]) -> list[list[Span]]:
    """Format fields as ``name=value `` span groups, in display order."""
    return [
        [
            Span(field.name, KEY_STYLE),
            Span("=", DELIM_STYLE),
            Span(f"{field.value} ", VALUE_STYLE),
        ]
        for field in sorted(fields, key=Field.sort_key)
    ]


def make_formatted_attributes(attributes: Iterable[Attribute]) -> list[list[Span]]:
    """Format attributes as ``name=value[unit] `` span groups, in display order."""
    formatted = []
    for attr in sorted(attributes, key=Attribute.sort_key):
        spans = [
            Span(attr.field.name, KEY_STYLE),
            Span("=", DELIM_STYLE),
            Span(str(attr.field.value), VALUE_STYLE),
        ]
        if attr.unit is not None:
            spans.append(Span(attr.unit, UNIT_STYLE))
        spans.append(Span(" "))
        formatted.append(spans)
    return formatted


def attributes_from_messages(
    messages: Iterable[AttributeMessage], meta: Metadata
) -> list[Attribute]:
    """Convert wire attributes, dropping any without a valid field."""
    attributes = []
    for message in messages:
        if message.field is None:
            continue
        field = Field.from_message(message.field, meta)
        if field is not None:
            attributes.append(Attribute(field, message.unit))
    return attributes


def is_windows_path(path: str) -> bool:
    """Guess whether ``path`` is a Windows path: a drive letter and mostly backslashes."""
    has_drive_letter = _DRIVE_LETTER.match(path) is not None
    return has_drive_letter and path.count("\\") > path.count("/")


def truncate_registry_path(path: str) -> str:
    """Replace a package-registry or git-checkout prefix with ``<cargo>``."""
    replacement = "<cargo>\\" if is_windows_path(path) else "<cargo>/"
    return _REGISTRY_PATH.sub(lambda _match: replacement, path, count=1)


def format_location(location: Location | None) -> str:
    """Render a source location, shortening registry paths."""
    if location is None:
        return "<unknown location>"
    if location.file is not None:
        location = replace(location, file=truncate_registry_path(location.file))
    return str(location)


def pb_duration(seconds: int, nanos: int) -> timedelta:
    """Build a duration from seconds and nanoseconds; negative parts are an error."""
    if seconds < 0 or nanos < 0:
        raise ValueError("duration should not be negative!")
    return timedelta(seconds=seconds, microseconds=nanos / 1000)