"""Storage of items keyed by rewritten sequential ids."""

from __future__ import annotations

import enum
from collections.abc import Callable, Iterable, Iterator, Mapping
from dataclasses import dataclass, field
from typing import Any, Generic, TypeVar

T = TypeVar("T")
U = TypeVar("U")

_ID_MODULUS = 2**64


class Visibility(enum.Enum):
    """Whether the list that new items belong to is currently on screen."""

    SHOW = "show"
    HIDE = "hide"


@dataclass(frozen=True, order=True)
class Id:
    """A rewritten sequential id, distinct from the remote span id."""

    value: int
    kind: str = field(default="", compare=False)

    def __str__(self) -> str:
        return str(self.value)

    def __repr__(self) -> str:
        return f"Id<{self.kind}>({self.value})"


class Ids:
    """Hands out sequential ids for span ids, starting at 1."""

    def __init__(self, kind: str = "") -> None:
        self.kind = kind
        self._next = 1
        self._map: dict[int, Id] = {}

    def id_for(self, span_id: int) -> Id:
        """Return the id for ``span_id``, allocating the next one if new."""
        existing = self._map.get(span_id)
        if existing is not None:
            return existing
        new_id = Id(self._next, self.kind)
        self._map[span_id] = new_id
        self._next = (self._next + 1) % _ID_MODULUS
        return new_id

    def __repr__(self) -> str:
        return f"Ids(kind={self.kind!r}, next={self._next}, map={self._map!r})"


class Store(Generic[T]):
    """Items associated with span ids and rewritten sequential ids."""

    def __init__(self, kind: str = "") -> None:
        self.ids = Ids(kind)
        self._items: dict[Id, T] = {}
        self._new_items: list[tuple[Id, T]] = []

    def get(self, id: Id) -> T | None:
        return self._items.get(id)

    def get_by_span(self, span_id: int) -> T | None:
        id = self.ids._map.get(span_id)
        if id is None:
            return None
        return self.get(id)

    def insert_with(
        self,
        visibility: Visibility,
        items: Iterable[U],
        f: Callable[[Ids, U], tuple[Id, T] | None],
    ) -> None:
        """Map each item through ``f`` and store the results that are not None.

        When ``visibility`` is ``SHOW`` the pending new items are discarded
        first, since the list they would be added to is already visible.
        """
        if visibility is Visibility.SHOW:
            self._new_items.clear()
        for item in items:
            result = f(self.ids, item)
            if result is None:
                continue
            id, value = result
            self._items[id] = value
            self._new_items.append((id, value))

    def updated(
        self, update: Mapping[int, Any] | Iterable[tuple[int, Any]]
    ) -> Iterator[tuple[Any, T]]:
        """Yield ``(update, item)`` for every update whose span id is stored."""
        pairs = update.items() if isinstance(update, Mapping) else update
        for span_id, value in pairs:
            item = self.get_by_span(span_id)
            if item is not None:
                yield value, item

    def retain(self, predicate: Callable[[Id, T], bool]) -> None:
        """Keep only the items for which ``predicate(id, item)`` is true."""
        self._items = {id: item for id, item in self._items.items() if predicate(id, item)}
        self._new_items = [pair for pair in self._new_items if self._is_live(pair)]

    def take_new_items(self) -> list[T]:
        """Return the items added since the last call, and forget them."""
        live = [item for pair in self._new_items if self._is_live(pair) for item in pair[1:]]
        self._new_items.clear()
        return live

    def values(self) -> Iterator[T]:
        return iter(self._items.values())

    def items(self) -> Iterator[tuple[Id, T]]:
        return iter(self._items.items())

    def __iter__(self) -> Iterator[tuple[Id, T]]:
        """Iterate over ``(id, item)`` pairs."""
        return self.items()

    def __len__(self) -> int:
        return len(self._items)

    def _is_live(self, pair: tuple[Id, T]) -> bool:
        id, item = pair
        return self._items.get(id) is item