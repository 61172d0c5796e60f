"""EntityStore: ordered in-memory collection, the sole source of truth for readers."""

from __future__ import annotations

from collections.abc import Iterable, Iterator, Sequence
from typing import Callable, Optional

from mctracker.models.manuscript import Manuscript


class EntityStore:
    """Ordered collection of frozen manuscripts keyed by ``id``.

    Every write bumps ``version``; readers can use it to detect change. Because
    records are immutable, anything returned from here is already a snapshot.
    """

    def __init__(self, entities: Iterable[Manuscript] = ()) -> None:
        self._items: list[Manuscript] = list(entities)
        self._version = 0

    def __len__(self) -> int:
        return len(self._items)

    def __iter__(self) -> Iterator[Manuscript]:
        return iter(tuple(self._items))

    def __contains__(self, entity_id: object) -> bool:
        return any(m.id == entity_id for m in self._items)

    @property
    def version(self) -> int:
        return self._version

    def all(self) -> tuple[Manuscript, ...]:
        return tuple(self._items)

    def get(self, entity_id: str) -> Optional[Manuscript]:
        for item in self._items:
            if item.id == entity_id:
                return item
        return None

    def prepend(self, entity: Manuscript) -> None:
        self._items.insert(0, entity)
        self._version += 1

    def prepend_many(self, entities: Sequence[Manuscript]) -> None:
        if not entities:
            return
        self._items[0:0] = entities
        self._version += 1

    def replace(self, entity: Manuscript) -> bool:
        """Swap the record with the same id in place. Returns False if absent."""
        for idx, item in enumerate(self._items):
            if item.id == entity.id:
                self._items[idx] = entity
                self._version += 1
                return True
        return False

    def replace_many(self, ids: Iterable[str], fn: Callable[[Manuscript], Manuscript]) -> list[Manuscript]:
        """Apply ``fn`` to every record whose id is in ``ids``, in a single pass."""
        wanted = set(ids)
        changed: list[Manuscript] = []
        for idx, item in enumerate(self._items):
            if item.id in wanted:
                updated = fn(item)
                self._items[idx] = updated
                changed.append(updated)
        if changed:
            self._version += 1
        return changed

    def remove(self, entity_id: str) -> Optional[Manuscript]:
        for idx, item in enumerate(self._items):
            if item.id == entity_id:
                del self._items[idx]
                self._version += 1
                return item
        return None

    def reset(self, entities: Iterable[Manuscript]) -> None:
        """Replace the whole collection (resync)."""
        self._items = list(entities)
        self._version += 1
