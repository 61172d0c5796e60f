"""In-memory gateway for unit tests: dict-backed fake."""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from typing import Any

from mctracker.core.exceptions import ManuscriptNotFoundError, PersistenceError
from mctracker.models.manuscript import Manuscript
from mctracker.models.settings import UserSettings
from mctracker.persistence.codec import changes_to_record, from_record, merge_record, newest_first, to_record


class MemoryGateway:
    """Dict-backed IManuscriptGateway for unit tests.

    Records are kept in their wire form so reads go through the same
    normalization as the real backends.
    """

    def __init__(self, manuscripts: Sequence[Manuscript] = (), settings: UserSettings | None = None) -> None:
        self._records: dict[str, dict[str, Any]] = {m.id: to_record(m) for m in manuscripts}
        self._settings = settings or UserSettings()

    async def list(self) -> list[Manuscript]:
        return newest_first(from_record(r) for r in self._records.values())

    async def create(self, draft: Manuscript) -> Manuscript:
        if draft.id in self._records:
            raise PersistenceError(f"Manuscript {draft.id!r} already exists")
        self._records[draft.id] = to_record(draft)
        return from_record(self._records[draft.id])

    async def update(self, entity: Manuscript) -> Manuscript:
        if entity.id not in self._records:
            raise ManuscriptNotFoundError(entity.id)
        self._records[entity.id] = to_record(entity)
        return from_record(self._records[entity.id])

    async def update_many(self, ids: Sequence[str], changes: Mapping[str, Any]) -> None:
        patch = changes_to_record(changes)
        for entity_id in ids:
            if entity_id in self._records:
                self._records[entity_id] = merge_record(self._records[entity_id], patch)

    async def delete(self, entity_id: str) -> None:
        self._records.pop(entity_id, None)

    async def get_settings(self) -> UserSettings:
        return self._settings

    async def update_settings(self, settings: UserSettings) -> UserSettings:
        self._settings = settings
        return settings
