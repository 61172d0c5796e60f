"""Record <-> model conversion shared by the document-style backends."""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from typing import Any

from mctracker.core.types import JsonDict
from mctracker.models.manuscript import Manuscript, ManuscriptChanges


def to_record(entity: Manuscript) -> JsonDict:
    """JSON-safe camelCase document for a manuscript."""
    return entity.model_dump(mode="json", by_alias=True)


def from_record(record: Mapping[str, Any]) -> Manuscript:
    return Manuscript.model_validate(dict(record))


def changes_to_record(changes: Mapping[str, Any]) -> JsonDict:
    """JSON-safe camelCase partial document holding only the changed fields."""
    validated = ManuscriptChanges.model_validate(dict(changes))
    return validated.model_dump(mode="json", by_alias=True, exclude_unset=True)


def merge_record(record: Mapping[str, Any], changes: JsonDict) -> JsonDict:
    """Apply a partial document and re-normalize through the model."""
    return to_record(from_record({**record, **changes}))


def newest_first(entities: Iterable[Manuscript]) -> list[Manuscript]:
    return sorted(entities, key=lambda m: m.date_updated, reverse=True)
