"""Duplicate guard for the external correlation key (``manuscript_id``)."""

from __future__ import annotations

from collections.abc import Iterable
from typing import Optional

from mctracker.core.exceptions import DuplicateManuscriptError
from mctracker.models.manuscript import Manuscript


def normalize_key(manuscript_id: str) -> str:
    return manuscript_id.casefold()


def find_duplicate(
    manuscript_id: str,
    exclude_id: Optional[str],
    entities: Iterable[Manuscript],
) -> Optional[Manuscript]:
    """First entity (other than ``exclude_id``) whose key matches case-insensitively."""
    key = normalize_key(manuscript_id)
    for entity in entities:
        if entity.id != exclude_id and normalize_key(entity.manuscript_id) == key:
            return entity
    return None


def ensure_unique(
    manuscript_id: str,
    exclude_id: Optional[str],
    entities: Iterable[Manuscript],
) -> None:
    existing = find_duplicate(manuscript_id, exclude_id, entities)
    if existing is not None:
        raise DuplicateManuscriptError(manuscript_id, existing)
