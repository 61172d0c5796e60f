"""mctracker exception hierarchy."""

from __future__ import annotations

from typing import Any


class TrackerError(Exception):
    """Base exception for all mctracker errors."""


class ManuscriptValidationError(TrackerError):
    """A draft or edit was rejected before reaching the gateway."""


class DuplicateManuscriptError(ManuscriptValidationError):
    """Another manuscript already uses the same correlation key."""

    def __init__(self, manuscript_id: str, existing: Any) -> None:
        self.manuscript_id = manuscript_id
        self.existing = existing
        super().__init__(f'Duplicate found! Manuscript ID "{manuscript_id}" already exists.')


class ManuscriptNotFoundError(TrackerError):
    """No manuscript with the given id."""

    def __init__(self, entity_id: str) -> None:
        self.entity_id = entity_id
        super().__init__(f"Manuscript {entity_id!r} not found")


class NoteNotFoundError(TrackerError):
    """No note with the given id on the manuscript."""


class PersistenceError(TrackerError):
    """A gateway call failed; the in-memory store has been recovered."""


class GatewayUnavailableError(PersistenceError):
    """The backing store client raised (network, throttling, I/O)."""


class QueueError(TrackerError):
    """Illegal review queue transition."""
