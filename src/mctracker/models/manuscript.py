"""Manuscript record: the unit of tracked work.

Records are frozen: every mutation produces a new instance, so a reference held
before a change is an exact snapshot of the prior state. Wire form uses the
camelCase keys of the stored documents (``manuscriptId``, ``dateUpdated``...).
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import StrEnum
from typing import Annotated, Any, Optional

from pydantic import AfterValidator, BaseModel, ConfigDict, Field, model_serializer, model_validator
from pydantic.alias_generators import to_camel

from mctracker.core.exceptions import ManuscriptValidationError, NoteNotFoundError


class Status(StrEnum):
    UNTOUCHED = "UNTOUCHED"  # Newly logged, not started
    PENDING_JM = "PENDING_JM"  # Queried to JM
    PENDING_TL = "PENDING_TL"  # With TL query
    PENDING_CED = "PENDING_CED"  # Emailed CED
    WORKED = "WORKED"  # Completed / submitted


class Priority(StrEnum):
    NORMAL = "Normal"
    HIGH = "High"
    URGENT = "Urgent"


def new_id() -> str:
    return uuid.uuid4().hex


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


UtcDatetime = Annotated[datetime, AfterValidator(_as_utc)]


_WIRE_CONFIG = ConfigDict(
    alias_generator=to_camel,
    populate_by_name=True,
    frozen=True,
    extra="ignore",
)


class Note(BaseModel):
    """Operator note attached to a manuscript."""

    model_config = _WIRE_CONFIG

    id: str = Field(default_factory=new_id)
    content: str
    timestamp: UtcDatetime = Field(default_factory=utcnow)


class Manuscript(BaseModel):
    """Single manuscript record as held in the entity store."""

    model_config = _WIRE_CONFIG

    # --- Identity ---
    id: str = Field(default_factory=new_id)
    manuscript_id: str
    journal_code: str

    # --- Workflow ---
    status: Status = Status.UNTOUCHED
    priority: Priority = Priority.NORMAL

    # --- Operator dates ---
    date_received: UtcDatetime = Field(default_factory=utcnow)
    due_date: Optional[UtcDatetime] = None
    completed_date: Optional[UtcDatetime] = None  # Only meaningful while WORKED

    # --- Bookkeeping ---
    date_updated: UtcDatetime = Field(default_factory=utcnow)
    date_status_changed: Optional[UtcDatetime] = None

    # --- Side-channel actions ---
    date_queried: Optional[UtcDatetime] = None
    date_emailed: Optional[UtcDatetime] = None
    query_reason: Optional[str] = None

    notes: tuple[Note, ...] = ()  # Newest first

    @model_serializer(mode="wrap")
    def _hide_stale_completion(self, handler: Any) -> dict[str, Any]:
        data = handler(self)
        if self.status != Status.WORKED:
            for key in ("completed_date", "completedDate"):
                if key in data:
                    data[key] = None
        return data

    @property
    def visible_completed_date(self) -> Optional[datetime]:
        """Completion date as displayed: hidden unless the record is WORKED."""
        return self.completed_date if self.status == Status.WORKED else None

    def validate_required(self) -> None:
        """Reject drafts missing the fields a form submission requires."""
        if not self.manuscript_id.strip():
            raise ManuscriptValidationError("Manuscript ID is required")
        if not self.journal_code.strip():
            raise ManuscriptValidationError("Journal code is required")

    # ---- note management ----

    def with_note(self, content: str, now: datetime) -> Manuscript:
        if not content.strip():
            raise ManuscriptValidationError("Note content is required")
        note = Note(content=content, timestamp=now)
        return self.model_copy(update={"notes": (note, *self.notes)})

    def with_note_edited(self, note_id: str, content: str, now: datetime) -> Manuscript:
        if not content.strip():
            raise ManuscriptValidationError("Note content is required")
        if not any(n.id == note_id for n in self.notes):
            raise NoteNotFoundError(f"Note {note_id!r} not found on {self.manuscript_id!r}")
        notes = tuple(
            n.model_copy(update={"content": content, "timestamp": now}) if n.id == note_id else n
            for n in self.notes
        )
        return self.model_copy(update={"notes": notes})

    def without_note(self, note_id: str) -> Manuscript:
        return self.model_copy(update={"notes": tuple(n for n in self.notes if n.id != note_id)})


_NOT_NULLABLE = frozenset(
    {"manuscript_id", "journal_code", "status", "priority", "date_received", "date_updated", "notes"}
)


class ManuscriptChanges(BaseModel):
    """Partial change set; only explicitly set fields are applied."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="forbid")

    manuscript_id: Optional[str] = None
    journal_code: Optional[str] = None
    status: Optional[Status] = None
    priority: Optional[Priority] = None
    date_received: Optional[UtcDatetime] = None
    due_date: Optional[UtcDatetime] = None
    completed_date: Optional[UtcDatetime] = None
    date_updated: Optional[UtcDatetime] = None
    date_status_changed: Optional[UtcDatetime] = None
    date_queried: Optional[UtcDatetime] = None
    date_emailed: Optional[UtcDatetime] = None
    query_reason: Optional[str] = None
    notes: Optional[tuple[Note, ...]] = None

    @model_validator(mode="after")
    def _required_fields_not_cleared(self) -> ManuscriptChanges:
        for name in _NOT_NULLABLE & self.model_fields_set:
            if getattr(self, name) is None:
                raise ValueError(f"{name} cannot be cleared")
        return self

    def as_update(self) -> dict[str, Any]:
        """Field name -> value for every field the caller set."""
        return {name: getattr(self, name) for name in self.model_fields_set}
