"""MutationCoordinator: optimistic writes against the entity store.

Every change follows the same shape: validate, apply (or prepare), persist
through the gateway, then confirm or recover. Recovery differs by scope:

* single-entity quick updates restore the exact snapshot taken before the
  optimistic write;
* bulk updates and imports resync the whole store from ``gateway.list()``;
* create, full update and delete only touch the store after the gateway
  succeeds, so there is nothing to undo.

Gateway failures are never retried; they are logged and re-raised as
``PersistenceError`` chained to the original exception.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Iterable, Mapping, Sequence
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Optional, TypeVar, Union

from pydantic import ValidationError

from mctracker.core.clock import Clock, SystemClock
from mctracker.core.exceptions import (
    ManuscriptNotFoundError,
    ManuscriptValidationError,
    PersistenceError,
)
from mctracker.core.logging import get_logger
from mctracker.core.protocols import IManuscriptGateway
from mctracker.engine.duplicates import ensure_unique, normalize_key
from mctracker.engine.entity_store import EntityStore
from mctracker.engine.rules import auto_remark, bulk_transition_fields, derive_on_transition
from mctracker.models.manuscript import Manuscript, ManuscriptChanges, Note, Status, new_id
from mctracker.models.settings import UserSchedule, UserSettings

logger = get_logger("coordinator")

T = TypeVar("T")
ChangesLike = Union[ManuscriptChanges, Mapping[str, Any]]


@dataclass(frozen=True)
class ImportResult:
    """Outcome of a bulk import."""

    created: tuple[Manuscript, ...]
    skipped: tuple[str, ...]  # manuscript_ids rejected as duplicates


def _as_changes(changes: ChangesLike) -> ManuscriptChanges:
    if isinstance(changes, ManuscriptChanges):
        return changes
    try:
        return ManuscriptChanges.model_validate(dict(changes))
    except ValidationError as exc:
        raise ManuscriptValidationError(f"Invalid changes: {exc}") from exc


def _stamp(now: datetime, previous: Optional[Manuscript]) -> datetime:
    """``date_updated`` for a write: never earlier than the previous stamp."""
    if previous is not None and previous.date_updated > now:
        return previous.date_updated
    return now


class MutationCoordinator:
    """Owns the entity store and serializes every state change through the gateway."""

    def __init__(
        self,
        gateway: IManuscriptGateway,
        *,
        store: Optional[EntityStore] = None,
        clock: Optional[Clock] = None,
        auto_remarks: bool = True,
    ) -> None:
        self._gateway = gateway
        self._store = store if store is not None else EntityStore()
        self._clock = clock or SystemClock()
        self._auto_remarks = auto_remarks
        self._settings = UserSettings()

    @property
    def store(self) -> EntityStore:
        return self._store

    @property
    def clock(self) -> Clock:
        return self._clock

    @property
    def settings(self) -> UserSettings:
        return self._settings

    def get(self, entity_id: str) -> Optional[Manuscript]:
        return self._store.get(entity_id)

    async def _call(self, action: str, call: Callable[[], Awaitable[T]]) -> T:
        try:
            return await call()
        except Exception as exc:
            logger.error("Failed to %s: %s", action, exc)
            raise PersistenceError(f"Failed to {action}: {exc}") from exc

    # ---- loading ----

    async def load(self) -> None:
        """Startup read of manuscripts and settings."""
        async def both() -> tuple[list[Manuscript], UserSettings]:
            return await asyncio.gather(self._gateway.list(), self._gateway.get_settings())

        entities, settings = await self._call("load data", both)
        self._store.reset(entities)
        self._settings = settings
        logger.info("Loaded %d manuscripts", len(entities))

    async def reload(self) -> tuple[Manuscript, ...]:
        """Replace the store with a fresh read from the gateway."""
        entities = await self._call("reload manuscripts", self._gateway.list)
        self._store.reset(entities)
        return self._store.all()

    async def _resync(self, fallback: Callable[[], None]) -> None:
        """Best-effort resync after a failed multi-entity write.

        If the fresh read fails too, ``fallback`` restores what is known.
        """
        try:
            entities = await self._gateway.list()
        except Exception as exc:
            logger.error("Resync failed, falling back to local recovery: %s", exc)
            fallback()
            return
        self._store.reset(entities)
        logger.info("Resynced %d manuscripts from gateway", len(entities))

    # ---- single entity ----

    def _prepare_new(self, draft: Manuscript, now: datetime) -> Manuscript:
        draft.validate_required()
        derived = derive_on_transition(Status.UNTOUCHED, draft.status, draft.completed_date, now)
        update: dict[str, Any] = {k: v for k, v in derived.items() if getattr(draft, k) is None}
        if draft.date_status_changed is None:
            update["date_status_changed"] = now
        if not draft.id:
            update["id"] = new_id()
        update["date_updated"] = now
        return draft.model_copy(update=update)

    async def create_entity(self, draft: Manuscript) -> Manuscript:
        """Validate and persist a new manuscript, then prepend it to the store."""
        candidate = self._prepare_new(draft, self._clock.now())
        ensure_unique(candidate.manuscript_id, None, self._store)
        created = await self._call(
            f"create manuscript {draft.manuscript_id!r}",
            lambda: self._gateway.create(candidate),
        )
        self._store.prepend(created)
        logger.debug("Created %s (%s)", created.manuscript_id, created.id)
        return created

    async def update_entity(self, entity: Manuscript) -> Manuscript:
        """Persist a full-form edit, then replace the stored record by id."""
        entity.validate_required()
        current = self._store.get(entity.id)
        if current is None:
            raise ManuscriptNotFoundError(entity.id)
        ensure_unique(entity.manuscript_id, entity.id, self._store)

        now = self._clock.now()
        update = derive_on_transition(current.status, entity.status, entity.completed_date, now)
        if entity.status != Status.WORKED:
            update["completed_date"] = None
        update["date_updated"] = _stamp(now, current)
        merged = entity.model_copy(update=update)

        saved = await self._call(
            f"update manuscript {entity.manuscript_id!r}",
            lambda: self._gateway.update(merged),
        )
        if not self._store.replace(saved):
            logger.warning("Manuscript %s left the store while its update was in flight", saved.id)
        return saved

    async def save_entity(self, entity: Manuscript) -> Manuscript:
        """Form save: update when the id is known, create otherwise."""
        if entity.id and entity.id in self._store:
            return await self.update_entity(entity)
        return await self.create_entity(entity)

    async def quick_update(self, entity_id: str, changes: ChangesLike) -> Optional[Manuscript]:
        """Apply ``changes`` optimistically, persist, and roll back exactly on failure.

        Returns the confirmed record, or ``None`` if the id is not in the store.
        """
        original = self._store.get(entity_id)
        if original is None:
            logger.debug("Quick update skipped, %s not in store", entity_id)
            return None

        patch = _as_changes(changes).as_update()
        if "manuscript_id" in patch:
            if not (patch["manuscript_id"] or "").strip():
                raise ManuscriptValidationError("Manuscript ID is required")
            ensure_unique(patch["manuscript_id"], entity_id, self._store)

        now = self._clock.now()
        updated = original.model_copy(update=patch)
        update = derive_on_transition(original.status, updated.status, updated.completed_date, now)
        if self._auto_remarks and "notes" not in patch and updated.status != original.status:
            remark = auto_remark(original.status, updated.status)
            if remark:
                update["notes"] = (Note(content=remark, timestamp=now), *updated.notes)
        update["date_updated"] = _stamp(now, original)
        updated = updated.model_copy(update=update)

        self._store.replace(updated)
        try:
            saved = await self._gateway.update(updated)
        except Exception as exc:
            logger.error("Quick update failed for %s: %s", original.manuscript_id, exc)
            if self._store.get(entity_id) is updated:
                self._store.replace(original)
            else:
                logger.warning("Not rolling back %s, it changed again while in flight", entity_id)
            raise PersistenceError(f"Failed to update manuscript {original.manuscript_id!r}: {exc}") from exc

        if self._store.get(entity_id) is updated:
            self._store.replace(saved)
        return saved

    async def delete_entity(self, entity_id: str) -> None:
        """Delete durably first; the store entry goes only once the gateway agrees."""
        await self._call(f"delete manuscript {entity_id!r}", lambda: self._gateway.delete(entity_id))
        self._store.remove(entity_id)
        logger.debug("Deleted %s", entity_id)

    # ---- quick actions ----

    async def mark_worked(self, entity_id: str) -> Optional[Manuscript]:
        return await self.quick_update(entity_id, ManuscriptChanges(status=Status.WORKED))

    async def raise_query(self, entity_id: str, reason: Optional[str] = None) -> Optional[Manuscript]:
        changes = ManuscriptChanges(
            status=Status.PENDING_JM,
            date_queried=self._clock.now(),
            query_reason=reason,
        )
        return await self.quick_update(entity_id, changes)

    # ---- multi entity ----

    async def bulk_update(self, ids: Sequence[str], changes: ChangesLike) -> list[Manuscript]:
        """Apply one shared change set to many records with a single gateway call.

        On failure the store is resynced from the gateway rather than rolled
        back record by record.
        """
        ids = list(dict.fromkeys(ids))
        if not ids:
            return []
        patch = _as_changes(changes).as_update()
        if "manuscript_id" in patch:
            raise ManuscriptValidationError("Bulk edits cannot assign a manuscript ID")

        now = self._clock.now()
        wanted = set(ids)
        snapshots = [m for m in self._store.all() if m.id in wanted]
        # Shared stamp, never earlier than any selected record's date_updated.
        stamp = max([now, *(m.date_updated for m in snapshots)])
        shared = {**bulk_transition_fields(patch.get("status"), now), **patch, "date_updated": stamp}

        changed = self._store.replace_many(ids, lambda m: m.model_copy(update=shared))
        try:
            await self._gateway.update_many(ids, shared)
        except Exception as exc:
            logger.error("Bulk update of %d manuscripts failed: %s", len(ids), exc)

            def restore() -> None:
                for snap in snapshots:
                    self._store.replace(snap)

            await self._resync(restore)
            raise PersistenceError(f"Failed to update {len(ids)} manuscripts: {exc}") from exc
        logger.debug("Bulk updated %d manuscripts", len(changed))
        return changed

    async def mark_reported(self, ids: Sequence[str]) -> list[Manuscript]:
        return await self.bulk_update(ids, ManuscriptChanges(date_emailed=self._clock.now()))

    async def import_entities(self, drafts: Iterable[Manuscript]) -> ImportResult:
        """Create many drafts, skipping keys already present (or repeated in the batch)."""
        drafts = list(drafts)
        for draft in drafts:
            draft.validate_required()

        seen = {normalize_key(m.manuscript_id) for m in self._store}
        pending: list[Manuscript] = []
        skipped: list[str] = []
        for draft in drafts:
            key = normalize_key(draft.manuscript_id)
            if key in seen:
                skipped.append(draft.manuscript_id)
                continue
            seen.add(key)
            pending.append(draft)

        now = self._clock.now()
        created: list[Manuscript] = []
        for draft in pending:
            candidate = self._prepare_new(draft, now)
            try:
                created.append(await self._gateway.create(candidate))
            except Exception as exc:
                logger.error("Bulk import failed after %d of %d: %s", len(created), len(pending), exc)
                await self._resync(lambda: self._store.prepend_many(created))
                raise PersistenceError(f"Some items failed to import: {exc}") from exc

        self._store.prepend_many(created)
        logger.info("Imported %d manuscripts, skipped %d duplicates", len(created), len(skipped))
        return ImportResult(created=tuple(created), skipped=tuple(skipped))

    # ---- settings ----

    async def update_target(self, target: int) -> UserSettings:
        return await self._update_settings(
            UserSettings(target_per_cycle=target, user_schedule=self._settings.user_schedule)
        )

    async def update_schedule(self, schedule: UserSchedule) -> UserSettings:
        return await self._update_settings(
            UserSettings(target_per_cycle=self._settings.target_per_cycle, user_schedule=schedule)
        )

    async def _update_settings(self, new: UserSettings) -> UserSettings:
        previous = self._settings
        self._settings = new
        try:
            saved = await self._gateway.update_settings(new)
        except Exception as exc:
            logger.error("Settings sync failed: %s", exc)
            if self._settings is new:
                self._settings = previous
            raise PersistenceError(f"Failed to save settings: {exc}") from exc
        if self._settings is new:
            self._settings = saved
        return saved
