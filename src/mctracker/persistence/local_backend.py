"""On-device JSON document backend implementing IManuscriptGateway (offline mode)."""

from __future__ import annotations

import asyncio
import json
import os
from collections.abc import Mapping, Sequence
from pathlib import Path
from typing import Any

from mctracker.core.exceptions import GatewayUnavailableError, ManuscriptNotFoundError, PersistenceError
from mctracker.core.logging import get_logger
from mctracker.models.manuscript import Manuscript
from mctracker.models.settings import UserSettings
from mctracker.persistence.codec import changes_to_record, from_record, merge_record, newest_first, to_record

logger = get_logger("persistence.local")


class LocalFileGateway:
    """IManuscriptGateway backed by two JSON files in a data directory.

    File I/O runs in a worker thread; an asyncio lock serializes the
    read-modify-write cycles. Writes replace the file atomically.
    """

    MANUSCRIPTS_FILE = "manuscripts.json"
    SETTINGS_FILE = "settings.json"

    def __init__(self, data_dir: str | Path) -> None:
        self._dir = Path(data_dir).expanduser()
        self._lock = asyncio.Lock()

    @property
    def data_dir(self) -> Path:
        return self._dir

    # ---- file helpers (blocking, run via to_thread) ----

    def _read_json(self, name: str, default: Any) -> Any:
        path = self._dir / name
        try:
            text = path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return default
        except OSError as exc:
            raise GatewayUnavailableError(f"Local read failed for {path}: {exc}") from exc
        try:
            return json.loads(text)
        except json.JSONDecodeError as exc:
            raise GatewayUnavailableError(f"Corrupt local store {path}: {exc}") from exc

    def _write_json(self, name: str, payload: Any) -> None:
        path = self._dir / name
        tmp = path.with_name(f"{path.name}.tmp")
        try:
            self._dir.mkdir(parents=True, exist_ok=True)
            tmp.write_text(json.dumps(payload, indent=2), encoding="utf-8")
            os.replace(tmp, path)
        except OSError as exc:
            raise GatewayUnavailableError(f"Local write failed for {path}: {exc}") from exc

    async def _records(self) -> list[dict[str, Any]]:
        return await asyncio.to_thread(self._read_json, self.MANUSCRIPTS_FILE, [])

    async def _save_records(self, records: list[dict[str, Any]]) -> None:
        await asyncio.to_thread(self._write_json, self.MANUSCRIPTS_FILE, records)

    # ---- IManuscriptGateway methods ----

    async def list(self) -> list[Manuscript]:
        return newest_first(from_record(r) for r in await self._records())

    async def create(self, draft: Manuscript) -> Manuscript:
        record = to_record(draft)
        async with self._lock:
            records = await self._records()
            if any(r.get("id") == draft.id for r in records):
                raise PersistenceError(f"Manuscript {draft.id!r} already exists")
            await self._save_records([record, *records])
        return from_record(record)

    async def update(self, entity: Manuscript) -> Manuscript:
        record = to_record(entity)
        async with self._lock:
            records = await self._records()
            for idx, existing in enumerate(records):
                if existing.get("id") == entity.id:
                    records[idx] = record
                    break
            else:
                raise ManuscriptNotFoundError(entity.id)
            await self._save_records(records)
        return from_record(record)

    async def update_many(self, ids: Sequence[str], changes: Mapping[str, Any]) -> None:
        patch = changes_to_record(changes)
        wanted = set(ids)
        async with self._lock:
            records = await self._records()
            records = [merge_record(r, patch) if r.get("id") in wanted else r for r in records]
            await self._save_records(records)

    async def delete(self, entity_id: str) -> None:
        async with self._lock:
            records = await self._records()
            kept = [r for r in records if r.get("id") != entity_id]
            if len(kept) != len(records):
                await self._save_records(kept)

    async def get_settings(self) -> UserSettings:
        stored = await asyncio.to_thread(self._read_json, self.SETTINGS_FILE, None)
        if stored is None:
            return UserSettings()
        return UserSettings.model_validate(stored)

    async def update_settings(self, settings: UserSettings) -> UserSettings:
        payload = settings.model_dump(mode="json", by_alias=True)
        async with self._lock:
            await asyncio.to_thread(self._write_json, self.SETTINGS_FILE, payload)
        logger.debug("Saved settings to %s", self._dir)
        return settings
