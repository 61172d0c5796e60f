"""Redis backend implementing IManuscriptGateway.

Manuscripts live in one hash per operator (field = id, value = JSON document);
settings are a plain string key next to it.
"""

from __future__ import annotations

import json
from collections.abc import Mapping, Sequence
from typing import Any

import redis.asyncio as aioredis

from mctracker.core.exceptions import GatewayUnavailableError, ManuscriptNotFoundError, PersistenceError
from mctracker.persistence.protocols import IAsyncKeyValueClient
from mctracker.models.manuscript import Manuscript
from mctracker.models.settings import UserSettings
from mctracker.persistence.codec import changes_to_record, from_record, merge_record, newest_first, to_record


class RedisGateway:
    """IManuscriptGateway backed by Redis (redis.asyncio)."""

    def __init__(self, user_id: str, host: str = "localhost", port: int = 6379, db: int = 0,
                 key_prefix: str = "mctracker", client: IAsyncKeyValueClient | None = None) -> None:
        self._host = host
        self._port = port
        self._db = db
        self._client = client if client is not None else aioredis.Redis(
            host=host, port=port, db=db, decode_responses=True,
        )
        self._hash_key = f"{key_prefix}:{user_id}:manuscripts"
        self._settings_key = f"{key_prefix}:{user_id}:settings"

    async def list(self) -> list[Manuscript]:
        try:
            raw = await self._client.hgetall(self._hash_key)
        except Exception as exc:
            raise GatewayUnavailableError(f"Redis HGETALL failed for key={self._hash_key!r}: {exc}") from exc
        return newest_first(from_record(json.loads(value)) for value in raw.values())

    async def create(self, draft: Manuscript) -> Manuscript:
        record = to_record(draft)
        try:
            added = await self._client.hsetnx(self._hash_key, draft.id, json.dumps(record))
        except Exception as exc:
            raise GatewayUnavailableError(f"Redis HSETNX failed for id={draft.id!r}: {exc}") from exc
        if not added:
            raise PersistenceError(f"Manuscript {draft.id!r} already exists")
        return from_record(record)

    async def update(self, entity: Manuscript) -> Manuscript:
        record = to_record(entity)
        try:
            exists = await self._client.hexists(self._hash_key, entity.id)
            if exists:
                await self._client.hset(self._hash_key, entity.id, json.dumps(record))
        except Exception as exc:
            raise GatewayUnavailableError(f"Redis HSET failed for id={entity.id!r}: {exc}") from exc
        if not exists:
            raise ManuscriptNotFoundError(entity.id)
        return from_record(record)

    async def update_many(self, ids: Sequence[str], changes: Mapping[str, Any]) -> None:
        patch = changes_to_record(changes)
        ids = list(dict.fromkeys(ids))
        if not ids:
            return
        try:
            current = await self._client.hmget(self._hash_key, ids)
            merged = {
                entity_id: json.dumps(merge_record(json.loads(raw), patch))
                for entity_id, raw in zip(ids, current)
                if raw is not None
            }
            if not merged:
                return
            async with self._client.pipeline(transaction=True) as pipe:
                pipe.hset(self._hash_key, mapping=merged)
                await pipe.execute()
        except Exception as exc:
            raise GatewayUnavailableError(f"Redis bulk update failed for {len(ids)} ids: {exc}") from exc

    async def delete(self, entity_id: str) -> None:
        try:
            await self._client.hdel(self._hash_key, entity_id)
        except Exception as exc:
            raise GatewayUnavailableError(f"Redis HDEL failed for id={entity_id!r}: {exc}") from exc

    async def get_settings(self) -> UserSettings:
        try:
            raw = await self._client.get(self._settings_key)
        except Exception as exc:
            raise GatewayUnavailableError(f"Redis GET failed for key={self._settings_key!r}: {exc}") from exc
        if raw is None:
            return UserSettings()
        return UserSettings.model_validate_json(raw)

    async def update_settings(self, settings: UserSettings) -> UserSettings:
        try:
            await self._client.set(self._settings_key, settings.model_dump_json(by_alias=True))
        except Exception as exc:
            raise GatewayUnavailableError(f"Redis SET failed for key={self._settings_key!r}: {exc}") from exc
        return settings
