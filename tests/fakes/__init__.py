"""Shared test doubles: the memory gateway plus a gateway that fails on demand."""

from __future__ import annotations

import asyncio
from collections.abc import Mapping, Sequence
from typing import Any

from mctracker.core.exceptions import GatewayUnavailableError
from mctracker.models.manuscript import Manuscript
from mctracker.models.settings import UserSettings
from mctracker.persistence.memory_backend import MemoryGateway


class FlakyGateway(MemoryGateway):
    """MemoryGateway that raises on demand.

    * ``fail_on``: operation names that always fail.
    * ``fail_once``: operation names that fail on their next call only.
    * ``fail_ids``: entity ids whose single-entity writes fail.

    ``calls`` records every operation in order. Setting ``gate`` to an
    ``asyncio.Event`` holds writes until the test releases it.
    """

    def __init__(self, manuscripts: Sequence[Manuscript] = (), settings: UserSettings | None = None) -> None:
        super().__init__(manuscripts, settings)
        self.fail_on: set[str] = set()
        self.fail_once: set[str] = set()
        self.fail_ids: set[str] = set()
        self.calls: list[str] = []
        self.gate: asyncio.Event | None = None

    async def _enter(self, op: str, entity_id: str | None = None) -> None:
        self.calls.append(op)
        if self.gate is not None and op != "list":
            await self.gate.wait()
        if op in self.fail_once:
            self.fail_once.discard(op)
            raise GatewayUnavailableError(f"simulated {op} outage")
        if op in self.fail_on or (entity_id is not None and entity_id in self.fail_ids):
            raise GatewayUnavailableError(f"simulated {op} outage")

    async def list(self) -> list[Manuscript]:
        await self._enter("list")
        return await super().list()

    async def create(self, draft: Manuscript) -> Manuscript:
        await self._enter("create", draft.id)
        return await super().create(draft)

    async def update(self, entity: Manuscript) -> Manuscript:
        await self._enter("update", entity.id)
        return await super().update(entity)

    async def update_many(self, ids: Sequence[str], changes: Mapping[str, Any]) -> None:
        await self._enter("update_many")
        await super().update_many(ids, changes)

    async def delete(self, entity_id: str) -> None:
        await self._enter("delete", entity_id)
        await super().delete(entity_id)

    async def get_settings(self) -> UserSettings:
        await self._enter("get_settings")
        return await super().get_settings()

    async def update_settings(self, settings: UserSettings) -> UserSettings:
        await self._enter("update_settings")
        return await super().update_settings(settings)


__all__ = ["FlakyGateway", "MemoryGateway"]
