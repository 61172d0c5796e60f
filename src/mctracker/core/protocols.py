"""Protocol interfaces for mctracker abstractions.

All inter-layer communication uses these Protocols: structural typing
with no inheritance required, checked with isinstance() in tests.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

if TYPE_CHECKING:
    from mctracker.models.manuscript import Manuscript
    from mctracker.models.settings import UserSettings


# ---------------------------------------------------------------------------
# Persistence: Manuscript Gateway
# ---------------------------------------------------------------------------

@runtime_checkable
class IManuscriptGateway(Protocol):
    """Durable storage boundary, remote or on-device.

    Every call is asynchronous and may fail; callers must not assume latency.
    """

    async def list(self) -> list[Manuscript]: ...

    async def create(self, draft: Manuscript) -> Manuscript: ...

    async def update(self, entity: Manuscript) -> Manuscript: ...

    async def update_many(self, ids: Sequence[str], changes: Mapping[str, Any]) -> None: ...

    async def delete(self, entity_id: str) -> None: ...

    async def get_settings(self) -> UserSettings: ...

    async def update_settings(self, settings: UserSettings) -> UserSettings: ...


# ---------------------------------------------------------------------------
# Persistence: Key-Value Client
# ---------------------------------------------------------------------------

@runtime_checkable
class IAsyncKeyValueClient(Protocol):
    """Subset of the redis.asyncio client the Redis gateway relies on."""

    async def hgetall(self, name: str) -> dict[str, str]: ...

    async def hexists(self, name: str, key: str) -> bool: ...

    async def hsetnx(self, name: str, key: str, value: str) -> int: ...

    async def hmget(self, name: str, keys: Sequence[str]) -> list[str | None]: ...

    async def hset(self, name: str, key: str | None = None, value: str | None = None,
                   mapping: Mapping[str, str] | None = None) -> int: ...

    async def hdel(self, name: str, *keys: str) -> int: ...

    async def get(self, name: str) -> str | None: ...

    async def set(self, name: str, value: str) -> Any: ...

    def pipeline(self, transaction: bool = True) -> Any: ...
