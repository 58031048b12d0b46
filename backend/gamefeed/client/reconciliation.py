"""Optimistic action states and per-entity serialization.

An optimistic action moves ``Idle -> Pending(patch) -> Confirmed | RolledBack``.
Actions on the same entity key run one at a time; a second action waits until
the first one has settled.
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Hashable
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any, Union

from gamefeed.core.errors import EngineError


@dataclass(frozen=True)
class Idle:
    pass


@dataclass(frozen=True)
class Pending:
    patch: Any


@dataclass(frozen=True)
class Confirmed:
    result: Any = None


@dataclass(frozen=True)
class RolledBack:
    error: EngineError


ActionState = Union[Idle, Pending, Confirmed, RolledBack]

IDLE = Idle()


class EntityLocks:
    def __init__(self):
        self._locks: dict[Hashable, asyncio.Lock] = {}
        self._users: dict[Hashable, int] = {}

    def is_busy(self, key: Hashable) -> bool:
        lock = self._locks.get(key)
        return bool(lock and lock.locked())

    @asynccontextmanager
    async def hold(self, key: Hashable) -> AsyncIterator[None]:
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._users[key] = self._users.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._users[key] -= 1
            if not self._users[key]:
                del self._users[key]
                del self._locks[key]
