"""Keyed locks: one mutual-exclusion scope per key.

WHY
───
Two ``start`` requests for the same worker must not both pass the quota
check and both reach the supervisor, but requests for different workers
(or different tenants) must never wait on each other. A keyed lock gives
each key its own lock and drops it again once nobody holds or waits for it,
so the table stays as small as the set of keys currently in use.

ARCHITECTURE
────────────
::

    KeyedLock()                      ─ asyncio, used by the lifecycle controller
      └── async with locks.hold(42): ...

    KeyedThreadLock()                ─ threading, used by the worker registry
      └── with locks.hold("u1"): ...

    entry = {lock, users}            ─ users = holders + waiters
                                       entry removed when users drops to 0

Example::

    locks = KeyedLock()
    async with locks.hold(worker_id):
        await supervisor.start(handle, env)
"""

from __future__ import annotations

import asyncio
import threading
from collections.abc import AsyncIterator, Hashable, Iterator
from contextlib import asynccontextmanager, contextmanager
from dataclasses import dataclass, field
from typing import Any


@dataclass
class _Entry:
    lock: Any
    users: int = 0


@dataclass
class KeyedLock:
    """Per-key ``asyncio.Lock`` reclaimed when idle."""

    _entries: dict[Hashable, _Entry] = field(default_factory=dict)

    @asynccontextmanager
    async def hold(self, key: Hashable) -> AsyncIterator[None]:
        entry = self._entries.get(key)
        if entry is None:
            entry = self._entries[key] = _Entry(lock=asyncio.Lock())
        entry.users += 1
        try:
            async with entry.lock:
                yield
        finally:
            entry.users -= 1
            if entry.users == 0:
                self._entries.pop(key, None)

    def locked(self, key: Hashable) -> bool:
        entry = self._entries.get(key)
        return entry is not None and entry.lock.locked()

    def __len__(self) -> int:
        return len(self._entries)


@dataclass
class KeyedThreadLock:
    """Per-key ``threading.Lock`` reclaimed when idle."""

    _entries: dict[Hashable, _Entry] = field(default_factory=dict)
    _guard: threading.Lock = field(default_factory=threading.Lock)

    @contextmanager
    def hold(self, key: Hashable) -> Iterator[None]:
        with self._guard:
            entry = self._entries.get(key)
            if entry is None:
                entry = self._entries[key] = _Entry(lock=threading.Lock())
            entry.users += 1
        try:
            with entry.lock:
                yield
        finally:
            with self._guard:
                entry.users -= 1
                if entry.users == 0:
                    self._entries.pop(key, None)

    def __len__(self) -> int:
        with self._guard:
            return len(self._entries)


__all__ = ["KeyedLock", "KeyedThreadLock"]
