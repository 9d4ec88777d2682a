"""Keyed asyncio locks: one lock per cron id / user id."""

from __future__ import annotations

import asyncio
from collections import defaultdict
from collections.abc import Hashable


class KeyedLocks:
    """Lazily created ``asyncio.Lock`` per key.

    Locks are advisory and process-local. They live for the process lifetime;
    the key space (cron ids, user ids) is small.
    """

    def __init__(self) -> None:
        self._locks: dict[Hashable, asyncio.Lock] = defaultdict(asyncio.Lock)

    def get(self, key: Hashable) -> asyncio.Lock:
        return self._locks[key]

    def is_locked(self, key: Hashable) -> bool:
        lock = self._locks.get(key)
        return lock is not None and lock.locked()

    def __len__(self) -> int:
        return len(self._locks)
