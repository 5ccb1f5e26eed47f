import asyncio
import logging
from contextlib import contextmanager
from typing import Dict, Hashable, Iterable, Set

from ledger_sync.exceptions import SyncAlreadyRunningError

log = logging.getLogger(__name__)


class SingleFlightGuard:
    """At most one running sync per entity type, across all triggers."""

    def __init__(self):
        self._running: Set[str] = set()

    def running(self) -> Set[str]:
        return set(self._running)

    @contextmanager
    def hold(self, keys: Iterable[str]):
        keys = set(keys)
        busy = keys & self._running
        if busy:
            raise SyncAlreadyRunningError(busy)
        self._running |= keys
        try:
            yield
        finally:
            self._running -= keys


class EntityLockRegistry:
    """Per-run locks serialising all work on one entity."""

    def __init__(self):
        self._locks: Dict[Hashable, asyncio.Lock] = {}

    def lock_for(self, key: Hashable) -> asyncio.Lock:
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
        return lock
