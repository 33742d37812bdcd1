"""Keyed asyncio locks for per-coop and per-proposal serialization.

Usage:
    async with keyed_lock.hold("coop", coop_id):
        ...

Locks only serialize writers inside one process. The database constraints
on (coop_id, version), the active-config partial index and
(proposal_id, revision_number) remain the guard across processes.
"""

import asyncio
from contextlib import asynccontextmanager
from typing import Dict, Tuple

from coopgov.lib.logger import configure_logger

logger = configure_logger(__name__)


class KeyedLock:
    """Registry of asyncio locks addressed by (scope, key)."""

    def __init__(self):
        self._locks: Dict[Tuple[str, str], asyncio.Lock] = {}
        self._waiters: Dict[Tuple[str, str], int] = {}

    def _acquire_slot(self, name: Tuple[str, str]) -> asyncio.Lock:
        lock = self._locks.get(name)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[name] = lock
        self._waiters[name] = self._waiters.get(name, 0) + 1
        return lock

    def _release_slot(self, name: Tuple[str, str]) -> None:
        remaining = self._waiters.get(name, 1) - 1
        if remaining <= 0:
            # Nobody else is waiting; drop the lock so the registry stays small
            self._waiters.pop(name, None)
            self._locks.pop(name, None)
        else:
            self._waiters[name] = remaining

    @asynccontextmanager
    async def hold(self, scope: str, key):
        """Hold the lock for (scope, key) for the duration of the block."""
        name = (scope, str(key))
        lock = self._acquire_slot(name)
        try:
            async with lock:
                logger.debug("Lock acquired", extra={"lock": f"{scope}:{key}"})
                yield
        finally:
            self._release_slot(name)

    def is_locked(self, scope: str, key) -> bool:
        lock = self._locks.get((scope, str(key)))
        return lock is not None and lock.locked()


# Shared registry used by every service instance in the process
keyed_lock = KeyedLock()
