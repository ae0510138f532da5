# coordinator.py
"""
Per-partition mutual exclusion.

Admission (check + insert) and decisions (re-check + status update) for the
same (resource, date) run one at a time. Different partitions never wait on
each other. Across worker processes the SQL store adds its own exclusion
inside the same critical section.

A partition's lock only lives while someone holds or waits on it.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from datetime import date
from typing import Dict, Tuple

logger = logging.getLogger(__name__)


class PartitionLocks:
    def __init__(self):
        self._locks: Dict[Tuple[str, date], asyncio.Lock] = {}
        self._users: Dict[Tuple[str, date], int] = {}

    def lock_for(self, resource_id: str, day: date) -> asyncio.Lock:
        # No await between lookup and insert, so a partition gets exactly one lock
        return self._locks.setdefault((resource_id, day), asyncio.Lock())

    @asynccontextmanager
    async def hold(self, resource_id: str, day: date):
        key = (resource_id, day)
        lock = self.lock_for(resource_id, day)
        self._users[key] = self._users.get(key, 0) + 1
        if lock.locked():
            logger.debug(f"Waiting for partition {resource_id}/{day}")
        try:
            async with lock:
                yield
        finally:
            self._users[key] -= 1
            if not self._users[key]:
                del self._users[key]
                del self._locks[key]

    def __len__(self):
        return len(self._locks)
