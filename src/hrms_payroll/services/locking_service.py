"""Per-employment serialization for allocation and payroll writes."""

from __future__ import annotations

import asyncio
import logging
import weakref
from contextlib import asynccontextmanager
from typing import AsyncIterator
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from hrms_payroll.database import acquire_employment_lock

logger = logging.getLogger(__name__)

_local_locks: weakref.WeakValueDictionary[str, asyncio.Lock] = weakref.WeakValueDictionary()


def _local_lock(key: str) -> asyncio.Lock:
    lock = _local_locks.get(key)
    if lock is None:
        lock = asyncio.Lock()
        _local_locks[key] = lock
    return lock


class LockingService:
    """Serializes work on one employment at a time.

    Two layers:
    1. An in-process asyncio.Lock per employment, so concurrent tasks in one
       worker queue up instead of racing
    2. A Postgres transaction-scoped advisory lock, so separate workers skip
       an employment another transaction is already changing

    The Employment version column catches anything that slips past both.
    """

    def __init__(self, session: AsyncSession):
        self.session = session

    @staticmethod
    def lock_key(employment_id: UUID) -> str:
        return f"employment:{employment_id}"

    @asynccontextmanager
    async def employment_lock(self, employment_id: UUID) -> AsyncIterator[bool]:
        """Hold the lock for an employment; yields False if another worker has it."""
        key = self.lock_key(employment_id)
        lock = _local_lock(key)
        async with lock:
            acquired = await acquire_employment_lock(self.session, key)
            if not acquired:
                logger.warning("Employment %s is locked by another transaction", employment_id)
            yield acquired
