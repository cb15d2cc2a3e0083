"""Per-engagement mutual exclusion inside one process.

Operations on the same engagement queue on one asyncio.Lock; operations on
different engagements never contend. Locks are dropped once no task holds or
waits on them. Cross-process races are caught by the version check in
EngagementRepository.save.
"""

from __future__ import annotations

import asyncio
import weakref
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    import uuid
    from collections.abc import AsyncIterator

_locks: weakref.WeakValueDictionary[str, asyncio.Lock] = weakref.WeakValueDictionary()


def _lock_for(engagement_id: uuid.UUID | str) -> asyncio.Lock:
    key = str(engagement_id)
    lock = _locks.get(key)
    if lock is None:
        lock = asyncio.Lock()
        _locks[key] = lock
    return lock


@asynccontextmanager
async def engagement_lock(engagement_id: uuid.UUID | str) -> AsyncIterator[None]:
    lock = _lock_for(engagement_id)
    async with lock:
        yield
