"""
Single-flight guards for pipeline-wide operations and per-draft mutexes.

``KeyedLock`` ensures that at most one scan, one generation batch and one
run of each scheduler is active at a time.  A second caller is rejected
immediately with ``OperationInProgressError``; nothing is queued.

``DraftMutex`` serialises read-modify-write sequences on a single draft so
that an approval and a revision result landing for the same draft cannot
interleave, while different drafts proceed independently.

Both are in-process only: the pipeline is designed to run as a single
asyncio process.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict, Optional

from src.exceptions import OperationInProgressError
from src.utils import utc_now

logger = logging.getLogger(__name__)


# Well-known lock keys
SCAN = "scan"
GENERATION = "generation"
SITE_SCHEDULE = "site_schedule"
SOCIAL_SCHEDULE = "social_schedule"
DUE_PUBLISH = "due_publish"


class KeyedLock:
    """Non-blocking named locks.

    Acquire and release happen synchronously (no ``await`` in between), so
    under a single event loop a check-and-set is atomic.
    """

    def __init__(self) -> None:
        self._held: Dict[str, str] = {}

    def try_acquire(self, key: str, holder: str = "anonymous") -> bool:
        """Acquire *key* if free.  Returns ``False`` when already held."""
        if key in self._held:
            return False
        self._held[key] = holder
        logger.debug("[LOCKS] %s acquired by %s at %s", key, holder, utc_now())
        return True

    def release(self, key: str) -> bool:
        """Release *key*.  Returns ``False`` if it was not held."""
        holder = self._held.pop(key, None)
        if holder is None:
            logger.warning("[LOCKS] release of %s which was not held", key)
            return False
        logger.debug("[LOCKS] %s released by %s", key, holder)
        return True

    def holder(self, key: str) -> Optional[str]:
        return self._held.get(key)

    def is_locked(self, key: str) -> bool:
        return key in self._held

    @asynccontextmanager
    async def guard(self, key: str, holder: str = "anonymous") -> AsyncIterator[None]:
        """Hold *key* for the duration of the block.

        Raises:
            OperationInProgressError: If *key* is already held.  The error
                code is ``<KEY>_IN_PROGRESS``.
        """
        if not self.try_acquire(key, holder):
            raise OperationInProgressError(key, self.holder(key))
        try:
            yield
        finally:
            self.release(key)


class DraftMutex:
    """Registry of per-draft ``asyncio.Lock`` objects.

    Locks are created on demand and dropped once no task holds or waits
    on them.
    """

    def __init__(self) -> None:
        self._locks: Dict[str, asyncio.Lock] = {}
        self._refs: Dict[str, int] = {}

    @asynccontextmanager
    async def hold(self, draft_id: str) -> AsyncIterator[None]:
        lock = self._locks.get(draft_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[draft_id] = lock
        self._refs[draft_id] = self._refs.get(draft_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._refs[draft_id] -= 1
            if self._refs[draft_id] == 0:
                del self._refs[draft_id]
                del self._locks[draft_id]

    def is_locked(self, draft_id: str) -> bool:
        lock = self._locks.get(draft_id)
        return lock is not None and lock.locked()

    def __len__(self) -> int:
        return len(self._locks)


# =============================================================================
# PUBLIC API
# =============================================================================

__all__ = [
    "KeyedLock",
    "DraftMutex",
    "SCAN",
    "GENERATION",
    "SITE_SCHEDULE",
    "SOCIAL_SCHEDULE",
    "DUE_PUBLISH",
]
