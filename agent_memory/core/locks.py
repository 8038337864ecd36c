"""
Per-key write locks. asyncio (single process) OR Redis (shared).
Controlled by FF_USE_REDIS flag.

Every read-modify-write of a user's stored list runs under the lock for
its key, so two writers never persist from the same stale snapshot.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from typing import AsyncIterator

from .config import get_settings
from .flags import get_flags

logger = logging.getLogger(__name__)


class LockTimeout(Exception):
    """A shared lock could not be acquired within the blocking timeout."""


class KeyedLocks(ABC):
    @abstractmethod
    def hold(self, key: str):
        """Async context manager that serialises callers sharing ``key``."""
        ...


class LocalLocks(KeyedLocks):
    """One asyncio.Lock per key. Only serialises writers inside this process."""

    def __init__(self):
        self._locks: dict[str, asyncio.Lock] = {}

    @asynccontextmanager
    async def hold(self, key: str) -> AsyncIterator[None]:
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
        async with lock:
            yield


class RedisLocks(KeyedLocks):
    """Redis lock per key. Serialises writers across processes."""

    def __init__(self, client=None, timeout: float = None, blocking_timeout: float = None):
        settings = get_settings()
        self._client = client
        self.timeout = timeout if timeout is not None else settings.lock_timeout
        self.blocking_timeout = (
            blocking_timeout if blocking_timeout is not None else settings.lock_blocking_timeout
        )

    def _get_client(self):
        if self._client is None:
            from .redis import get_redis

            self._client = get_redis()
        return self._client

    @asynccontextmanager
    async def hold(self, key: str) -> AsyncIterator[None]:
        lock = self._get_client().lock(
            f"lock:{key}",
            timeout=self.timeout,
            blocking_timeout=self.blocking_timeout,
        )
        if not await lock.acquire():
            logger.warning("Timed out waiting for redis lock %s", key)
            raise LockTimeout(f"Timed out waiting for lock {key}")
        logger.debug("Acquired redis lock %s", key)
        try:
            yield
        finally:
            await lock.release()


def get_locks() -> KeyedLocks:
    """Return the active lock backend based on feature flags."""
    flags = get_flags()
    if flags.use_redis:
        return RedisLocks()
    return LocalLocks()
