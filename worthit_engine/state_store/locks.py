from __future__ import annotations

import asyncio
import logging
import time
import uuid
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import AsyncIterator, Optional

from ..errors import LockTimeout

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LockHandle:
    scope: str
    token: str
    acquired_at: float


class InvocationLock:
    """Cross-process guard against running the same trigger twice.

    Every lock expires after ``stale_after_sec`` so a host process that dies
    while holding one cannot block later invocations forever.
    """

    def __init__(self, store, *, stale_after_sec: float = 300.0, poll_interval_sec: float = 0.1) -> None:
        self.store = store
        self.stale_after_sec = max(1.0, float(stale_after_sec))
        self.poll_interval_sec = max(0.01, float(poll_interval_sec))

    async def try_acquire(self, scope: str, timeout: float = 0.0) -> Optional[LockHandle]:
        """Returns a handle when acquired, or None when another invocation holds the scope."""
        name = str(scope or "").strip()
        if not name:
            raise ValueError("lock scope is required")
        token = uuid.uuid4().hex
        loop = asyncio.get_running_loop()
        deadline = loop.time() + max(0.0, float(timeout or 0.0))
        while True:
            acquired = await asyncio.to_thread(self.store.try_lock, name, token, self.stale_after_sec)
            if acquired:
                logger.debug("Acquired invocation lock %s", name)
                return LockHandle(scope=name, token=token, acquired_at=time.time())
            left = deadline - loop.time()
            if left <= 0:
                logger.info("Invocation lock %s is already held", name)
                return None
            await asyncio.sleep(min(self.poll_interval_sec, left))

    async def release(self, handle: LockHandle) -> bool:
        released = await asyncio.to_thread(self.store.unlock, handle.scope, handle.token)
        if not released:
            logger.warning("Invocation lock %s was no longer ours at release", handle.scope)
        return released

    @asynccontextmanager
    async def hold(self, scope: str, timeout: float = 0.0) -> AsyncIterator[LockHandle]:
        handle = await self.try_acquire(scope, timeout)
        if handle is None:
            raise LockTimeout(scope)
        try:
            yield handle
        finally:
            await self.release(handle)
