"""
Background task that evicts empty, idle rooms
"""
import asyncio
import logging
from typing import Optional

from .state import RoomStore

logger = logging.getLogger("tosync.reaper")


class InactivityReaper:
    def __init__(self, store: RoomStore, interval: float = 60, timeout: float = 5 * 60):
        self.store = store
        self.interval = interval
        self.timeout = timeout
        self._task: Optional[asyncio.Task] = None

    async def sweep(self):
        evicted = await self.store.evict_inactive(timeout=self.timeout)
        if evicted:
            logger.info(f"🧹 Evicted {len(evicted)} inactive room(s): {', '.join(evicted)}")
        return evicted

    async def run(self):
        while True:
            await asyncio.sleep(self.interval)
            try:
                await self.sweep()
            except Exception:
                logger.exception("Cleanup task error")

    def start(self):
        if self._task is None:
            self._task = asyncio.create_task(self.run())

    async def stop(self):
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
