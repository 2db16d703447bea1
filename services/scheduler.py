# services/scheduler.py
"""
In-process auto-start loop.

Calls BattleManager.auto_start on a fixed interval. The external cron
endpoint does the same thing, and auto_start is idempotent, so both can run.
"""

import asyncio
import logging
from typing import Optional

logger = logging.getLogger(__name__)


class AutoStartScheduler:
    def __init__(self, battle_manager, interval_seconds: float = 60):
        self.battle_manager = battle_manager
        self.interval_seconds = interval_seconds
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def tick(self) -> list:
        """One scan; errors are logged and the loop keeps going"""
        try:
            results = await self.battle_manager.auto_start()
        except Exception:
            logger.exception("❌ Auto-start tick failed")
            return []

        if results:
            started = sum(1 for r in results if r["status"] == "started")
            cancelled = sum(1 for r in results if r["status"] == "cancelled")
            failed = sum(1 for r in results if r["status"] == "error")
            logger.info(f"⏱️ Auto-start: {started} started, {cancelled} expired, {failed} failed")
        return results

    async def _loop(self):
        logger.info(f"🔄 Auto-start loop running every {self.interval_seconds}s")
        while True:
            await self.tick()
            await asyncio.sleep(self.interval_seconds)

    def start(self):
        if self.running:
            return
        self._task = asyncio.create_task(self._loop())

    async def stop(self):
        if not self._task:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("🛑 Auto-start loop stopped")
