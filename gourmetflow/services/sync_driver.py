"""
Connectivity-Triggered Sync Driver

Turns online/offline signals and a periodic timer into drains of the
sync queue for the active restaurant.

    offline ──set_online(True)──> online: drain + menu refresh
    online  ──every N seconds───> drain
    online  ──set_online(False)─> offline: timer keeps ticking, drains skipped

A trigger that arrives while a drain runs is coalesced: the engine
returns a skipped report and the running drain is left alone.

Author: GourmetFlow Team
Version: 1.0.0
"""

import asyncio
import logging
from typing import Optional

from gourmetflow.schemas import SyncReport
from gourmetflow.services.sync_engine import SyncEngine

logger = logging.getLogger(__name__)


class SyncDriver:
    """
    Drives a SyncEngine for one restaurant.

    Args:
        engine: The device's sync engine
        restaurant_id: Active restaurant
        interval_seconds: Timer period while online
        online: Initial connectivity state
        refresh_menu_on_reconnect: Pull the menu on each offline->online transition
    """

    def __init__(
        self,
        engine: SyncEngine,
        restaurant_id: str,
        interval_seconds: float = 30.0,
        online: bool = False,
        refresh_menu_on_reconnect: bool = True,
    ):
        self.engine = engine
        self.restaurant_id = restaurant_id
        self.interval_seconds = interval_seconds
        self.refresh_menu_on_reconnect = refresh_menu_on_reconnect

        self._online = online
        self._task: Optional[asyncio.Task] = None
        self.coalesced = 0

    @property
    def online(self) -> bool:
        return self._online

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def set_online(self, online: bool) -> Optional[SyncReport]:
        """
        Record a connectivity change.

        Going online drains immediately and refreshes the menu cache.
        Going offline only affects the next cycle; a drain in progress
        finishes its current pass.
        """
        was_online = self._online
        self._online = online

        if online and not was_online:
            logger.info(f"🌐 Back online, syncing {self.restaurant_id}")
            report = await self.trigger()
            if self.refresh_menu_on_reconnect:
                await self.engine.refresh_menu(self.restaurant_id)
            return report

        if was_online and not online:
            logger.info(f"📴 Offline, sync paused for {self.restaurant_id}")
        return None

    async def trigger(self) -> Optional[SyncReport]:
        """
        Request a drain now.

        Returns None while offline; a skipped report when coalesced.
        """
        if not self._online:
            logger.debug("Sync trigger ignored while offline")
            return None

        report = await self.engine.drain(self.restaurant_id)
        if report.skipped:
            self.coalesced += 1
        return report

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.interval_seconds)
            try:
                await self.trigger()
            except Exception:
                # The timer must survive a broken store until it is fixed
                logger.exception("Periodic sync failed")

    def start(self) -> None:
        """Start the periodic timer on the running event loop."""
        if self.running:
            return
        self._task = asyncio.get_running_loop().create_task(self._run())
        logger.info(f"Sync driver started (every {self.interval_seconds}s)")

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("Sync driver stopped")
