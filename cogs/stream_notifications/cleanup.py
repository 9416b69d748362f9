"""Periodic removal of notification records older than the retention window."""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta
from typing import Callable, Optional

from discord.ext import tasks

from .constants import CLEANUP_INTERVAL_HOURS, NOTIFICATION_RETENTION_HOURS
from .errors import AlreadyRunning, NotRunning
from .logger import log
from .models import utcnow
from .storage import StreamStore


class CleanupSweeper:
    """Deletes every record whose ``sent_at`` is older than ``retention``, live or not."""

    def __init__(
        self,
        store: StreamStore,
        *,
        retention: timedelta = timedelta(hours=NOTIFICATION_RETENTION_HOURS),
        interval_hours: float = CLEANUP_INTERVAL_HOURS,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._store = store
        self.retention = retention
        self.interval_hours = interval_hours
        self._clock = clock
        self._loop: Optional[tasks.Loop] = None

    async def sweep(self, now: Optional[datetime] = None) -> int:
        now = now or self._clock()
        removed = 0
        for record in await self._store.all_notifications():
            if record.is_older_than(self.retention, now):
                if await self._store.delete_notification(*record.key):
                    removed += 1
        if removed:
            log.info("Cleanup: %d alte Benachrichtigungen entfernt", removed)
        else:
            log.debug("Cleanup: nichts zu tun")
        return removed

    async def _tick(self) -> None:
        try:
            await self.sweep()
        except asyncio.CancelledError:
            raise
        except Exception:
            log.exception("Cleanup-Durchlauf fehlgeschlagen")

    def start(self) -> None:
        if self._loop is not None:
            raise AlreadyRunning("sweeper already running")
        self._loop = tasks.loop(hours=self.interval_hours)(self._tick)
        self._loop.start()

    def stop(self) -> None:
        if self._loop is None:
            raise NotRunning("sweeper not running")
        self._loop.cancel()
        self._loop = None
