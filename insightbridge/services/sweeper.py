"""
Background session sweeper.

Every SWEEP_INTERVAL_SECONDS, drops sessions idle longer than the TTL from
the session registry and the insight store.
"""

import asyncio
import logging

from insightbridge import settings
from insightbridge.services.insights import InsightStore
from insightbridge.services.sessions import SessionRegistry

logger = logging.getLogger(__name__)


class SessionSweeper:
    """Periodic TTL cleanup for the registry and the store."""

    def __init__(self, registry: SessionRegistry, store: InsightStore, interval_seconds: float | None = None) -> None:
        self._registry = registry
        self._store = store
        self._interval = settings.SWEEP_INTERVAL_SECONDS if interval_seconds is None else interval_seconds
        self._task: asyncio.Task | None = None

    def start(self) -> None:
        self._task = asyncio.create_task(self._loop())
        logger.info("SessionSweeper started (every %ss).", self._interval)

    async def stop(self) -> None:
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

    async def _loop(self) -> None:
        while True:
            await asyncio.sleep(self._interval)
            try:
                await self.sweep()
            except Exception as exc:
                logger.error("SessionSweeper.sweep failed: %s", exc)

    async def sweep(self) -> dict:
        expired = self._registry.sweep_expired()
        removed = await self._store.sweep_expired()
        if expired or removed:
            logger.info("Sweep removed %d session(s) and %d insight bucket(s)", len(expired), removed)
        return {"sessions": len(expired), "insightSessions": removed}
