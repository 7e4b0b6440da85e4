# ==============================================================================
# Tracker Runner
# ==============================================================================
"""
Feeds a transport's presence stream into the SessionTracker.

Started by ``presence tracker run``. Restores persisted totals first, then
consumes events until the stream ends or a shutdown signal arrives, and
flushes everything before exiting.
"""

import asyncio
import logging

from presence.base.activity_store import ActivityStore
from presence.base.runner import BaseRunner
from presence.base.transport import Transport
from presence.services.tracker import SessionTracker
from presence.utils.config import TrackerSettings

logger = logging.getLogger(__name__)


class TrackerRunner(BaseRunner):
    """
    Args:
        transport: Source of presence events
        store: Durable activity store
        settings: Tracker settings
        log_level: Root logging level
    """

    def __init__(
        self,
        transport: Transport,
        store: ActivityStore,
        settings: TrackerSettings | None = None,
        log_level: str = "INFO",
    ):
        super().__init__(log_level=log_level)
        self._transport = transport
        self._store = store
        self._settings = settings or TrackerSettings()
        self.tracker: SessionTracker | None = None
        self.events_consumed = 0

    async def _run(self) -> None:
        self.tracker = SessionTracker(self._store, self._settings)
        restored = await self.tracker.restore_from_persistence()
        logger.info("Tracker starting with %d restored records", restored)
        self.tracker.start()

        consume = asyncio.create_task(self._consume())
        shutdown = asyncio.create_task(self.wait_for_shutdown())
        done, _ = await asyncio.wait({consume, shutdown}, return_when=asyncio.FIRST_COMPLETED)

        if consume not in done:
            consume.cancel()
        shutdown.cancel()
        await asyncio.gather(consume, shutdown, return_exceptions=True)
        if consume.done() and not consume.cancelled() and consume.exception():
            raise consume.exception()

    async def _consume(self) -> None:
        async for event in self._transport.subscribe():
            self.tracker.on_presence_event(event)
            self.events_consumed += 1
        logger.info("Presence stream ended after %d events", self.events_consumed)

    async def _cleanup(self) -> None:
        if self.tracker is not None:
            await self.tracker.stop()
        await self._transport.close()
        logger.info("Tracker runner stopped")
