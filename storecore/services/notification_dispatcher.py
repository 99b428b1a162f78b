"""
Background delivery of side effects (low-stock emails).

Messages are queued from after-commit callbacks, so a rolled back transaction
never produces a notification. Delivery runs on a single worker task and
failures are logged and discarded; they never reach the caller of the stock
operation that produced them.
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional

from storecore.core.config import get_settings

logger = logging.getLogger(__name__)

Handler = Callable[[Any], Awaitable[Any]]


class NotificationDispatcher:
    def __init__(self, handler: Optional[Handler] = None, maxsize: Optional[int] = None):
        if handler is None:
            from storecore.services.notification_service import get_email_notification_service
            handler = get_email_notification_service().deliver
        self._handler = handler
        self.queue: asyncio.Queue = asyncio.Queue(
            maxsize=maxsize if maxsize is not None else get_settings().NOTIFICATION_QUEUE_SIZE
        )
        self._worker: Optional[asyncio.Task] = None
        self.delivered = 0
        self.failed = 0
        self.dropped = 0

    @property
    def running(self) -> bool:
        return self._worker is not None and not self._worker.done()

    def dispatch(self, message: Any) -> bool:
        """Queue ``message`` without blocking. Returns False when it had to be dropped."""
        try:
            self.queue.put_nowait(message)
        except asyncio.QueueFull:
            self.dropped += 1
            logger.warning("Notification queue full; dropping %s", type(message).__name__)
            return False
        return True

    async def start(self) -> None:
        if self.running:
            return
        self._worker = asyncio.create_task(self._run(), name="notification-dispatcher")
        logger.info("Notification dispatcher started")

    async def stop(self, timeout: Optional[float] = None) -> None:
        """Drain what is queued (bounded by ``timeout``), then stop the worker."""
        if not self.running:
            return
        timeout = get_settings().NOTIFICATION_DRAIN_TIMEOUT if timeout is None else timeout
        try:
            await asyncio.wait_for(self.queue.join(), timeout=timeout)
        except asyncio.TimeoutError:
            logger.warning("Notification queue not drained within %.1fs; %d messages lost",
                           timeout, self.queue.qsize())
        self._worker.cancel()
        try:
            await self._worker
        except asyncio.CancelledError:
            pass
        self._worker = None
        logger.info("Notification dispatcher stopped")

    async def drain(self) -> None:
        """Deliver everything currently queued on the calling task."""
        while not self.queue.empty():
            message = self.queue.get_nowait()
            try:
                await self._deliver(message)
            finally:
                self.queue.task_done()

    async def _run(self) -> None:
        while True:
            message = await self.queue.get()
            try:
                await self._deliver(message)
            finally:
                self.queue.task_done()

    async def _deliver(self, message: Any) -> None:
        try:
            await self._handler(message)
            self.delivered += 1
        except asyncio.CancelledError:
            raise
        except Exception:
            self.failed += 1
            logger.error("Failed to deliver %s", type(message).__name__, exc_info=True)
