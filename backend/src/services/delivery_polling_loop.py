"""
Notification delivery polling loop.

Runs the delivery worker in the background of the API process:
- Processes a batch of due queue entries every poll interval
- Re-arms entries stuck in processing (when enabled)
- Purges old sent/failed entries at most once per hour
- Logs errors escaping a batch and keeps polling

Started and stopped by the FastAPI lifespan.
"""

import asyncio
import time
from typing import Optional

from backend.src.services.notification_delivery_service import (
    BatchResult,
    NotificationDeliveryService,
)
from backend.src.utils.logging_config import get_logger


logger = get_logger("worker")

# Configuration
DEFAULT_POLL_INTERVAL = 5.0  # seconds between batches
DEFAULT_BATCH_SIZE = 50
PURGE_INTERVAL_SECONDS = 3600


class DeliveryPollingLoop:
    """
    Polling loop driving NotificationDeliveryService.process_batch.

    Attributes:
        worker: Delivery worker processing each batch
        poll_interval: Seconds between batches
        batch_size: Maximum entries per batch
        stale_processing_sec: Processing time after which entries are re-armed (0 = disabled)
        retention_days: Retention window for sent/failed entries (0 = never purge)
    """

    def __init__(
        self,
        worker: NotificationDeliveryService,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        batch_size: int = DEFAULT_BATCH_SIZE,
        stale_processing_sec: int = 0,
        retention_days: int = 0,
    ):
        """
        Initialize the polling loop.

        Args:
            worker: Delivery worker processing each batch
            poll_interval: Seconds between batches
            batch_size: Maximum entries per batch
            stale_processing_sec: Re-arm entries stuck in processing this long (0 = disabled)
            retention_days: Purge sent/failed entries older than this (0 = disabled)
        """
        self._worker = worker
        self._poll_interval = poll_interval
        self._batch_size = batch_size
        self._stale_processing_sec = stale_processing_sec
        self._retention_days = retention_days
        self._shutdown_event = asyncio.Event()
        self._task: Optional[asyncio.Task] = None
        self._last_purge: Optional[float] = None

    def start(self) -> asyncio.Task:
        """
        Start the loop as a background task on the running event loop.

        Returns:
            The background task (the existing one if already started)
        """
        if self._task is None or self._task.done():
            self._shutdown_event.clear()
            self._task = asyncio.create_task(self.run(), name="notification-delivery-loop")
        return self._task

    async def stop(self, timeout: Optional[float] = None) -> None:
        """
        Request shutdown and wait for the loop to finish.

        The batch in flight is allowed to complete; after `timeout` seconds
        (default: one poll interval plus a margin) the task is cancelled.
        """
        self.request_shutdown()
        if self._task is None:
            return

        timeout = timeout if timeout is not None else self._poll_interval + 30
        try:
            await asyncio.wait_for(asyncio.shield(self._task), timeout=timeout)
        except asyncio.TimeoutError:
            logger.warning("Delivery loop did not stop in time, cancelling")
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        finally:
            self._task = None

    async def run(self) -> None:
        """Run batches until shutdown is requested."""
        logger.info(
            f"Starting notification delivery loop "
            f"(interval: {self._poll_interval}s, batch size: {self._batch_size})"
        )

        try:
            while not self._shutdown_event.is_set():
                await self.run_once()
                await self._wait_for_next_poll()
        except asyncio.CancelledError:
            logger.info("Delivery loop cancelled")
            raise

        logger.info("Delivery loop stopped")

    async def run_once(self) -> Optional[BatchResult]:
        """
        Run maintenance and one delivery batch.

        Returns:
            The batch result, or None if the batch raised
        """
        self._run_maintenance()

        try:
            return await self._worker.process_batch(self._batch_size)
        except Exception as e:
            logger.error(f"Delivery batch failed: {e}", exc_info=True)
            return None

    def _run_maintenance(self) -> None:
        """Re-arm stale processing entries and purge old terminal entries."""
        if self._stale_processing_sec > 0:
            try:
                self._worker.requeue_stale(self._stale_processing_sec)
            except Exception as e:
                logger.error(f"Stale processing sweep failed: {e}", exc_info=True)

        if self._retention_days > 0 and self._purge_due():
            self._last_purge = time.monotonic()
            try:
                self._worker.purge_terminal(self._retention_days)
            except Exception as e:
                logger.error(f"Queue purge failed: {e}", exc_info=True)

    def _purge_due(self) -> bool:
        if self._last_purge is None:
            return True
        return time.monotonic() - self._last_purge >= PURGE_INTERVAL_SECONDS

    async def _wait_for_next_poll(self) -> None:
        """Wait for the next poll interval or shutdown signal."""
        try:
            await asyncio.wait_for(
                self._shutdown_event.wait(),
                timeout=self._poll_interval,
            )
        except asyncio.TimeoutError:
            # Normal timeout, continue polling
            pass

    def request_shutdown(self) -> None:
        """Request graceful shutdown of the polling loop."""
        self._shutdown_event.set()

    @property
    def is_running(self) -> bool:
        """Check if the loop task is running."""
        return self._task is not None and not self._task.done()
