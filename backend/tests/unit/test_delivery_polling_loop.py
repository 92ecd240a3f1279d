"""
Unit tests for DeliveryPollingLoop.
"""

import asyncio
from unittest.mock import AsyncMock, Mock

import pytest

from backend.src.services.delivery_polling_loop import DeliveryPollingLoop
from backend.src.services.notification_delivery_service import BatchResult


@pytest.fixture
def mock_worker():
    worker = Mock()
    worker.process_batch = AsyncMock(return_value=BatchResult())
    worker.requeue_stale = Mock(return_value=0)
    worker.purge_terminal = Mock(return_value=0)
    return worker


class TestRunOnce:
    """Tests for a single loop iteration."""

    @pytest.mark.asyncio
    async def test_runs_batch_with_batch_size(self, mock_worker):
        loop = DeliveryPollingLoop(mock_worker, batch_size=25)

        result = await loop.run_once()

        mock_worker.process_batch.assert_awaited_once_with(25)
        assert isinstance(result, BatchResult)

    @pytest.mark.asyncio
    async def test_batch_errors_are_swallowed(self, mock_worker):
        """An exception escaping a batch is logged and the loop goes on."""
        mock_worker.process_batch.side_effect = RuntimeError("database gone")
        loop = DeliveryPollingLoop(mock_worker)

        assert await loop.run_once() is None

    @pytest.mark.asyncio
    async def test_maintenance_disabled_by_default(self, mock_worker):
        loop = DeliveryPollingLoop(mock_worker)

        await loop.run_once()

        mock_worker.requeue_stale.assert_not_called()
        mock_worker.purge_terminal.assert_not_called()

    @pytest.mark.asyncio
    async def test_stale_sweep_every_iteration_purge_hourly(self, mock_worker):
        """The stale sweep runs every time, the purge at most once per hour."""
        loop = DeliveryPollingLoop(mock_worker, stale_processing_sec=300, retention_days=30)

        await loop.run_once()
        await loop.run_once()

        assert mock_worker.requeue_stale.call_count == 2
        mock_worker.requeue_stale.assert_called_with(300)
        mock_worker.purge_terminal.assert_called_once_with(30)

    @pytest.mark.asyncio
    async def test_maintenance_errors_do_not_block_batch(self, mock_worker):
        mock_worker.requeue_stale.side_effect = RuntimeError("boom")
        mock_worker.purge_terminal.side_effect = RuntimeError("boom")
        loop = DeliveryPollingLoop(mock_worker, stale_processing_sec=60, retention_days=7)

        await loop.run_once()

        mock_worker.process_batch.assert_awaited_once()


class TestLifecycle:
    """Tests for starting and stopping the loop."""

    @pytest.mark.asyncio
    async def test_start_and_stop(self, mock_worker):
        loop = DeliveryPollingLoop(mock_worker, poll_interval=0.01)

        task = loop.start()
        await asyncio.sleep(0.05)
        assert loop.is_running

        await loop.stop()

        assert task.done()
        assert not loop.is_running
        assert mock_worker.process_batch.await_count >= 1

    @pytest.mark.asyncio
    async def test_start_is_idempotent(self, mock_worker):
        loop = DeliveryPollingLoop(mock_worker, poll_interval=0.01)

        first = loop.start()
        second = loop.start()

        assert first is second
        await loop.stop()

    @pytest.mark.asyncio
    async def test_stop_without_start(self, mock_worker):
        loop = DeliveryPollingLoop(mock_worker)

        await loop.stop()

        assert not loop.is_running

    @pytest.mark.asyncio
    async def test_loop_survives_failing_batches(self, mock_worker):
        """Batches keep running after errors."""
        mock_worker.process_batch.side_effect = RuntimeError("flaky")
        loop = DeliveryPollingLoop(mock_worker, poll_interval=0.01)

        loop.start()
        await asyncio.sleep(0.06)
        await loop.stop()

        assert mock_worker.process_batch.await_count >= 2
