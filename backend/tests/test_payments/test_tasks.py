"""
Tests for the Celery sweep task and its beat schedule.
"""

from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from storefront.services.payments import tasks
from storefront.services.payments.sweeper import SweepResult


class TestSweepTask:
    """Tests for the pending order sweep task."""

    async def test_sweep_uses_task_scoped_engine(self):
        """Test that the sweep runs against its own engine and disposes it."""
        engine = MagicMock()
        engine.dispose = AsyncMock()
        sweeper = MagicMock()
        sweeper.run_once = AsyncMock(return_value=SweepResult(checked=2, confirmed=1, unpaid=1))

        with patch.object(tasks, "create_engine", return_value=engine), patch.object(
            tasks.StripeClient, "from_settings"
        ), patch.object(tasks.EmailService, "from_settings"), patch.object(
            tasks.PendingOrderSweeper, "from_settings", return_value=sweeper
        ) as from_settings:
            result = await tasks.sweep_pending_orders()

        assert result == {
            "checked": 2,
            "confirmed": 1,
            "already_settled": 0,
            "unpaid": 1,
            "failed": 0,
        }
        engine.dispose.assert_awaited_once()
        assert from_settings.call_args.kwargs["session_factory"] is not None

    async def test_engine_is_disposed_on_failure(self):
        """Test that a failing sweep still releases the engine."""
        engine = MagicMock()
        engine.dispose = AsyncMock()
        sweeper = MagicMock()
        sweeper.run_once = AsyncMock(side_effect=RuntimeError("db down"))

        with patch.object(tasks, "create_engine", return_value=engine), patch.object(
            tasks.StripeClient, "from_settings"
        ), patch.object(tasks.EmailService, "from_settings"), patch.object(
            tasks.PendingOrderSweeper, "from_settings", return_value=sweeper
        ):
            with pytest.raises(RuntimeError):
                await tasks.sweep_pending_orders()

        engine.dispose.assert_awaited_once()

    def test_task_runs_sweep(self):
        """Test that the Celery task returns the sweep counts."""
        counts = SweepResult(checked=1, confirmed=1).to_dict()

        with patch.object(tasks, "sweep_pending_orders", AsyncMock(return_value=counts)):
            result = tasks.finalize_pending_orders_task.apply()

        assert result.get() == counts


def test_beat_schedule():
    """Test that the worker schedules the sweep at the configured interval."""
    from storefront.worker import celery_app

    entry = celery_app.conf.beat_schedule["finalize-pending-orders"]

    assert entry["task"] == tasks.FINALIZE_PENDING_ORDERS_TASK
    assert entry["schedule"] == 300.0
