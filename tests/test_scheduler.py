"""
Unit tests for PositionMonitor.
Drives check cycles against a mocked reader and executor.
"""
import asyncio
import pytest
import sys
import os
from unittest.mock import AsyncMock, Mock

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from conftest import RecordingNotifier, make_config
from domain import Position, PositionSnapshot, RebalanceOutcome, RebalanceResult
from errors import QueryError, RebalanceError, RouteNotFoundError
from range_tracker import RangeTracker
from scheduler import PositionMonitor, describe_interval


def snapshot(active_index, *positions):
    return PositionSnapshot(positions=list(positions), active_index=active_index)


POSITION = Position(key='pos-1', lower_bin=100, upper_bin=110, x_amount=5, y_amount=6)


class TestPositionMonitorCycle:
    """Test one cycle at a time."""

    def setup_method(self):
        self.config = make_config()
        self.notifier = RecordingNotifier()
        self.reader = Mock()
        self.reader.read = AsyncMock()
        self.tracker = RangeTracker(self.notifier)
        self.executor = Mock()
        self.executor.is_rebalancing = False
        self.executor.rebalance_position = AsyncMock(
            return_value=RebalanceResult(outcome=RebalanceOutcome.COMPLETED)
        )
        self.monitor = PositionMonitor(self.config, self.reader, self.tracker, self.executor, self.notifier)

    async def observe(self, active_index, *positions):
        self.reader.read.return_value = snapshot(active_index, *positions)
        return await self.monitor.run_cycle()

    @pytest.mark.asyncio
    async def test_in_range_position_is_quiet(self):
        await self.observe(105, POSITION)

        assert self.notifier.messages == []
        self.executor.rebalance_position.assert_not_called()

    @pytest.mark.asyncio
    async def test_exit_alerts_then_rebalances(self):
        """The second out-of-range observation alerts once and rebalances."""
        await self.observe(115, POSITION)
        assert self.notifier.messages == []
        self.executor.rebalance_position.assert_not_called()

        await self.observe(115, POSITION)
        assert self.notifier.count("Position Out of Range Alert") == 1
        self.executor.rebalance_position.assert_awaited_once_with(POSITION)

        await self.observe(115, POSITION)
        assert self.notifier.count("Position Out of Range Alert") == 1
        assert self.executor.rebalance_position.await_count == 1

    @pytest.mark.asyncio
    async def test_back_in_range_alert(self):
        await self.observe(115, POSITION)
        await self.observe(115, POSITION)
        await self.observe(105, POSITION)

        assert self.notifier.count("is back in range") == 1
        assert self.tracker.status('pos-1').notified is False

    @pytest.mark.asyncio
    async def test_rebalance_disabled_only_alerts(self):
        self.monitor.rebalance_enabled = False

        await self.observe(115, POSITION)
        await self.observe(115, POSITION)

        assert self.notifier.count("Position Out of Range Alert") == 1
        self.executor.rebalance_position.assert_not_called()

    @pytest.mark.asyncio
    async def test_no_executor_means_alert_only(self):
        monitor = PositionMonitor(self.config, self.reader, self.tracker, None, self.notifier)
        assert monitor.rebalance_enabled is False

    @pytest.mark.asyncio
    async def test_failed_rebalance_retried_without_realert(self):
        """A failed rebalance is retried next cycle with no second alert."""
        self.executor.rebalance_position.side_effect = [
            RebalanceError('swapping', RouteNotFoundError("No routes found for the swap")),
            RebalanceResult(outcome=RebalanceOutcome.COMPLETED),
        ]

        await self.observe(115, POSITION)
        await self.observe(115, POSITION)
        assert self.tracker.status('pos-1').rebalance_pending is True

        await self.observe(115, POSITION)

        assert self.executor.rebalance_position.await_count == 2
        assert self.notifier.count("Position Out of Range Alert") == 1
        assert self.tracker.status('pos-1').rebalance_pending is False

    @pytest.mark.asyncio
    async def test_failed_rebalance_does_not_stop_other_positions(self):
        other = Position(key='pos-2', lower_bin=100, upper_bin=110)
        self.executor.rebalance_position.side_effect = [
            RebalanceError('withdrawing', RuntimeError("boom")),
            RebalanceResult(outcome=RebalanceOutcome.COMPLETED),
        ]

        await self.observe(115, POSITION, other)
        await self.observe(115, POSITION, other)

        assert self.executor.rebalance_position.await_count == 2
        assert self.notifier.count("Position Out of Range Alert") == 2

    @pytest.mark.asyncio
    async def test_skipped_rebalance_marks_pending(self):
        self.executor.rebalance_position.return_value = RebalanceResult(outcome=RebalanceOutcome.SKIPPED)

        await self.observe(115, POSITION)
        await self.observe(115, POSITION)

        assert self.tracker.needs_rebalance_retry('pos-1') is True

    @pytest.mark.asyncio
    async def test_query_failure_sends_one_alert(self):
        """A failed snapshot aborts the cycle without touching tracker state."""
        await self.observe(105, POSITION)
        self.reader.read.side_effect = QueryError("Position query failed: rpc down")

        await self.monitor.run_cycle()

        assert self.notifier.count("❌ Error checking positions: Position query failed: rpc down") == 1
        assert len(self.notifier.messages) == 1
        assert self.tracker.status('pos-1').is_in_range is True

    @pytest.mark.asyncio
    async def test_closed_positions_are_forgotten(self):
        await self.observe(105, POSITION)
        await self.observe(105)

        assert self.tracker.status('pos-1') is None

    @pytest.mark.asyncio
    async def test_reentrant_cycle_is_skipped(self):
        release = asyncio.Event()

        async def slow_read():
            await release.wait()
            return snapshot(105, POSITION)

        self.reader.read.side_effect = slow_read
        first = asyncio.create_task(self.monitor.run_cycle())
        await asyncio.sleep(0)

        assert await self.monitor.run_cycle() is False

        release.set()
        assert await first is True
        assert self.reader.read.await_count == 1


class TestPositionMonitorStatus:
    """Test the on-demand status query."""

    def setup_method(self):
        self.config = make_config()
        self.notifier = RecordingNotifier()
        self.reader = Mock()
        self.reader.read = AsyncMock(return_value=snapshot(
            115, POSITION, Position(key='pos-2', lower_bin=110, upper_bin=120)
        ))
        self.tracker = RangeTracker(self.notifier)
        self.executor = Mock()
        self.executor.is_rebalancing = False
        self.monitor = PositionMonitor(self.config, self.reader, self.tracker, self.executor, self.notifier)

    @pytest.mark.asyncio
    async def test_status_report(self):
        report = await self.monitor.status()

        assert report.active_index == 115
        assert [(row.key, row.in_range) for row in report.positions] == [('pos-1', False), ('pos-2', True)]
        assert report.rebalancing is False

    @pytest.mark.asyncio
    async def test_status_does_not_mutate_tracker(self):
        """Status queries never record or alert."""
        await self.monitor.status()
        await self.monitor.status()

        assert len(self.tracker) == 0
        assert self.notifier.messages == []

    @pytest.mark.asyncio
    async def test_status_command_text(self):
        self.executor.is_rebalancing = True

        text = await self.monitor.handle_status_command()

        assert text.startswith("📊 Current Status:\nActive Bin: 115")
        assert "Position: pos-1\nStatus: ❌ OUT OF RANGE\nRange: 100 - 110" in text
        assert "Position: pos-2\nStatus: ✅ IN RANGE\nRange: 110 - 120" in text
        assert "Rebalance in progress" in text

    @pytest.mark.asyncio
    async def test_status_without_positions(self):
        self.reader.read.return_value = snapshot(7)

        text = await self.monitor.handle_status_command()

        assert "No open positions" in text

    @pytest.mark.asyncio
    async def test_start_command_text(self):
        text = await self.monitor.handle_start_command()

        assert "Position Monitor Bot is running" in text
        assert "every 3 minutes" in text


class TestPositionMonitorLifecycle:
    """Test start/stop timing."""

    def setup_method(self):
        self.config = make_config(MONITORING_INTERVAL_SECONDS=0.05)
        self.notifier = RecordingNotifier()
        self.reader = Mock()
        self.reader.read = AsyncMock(return_value=snapshot(105, POSITION))
        self.monitor = PositionMonitor(
            self.config, self.reader, RangeTracker(self.notifier), Mock(), self.notifier
        )

    @pytest.mark.asyncio
    async def test_start_runs_immediately_and_repeats(self):
        await self.monitor.start()
        await asyncio.sleep(0.01)
        assert self.reader.read.await_count == 1

        await asyncio.sleep(0.12)
        await self.monitor.stop()

        assert self.reader.read.await_count >= 2
        assert self.monitor.is_running is False

    @pytest.mark.asyncio
    async def test_stop_waits_for_running_cycle(self):
        release = asyncio.Event()
        finished = []

        async def slow_read():
            await release.wait()
            finished.append(True)
            return snapshot(105, POSITION)

        self.reader.read.side_effect = slow_read
        await self.monitor.start()
        await asyncio.sleep(0.01)

        stop_task = asyncio.create_task(self.monitor.stop())
        await asyncio.sleep(0.01)
        assert not stop_task.done()

        release.set()
        await stop_task
        assert finished == [True]

    @pytest.mark.asyncio
    async def test_start_twice_is_ignored(self):
        await self.monitor.start()
        timer = self.monitor._timer_task

        await self.monitor.start()

        assert self.monitor._timer_task is timer
        await self.monitor.stop()


def test_describe_interval():
    assert describe_interval(180) == "3 minutes"
    assert describe_interval(60) == "1 minute"
    assert describe_interval(45) == "45 seconds"
