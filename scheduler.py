"""
Position monitor scheduler.
Runs a check cycle immediately and then at a fixed rate, feeding each
snapshot through the range tracker and triggering rebalances on exits.
"""
import asyncio
import logging
from typing import Optional

from collaborators import Notifier
from domain import Position, PositionStatusRow, RebalanceOutcome, StatusReport, Transition
from errors import RebalanceError
from position_reader import PositionSnapshotReader
from range_tracker import RangeTracker
from rebalance_executor import RebalanceExecutor

logger = logging.getLogger(__name__)


def describe_interval(seconds: int) -> str:
    """Human readable interval, e.g. 180 -> '3 minutes'"""
    if seconds % 60 == 0:
        minutes = seconds // 60
        return f"{minutes} minute" if minutes == 1 else f"{minutes} minutes"
    return f"{seconds} seconds"


class PositionMonitor:
    """Periodic range monitor with on-demand status"""

    def __init__(self, config, reader: PositionSnapshotReader, tracker: RangeTracker,
                 executor: Optional[RebalanceExecutor], notifier: Notifier):
        """
        Initialize the monitor

        Args:
            config: Configuration object
            reader: Position snapshot reader
            tracker: Range tracker owning per-position status
            executor: Rebalance executor, None for alert-only mode
            notifier: Operator notification channel
        """
        self.config = config
        self.reader = reader
        self.tracker = tracker
        self.executor = executor
        self.notifier = notifier

        self.interval_seconds = config.MONITORING_INTERVAL_SECONDS
        self.rebalance_enabled = bool(config.REBALANCE_ENABLED) and executor is not None

        self._timer_task: Optional[asyncio.Task] = None
        self._cycle_task: Optional[asyncio.Task] = None
        self._cycle_running = False

    @property
    def is_running(self) -> bool:
        return self._timer_task is not None and not self._timer_task.done()

    async def run_cycle(self) -> bool:
        """
        Run one check cycle.

        Returns:
            False if the cycle was skipped because another one is still running
        """
        if self._cycle_running:
            logger.warning("Previous position check still running, skipping this tick")
            return False

        self._cycle_running = True
        try:
            await self._check_positions()
        finally:
            self._cycle_running = False
        return True

    async def _check_positions(self):
        try:
            snapshot = await self.reader.read()
        except Exception as e:
            logger.error(f"Error checking positions: {e}")
            await self.notifier.send(f"❌ Error checking positions: {e}")
            return

        logger.info(f"Checking {len(snapshot.positions)} positions at active bin {snapshot.active_index}")
        self.tracker.forget_missing(position.key for position in snapshot.positions)

        for position in snapshot.positions:
            transition = await self.tracker.evaluate(position, snapshot.active_index)

            if transition is Transition.EXITED:
                await self._rebalance(position)
            elif transition is Transition.UNCHANGED and self.tracker.needs_rebalance_retry(position.key):
                logger.info(f"Retrying rebalance of position {position.key}")
                await self._rebalance(position)

    async def _rebalance(self, position: Position):
        if not self.rebalance_enabled:
            logger.info(f"Rebalancing disabled, position {position.key} left out of range")
            return

        try:
            result = await self.executor.rebalance_position(position)
        except RebalanceError as e:
            # Operator was already notified by the executor
            logger.error(f"Rebalance of {position.key} aborted at {e.stage}: {e.cause}")
            self.tracker.mark_rebalance_pending(position.key)
            return

        if result.outcome is RebalanceOutcome.SKIPPED:
            self.tracker.mark_rebalance_pending(position.key)
        else:
            self.tracker.mark_rebalance_pending(position.key, False)

    def _spawn_cycle(self):
        if self._cycle_task is not None and not self._cycle_task.done():
            logger.warning("Previous position check still running, skipping this tick")
            return
        self._cycle_task = asyncio.create_task(self.run_cycle())

    async def _timer(self):
        loop = asyncio.get_running_loop()
        next_tick = loop.time()
        while True:
            self._spawn_cycle()
            next_tick += self.interval_seconds
            await asyncio.sleep(max(0.0, next_tick - loop.time()))

    async def start(self):
        """Start monitoring: one check now, then every interval"""
        if self.is_running:
            logger.warning("Monitoring is already running")
            return

        logger.info(f"Monitoring positions every {describe_interval(self.interval_seconds)} "
                    f"(rebalancing {'enabled' if self.rebalance_enabled else 'disabled'})")
        self._timer_task = asyncio.create_task(self._timer())

    async def stop(self):
        """Stop the timer and wait for an in-flight cycle to finish"""
        if self._timer_task is not None:
            self._timer_task.cancel()
            try:
                await self._timer_task
            except asyncio.CancelledError:
                pass
            self._timer_task = None

        if self._cycle_task is not None and not self._cycle_task.done():
            logger.info("Waiting for the running position check to finish...")
            await self._cycle_task
        self._cycle_task = None

        logger.info("Monitoring stopped")

    async def status(self) -> StatusReport:
        """
        Build a status report from a fresh snapshot.

        Tracker state is neither read nor written, so a status request can
        never suppress or trigger an alert.
        """
        snapshot = await self.reader.read()
        rows = [
            PositionStatusRow(
                key=position.key,
                lower_bin=position.lower_bin,
                upper_bin=position.upper_bin,
                in_range=position.contains(snapshot.active_index),
            )
            for position in snapshot.positions
        ]
        rebalancing = self.executor.is_rebalancing if self.executor is not None else False
        return StatusReport(active_index=snapshot.active_index, positions=rows, rebalancing=rebalancing)

    @staticmethod
    def format_status(report: StatusReport) -> str:
        message = f"📊 Current Status:\nActive Bin: {report.active_index}\n\nPositions:\n"

        if not report.positions:
            message += "\nNo open positions\n"

        for row in report.positions:
            message += f"\nPosition: {row.key}\n"
            message += f"Status: {'✅ IN RANGE' if row.in_range else '❌ OUT OF RANGE'}\n"
            message += f"Range: {row.lower_bin} - {row.upper_bin}\n"

        if report.rebalancing:
            message += "\n🔄 Rebalance in progress\n"

        return message

    async def handle_start_command(self) -> str:
        return (f"🚀 Position Monitor Bot is running!\n"
                f"Monitoring positions every {describe_interval(self.interval_seconds)}.")

    async def handle_status_command(self) -> str:
        report = await self.status()
        return self.format_status(report)
