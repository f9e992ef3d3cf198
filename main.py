#!/usr/bin/env python3
"""
RangeGuard LP - Main Application
Monitors Uniswap V3 positions for range exits and rebalances them
"""
import argparse
import asyncio
import logging
import signal
import sys
from typing import Optional

from alert_manager import TelegramAlertManager, TelegramCommandListener
from balance_inspector import BalanceInspector
from config import Config
from lifi_client import LiFiSwapService
from lp_position_manager import LPPositionManager
from position_reader import PositionSnapshotReader
from range_tracker import RangeTracker
from rebalance_executor import RebalanceExecutor
from rebalance_planner import RebalancePlanner
from scheduler import PositionMonitor
from uniswap_client import UniswapV3Client
from utils import Logger

logger = logging.getLogger(__name__)

# getUpdates HTTP timeout is the poll timeout plus this margin
LISTENER_GRACE_SECONDS = 10


class MonitorApp:
    """Main application class wiring the monitor to its collaborators"""

    def __init__(self, config: Config, rebalance_enabled: bool = True):
        """
        Build all components

        Args:
            config: Validated configuration
            rebalance_enabled: False for alert-only mode
        """
        self.config = config

        self.client = UniswapV3Client(config)
        self.owner = self.client.wallet_address
        self.alert_manager = TelegramAlertManager(config)

        call_timeout = config.EXTERNAL_CALL_TIMEOUT_SECONDS
        self.reader = PositionSnapshotReader(self.client, self.owner, timeout=call_timeout)
        self.balances = BalanceInspector(
            self.client, self.owner, config.TOKEN_X_ADDRESS, config.TOKEN_Y_ADDRESS, timeout=call_timeout
        )
        self.tracker = RangeTracker(self.alert_manager)

        self.executor = None
        if rebalance_enabled and config.REBALANCE_ENABLED:
            self.executor = RebalanceExecutor(
                config,
                notifier=self.alert_manager,
                reader=self.reader,
                balances=self.balances,
                planner=RebalancePlanner.from_config(config),
                swap_service=LiFiSwapService(config, self.client),
                liquidity=LPPositionManager(self.client, slippage_bps=config.DEPOSIT_SLIPPAGE_BPS),
                submitter=self.client,
                owner=self.owner,
            )

        self.monitor = PositionMonitor(config, self.reader, self.tracker, self.executor, self.alert_manager)

        self.listener: Optional[TelegramCommandListener] = None
        if config.TELEGRAM_COMMANDS_ENABLED:
            self.listener = TelegramCommandListener(self.alert_manager, config.TELEGRAM_POLL_TIMEOUT_SECONDS)
            self.listener.register('start', self.monitor.handle_start_command)
            self.listener.register('status', self.monitor.handle_status_command)

        self._stop_event: Optional[asyncio.Event] = None
        self._stop_reason = "Manual shutdown"

        logger.info("MonitorApp initialized")

    def request_stop(self, reason: str):
        logger.info(f"{reason}, shutting down gracefully...")
        self._stop_reason = reason
        if self._stop_event is not None:
            self._stop_event.set()

    def _install_signal_handlers(self):
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, self.request_stop, f"Received {sig.name}")
            except NotImplementedError:
                # Not available on Windows event loops
                signal.signal(sig, lambda signum, frame: self.request_stop(f"Received signal {signum}"))

    async def run(self):
        """Run until a shutdown signal arrives"""
        self._stop_event = asyncio.Event()
        self._install_signal_handlers()

        pool_name = f"{self.config.TOKEN_X_ADDRESS[:8]}.../{self.config.TOKEN_Y_ADDRESS[:8]}... ({self.config.FEE_TIER})"
        await self.alert_manager.send_startup_notification(
            pool_name=pool_name,
            chain_name=self.config.CHAIN_NAME,
            wallet_address=self.owner,
            interval_seconds=self.config.MONITORING_INTERVAL_SECONDS
        )

        await self.monitor.start()

        listener_task = None
        if self.listener is not None:
            listener_task = asyncio.create_task(self.listener.run())

        logger.info("Position monitor is now running...")
        logger.info("Press Ctrl+C to stop")

        await self._stop_event.wait()

        # The in-flight getUpdates poll drains while the monitor stops
        if self.listener is not None:
            self.listener.stop()
        await asyncio.gather(self.monitor.stop(), self._drain_listener(listener_task))
        await self.alert_manager.send_shutdown_notification(self._stop_reason)

    async def _drain_listener(self, listener_task: Optional[asyncio.Task]):
        if listener_task is None:
            return
        try:
            timeout = self.config.TELEGRAM_POLL_TIMEOUT_SECONDS + LISTENER_GRACE_SECONDS
            await asyncio.wait_for(listener_task, timeout=timeout)
        except asyncio.TimeoutError:
            logger.warning("Telegram listener did not stop in time")

    async def run_once(self):
        await self.monitor.run_cycle()

    async def print_status(self):
        report = await self.monitor.status()
        print(self.monitor.format_status(report))


def parse_args(argv=None):
    parser = argparse.ArgumentParser(
        description='RangeGuard LP - Uniswap V3 position range monitor and rebalancer',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Monitor and rebalance (default)
  python main.py

  # Alert only, never touch positions
  python main.py --no-rebalance

  # Single check cycle, then exit
  python main.py --once

  # Print the current status and exit
  python main.py --status
        """
    )
    parser.add_argument('--once', action='store_true',
                        help='Run a single check cycle and exit')
    parser.add_argument('--status', action='store_true',
                        help='Print current position status and exit')
    parser.add_argument('--no-rebalance', action='store_true',
                        help='Only send alerts, never rebalance')
    parser.add_argument('--log-level', default=None,
                        choices=['DEBUG', 'INFO', 'WARNING', 'ERROR'],
                        help='Logging level (overrides LOG_LEVEL)')
    return parser.parse_args(argv)


def main(argv=None) -> int:
    """Main entry point"""
    args = parse_args(argv)
    config = Config()

    Logger.setup_logging(args.log_level or config.LOG_LEVEL, config.LOG_FILE)

    try:
        config.validate_config()
        logger.info("✅ Configuration validation passed")
    except ValueError as e:
        logger.error(f"❌ Configuration validation failed: {e}")
        return 1

    try:
        app = MonitorApp(config, rebalance_enabled=not args.no_rebalance)

        if args.status:
            asyncio.run(app.print_status())
        elif args.once:
            asyncio.run(app.run_once())
        else:
            asyncio.run(app.run())

    except KeyboardInterrupt:
        print("\n🛑 Shutdown requested by user")
        return 1
    except Exception as e:
        logger.error(f"Unexpected error: {e}")
        return 1

    print("👋 Goodbye!")
    return 0


if __name__ == "__main__":
    sys.exit(main())
