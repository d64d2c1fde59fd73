"""
Polymarket copy trading bot process.

Wires the monitors, the copy pipeline and the execution engine together
and owns startup and shutdown.
"""

import asyncio
import logging
import signal
from datetime import datetime
from typing import Any, Dict, List, Optional

from .approvals import AllowanceManager
from .auth import create_authenticated_client, signer_address
from .config import Settings
from .data_api import DataApiClient
from .errors import ConfigurationError
from .executor import TradeExecutor
from .logger import print_stats_table
from .models import now_ms
from .monitor import RestTradeMonitor
from .orchestrator import CopyOrchestrator
from .positions import PositionTracker
from .risk import RiskManager
from .ws_monitor import MARKET_CHANNEL, USER_CHANNEL, PushTradeMonitor

logger = logging.getLogger(__name__)


class CopyTradingBot:
    """
    Main copy trading bot that orchestrates:
    - REST and WebSocket trade monitoring
    - Risk checks and position tracking
    - Copy trade execution
    """

    def __init__(
        self,
        settings: Settings,
        data_api: Optional[DataApiClient] = None,
        push_monitor: Optional[PushTradeMonitor] = None,
    ):
        self.settings = settings
        self.data_api = data_api or DataApiClient(settings.data_api_url)
        self.monitor = RestTradeMonitor(
            self.data_api,
            settings.target_wallet,
            poll_interval_ms=settings.poll_interval_ms,
        )
        self.positions = PositionTracker()
        self.risk = RiskManager(
            self.positions,
            max_session_notional=settings.max_session_notional,
            max_per_market_notional=settings.max_per_market_notional,
        )
        self.push_monitor = push_monitor

        self.client = None
        self.creds = None
        self.allowance_manager: Optional[AllowanceManager] = None
        self.executor: Optional[TradeExecutor] = None
        self.orchestrator: Optional[CopyOrchestrator] = None

        self.start_time: Optional[int] = None
        self._stopped = False
        self._stop_requested = False
        self._tasks: List[asyncio.Task] = []

    async def _call(self, fn, *args):
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, fn, *args)

    async def initialize(self) -> None:
        """
        Validate settings, bootstrap credentials and approvals, load positions
        and start the push feed.

        Raises:
            ConfigurationError: invalid settings
            CredentialError / web3 errors: bootstrap failed
        """
        self.settings.print_summary()

        is_valid, errors = self.settings.validate()
        if not is_valid:
            for err in errors:
                logger.error(f"  - {err}")
            raise ConfigurationError("Invalid configuration: " + "; ".join(errors))

        self.start_time = now_ms()
        logger.info(f"Bot start time: {datetime.fromtimestamp(self.start_time / 1000).isoformat()}")
        logger.info("   (Only trades after this time will be copied)")

        self.monitor.initialize(self.start_time)

        logger.info("Initializing trader...")
        self.client, self.creds = await self._call(create_authenticated_client, self.settings)
        self.allowance_manager = await self._call(AllowanceManager, self.settings)
        await self._call(self.allowance_manager.ensure_approvals, self.settings.max_trade_size)

        self.executor = TradeExecutor(self.client, self.settings, self.allowance_manager)
        logger.info("Trader initialized")
        logger.info(f"   Market cache: Enabled (TTL: {self.executor.market_cache.ttl_seconds:.0f}s)")

        await self.reconcile_positions()

        self.orchestrator = CopyOrchestrator(
            self.executor,
            self.risk,
            start_time_ms=self.start_time,
            resync=self.reconcile_positions,
        )

        if self.settings.use_websocket:
            await self._init_push_monitor()

    async def _init_push_monitor(self) -> None:
        channel = self.settings.ws_channel
        auth = None
        if self.creds is not None:
            auth = {
                "apiKey": self.creds.api_key,
                "secret": self.creds.api_secret,
                "passphrase": self.creds.api_passphrase,
            }

        monitor = self.push_monitor or PushTradeMonitor(self.settings.target_wallet, self.settings.ws_url)
        try:
            await monitor.initialize(
                self.orchestrator.submit,
                channel=channel,
                auth=auth,
                asset_ids=self.settings.ws_asset_ids if channel == MARKET_CHANNEL else (),
                market_ids=self.settings.ws_market_ids if channel == USER_CHANNEL else (),
            )
        except Exception as e:
            logger.error("WebSocket initialization failed, falling back to REST API only")
            logger.error(f"   Error: {e}")
            await monitor.close()
            self.push_monitor = None
            return

        self.push_monitor = monitor
        self.orchestrator.push_monitor = monitor
        logger.info(f"WebSocket monitor initialized ({channel} channel)")

    async def reconcile_positions(self) -> None:
        """Replace local positions with the venue's snapshot. Never raises."""
        try:
            rows = await self.data_api.get_positions(signer_address(self.settings.private_key))
        except Exception as e:
            logger.warning(f"Positions reconciliation failed: {e}")
            return

        loaded, skipped = self.positions.replace_all(rows or [])
        if not rows:
            logger.info("Positions: none found (fresh session)")
            return

        total = self.positions.get_total_notional()
        logger.info(f"Positions loaded: {loaded} (skipped {skipped}), total notional ~ {total:.2f} USDC")

    async def start(self) -> None:
        """Run the consumer and the polling loop until stopped."""
        if self.orchestrator is None:
            raise RuntimeError("initialize() must be called before start()")
        if self._stop_requested:
            logger.info("Stop requested before start, not starting")
            return

        methods = (["WebSocket"] if self.push_monitor else []) + ["REST API"]
        logger.info(f"Bot started! Monitoring via: {' + '.join(methods)}")

        consumer = asyncio.create_task(self.orchestrator.run())
        poller = asyncio.create_task(self.monitor.run(self.orchestrator.submit))
        self._tasks = [consumer, poller]
        try:
            await asyncio.gather(consumer, poller)
        except asyncio.CancelledError:
            pass
        finally:
            for task in self._tasks:
                task.cancel()
            self._tasks = []

    def request_stop(self) -> None:
        """Signal-safe: make start() return, including when it has not been called yet."""
        self._stop_requested = True
        self.monitor.stop()
        if self.orchestrator:
            self.orchestrator.stop()
        # run() resets the running flags, so a stop landing before the loops start needs the cancel
        for task in self._tasks:
            task.cancel()

    async def stop(self) -> None:
        """Shut down and print final statistics. Safe to call twice."""
        if self._stopped:
            return
        self._stopped = True

        logger.info("Stopping bot...")
        self.request_stop()

        if self.push_monitor:
            await self.push_monitor.close()
        await self.data_api.close()

        logger.info("Bot stopped")
        self.print_stats()

    def get_stats(self) -> Dict[str, Any]:
        stats = self.orchestrator.stats.to_dict() if self.orchestrator else {}
        stats["session_notional"] = self.risk.session_notional
        stats["open_positions"] = len([p for p in self.positions.get_positions() if p.shares > 0])
        return stats

    def print_stats(self) -> None:
        print_stats_table(self.get_stats(), title="Session Statistics")


async def run_bot(settings: Settings) -> None:
    """Run the bot with signal handling."""
    bot = CopyTradingBot(settings)

    loop = asyncio.get_running_loop()

    def signal_handler():
        logger.info("Received shutdown signal, shutting down...")
        bot.request_stop()

    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, signal_handler)

    try:
        await bot.initialize()
        await bot.start()
    finally:
        await bot.stop()
