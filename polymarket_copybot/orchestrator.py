"""
Copy pipeline: merges both trade feeds and decides what to copy.

Monitors only enqueue. A single consumer resolves each trade fully
(dedup, filters, risk, execution, fill accounting) before taking the
next, so risk checks always see every earlier fill.
"""

import asyncio
import logging
from dataclasses import asdict, dataclass
from datetime import datetime
from enum import Enum
from typing import Awaitable, Callable, List, Optional, Set

from .dedup import SeenSet
from .executor import TradeExecutor
from .models import Trade, TradeSide, now_ms
from .risk import RiskManager
from .ws_monitor import MARKET_CHANNEL, PushTradeMonitor

logger = logging.getLogger(__name__)

MAX_PROCESSED_TRADES = 10000


class CopyDecision(Enum):
    """What happened to a submitted trade."""
    STALE = "stale"                  # happened before the bot started
    DUPLICATE = "duplicate"
    SELL_SKIPPED = "sell_skipped"
    RISK_REJECTED = "risk_rejected"
    COPIED = "copied"
    FAILED = "failed"


@dataclass
class SessionStats:
    trades_detected: int = 0
    trades_copied: int = 0
    trades_failed: int = 0
    trades_skipped: int = 0
    total_volume: float = 0.0

    def to_dict(self) -> dict:
        return asdict(self)

    def summary(self) -> str:
        return (
            f"{self.trades_copied}/{self.trades_detected} copied, "
            f"{self.trades_failed} failed"
        )


def trade_keys(trade: Trade) -> List[str]:
    """Identities under which a trade is deduplicated."""
    keys = []
    if trade.tx_hash:
        keys.append(trade.tx_hash)
    keys.append(f"{trade.token_id}|{trade.side.value}|{trade.size}|{trade.price}|{trade.timestamp}")
    return keys


class CopyOrchestrator:
    """
    Single-consumer copy pipeline.

    Args:
        executor: Order execution engine
        risk: Risk manager (owns session notional and the position tracker)
        start_time_ms: Trades older than this are never copied
        push_monitor: WebSocket monitor; in market mode every traded token
            gets subscribed
        resync: Awaited when a fill had to be clamped, to reload positions
    """

    def __init__(
        self,
        executor: TradeExecutor,
        risk: RiskManager,
        start_time_ms: Optional[int] = None,
        push_monitor: Optional[PushTradeMonitor] = None,
        resync: Optional[Callable[[], Awaitable[None]]] = None,
        max_processed_trades: int = MAX_PROCESSED_TRADES,
    ):
        self.executor = executor
        self.risk = risk
        self.start_time = start_time_ms if start_time_ms is not None else now_ms()
        self.push_monitor = push_monitor
        self.resync = resync

        self.stats = SessionStats()
        self.processed_trades = SeenSet(max_processed_trades)

        self._queue: asyncio.Queue = asyncio.Queue()
        self._running = False
        self._background: Set[asyncio.Task] = set()

    async def submit(self, trade: Trade) -> None:
        """Hand a trade to the consumer. Never blocks on execution."""
        self._queue.put_nowait(trade)

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    async def join(self) -> None:
        """Wait until every submitted trade has been processed."""
        await self._queue.join()

    async def run(self) -> None:
        """Process trades from the queue until stop() is called."""
        self._running = True
        while self._running:
            try:
                try:
                    trade = await asyncio.wait_for(self._queue.get(), timeout=1.0)
                except asyncio.TimeoutError:
                    continue

                try:
                    await self.process_trade(trade)
                finally:
                    self._queue.task_done()

            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"Error processing trade: {e}")

    def stop(self) -> None:
        self._running = False
        for task in list(self._background):
            task.cancel()

    def _subscribe_push(self, token_id: str) -> None:
        if self.push_monitor is None or self.push_monitor.channel != MARKET_CHANNEL:
            return
        task = asyncio.create_task(self.push_monitor.subscribe_to_market(token_id))
        self._background.add(task)
        task.add_done_callback(self._on_background_done)

    def _on_background_done(self, task: asyncio.Task) -> None:
        self._background.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.warning(f"WebSocket subscription failed: {error}")

    async def process_trade(self, trade: Trade) -> CopyDecision:
        if trade.timestamp < self.start_time:
            return CopyDecision.STALE

        keys = trade_keys(trade)
        if self.processed_trades.contains_any(keys):
            return CopyDecision.DUPLICATE

        self.processed_trades.add_all(keys)
        self.stats.trades_detected += 1

        logger.info("=" * 50)
        logger.info("NEW TRADE DETECTED")
        logger.info(f"   Time: {datetime.fromtimestamp(trade.timestamp / 1000).isoformat()}")
        logger.info(f"   Market: {trade.market}")
        logger.info(f"   Side: {trade.side.value} {trade.outcome.value}")
        logger.info(f"   Size: {trade.size} USDC @ {trade.price:.3f}")
        logger.info(f"   Token ID: {trade.token_id}")
        logger.info("=" * 50)

        if trade.side == TradeSide.SELL:
            logger.info("Skipping SELL trade (BUY-only safeguard enabled)")
            self.stats.trades_skipped += 1
            return CopyDecision.SELL_SKIPPED

        self._subscribe_push(trade.token_id)

        try:
            copy_notional = self.executor.calculate_copy_size(trade.size)
            risk_check = self.risk.check_trade(trade, copy_notional)
            if not risk_check.allowed:
                logger.warning(f"Risk check blocked trade: {risk_check.reason}")
                self.stats.trades_skipped += 1
                return CopyDecision.RISK_REJECTED

            result = await self.executor.execute_copy_trade(trade, copy_notional)
        except Exception as e:
            self.stats.trades_failed += 1
            logger.error("Failed to copy trade")
            logger.error(f"   Reason: {e}")
            logger.info(f"Session Stats: {self.stats.summary()}")
            return CopyDecision.FAILED

        clamped = self.risk.record_fill(trade, result)
        self.stats.trades_copied += 1
        self.stats.total_volume += result.copy_notional
        logger.info("Successfully copied trade!")
        logger.info(f"Session Stats: {self.stats.summary()}")

        if clamped and self.resync is not None:
            try:
                await self.resync()
            except Exception as e:
                logger.warning(f"Position resync failed: {e}")

        return CopyDecision.COPIED
