"""
REST trade monitor for the target wallet.

Polls the data API activity feed and hands every new trade, oldest first,
to a callback. A failed poll is logged and skipped; the next tick tries
again.
"""

import asyncio
import logging
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, List, Optional

from .data_api import DataApiClient
from .dedup import SeenSet
from .models import Trade, TradeOutcome, TradeSide, now_ms

logger = logging.getLogger(__name__)

TradeHandler = Callable[[Trade], Awaitable[None]]


def parse_activity_trade(raw: Dict[str, Any]) -> Trade:
    """
    Normalize one /activity record into a Trade.

    Field lookup order:
        tx_hash:   transactionHash, id, "trade-<timestamp>"
        timestamp: timestamp (seconds) * 1000
        market:    conditionId, market
        token_id:  asset
        side:      side, uppercased
        size:      usdcSize, size

    Raises:
        KeyError / ValueError / TypeError on a malformed record
    """
    timestamp_s = raw["timestamp"]
    return Trade(
        tx_hash=str(raw.get("transactionHash") or raw.get("id") or f"trade-{timestamp_s}"),
        timestamp=int(float(timestamp_s) * 1000),
        market=str(raw.get("conditionId") or raw.get("market") or ""),
        token_id=str(raw["asset"]),
        side=TradeSide.parse(raw["side"]),
        price=float(raw["price"]),
        size=float(raw.get("usdcSize") or raw.get("size")),
        outcome=TradeOutcome.parse(raw.get("outcome")),
    )


class RestTradeMonitor:
    """
    Polls the activity feed for one wallet.

    Only trades strictly newer than the watermark are emitted. The
    watermark starts at initialize() time, so history is never copied.
    """

    def __init__(
        self,
        data_api: DataApiClient,
        target_wallet: str,
        poll_interval_ms: int = 2000,
    ):
        self.data_api = data_api
        self.target_wallet = target_wallet
        self.poll_interval = poll_interval_ms / 1000.0

        self.last_processed_timestamp = 0
        self.processed_trade_ids = SeenSet()
        self.is_running = False

        self.polls = 0
        self.poll_errors = 0
        self.trades_emitted = 0

    def initialize(self, start_time_ms: Optional[int] = None) -> None:
        self.last_processed_timestamp = start_time_ms if start_time_ms is not None else now_ms()
        started = datetime.fromtimestamp(self.last_processed_timestamp / 1000).isoformat()
        logger.info(f"Monitor initialized at {started}")
        logger.info("   Will copy trades that occur AFTER this time")

    async def fetch_trades(self) -> List[Trade]:
        """Fetch and normalize new activity. Returns [] on any failure."""
        start_seconds = self.last_processed_timestamp // 1000 + 1
        try:
            rows = await self.data_api.get_activity(self.target_wallet, start_seconds)
        except Exception as e:
            self.poll_errors += 1
            logger.warning(f"Could not fetch trades: {e}")
            return []

        trades = []
        for row in rows:
            try:
                trades.append(parse_activity_trade(row))
            except (KeyError, ValueError, TypeError) as e:
                logger.warning(f"Skipping malformed activity record: {e}")
        return trades

    async def poll_once(self, callback: TradeHandler) -> int:
        """
        Run one poll cycle.

        Returns:
            Number of new trades handed to callback
        """
        self.polls += 1
        trades = await self.fetch_trades()
        if not trades:
            return 0

        new_trades = 0
        for trade in sorted(trades, key=lambda t: t.timestamp):
            if trade.tx_hash in self.processed_trade_ids:
                continue
            if trade.timestamp <= self.last_processed_timestamp:
                continue

            self.processed_trade_ids.add(trade.tx_hash)
            self.last_processed_timestamp = max(self.last_processed_timestamp, trade.timestamp)
            new_trades += 1

            logger.info(f"New trade detected: {trade.describe()}")
            logger.info(f"   Time: {datetime.fromtimestamp(trade.timestamp / 1000).isoformat()}")
            await callback(trade)

        if new_trades:
            self.trades_emitted += new_trades
            logger.info(f"Processed {new_trades} new trade(s)")
        return new_trades

    async def run(self, callback: TradeHandler) -> None:
        """Poll until stop() is called."""
        self.is_running = True
        logger.info(f"Polling activity every {self.poll_interval:.1f}s")
        while self.is_running:
            try:
                await self.poll_once(callback)
            except Exception as e:
                logger.error(f"Error polling for trades: {e}")
            await asyncio.sleep(self.poll_interval)

    def stop(self) -> None:
        self.is_running = False

    def get_stats(self) -> Dict[str, Any]:
        return {
            "polls": self.polls,
            "poll_errors": self.poll_errors,
            "trades_emitted": self.trades_emitted,
            "tracked_ids": len(self.processed_trade_ids),
            "last_processed_timestamp": self.last_processed_timestamp,
        }
