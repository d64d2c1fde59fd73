"""
Copy trade execution on the Polymarket CLOB.

Turns a detected trade into a sized, priced order:
- size: original notional x multiplier, clamped to [market min, max trade size]
- price: best opposite level from the book, plus slippage, rounded to tick
- checks: on-chain USDC.e balance/allowances and CLOB collateral
- submit: GTC limit or FOK/FAK market order, retried on transient errors

Every SDK call blocks, so it runs in the default executor.
"""

import asyncio
import logging
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Dict, Optional

from py_clob_client.clob_types import (
    AssetType,
    BalanceAllowanceParams,
    MarketOrderArgs,
    OrderArgs,
    OrderType,
    PartialCreateOrderOptions,
)
from py_clob_client.order_builder.constants import BUY, SELL

from .approvals import AllowanceManager
from .config import CTF_EXCHANGE_ADDRESS, NEG_RISK_CTF_EXCHANGE, Settings
from .errors import InsufficientFundsError, NoLiquidityError, OrderRejectedError
from .market_cache import MarketMetadataCache
from .models import CopyExecutionResult, CopyOrderType, Trade, TradeSide
from .retry import RetryConfig, execute_with_retry

logger = logging.getLogger(__name__)

MIN_PRICE = 0.01
MAX_PRICE = 0.99

MARKET_ORDER_MIN_NOTIONAL = 1.0

USDC_DECIMALS = 6


def calculate_copy_size(
    original_size: float,
    multiplier: float,
    max_trade_size: float,
    min_trade_size: float,
) -> float:
    """Scale and clamp a copy notional, rounded to cents."""
    size = original_size * multiplier
    size = min(size, max_trade_size)
    size = max(size, min_trade_size)
    return round(size, 2)


def calculate_shares(notional: float, price: float) -> float:
    return round(notional / price, 4)


def round_to_tick_size(price: float, tick_size: float) -> float:
    """Round to the nearest multiple of tick_size, halves away from zero."""
    tick = Decimal(str(tick_size))
    ticks = (Decimal(str(price)) / tick).quantize(Decimal("1"), rounding=ROUND_HALF_UP)
    return round(float(ticks * tick), 6)


def apply_slippage(price: float, side: TradeSide, slippage: float) -> float:
    if side == TradeSide.BUY:
        return min(price * (1 + slippage), MAX_PRICE)
    return max(price * (1 - slippage), MIN_PRICE)


def _level_price(level: Any) -> Optional[float]:
    price = level.get("price") if isinstance(level, dict) else getattr(level, "price", None)
    try:
        price = float(price)
    except (TypeError, ValueError):
        return None
    return price if price > 0 else None


def _book_side(orderbook: Any, name: str) -> list:
    levels = orderbook.get(name) if isinstance(orderbook, dict) else getattr(orderbook, name, None)
    return list(levels or [])


def best_price(orderbook: Any, side: TradeSide, fallback: float) -> float:
    """
    Best ask for a BUY, best bid for a SELL.

    Raises:
        NoLiquidityError: if that side of the book is empty
    """
    levels = _book_side(orderbook, "asks" if side == TradeSide.BUY else "bids")
    if not levels:
        raise NoLiquidityError(
            "No asks available in orderbook" if side == TradeSide.BUY else "No bids available in orderbook"
        )

    prices = [p for p in (_level_price(level) for level in levels) if p is not None]
    if not prices:
        return fallback
    return min(prices) if side == TradeSide.BUY else max(prices)


def extract_order_id(result: dict) -> Optional[str]:
    """Extract order id from API response."""
    if not isinstance(result, dict):
        return None
    for key in ("orderID", "orderId", "order_id", "id"):
        val = result.get(key)
        if val:
            return str(val)
    return None


def check_order_response(response: Any) -> dict:
    """
    Accept a post-order response only if it reports success without an error.

    Raises:
        OrderRejectedError: carrying the venue's message
    """
    if isinstance(response, dict) and response.get("success") and not response.get("error"):
        return response

    if isinstance(response, dict):
        message = response.get("errorMsg") or response.get("error") or "Unknown error"
    else:
        message = str(response) if response else "Unknown error"
    raise OrderRejectedError(message, response=response)


class TradeExecutor:
    """
    Executes copy trades against the CLOB.

    Args:
        client: py_clob_client ClobClient with L2 credentials set
        settings: Bot settings (sizing, slippage, order type)
        allowance_manager: On-chain balance/allowance reader; None skips
            the on-chain part of the balance check
        market_cache: Metadata cache, created from client if omitted
        retry_config: Submission retry policy
    """

    def __init__(
        self,
        client,
        settings: Settings,
        allowance_manager: Optional[AllowanceManager] = None,
        market_cache: Optional[MarketMetadataCache] = None,
        retry_config: Optional[RetryConfig] = None,
        sleep=asyncio.sleep,
    ):
        self.client = client
        self.settings = settings
        self.allowance_manager = allowance_manager
        self.market_cache = market_cache or MarketMetadataCache(client)
        self.retry_config = retry_config or RetryConfig()
        self._sleep = sleep

    @property
    def order_type(self) -> CopyOrderType:
        return self.settings.copy_order_type

    async def _call(self, fn, *args):
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, fn, *args)

    def calculate_copy_size(self, original_size: float) -> float:
        market_min = MARKET_ORDER_MIN_NOTIONAL if self.order_type.is_market else self.settings.min_trade_size
        return calculate_copy_size(
            original_size,
            self.settings.position_multiplier,
            self.settings.max_trade_size,
            market_min,
        )

    async def validate_price(self, price: float, token_id: str) -> float:
        """Round to the instrument's tick and clamp to [0.01, 0.99]."""
        tick_size = await self.market_cache.get_tick_size(token_id)
        rounded = round_to_tick_size(price, tick_size)
        valid = max(MIN_PRICE, min(MAX_PRICE, rounded))

        if abs(valid - price) > 0.001:
            logger.info(f"   Price adjusted: {price:.4f} -> {valid:.4f} (tick size: {tick_size})")

        return valid

    async def validate_balance(self, required_amount: float, token_id: str) -> None:
        """
        Fail fast if the wallet cannot fund the order.

        Raises:
            InsufficientFundsError: any balance or allowance below required
        """
        metadata = await self.market_cache.get(token_id)
        exchange = NEG_RISK_CTF_EXCHANGE if metadata.neg_risk else CTF_EXCHANGE_ADDRESS

        if self.allowance_manager is not None:
            await self._call(self.allowance_manager.check_collateral, required_amount, exchange)

        params = BalanceAllowanceParams(asset_type=AssetType.COLLATERAL, signature_type=0)
        clob = await self._call(self.client.get_balance_allowance, params) or {}

        clob_balance = float(clob.get("balance") or 0) / 10**USDC_DECIMALS
        if clob_balance < required_amount:
            raise InsufficientFundsError(
                f"not enough balance / allowance (CLOB balance {clob_balance} < required {required_amount})"
            )

        allowances = {k.lower(): v for k, v in (clob.get("allowances") or {}).items()}
        if str(allowances.get(exchange.lower(), "0")) in ("0", ""):
            raise InsufficientFundsError("not enough balance / allowance (CLOB allowance to Exchange is 0)")

        logger.info("   Balance/allowance check passed")

    async def execute_copy_trade(
        self,
        trade: Trade,
        copy_notional: Optional[float] = None,
    ) -> CopyExecutionResult:
        """
        Size, price and submit a copy of trade.

        Pre-checks run once; only the submission itself is retried.

        Raises:
            InsufficientFundsError, NoLiquidityError, OrderRejectedError,
            or the last transport error once retries are exhausted
        """
        order_type = self.order_type
        if copy_notional is None:
            copy_notional = self.calculate_copy_size(trade.size)

        logger.info(f"Executing copy trade ({order_type.value}):")
        logger.info(f"   Market: {trade.market}")
        logger.info(f"   Side: {trade.side.value}")
        logger.info(f"   Original size: {trade.size} USDC")
        logger.info(f"   Token ID: {trade.token_id}")
        logger.info(f"   Copy notional: {copy_notional} USDC")

        await self.validate_balance(copy_notional, trade.token_id)

        orderbook, metadata = await asyncio.gather(
            self._call(self.client.get_order_book, trade.token_id),
            self.market_cache.get(trade.token_id),
        )

        price = best_price(orderbook, trade.side, trade.price)
        price = apply_slippage(price, trade.side, self.settings.slippage_tolerance)
        price = await self.validate_price(price, trade.token_id)
        copy_shares = calculate_shares(copy_notional, price)

        label = "Limit" if order_type == CopyOrderType.LIMIT else "Market"
        logger.info(f"   {label} price: {price:.4f}")
        logger.info(f"   Copy shares: {copy_shares}")

        options = PartialCreateOrderOptions(tick_size=metadata.tick_size_str, neg_risk=metadata.neg_risk)
        side = BUY if trade.side == TradeSide.BUY else SELL
        venue_order_type = getattr(OrderType, order_type.value) if order_type.is_market else OrderType.GTC

        async def submit():
            if order_type.is_market:
                order_args = MarketOrderArgs(
                    token_id=trade.token_id,
                    amount=copy_notional if trade.side == TradeSide.BUY else copy_shares,
                    side=side,
                    price=price,
                    order_type=venue_order_type,
                )
                signed = await self._call(self.client.create_market_order, order_args, options)
                response = await self._call(self.client.post_order, signed, venue_order_type)
            else:
                order_args = OrderArgs(
                    token_id=trade.token_id,
                    price=price,
                    size=copy_shares,
                    side=side,
                )
                response = await self._call(self.client.create_and_post_order, order_args, options)
            return check_order_response(response)

        response = await execute_with_retry(
            submit,
            self.retry_config,
            sleep=self._sleep,
            label=f"{order_type.value} order",
        )

        order_id = extract_order_id(response) or ""
        status = response.get("status")
        if order_type.is_market:
            logger.info(f"{order_type.value} order executed: {order_id}")
            if str(status).upper() == "LIVE":
                logger.info("   Order posted to book (no immediate match)")
        else:
            logger.info(f"Limit order placed: {order_id}")

        return CopyExecutionResult(
            order_id=order_id,
            copy_notional=copy_notional,
            copy_shares=copy_shares,
            price=price,
            side=trade.side,
            token_id=trade.token_id,
            order_type=order_type,
            status=status,
        )

    async def cancel_all_orders(self) -> Optional[dict]:
        try:
            result = await self._call(self.client.cancel_all)
            logger.info("All orders cancelled")
            return result
        except Exception as e:
            logger.error(f"Error cancelling orders: {e}")
            return None

    def get_cache_stats(self) -> Dict[str, Any]:
        return self.market_cache.stats()

    def clear_cache(self) -> None:
        self.market_cache.clear()
