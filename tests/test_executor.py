"""
Tests for the order execution engine.

Tests cover:
- Sizing, tick rounding, slippage and best-price selection
- Venue response checking
- Balance and allowance pre-checks
- FOK / LIMIT submission paths and retries
"""

import asyncio
from types import SimpleNamespace

import pytest

from fakes import FakeClobClient, RecordingSleep
from polymarket_copybot.config import NEG_RISK_CTF_EXCHANGE
from polymarket_copybot.errors import InsufficientFundsError, NoLiquidityError, OrderRejectedError
from polymarket_copybot.executor import (
    TradeExecutor,
    apply_slippage,
    best_price,
    calculate_copy_size,
    calculate_shares,
    check_order_response,
    extract_order_id,
    round_to_tick_size,
)
from polymarket_copybot.models import CopyOrderType, TradeSide


class TestSizing:
    """Tests for copy sizing and price helpers."""

    def test_copy_size_capped_at_max(self):
        assert calculate_copy_size(1000, 0.1, 100, 1) == 100

    def test_copy_size_scaled(self):
        assert calculate_copy_size(500, 0.1, 100, 1) == 50

    def test_copy_size_raised_to_min(self):
        assert calculate_copy_size(5, 0.1, 100, 1) == 1

    def test_copy_size_rounded_to_cents(self):
        assert calculate_copy_size(123.456, 0.1, 100, 1) == 12.35

    def test_calculate_shares(self):
        assert calculate_shares(50, 0.51) == pytest.approx(98.0392)

    def test_round_to_tick_size(self):
        assert round_to_tick_size(0.4567, 0.01) == pytest.approx(0.46)
        assert round_to_tick_size(0.4567, 0.001) == pytest.approx(0.457)

    @pytest.mark.parametrize("price, tick, expected", [
        (0.525, 0.01, 0.53),
        (0.125, 0.01, 0.13),
        (0.045, 0.01, 0.05),
        (0.0125, 0.001, 0.013),
    ])
    def test_round_to_tick_size_halves_go_up(self, price, tick, expected):
        assert round_to_tick_size(price, tick) == pytest.approx(expected)

    def test_slippage_buy_capped(self):
        assert apply_slippage(0.50, TradeSide.BUY, 0.02) == pytest.approx(0.51)
        assert apply_slippage(0.98, TradeSide.BUY, 0.05) == pytest.approx(0.99)

    def test_slippage_sell_floored(self):
        assert apply_slippage(0.50, TradeSide.SELL, 0.02) == pytest.approx(0.49)
        assert apply_slippage(0.01, TradeSide.SELL, 0.5) == pytest.approx(0.01)


class TestBestPrice:
    """Tests for best_price."""

    def test_buy_takes_lowest_ask(self):
        book = {"asks": [{"price": "0.55"}, {"price": "0.52"}], "bids": [{"price": "0.50"}]}
        assert best_price(book, TradeSide.BUY, 0.9) == pytest.approx(0.52)

    def test_sell_takes_highest_bid(self):
        book = SimpleNamespace(
            bids=[SimpleNamespace(price="0.45"), SimpleNamespace(price="0.48")],
            asks=[],
        )
        assert best_price(book, TradeSide.SELL, 0.1) == pytest.approx(0.48)

    def test_empty_side_raises(self):
        with pytest.raises(NoLiquidityError, match="No asks available"):
            best_price({"asks": [], "bids": [{"price": "0.5"}]}, TradeSide.BUY, 0.5)
        with pytest.raises(NoLiquidityError, match="No bids available"):
            best_price({"asks": [{"price": "0.5"}]}, TradeSide.SELL, 0.5)

    def test_unpriced_levels_fall_back(self):
        assert best_price({"asks": [{"price": None}]}, TradeSide.BUY, 0.42) == pytest.approx(0.42)


class TestOrderResponse:
    """Tests for response checking and order id extraction."""

    def test_success(self):
        response = {"success": True, "orderID": "0xabc"}
        assert check_order_response(response) is response

    def test_error_message_preferred(self):
        with pytest.raises(OrderRejectedError) as excinfo:
            check_order_response({"success": False, "errorMsg": "not enough balance / allowance"})
        assert str(excinfo.value) == "Order placement failed: not enough balance / allowance"
        assert excinfo.value.venue_message == "not enough balance / allowance"

    def test_success_with_error_rejected(self):
        with pytest.raises(OrderRejectedError, match="market closed"):
            check_order_response({"success": True, "error": "market closed"})

    def test_unknown_error(self):
        with pytest.raises(OrderRejectedError, match="Unknown error"):
            check_order_response(None)

    def test_extract_order_id(self):
        assert extract_order_id({"orderID": "a"}) == "a"
        assert extract_order_id({"order_id": "b"}) == "b"
        assert extract_order_id({"id": 7}) == "7"
        assert extract_order_id({}) is None
        assert extract_order_id("oops") is None


class TestTradeExecutor:
    """Tests for TradeExecutor."""

    def _executor(self, settings, client=None, **kwargs):
        client = client or FakeClobClient()
        sleep = RecordingSleep()
        executor = TradeExecutor(client, settings, sleep=sleep, **kwargs)
        return executor, client, sleep

    def test_market_minimum_for_fok(self, make_settings):
        executor, _, _ = self._executor(make_settings(order_type="FOK", min_trade_size=5))
        assert executor.calculate_copy_size(5) == 1

    def test_configured_minimum_for_limit(self, make_settings):
        executor, _, _ = self._executor(make_settings(order_type="LIMIT", min_trade_size=5))
        assert executor.calculate_copy_size(5) == 5

    def test_validate_price_uses_tick(self, make_settings):
        executor, _, _ = self._executor(make_settings())
        assert asyncio.run(executor.validate_price(0.4567, "tok1")) == pytest.approx(0.46)
        assert asyncio.run(executor.validate_price(0.999, "tok1")) == pytest.approx(0.99)

    def test_fok_buy(self, make_settings, make_trade):
        """Test the FOK path: best ask plus slippage, notional as amount."""
        executor, client, _ = self._executor(make_settings(), FakeClobClient(asks=("0.52", "0.50")))

        result = asyncio.run(executor.execute_copy_trade(make_trade()))

        assert result.order_id == "0xorder"
        assert result.copy_notional == 50
        assert result.price == pytest.approx(0.51)
        assert result.copy_shares == pytest.approx(98.0392)
        assert result.order_type == CopyOrderType.FOK
        assert result.status == "matched"

        order_args, options = client.market_orders[0]
        assert order_args.amount == 50
        assert order_args.side == "BUY"
        assert order_args.price == pytest.approx(0.51)
        assert options.tick_size == "0.01"
        assert options.neg_risk is False
        assert len(client.posted) == 1
        assert client.limit_orders == []

    def test_explicit_copy_notional(self, make_settings, make_trade):
        executor, client, _ = self._executor(make_settings())

        result = asyncio.run(executor.execute_copy_trade(make_trade(), copy_notional=10))

        assert result.copy_notional == 10
        assert client.market_orders[0][0].amount == 10

    def test_limit_order(self, make_settings, make_trade):
        executor, client, _ = self._executor(make_settings(order_type="LIMIT"))

        result = asyncio.run(executor.execute_copy_trade(make_trade()))

        assert result.order_type == CopyOrderType.LIMIT
        order_args, _ = client.limit_orders[0]
        assert order_args.size == pytest.approx(result.copy_shares)
        assert order_args.price == pytest.approx(0.51)
        assert client.market_orders == []

    def test_neg_risk_market_options(self, make_settings, make_trade):
        client = FakeClobClient(neg_risk=True, tick_size="0.001")
        executor, _, _ = self._executor(make_settings(), client)

        asyncio.run(executor.execute_copy_trade(make_trade()))

        _, options = client.market_orders[0]
        assert options.neg_risk is True
        assert options.tick_size == "0.001"

    def test_no_liquidity(self, make_settings, make_trade):
        executor, client, _ = self._executor(make_settings(), FakeClobClient(asks=()))

        with pytest.raises(NoLiquidityError):
            asyncio.run(executor.execute_copy_trade(make_trade()))
        assert client.posted == []

    def test_insufficient_clob_balance(self, make_settings, make_trade):
        executor, client, _ = self._executor(make_settings(), FakeClobClient(balance=5_000_000))

        with pytest.raises(InsufficientFundsError, match="CLOB balance"):
            asyncio.run(executor.execute_copy_trade(make_trade()))
        assert client.market_orders == []

    def test_missing_exchange_allowance(self, make_settings, make_trade):
        """Test that a neg-risk market checks the neg-risk exchange allowance."""
        client = FakeClobClient(neg_risk=True)
        client.allowances[NEG_RISK_CTF_EXCHANGE] = "0"
        executor, _, _ = self._executor(make_settings(), client)

        with pytest.raises(InsufficientFundsError, match="allowance"):
            asyncio.run(executor.execute_copy_trade(make_trade()))

    def test_on_chain_check_runs_first(self, make_settings, make_trade):
        class Allowances:
            def __init__(self):
                self.calls = []

            def check_collateral(self, amount, exchange):
                self.calls.append((amount, exchange))
                raise InsufficientFundsError("not enough balance / allowance (USDC.e balance 0)")

        allowances = Allowances()
        executor, client, _ = self._executor(make_settings(), allowance_manager=allowances)

        with pytest.raises(InsufficientFundsError, match="USDC.e"):
            asyncio.run(executor.execute_copy_trade(make_trade()))
        assert allowances.calls[0][0] == 50
        assert client.market_orders == []

    def test_rejection_not_retried(self, make_settings, make_trade):
        client = FakeClobClient()
        client.post_responses = [{"success": False, "errorMsg": "invalid amount"}]
        executor, _, sleep = self._executor(make_settings(), client)

        with pytest.raises(OrderRejectedError, match="invalid amount"):
            asyncio.run(executor.execute_copy_trade(make_trade()))
        assert len(client.posted) == 1
        assert sleep.delays == []

    def test_transient_failure_retried(self, make_settings, make_trade):
        client = FakeClobClient()
        client.post_responses = [
            ConnectionError("connection reset"),
            {"success": True, "orderID": "0xretry", "status": "live"},
        ]
        executor, _, sleep = self._executor(make_settings(), client)

        result = asyncio.run(executor.execute_copy_trade(make_trade()))

        assert result.order_id == "0xretry"
        assert len(client.posted) == 2
        assert sleep.delays == [1.0]

    def test_cancel_all_orders(self, make_settings):
        executor, client, _ = self._executor(make_settings())

        assert asyncio.run(executor.cancel_all_orders()) == {"canceled": ["0xorder"]}
        assert client.cancelled

    def test_cache_stats(self, make_settings):
        executor, _, _ = self._executor(make_settings())
        asyncio.run(executor.market_cache.get("tok1"))

        assert executor.get_cache_stats()["size"] == 1
        executor.clear_cache()
        assert executor.get_cache_stats()["size"] == 0
