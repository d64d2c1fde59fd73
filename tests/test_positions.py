"""
Tests for position tracking and risk checks.

Tests cover:
- parse_position_snapshot: field fallbacks and defaults
- PositionTracker: snapshot loading, fills, clamping
- RiskManager: session and per-market caps
"""

import pytest

from polymarket_copybot.models import CopyExecutionResult, TradeSide
from polymarket_copybot.positions import PositionTracker, parse_position_snapshot
from polymarket_copybot.risk import RiskManager


class TestParsePositionSnapshot:
    """Tests for snapshot row normalization."""

    def test_primary_fields(self):
        state = parse_position_snapshot({
            "asset": "tok1",
            "conditionId": "0xc1",
            "outcome": "No",
            "size": "200",
            "initialValue": "90",
            "avgPrice": "0.45",
        })

        assert state.token_id == "tok1"
        assert state.market == "0xc1"
        assert state.outcome == "No"
        assert state.shares == 200
        assert state.notional == 90
        assert state.avg_price == pytest.approx(0.45)

    def test_fallback_fields_and_derived_price(self):
        """Test alternate keys and avg price derived from notional / shares."""
        state = parse_position_snapshot({
            "token_id": "tok2",
            "market": "0xc2",
            "quantity": 50,
            "usdcValue": 30,
        })

        assert state.token_id == "tok2"
        assert state.market == "0xc2"
        assert state.outcome == "YES"
        assert state.avg_price == pytest.approx(0.6)

    def test_missing_token_id(self):
        assert parse_position_snapshot({"size": 10}) is None

    def test_garbage_numbers_become_zero(self):
        state = parse_position_snapshot({"asset": "tok3", "size": "abc", "initialValue": None})

        assert state.shares == 0
        assert state.notional == 0
        assert state.avg_price == 0

    def test_negative_values_clamped(self):
        state = parse_position_snapshot({"asset": "tok4", "size": -5, "initialValue": -2})

        assert state.shares == 0
        assert state.notional == 0


class TestPositionTracker:
    """Tests for PositionTracker."""

    def test_load_snapshot_counts(self):
        tracker = PositionTracker()
        loaded, skipped = tracker.load_snapshot([
            {"asset": "tok1", "size": 10, "initialValue": 5},
            {"size": 3},
            {"asset": "tok2", "size": 4, "initialValue": 2},
        ])

        assert (loaded, skipped) == (2, 1)
        assert tracker.get_total_notional() == pytest.approx(7)

    def test_buys_accumulate_weighted_average(self):
        tracker = PositionTracker()
        tracker.record_fill("tok1", TradeSide.BUY, shares=100, notional=50)
        clamped = tracker.record_fill("tok1", TradeSide.BUY, shares=100, notional=70)

        position = tracker.get_position("tok1")
        assert not clamped
        assert position.shares == pytest.approx(200)
        assert position.notional == pytest.approx(120)
        assert position.avg_price == pytest.approx(0.6)

    def test_sell_reduces_position(self):
        tracker = PositionTracker()
        tracker.record_fill("tok1", TradeSide.BUY, shares=100, notional=50)
        clamped = tracker.record_fill("tok1", TradeSide.SELL, shares=40, notional=20)

        position = tracker.get_position("tok1")
        assert not clamped
        assert position.shares == pytest.approx(60)
        assert position.notional == pytest.approx(30)

    def test_oversell_is_clamped_and_reported(self):
        """Test that a fill driving the position negative clamps to zero."""
        tracker = PositionTracker()
        tracker.record_fill("tok1", TradeSide.BUY, shares=10, notional=5)
        clamped = tracker.record_fill("tok1", TradeSide.SELL, shares=25, notional=12)

        position = tracker.get_position("tok1")
        assert clamped
        assert position.shares == 0
        assert position.notional == 0
        assert position.avg_price == 0

    def test_fill_keeps_known_market_and_outcome(self):
        tracker = PositionTracker()
        tracker.record_fill("tok1", TradeSide.BUY, 10, 5, market="0xc1", outcome="YES")
        tracker.record_fill("tok1", TradeSide.BUY, 10, 5)

        position = tracker.get_position("tok1")
        assert position.market == "0xc1"
        assert position.outcome == "YES"

    def test_replace_all_drops_local_state(self):
        tracker = PositionTracker()
        tracker.record_fill("local", TradeSide.BUY, 10, 5)

        tracker.replace_all([{"asset": "venue", "size": 1, "initialValue": 0.5}])

        assert tracker.get_position("local") is None
        assert tracker.get_notional("venue") == pytest.approx(0.5)
        assert tracker.get_notional("unknown") == 0


class TestRiskManager:
    """Tests for RiskManager."""

    def _result(self, trade, notional, shares=None):
        return CopyExecutionResult(
            order_id="0xorder",
            copy_notional=notional,
            copy_shares=shares if shares is not None else notional * 2,
            price=0.5,
            side=trade.side,
            token_id=trade.token_id,
        )

    def test_zero_notional_rejected(self, make_trade):
        risk = RiskManager(PositionTracker())
        result = risk.check_trade(make_trade(), 0)

        assert not result.allowed
        assert result.reason == "Copy notional is <= 0"

    def test_no_caps_allows_everything(self, make_trade):
        risk = RiskManager(PositionTracker())
        assert risk.check_trade(make_trade(), 1_000_000).allowed

    def test_session_cap(self, make_trade):
        """Test that the second 300 USDC fill breaks a 500 USDC session cap."""
        risk = RiskManager(PositionTracker(), max_session_notional=500)
        trade = make_trade()

        assert risk.check_trade(trade, 300).allowed
        risk.record_fill(trade, self._result(trade, 300))

        check = risk.check_trade(make_trade(token_id="other"), 300)
        assert not check.allowed
        assert check.reason.startswith("Session notional cap exceeded")
        assert risk.session_notional == pytest.approx(300)

    def test_session_cap_allows_exact_limit(self, make_trade):
        risk = RiskManager(PositionTracker(), max_session_notional=500)
        trade = make_trade()
        risk.record_fill(trade, self._result(trade, 300))

        assert risk.check_trade(trade, 200).allowed

    def test_per_market_cap(self, make_trade):
        positions = PositionTracker()
        risk = RiskManager(positions, max_per_market_notional=100)
        trade = make_trade()
        risk.record_fill(trade, self._result(trade, 80))

        check = risk.check_trade(trade, 30)
        assert not check.allowed
        assert check.reason.startswith("Per-market notional cap exceeded")

        assert risk.check_trade(make_trade(token_id="other"), 30).allowed

    def test_check_has_no_side_effects(self, make_trade):
        risk = RiskManager(PositionTracker(), max_session_notional=500)
        risk.check_trade(make_trade(), 300)
        risk.check_trade(make_trade(), 300)

        assert risk.session_notional == 0

    def test_record_fill_updates_positions(self, make_trade):
        positions = PositionTracker()
        risk = RiskManager(positions)
        trade = make_trade()

        clamped = risk.record_fill(trade, self._result(trade, 10, shares=20))

        position = positions.get_position(trade.token_id)
        assert not clamped
        assert position.shares == pytest.approx(20)
        assert position.market == trade.market
        assert position.outcome == "YES"
