import pytest

from fakes import TARGET_WALLET, TEST_PRIVATE_KEY, FakeClobClient
from polymarket_copybot.config import Settings
from polymarket_copybot.models import Trade, TradeOutcome, TradeSide


@pytest.fixture
def make_settings():
    def _make(**overrides):
        values = dict(
            target_wallet=TARGET_WALLET,
            private_key=TEST_PRIVATE_KEY,
            api_key="",
            api_secret="",
            api_passphrase="",
            position_multiplier=0.1,
            max_trade_size=100.0,
            min_trade_size=1.0,
            slippage_tolerance=0.02,
            order_type="FOK",
            max_session_notional=0.0,
            max_per_market_notional=0.0,
            poll_interval_ms=2000,
            use_websocket=False,
            use_user_channel=False,
            ws_asset_ids=[],
            ws_market_ids=[],
            log_file="",
        )
        values.update(overrides)
        return Settings(**values)

    return _make


@pytest.fixture
def make_trade():
    def _make(**overrides):
        values = dict(
            tx_hash="0xtrade1",
            timestamp=2_000_000_000_000,
            market="0xcondition",
            token_id="token-yes",
            side=TradeSide.BUY,
            price=0.5,
            size=500.0,
            outcome=TradeOutcome.YES,
        )
        values.update(overrides)
        return Trade(**values)

    return _make


@pytest.fixture
def clob():
    return FakeClobClient()
