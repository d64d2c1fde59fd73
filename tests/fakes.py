"""
In-process stand-ins for the CLOB SDK, the WebSocket feed and asyncio.sleep.
"""

import asyncio
from types import SimpleNamespace

from polymarket_copybot.config import CTF_EXCHANGE_ADDRESS, NEG_RISK_CTF_EXCHANGE

TARGET_WALLET = "0xAbC0000000000000000000000000000000000001"
TEST_PRIVATE_KEY = "0x" + "11" * 32


class FakeClobClient:
    """Stands in for py_clob_client.ClobClient."""

    def __init__(
        self,
        tick_size="0.01",
        neg_risk=False,
        fee_rate_bps=0,
        bids=("0.48",),
        asks=("0.50",),
        balance=1_000_000_000,
        allowance="1000000000",
    ):
        self.tick_size = tick_size
        self.neg_risk = neg_risk
        self.fee_rate_bps = fee_rate_bps
        self.bids = [SimpleNamespace(price=p, size="100") for p in bids]
        self.asks = [SimpleNamespace(price=p, size="100") for p in asks]
        self.balance = balance
        self.allowances = {
            CTF_EXCHANGE_ADDRESS: allowance,
            NEG_RISK_CTF_EXCHANGE: allowance,
        }

        # Responses (or exceptions) handed out by order submissions, in order
        self.post_responses = []
        self.market_orders = []
        self.limit_orders = []
        self.posted = []
        self.metadata_calls = 0
        self.cancelled = False

        self.fail_tick_size = False
        self.fail_neg_risk = False

    def get_tick_size(self, token_id):
        self.metadata_calls += 1
        if self.fail_tick_size:
            raise ConnectionError("tick size unavailable")
        return self.tick_size

    def get_neg_risk(self, token_id):
        if self.fail_neg_risk:
            raise ConnectionError("neg risk unavailable")
        return self.neg_risk

    def get_fee_rate_bps(self, token_id):
        return self.fee_rate_bps

    def get_order_book(self, token_id):
        return SimpleNamespace(bids=list(self.bids), asks=list(self.asks))

    def get_balance_allowance(self, params):
        return {"balance": str(self.balance), "allowances": dict(self.allowances)}

    def _next_response(self):
        if self.post_responses:
            response = self.post_responses.pop(0)
        else:
            response = {"success": True, "orderID": "0xorder", "status": "matched"}
        if isinstance(response, BaseException):
            raise response
        return response

    def create_market_order(self, order_args, options=None):
        self.market_orders.append((order_args, options))
        return {"signed": order_args}

    def post_order(self, signed, order_type=None):
        self.posted.append((signed, order_type))
        return self._next_response()

    def create_and_post_order(self, order_args, options=None):
        self.limit_orders.append((order_args, options))
        return self._next_response()

    def cancel_all(self):
        self.cancelled = True
        return {"canceled": ["0xorder"]}


class FakeWebSocket:
    """Minimal websockets connection: scripted inbox, recorded sends."""

    def __init__(self):
        self.sent = []
        self.inbox = asyncio.Queue()
        self.closed = False

    async def send(self, data):
        self.sent.append(data)

    async def recv(self):
        item = await self.inbox.get()
        if isinstance(item, BaseException):
            raise item
        return item

    async def close(self):
        self.closed = True


class FakeConnector:
    """Injected in place of websockets.connect."""

    def __init__(self, failures=0):
        self.failures = failures
        self.urls = []
        self.sockets = []

    async def __call__(self, url, timeout):
        self.urls.append(url)
        if self.failures > 0:
            self.failures -= 1
            raise ConnectionRefusedError("connection refused")
        ws = FakeWebSocket()
        self.sockets.append(ws)
        return ws


class RecordingSleep:
    """Async sleep replacement that records delays and returns immediately."""

    def __init__(self):
        self.delays = []

    async def __call__(self, delay):
        self.delays.append(delay)


async def settle(rounds=50):
    """Let pending tasks run."""
    for _ in range(rounds):
        await asyncio.sleep(0)
