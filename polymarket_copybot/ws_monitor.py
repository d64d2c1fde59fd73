"""
WebSocket trade monitor for the target wallet.

Subscribes to the Polymarket CLOB push feed and turns last_trade_price
events in which the target wallet is maker or taker into Trades.

Two channel modes, fixed for the monitor's lifetime:
- market: subscribes to token ids, no auth
- user:   subscribes to condition ids, needs L2 API credentials

The socket is opened lazily once there is something to subscribe to, and
re-opened with exponential backoff when it drops. If it gives up, the REST
monitor keeps working.
"""

import asyncio
import json
import logging
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Iterable, Optional

import websockets

from .errors import ConfigurationError
from .models import Trade, TradeOutcome, TradeSide, now_ms

logger = logging.getLogger(__name__)

WS_BASE_URL = "wss://ws-subscriptions-clob.polymarket.com/ws"

PING_INTERVAL = 10.0
CONNECT_TIMEOUT = 10.0
MAX_RECONNECT_ATTEMPTS = 10
RECONNECT_BASE_DELAY = 1.0
MAX_RECONNECT_DELAY = 60.0

MARKET_CHANNEL = "market"
USER_CHANNEL = "user"


class ConnectionState(Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


def compute_reconnect_delay(
    attempt: int,
    base_delay: float = RECONNECT_BASE_DELAY,
    max_delay: float = MAX_RECONNECT_DELAY,
) -> float:
    """Backoff before reconnect attempt N (1-based)."""
    return min(base_delay * 2 ** (attempt - 1), max_delay)


def parse_last_trade_price(event: Dict[str, Any], target_wallet: str) -> Optional[Trade]:
    """
    Normalize a last_trade_price event into a Trade.

    Returns None unless the target wallet is the maker or the taker.

    Field lookup order:
        tx_hash:   transaction_hash, id, "ws-<now ms>"
        timestamp: timestamp (values below 1e12 are seconds), now if missing
        market:    market
        token_id:  asset_id

    Raises:
        KeyError / ValueError / TypeError on a malformed event
    """
    target = target_wallet.lower()
    maker = str(event.get("maker") or "").lower()
    taker = str(event.get("taker") or "").lower()
    if target not in (maker, taker):
        return None

    raw_timestamp = event.get("timestamp")
    timestamp = int(float(raw_timestamp)) if raw_timestamp not in (None, "") else now_ms()
    if timestamp < 1_000_000_000_000:
        timestamp *= 1000

    return Trade(
        tx_hash=str(event.get("transaction_hash") or event.get("id") or f"ws-{now_ms()}"),
        timestamp=timestamp,
        market=str(event.get("market") or ""),
        token_id=str(event["asset_id"]),
        side=TradeSide.parse(event["side"]),
        price=float(event["price"]),
        size=float(event["size"]),
        outcome=TradeOutcome.parse(event.get("outcome")),
    )


def _default_connect(url: str, open_timeout: float = CONNECT_TIMEOUT):
    # Keepalive is the venue's text PING, not protocol pings
    return websockets.connect(url, ping_interval=None, open_timeout=open_timeout)


class PushTradeMonitor:
    """
    Push-based trade feed.

    Handles:
    - Lazy connection and reconnection with backoff
    - Subscription bookkeeping (re-sent on every connect)
    - Text PING keepalive
    - Parsing of last_trade_price events
    """

    def __init__(
        self,
        target_wallet: str,
        ws_url: str = WS_BASE_URL,
        connect: Callable[..., Any] = _default_connect,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        ping_interval: float = PING_INTERVAL,
        connect_timeout: float = CONNECT_TIMEOUT,
        max_reconnect_attempts: int = MAX_RECONNECT_ATTEMPTS,
        reconnect_base_delay: float = RECONNECT_BASE_DELAY,
        max_reconnect_delay: float = MAX_RECONNECT_DELAY,
    ):
        self.target_wallet = target_wallet
        self.ws_url = ws_url.rstrip("/")
        self._connect_factory = connect
        self._sleep = sleep
        self.ping_interval = ping_interval
        self.connect_timeout = connect_timeout
        self.max_reconnect_attempts = max_reconnect_attempts
        self.reconnect_base_delay = reconnect_base_delay
        self.max_reconnect_delay = max_reconnect_delay

        self.channel = MARKET_CHANNEL
        self._auth: Optional[Dict[str, str]] = None
        self._on_trade: Optional[Callable[[Trade], Awaitable[None]]] = None

        self._ws = None
        self.state = ConnectionState.DISCONNECTED
        self.reconnect_attempts = 0
        self._closing = False

        self._subscribed_assets: Dict[str, None] = {}
        self._subscribed_markets: Dict[str, None] = {}

        self._connect_task: Optional[asyncio.Task] = None
        self._reconnect_task: Optional[asyncio.Task] = None
        self._ping_task: Optional[asyncio.Task] = None
        self._receive_task: Optional[asyncio.Task] = None

        self.trades_received = 0

    @property
    def is_connected(self) -> bool:
        return self.state == ConnectionState.CONNECTED and self._ws is not None

    @property
    def url(self) -> str:
        return f"{self.ws_url}/{self.channel}"

    def has_subscriptions(self) -> bool:
        if self.channel == USER_CHANNEL:
            return bool(self._subscribed_markets)
        return bool(self._subscribed_assets)

    async def initialize(
        self,
        on_trade: Callable[[Trade], Awaitable[None]],
        channel: str = MARKET_CHANNEL,
        auth: Optional[Dict[str, str]] = None,
        asset_ids: Iterable[str] = (),
        market_ids: Iterable[str] = (),
    ) -> None:
        """
        Configure the feed and connect if there is anything to subscribe to.

        Args:
            on_trade: Awaited for each matching trade
            channel: "market" or "user"
            auth: {"apiKey", "secret", "passphrase"}; required for user mode
            asset_ids: Initial token ids (market mode)
            market_ids: Initial condition ids (user mode)

        Raises:
            ConfigurationError: user channel without auth
            Exception: the initial connection failed
        """
        if channel not in (MARKET_CHANNEL, USER_CHANNEL):
            raise ConfigurationError(f"Unknown WebSocket channel: {channel}")
        if channel == USER_CHANNEL and not auth:
            raise ConfigurationError("User channel requires WebSocket auth (apiKey/secret/passphrase)")

        self._on_trade = on_trade
        self.channel = channel
        self._auth = auth
        self._closing = False

        if channel == MARKET_CHANNEL:
            self._subscribed_assets.update(dict.fromkeys(asset_ids))
        else:
            self._subscribed_markets.update(dict.fromkeys(market_ids))

        if not self.has_subscriptions():
            logger.info("WebSocket waiting for first subscription before connecting")
            return

        await self.ensure_connected()

    # ------------------------------------------------------------------
    # Connection
    # ------------------------------------------------------------------

    async def _open(self):
        return await self._connect_factory(self.url, self.connect_timeout)

    async def _connect(self) -> None:
        logger.info(f"Connecting to Polymarket WebSocket ({self.channel} channel)...")
        self.state = ConnectionState.CONNECTING
        try:
            ws = await asyncio.wait_for(self._open(), timeout=self.connect_timeout)
        except asyncio.TimeoutError:
            self.state = ConnectionState.DISCONNECTED
            raise TimeoutError("WebSocket connection timeout")
        except Exception:
            self.state = ConnectionState.DISCONNECTED
            raise

        if self._closing:
            await ws.close()
            self.state = ConnectionState.DISCONNECTED
            return

        self._ws = ws
        self.state = ConnectionState.CONNECTED
        self.reconnect_attempts = 0
        logger.info("WebSocket connected")

        await self._send_initial_subscribe()
        self._ping_task = asyncio.create_task(self._ping_loop())
        self._receive_task = asyncio.create_task(self._receive_loop(ws))

    async def ensure_connected(self) -> None:
        """Connect unless already connected; concurrent callers share one attempt."""
        if self.is_connected:
            return
        if self._connect_task is None or self._connect_task.done():
            self._connect_task = asyncio.create_task(self._connect())
        task = self._connect_task
        try:
            await task
        finally:
            if self._connect_task is task and task.done():
                self._connect_task = None

    async def _connect_or_schedule(self) -> None:
        if self._reconnect_task and not self._reconnect_task.done():
            return
        try:
            await self.ensure_connected()
        except Exception as e:
            logger.error(f"WebSocket connection failed: {e}")
            self._schedule_reconnect()

    def _schedule_reconnect(self) -> None:
        if self._closing or not self.has_subscriptions():
            return
        if self.reconnect_attempts >= self.max_reconnect_attempts:
            logger.error("Max reconnection attempts reached. Giving up on WebSocket.")
            return

        self.reconnect_attempts += 1
        delay = compute_reconnect_delay(
            self.reconnect_attempts, self.reconnect_base_delay, self.max_reconnect_delay
        )
        logger.info(
            f"Reconnecting in {delay:.1f}s "
            f"(attempt {self.reconnect_attempts}/{self.max_reconnect_attempts})..."
        )
        self._reconnect_task = asyncio.create_task(self._reconnect_after(delay))

    async def _reconnect_after(self, delay: float) -> None:
        await self._sleep(delay)
        if self._closing:
            return
        try:
            await self.ensure_connected()
        except Exception as e:
            logger.error(f"Reconnection failed: {e}")
            self._schedule_reconnect()

    def _handle_disconnect(self, reason: str) -> None:
        logger.warning(f"WebSocket disconnected ({reason})")
        self._ws = None
        self.state = ConnectionState.DISCONNECTED
        if self._ping_task:
            self._ping_task.cancel()
            self._ping_task = None
        if not self._closing:
            self._schedule_reconnect()

    # ------------------------------------------------------------------
    # Subscriptions
    # ------------------------------------------------------------------

    def _build_auth(self) -> Optional[Dict[str, str]]:
        if not self._auth:
            return None
        return {
            "apikey": self._auth["apiKey"],
            "apiKey": self._auth["apiKey"],
            "secret": self._auth["secret"],
            "passphrase": self._auth["passphrase"],
        }

    async def _send(self, payload) -> None:
        if self._ws is None:
            return
        await self._ws.send(payload if isinstance(payload, str) else json.dumps(payload))

    async def _send_initial_subscribe(self) -> None:
        if self.channel == MARKET_CHANNEL:
            if not self._subscribed_assets:
                return
            payload = {"type": MARKET_CHANNEL, "assets_ids": list(self._subscribed_assets)}
        else:
            if not self._subscribed_markets:
                return
            payload = {
                "type": USER_CHANNEL,
                "markets": list(self._subscribed_markets),
                "auth": self._build_auth(),
            }
        await self._send(payload)

    async def subscribe_to_market(self, token_id: str) -> None:
        """Subscribe to trades of one token (market channel)."""
        if self.channel != MARKET_CHANNEL:
            logger.warning(f"subscribe_to_market ignored (current channel: {self.channel})")
            return
        if token_id in self._subscribed_assets:
            return

        self._subscribed_assets[token_id] = None
        if not self.is_connected:
            logger.info(f"Queued market subscription for {token_id}; connecting websocket")
            await self._connect_or_schedule()
            return

        await self._send({"assets_ids": [token_id], "operation": "subscribe"})
        logger.info(f"Subscribed to market: {token_id}")

    async def subscribe_to_condition(self, condition_id: str) -> None:
        """Subscribe to the wallet's fills in one condition (user channel)."""
        if self.channel != USER_CHANNEL:
            logger.warning(f"subscribe_to_condition ignored (current channel: {self.channel})")
            return
        if condition_id in self._subscribed_markets:
            return

        self._subscribed_markets[condition_id] = None
        if not self.is_connected:
            logger.info(f"Queued user-channel subscription for {condition_id}; connecting websocket")
            await self._connect_or_schedule()
            return

        await self._send({
            "markets": [condition_id],
            "operation": "subscribe",
            "auth": self._build_auth(),
        })
        logger.info(f"Subscribed to market (user channel): {condition_id}")

    async def unsubscribe_from_market(self, token_id: str) -> None:
        if self.channel != MARKET_CHANNEL or not self.is_connected:
            return
        await self._send({"assets_ids": [token_id], "operation": "unsubscribe"})
        self._subscribed_assets.pop(token_id, None)
        logger.info(f"Unsubscribed from market: {token_id}")

    async def unsubscribe_from_condition(self, condition_id: str) -> None:
        if self.channel != USER_CHANNEL or not self.is_connected:
            return
        await self._send({
            "markets": [condition_id],
            "operation": "unsubscribe",
            "auth": self._build_auth(),
        })
        self._subscribed_markets.pop(condition_id, None)
        logger.info(f"Unsubscribed from market (user channel): {condition_id}")

    # ------------------------------------------------------------------
    # Receiving
    # ------------------------------------------------------------------

    async def _ping_loop(self) -> None:
        while self.is_connected:
            await asyncio.sleep(self.ping_interval)
            if not self.is_connected:
                break
            try:
                await self._send("PING")
            except Exception as e:
                logger.debug(f"Keepalive failed: {e}")
                break

    async def _receive_loop(self, ws) -> None:
        reason = "closed"
        try:
            while True:
                message = await ws.recv()
                await self._handle_message(message)
        except websockets.ConnectionClosed as e:
            reason = f"code={getattr(e, 'code', None)}, reason={getattr(e, 'reason', '') or 'no reason'}"
        except asyncio.CancelledError:
            raise
        except Exception as e:
            reason = f"error: {e}"

        if self._ws is ws:
            self._handle_disconnect(reason)

    async def _handle_message(self, data) -> None:
        if isinstance(data, bytes):
            data = data.decode("utf-8", errors="replace")

        if not data or data == "PING":
            await self._send("PONG")
            return
        if data == "PONG":
            return

        try:
            message = json.loads(data)
        except json.JSONDecodeError:
            logger.warning(f"Invalid JSON: {data[:100]}")
            return

        events = message if isinstance(message, list) else [message]
        for event in events:
            if not isinstance(event, dict):
                continue
            if event.get("event") == "ping":
                await self._send({"event": "pong"})
                continue
            if event.get("event_type") == "last_trade_price":
                await self._handle_trade_event(event)

    async def _handle_trade_event(self, event: Dict[str, Any]) -> None:
        try:
            trade = parse_last_trade_price(event, self.target_wallet)
        except (KeyError, ValueError, TypeError) as e:
            logger.warning(f"Error handling trade message: {e}")
            return
        if trade is None:
            return

        self.trades_received += 1
        logger.info(f"WebSocket trade detected: {trade.describe()}")
        if self._on_trade:
            await self._on_trade(trade)

    # ------------------------------------------------------------------
    # Shutdown / status
    # ------------------------------------------------------------------

    async def close(self) -> None:
        """Stop keepalive, cancel any pending reconnect and close the socket."""
        self._closing = True
        current = asyncio.current_task()
        for task in (self._reconnect_task, self._ping_task, self._receive_task, self._connect_task):
            if task and task is not current and not task.done():
                task.cancel()
        self._reconnect_task = None
        self._ping_task = None
        self._receive_task = None
        self._connect_task = None

        ws, self._ws = self._ws, None
        self.state = ConnectionState.DISCONNECTED
        if ws is not None:
            try:
                await ws.close()
            except Exception as e:
                logger.debug(f"Error closing WebSocket: {e}")
        logger.info("WebSocket connection closed")

    def connection_status(self) -> Dict[str, Any]:
        return {
            "connected": self.is_connected,
            "state": self.state.value,
            "channel": self.channel,
            "subscribed_assets": len(self._subscribed_assets),
            "subscribed_markets": len(self._subscribed_markets),
            "reconnect_attempts": self.reconnect_attempts,
        }
