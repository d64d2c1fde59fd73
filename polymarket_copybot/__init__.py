"""
Polymarket Copy Trading Bot.

Watches a target wallet through the data API and the CLOB WebSocket and
copies its BUY trades with independent sizing and risk caps.

Usage:
    python -m polymarket_copybot              # Run the bot
    python -m polymarket_copybot status       # Show configuration and balances
"""

from .config import Settings, load_settings
from .executor import TradeExecutor, calculate_copy_size, round_to_tick_size
from .market_cache import MarketMetadataCache
from .models import CopyExecutionResult, PositionState, Trade, TradeOutcome, TradeSide
from .monitor import RestTradeMonitor
from .orchestrator import CopyDecision, CopyOrchestrator
from .positions import PositionTracker
from .risk import RiskManager
from .ws_monitor import PushTradeMonitor

__version__ = "1.0.0"
__all__ = [
    "Settings",
    "load_settings",
    "TradeExecutor",
    "calculate_copy_size",
    "round_to_tick_size",
    "MarketMetadataCache",
    "CopyExecutionResult",
    "PositionState",
    "Trade",
    "TradeOutcome",
    "TradeSide",
    "RestTradeMonitor",
    "CopyDecision",
    "CopyOrchestrator",
    "PositionTracker",
    "RiskManager",
    "PushTradeMonitor",
]
