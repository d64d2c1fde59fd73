"""
Core data types for the copy trading pipeline.
"""

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional


def now_ms() -> int:
    """Current wall-clock time in epoch milliseconds."""
    return int(time.time() * 1000)


class TradeSide(Enum):
    """Trade side - buying or selling"""
    BUY = "BUY"
    SELL = "SELL"

    @classmethod
    def parse(cls, value: Any) -> "TradeSide":
        return cls(str(value).strip().upper())


class TradeOutcome(Enum):
    """Outcome being traded"""
    YES = "YES"
    NO = "NO"
    UNKNOWN = "UNKNOWN"

    @classmethod
    def parse(cls, value: Any) -> "TradeOutcome":
        """Anything other than YES/NO normalizes to UNKNOWN."""
        normalized = str(value if value is not None else "").strip().upper()
        if normalized == "YES":
            return cls.YES
        if normalized == "NO":
            return cls.NO
        return cls.UNKNOWN


class CopyOrderType(Enum):
    """How copy orders are sent to the CLOB."""
    LIMIT = "LIMIT"  # Good till cancelled
    FOK = "FOK"      # Fill or kill
    FAK = "FAK"      # Fill and kill

    @property
    def is_market(self) -> bool:
        return self in (CopyOrderType.FOK, CopyOrderType.FAK)


@dataclass(frozen=True)
class Trade:
    """A trade made by the monitored wallet, as seen by one of the monitors."""
    tx_hash: str
    timestamp: int  # epoch millis
    market: str  # condition id
    token_id: str
    side: TradeSide
    price: float
    size: float  # USDC notional
    outcome: TradeOutcome = TradeOutcome.UNKNOWN

    def describe(self) -> str:
        return f"{self.side.value} {self.outcome.value} {self.size} USDC @ {self.price:.3f}"


@dataclass
class PositionState:
    """Exposure held in a single instrument."""
    token_id: str
    market: str = ""
    outcome: str = "UNKNOWN"
    shares: float = 0.0
    notional: float = 0.0
    avg_price: float = 0.0
    last_updated: int = field(default_factory=now_ms)


@dataclass
class MarketMetadata:
    """Per-instrument trading parameters from the CLOB."""
    tick_size: float = 0.01
    tick_size_str: str = "0.01"
    neg_risk: bool = False
    fee_rate_bps: int = 0
    fetched_at: float = field(default_factory=time.time)


@dataclass
class CopyExecutionResult:
    """Result of a copy order accepted by the venue"""
    order_id: str
    copy_notional: float
    copy_shares: float
    price: float
    side: TradeSide
    token_id: str
    order_type: CopyOrderType = CopyOrderType.FOK
    status: Optional[str] = None


@dataclass
class RiskCheckResult:
    allowed: bool
    reason: Optional[str] = None
