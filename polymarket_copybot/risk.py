"""
Risk gate for copy trades.

Applies the session notional cap and the per-market notional cap before
any order is sent. A cap of 0 disables that check.
"""

import logging

from .models import CopyExecutionResult, RiskCheckResult, Trade
from .positions import PositionTracker

logger = logging.getLogger(__name__)


class RiskManager:
    """Admission control in front of the executor."""

    def __init__(
        self,
        positions: PositionTracker,
        max_session_notional: float = 0.0,
        max_per_market_notional: float = 0.0,
    ):
        self.positions = positions
        self.max_session_notional = max_session_notional
        self.max_per_market_notional = max_per_market_notional
        self._session_notional = 0.0

    @property
    def session_notional(self) -> float:
        return self._session_notional

    def check_trade(self, trade: Trade, copy_notional: float) -> RiskCheckResult:
        """Check a prospective copy against the caps. Has no side effects."""
        if copy_notional <= 0:
            return RiskCheckResult(False, "Copy notional is <= 0")

        if self.max_session_notional > 0:
            next_session = self._session_notional + copy_notional
            if next_session > self.max_session_notional:
                return RiskCheckResult(
                    False,
                    f"Session notional cap exceeded ({next_session:.2f} > {self.max_session_notional})",
                )

        if self.max_per_market_notional > 0:
            next_market = self.positions.get_notional(trade.token_id) + copy_notional
            if next_market > self.max_per_market_notional:
                return RiskCheckResult(
                    False,
                    f"Per-market notional cap exceeded ({next_market:.2f} > {self.max_per_market_notional})",
                )

        return RiskCheckResult(True)

    def record_fill(self, trade: Trade, result: CopyExecutionResult) -> bool:
        """
        Account for an executed copy.

        Returns:
            True if the position tracker had to clamp the fill
        """
        self._session_notional += result.copy_notional
        return self.positions.record_fill(
            token_id=trade.token_id,
            side=result.side,
            shares=result.copy_shares,
            notional=result.copy_notional,
            market=trade.market,
            outcome=trade.outcome.value,
        )
