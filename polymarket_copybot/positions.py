"""
Position tracking for copied trades.

Keeps shares and cost basis per token id. Seeded from the venue's
position snapshot at startup and updated by every fill the bot makes.
"""

import logging
from typing import Any, Dict, Iterable, List, Optional, Tuple

from .models import PositionState, TradeSide, now_ms

logger = logging.getLogger(__name__)


def _parse_number(value: Any) -> float:
    try:
        n = float(value)
    except (TypeError, ValueError):
        return 0.0
    if n != n or n in (float("inf"), float("-inf")):
        return 0.0
    return n


def _first(raw: Dict[str, Any], *keys: str) -> Any:
    for key in keys:
        value = raw.get(key)
        if value is not None and value != "":
            return value
    return None


def parse_position_snapshot(raw: Dict[str, Any]) -> Optional[PositionState]:
    """
    Normalize one row of a venue position snapshot.

    Field lookup order:
        token id:  asset, asset_id, token_id, tokenId, assetId
        market:    conditionId, condition_id, market, market_id
        outcome:   outcome, side (default YES)
        shares:    size, quantity, shares, balance, position
        notional:  initialValue, usdcValue, notional, usdc, value, collateral
        avg price: avgPrice, averagePrice, entryPrice, price,
                   then |notional / shares|

    Returns:
        PositionState, or None when the row carries no token id
    """
    if not isinstance(raw, dict):
        return None

    token_id = _first(raw, "asset", "asset_id", "token_id", "tokenId", "assetId")
    if not token_id:
        return None

    market = _first(raw, "conditionId", "condition_id", "market", "market_id") or ""
    outcome = _first(raw, "outcome", "side") or "YES"

    shares = _parse_number(_first(raw, "size", "quantity", "shares", "balance", "position"))
    notional = _parse_number(_first(raw, "initialValue", "usdcValue", "notional", "usdc", "value", "collateral"))
    avg_price = _parse_number(_first(raw, "avgPrice", "averagePrice", "entryPrice", "price"))
    if not avg_price and shares > 0:
        avg_price = abs(notional / shares)

    return PositionState(
        token_id=str(token_id),
        market=str(market),
        outcome=str(outcome),
        shares=max(0.0, shares),
        notional=max(0.0, notional),
        avg_price=avg_price,
    )


class PositionTracker:
    """Ledger of current exposure per instrument."""

    def __init__(self):
        self._positions: Dict[str, PositionState] = {}

    def load_snapshot(self, rows: Iterable[Dict[str, Any]]) -> Tuple[int, int]:
        """
        Seed positions from a venue snapshot.

        Returns:
            (loaded, skipped)
        """
        loaded = 0
        skipped = 0
        for raw in rows or []:
            state = parse_position_snapshot(raw)
            if state is None:
                skipped += 1
                continue
            self._positions[state.token_id] = state
            loaded += 1
        return loaded, skipped

    def record_fill(
        self,
        token_id: str,
        side: TradeSide,
        shares: float,
        notional: float,
        market: str = "",
        outcome: str = "UNKNOWN",
    ) -> bool:
        """
        Apply a signed fill.

        BUY adds shares and notional, SELL subtracts them. Results are
        clamped at zero.

        Returns:
            True if the fill had to be clamped, meaning the local view
            disagrees with the venue and should be resynced.
        """
        existing = self._positions.get(token_id)
        sign = 1 if side == TradeSide.BUY else -1

        next_shares = (existing.shares if existing else 0.0) + shares * sign
        next_notional = (existing.notional if existing else 0.0) + notional * sign
        clamped = next_shares < 0 or next_notional < 0

        if clamped:
            logger.warning(
                f"Fill for {token_id} would leave shares={next_shares:.4f} "
                f"notional={next_notional:.2f}; clamping to zero"
            )

        next_shares = max(0.0, next_shares)
        next_notional = max(0.0, next_notional)

        self._positions[token_id] = PositionState(
            token_id=token_id,
            market=market or (existing.market if existing else ""),
            outcome=existing.outcome if existing and outcome == "UNKNOWN" else outcome,
            shares=next_shares,
            notional=next_notional,
            avg_price=abs(next_notional / next_shares) if next_shares else 0.0,
            last_updated=now_ms(),
        )
        return clamped

    def get_position(self, token_id: str) -> Optional[PositionState]:
        return self._positions.get(token_id)

    def get_positions(self) -> List[PositionState]:
        return list(self._positions.values())

    def get_notional(self, token_id: str) -> float:
        position = self._positions.get(token_id)
        return position.notional if position else 0.0

    def get_total_notional(self) -> float:
        return sum(p.notional for p in self._positions.values())

    def replace_all(self, rows: Iterable[Dict[str, Any]]) -> Tuple[int, int]:
        """Drop local state and reload it from a fresh venue snapshot."""
        self._positions.clear()
        return self.load_snapshot(rows)
