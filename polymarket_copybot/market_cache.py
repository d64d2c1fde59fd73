"""
Read-through cache of per-instrument trading parameters.

Tick size, neg-risk flag and fee rate rarely change, so they are fetched
from the CLOB once per hour per token. If the CLOB can't be reached the
cache hands out conservative defaults instead of blocking execution.
"""

import asyncio
import logging
import time
from typing import Any, Callable, Dict

from .models import MarketMetadata

logger = logging.getLogger(__name__)

CACHE_TTL_SECONDS = 3600.0

DEFAULT_TICK_SIZE = "0.01"


def _parse_tick_size(value: Any) -> str:
    """The SDK returns the tick size as a string; older endpoints wrap it."""
    if isinstance(value, dict):
        value = value.get("minimum_tick_size")
    if value in (None, ""):
        return DEFAULT_TICK_SIZE
    return str(value)


class MarketMetadataCache:
    """
    Caches MarketMetadata per token id.

    Concurrent misses for the same key are not merged; the upstream calls
    are idempotent.
    """

    def __init__(
        self,
        client,
        ttl_seconds: float = CACHE_TTL_SECONDS,
        clock: Callable[[], float] = time.time,
    ):
        self.client = client
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._cache: Dict[str, MarketMetadata] = {}

    async def _call(self, fn, *args):
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, fn, *args)

    async def _fetch_or_default(self, fn, token_id: str, default):
        try:
            return await self._call(fn, token_id)
        except Exception as e:
            logger.debug(f"{getattr(fn, '__name__', fn)} failed for {token_id}: {e}")
            return default

    async def get(self, token_id: str) -> MarketMetadata:
        """Return cached metadata, refreshing it when stale or missing."""
        now = self._clock()
        cached = self._cache.get(token_id)
        if cached and (now - cached.fetched_at) < self.ttl_seconds:
            return cached

        try:
            tick_raw, neg_risk, fee_rate = await asyncio.gather(
                self._fetch_or_default(self.client.get_tick_size, token_id, DEFAULT_TICK_SIZE),
                self._fetch_or_default(self.client.get_neg_risk, token_id, False),
                self._fetch_or_default(self.client.get_fee_rate_bps, token_id, 0),
            )
            tick_size_str = _parse_tick_size(tick_raw)
            metadata = MarketMetadata(
                tick_size=float(tick_size_str),
                tick_size_str=tick_size_str,
                neg_risk=bool(neg_risk),
                fee_rate_bps=int(fee_rate or 0),
                fetched_at=now,
            )
        except Exception as e:
            logger.warning(f"Could not fetch market metadata for {token_id}, using defaults: {e}")
            metadata = MarketMetadata(fetched_at=now)

        self._cache[token_id] = metadata
        return metadata

    async def get_tick_size(self, token_id: str) -> float:
        metadata = await self.get(token_id)
        return metadata.tick_size

    def stats(self) -> Dict[str, Any]:
        return {
            "size": len(self._cache),
            "items": list(self._cache.keys()),
        }

    def clear(self) -> None:
        self._cache.clear()
        logger.info("Market cache cleared")
