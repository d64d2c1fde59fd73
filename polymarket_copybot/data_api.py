"""
Polymarket data API client.

Read-only, unauthenticated endpoints:
- /activity: trade history of a wallet (the REST trade feed)
- /positions: current positions of a wallet (startup snapshot)
"""

import logging
from typing import Any, Dict, List, Optional

import httpx

logger = logging.getLogger(__name__)

DATA_API_URL = "https://data-api.polymarket.com"

ACTIVITY_LIMIT = 100


class DataApiClient:
    """Async client for data-api.polymarket.com."""

    def __init__(
        self,
        base_url: str = DATA_API_URL,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    async def __aenter__(self):
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def connect(self):
        """Initialize HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=httpx.Timeout(10.0, connect=5.0),
                limits=httpx.Limits(max_connections=10),
                headers={"Accept": "application/json"},
                transport=self._transport,
            )
        return self

    async def close(self):
        """Close HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    async def _get_list(self, path: str, params: Dict[str, Any]) -> List[Dict[str, Any]]:
        await self.connect()
        response = await self._client.get(path, params=params)
        response.raise_for_status()
        data = response.json()
        return data if isinstance(data, list) else []

    async def get_activity(self, user: str, start_seconds: int, limit: int = ACTIVITY_LIMIT) -> List[Dict[str, Any]]:
        """
        Fetch TRADE activity for a wallet since start_seconds, newest first.

        Raises:
            httpx.HTTPError: on transport failure or non-2xx status
        """
        params = {
            "user": user.lower(),
            "type": "TRADE",
            "limit": limit,
            "sortBy": "TIMESTAMP",
            "sortDirection": "DESC",
            "start": start_seconds,
        }
        return await self._get_list("/activity", params)

    async def get_positions(self, user: str) -> List[Dict[str, Any]]:
        """Fetch current positions for a wallet."""
        return await self._get_list("/positions", {"user": user.lower()})
