"""
Raydium API v3 client (pool aggregation service).
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, List, Optional

import aiohttp

logger = logging.getLogger(__name__)

RAYDIUM_API_URLS = {
    "mainnet": "https://api-v3.raydium.io",
    "devnet": "https://api-v3-devnet.raydium.io",
}


class RaydiumApiError(Exception):
    pass


class RaydiumApiClient:
    """
    Thin async wrapper over the Raydium v3 REST API.

    One instance per network; the aiohttp session is created lazily on the
    running loop and reused until close().
    """

    def __init__(self, base_url: str = RAYDIUM_API_URLS["mainnet"], timeout: float = 8.0,
                 session: Optional[aiohttp.ClientSession] = None):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._session = session

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession()
        return self._session

    async def _get_json(self, path: str, params: Optional[Dict[str, Any]] = None) -> Any:
        url = f"{self.base_url}{path}"
        session = await self._get_session()
        try:
            async with session.get(url, params=params, timeout=aiohttp.ClientTimeout(total=self.timeout)) as resp:
                if resp.status != 200:
                    raise RaydiumApiError(f"{path} returned HTTP {resp.status}")
                payload = await resp.json()
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
            raise RaydiumApiError(f"{path} request failed: {e}") from e

        if not isinstance(payload, dict) or not payload.get("success", False):
            msg = payload.get("msg") if isinstance(payload, dict) else None
            raise RaydiumApiError(f"{path} unsuccessful: {msg or 'unknown error'}")
        return payload.get("data")

    async def fetch_pools_by_mints(
        self,
        mint_a: str,
        mint_b: str,
        pool_type: str = "all",
        sort_field: str = "liquidity",
        sort_type: str = "desc",
        page: int = 1,
        page_size: int = 1,
    ) -> List[Dict[str, Any]]:
        """Raw pool entries containing both mints, best liquidity first."""
        params = {
            "mint1": mint_a,
            "mint2": mint_b,
            "poolType": pool_type,
            "poolSortField": sort_field,
            "sortType": sort_type,
            "pageSize": page_size,
            "page": page,
        }
        data = await self._get_json("/pools/info/mint", params)
        if isinstance(data, dict):
            return [p for p in data.get("data") or [] if p]
        return [p for p in data or [] if p]

    async def fetch_pool_by_id(self, pool_id: str) -> Optional[Dict[str, Any]]:
        data = await self._get_json("/pools/info/ids", {"ids": pool_id})
        for item in data or []:
            if item:
                return item
        return None

    async def close(self):
        if self._session is not None and not self._session.closed:
            await self._session.close()
        self._session = None
