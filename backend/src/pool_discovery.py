"""
Best-liquidity pool discovery with stale-response rejection.

Every lookup draws a generation from a GenerationCounter. Only the response
carrying the latest generation may update current_pool / loading; anything
older arriving later is a straggler and is dropped. Lookups are never
cancelled, they just lose.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from raydium_direct.api_client import RaydiumApiClient, RaydiumApiError
from raydium_direct.pool_parser import Pool, parse_api_pool
from swap_models import NATIVE_SOL_MINT, WSOL_MINT

logger = logging.getLogger(__name__)


def to_pool_mint(mint: str) -> str:
    return WSOL_MINT if mint == NATIVE_SOL_MINT else mint


class GenerationCounter:
    """Strictly increasing request ids, compared on arrival."""

    def __init__(self):
        self._latest = 0

    def next(self) -> int:
        self._latest += 1
        return self._latest

    @property
    def latest(self) -> int:
        return self._latest

    def is_current(self, generation: int) -> bool:
        return generation == self._latest


@dataclass(frozen=True)
class PoolLookup:
    request_id: int
    pool: Optional[Pool]
    stale: bool = False


async def resolve_best_pool(api: RaydiumApiClient, mint_a: str, mint_b: str) -> Optional[Pool]:
    """
    Top pool by liquidity containing both mints, or None.

    Network faults and malformed entries are logged and reported as "no pool".
    """
    mint_a, mint_b = to_pool_mint(mint_a), to_pool_mint(mint_b)
    if not mint_a or not mint_b or mint_a == mint_b:
        return None
    try:
        items = await api.fetch_pools_by_mints(mint_a, mint_b, page=1, page_size=1)
    except RaydiumApiError as e:
        logger.warning(f"[POOL] Lookup {mint_a[:6]}/{mint_b[:6]} failed: {e}")
        return None
    if not items:
        logger.info(f"[POOL] No pool for {mint_a[:6]}/{mint_b[:6]}")
        return None
    try:
        return parse_api_pool(items[0])
    except (ValueError, TypeError) as e:
        logger.warning(f"[POOL] Unusable pool entry for {mint_a[:6]}/{mint_b[:6]}: {e}")
        return None


class PoolDiscovery:
    def __init__(self, api: RaydiumApiClient):
        self.api = api
        self.generations = GenerationCounter()
        self.current_pool: Optional[Pool] = None
        self.loading = False

    async def lookup(self, mint_a: str, mint_b: str) -> PoolLookup:
        request_id = self.generations.next()
        self.loading = True
        try:
            pool = await resolve_best_pool(self.api, mint_a, mint_b)
        finally:
            if self.generations.is_current(request_id):
                self.loading = False
        if not self.generations.is_current(request_id):
            logger.debug(
                f"[POOL] Dropping stale lookup #{request_id} (latest #{self.generations.latest})"
            )
            return PoolLookup(request_id=request_id, pool=pool, stale=True)
        self.current_pool = pool
        if pool:
            logger.info(f"[POOL] #{request_id} best pool {pool.id} ({pool.kind.value}, tvl={pool.tvl:.0f})")
        return PoolLookup(request_id=request_id, pool=pool)

    async def fetch_best_pool(self, mint_a: str, mint_b: str) -> Optional[Pool]:
        """The published pool for this call, or None if absent or superseded."""
        result = await self.lookup(mint_a, mint_b)
        return None if result.stale else result.pool

    async def fetch_pool_by_id(self, pool_id: str) -> Optional[Pool]:
        try:
            item = await self.api.fetch_pool_by_id(pool_id)
        except RaydiumApiError as e:
            logger.warning(f"[POOL] Fetch {pool_id} failed: {e}")
            return None
        if not item:
            return None
        try:
            return parse_api_pool(item)
        except (ValueError, TypeError) as e:
            logger.warning(f"[POOL] Unusable pool {pool_id}: {e}")
            return None

    def reset(self):
        """Invalidate in-flight lookups and forget the current pool."""
        self.generations.next()
        self.current_pool = None
        self.loading = False
