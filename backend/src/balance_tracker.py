"""
Per-mint balances for the active account, in raw base units.
"""

from __future__ import annotations

import logging
from decimal import Decimal
from typing import Dict, Optional

from solders.pubkey import Pubkey

from solana_api import SolanaAPI, SolanaRPCError
from swap_models import Asset

logger = logging.getLogger(__name__)


class BalanceTracker:
    def __init__(self, api: SolanaAPI, owner: Optional[Pubkey] = None):
        self.api = api
        self.owner = owner
        self._raw: Dict[str, int] = {}
        self._decimals: Dict[str, int] = {}

    def set_owner(self, owner: Optional[Pubkey]):
        if owner != self.owner:
            self._raw.clear()
        self.owner = owner

    async def refresh(self, asset: Asset) -> Optional[int]:
        """
        Re-read the balance for asset. On RPC failure the last known value is kept.
        """
        if self.owner is None:
            return None
        self._decimals[asset.mint] = asset.decimals
        try:
            if asset.is_native:
                raw = await self.api.get_sol_balance(self.owner)
            else:
                raw = await self.api.get_token_balance(self.owner, Pubkey.from_string(asset.mint))
        except (SolanaRPCError, ValueError) as e:
            logger.warning(f"[BALANCE] {asset.symbol} refresh failed: {e}")
            return self._raw.get(asset.mint)
        self._raw[asset.mint] = raw
        return raw

    def get_raw_balance(self, mint: str) -> Optional[int]:
        return self._raw.get(mint)

    def get_balance(self, mint: str) -> Decimal:
        raw = self._raw.get(mint, 0)
        return Decimal(raw).scaleb(-self._decimals.get(mint, 0))
