"""
Pool-type specific swap instruction builders.

Each builder loads the on-chain accounts its program needs (load_aux) and
turns SwapParams into the swap instruction(s) plus any extra signers.
Standard pools are served by AMM v4 or CPMM, Concentrated pools by CLMM.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from solders.instruction import Instruction
from solders.keypair import Keypair
from solders.pubkey import Pubkey

from raydium_direct.cache import PoolCache
from raydium_direct.ix_builder import (
    PROGRAM_IDS,
    build_amm_v4_swap_ix,
    build_clmm_swap_ix,
    build_cpmm_swap_ix,
    candidate_tick_array_starts,
    derive_clmm_observation,
    derive_tick_array,
    derive_tick_array_bitmap_extension,
)
from raydium_direct.market_parser import parse_market_account
from raydium_direct.pool_parser import (
    Pool,
    PoolKind,
    parse_clmm_pool_account,
    parse_cpmm_pool_account,
    parse_pool_account,
)

logger = logging.getLogger(__name__)

MAX_TICK_ARRAYS = 3


@dataclass
class SwapParams:
    pool: Pool
    input_mint: Pubkey
    output_mint: Pubkey
    amount: int
    bound_amount: int
    owner: Pubkey
    input_account: Pubkey
    output_account: Pubkey
    aux: Dict[str, Any] = field(default_factory=dict)


@dataclass
class BuiltSwap:
    instructions: List[Instruction]
    signers: List[Keypair] = field(default_factory=list)


class SwapBuilder:
    kind = PoolKind.STANDARD

    def __init__(self, program_id: Pubkey, cache: Optional[PoolCache] = None):
        self.program_id = program_id
        self.cache = cache or PoolCache()

    async def load_aux(self, api, pool: Pool, input_mint: Pubkey) -> Dict[str, Any]:
        raise NotImplementedError

    def build_swap_exact_in(self, params: SwapParams) -> BuiltSwap:
        """amount is the exact input, bound_amount the minimum output."""
        self._check(params)
        return BuiltSwap([self._swap_ix(params, base_in=True)])

    def build_swap_exact_out(self, params: SwapParams) -> BuiltSwap:
        """amount is the exact output, bound_amount the maximum input."""
        self._check(params)
        return BuiltSwap([self._swap_ix(params, base_in=False)])

    def _swap_ix(self, params: SwapParams, base_in: bool) -> Instruction:
        raise NotImplementedError

    def _check(self, params: SwapParams):
        if params.amount <= 0 or params.bound_amount <= 0:
            raise ValueError("swap amounts must be positive")
        if params.pool.kind is not self.kind:
            raise ValueError(f"{type(self).__name__} cannot build for a {params.pool.kind.value} pool")
        if "state" not in params.aux:
            raise ValueError(f"pool {params.pool.id} state not loaded")

    async def _load_state(self, api, pool_id: Pubkey, parser):
        async def loader():
            data = await api.get_account_data(pool_id)
            return parser(data, pool_id) if data else None

        state, hit = await self.cache.get_or_load(f"pool:{pool_id}", loader, hot=True)
        if state is None:
            raise ValueError(f"could not load pool state {pool_id}")
        logger.debug(f"[SWAP] pool state {pool_id} cache_hit={hit}")
        return state


class StandardAmmBuilder(SwapBuilder):
    """Raydium AMM v4 (OpenBook-backed constant product)."""

    async def load_aux(self, api, pool: Pool, input_mint: Pubkey) -> Dict[str, Any]:
        state = await self._load_state(api, Pubkey.from_string(pool.id), parse_pool_account)

        async def market_loader():
            data = await api.get_account_data(state.market_id)
            return parse_market_account(data, state.market_id, state.market_program_id) if data else None

        market, _ = await self.cache.get_or_load(f"market:{state.market_id}", market_loader, hot=False)
        if market is None:
            raise ValueError(f"could not load market {state.market_id}")
        if not market.serves(state.base_mint, state.quote_mint):
            self.cache.invalidate(f"market:{state.market_id}")
            raise ValueError(f"market {state.market_id} does not trade pool {pool.id}'s mints")
        return {"state": state, "market": market}

    def _swap_ix(self, params: SwapParams, base_in: bool) -> Instruction:
        return build_amm_v4_swap_ix(
            pool_state=params.aux["state"],
            market_state=params.aux["market"],
            user_wallet=params.owner,
            user_source_ata=params.input_account,
            user_dest_ata=params.output_account,
            amount=params.amount,
            other_amount_threshold=params.bound_amount,
            base_in=base_in,
            program_id=self.program_id,
        )


class CpmmBuilder(SwapBuilder):
    """Raydium CP-Swap (constant product, Token-2022 aware)."""

    async def load_aux(self, api, pool: Pool, input_mint: Pubkey) -> Dict[str, Any]:
        state = await self._load_state(api, Pubkey.from_string(pool.id), parse_cpmm_pool_account)
        return {"state": state}

    def _swap_ix(self, params: SwapParams, base_in: bool) -> Instruction:
        return build_cpmm_swap_ix(
            pool_state=params.aux["state"],
            program_id=self.program_id,
            payer=params.owner,
            input_mint=params.input_mint,
            user_input_ata=params.input_account,
            user_output_ata=params.output_account,
            amount=params.amount,
            other_amount_threshold=params.bound_amount,
            base_in=base_in,
        )


class ConcentratedBuilder(SwapBuilder):
    """Raydium CLMM swap_v2."""

    kind = PoolKind.CONCENTRATED

    async def load_aux(self, api, pool: Pool, input_mint: Pubkey) -> Dict[str, Any]:
        pool_id = Pubkey.from_string(pool.id)
        state = await self._load_state(api, pool_id, parse_clmm_pool_account)
        zero_for_one = input_mint == state.token_mint_0
        starts = candidate_tick_array_starts(state.tick_current, state.tick_spacing, zero_for_one)
        candidates = [derive_tick_array(pool_id, start, self.program_id) for start in starts]
        exists = await api.existing_accounts(candidates)
        tick_arrays = [acc for acc, ok in zip(candidates, exists) if ok][:MAX_TICK_ARRAYS]
        if not tick_arrays:
            raise ValueError(f"no initialized tick arrays near tick {state.tick_current} for pool {pool.id}")
        return {
            "state": state,
            "observation": derive_clmm_observation(pool_id, self.program_id),
            "bitmap_extension": derive_tick_array_bitmap_extension(pool_id, self.program_id),
            "tick_arrays": tick_arrays,
        }

    def _swap_ix(self, params: SwapParams, base_in: bool) -> Instruction:
        aux = params.aux
        return build_clmm_swap_ix(
            pool_state=aux["state"],
            program_id=self.program_id,
            payer=params.owner,
            input_mint=params.input_mint,
            user_input_ata=params.input_account,
            user_output_ata=params.output_account,
            observation=aux["observation"],
            remaining_accounts=[aux["bitmap_extension"], *aux["tick_arrays"]],
            amount=params.amount,
            other_amount_threshold=params.bound_amount,
            base_in=base_in,
        )


class SwapBuilderRegistry:
    """Maps a pool's program id to the builder that speaks its instruction format."""

    def __init__(self, builders: Optional[Dict[str, SwapBuilder]] = None):
        self._builders: Dict[str, SwapBuilder] = dict(builders or {})

    @classmethod
    def for_network(cls, network: str = "mainnet", cache: Optional[PoolCache] = None) -> "SwapBuilderRegistry":
        cache = cache or PoolCache()
        ids = PROGRAM_IDS.get(network, PROGRAM_IDS["mainnet"])
        return cls({
            str(ids["amm_v4"]): StandardAmmBuilder(ids["amm_v4"], cache),
            str(ids["cpmm"]): CpmmBuilder(ids["cpmm"], cache),
            str(ids["clmm"]): ConcentratedBuilder(ids["clmm"], cache),
        })

    def register(self, program_id: str, builder: SwapBuilder):
        self._builders[program_id] = builder

    def get(self, pool: Pool) -> SwapBuilder:
        builder = self._builders.get(pool.program_id)
        if builder is None:
            raise ValueError(f"unsupported pool program {pool.program_id or '?'} for pool {pool.id}")
        if builder.kind is not pool.kind:
            raise ValueError(f"pool {pool.id} is {pool.kind.value} but program {pool.program_id} is not")
        return builder
