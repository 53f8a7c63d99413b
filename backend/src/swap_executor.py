"""
Turns an accepted Quote into a signed, submitted and confirmed Raydium swap.

Steps run strictly in order and any failure aborts the rest:
pool -> aux accounts -> token programs -> token accounts / SOL wrapping ->
swap instructions -> blockhash + signing -> submit once -> bounded confirm ->
best-effort fee collection.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from time import perf_counter
from typing import Any, Dict, List, Optional, Union

from solders.instruction import Instruction
from solders.pubkey import Pubkey
from solders.transaction import Transaction, VersionedTransaction

from pool_discovery import resolve_best_pool
from raydium_direct.api_client import RaydiumApiClient
from raydium_direct.ix_builder import (
    build_signed_transaction,
    close_account_ix,
    compute_budget_ixs,
    create_ata_idempotent_ix,
    detect_token_program,
    ensure_ata_ix,
    wrap_sol_ixs,
)
from raydium_direct.pool_parser import PoolKind
from raydium_direct.swap_builders import SwapBuilderRegistry, SwapParams
from solana_api import SolanaAPI, SolanaRPCError
from swap_config import SwapConfig
from swap_models import (
    BuildFailure,
    ConfirmationFailure,
    InputSide,
    NoLiquidity,
    Quote,
    SigningFailure,
    SubmissionFailure,
    SwapError,
    SwapRequest,
    SwapResult,
    SwapStatus,
)

logger = logging.getLogger(__name__)


@dataclass
class PreparedSwap:
    transaction: Union[Transaction, VersionedTransaction]
    pool_id: str
    instructions: List[Instruction]
    timings_ms: Dict[str, float] = field(default_factory=dict)


class SwapExecutor:
    def __init__(
        self,
        api: SolanaAPI,
        raydium: RaydiumApiClient,
        config: Optional[SwapConfig] = None,
        registry: Optional[SwapBuilderRegistry] = None,
        fee_collector=None,
    ):
        self.api = api
        self.raydium = raydium
        self.config = config or SwapConfig()
        self.registry = registry or SwapBuilderRegistry.for_network(self.config.network)
        self.fee_collector = fee_collector

    async def execute(self, quote: Quote, signer) -> SwapResult:
        """Never raises: every failure comes back as SwapResult(success=False, reason=...)."""
        request = SwapRequest(quote=quote, signer=signer)
        try:
            signature = await self._execute(request)
        except SwapError as e:
            request.status = SwapStatus.FAILED
            logger.warning(f"[SWAP] {type(e).__name__}: {e}")
            return SwapResult.failed(str(e), signature=e.signature)
        except Exception as e:
            request.status = SwapStatus.FAILED
            logger.error(f"[SWAP] Unexpected error: {e}")
            return SwapResult.failed(f"unexpected error: {e}")

        fee_signature = None
        if self.fee_collector is not None:
            fee_signature = await self.fee_collector.collect(quote, signer)
        return SwapResult(
            success=True,
            status=request.status,
            signature=signature,
            fee_signature=fee_signature,
        )

    async def simulate(self, quote: Quote, signer) -> Dict[str, Any]:
        """Build and sign exactly what execute() would send, then simulateTransaction it."""
        request = SwapRequest(quote=quote, signer=signer)
        try:
            prepared = await self._prepare(request)
            result = await self.api.simulate_transaction(prepared.transaction)
        except SwapError as e:
            return {"success": False, "error": str(e), "logs": [], "units_consumed": None}
        except SolanaRPCError as e:
            return {"success": False, "error": f"simulation failed: {e}", "logs": [], "units_consumed": None}
        result.update(
            pool_id=prepared.pool_id,
            tx_size_bytes=len(bytes(prepared.transaction)),
            instructions_count=len(prepared.instructions),
            timings_ms=prepared.timings_ms,
        )
        return result

    async def _execute(self, request: SwapRequest) -> str:
        prepared = await self._prepare(request)

        request.status = SwapStatus.AWAITING_CONFIRMATION
        try:
            signature = await self.api.send_raw_transaction(
                bytes(prepared.transaction), skip_preflight=self.config.skip_preflight
            )
        except SolanaRPCError as e:
            raise SubmissionFailure(f"transaction submission failed: {e}") from e
        logger.info(f"[SWAP] Submitted {signature} via pool {prepared.pool_id}")

        confirmed, error = await self.api.confirm_transaction(
            signature,
            max_retries=self.config.confirm_max_retries,
            poll_interval=self.config.confirm_poll_interval_sec,
        )
        if not confirmed:
            raise ConfirmationFailure(error, signature=signature)
        request.status = SwapStatus.SUCCEEDED
        logger.info(f"[SWAP] ✅ Confirmed {signature}")
        return signature

    async def _prepare(self, request: SwapRequest) -> PreparedSwap:
        quote = request.quote
        timings: Dict[str, float] = {}
        self._validate(quote)

        if request.signer is None or not hasattr(request.signer, "pubkey"):
            raise SigningFailure("no key material for the active account")
        owner: Pubkey = request.signer.pubkey()
        sell, buy = quote.sell_asset, quote.buy_asset

        # 1. pool
        t0 = perf_counter()
        pool = quote.pool
        if pool is None:
            pool = await resolve_best_pool(self.raydium, sell.mint, buy.mint)
            if pool is None:
                raise NoLiquidity()
        timings["pool_ms"] = (perf_counter() - t0) * 1000

        input_mint = Pubkey.from_string(sell.pool_mint)
        output_mint = Pubkey.from_string(buy.pool_mint)
        try:
            builder = self.registry.get(pool)
            # 2. pool-type specific on-chain accounts (CLMM observation / tick arrays)
            t0 = perf_counter()
            aux = await builder.load_aux(self.api, pool, input_mint)
            timings["aux_ms"] = (perf_counter() - t0) * 1000
            if pool.kind is PoolKind.CONCENTRATED:
                logger.info(
                    f"[SWAP] CLMM aux for {pool.id}: observation={aux['observation']} "
                    f"tick_arrays={len(aux['tick_arrays'])}"
                )

            # 3 + 4. token programs and token accounts
            t0 = perf_counter()
            input_program = await detect_token_program(self.api, input_mint)
            output_program = await detect_token_program(self.api, output_mint)
            pre, post = [], []
            if sell.is_native:
                input_account, create_ix = create_ata_idempotent_ix(owner, owner, input_mint, input_program)
                wrap_lamports = quote.amount_in if quote.input_side is InputSide.SELL else quote.bound_amount
                pre += [create_ix, *wrap_sol_ixs(owner, input_account, wrap_lamports)]
                post.append(close_account_ix(input_account, owner, owner, input_program))
            else:
                input_account, create_ix = await ensure_ata_ix(self.api, owner, input_mint, owner, input_program)
                if create_ix:
                    pre.append(create_ix)
            if buy.is_native:
                output_account, create_ix = create_ata_idempotent_ix(owner, owner, output_mint, output_program)
                pre.append(create_ix)
                post.append(close_account_ix(output_account, owner, owner, output_program))
            else:
                output_account, create_ix = await ensure_ata_ix(self.api, owner, output_mint, owner, output_program)
                if create_ix:
                    pre.append(create_ix)
            timings["accounts_ms"] = (perf_counter() - t0) * 1000

            # 5. swap instructions
            if quote.input_side is InputSide.SELL:
                params = SwapParams(pool, input_mint, output_mint, quote.amount_in, quote.bound_amount,
                                    owner, input_account, output_account, aux)
                built = builder.build_swap_exact_in(params)
            else:
                params = SwapParams(pool, input_mint, output_mint, quote.amount_out, quote.bound_amount,
                                    owner, input_account, output_account, aux)
                built = builder.build_swap_exact_out(params)
        except ValueError as e:
            raise BuildFailure(f"could not build swap: {e}") from e
        except SolanaRPCError as e:
            raise BuildFailure(f"could not read on-chain accounts: {e}") from e

        instructions = [
            *compute_budget_ixs(self.config.compute_unit_limit, self.config.priority_fee_microlamports),
            *pre,
            *built.instructions,
            *post,
        ]

        # 6. blockhash, fee payer, signatures
        try:
            blockhash = await self.api.get_latest_blockhash()
        except SolanaRPCError as e:
            raise SubmissionFailure(f"could not fetch blockhash: {e}") from e
        try:
            tx = build_signed_transaction(
                instructions, owner, [request.signer, *built.signers], blockhash, self.config.tx_version
            )
        except Exception as e:
            raise SigningFailure(f"could not sign transaction: {e}") from e

        return PreparedSwap(transaction=tx, pool_id=pool.id, instructions=instructions, timings_ms=timings)

    def _validate(self, quote: Quote):
        if quote.sell_asset is None or quote.buy_asset is None:
            raise BuildFailure("quote has no trading pair")
        if quote.sell_asset.mint == quote.buy_asset.mint:
            raise BuildFailure("cannot swap an asset for itself")
        if not quote.amount_in or not quote.amount_out or quote.amount_in <= 0 or quote.amount_out <= 0:
            raise BuildFailure("swap amounts must be positive")
        if not quote.bound_amount or quote.bound_amount <= 0:
            raise BuildFailure("missing slippage bound")
