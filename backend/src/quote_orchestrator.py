"""
Quote session: keeps the published Quote consistent with user edits.

States: IDLE (no pair) -> PRICING (lookup in flight) -> QUOTED, and FLIPPING
while a direction flip is being serviced. All input methods are synchronous
and must be called on the session's event loop; network work is scheduled as
tasks whose failures are logged, never raised to the caller.
"""

from __future__ import annotations

import asyncio
import logging
import time
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Callable, List, Optional, Set

from balance_tracker import BalanceTracker
from pool_discovery import PoolDiscovery
from raydium_direct.amm_math import (
    UNSATISFIABLE,
    calculate_price_impact,
    compute_output_from_sell,
    compute_sell_from_buy,
    fee_to_numerator,
    max_amount_in,
    min_amount_out,
    normalize_fee,
    oriented_price,
)
from raydium_direct.pool_parser import Pool
from swap_config import SwapConfig
from swap_models import (
    SOL_ASSET,
    Asset,
    Eligibility,
    InputSide,
    Quote,
    SessionState,
    SwapResult,
    sanitize_decimal_input,
)

logger = logging.getLogger(__name__)


class QuoteSession:
    def __init__(
        self,
        discovery: PoolDiscovery,
        balances: BalanceTracker,
        config: Optional[SwapConfig] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.discovery = discovery
        self.balances = balances
        self.config = config or SwapConfig()
        self._clock = clock

        self.state = SessionState.IDLE
        self.sell_asset: Optional[Asset] = None
        self.buy_asset: Optional[Asset] = None
        self.input_side = InputSide.SELL
        self.sell_amount: Optional[int] = None
        self.buy_amount: Optional[int] = None
        self.sell_text = ""
        self.buy_text = ""
        self.slippage_bps = self.config.default_slippage_bps
        self.online = True
        self.pool: Optional[Pool] = None
        self.quote = Quote(sell_asset=None, buy_asset=None, slippage_bps=self.slippage_bps)

        self._pair_version = 0
        self._last_request_id = 0
        self._flip_handle: Optional[asyncio.TimerHandle] = None
        self._flip_pair_version: Optional[int] = None
        self._tasks: Set[asyncio.Task] = set()
        self._listeners: List[Callable[[Quote], None]] = []
        self._last_submit_at: Optional[float] = None
        self._submitting = False

    # ------------------------------------------------------------------ #
    # Observers
    # ------------------------------------------------------------------ #
    @property
    def pool_loading(self) -> bool:
        return self.discovery.loading

    @property
    def flipping(self) -> bool:
        return self.state is SessionState.FLIPPING

    def subscribe(self, callback: Callable[[Quote], None]):
        self._listeners.append(callback)

    async def wait_idle(self):
        """Wait until every scheduled lookup/refresh task has finished."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    # ------------------------------------------------------------------ #
    # Inputs
    # ------------------------------------------------------------------ #
    def select_sell_asset(self, asset: Asset):
        self.sell_asset = asset
        self._on_pair_changed()

    def select_buy_asset(self, asset: Asset):
        self.buy_asset = asset
        self._on_pair_changed()

    def set_pair(self, sell_asset: Asset, buy_asset: Asset):
        self.sell_asset = sell_asset
        self.buy_asset = buy_asset
        self._on_pair_changed()

    def set_sell_amount(self, text: str):
        self.input_side = InputSide.SELL
        self.sell_text = sanitize_decimal_input(text)
        self.sell_amount = self._parse_amount(self.sell_text, self.sell_asset)
        self._recompute()
        self._schedule_refresh(refresh_balances=False)

    def set_buy_amount(self, text: str):
        self.input_side = InputSide.BUY
        self.buy_text = sanitize_decimal_input(text)
        self.buy_amount = self._parse_amount(self.buy_text, self.buy_asset)
        self._recompute()
        self._schedule_refresh(refresh_balances=False)

    def set_slippage_pct(self, pct) -> int:
        """Slippage in percent (0.1 / 0.5 / 1 presets or custom). Returns the bps applied."""
        try:
            bps = int((Decimal(str(pct)) * 100).to_integral_value(rounding=ROUND_HALF_UP))
        except InvalidOperation as e:
            raise ValueError(f"invalid slippage: {pct!r}") from e
        if not 0 < bps <= self.config.max_slippage_bps:
            raise ValueError(f"slippage must be between 0 and {self.config.max_slippage_bps / 100:g}%")
        if bps > self.config.high_slippage_warn_bps:
            logger.warning(f"[QUOTE] Slippage {bps / 100:g}% is high; the trade may be frontrun")
        self.slippage_bps = bps
        self._recompute()
        return bps

    def flip_direction(self) -> bool:
        """
        Swap sell/buy assets, clear both amounts and refresh once for the new
        orientation. Pair changes while FLIPPING don't trigger their own lookups.
        """
        if self.flipping:
            logger.debug("[QUOTE] Flip ignored, previous flip still in progress")
            return False
        self.state = SessionState.FLIPPING
        self.sell_asset, self.buy_asset = self.buy_asset, self.sell_asset
        self._clear_amounts()
        self.input_side = InputSide.SELL
        self._recompute()

        loop = asyncio.get_running_loop()
        self._flip_handle = loop.call_later(self.config.flip_safety_timeout_sec, self._finish_flip, True)
        self._spawn(self._flip_refresh())
        return True

    def set_online(self, online: bool):
        was_online = self.online
        self.online = online
        if online and not was_online:
            logger.info("[QUOTE] Back online, re-pricing")
            self._schedule_refresh(refresh_balances=True)

    # ------------------------------------------------------------------ #
    # Eligibility / submission
    # ------------------------------------------------------------------ #
    def eligibility(self) -> Eligibility:
        quote = self.quote
        if quote.sell_asset is None or quote.buy_asset is None:
            return Eligibility(False, "select two assets")
        if quote.sell_asset.mint == quote.buy_asset.mint:
            return Eligibility(False, "select two different assets")
        if quote.pool is None:
            return Eligibility(False, quote.reason or "no pool found")
        if not quote.amount_in or not quote.amount_out or quote.amount_in <= 0 or quote.amount_out <= 0:
            return Eligibility(False, quote.reason or "enter an amount")
        if not self.online:
            return Eligibility(False, "offline")

        # a buy-anchored swap may spend up to its max-sent bound
        spend = quote.amount_in
        if quote.input_side is InputSide.BUY and quote.bound_amount:
            spend = max(spend, quote.bound_amount)
        balance = self.balances.get_raw_balance(quote.sell_asset.mint)
        if balance is None or spend > balance:
            return Eligibility(False, "insufficient balance")

        reserve = self.config.min_fee_reserve_lamports
        if quote.sell_asset.is_native:
            if spend + reserve > balance:
                return Eligibility(False, "insufficient SOL for network fee")
        else:
            sol = self.balances.get_raw_balance(SOL_ASSET.mint)
            if sol is None or sol < reserve:
                return Eligibility(False, "insufficient SOL for network fee")
        return Eligibility(True)

    async def submit(self, executor, signer) -> Optional[SwapResult]:
        """
        Execute the current quote. Returns None when the tap was absorbed by
        the debounce window or another submission is still running.
        """
        now = self._clock()
        if self._submitting:
            logger.info("[QUOTE] Submit ignored, swap already in flight")
            return None
        if self._last_submit_at is not None and now - self._last_submit_at < self.config.submit_debounce_sec:
            logger.info("[QUOTE] Submit ignored (debounce)")
            return None
        self._last_submit_at = now

        eligibility = self.eligibility()
        if not eligibility.executable:
            return SwapResult.failed(eligibility.reason or "not executable")

        quote = self.quote
        self._submitting = True
        try:
            result = await executor.execute(quote, signer)
        finally:
            self._submitting = False
        if result.success:
            self._spawn(self._refresh_balances())
        return result

    # ------------------------------------------------------------------ #
    # Internals
    # ------------------------------------------------------------------ #
    def _parse_amount(self, text: str, asset: Optional[Asset]) -> Optional[int]:
        if asset is None or not text or text == ".":
            return None
        try:
            raw = asset.to_base_units(text)
        except ValueError:
            return None
        return raw if raw > 0 else None

    def _clear_amounts(self):
        self.sell_amount = self.buy_amount = None
        self.sell_text = self.buy_text = ""

    def _on_pair_changed(self):
        self._pair_version += 1
        if self.flipping:
            return
        self.pool = None
        if self.input_side is InputSide.SELL:
            self.sell_amount = self._parse_amount(self.sell_text, self.sell_asset)
            self.buy_amount = None
        else:
            self.buy_amount = self._parse_amount(self.buy_text, self.buy_asset)
            self.sell_amount = None
        self._recompute()
        self._schedule_refresh(refresh_balances=True)

    def _schedule_refresh(self, refresh_balances: bool):
        if self.flipping or not self.online:
            return
        if self.sell_asset is None or self.buy_asset is None:
            return
        self.state = SessionState.PRICING
        self._spawn(self._refresh(refresh_balances))

    def _spawn(self, coro) -> asyncio.Task:
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._task_done)
        return task

    def _task_done(self, task: asyncio.Task):
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error(f"[QUOTE] Background refresh failed: {exc}")

    async def _refresh(self, refresh_balances: bool = True):
        sell, buy = self.sell_asset, self.buy_asset
        if sell is None or buy is None:
            return
        if sell.mint == buy.mint:
            self.pool = None
            if not self.flipping:
                self.state = SessionState.QUOTED
            self._recompute()
            return
        result = await self.discovery.lookup(sell.mint, buy.mint)
        if result.stale:
            return
        if (sell, buy) != (self.sell_asset, self.buy_asset):
            return
        self.pool = result.pool
        self._last_request_id = result.request_id
        if not self.flipping:
            self.state = SessionState.QUOTED
        self._recompute()
        if refresh_balances:
            await self._refresh_balances()

    async def _refresh_balances(self):
        seen = set()
        for asset in (self.sell_asset, self.buy_asset, SOL_ASSET):
            if asset is not None and asset.mint not in seen:
                seen.add(asset.mint)
                await self.balances.refresh(asset)

    async def _flip_refresh(self):
        # let inputs queued in the same tick (rapid pair changes) land first
        await asyncio.sleep(0)
        self._flip_pair_version = self._pair_version
        try:
            await self._refresh(refresh_balances=True)
        finally:
            self._finish_flip(False)

    def _finish_flip(self, timed_out: bool):
        if self._flip_handle is not None:
            self._flip_handle.cancel()
            self._flip_handle = None
        if not self.flipping:
            return
        if timed_out:
            logger.warning("[QUOTE] Flip refresh exceeded safety timeout; accepting input again")
        self.state = SessionState.QUOTED if self.sell_asset and self.buy_asset else SessionState.IDLE
        stale_pair = self._flip_pair_version is None or self._flip_pair_version != self._pair_version
        self._flip_pair_version = None
        if stale_pair:
            self.pool = None
            self._schedule_refresh(refresh_balances=True)
        self._publish_current()

    def _recompute(self):
        if (self.sell_asset is None or self.buy_asset is None) and not self.flipping:
            self.state = SessionState.IDLE
        pool = self.pool
        sell, buy = self.sell_asset, self.buy_asset
        slippage = self.slippage_bps
        amount_in: Optional[int] = None
        amount_out: Optional[int] = None
        bound: Optional[int] = None
        reason: Optional[str] = None

        if sell is not None and buy is not None and sell.mint == buy.mint:
            reason = "select two different assets"
            pool = None
        elif pool is None and sell is not None and buy is not None and not self.discovery.loading:
            reason = "no pool found"

        if self.input_side is InputSide.SELL:
            amount_in = self.sell_amount
            if pool is not None and amount_in:
                amount_out = compute_output_from_sell(pool, amount_in, sell)
                if amount_out is None:
                    reason = "price unavailable"
                else:
                    bound = min_amount_out(amount_out, slippage)
            self.buy_amount = amount_out
            self.buy_text = buy.format_amount(amount_out) if buy else ""
        else:
            amount_out = self.buy_amount
            if pool is not None and amount_out:
                needed = compute_sell_from_buy(pool, amount_out, sell)
                if needed is UNSATISFIABLE:
                    reason = "insufficient liquidity"
                elif needed is None:
                    reason = "price unavailable"
                else:
                    amount_in = needed
                    bound = max_amount_in(needed, slippage)
            self.sell_amount = amount_in
            self.sell_text = sell.format_amount(amount_in) if sell else ""

        rate = oriented_price(pool, sell) if pool is not None and sell is not None else None
        impact_bps = None
        if pool is not None and pool.is_constant_product and amount_in and sell is not None:
            reserve_in, reserve_out = pool.reserves_for(sell.pool_mint)
            fee_numerator = fee_to_numerator(normalize_fee(pool))
            impact_bps = int(calculate_price_impact(amount_in, reserve_in, reserve_out, fee_numerator) * 10000)

        self.quote = Quote(
            sell_asset=sell,
            buy_asset=buy,
            input_side=self.input_side,
            amount_in=amount_in,
            amount_out=amount_out,
            bound_amount=bound,
            slippage_bps=slippage,
            pool=pool,
            request_id=self._last_request_id,
            rate=rate,
            price_impact_bps=impact_bps,
            reason=reason,
        )
        self._publish_current()

    def _publish_current(self):
        for callback in list(self._listeners):
            try:
                callback(self.quote)
            except Exception as e:
                logger.error(f"[QUOTE] Listener error: {e}")
