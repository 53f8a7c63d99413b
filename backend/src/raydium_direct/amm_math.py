"""
Constant-product quote math for Raydium pools.

Everything that ends up on-chain (amounts, fees, slippage bounds) is integer
base units. Prices are Decimal and only used for the scalar-price fallback
and for display.
"""

from __future__ import annotations

from decimal import Decimal, InvalidOperation, ROUND_CEILING, ROUND_FLOOR, ROUND_HALF_UP, localcontext
from typing import Any, Optional, Union

FEE_DENOMINATOR = 1_000_000
BPS_DENOMINATOR = 10_000


class _Unsatisfiable:
    """Returned when the requested output would drain the pool."""

    def __bool__(self):
        return False

    def __repr__(self):
        return "UNSATISFIABLE"


UNSATISFIABLE = _Unsatisfiable()


def normalize_fee(pool_or_raw: Any) -> Decimal:
    """
    Fee as a fraction in [0, 1].

    Accepts a pool (anything with fee_rate), a raw aggregator dict or a bare
    number. Fractions (0 < f < 1) are kept, percentages (1 <= f <= 100) are
    divided by 100, everything else is 0.
    """
    raw = pool_or_raw
    if isinstance(pool_or_raw, dict):
        raw = pool_or_raw.get("feeRate", pool_or_raw.get("fee"))
    elif hasattr(pool_or_raw, "fee_rate"):
        raw = pool_or_raw.fee_rate
    if raw is None or isinstance(raw, bool):
        return Decimal(0)
    try:
        fee = Decimal(str(raw))
    except (InvalidOperation, ValueError):
        return Decimal(0)
    if not fee.is_finite():
        return Decimal(0)
    if 0 < fee < 1:
        return fee
    if 1 <= fee <= 100:
        return fee / 100
    return Decimal(0)


def fee_to_numerator(fee: Decimal, fee_denominator: int = FEE_DENOMINATOR) -> int:
    return int((fee * fee_denominator).to_integral_value(rounding=ROUND_HALF_UP))


def calculate_swap_output(
    amount_in: int,
    reserve_in: int,
    reserve_out: int,
    fee_numerator: int = 2500,
    fee_denominator: int = FEE_DENOMINATOR,
) -> int:
    """
    Standard x*y=k with the fee deducted from the input.
    """
    if amount_in <= 0 or reserve_in <= 0 or reserve_out <= 0:
        return 0
    amount_in_with_fee = amount_in * (fee_denominator - fee_numerator)
    numerator = amount_in_with_fee * reserve_out
    denominator = (reserve_in * fee_denominator) + amount_in_with_fee
    return numerator // denominator if denominator else 0


def calculate_swap_input(
    amount_out: int,
    reserve_in: int,
    reserve_out: int,
    fee_numerator: int = 2500,
    fee_denominator: int = FEE_DENOMINATOR,
) -> Union[int, _Unsatisfiable]:
    """
    Inverse: given desired output, calculate required input (rounded up).
    """
    if amount_out >= reserve_out:
        return UNSATISFIABLE
    if amount_out <= 0 or reserve_in <= 0:
        return 0
    numerator = reserve_in * amount_out * fee_denominator
    denominator = (reserve_out - amount_out) * (fee_denominator - fee_numerator)
    return (numerator // denominator) + 1 if denominator else 0


def calculate_price_impact(
    amount_in: int,
    reserve_in: int,
    reserve_out: int,
    fee_numerator: int = 0,
    fee_denominator: int = FEE_DENOMINATOR,
) -> float:
    """
    Returns price impact as decimal (0.01 = 1%). Display only.
    """
    if reserve_in == 0 or reserve_out == 0 or amount_in == 0:
        return 0.0
    spot_price = reserve_out / reserve_in
    output = calculate_swap_output(amount_in, reserve_in, reserve_out, fee_numerator, fee_denominator)
    if output == 0:
        return 0.0
    exec_price = output / amount_in
    return 1 - (exec_price / spot_price)


def min_amount_out(amount_out: int, slippage_bps: int) -> int:
    return amount_out * (BPS_DENOMINATOR - slippage_bps) // BPS_DENOMINATOR


def max_amount_in(amount_in: int, slippage_bps: int) -> int:
    return amount_in + (amount_in * slippage_bps) // BPS_DENOMINATOR


def _sell_mint(sell_asset: Any) -> str:
    return getattr(sell_asset, "pool_mint", sell_asset)


def oriented_price(pool, sell_asset: Any) -> Optional[Decimal]:
    """
    UI-unit price of one sell token expressed in the buy token.

    Uses the aggregator's scalar price (quoted as mintB per mintA) and falls
    back to the reserve ratio. None when the pair can't be priced.
    """
    if pool is None:
        return None
    side = pool.side_of(_sell_mint(sell_asset))
    if side is None:
        return None
    price = pool.price
    if price is None and pool.is_constant_product:
        ui_a = Decimal(pool.reserve_a).scaleb(-pool.mint_a.decimals)
        ui_b = Decimal(pool.reserve_b).scaleb(-pool.mint_b.decimals)
        price = ui_b / ui_a
    if price is None or price <= 0:
        return None
    return price if side == "a" else Decimal(1) / price


def _convert(amount: int, rate: Decimal, decimals_in: int, decimals_out: int, rounding: str) -> int:
    with localcontext() as ctx:
        ctx.prec = 60
        ui_out = Decimal(amount).scaleb(-decimals_in) * rate
        return int(ui_out.scaleb(decimals_out).to_integral_value(rounding=rounding))


def compute_output_from_sell(pool, amount_in: int, sell_asset: Any) -> Optional[int]:
    """
    Raw buy amount received for amount_in raw units of sell_asset.

    Standard pools with reserves use the constant-product curve; otherwise
    (or when the curve yields nothing) the oriented scalar price minus fee
    is used. Concentrated pools always take the price path.
    """
    if pool is None or amount_in <= 0:
        return None
    mint = _sell_mint(sell_asset)
    side = pool.side_of(mint)
    if side is None:
        return None
    fee = normalize_fee(pool)
    if pool.is_constant_product:
        reserve_in, reserve_out = pool.reserves_for(mint)
        out = calculate_swap_output(amount_in, reserve_in, reserve_out, fee_to_numerator(fee))
        if out > 0:
            return out
    price = oriented_price(pool, mint)
    if price is None:
        return None
    token_in, token_out = pool.tokens_for(mint)
    out = _convert(amount_in, price * (1 - fee), token_in.decimals, token_out.decimals, ROUND_FLOOR)
    return out if out > 0 else None


def compute_sell_from_buy(pool, desired_out: int, sell_asset: Any) -> Union[int, _Unsatisfiable, None]:
    """
    Raw sell amount needed to receive desired_out raw units of the buy token.

    Returns UNSATISFIABLE when desired_out would drain the pool's reserve.
    """
    if pool is None or desired_out <= 0:
        return None
    mint = _sell_mint(sell_asset)
    side = pool.side_of(mint)
    if side is None:
        return None
    fee = normalize_fee(pool)
    if pool.is_constant_product:
        reserve_in, reserve_out = pool.reserves_for(mint)
        amount_in = calculate_swap_input(desired_out, reserve_in, reserve_out, fee_to_numerator(fee))
        if amount_in is UNSATISFIABLE:
            return UNSATISFIABLE
        if amount_in > 0:
            return amount_in
    price = oriented_price(pool, mint)
    if price is None or fee >= 1:
        return None
    token_in, token_out = pool.tokens_for(mint)
    amount_in = _convert(desired_out, 1 / (price * (1 - fee)), token_out.decimals, token_in.decimals, ROUND_CEILING)
    return amount_in if amount_in > 0 else None
