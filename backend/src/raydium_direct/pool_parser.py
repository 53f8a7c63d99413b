from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal, InvalidOperation, ROUND_DOWN
from enum import Enum
from typing import Any, Dict, Optional, Tuple, Union

from construct import Bytes, BytesInteger, Int8ul, Int16ul, Int32sl, Int64ul, Padding, Struct
from solders.pubkey import Pubkey

from raydium_direct.amm_math import normalize_fee


class PoolKind(Enum):
    STANDARD = "Standard"
    CONCENTRATED = "Concentrated"


# --------------------------------------------------------------------------- #
# Aggregator pools (tagged union)
# --------------------------------------------------------------------------- #
@dataclass(frozen=True)
class PoolToken:
    address: str
    decimals: int
    symbol: str = ""
    name: str = ""
    program_id: Optional[str] = None


@dataclass(frozen=True)
class _PoolBase:
    id: str
    program_id: str
    mint_a: PoolToken
    mint_b: PoolToken
    fee_rate: Decimal = Decimal(0)
    price: Optional[Decimal] = None
    tvl: float = 0.0

    @property
    def is_constant_product(self) -> bool:
        return False

    def side_of(self, mint: str) -> Optional[str]:
        if mint == self.mint_a.address:
            return "a"
        if mint == self.mint_b.address:
            return "b"
        return None

    def contains(self, mint: str) -> bool:
        return self.side_of(mint) is not None

    def tokens_for(self, input_mint: str) -> Tuple[PoolToken, PoolToken]:
        """(input token, output token) for a swap selling input_mint."""
        side = self.side_of(input_mint)
        if side == "a":
            return self.mint_a, self.mint_b
        if side == "b":
            return self.mint_b, self.mint_a
        raise ValueError(f"Input mint {input_mint} not in pool {self.id}")


@dataclass(frozen=True)
class StandardPool(_PoolBase):
    reserve_a: Optional[int] = None
    reserve_b: Optional[int] = None

    @property
    def kind(self) -> PoolKind:
        return PoolKind.STANDARD

    @property
    def is_constant_product(self) -> bool:
        return bool(self.reserve_a) and bool(self.reserve_b)

    def reserves_for(self, input_mint: str) -> Tuple[int, int]:
        """
        Returns (reserve_in, reserve_out) ordered by swap direction.
        """
        side = self.side_of(input_mint)
        if side == "a":
            return self.reserve_a or 0, self.reserve_b or 0
        if side == "b":
            return self.reserve_b or 0, self.reserve_a or 0
        raise ValueError(f"Input mint {input_mint} not in pool {self.id}")


@dataclass(frozen=True)
class ConcentratedPool(_PoolBase):
    tick_spacing: int = 0
    config_id: Optional[str] = None

    @property
    def kind(self) -> PoolKind:
        return PoolKind.CONCENTRATED


Pool = Union[StandardPool, ConcentratedPool]

_RESERVE_ALIASES = ("mintAmount{side}", "reserve{side}", "token{side}")


def _to_decimal(value: Any) -> Optional[Decimal]:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, dict):
        value = value.get("amount")
        if value is None:
            return None
    try:
        result = Decimal(str(value))
    except (InvalidOperation, ValueError):
        return None
    return result if result.is_finite() else None


def _parse_token(raw: Any, label: str) -> PoolToken:
    if not isinstance(raw, dict) or not raw.get("address"):
        raise ValueError(f"pool is missing {label}")
    return PoolToken(
        address=raw["address"],
        decimals=int(raw.get("decimals", 0)),
        symbol=raw.get("symbol") or "",
        name=raw.get("name") or "",
        program_id=raw.get("programId"),
    )


def _read_reserve(item: Dict[str, Any], side: str, decimals: int) -> Optional[int]:
    """UI-unit reserve under any of the aggregator's field names, as raw units."""
    for alias in _RESERVE_ALIASES:
        value = _to_decimal(item.get(alias.format(side=side)))
        if value is not None:
            raw = int(value.scaleb(decimals).to_integral_value(rounding=ROUND_DOWN))
            return raw if raw > 0 else None
    return None


def parse_api_pool(item: Dict[str, Any]) -> Pool:
    """
    Normalize one Raydium API v3 pool entry into StandardPool / ConcentratedPool.

    This is the only place that looks at raw aggregator field names.
    """
    if not isinstance(item, dict) or not item.get("id"):
        raise ValueError("pool entry has no id")
    mint_a = _parse_token(item.get("mintA"), "mintA")
    mint_b = _parse_token(item.get("mintB"), "mintB")
    price = _to_decimal(item.get("price"))
    if price is not None and price <= 0:
        price = None
    common = dict(
        id=item["id"],
        program_id=item.get("programId") or "",
        mint_a=mint_a,
        mint_b=mint_b,
        fee_rate=normalize_fee(item),
        price=price,
        tvl=float(item.get("tvl") or 0),
    )

    if item.get("type") == PoolKind.CONCENTRATED.value:
        config = item.get("config") or {}
        return ConcentratedPool(
            tick_spacing=int(config.get("tickSpacing") or 0),
            config_id=config.get("id"),
            **common,
        )

    reserve_a = _read_reserve(item, "A", mint_a.decimals)
    reserve_b = _read_reserve(item, "B", mint_b.decimals)
    if (reserve_a is None or reserve_b is None) and price is None:
        raise ValueError(f"pool {item['id']} exposes neither reserves nor price")
    return StandardPool(reserve_a=reserve_a, reserve_b=reserve_b, **common)


# --------------------------------------------------------------------------- #
# On-chain account layouts
# --------------------------------------------------------------------------- #
U128 = BytesInteger(16, signed=False, swapped=True)

# Raydium Liquidity Pool V4 (752 bytes)
LIQUIDITY_POOL_V4_LAYOUT = Struct(
    "status" / Int64ul,
    "nonce" / Int64ul,
    "max_order" / Int64ul,
    "depth" / Int64ul,
    "base_decimal" / Int64ul,
    "quote_decimal" / Int64ul,
    "state" / Int64ul,
    "reset_flag" / Int64ul,
    "min_size" / Int64ul,
    "vol_max_cut_ratio" / Int64ul,
    "amount_wave_ratio" / Int64ul,
    "base_lot_size" / Int64ul,
    "quote_lot_size" / Int64ul,
    "min_price_multiplier" / Int64ul,
    "max_price_multiplier" / Int64ul,
    "system_decimal_value" / Int64ul,
    "min_separate_numerator" / Int64ul,
    "min_separate_denominator" / Int64ul,
    "trade_fee_numerator" / Int64ul,
    "trade_fee_denominator" / Int64ul,
    "pnl_numerator" / Int64ul,
    "pnl_denominator" / Int64ul,
    "swap_fee_numerator" / Int64ul,
    "swap_fee_denominator" / Int64ul,
    "base_need_take_pnl" / Int64ul,
    "quote_need_take_pnl" / Int64ul,
    "quote_total_pnl" / Int64ul,
    "base_total_pnl" / Int64ul,
    "pool_open_time" / Int64ul,
    "punish_pc_amount" / Int64ul,
    "punish_coin_amount" / Int64ul,
    "orderbook_to_init_time" / Int64ul,
    "swap_base_in_amount" / U128,
    "swap_quote_out_amount" / U128,
    "swap_base2quote_fee" / Int64ul,
    "swap_quote_in_amount" / U128,
    "swap_base_out_amount" / U128,
    "swap_quote2base_fee" / Int64ul,
    "base_vault" / Bytes(32),
    "quote_vault" / Bytes(32),
    "base_mint" / Bytes(32),
    "quote_mint" / Bytes(32),
    "lp_mint" / Bytes(32),
    "open_orders" / Bytes(32),
    "market_id" / Bytes(32),
    "market_program_id" / Bytes(32),
    "target_orders" / Bytes(32),
    "withdraw_queue" / Bytes(32),
    "lp_vault" / Bytes(32),
    "owner" / Bytes(32),
    "lp_reserve" / Int64ul,
    "padding" / Padding(24),
)

# Raydium CP-Swap PoolState (anchor account, key fields)
CPMM_POOL_LAYOUT = Struct(
    Padding(8),
    "amm_config" / Bytes(32),
    "pool_creator" / Bytes(32),
    "token_0_vault" / Bytes(32),
    "token_1_vault" / Bytes(32),
    "lp_mint" / Bytes(32),
    "token_0_mint" / Bytes(32),
    "token_1_mint" / Bytes(32),
    "token_0_program" / Bytes(32),
    "token_1_program" / Bytes(32),
    "observation_key" / Bytes(32),
    "auth_bump" / Int8ul,
    "status" / Int8ul,
    "lp_mint_decimals" / Int8ul,
    "mint_0_decimals" / Int8ul,
    "mint_1_decimals" / Int8ul,
)

# Raydium CLMM PoolState (anchor account, leading fields only)
CLMM_POOL_LAYOUT = Struct(
    Padding(8),
    "bump" / Int8ul,
    "amm_config" / Bytes(32),
    "owner" / Bytes(32),
    "token_mint_0" / Bytes(32),
    "token_mint_1" / Bytes(32),
    "token_vault_0" / Bytes(32),
    "token_vault_1" / Bytes(32),
    "observation_key" / Bytes(32),
    "mint_decimals_0" / Int8ul,
    "mint_decimals_1" / Int8ul,
    "tick_spacing" / Int16ul,
    "liquidity" / U128,
    "sqrt_price_x64" / U128,
    "tick_current" / Int32sl,
)


@dataclass
class RaydiumPoolState:
    amm_id: Pubkey
    base_mint: Pubkey
    quote_mint: Pubkey
    base_vault: Pubkey
    quote_vault: Pubkey
    open_orders: Pubkey
    target_orders: Pubkey
    market_id: Pubkey
    market_program_id: Pubkey
    base_decimal: int
    quote_decimal: int
    status: int
    swap_fee_numerator: int = 25
    swap_fee_denominator: int = 10000


@dataclass
class CpmmPoolState:
    pool_id: Pubkey
    amm_config: Pubkey
    token_0_vault: Pubkey
    token_1_vault: Pubkey
    token_0_mint: Pubkey
    token_1_mint: Pubkey
    token_0_program: Pubkey
    token_1_program: Pubkey
    observation_key: Pubkey
    mint_0_decimals: int
    mint_1_decimals: int
    status: int


@dataclass
class ClmmPoolState:
    pool_id: Pubkey
    amm_config: Pubkey
    token_mint_0: Pubkey
    token_mint_1: Pubkey
    token_vault_0: Pubkey
    token_vault_1: Pubkey
    observation_key: Pubkey
    mint_decimals_0: int
    mint_decimals_1: int
    tick_spacing: int
    liquidity: int
    sqrt_price_x64: int
    tick_current: int


def _pk(raw: bytes) -> Pubkey:
    return Pubkey.from_bytes(bytes(raw))


def parse_pool_account(data: bytes, amm_id: Pubkey) -> Optional[RaydiumPoolState]:
    try:
        parsed = LIQUIDITY_POOL_V4_LAYOUT.parse(data)
    except Exception:
        return None
    return RaydiumPoolState(
        amm_id=amm_id,
        base_mint=_pk(parsed.base_mint),
        quote_mint=_pk(parsed.quote_mint),
        base_vault=_pk(parsed.base_vault),
        quote_vault=_pk(parsed.quote_vault),
        open_orders=_pk(parsed.open_orders),
        target_orders=_pk(parsed.target_orders),
        market_id=_pk(parsed.market_id),
        market_program_id=_pk(parsed.market_program_id),
        base_decimal=int(parsed.base_decimal),
        quote_decimal=int(parsed.quote_decimal),
        status=int(parsed.status),
        swap_fee_numerator=int(parsed.swap_fee_numerator),
        swap_fee_denominator=int(parsed.swap_fee_denominator),
    )


def parse_cpmm_pool_account(data: bytes, pool_id: Pubkey) -> Optional[CpmmPoolState]:
    try:
        parsed = CPMM_POOL_LAYOUT.parse(data)
    except Exception:
        return None
    return CpmmPoolState(
        pool_id=pool_id,
        amm_config=_pk(parsed.amm_config),
        token_0_vault=_pk(parsed.token_0_vault),
        token_1_vault=_pk(parsed.token_1_vault),
        token_0_mint=_pk(parsed.token_0_mint),
        token_1_mint=_pk(parsed.token_1_mint),
        token_0_program=_pk(parsed.token_0_program),
        token_1_program=_pk(parsed.token_1_program),
        observation_key=_pk(parsed.observation_key),
        mint_0_decimals=int(parsed.mint_0_decimals),
        mint_1_decimals=int(parsed.mint_1_decimals),
        status=int(parsed.status),
    )


def parse_clmm_pool_account(data: bytes, pool_id: Pubkey) -> Optional[ClmmPoolState]:
    try:
        parsed = CLMM_POOL_LAYOUT.parse(data)
    except Exception:
        return None
    return ClmmPoolState(
        pool_id=pool_id,
        amm_config=_pk(parsed.amm_config),
        token_mint_0=_pk(parsed.token_mint_0),
        token_mint_1=_pk(parsed.token_mint_1),
        token_vault_0=_pk(parsed.token_vault_0),
        token_vault_1=_pk(parsed.token_vault_1),
        observation_key=_pk(parsed.observation_key),
        mint_decimals_0=int(parsed.mint_decimals_0),
        mint_decimals_1=int(parsed.mint_decimals_1),
        tick_spacing=int(parsed.tick_spacing),
        liquidity=int(parsed.liquidity),
        sqrt_price_x64=int(parsed.sqrt_price_x64),
        tick_current=int(parsed.tick_current),
    )
