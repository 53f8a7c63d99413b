"""
Swap domain types: assets, quotes, execution results and the swap error taxonomy.

Amounts are always integer base units. Decimal strings only appear at the
presentation boundary (Asset.to_ui / Asset.format_amount / Quote.sell_text).
"""

from __future__ import annotations

import re
import time
from dataclasses import asdict, dataclass, field
from decimal import Decimal, InvalidOperation, ROUND_DOWN, ROUND_HALF_UP
from enum import Enum
from typing import Any, Optional, Union

from raydium_direct.pool_parser import Pool

NATIVE_SOL_MINT = "native-sol"
WSOL_MINT = "So11111111111111111111111111111111111111112"
LAMPORTS_PER_SOL = 1_000_000_000
MAX_INPUT_DECIMALS = 25


# --------------------------------------------------------------------------- #
# Errors
# --------------------------------------------------------------------------- #
class SwapError(Exception):
    """Base class for every failure surfaced by the swap engine."""

    reason = "swap failed"

    def __init__(self, message: Optional[str] = None, signature: Optional[str] = None):
        super().__init__(message or self.reason)
        self.signature = signature


class NoLiquidity(SwapError):
    reason = "no pool found"


class UnpriceablePair(SwapError):
    reason = "price unavailable"


class InsufficientBalance(SwapError):
    reason = "insufficient balance"


class BuildFailure(SwapError):
    reason = "could not build swap transaction"


class SigningFailure(SwapError):
    reason = "could not sign transaction"


class SubmissionFailure(SwapError):
    reason = "transaction submission failed"


class ConfirmationFailure(SwapError):
    reason = "transaction was not confirmed"


# --------------------------------------------------------------------------- #
# Enums
# --------------------------------------------------------------------------- #
class InputSide(Enum):
    SELL = "sell"
    BUY = "buy"


class SwapStatus(Enum):
    BUILDING = "building"
    AWAITING_CONFIRMATION = "awaiting_confirmation"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class SessionState(Enum):
    IDLE = "idle"
    PRICING = "pricing"
    QUOTED = "quoted"
    FLIPPING = "flipping"


# --------------------------------------------------------------------------- #
# Assets and amounts
# --------------------------------------------------------------------------- #
@dataclass(frozen=True)
class Asset:
    mint: str
    symbol: str
    decimals: int
    name: str = ""
    image: Optional[str] = None

    def __post_init__(self):
        if not isinstance(self.decimals, int) or not 0 <= self.decimals <= 255:
            raise ValueError(f"invalid decimals for {self.symbol}: {self.decimals!r}")

    @property
    def is_native(self) -> bool:
        return self.mint == NATIVE_SOL_MINT

    @property
    def pool_mint(self) -> str:
        """Mint used when talking to pools; native SOL trades as wrapped SOL."""
        return WSOL_MINT if self.is_native else self.mint

    def to_base_units(self, ui_amount: Union[str, Decimal, int]) -> int:
        try:
            value = Decimal(str(ui_amount))
        except InvalidOperation as e:
            raise ValueError(f"not a number: {ui_amount!r}") from e
        if not value.is_finite() or value < 0:
            raise ValueError(f"amount must be a finite, non-negative number: {ui_amount!r}")
        return int(value.scaleb(self.decimals).to_integral_value(rounding=ROUND_DOWN))

    def to_ui(self, raw_amount: int) -> Decimal:
        return Decimal(int(raw_amount)).scaleb(-self.decimals)

    def format_amount(self, raw_amount: Optional[int], max_decimals: int = 4) -> str:
        if raw_amount is None:
            return ""
        return format_decimal(self.to_ui(raw_amount), max_decimals)


SOL_ASSET = Asset(mint=NATIVE_SOL_MINT, symbol="SOL", decimals=9, name="Solana")


def format_decimal(value: Decimal, max_decimals: int = 4) -> str:
    """Round to at most four places and drop trailing zeros ("1.5000" -> "1.5")."""
    places = min(max_decimals, 4)
    rounded = value.quantize(Decimal(1).scaleb(-places), rounding=ROUND_HALF_UP)
    text = format(rounded.normalize(), "f")
    return "0" if text in ("-0", "") else text


def sanitize_decimal_input(value: Optional[str], max_decimals: int = MAX_INPUT_DECIMALS) -> str:
    """
    Clean free-form keypad input into a decimal string.

    Non-digits are dropped, only the first dot survives, the fractional part is
    capped at max_decimals and a bare leading dot gets a "0" prefix. A trailing
    dot is kept so the user can keep typing ("1." stays "1.").
    """
    if not value:
        return ""
    cleaned = re.sub(r"[^0-9.]", "", value)
    if "." not in cleaned:
        return cleaned
    before, _, after = cleaned.partition(".")
    after = after.replace(".", "")[:max_decimals]
    int_part = before or "0"
    if value.endswith(".") and not after:
        return int_part + "."
    if after:
        return f"{int_part}.{after}"
    return int_part


# --------------------------------------------------------------------------- #
# Quote
# --------------------------------------------------------------------------- #
@dataclass(frozen=True)
class Quote:
    sell_asset: Optional[Asset]
    buy_asset: Optional[Asset]
    input_side: InputSide = InputSide.SELL
    amount_in: Optional[int] = None
    amount_out: Optional[int] = None
    bound_amount: Optional[int] = None
    slippage_bps: int = 50
    pool: Optional[Pool] = None
    request_id: int = 0
    rate: Optional[Decimal] = None
    price_impact_bps: Optional[int] = None
    reason: Optional[str] = None

    @property
    def is_valid(self) -> bool:
        return (
            self.pool is not None
            and self.sell_asset is not None
            and self.buy_asset is not None
            and self.sell_asset.mint != self.buy_asset.mint
        )

    @property
    def sell_text(self) -> str:
        if self.sell_asset is None:
            return ""
        return self.sell_asset.format_amount(self.amount_in)

    @property
    def buy_text(self) -> str:
        if self.buy_asset is None:
            return ""
        return self.buy_asset.format_amount(self.amount_out)

    @property
    def min_received(self) -> Optional[int]:
        return self.bound_amount if self.input_side is InputSide.SELL else self.amount_out

    @property
    def max_sent(self) -> Optional[int]:
        return self.bound_amount if self.input_side is InputSide.BUY else self.amount_in

    def rate_text(self) -> str:
        if self.rate is None or self.sell_asset is None or self.buy_asset is None:
            return ""
        return f"1 {self.sell_asset.symbol} ≈ {format_decimal(self.rate)} {self.buy_asset.symbol}"

    def to_dict(self) -> dict:
        return {
            "sell_asset": asdict(self.sell_asset) if self.sell_asset else None,
            "buy_asset": asdict(self.buy_asset) if self.buy_asset else None,
            "input_side": self.input_side.value,
            "sell_amount": self.sell_text,
            "buy_amount": self.buy_text,
            "amount_in": self.amount_in,
            "amount_out": self.amount_out,
            "bound_amount": self.bound_amount,
            "slippage_bps": self.slippage_bps,
            "pool_id": self.pool.id if self.pool else None,
            "pool_kind": self.pool.kind.value if self.pool else None,
            "request_id": self.request_id,
            "rate": self.rate_text(),
            "price_impact_bps": self.price_impact_bps,
            "reason": self.reason,
        }


# --------------------------------------------------------------------------- #
# Execution
# --------------------------------------------------------------------------- #
@dataclass
class SwapRequest:
    quote: Quote
    signer: Any
    status: SwapStatus = SwapStatus.BUILDING
    created_at: float = field(default_factory=time.time)


@dataclass(frozen=True)
class PendingFeeCollection:
    receiver: str
    asset: Asset
    amount: int


@dataclass(frozen=True)
class SwapResult:
    success: bool
    status: SwapStatus
    signature: Optional[str] = None
    reason: Optional[str] = None
    fee_signature: Optional[str] = None

    @classmethod
    def failed(cls, reason: str, signature: Optional[str] = None) -> "SwapResult":
        return cls(success=False, status=SwapStatus.FAILED, signature=signature, reason=reason)

    def explorer_url(self, network: str = "mainnet") -> Optional[str]:
        if not self.signature:
            return None
        suffix = "" if network == "mainnet" else f"?cluster={network}"
        return f"https://solscan.io/tx/{self.signature}{suffix}"

    def to_dict(self) -> dict:
        data = asdict(self)
        data["status"] = self.status.value
        return data


@dataclass(frozen=True)
class Eligibility:
    executable: bool
    reason: Optional[str] = None
