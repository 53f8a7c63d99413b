from .pool_parser import (
    Pool,
    PoolKind,
    PoolToken,
    StandardPool,
    ConcentratedPool,
    parse_api_pool,
)
from .amm_math import (
    UNSATISFIABLE,
    normalize_fee,
    calculate_swap_output,
    calculate_swap_input,
    calculate_price_impact,
    compute_output_from_sell,
    compute_sell_from_buy,
    min_amount_out,
    max_amount_in,
)
from .cache import PoolCache
from .api_client import RaydiumApiClient, RaydiumApiError
from .swap_builders import BuiltSwap, SwapBuilderRegistry, SwapParams

__all__ = [
    "Pool",
    "PoolKind",
    "PoolToken",
    "StandardPool",
    "ConcentratedPool",
    "parse_api_pool",
    "UNSATISFIABLE",
    "normalize_fee",
    "calculate_swap_output",
    "calculate_swap_input",
    "calculate_price_impact",
    "compute_output_from_sell",
    "compute_sell_from_buy",
    "min_amount_out",
    "max_amount_in",
    "PoolCache",
    "RaydiumApiClient",
    "RaydiumApiError",
    "BuiltSwap",
    "SwapBuilderRegistry",
    "SwapParams",
]
