# Trading utilities package
from .fee_collector import FeeCollector, FeePolicy, FeePolicyClient, compute_fee_amount

__all__ = [
    "FeeCollector",
    "FeePolicy",
    "FeePolicyClient",
    "compute_fee_amount",
]
