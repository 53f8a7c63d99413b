"""
Environment-driven configuration for the swap engine.
"""

from __future__ import annotations

import os
from dataclasses import dataclass

from raydium_direct.api_client import RAYDIUM_API_URLS

DEFAULT_RPC_URLS = {
    "mainnet": "https://api.mainnet-beta.solana.com",
    "devnet": "https://api.devnet.solana.com",
}
DEFAULT_FEE_POLICY_URL = "https://api-platform.pingpay.info/public/open/swap-settings"
SLIPPAGE_PRESETS_PCT = (0.1, 0.5, 1.0)


def _env_bool(name: str, default: bool = False) -> bool:
    return os.getenv(name, str(default)).strip().lower() in {"1", "true", "yes", "on"}


@dataclass
class SwapConfig:
    network: str = "mainnet"
    rpc_url: str = DEFAULT_RPC_URLS["mainnet"]
    raydium_api_url: str = RAYDIUM_API_URLS["mainnet"]
    fee_policy_url: str = DEFAULT_FEE_POLICY_URL
    request_timeout: float = 8.0
    default_slippage_bps: int = 50
    max_slippage_bps: int = 10_000
    high_slippage_warn_bps: int = 1_000
    submit_debounce_sec: float = 1.0
    flip_safety_timeout_sec: float = 2.0
    confirm_max_retries: int = 30
    confirm_poll_interval_sec: float = 1.0
    priority_fee_microlamports: int = 0
    compute_unit_limit: int = 0
    tx_version: str = "v0"
    skip_preflight: bool = False
    min_fee_reserve_lamports: int = 50_000
    pool_cache_ttl_ms: int = 5000
    pool_cache_ttl_cold_ms: int = 30000
    fee_collection_enabled: bool = True

    @classmethod
    def from_env(cls) -> "SwapConfig":
        network = os.getenv("SOLANA_NETWORK", "mainnet").strip().lower()
        if network not in DEFAULT_RPC_URLS:
            network = "mainnet"
        tx_version = os.getenv("TX_VERSION", "v0").strip().lower()
        return cls(
            network=network,
            rpc_url=os.getenv("SOLANA_RPC_URL", DEFAULT_RPC_URLS[network]),
            raydium_api_url=os.getenv("RAYDIUM_API_URL", RAYDIUM_API_URLS[network]),
            fee_policy_url=os.getenv("FEE_POLICY_URL", DEFAULT_FEE_POLICY_URL),
            request_timeout=float(os.getenv("REQUEST_TIMEOUT_SECONDS", "8")),
            default_slippage_bps=int(os.getenv("DEFAULT_SLIPPAGE_BPS", "50")),
            max_slippage_bps=int(os.getenv("MAX_SLIPPAGE_BPS", "10000")),
            high_slippage_warn_bps=int(os.getenv("HIGH_SLIPPAGE_WARN_BPS", "1000")),
            submit_debounce_sec=float(os.getenv("SUBMIT_DEBOUNCE_SEC", "1.0")),
            flip_safety_timeout_sec=float(os.getenv("FLIP_SAFETY_TIMEOUT_SEC", "2.0")),
            confirm_max_retries=int(os.getenv("CONFIRM_MAX_RETRIES", "30")),
            confirm_poll_interval_sec=float(os.getenv("CONFIRM_POLL_INTERVAL_SEC", "1.0")),
            priority_fee_microlamports=int(os.getenv("PRIORITY_FEE_MICROLAMPORTS", "0") or 0),
            compute_unit_limit=int(os.getenv("COMPUTE_UNIT_LIMIT", "0") or 0),
            tx_version="legacy" if tx_version == "legacy" else "v0",
            skip_preflight=_env_bool("SKIP_PREFLIGHT", False),
            min_fee_reserve_lamports=int(os.getenv("MIN_FEE_RESERVE_LAMPORTS", "50000")),
            pool_cache_ttl_ms=int(os.getenv("POOL_CACHE_TTL_MS", "5000")),
            pool_cache_ttl_cold_ms=int(os.getenv("POOL_CACHE_TTL_COLD_MS", "30000")),
            fee_collection_enabled=_env_bool("FEE_COLLECTION_ENABLED", True),
        )
