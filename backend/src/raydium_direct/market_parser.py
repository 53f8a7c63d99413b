from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from construct import Bytes, Int64ul, Padding, Struct
from solders.pubkey import Pubkey

# Serum/OpenBook v1 market state (v3 layout). AMM v4 swaps need the
# orderbook accounts and the vault signer of the pool's market.

MARKET_LAYOUT = Struct(
    Padding(5),
    "account_flags" / Int64ul,
    "own_address" / Bytes(32),
    "vault_signer_nonce" / Int64ul,
    "base_mint" / Bytes(32),
    "quote_mint" / Bytes(32),
    "base_vault" / Bytes(32),
    "base_deposits_total" / Int64ul,
    "base_fees_accrued" / Int64ul,
    "quote_vault" / Bytes(32),
    "quote_deposits_total" / Int64ul,
    "quote_fees_accrued" / Int64ul,
    "quote_dust_threshold" / Int64ul,
    "request_queue" / Bytes(32),
    "event_queue" / Bytes(32),
    "bids" / Bytes(32),
    "asks" / Bytes(32),
    "base_lot_size" / Int64ul,
    "quote_lot_size" / Int64ul,
    "fee_rate_bps" / Int64ul,
    "referrer_rebates_accrued" / Int64ul,
    Padding(7),
)


@dataclass
class OpenBookMarketState:
    market_id: Pubkey
    base_mint: Pubkey
    quote_mint: Pubkey
    bids: Pubkey
    asks: Pubkey
    event_queue: Pubkey
    base_vault: Pubkey
    quote_vault: Pubkey
    vault_signer: Pubkey
    vault_signer_nonce: int

    def serves(self, mint_x: Pubkey, mint_y: Pubkey) -> bool:
        """True when this market trades exactly the given pair (either order)."""
        return {self.base_mint, self.quote_mint} == {mint_x, mint_y}


def derive_vault_signer(market_id: Pubkey, nonce: int, program_id: Pubkey) -> Pubkey:
    # Not a canonical PDA: the nonce is stored in the market, so use it as-is.
    seeds = [bytes(market_id), nonce.to_bytes(8, "little")]
    return Pubkey.create_program_address(seeds, program_id)


def parse_market_account(data: bytes, market_pubkey: Pubkey, program_id: Pubkey) -> Optional[OpenBookMarketState]:
    """None when data is not a market account or its vault signer can't be derived."""
    try:
        parsed = MARKET_LAYOUT.parse(data)
        nonce = int(parsed.vault_signer_nonce)
        vault_signer = derive_vault_signer(market_pubkey, nonce, program_id)
    except Exception:
        return None

    def key(field: str) -> Pubkey:
        return Pubkey.from_bytes(parsed[field])

    return OpenBookMarketState(
        market_id=market_pubkey,
        base_mint=key("base_mint"),
        quote_mint=key("quote_mint"),
        bids=key("bids"),
        asks=key("asks"),
        event_queue=key("event_queue"),
        base_vault=key("base_vault"),
        quote_vault=key("quote_vault"),
        vault_signer=vault_signer,
        vault_signer_nonce=nonce,
    )
