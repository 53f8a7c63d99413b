"""
Post-swap platform fee skim.

Runs only after a confirmed swap, as its own transaction. Nothing here may
turn a successful swap into a failure: every error is logged and dropped.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from decimal import ROUND_FLOOR, Decimal, InvalidOperation
from typing import Optional, Union

import requests
from solders.pubkey import Pubkey
from solders.system_program import TransferParams, transfer

from raydium_direct.ix_builder import (
    build_signed_transaction,
    detect_token_program,
    ensure_ata_ix,
    get_associated_token_address,
    transfer_checked_ix,
)
from swap_models import PendingFeeCollection, Quote

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FeePolicy:
    fee_bps: Decimal = Decimal(0)
    receiver: str = ""

    @property
    def active(self) -> bool:
        return self.fee_bps > 0 and bool(self.receiver)


def compute_fee_amount(received_raw: int, fee_bps: Union[int, Decimal]) -> int:
    """floor(received * bps / 10000); fractional bps are applied before flooring."""
    if received_raw <= 0 or fee_bps <= 0:
        return 0
    return int((received_raw * Decimal(fee_bps) / 10000).to_integral_value(rounding=ROUND_FLOOR))


class FeePolicyClient:
    """GET swap-settings -> {success, body: {fee, feeReceiver}}; defaults to no fee."""

    def __init__(self, url: str, timeout: float = 8.0, session: Optional[requests.Session] = None):
        self.url = url
        self.timeout = timeout
        self.session = session or requests.Session()

    def fetch(self) -> FeePolicy:
        try:
            resp = self.session.get(self.url, timeout=self.timeout)
            resp.raise_for_status()
            payload = resp.json()
        except (requests.RequestException, ValueError) as e:
            logger.warning(f"[FEE] Could not fetch fee policy: {e}")
            return FeePolicy()
        if not isinstance(payload, dict) or not payload.get("success"):
            return FeePolicy()
        body = payload.get("body") or {}
        try:
            fee_bps = Decimal(str(body.get("fee") or 0))
        except (InvalidOperation, ValueError):
            fee_bps = Decimal(0)
        if not fee_bps.is_finite():
            fee_bps = Decimal(0)
        return FeePolicy(fee_bps=max(fee_bps, 0), receiver=str(body.get("feeReceiver") or ""))


class FeeCollector:
    def __init__(self, api, policy_client: FeePolicyClient, tx_version: str = "legacy",
                 confirm_max_retries: int = 30, confirm_poll_interval_sec: float = 1.0):
        self.api = api
        self.policy_client = policy_client
        self.tx_version = tx_version
        self.confirm_max_retries = confirm_max_retries
        self.confirm_poll_interval_sec = confirm_poll_interval_sec

    def pending_collection(self, quote: Quote, policy: FeePolicy) -> Optional[PendingFeeCollection]:
        if not policy.active or quote.buy_asset is None or not quote.amount_out:
            return None
        amount = compute_fee_amount(quote.amount_out, policy.fee_bps)
        if amount <= 0:
            return None
        return PendingFeeCollection(receiver=policy.receiver, asset=quote.buy_asset, amount=amount)

    async def collect(self, quote: Quote, signer) -> Optional[str]:
        """Returns the fee transfer signature, or None if skipped or failed."""
        try:
            loop = asyncio.get_running_loop()
            policy = await loop.run_in_executor(None, self.policy_client.fetch)
            pending = self.pending_collection(quote, policy)
            if pending is None:
                return None
            signature = await self._transfer(pending, signer)
            logger.info(
                f"[FEE] Sent {pending.amount} raw {pending.asset.symbol} to {pending.receiver[:6]}… ({signature})"
            )
            return signature
        except Exception as e:
            logger.error(f"[FEE] Fee collection failed: {e}")
            return None

    async def _transfer(self, pending: PendingFeeCollection, signer) -> str:
        owner = signer.pubkey()
        receiver = Pubkey.from_string(pending.receiver)
        if pending.asset.is_native:
            instructions = [transfer(TransferParams(from_pubkey=owner, to_pubkey=receiver, lamports=pending.amount))]
        else:
            mint = Pubkey.from_string(pending.asset.mint)
            program = await detect_token_program(self.api, mint)
            source = get_associated_token_address(owner, mint, program)
            destination, create_ix = await ensure_ata_ix(self.api, receiver, mint, owner, program)
            instructions = [create_ix] if create_ix else []
            instructions.append(
                transfer_checked_ix(source, mint, destination, owner, pending.amount, pending.asset.decimals, program)
            )

        blockhash = await self.api.get_latest_blockhash()
        tx = build_signed_transaction(instructions, owner, [signer], blockhash, self.tx_version)
        signature = await self.api.send_raw_transaction(bytes(tx))
        confirmed, error = await self.api.confirm_transaction(
            signature, max_retries=self.confirm_max_retries, poll_interval=self.confirm_poll_interval_sec
        )
        if not confirmed:
            logger.warning(f"[FEE] Fee transfer {signature} not confirmed: {error}")
        return signature
