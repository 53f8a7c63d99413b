"""
Async Solana RPC wrapper used by the swap engine.

Normalizes solana-py response objects into plain values and turns transport
faults into SolanaRPCError so callers only deal with one exception type.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

from solana.rpc.async_api import AsyncClient
from solana.rpc.commitment import Confirmed
from solana.rpc.types import TokenAccountOpts, TxOpts
from solders.account import Account
from solders.hash import Hash
from solders.pubkey import Pubkey
from solders.signature import Signature
from solders.transaction import Transaction, VersionedTransaction
from solders.transaction_status import TransactionConfirmationStatus

logger = logging.getLogger(__name__)

# solders enums are not hashable; membership compares by equality
_CONFIRMED_STATUSES = (
    TransactionConfirmationStatus.Confirmed,
    TransactionConfirmationStatus.Finalized,
)


class SolanaRPCError(Exception):
    pass


class SolanaAPI:
    def __init__(self, rpc_url: str = "https://api.mainnet-beta.solana.com",
                 client: Optional[AsyncClient] = None, commitment=Confirmed):
        self.rpc_url = rpc_url
        self.commitment = commitment
        self.rpc_client = client or AsyncClient(rpc_url, commitment=commitment)

    async def _call(self, name: str, *args, **kwargs):
        try:
            return await getattr(self.rpc_client, name)(*args, **kwargs)
        except Exception as e:
            raise SolanaRPCError(f"{name} failed: {e}") from e

    # ------------------------------------------------------------------ #
    # Accounts
    # ------------------------------------------------------------------ #
    async def get_account_info(self, pubkey: Pubkey) -> Optional[Account]:
        resp = await self._call("get_account_info", pubkey)
        return getattr(resp, "value", None)

    async def get_account_data(self, pubkey: Pubkey) -> Optional[bytes]:
        account = await self.get_account_info(pubkey)
        return bytes(account.data) if account is not None else None

    async def get_account_owner(self, pubkey: Pubkey) -> Optional[Pubkey]:
        account = await self.get_account_info(pubkey)
        return account.owner if account is not None else None

    async def account_exists(self, pubkey: Pubkey) -> bool:
        return await self.get_account_info(pubkey) is not None

    async def existing_accounts(self, pubkeys: Sequence[Pubkey]) -> List[bool]:
        if not pubkeys:
            return []
        resp = await self._call("get_multiple_accounts", list(pubkeys))
        values = getattr(resp, "value", None) or []
        return [values[i] is not None if i < len(values) else False for i in range(len(pubkeys))]

    # ------------------------------------------------------------------ #
    # Balances
    # ------------------------------------------------------------------ #
    async def get_sol_balance(self, owner: Pubkey) -> int:
        """Lamports held by owner."""
        resp = await self._call("get_balance", owner)
        return int(getattr(resp, "value", 0) or 0)

    async def get_token_balance(self, owner: Pubkey, mint: Pubkey) -> int:
        """Raw token amount summed over every token account owner holds for mint."""
        resp = await self._call("get_token_accounts_by_owner_json_parsed", owner, TokenAccountOpts(mint=mint))
        total = 0
        for keyed in getattr(resp, "value", None) or []:
            parsed = _parsed_data(keyed)
            amount = parsed.get("info", {}).get("tokenAmount", {}).get("amount")
            if amount is not None:
                total += int(amount)
        return total

    # ------------------------------------------------------------------ #
    # Transactions
    # ------------------------------------------------------------------ #
    async def get_latest_blockhash(self) -> Hash:
        resp = await self._call("get_latest_blockhash")
        return resp.value.blockhash

    async def send_raw_transaction(self, tx_bytes: bytes, skip_preflight: bool = False) -> str:
        """Submit once. Never retried here: a resend could double-execute a swap."""
        resp = await self._call(
            "send_raw_transaction",
            tx_bytes,
            opts=TxOpts(skip_preflight=skip_preflight, preflight_commitment=self.commitment),
        )
        return str(resp.value)

    async def confirm_transaction(
        self,
        signature: str,
        max_retries: int = 30,
        poll_interval: float = 1.0,
    ) -> Tuple[bool, Optional[str]]:
        """
        Poll signature status a bounded number of times.

        Returns (confirmed, error). error is set when the transaction landed
        but failed, or when polling ran out.
        """
        sig = Signature.from_string(signature)
        for attempt in range(max_retries):
            try:
                resp = await self._call("get_signature_statuses", [sig])
                statuses = getattr(resp, "value", None) or []
                status = statuses[0] if statuses else None
            except SolanaRPCError as e:
                logger.warning(f"[RPC] Status poll {attempt + 1}/{max_retries} failed: {e}")
                status = None
            if status is not None:
                if status.err is not None:
                    return False, f"transaction failed on-chain: {status.err}"
                if status.confirmation_status in _CONFIRMED_STATUSES:
                    return True, None
            if attempt < max_retries - 1:
                await asyncio.sleep(poll_interval)
        return False, f"not confirmed after {max_retries} attempts"

    async def simulate_transaction(self, tx: Union[Transaction, VersionedTransaction]) -> Dict[str, Any]:
        resp = await self._call("simulate_transaction", tx, sig_verify=False)
        value = resp.value
        return {
            "success": value.err is None,
            "error": str(value.err) if value.err else None,
            "logs": list(value.logs or []),
            "units_consumed": value.units_consumed,
        }

    async def close(self):
        await self.rpc_client.close()


def _parsed_data(keyed: Any) -> Dict[str, Any]:
    account = getattr(keyed, "account", None)
    if account is None and isinstance(keyed, dict):
        account = keyed.get("account", {})
    data = getattr(account, "data", None)
    if data is None and isinstance(account, dict):
        data = account.get("data", {})
    parsed = getattr(data, "parsed", None)
    if parsed is None and isinstance(data, dict):
        parsed = data.get("parsed", {})
    return parsed if isinstance(parsed, dict) else {}
