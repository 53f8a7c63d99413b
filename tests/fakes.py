"""Shared test doubles for the aggregator, RPC and balance collaborators."""

from solders.hash import Hash
from solders.instruction import AccountMeta, Instruction
from solders.pubkey import Pubkey
from spl.token.constants import TOKEN_PROGRAM_ID

from raydium_direct.pool_parser import PoolKind
from raydium_direct.swap_builders import SwapBuilder
from solana_api import SolanaRPCError

USDC_MINT = "EPjFWdd5AufqSSqeM2qN1xzybapC8G4wEGGkZwyTDt1v"
WSOL = "So11111111111111111111111111111111111111112"


def api_pool_item(mint_a, mint_b, amount_a="1", amount_b="2", decimals_a=6, decimals_b=6,
                  fee_rate=0.0025, pool_id="pool-1", program_id="amm", pool_type="Standard", price=None):
    item = {
        "type": pool_type,
        "programId": program_id,
        "id": pool_id,
        "mintA": {"address": mint_a, "decimals": decimals_a, "symbol": "A"},
        "mintB": {"address": mint_b, "decimals": decimals_b, "symbol": "B"},
        "feeRate": fee_rate,
        "tvl": 1000,
    }
    if amount_a is not None:
        item["mintAmountA"] = amount_a
    if amount_b is not None:
        item["mintAmountB"] = amount_b
    if price is not None:
        item["price"] = price
    return item


class FakeRaydiumApi:
    def __init__(self, pools=None):
        self.pools = dict(pools or {})
        self.calls = []
        self.gates = {}
        self.error = None

    def add(self, item):
        self.pools[frozenset((item["mintA"]["address"], item["mintB"]["address"]))] = item

    async def fetch_pools_by_mints(self, mint_a, mint_b, page=1, page_size=1):
        self.calls.append((mint_a, mint_b))
        gate = self.gates.get((mint_a, mint_b))
        if gate is not None:
            await gate.wait()
        if self.error is not None:
            raise self.error
        item = self.pools.get(frozenset((mint_a, mint_b)))
        return [item] if item else []

    async def fetch_pool_by_id(self, pool_id):
        for item in self.pools.values():
            if item["id"] == pool_id:
                return item
        return None


class FakeBalances:
    def __init__(self, raw=None):
        self.raw = dict(raw or {})
        self.refreshed = []

    async def refresh(self, asset):
        self.refreshed.append(asset.mint)
        return self.raw.get(asset.mint)

    def get_raw_balance(self, mint):
        return self.raw.get(mint)


class FakeSolana:
    def __init__(self, owners=None, existing=None, confirm=(True, None), send_errors=None):
        self.owners = dict(owners or {})
        self.existing = set(existing or [])
        self.confirm = confirm
        self.send_errors = list(send_errors or [])
        self.sent = []
        self.confirm_calls = 0

    async def get_account_owner(self, pubkey):
        return self.owners.get(pubkey, TOKEN_PROGRAM_ID)

    async def account_exists(self, pubkey):
        return pubkey in self.existing

    async def existing_accounts(self, pubkeys):
        return [p in self.existing for p in pubkeys]

    async def get_latest_blockhash(self):
        return Hash.default()

    async def send_raw_transaction(self, tx_bytes, skip_preflight=False):
        self.sent.append(tx_bytes)
        if self.send_errors:
            error = self.send_errors.pop(0)
            if error is not None:
                raise error
        return f"sig-{len(self.sent)}"

    async def confirm_transaction(self, signature, max_retries=30, poll_interval=1.0):
        self.confirm_calls += 1
        return self.confirm

    async def simulate_transaction(self, tx):
        return {"success": True, "error": None, "logs": ["ok"], "units_consumed": 1234}


class FakeBuilder(SwapBuilder):
    """Registers under any program id and emits one marker instruction."""

    def __init__(self, kind=PoolKind.STANDARD):
        super().__init__(Pubkey.new_unique())
        self.kind = kind
        self.built = []

    async def load_aux(self, api, pool, input_mint):
        return {"state": pool.id}

    def _swap_ix(self, params, base_in):
        self.built.append((params, base_in))
        return Instruction(
            self.program_id,
            bytes([1 if base_in else 0]),
            [
                AccountMeta(params.owner, is_signer=True, is_writable=True),
                AccountMeta(params.input_account, is_signer=False, is_writable=True),
                AccountMeta(params.output_account, is_signer=False, is_writable=True),
            ],
        )


def rpc_error(message="boom"):
    return SolanaRPCError(message)
