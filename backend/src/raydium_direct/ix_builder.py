from __future__ import annotations

import hashlib
import struct
from typing import List, Optional, Sequence, Tuple, Union

from solders.compute_budget import set_compute_unit_limit, set_compute_unit_price
from solders.hash import Hash
from solders.instruction import AccountMeta, Instruction
from solders.keypair import Keypair
from solders.message import Message, MessageV0
from solders.pubkey import Pubkey
from solders.system_program import ID as SYSTEM_PROGRAM_ID
from solders.system_program import TransferParams, transfer
from solders.transaction import Transaction, VersionedTransaction
from spl.token.constants import ASSOCIATED_TOKEN_PROGRAM_ID, TOKEN_2022_PROGRAM_ID, TOKEN_PROGRAM_ID

from raydium_direct.market_parser import OpenBookMarketState
from raydium_direct.pool_parser import ClmmPoolState, CpmmPoolState, RaydiumPoolState

PROGRAM_IDS = {
    "mainnet": {
        "amm_v4": Pubkey.from_string("675kPX9MHTjS2zt1qfr1NYHuzeLXfQM9H24wFSUt1Mp8"),
        "cpmm": Pubkey.from_string("CPMMoo8L3F4NbTegBCKVNunggL7H1ZpdTHKxQB5qKP1C"),
        "clmm": Pubkey.from_string("CAMMCzo5YL8w4VFF8KVHrK22GGUsp5VTaW7grrKgrWqK"),
    },
    "devnet": {
        "amm_v4": Pubkey.from_string("HWy1jotHpo6UqeQxx49dpYYdQB8wj9Qk9MdxwjLvDHB8"),
        "cpmm": Pubkey.from_string("CPMDWBwJDtYax9qW7AyRuVC19Cc4L4Vcy4n2BHAbHkCW"),
        "clmm": Pubkey.from_string("devi51mZmdwUJGU9hjN27vEz64Gps7uUefqxg27EAtH"),
    },
}
RAYDIUM_AMM_V4 = PROGRAM_IDS["mainnet"]["amm_v4"]
MEMO_PROGRAM = Pubkey.from_string("MemoSq4gqABAXKb96qnH8TysNcWxMyWCqXgDLGmfcHr")
WSOL_MINT = Pubkey.from_string("So11111111111111111111111111111111111111112")

SWAP_BASE_IN_IX = 9
SWAP_BASE_OUT_IX = 11
TOKEN_IX_CLOSE_ACCOUNT = 9
TOKEN_IX_TRANSFER_CHECKED = 12
TOKEN_IX_SYNC_NATIVE = 17
ATA_IX_CREATE_IDEMPOTENT = 1
TICK_ARRAY_SIZE = 60


def anchor_discriminator(name: str) -> bytes:
    return hashlib.sha256(f"global:{name}".encode()).digest()[:8]


CPMM_SWAP_BASE_INPUT = anchor_discriminator("swap_base_input")
CPMM_SWAP_BASE_OUTPUT = anchor_discriminator("swap_base_output")
CLMM_SWAP_V2 = anchor_discriminator("swap_v2")


# --------------------------------------------------------------------------- #
# PDAs
# --------------------------------------------------------------------------- #
def derive_amm_authority(program_id: Pubkey = RAYDIUM_AMM_V4) -> Pubkey:
    authority, _ = Pubkey.find_program_address([b"amm authority"], program_id)
    return authority


def derive_cpmm_authority(program_id: Pubkey) -> Pubkey:
    authority, _ = Pubkey.find_program_address([b"vault_and_lp_mint_auth_seed"], program_id)
    return authority


def derive_clmm_observation(pool_id: Pubkey, program_id: Pubkey) -> Pubkey:
    return Pubkey.find_program_address([b"observation", bytes(pool_id)], program_id)[0]


def derive_tick_array_bitmap_extension(pool_id: Pubkey, program_id: Pubkey) -> Pubkey:
    return Pubkey.find_program_address([b"pool_tick_array_bitmap_extension", bytes(pool_id)], program_id)[0]


def tick_array_start_index(tick: int, tick_spacing: int) -> int:
    ticks_per_array = tick_spacing * TICK_ARRAY_SIZE
    return (tick // ticks_per_array) * ticks_per_array


def derive_tick_array(pool_id: Pubkey, start_index: int, program_id: Pubkey) -> Pubkey:
    seed = start_index.to_bytes(4, "big", signed=True)
    return Pubkey.find_program_address([b"tick_array", bytes(pool_id), seed], program_id)[0]


def candidate_tick_array_starts(tick_current: int, tick_spacing: int, zero_for_one: bool, count: int = 5) -> List[int]:
    """Tick array start indexes walked in swap direction (price down when zero_for_one)."""
    ticks_per_array = tick_spacing * TICK_ARRAY_SIZE
    start = tick_array_start_index(tick_current, tick_spacing)
    step = -ticks_per_array if zero_for_one else ticks_per_array
    return [start + i * step for i in range(count)]


def get_associated_token_address(owner: Pubkey, mint: Pubkey, token_program: Pubkey = TOKEN_PROGRAM_ID) -> Pubkey:
    ata, _ = Pubkey.find_program_address(
        [bytes(owner), bytes(token_program), bytes(mint)], ASSOCIATED_TOKEN_PROGRAM_ID
    )
    return ata


# --------------------------------------------------------------------------- #
# Token account helpers
# --------------------------------------------------------------------------- #
def create_ata_idempotent_ix(
    payer: Pubkey,
    owner: Pubkey,
    mint: Pubkey,
    token_program: Pubkey = TOKEN_PROGRAM_ID,
) -> Tuple[Pubkey, Instruction]:
    ata = get_associated_token_address(owner, mint, token_program)
    accounts = [
        AccountMeta(pubkey=payer, is_signer=True, is_writable=True),
        AccountMeta(pubkey=ata, is_signer=False, is_writable=True),
        AccountMeta(pubkey=owner, is_signer=False, is_writable=False),
        AccountMeta(pubkey=mint, is_signer=False, is_writable=False),
        AccountMeta(pubkey=SYSTEM_PROGRAM_ID, is_signer=False, is_writable=False),
        AccountMeta(pubkey=token_program, is_signer=False, is_writable=False),
    ]
    ix = Instruction(
        program_id=ASSOCIATED_TOKEN_PROGRAM_ID,
        accounts=accounts,
        data=bytes([ATA_IX_CREATE_IDEMPOTENT]),
    )
    return ata, ix


async def ensure_ata_ix(
    api,
    wallet: Pubkey,
    mint: Pubkey,
    payer: Pubkey,
    token_program: Pubkey = TOKEN_PROGRAM_ID,
) -> Tuple[Pubkey, Optional[Instruction]]:
    """
    Check if ATA exists, return (ata_address, create_ix or None).
    """
    ata, create_ix = create_ata_idempotent_ix(payer, wallet, mint, token_program)
    if await api.account_exists(ata):
        return ata, None
    return ata, create_ix


def sync_native_ix(account: Pubkey, token_program: Pubkey = TOKEN_PROGRAM_ID) -> Instruction:
    return Instruction(
        program_id=token_program,
        accounts=[AccountMeta(pubkey=account, is_signer=False, is_writable=True)],
        data=bytes([TOKEN_IX_SYNC_NATIVE]),
    )


def wrap_sol_ixs(owner: Pubkey, wsol_account: Pubkey, lamports: int) -> List[Instruction]:
    """Fund an existing (or just-created) WSOL ATA with lamports and sync its balance."""
    return [
        transfer(TransferParams(from_pubkey=owner, to_pubkey=wsol_account, lamports=lamports)),
        sync_native_ix(wsol_account),
    ]


def close_account_ix(
    account: Pubkey,
    destination: Pubkey,
    owner: Pubkey,
    token_program: Pubkey = TOKEN_PROGRAM_ID,
) -> Instruction:
    return Instruction(
        program_id=token_program,
        accounts=[
            AccountMeta(pubkey=account, is_signer=False, is_writable=True),
            AccountMeta(pubkey=destination, is_signer=False, is_writable=True),
            AccountMeta(pubkey=owner, is_signer=True, is_writable=False),
        ],
        data=bytes([TOKEN_IX_CLOSE_ACCOUNT]),
    )


def transfer_checked_ix(
    source: Pubkey,
    mint: Pubkey,
    destination: Pubkey,
    owner: Pubkey,
    amount: int,
    decimals: int,
    token_program: Pubkey = TOKEN_PROGRAM_ID,
) -> Instruction:
    return Instruction(
        program_id=token_program,
        accounts=[
            AccountMeta(pubkey=source, is_signer=False, is_writable=True),
            AccountMeta(pubkey=mint, is_signer=False, is_writable=False),
            AccountMeta(pubkey=destination, is_signer=False, is_writable=True),
            AccountMeta(pubkey=owner, is_signer=True, is_writable=False),
        ],
        data=struct.pack("<BQB", TOKEN_IX_TRANSFER_CHECKED, amount, decimals),
    )


def compute_budget_ixs(compute_units: int, priority_fee_microlamports: int) -> List[Instruction]:
    instructions: List[Instruction] = []
    if compute_units:
        instructions.append(set_compute_unit_limit(compute_units))
    if priority_fee_microlamports:
        instructions.append(set_compute_unit_price(priority_fee_microlamports))
    return instructions


# --------------------------------------------------------------------------- #
# AMM v4
# --------------------------------------------------------------------------- #
def get_vault_mapping(pool_state: RaydiumPoolState, input_mint: Pubkey) -> Tuple[Pubkey, Pubkey]:
    """
    Returns (source_vault, dest_vault) for instruction account ordering.
    """
    if input_mint == pool_state.base_mint:
        return pool_state.base_vault, pool_state.quote_vault
    if input_mint == pool_state.quote_mint:
        return pool_state.quote_vault, pool_state.base_vault
    raise ValueError(f"Input mint {input_mint} not in pool {pool_state.amm_id}")


def build_amm_v4_swap_ix(
    pool_state: RaydiumPoolState,
    market_state: OpenBookMarketState,
    user_wallet: Pubkey,
    user_source_ata: Pubkey,
    user_dest_ata: Pubkey,
    amount: int,
    other_amount_threshold: int,
    base_in: bool = True,
    program_id: Pubkey = RAYDIUM_AMM_V4,
) -> Instruction:
    """
    base_in: amount is the exact input and the threshold the minimum output.
    Otherwise the threshold is the maximum input and amount the exact output.
    """
    if base_in:
        data = struct.pack("<BQQ", SWAP_BASE_IN_IX, amount, other_amount_threshold)
    else:
        data = struct.pack("<BQQ", SWAP_BASE_OUT_IX, other_amount_threshold, amount)

    accounts = [
        AccountMeta(TOKEN_PROGRAM_ID, is_signer=False, is_writable=False),
        AccountMeta(pool_state.amm_id, is_signer=False, is_writable=True),
        AccountMeta(derive_amm_authority(program_id), is_signer=False, is_writable=False),
        AccountMeta(pool_state.open_orders, is_signer=False, is_writable=True),
        AccountMeta(pool_state.target_orders, is_signer=False, is_writable=True),
        AccountMeta(pool_state.base_vault, is_signer=False, is_writable=True),
        AccountMeta(pool_state.quote_vault, is_signer=False, is_writable=True),
        AccountMeta(pool_state.market_program_id, is_signer=False, is_writable=False),
        AccountMeta(market_state.market_id, is_signer=False, is_writable=True),
        AccountMeta(market_state.bids, is_signer=False, is_writable=True),
        AccountMeta(market_state.asks, is_signer=False, is_writable=True),
        AccountMeta(market_state.event_queue, is_signer=False, is_writable=True),
        AccountMeta(market_state.base_vault, is_signer=False, is_writable=True),
        AccountMeta(market_state.quote_vault, is_signer=False, is_writable=True),
        AccountMeta(market_state.vault_signer, is_signer=False, is_writable=False),
        AccountMeta(user_source_ata, is_signer=False, is_writable=True),
        AccountMeta(user_dest_ata, is_signer=False, is_writable=True),
        AccountMeta(user_wallet, is_signer=True, is_writable=False),
    ]
    return Instruction(program_id=program_id, data=data, accounts=accounts)


# --------------------------------------------------------------------------- #
# CPMM
# --------------------------------------------------------------------------- #
def build_cpmm_swap_ix(
    pool_state: CpmmPoolState,
    program_id: Pubkey,
    payer: Pubkey,
    input_mint: Pubkey,
    user_input_ata: Pubkey,
    user_output_ata: Pubkey,
    amount: int,
    other_amount_threshold: int,
    base_in: bool = True,
) -> Instruction:
    if input_mint == pool_state.token_0_mint:
        input_vault, output_vault = pool_state.token_0_vault, pool_state.token_1_vault
        input_program, output_program = pool_state.token_0_program, pool_state.token_1_program
        output_mint = pool_state.token_1_mint
    elif input_mint == pool_state.token_1_mint:
        input_vault, output_vault = pool_state.token_1_vault, pool_state.token_0_vault
        input_program, output_program = pool_state.token_1_program, pool_state.token_0_program
        output_mint = pool_state.token_0_mint
    else:
        raise ValueError(f"Input mint {input_mint} not in pool {pool_state.pool_id}")

    if base_in:
        data = CPMM_SWAP_BASE_INPUT + struct.pack("<QQ", amount, other_amount_threshold)
    else:
        data = CPMM_SWAP_BASE_OUTPUT + struct.pack("<QQ", other_amount_threshold, amount)

    accounts = [
        AccountMeta(payer, is_signer=True, is_writable=False),
        AccountMeta(derive_cpmm_authority(program_id), is_signer=False, is_writable=False),
        AccountMeta(pool_state.amm_config, is_signer=False, is_writable=False),
        AccountMeta(pool_state.pool_id, is_signer=False, is_writable=True),
        AccountMeta(user_input_ata, is_signer=False, is_writable=True),
        AccountMeta(user_output_ata, is_signer=False, is_writable=True),
        AccountMeta(input_vault, is_signer=False, is_writable=True),
        AccountMeta(output_vault, is_signer=False, is_writable=True),
        AccountMeta(input_program, is_signer=False, is_writable=False),
        AccountMeta(output_program, is_signer=False, is_writable=False),
        AccountMeta(input_mint, is_signer=False, is_writable=False),
        AccountMeta(output_mint, is_signer=False, is_writable=False),
        AccountMeta(pool_state.observation_key, is_signer=False, is_writable=True),
    ]
    return Instruction(program_id=program_id, data=data, accounts=accounts)


# --------------------------------------------------------------------------- #
# CLMM
# --------------------------------------------------------------------------- #
def build_clmm_swap_ix(
    pool_state: ClmmPoolState,
    program_id: Pubkey,
    payer: Pubkey,
    input_mint: Pubkey,
    user_input_ata: Pubkey,
    user_output_ata: Pubkey,
    observation: Pubkey,
    remaining_accounts: Sequence[Pubkey],
    amount: int,
    other_amount_threshold: int,
    base_in: bool = True,
    sqrt_price_limit_x64: int = 0,
) -> Instruction:
    """
    swap_v2. remaining_accounts is the tick-array bitmap extension followed by
    the tick arrays the swap may cross.
    """
    if input_mint == pool_state.token_mint_0:
        input_vault, output_vault = pool_state.token_vault_0, pool_state.token_vault_1
        output_mint = pool_state.token_mint_1
    elif input_mint == pool_state.token_mint_1:
        input_vault, output_vault = pool_state.token_vault_1, pool_state.token_vault_0
        output_mint = pool_state.token_mint_0
    else:
        raise ValueError(f"Input mint {input_mint} not in pool {pool_state.pool_id}")

    data = (
        CLMM_SWAP_V2
        + struct.pack("<QQ", amount, other_amount_threshold)
        + sqrt_price_limit_x64.to_bytes(16, "little")
        + struct.pack("<?", base_in)
    )
    accounts = [
        AccountMeta(payer, is_signer=True, is_writable=False),
        AccountMeta(pool_state.amm_config, is_signer=False, is_writable=False),
        AccountMeta(pool_state.pool_id, is_signer=False, is_writable=True),
        AccountMeta(user_input_ata, is_signer=False, is_writable=True),
        AccountMeta(user_output_ata, is_signer=False, is_writable=True),
        AccountMeta(input_vault, is_signer=False, is_writable=True),
        AccountMeta(output_vault, is_signer=False, is_writable=True),
        AccountMeta(observation, is_signer=False, is_writable=True),
        AccountMeta(TOKEN_PROGRAM_ID, is_signer=False, is_writable=False),
        AccountMeta(TOKEN_2022_PROGRAM_ID, is_signer=False, is_writable=False),
        AccountMeta(MEMO_PROGRAM, is_signer=False, is_writable=False),
        AccountMeta(input_mint, is_signer=False, is_writable=False),
        AccountMeta(output_mint, is_signer=False, is_writable=False),
    ]
    accounts.extend(AccountMeta(acc, is_signer=False, is_writable=True) for acc in remaining_accounts)
    return Instruction(program_id=program_id, data=data, accounts=accounts)


# --------------------------------------------------------------------------- #
# Token program detection / transaction assembly
# --------------------------------------------------------------------------- #
TOKEN_PROGRAMS = (TOKEN_PROGRAM_ID, TOKEN_2022_PROGRAM_ID)


async def detect_token_program(api, mint: Pubkey) -> Pubkey:
    """
    The token program (classic or Token-2022) that owns mint. Every ATA
    derivation and transfer for the mint has to target this program.
    """
    if mint == WSOL_MINT:
        return TOKEN_PROGRAM_ID
    owner = await api.get_account_owner(mint)
    if owner is None:
        raise ValueError(f"mint {mint} not found")
    if owner not in TOKEN_PROGRAMS:
        raise ValueError(f"mint {mint} is owned by {owner}, not a token program")
    return owner


def build_signed_transaction(
    instructions: Sequence[Instruction],
    payer: Pubkey,
    signers: Sequence[Keypair],
    recent_blockhash: Hash,
    version: str = "v0",
) -> Union[Transaction, VersionedTransaction]:
    """Compile and sign with payer as fee payer, legacy or v0 message format."""
    if version == "legacy":
        message = Message.new_with_blockhash(list(instructions), payer, recent_blockhash)
    else:
        message = MessageV0.try_compile(payer, list(instructions), [], recent_blockhash)
    # solders panics (BaseException) on a signer mismatch, so check first
    required = set(message.account_keys[:message.header.num_required_signatures])
    provided = {kp.pubkey() for kp in signers}
    if provided != required:
        missing = ", ".join(str(k) for k in required - provided) or "none"
        extra = ", ".join(str(k) for k in provided - required) or "none"
        raise ValueError(f"signer mismatch (missing: {missing}; unexpected: {extra})")
    if version == "legacy":
        return Transaction(list(signers), message, recent_blockhash)
    return VersionedTransaction(message, list(signers))
