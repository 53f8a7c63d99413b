import unittest
from unittest.mock import AsyncMock

from solders.pubkey import Pubkey

from raydium_direct.cache import PoolCache
from raydium_direct.ix_builder import PROGRAM_IDS
from raydium_direct.market_parser import MARKET_LAYOUT, derive_vault_signer, parse_market_account
from raydium_direct.pool_parser import (
    CLMM_POOL_LAYOUT,
    LIQUIDITY_POOL_V4_LAYOUT,
    ConcentratedPool,
    PoolToken,
    StandardPool,
)
from raydium_direct.swap_builders import (
    ConcentratedBuilder,
    CpmmBuilder,
    StandardAmmBuilder,
    SwapBuilderRegistry,
    SwapParams,
)

AMM_V4 = PROGRAM_IDS["mainnet"]["amm_v4"]
MARKET_PROGRAM = Pubkey.from_bytes(bytes([77]) * 32)


def _key(n: int) -> bytes:
    return bytes([n]) * 32


def _pk(n: int) -> Pubkey:
    return Pubkey.from_bytes(_key(n))


def usable_nonce(market_id: Pubkey) -> int:
    for nonce in range(256):
        try:
            derive_vault_signer(market_id, nonce, MARKET_PROGRAM)
            return nonce
        except Exception:
            continue
    raise AssertionError("no vault signer nonce found")


def amm_account(market_id: Pubkey) -> bytes:
    values = {sc.name: 0 for sc in LIQUIDITY_POOL_V4_LAYOUT.subcons if sc.name not in (None, "padding")}
    values.update(status=6, base_decimal=9, quote_decimal=6, swap_fee_numerator=25, swap_fee_denominator=10000)
    for i, name in enumerate((
        "base_vault", "quote_vault", "base_mint", "quote_mint", "lp_mint", "open_orders",
        "market_id", "market_program_id", "target_orders", "withdraw_queue", "lp_vault", "owner",
    ), start=1):
        values[name] = _key(i)
    values["market_id"] = bytes(market_id)
    values["market_program_id"] = bytes(MARKET_PROGRAM)
    return LIQUIDITY_POOL_V4_LAYOUT.build(values)


def market_account(market_id: Pubkey, base_mint: bytes, quote_mint: bytes) -> bytes:
    values = {name: 0 for name in (
        "account_flags", "base_deposits_total", "base_fees_accrued", "quote_deposits_total",
        "quote_fees_accrued", "quote_dust_threshold", "base_lot_size", "quote_lot_size",
        "fee_rate_bps", "referrer_rebates_accrued",
    )}
    values.update(
        own_address=bytes(market_id),
        vault_signer_nonce=usable_nonce(market_id),
        base_mint=base_mint,
        quote_mint=quote_mint,
        base_vault=_key(30),
        quote_vault=_key(31),
        request_queue=_key(32),
        event_queue=_key(33),
        bids=_key(34),
        asks=_key(35),
    )
    return MARKET_LAYOUT.build(values)


def standard_pool(pool_id: Pubkey, program_id: Pubkey = AMM_V4) -> StandardPool:
    return StandardPool(
        id=str(pool_id),
        program_id=str(program_id),
        mint_a=PoolToken(str(_pk(3)), 9),
        mint_b=PoolToken(str(_pk(4)), 6),
        reserve_a=1_000_000,
        reserve_b=2_000_000,
    )


class MarketAccountTests(unittest.TestCase):
    def test_parse_market_account(self) -> None:
        market_id = _pk(60)
        data = market_account(market_id, _key(3), _key(4))

        market = parse_market_account(data, market_id, MARKET_PROGRAM)

        self.assertEqual(market.market_id, market_id)
        self.assertEqual(market.bids, _pk(34))
        self.assertEqual(market.event_queue, _pk(33))
        self.assertEqual(
            market.vault_signer, derive_vault_signer(market_id, market.vault_signer_nonce, MARKET_PROGRAM)
        )
        self.assertTrue(market.serves(_pk(4), _pk(3)))
        self.assertFalse(market.serves(_pk(3), _pk(5)))


class StandardAmmBuilderTests(unittest.IsolatedAsyncioTestCase):
    def setUp(self) -> None:
        self.pool_id = _pk(99)
        self.market_id = _pk(60)
        self.accounts = {self.pool_id: amm_account(self.market_id)}
        self.api = AsyncMock()
        self.api.get_account_data.side_effect = lambda pubkey: self.accounts.get(pubkey)
        self.cache = PoolCache()
        self.builder = StandardAmmBuilder(AMM_V4, self.cache)

    async def test_load_aux_and_build(self) -> None:
        self.accounts[self.market_id] = market_account(self.market_id, _key(3), _key(4))
        pool = standard_pool(self.pool_id)

        aux = await self.builder.load_aux(self.api, pool, _pk(3))
        built = self.builder.build_swap_exact_in(SwapParams(
            pool=pool, input_mint=_pk(3), output_mint=_pk(4), amount=10_000, bound_amount=19_653,
            owner=_pk(40), input_account=_pk(41), output_account=_pk(42), aux=aux,
        ))

        self.assertEqual(aux["state"].market_id, self.market_id)
        self.assertEqual(len(built.instructions), 1)
        self.assertEqual(built.instructions[0].program_id, AMM_V4)
        self.assertEqual(built.instructions[0].accounts[9].pubkey, _pk(34))

        await self.builder.load_aux(self.api, pool, _pk(3))
        self.assertEqual(self.api.get_account_data.await_count, 2)

    async def test_market_with_other_mints_is_rejected(self) -> None:
        self.accounts[self.market_id] = market_account(self.market_id, _key(3), _key(5))

        with self.assertRaisesRegex(ValueError, "does not trade"):
            await self.builder.load_aux(self.api, standard_pool(self.pool_id), _pk(3))
        self.assertIsNone(self.cache.get(f"market:{self.market_id}"))

    async def test_missing_pool_account(self) -> None:
        with self.assertRaisesRegex(ValueError, "could not load pool state"):
            await self.builder.load_aux(self.api, standard_pool(_pk(98)), _pk(3))

    async def test_missing_market_account(self) -> None:
        with self.assertRaisesRegex(ValueError, "could not load market"):
            await self.builder.load_aux(self.api, standard_pool(self.pool_id), _pk(3))

    def test_build_requires_loaded_state(self) -> None:
        params = SwapParams(
            pool=standard_pool(self.pool_id), input_mint=_pk(3), output_mint=_pk(4), amount=1,
            bound_amount=1, owner=_pk(40), input_account=_pk(41), output_account=_pk(42),
        )
        with self.assertRaisesRegex(ValueError, "not loaded"):
            self.builder.build_swap_exact_in(params)
        params.aux = {"state": object()}
        params.amount = 0
        with self.assertRaisesRegex(ValueError, "positive"):
            self.builder.build_swap_exact_out(params)


class ConcentratedBuilderTests(unittest.IsolatedAsyncioTestCase):
    async def test_no_initialized_tick_arrays(self) -> None:
        pool_id = _pk(50)
        data = CLMM_POOL_LAYOUT.build({
            "bump": 255, "amm_config": _key(1), "owner": _key(2), "token_mint_0": _key(3),
            "token_mint_1": _key(4), "token_vault_0": _key(5), "token_vault_1": _key(6),
            "observation_key": _key(7), "mint_decimals_0": 9, "mint_decimals_1": 6,
            "tick_spacing": 10, "liquidity": 1, "sqrt_price_x64": 2 ** 64, "tick_current": 0,
        })
        api = AsyncMock()
        api.get_account_data.return_value = data
        api.existing_accounts.side_effect = lambda keys: [False] * len(keys)
        clmm = PROGRAM_IDS["mainnet"]["clmm"]
        pool = ConcentratedPool(
            id=str(pool_id), program_id=str(clmm),
            mint_a=PoolToken(str(_pk(3)), 9), mint_b=PoolToken(str(_pk(4)), 6), tick_spacing=10,
        )

        with self.assertRaisesRegex(ValueError, "tick arrays"):
            await ConcentratedBuilder(clmm).load_aux(api, pool, _pk(3))

        api.existing_accounts.side_effect = lambda keys: [True] * len(keys)
        aux = await ConcentratedBuilder(clmm).load_aux(api, pool, _pk(3))
        self.assertEqual(len(aux["tick_arrays"]), 3)
        self.assertIn("bitmap_extension", aux)


class SwapBuilderRegistryTests(unittest.TestCase):
    def test_for_network_maps_program_ids(self) -> None:
        registry = SwapBuilderRegistry.for_network("mainnet")
        ids = PROGRAM_IDS["mainnet"]

        self.assertIsInstance(registry.get(standard_pool(_pk(1), ids["amm_v4"])), StandardAmmBuilder)
        self.assertIsInstance(registry.get(standard_pool(_pk(1), ids["cpmm"])), CpmmBuilder)

    def test_unknown_program_and_kind_mismatch(self) -> None:
        registry = SwapBuilderRegistry.for_network("mainnet")

        with self.assertRaisesRegex(ValueError, "unsupported pool program"):
            registry.get(standard_pool(_pk(1), _pk(2)))
        with self.assertRaisesRegex(ValueError, "is Standard"):
            registry.get(standard_pool(_pk(1), PROGRAM_IDS["mainnet"]["clmm"]))


if __name__ == "__main__":
    unittest.main()
