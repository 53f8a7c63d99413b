import unittest
from decimal import Decimal
from unittest.mock import AsyncMock

from solders.keypair import Keypair
from solders.pubkey import Pubkey

from balance_tracker import BalanceTracker
from swap_models import SOL_ASSET, Asset
from tests.fakes import USDC_MINT, rpc_error

USDC = Asset(mint=USDC_MINT, symbol="USDC", decimals=6)


class BalanceTrackerTests(unittest.IsolatedAsyncioTestCase):
    def setUp(self) -> None:
        self.api = AsyncMock()
        self.api.get_sol_balance.return_value = 2_500_000_000
        self.api.get_token_balance.return_value = 12_345_678
        self.owner = Keypair().pubkey()
        self.tracker = BalanceTracker(self.api, self.owner)

    async def test_native_uses_lamport_balance(self) -> None:
        self.assertEqual(await self.tracker.refresh(SOL_ASSET), 2_500_000_000)
        self.api.get_sol_balance.assert_awaited_once_with(self.owner)
        self.api.get_token_balance.assert_not_awaited()
        self.assertEqual(self.tracker.get_balance(SOL_ASSET.mint), Decimal("2.5"))

    async def test_token_balance_by_mint(self) -> None:
        await self.tracker.refresh(USDC)

        self.api.get_token_balance.assert_awaited_once_with(self.owner, Pubkey.from_string(USDC_MINT))
        self.assertEqual(self.tracker.get_raw_balance(USDC_MINT), 12_345_678)
        self.assertEqual(self.tracker.get_balance(USDC_MINT), Decimal("12.345678"))

    async def test_failed_refresh_keeps_last_value(self) -> None:
        await self.tracker.refresh(USDC)
        self.api.get_token_balance.side_effect = rpc_error("timeout")

        self.assertEqual(await self.tracker.refresh(USDC), 12_345_678)
        self.assertEqual(self.tracker.get_raw_balance(USDC_MINT), 12_345_678)

    async def test_unknown_until_refreshed(self) -> None:
        self.assertIsNone(self.tracker.get_raw_balance(USDC_MINT))
        self.assertEqual(self.tracker.get_balance(USDC_MINT), Decimal(0))

    async def test_no_owner_reads_nothing(self) -> None:
        tracker = BalanceTracker(self.api, None)
        self.assertIsNone(await tracker.refresh(USDC))
        self.api.get_token_balance.assert_not_awaited()

    async def test_switching_owner_forgets_balances(self) -> None:
        await self.tracker.refresh(USDC)
        self.tracker.set_owner(Keypair().pubkey())
        self.assertIsNone(self.tracker.get_raw_balance(USDC_MINT))


if __name__ == "__main__":
    unittest.main()
