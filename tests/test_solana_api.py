import unittest
from types import SimpleNamespace
from unittest.mock import AsyncMock

from solders.hash import Hash
from solders.keypair import Keypair
from solders.signature import Signature
from solders.transaction_status import TransactionConfirmationStatus

from solana_api import SolanaAPI, SolanaRPCError

SIG = str(Signature.default())


def status(confirmation=None, err=None):
    return SimpleNamespace(err=err, confirmation_status=confirmation)


class SolanaAPITests(unittest.IsolatedAsyncioTestCase):
    def setUp(self) -> None:
        self.client = AsyncMock()
        self.api = SolanaAPI(client=self.client)

    async def test_transport_errors_are_wrapped(self) -> None:
        self.client.get_balance.side_effect = ConnectionError("reset")
        with self.assertRaises(SolanaRPCError):
            await self.api.get_sol_balance(Keypair().pubkey())

    async def test_sol_balance(self) -> None:
        self.client.get_balance.return_value = SimpleNamespace(value=42)
        self.assertEqual(await self.api.get_sol_balance(Keypair().pubkey()), 42)

    async def test_token_balance_sums_accounts(self) -> None:
        def account(amount):
            return {"account": {"data": {"parsed": {"info": {"tokenAmount": {"amount": amount}}}}}}

        self.client.get_token_accounts_by_owner_json_parsed.return_value = SimpleNamespace(
            value=[account("100"), account("250")]
        )
        self.assertEqual(await self.api.get_token_balance(Keypair().pubkey(), Keypair().pubkey()), 350)

    async def test_missing_account(self) -> None:
        self.client.get_account_info.return_value = SimpleNamespace(value=None)
        key = Keypair().pubkey()
        self.assertFalse(await self.api.account_exists(key))
        self.assertIsNone(await self.api.get_account_owner(key))
        self.assertIsNone(await self.api.get_account_data(key))

    async def test_existing_accounts_keeps_order(self) -> None:
        self.client.get_multiple_accounts.return_value = SimpleNamespace(value=[object(), None])
        keys = [Keypair().pubkey() for _ in range(3)]
        self.assertEqual(await self.api.existing_accounts(keys), [True, False, False])
        self.assertEqual(await self.api.existing_accounts([]), [])

    async def test_latest_blockhash(self) -> None:
        self.client.get_latest_blockhash.return_value = SimpleNamespace(value=SimpleNamespace(blockhash=Hash.default()))
        self.assertEqual(await self.api.get_latest_blockhash(), Hash.default())

    async def test_send_is_single_attempt(self) -> None:
        self.client.send_raw_transaction.side_effect = RuntimeError("blockhash not found")
        with self.assertRaises(SolanaRPCError):
            await self.api.send_raw_transaction(b"tx")
        self.assertEqual(self.client.send_raw_transaction.await_count, 1)

    async def test_confirmation_polls_until_confirmed(self) -> None:
        self.client.get_signature_statuses.side_effect = [
            SimpleNamespace(value=[None]),
            SimpleNamespace(value=[status(TransactionConfirmationStatus.Processed)]),
            SimpleNamespace(value=[status(TransactionConfirmationStatus.Confirmed)]),
        ]
        self.assertEqual(await self.api.confirm_transaction(SIG, max_retries=5, poll_interval=0), (True, None))
        self.assertEqual(self.client.get_signature_statuses.await_count, 3)

    async def test_finalized_counts_as_confirmed(self) -> None:
        self.client.get_signature_statuses.return_value = SimpleNamespace(
            value=[status(TransactionConfirmationStatus.Finalized)]
        )
        self.assertEqual(await self.api.confirm_transaction(SIG, max_retries=1, poll_interval=0), (True, None))

    async def test_confirmation_reports_on_chain_error(self) -> None:
        self.client.get_signature_statuses.return_value = SimpleNamespace(
            value=[status(TransactionConfirmationStatus.Confirmed, err="InstructionError")]
        )
        confirmed, error = await self.api.confirm_transaction(SIG, max_retries=3, poll_interval=0)
        self.assertFalse(confirmed)
        self.assertIn("InstructionError", error)

    async def test_confirmation_is_bounded(self) -> None:
        self.client.get_signature_statuses.side_effect = ConnectionError("down")
        confirmed, error = await self.api.confirm_transaction(SIG, max_retries=3, poll_interval=0)
        self.assertFalse(confirmed)
        self.assertEqual(error, "not confirmed after 3 attempts")
        self.assertEqual(self.client.get_signature_statuses.await_count, 3)


if __name__ == "__main__":
    unittest.main()
