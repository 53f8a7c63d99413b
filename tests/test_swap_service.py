import unittest
from types import SimpleNamespace
from unittest.mock import MagicMock, patch

import swap_service
from swap_models import SwapResult, SwapStatus


def stub_engine(network="devnet"):
    engine = MagicMock()
    engine.config = SimpleNamespace(network=network)
    engine.snapshot.return_value = {"state": "idle"}
    engine.call.side_effect = lambda fn, *args: fn(*args)
    return engine


class SwapServiceTests(unittest.TestCase):
    def setUp(self) -> None:
        self.engine = stub_engine()
        patcher = patch.object(swap_service, "_engine", self.engine)
        patcher.start()
        self.addCleanup(patcher.stop)
        self.client = swap_service.app.test_client()

    def test_health(self) -> None:
        resp = self.client.get("/health")
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.get_json()["network"], "devnet")

    def test_pair_requires_assets(self) -> None:
        self.assertEqual(self.client.post("/api/pair", json={}).status_code, 400)
        resp = self.client.post("/api/pair", json={"sell": {"symbol": "SOL"}})
        self.assertEqual(resp.status_code, 400)
        self.engine.session.select_sell_asset.assert_not_called()

    def test_pair_sets_both_assets(self) -> None:
        body = {
            "sell": {"mint": "native-sol", "symbol": "SOL", "decimals": 9},
            "buy": {"mint": "mint-b", "symbol": "B", "decimals": 6},
        }
        resp = self.client.post("/api/pair", json=body)

        self.assertEqual(resp.status_code, 200)
        sell, buy = self.engine.session.set_pair.call_args.args
        self.assertEqual((sell.mint, buy.decimals), ("native-sol", 6))

    def test_amount_side_is_validated(self) -> None:
        self.assertEqual(self.client.post("/api/amount", json={"side": "x", "value": "1"}).status_code, 400)
        self.client.post("/api/amount", json={"side": "buy", "value": "2.5"})
        self.engine.session.set_buy_amount.assert_called_once_with("2.5")

    def test_invalid_slippage_is_rejected(self) -> None:
        self.engine.session.set_slippage_pct.side_effect = ValueError("slippage must be within (0, 100]")
        resp = self.client.post("/api/slippage", json={"pct": 500})
        self.assertEqual(resp.status_code, 400)

    def test_duplicate_swap_is_ignored(self) -> None:
        self.engine.swap.return_value = None
        resp = self.client.post("/api/swap")
        self.assertEqual(resp.status_code, 429)
        self.assertTrue(resp.get_json()["ignored"])

    def test_swap_result(self) -> None:
        self.engine.swap.return_value = SwapResult(success=True, status=SwapStatus.SUCCEEDED, signature="abc")
        resp = self.client.post("/api/swap")

        self.assertEqual(resp.status_code, 200)
        data = resp.get_json()
        self.assertEqual(data["status"], SwapStatus.SUCCEEDED.value)
        self.assertEqual(data["explorer_url"], "https://solscan.io/tx/abc?cluster=devnet")

        self.engine.swap.return_value = SwapResult.failed("no liquidity")
        self.assertEqual(self.client.post("/api/swap").status_code, 422)


if __name__ == "__main__":
    unittest.main()
