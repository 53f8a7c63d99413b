"""
Swap engine HTTP surface.

Exposes the quote session (pair, amounts, flip, slippage), the published
Quote and the swap entry point to a UI. The engine lives on a private asyncio
loop running in a daemon thread; Flask handlers hop onto it with _run_coro.
"""

from __future__ import annotations

import asyncio
import logging
import os
import threading
from datetime import datetime
from typing import Any, Callable, Dict, Optional

from flask import Flask, jsonify, request
from flask_cors import CORS

from balance_tracker import BalanceTracker
from pool_discovery import PoolDiscovery
from quote_orchestrator import QuoteSession
from raydium_direct.api_client import RaydiumApiClient
from raydium_direct.cache import PoolCache
from raydium_direct.swap_builders import SwapBuilderRegistry
from solana_api import SolanaAPI
from swap_config import SLIPPAGE_PRESETS_PCT, SwapConfig
from swap_executor import SwapExecutor
from swap_models import Asset
from trading.fee_collector import FeeCollector, FeePolicyClient
from wallet_keys import EnvWalletProvider

logger = logging.getLogger(__name__)

app = Flask(__name__)
CORS(app)


class SwapEngine:
    def __init__(self, config: Optional[SwapConfig] = None, wallet: Optional[EnvWalletProvider] = None):
        self.config = config or SwapConfig.from_env()
        self.wallet = wallet or EnvWalletProvider()
        # Async loop for the engine (avoid asyncio.run per request)
        self._loop = asyncio.new_event_loop()
        self._loop_thread = threading.Thread(target=self._loop.run_forever, daemon=True)
        self._loop_thread.start()
        self._run_coro(self._build())

    async def _build(self):
        cfg = self.config
        self.solana = SolanaAPI(cfg.rpc_url)
        self.raydium = RaydiumApiClient(cfg.raydium_api_url, timeout=cfg.request_timeout)
        cache = PoolCache(ttl_ms_hot=cfg.pool_cache_ttl_ms, ttl_ms_cold=cfg.pool_cache_ttl_cold_ms)
        signer = self.wallet.get_signer()
        self.discovery = PoolDiscovery(self.raydium)
        self.balances = BalanceTracker(self.solana, signer.pubkey() if signer else None)
        self.session = QuoteSession(self.discovery, self.balances, cfg)
        fee_collector = None
        if cfg.fee_collection_enabled:
            fee_collector = FeeCollector(
                self.solana,
                FeePolicyClient(cfg.fee_policy_url, timeout=cfg.request_timeout),
                confirm_max_retries=cfg.confirm_max_retries,
                confirm_poll_interval_sec=cfg.confirm_poll_interval_sec,
            )
        self.executor = SwapExecutor(
            self.solana,
            self.raydium,
            cfg,
            registry=SwapBuilderRegistry.for_network(cfg.network, cache),
            fee_collector=fee_collector,
        )
        logger.info(f"[SERVICE] Engine ready on {cfg.network} (wallet loaded: {signer is not None})")

    def _run_coro(self, coro, timeout: Optional[float] = None):
        """
        Run a coroutine on the engine loop and return its result synchronously.
        """
        fut = asyncio.run_coroutine_threadsafe(coro, self._loop)
        return fut.result(timeout)

    def call(self, fn: Callable, *args):
        """Run a synchronous session method on the engine loop."""

        async def _invoke():
            return fn(*args)

        return self._run_coro(_invoke())

    def snapshot(self) -> Dict[str, Any]:
        async def _snap():
            session = self.session
            eligibility = session.eligibility()
            data = session.quote.to_dict()
            data.update(
                state=session.state.value,
                pool_loading=session.pool_loading,
                sell_input=session.sell_text,
                buy_input=session.buy_text,
                online=session.online,
                executable=eligibility.executable,
                blocked_reason=eligibility.reason,
                slippage_presets_pct=list(SLIPPAGE_PRESETS_PCT),
            )
            return data

        return self._run_coro(_snap())

    def swap(self, simulate: bool = False):
        signer = self.wallet.get_signer()
        if simulate:
            return self._run_coro(self.executor.simulate(self.session.quote, signer))
        return self._run_coro(self.session.submit(self.executor, signer))

    def shutdown(self):
        async def _close():
            await self.session.wait_idle()
            await self.raydium.close()
            await self.solana.close()

        self._run_coro(_close())
        self._loop.call_soon_threadsafe(self._loop.stop)


_engine: Optional[SwapEngine] = None
_engine_lock = threading.Lock()


def get_engine() -> SwapEngine:
    global _engine
    with _engine_lock:
        if _engine is None:
            _engine = SwapEngine()
        return _engine


def _asset_from_json(data: Any) -> Asset:
    if not isinstance(data, dict) or not data.get("mint"):
        raise ValueError("asset needs mint, symbol and decimals")
    return Asset(
        mint=str(data["mint"]),
        symbol=str(data.get("symbol") or ""),
        decimals=int(data.get("decimals", 0)),
        name=str(data.get("name") or ""),
        image=data.get("image"),
    )


@app.route('/health', methods=['GET'])
def health():
    return jsonify({
        'status': 'healthy',
        'timestamp': datetime.now().isoformat(),
        'network': get_engine().config.network,
    })


@app.route('/api/quote', methods=['GET'])
def get_quote():
    return jsonify(get_engine().snapshot())


@app.route('/api/pair', methods=['POST'])
def set_pair():
    body = request.get_json(silent=True) or {}
    engine = get_engine()
    try:
        if 'sell' in body and 'buy' in body:
            engine.call(engine.session.set_pair, _asset_from_json(body['sell']), _asset_from_json(body['buy']))
        elif 'sell' in body:
            engine.call(engine.session.select_sell_asset, _asset_from_json(body['sell']))
        elif 'buy' in body:
            engine.call(engine.session.select_buy_asset, _asset_from_json(body['buy']))
        else:
            return jsonify({'error': 'sell and/or buy asset required'}), 400
    except (ValueError, TypeError) as e:
        return jsonify({'error': str(e)}), 400
    return jsonify(engine.snapshot())


@app.route('/api/amount', methods=['POST'])
def set_amount():
    body = request.get_json(silent=True) or {}
    engine = get_engine()
    side = body.get('side', 'sell')
    value = str(body.get('value', ''))
    if side == 'sell':
        engine.call(engine.session.set_sell_amount, value)
    elif side == 'buy':
        engine.call(engine.session.set_buy_amount, value)
    else:
        return jsonify({'error': "side must be 'sell' or 'buy'"}), 400
    return jsonify(engine.snapshot())


@app.route('/api/flip', methods=['POST'])
def flip():
    engine = get_engine()
    flipped = engine.call(engine.session.flip_direction)
    data = engine.snapshot()
    data['flipped'] = flipped
    return jsonify(data)


@app.route('/api/slippage', methods=['POST'])
def set_slippage():
    body = request.get_json(silent=True) or {}
    engine = get_engine()
    try:
        engine.call(engine.session.set_slippage_pct, body.get('pct'))
    except ValueError as e:
        return jsonify({'error': str(e)}), 400
    return jsonify(engine.snapshot())


@app.route('/api/online', methods=['POST'])
def set_online():
    body = request.get_json(silent=True) or {}
    engine = get_engine()
    engine.call(engine.session.set_online, bool(body.get('online', True)))
    return jsonify(engine.snapshot())


@app.route('/api/swap', methods=['POST'])
def swap():
    engine = get_engine()
    result = engine.swap()
    if result is None:
        return jsonify({'ignored': True, 'reason': 'duplicate submission'}), 429
    data = result.to_dict()
    data['explorer_url'] = result.explorer_url(engine.config.network)
    return jsonify(data), (200 if result.success else 422)


@app.route('/api/simulate', methods=['POST'])
def simulate():
    engine = get_engine()
    return jsonify(engine.swap(simulate=True))


@app.route('/api/pools/<pool_id>', methods=['GET'])
def get_pool(pool_id):
    engine = get_engine()
    pool = engine._run_coro(engine.discovery.fetch_pool_by_id(pool_id))
    if pool is None:
        return jsonify({'error': 'pool not found'}), 404
    return jsonify({
        'id': pool.id,
        'kind': pool.kind.value,
        'program_id': pool.program_id,
        'mint_a': pool.mint_a.address,
        'mint_b': pool.mint_b.address,
        'fee_rate': str(pool.fee_rate),
        'price': str(pool.price) if pool.price is not None else None,
        'tvl': pool.tvl,
    })


if __name__ == '__main__':
    logging.basicConfig(
        level=os.getenv("LOG_LEVEL", "INFO"),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    port = int(os.getenv('PORT', 5000))
    app.run(host='0.0.0.0', port=port)
