"""
Key-material provider for the active account.

The swap engine only reads the signer at signing time; storage stays with the
operator's environment (WALLET_PRIVATE_KEY or WALLET_KEYPAIR_PATH).
"""

from __future__ import annotations

import json
import logging
import os
from typing import Optional

from base58 import b58decode
from solders.keypair import Keypair

logger = logging.getLogger(__name__)


def keypair_from_secret(secret: str) -> Optional[Keypair]:
    """
    Accepts a base58 secret key, a hex secret key or a JSON byte array
    (solana-keygen file contents).
    """
    secret = secret.strip()
    if not secret:
        return None
    if secret.startswith("["):
        try:
            return Keypair.from_bytes(bytes(json.loads(secret)))
        except (ValueError, TypeError) as e:
            logger.error(f"[WALLET] Invalid JSON keypair: {e}")
            return None
    try:
        secret_bytes = b58decode(secret)
        if len(secret_bytes) == 64:
            return Keypair.from_bytes(secret_bytes)
    except ValueError:
        pass
    # Fallback: hex string
    try:
        secret_bytes_hex = bytes.fromhex(secret)
        if len(secret_bytes_hex) == 64:
            return Keypair.from_bytes(secret_bytes_hex)
    except ValueError:
        pass
    logger.error("[WALLET] Invalid key length; expected 64-byte secret key.")
    return None


def load_keypair_from_env() -> Optional[Keypair]:
    secret = os.getenv("WALLET_PRIVATE_KEY", "").strip()
    if not secret:
        path = os.getenv("WALLET_KEYPAIR_PATH", "").strip()
        if path and os.path.exists(path):
            with open(path, "r", encoding="utf-8") as f:
                secret = f.read().strip()
    if not secret:
        return None
    return keypair_from_secret(secret)


class EnvWalletProvider:
    """Loads the keypair lazily and hands out the same read-only signer."""

    def __init__(self):
        self._keypair: Optional[Keypair] = None

    def get_signer(self) -> Optional[Keypair]:
        if self._keypair is None:
            self._keypair = load_keypair_from_env()
        return self._keypair

    def public_key(self) -> Optional[str]:
        signer = self.get_signer()
        return str(signer.pubkey()) if signer else None
