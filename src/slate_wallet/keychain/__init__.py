"""Seed storage and per-account signing material."""

from slate_wallet.keychain.keys import Keychain, commitment, public_key, sign_digest, verify_digest
from slate_wallet.keychain.seed import SEED_FILE_NAME, WalletSeed

__all__ = [
    "SEED_FILE_NAME",
    "Keychain",
    "WalletSeed",
    "commitment",
    "public_key",
    "sign_digest",
    "verify_digest",
]
