"""Wallet seed storage: BIP39 mnemonic encrypted under the wallet password.

The seed file holds ``salt || nonce || ciphertext`` where the key is
derived from the password with scrypt and the mnemonic entropy is sealed
with ChaCha20-Poly1305. A wrong password fails the authentication tag.
"""

from __future__ import annotations

import logging
import os
import secrets
from typing import TYPE_CHECKING

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import ChaCha20Poly1305
from cryptography.hazmat.primitives.kdf.scrypt import Scrypt
from mnemonic import Mnemonic

from slate_wallet.errors.definitions import ConfigError, StorageError

if TYPE_CHECKING:
    from pathlib import Path

logger = logging.getLogger(__name__)

SEED_FILE_NAME = "wallet.seed"

_SALT_LEN = 16
_NONCE_LEN = 12
_WORDLIST = Mnemonic("english")


def _derive_key(password: str, salt: bytes) -> bytes:
    kdf = Scrypt(salt=salt, length=32, n=2**14, r=8, p=1)
    return kdf.derive(password.encode("utf-8"))


class WalletSeed:
    """BIP39 entropy plus the helpers to persist and recover it."""

    def __init__(self, entropy: bytes) -> None:
        self._entropy = entropy

    @classmethod
    def generate(cls, word_count: int = 24) -> WalletSeed:
        """Fresh random seed; ``word_count`` is 12, 15, 18, 21 or 24.

        Raises:
            ConfigError: For an unsupported word count.
        """
        if word_count not in (12, 15, 18, 21, 24):
            msg = f"unsupported mnemonic length: {word_count}"
            raise ConfigError(msg)
        return cls(secrets.token_bytes(word_count * 4 // 3))

    @classmethod
    def from_mnemonic(cls, phrase: str) -> WalletSeed:
        """Recover a seed from its recovery phrase.

        Raises:
            ConfigError: If the phrase is not a valid BIP39 mnemonic.
        """
        words = " ".join(phrase.split())
        if not _WORDLIST.check(words):
            msg = "invalid recovery phrase"
            raise ConfigError(msg)
        return cls(bytes(_WORDLIST.to_entropy(words)))

    def to_mnemonic(self) -> str:
        return _WORDLIST.to_mnemonic(self._entropy)

    def to_seed(self) -> bytes:
        """64-byte BIP39 seed fed to the keychain."""
        return Mnemonic.to_seed(self.to_mnemonic())

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def save(self, path: Path, password: str) -> None:
        """Encrypt and write the seed file atomically.

        Raises:
            StorageError: If a seed file already exists or cannot be written.
        """
        if path.exists():
            msg = f"wallet seed file already exists: {path}"
            raise StorageError(msg)
        salt = secrets.token_bytes(_SALT_LEN)
        nonce = secrets.token_bytes(_NONCE_LEN)
        ciphertext = ChaCha20Poly1305(_derive_key(password, salt)).encrypt(
            nonce, self._entropy, None
        )
        tmp = path.with_name(path.name + ".tmp")
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            tmp.write_bytes(salt + nonce + ciphertext)
            os.replace(tmp, path)
        except OSError as exc:
            msg = f"cannot write wallet seed: {exc}"
            raise StorageError(msg) from exc
        logger.info("Wallet seed written to %s", path)

    @classmethod
    def load(cls, path: Path, password: str) -> WalletSeed:
        """Read and decrypt the seed file.

        Raises:
            StorageError: If the file is missing or unreadable.
            ConfigError: If the password is wrong.
        """
        try:
            data = path.read_bytes()
        except FileNotFoundError:
            msg = f"wallet seed file does not exist: {path}"
            raise StorageError(msg) from None
        except OSError as exc:
            msg = f"cannot read wallet seed: {exc}"
            raise StorageError(msg) from exc
        if len(data) <= _SALT_LEN + _NONCE_LEN:
            msg = f"wallet seed file is corrupted: {path}"
            raise StorageError(msg)
        salt = data[:_SALT_LEN]
        nonce = data[_SALT_LEN : _SALT_LEN + _NONCE_LEN]
        ciphertext = data[_SALT_LEN + _NONCE_LEN :]
        try:
            entropy = ChaCha20Poly1305(_derive_key(password, salt)).decrypt(
                nonce, ciphertext, None
            )
        except InvalidTag:
            msg = "incorrect wallet password"
            raise ConfigError(msg) from None
        return cls(entropy)

    @staticmethod
    def exists(path: Path) -> bool:
        return path.exists()
