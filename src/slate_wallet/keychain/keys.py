"""Per-account key derivation and secp256k1 signing.

Keys are derived with hardened HMAC-SHA512 steps from the BIP39 seed along
``m / account' / index'``. Accounts are named; the name is hashed into the
account index so every label maps to a stable branch.
"""

from __future__ import annotations

import struct
from dataclasses import dataclass

from ecdsa import SECP256k1, BadSignatureError, SigningKey, VerifyingKey
from ecdsa.errors import MalformedPointError
from ecdsa.util import sigdecode_der, sigencode_der

from slate_wallet.utils.crypto import hmac_sha512, sha256

_CURVE = SECP256k1
_CURVE_ORDER = _CURVE.order

_MASTER_HMAC_KEY = b"Slate wallet seed"
_HARDENED = 0x80000000


@dataclass(frozen=True)
class KeyNode:
    """A private key with its chain code."""

    key: bytes
    chain_code: bytes

    def derive_child(self, index: int) -> KeyNode:
        """Hardened child derivation.

        Raises:
            ValueError: If the derived scalar is out of range.
        """
        data = b"\x00" + self.key + struct.pack(">I", index | _HARDENED)
        digest = hmac_sha512(self.chain_code, data)
        il, ir = digest[:32], digest[32:]
        il_int = int.from_bytes(il, "big")
        if il_int >= _CURVE_ORDER:
            msg = "Derived key is invalid (il >= curve order)"
            raise ValueError(msg)
        key_int = (il_int + int.from_bytes(self.key, "big")) % _CURVE_ORDER
        if key_int == 0:
            msg = "Derived key is invalid (key == 0)"
            raise ValueError(msg)
        return KeyNode(key=key_int.to_bytes(32, "big"), chain_code=ir)

    @classmethod
    def from_seed(cls, seed: bytes) -> KeyNode:
        """Create the master node from a 16-64 byte seed.

        Raises:
            ValueError: If seed length is out of range.
        """
        if not 16 <= len(seed) <= 64:
            msg = f"Seed must be 16-64 bytes, got {len(seed)}"
            raise ValueError(msg)
        digest = hmac_sha512(_MASTER_HMAC_KEY, seed)
        il, ir = digest[:32], digest[32:]
        il_int = int.from_bytes(il, "big")
        if il_int == 0 or il_int >= _CURVE_ORDER:
            msg = "Invalid seed (derived key out of range)"
            raise ValueError(msg)
        return cls(key=il, chain_code=ir)


def account_index(account: str) -> int:
    """Stable derivation index for an account label."""
    return int.from_bytes(sha256(account.encode("utf-8"))[:4], "big") & 0x7FFFFFFF


def public_key(privkey: bytes) -> bytes:
    """33-byte compressed public key for a 32-byte private key."""
    sk = SigningKey.from_string(privkey, curve=_CURVE)
    return sk.get_verifying_key().to_string("compressed")


def sign_digest(privkey: bytes, digest: bytes) -> bytes:
    """Deterministic (RFC 6979) DER signature over a 32-byte digest."""
    sk = SigningKey.from_string(privkey, curve=_CURVE)
    return sk.sign_digest_deterministic(digest, sigencode=sigencode_der)


def verify_digest(pubkey: bytes, digest: bytes, signature: bytes) -> bool:
    """Verify a DER signature; malformed keys or signatures verify as False."""
    try:
        vk = VerifyingKey.from_string(pubkey, curve=_CURVE)
        return vk.verify_digest(signature, digest, sigdecode=sigdecode_der)
    except (BadSignatureError, MalformedPointError, ValueError):
        return False


class Keychain:
    """Signing material for one wallet seed.

    Usage::

        keychain = Keychain(seed)
        blind = keychain.derive_key("default", 3)
        sig = sign_digest(blind, digest)
    """

    def __init__(self, seed: bytes) -> None:
        self._master = KeyNode.from_seed(seed)

    def derive_key(self, account: str, index: int) -> bytes:
        """Private key at ``m / account' / index'``."""
        return self._master.derive_child(account_index(account)).derive_child(index).key

    def derive_public(self, account: str, index: int) -> bytes:
        return public_key(self.derive_key(account, index))

    def slate_key(self, account: str, slate_id: str, purpose: str) -> bytes:
        """Per-slate secret, deterministic so a resumed slate re-signs identically."""
        node = self._master.derive_child(account_index(account))
        data = f"{purpose}:{slate_id}".encode()
        scalar = int.from_bytes(hmac_sha512(node.chain_code, data)[:32], "big")
        scalar = scalar % (_CURVE_ORDER - 1) + 1
        return scalar.to_bytes(32, "big")

    def nonce(self, account: str, slate_id: str) -> bytes:
        return self.slate_key(account, slate_id, "nonce")

    def excess_key(self, account: str, slate_id: str) -> bytes:
        """Sender-side blinding excess for ``slate_id``."""
        return self.slate_key(account, slate_id, "excess")


def commitment(value: int, blind_pub: bytes) -> str:
    """Hex commitment binding a value to a blinding public key."""
    return "08" + sha256(value.to_bytes(8, "big") + blind_pub).hex()
