"""
WillVault Key Escrow

The document private key is never handed to the ledger in cleartext. At
publish time the owner seals it to the ledger's X25519 escrow public key
(libsodium sealed box, via PyNaCl). Only the escrow holder can open it, and
the reference ledger opens it only while building an Authorized decision.
"""

import json
import os
import threading
from typing import Optional

from nacl.exceptions import CryptoError
from nacl.public import PrivateKey, PublicKey, SealedBox

from .errors import EscrowError
from .util import b64d, b64e, generate_id


def seal_for_escrow(escrow_public_key: bytes, secret: bytes) -> bytes:
    """
    Seal a secret to an escrow public key.

    Args:
        escrow_public_key: Raw 32-byte X25519 public key
        secret: The bytes to seal (the PEM private key)

    Returns:
        Sealed box bytes that only the escrow private key can open
    """
    try:
        return SealedBox(PublicKey(escrow_public_key)).encrypt(secret)
    except (CryptoError, TypeError, ValueError) as e:
        raise EscrowError(f"escrow public key is unusable: {type(e).__name__}") from None


class KeyEscrow:
    """
    X25519 escrow key holder.

    Thread-safe. The private key never leaves this object.
    """

    def __init__(self, private_key: Optional[bytes] = None, key_id: Optional[str] = None):
        self._sk = PrivateKey(private_key) if private_key is not None else PrivateKey.generate()
        self.key_id = key_id or f"escrow-{generate_id(8)}"
        self._lock = threading.Lock()

    @classmethod
    def generate(cls) -> "KeyEscrow":
        return cls()

    @classmethod
    def from_file(cls, path: str) -> "KeyEscrow":
        """Load an escrow key from a JSON file with `kid` and `private_key_b64`."""
        with open(path, "r", encoding="utf-8") as f:
            raw = json.load(f)
        return cls(private_key=b64d(raw["private_key_b64"]), key_id=raw["kid"])

    def save(self, path: str) -> None:
        """Write the escrow key to a JSON file readable only by the owner."""
        directory = os.path.dirname(path)
        if directory:
            os.makedirs(directory, exist_ok=True)
        fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            json.dump({
                "kid": self.key_id,
                "alg": "X25519-SealedBox",
                "private_key_b64": b64e(bytes(self._sk)),
                "public_key_b64": b64e(self.public_key),
            }, f, indent=2)

    @property
    def public_key(self) -> bytes:
        return bytes(self._sk.public_key)

    def seal(self, secret: bytes) -> bytes:
        return seal_for_escrow(self.public_key, secret)

    def unseal(self, sealed: bytes) -> bytes:
        """
        Open a sealed box.

        Raises:
            EscrowError: the box was not sealed to this key or was tampered with
        """
        with self._lock:
            try:
                return SealedBox(self._sk).decrypt(sealed)
            except (CryptoError, TypeError, ValueError):
                raise EscrowError("sealed key could not be opened") from None
