"""
WillVault Key Pair Service

Generates the RSA key pair used to wrap each document's symmetric key.

One key pair is generated per document. The private half is the single
decryption capability for that document: it is handed straight to the
escrow step and must not be logged, echoed or stored in cleartext.
"""

import hashlib
from dataclasses import dataclass, field

from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa

from .config import MIN_RSA_KEY_BITS, RSA_KEY_BITS
from .errors import KeyGenerationError

PUBLIC_EXPONENT = 65537


@dataclass(frozen=True)
class KeyPair:
    """RSA key pair, PEM encoded (SubjectPublicKeyInfo / PKCS#8)."""
    public_key: bytes
    private_key: bytes = field(repr=False)

    @property
    def fingerprint(self) -> str:
        return fingerprint(self.public_key)


class KeyPairService:
    """
    Generates fresh RSA key pairs from the operating system CSPRNG.

    No seed is accepted and nothing is cached: every call returns a new,
    independent key pair.
    """

    def __init__(self, key_size: int = RSA_KEY_BITS, public_exponent: int = PUBLIC_EXPONENT):
        self.key_size = key_size
        self.public_exponent = public_exponent

    def generate(self) -> KeyPair:
        """
        Generate a new RSA key pair.

        Returns:
            KeyPair with PEM encoded public and private keys

        Raises:
            KeyGenerationError: key size below the minimum, or backend failure
        """
        if self.key_size < MIN_RSA_KEY_BITS:
            raise KeyGenerationError(
                f"key size {self.key_size} is below the minimum of {MIN_RSA_KEY_BITS} bits"
            )
        try:
            private = rsa.generate_private_key(
                public_exponent=self.public_exponent,
                key_size=self.key_size,
            )
            private_pem = private.private_bytes(
                encoding=serialization.Encoding.PEM,
                format=serialization.PrivateFormat.PKCS8,
                encryption_algorithm=serialization.NoEncryption(),
            )
            public_pem = private.public_key().public_bytes(
                encoding=serialization.Encoding.PEM,
                format=serialization.PublicFormat.SubjectPublicKeyInfo,
            )
        except (ValueError, TypeError, UnsupportedAlgorithm, OSError) as e:
            raise KeyGenerationError(f"RSA key generation failed: {type(e).__name__}") from None

        return KeyPair(public_key=public_pem, private_key=private_pem)


def load_public_key(public_key: bytes) -> rsa.RSAPublicKey:
    """
    Load a PEM (or DER) encoded RSA public key.

    Raises:
        ValueError: the key is malformed, not RSA, or smaller than the minimum
    """
    if public_key.lstrip().startswith(b"-----BEGIN"):
        key = serialization.load_pem_public_key(public_key)
    else:
        key = serialization.load_der_public_key(public_key)
    if not isinstance(key, rsa.RSAPublicKey):
        raise ValueError("public key is not an RSA key")
    if key.key_size < MIN_RSA_KEY_BITS:
        raise ValueError(f"public key is smaller than {MIN_RSA_KEY_BITS} bits")
    return key


def load_private_key(private_key: bytes) -> rsa.RSAPrivateKey:
    """
    Load a PEM (or DER) encoded, unencrypted RSA private key.

    Raises:
        ValueError: the key is malformed or not RSA
    """
    if private_key.lstrip().startswith(b"-----BEGIN"):
        key = serialization.load_pem_private_key(private_key, password=None)
    else:
        key = serialization.load_der_private_key(private_key, password=None)
    if not isinstance(key, rsa.RSAPrivateKey):
        raise ValueError("private key is not an RSA key")
    return key


def fingerprint(public_key: bytes) -> str:
    """SHA-256 over the DER SubjectPublicKeyInfo. Safe to log."""
    der = load_public_key(public_key).public_bytes(
        encoding=serialization.Encoding.DER,
        format=serialization.PublicFormat.SubjectPublicKeyInfo,
    )
    return f"sha256:{hashlib.sha256(der).hexdigest()}"
