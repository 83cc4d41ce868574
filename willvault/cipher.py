"""
WillVault Hybrid Cipher

Documents are encrypted once with a fresh 256-bit symmetric key under
ChaCha20-Poly1305 (RFC 8439). The symmetric key is then wrapped under the
document's RSA public key with OAEP (MGF1-SHA256, SHA-256).

Stored payload layout:

    nonce (12 bytes) || auth_tag (16 bytes) || ciphertext

Decryption verifies the tag before any plaintext is returned. Every unwrap
failure raises the same KeyUnwrapError so callers cannot distinguish a
wrong key from bad padding.
"""

import os
from dataclasses import dataclass
from typing import Union

from cryptography.exceptions import InvalidTag, UnsupportedAlgorithm
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import padding
from cryptography.hazmat.primitives.ciphers.aead import ChaCha20Poly1305

from .config import MAX_DOCUMENT_BYTES
from .errors import AuthenticationError, EncryptionError, KeyUnwrapError, ValidationError
from .keys import load_private_key, load_public_key

SYMMETRIC_KEY_BYTES = 32
NONCE_BYTES = 12
TAG_BYTES = 16
HEADER_BYTES = NONCE_BYTES + TAG_BYTES


def _oaep() -> padding.OAEP:
    return padding.OAEP(
        mgf=padding.MGF1(algorithm=hashes.SHA256()),
        algorithm=hashes.SHA256(),
        label=None,
    )


@dataclass(frozen=True)
class EncryptedPayload:
    """AEAD output, split into its three fixed-offset parts."""
    nonce: bytes
    auth_tag: bytes
    ciphertext: bytes

    def to_bytes(self) -> bytes:
        """Serialize as nonce || auth_tag || ciphertext."""
        return self.nonce + self.auth_tag + self.ciphertext

    @classmethod
    def from_bytes(cls, data: bytes) -> "EncryptedPayload":
        """
        Split a stored payload at the fixed 12/16-byte offsets.

        Raises:
            ValidationError: payload shorter than the 28-byte header
        """
        if len(data) < HEADER_BYTES:
            raise ValidationError(
                f"payload is {len(data)} bytes, shorter than the {HEADER_BYTES}-byte header"
            )
        return cls(
            nonce=data[:NONCE_BYTES],
            auth_tag=data[NONCE_BYTES:HEADER_BYTES],
            ciphertext=data[HEADER_BYTES:],
        )

    def __len__(self) -> int:
        return HEADER_BYTES + len(self.ciphertext)


@dataclass(frozen=True)
class EncryptionResult:
    """Ciphertext payload plus the wrapped symmetric key. Stored separately."""
    payload: EncryptedPayload
    wrapped_key: bytes


class HybridCipher:
    """
    Authenticated document encryption with RSA-wrapped keys.

    Usage:
        cipher = HybridCipher()
        result = cipher.encrypt(document, key_pair.public_key)
        plaintext = cipher.decrypt(result.payload, result.wrapped_key, key_pair.private_key)
    """

    def __init__(self, max_plaintext_bytes: int = MAX_DOCUMENT_BYTES):
        self.max_plaintext_bytes = max_plaintext_bytes

    def encrypt(self, plaintext: bytes, public_key: bytes) -> EncryptionResult:
        """
        Encrypt a document and wrap its key.

        Args:
            plaintext: Document bytes
            public_key: PEM/DER RSA public key that wraps the symmetric key

        Returns:
            EncryptionResult with payload and wrapped key

        Raises:
            EncryptionError: plaintext over the size limit, or unusable public key
        """
        if len(plaintext) > self.max_plaintext_bytes:
            raise EncryptionError(
                f"plaintext is {len(plaintext)} bytes, limit is {self.max_plaintext_bytes}"
            )
        try:
            rsa_public = load_public_key(public_key)
        except (ValueError, TypeError, UnsupportedAlgorithm) as e:
            raise EncryptionError(f"public key is malformed: {e}") from None

        symmetric_key = os.urandom(SYMMETRIC_KEY_BYTES)
        nonce = os.urandom(NONCE_BYTES)

        sealed = ChaCha20Poly1305(symmetric_key).encrypt(nonce, plaintext, None)
        # cryptography appends the tag; the stored layout puts it first
        ciphertext, auth_tag = sealed[:-TAG_BYTES], sealed[-TAG_BYTES:]

        wrapped_key = rsa_public.encrypt(symmetric_key, _oaep())

        return EncryptionResult(
            payload=EncryptedPayload(nonce=nonce, auth_tag=auth_tag, ciphertext=ciphertext),
            wrapped_key=wrapped_key,
        )

    def decrypt(
        self,
        payload: Union[EncryptedPayload, bytes],
        wrapped_key: bytes,
        private_key: bytes
    ) -> bytes:
        """
        Unwrap the symmetric key and authenticate-decrypt the payload.

        Args:
            payload: EncryptedPayload or its serialized bytes
            wrapped_key: OAEP-wrapped symmetric key
            private_key: PEM/DER RSA private key matching the wrapping key

        Returns:
            Plaintext document bytes

        Raises:
            KeyUnwrapError: the symmetric key could not be recovered
            AuthenticationError: the tag did not verify
        """
        symmetric_key = self.unwrap_key(wrapped_key, private_key)

        if not isinstance(payload, EncryptedPayload):
            if len(payload) < HEADER_BYTES:
                raise AuthenticationError("payload too short to authenticate")
            payload = EncryptedPayload.from_bytes(payload)

        try:
            return ChaCha20Poly1305(symmetric_key).decrypt(
                payload.nonce, payload.ciphertext + payload.auth_tag, None
            )
        except (InvalidTag, ValueError):
            raise AuthenticationError("authentication tag did not verify") from None

    def unwrap_key(self, wrapped_key: bytes, private_key: bytes) -> bytes:
        """Recover the symmetric key. Raises KeyUnwrapError on any failure."""
        try:
            rsa_private = load_private_key(private_key)
            symmetric_key = rsa_private.decrypt(wrapped_key, _oaep())
        except (ValueError, TypeError, UnsupportedAlgorithm):
            raise KeyUnwrapError() from None
        if len(symmetric_key) != SYMMETRIC_KEY_BYTES:
            raise KeyUnwrapError()
        return symmetric_key
