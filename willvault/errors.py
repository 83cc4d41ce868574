"""
WillVault Error Taxonomy

Every failure the custody core can surface is one of the types below.

- Cryptographic failures (EncryptionError, AuthenticationError,
  KeyUnwrapError, EscrowError) are fatal to the current operation and are
  never retried.
- Transport failures (StorageUnavailable, LedgerUnavailable) are retried
  with bounded backoff and then surfaced unchanged.
- NotFound is terminal: a locator that does not resolve will not start
  resolving on a retry.
- ValidationError is raised before any network call is made.

An authorization denial is NOT an exception. It is returned as an
AccessDenied value by the retrieval protocol.

Messages never include key material or document bytes.
"""


class WillVaultError(Exception):
    """Base class for all WillVault errors."""

    retryable = False


class KeyGenerationError(WillVaultError):
    """Key pair generation failed (entropy source or backend failure)."""


class ValidationError(WillVaultError, ValueError):
    """A record, claim or document failed validation."""


# =============================================================================
# Cryptographic errors
# =============================================================================

class CryptoError(WillVaultError):
    """Base class for cryptographic failures."""


class EncryptionError(CryptoError):
    """Plaintext too large, or the wrapping public key is unusable."""


class AuthenticationError(CryptoError):
    """AEAD tag did not verify. No plaintext is returned."""


class KeyUnwrapError(CryptoError):
    """
    The wrapped symmetric key could not be recovered.

    Raised with the same message for every cause (wrong key, bad padding,
    malformed key, unexpected length).
    """

    GENERIC_MESSAGE = "wrapped key could not be unwrapped"

    def __init__(self, message: str = GENERIC_MESSAGE):
        super().__init__(message)


class EscrowError(CryptoError):
    """A sealed private key could not be sealed or unsealed."""


# =============================================================================
# Transport / external errors
# =============================================================================

class StorageError(WillVaultError):
    """Base class for durable store failures."""


class StorageUnavailable(StorageError):
    """Transient store failure (network, timeout, 5xx, integrity mismatch)."""

    retryable = True


class NotFound(StorageError):
    """The locator does not resolve to any stored object."""

    def __init__(self, locator: str):
        self.locator = locator
        super().__init__(f"no object stored under locator {locator!r}")


class LedgerUnavailable(WillVaultError):
    """Transient failure talking to the access ledger."""

    retryable = True


class UnknownRecordError(WillVaultError):
    """The ledger holds no record with the requested id."""

    def __init__(self, record_id: str):
        self.record_id = record_id
        super().__init__(f"unknown will record: {record_id}")
