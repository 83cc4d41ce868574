"""
WillVault - Encrypted Will Custody and Conditional Release

Version: 1.0.0

An owner encrypts a will, stores it on a durable append-only network and
registers the named parties with an access ledger. After the owner's death a
designated party submits a claim with a death certificate. The ledger answers
with a single binary decision:

    evaluate(claim) -> Authorized(key_material) | Denied(reason)

Only an Authorized decision releases the decryption capability, and only to
the claimant it was issued for.

Usage:
    from willvault import (
        AccessClaim,
        InMemoryAccessLedger,
        InMemoryDurableStore,
        RetrievalProtocol,
        RetrievedDocument,
        WillCustodian,
    )

    store = InMemoryDurableStore()
    ledger = InMemoryAccessLedger(certificate_verifier=lambda claim, record: True)

    # Owner publishes
    receipt = await WillCustodian(store, ledger).publish_will(
        pdf_bytes, owner="alice@example.com", beneficiaries=["bob@example.com"]
    )

    # Beneficiary claims
    claim = AccessClaim(
        claimant="bob@example.com",
        will_owner="alice@example.com",
        certificate_locator=certificate_locator,
    )
    result = await RetrievalProtocol(store, ledger).request_access(claim)

    if isinstance(result, RetrievedDocument):
        document = result.content
    else:
        reason = result.reason
"""

__version__ = "1.0.0"

# Errors
from .errors import (
    WillVaultError,
    KeyGenerationError,
    ValidationError,
    CryptoError,
    EncryptionError,
    AuthenticationError,
    KeyUnwrapError,
    EscrowError,
    StorageError,
    StorageUnavailable,
    NotFound,
    LedgerUnavailable,
    UnknownRecordError,
)

# Keys and cipher
from .keys import KeyPair, KeyPairService, fingerprint
from .cipher import EncryptedPayload, EncryptionResult, HybridCipher
from .escrow import KeyEscrow, seal_for_escrow

# Records
from .record import (
    Identity,
    WillStatus,
    ClaimantRole,
    WillRecord,
    AccessClaim,
    RoleEntry,
    RoleSummary,
)

# Adapters
from .store import (
    DurableStore,
    InMemoryDurableStore,
    HttpDurableStore,
    S3ObjectLockStore,
)
from .ledger import (
    AccessLedger,
    InMemoryAccessLedger,
    HttpAccessLedger,
    Authorized,
    Denied,
    Decision,
    DenialReason,
)

# Protocol
from .retry import RetryPolicy, BackoffStrategy
from .custody import WillCustodian, PublishReceipt
from .retrieval import RetrievalProtocol, RetrievedDocument, AccessDenied


__all__ = [
    "__version__",

    # Errors
    "WillVaultError",
    "KeyGenerationError",
    "ValidationError",
    "CryptoError",
    "EncryptionError",
    "AuthenticationError",
    "KeyUnwrapError",
    "EscrowError",
    "StorageError",
    "StorageUnavailable",
    "NotFound",
    "LedgerUnavailable",
    "UnknownRecordError",

    # Keys and cipher
    "KeyPair",
    "KeyPairService",
    "fingerprint",
    "EncryptedPayload",
    "EncryptionResult",
    "HybridCipher",
    "KeyEscrow",
    "seal_for_escrow",

    # Records
    "Identity",
    "WillStatus",
    "ClaimantRole",
    "WillRecord",
    "AccessClaim",
    "RoleEntry",
    "RoleSummary",

    # Adapters
    "DurableStore",
    "InMemoryDurableStore",
    "HttpDurableStore",
    "S3ObjectLockStore",
    "AccessLedger",
    "InMemoryAccessLedger",
    "HttpAccessLedger",
    "Authorized",
    "Denied",
    "Decision",
    "DenialReason",

    # Protocol
    "RetryPolicy",
    "BackoffStrategy",
    "WillCustodian",
    "PublishReceipt",
    "RetrievalProtocol",
    "RetrievedDocument",
    "AccessDenied",
]
