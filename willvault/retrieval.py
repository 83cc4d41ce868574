"""
WillVault Retrieval Protocol

Claimant side of the protocol:

    claim -> ledger decision -> (if authorized) fetch -> decrypt -> document

Guarantees:
- a malformed claim is rejected before the ledger is contacted
- a denial never touches the store or the cipher
- only transport errors are retried; a denial, a missing blob or a failed
  authentication check is final
- the plaintext is returned once and never cached or logged
"""

import asyncio
from dataclasses import dataclass, field
from typing import Optional, Union

from .cipher import HybridCipher
from .errors import ValidationError, WillVaultError
from .ledger import AccessLedger, Authorized, Denied, DenialReason
from .logging_config import audit_log, claim_scope
from .record import AccessClaim
from .retry import RetryPolicy
from .store import DurableStore


@dataclass(frozen=True)
class RetrievedDocument:
    """Decrypted will, handed to the authorized claimant."""
    record_id: str
    content: bytes = field(repr=False)
    content_type: str = "application/pdf"

    def __len__(self) -> int:
        return len(self.content)


@dataclass(frozen=True)
class AccessDenied:
    """The ledger refused the claim. A result, not an error."""
    reason: DenialReason
    detail: str
    claim_id: str
    record_id: Optional[str] = None


RetrievalResult = Union[RetrievedDocument, AccessDenied]


class RetrievalProtocol:
    """
    Drives one claim through the ledger, the store and the cipher.

    Usage:
        protocol = RetrievalProtocol(store, ledger)
        result = await protocol.request_access(claim)
        if isinstance(result, RetrievedDocument):
            save(result.content)
    """

    def __init__(
        self,
        store: DurableStore,
        ledger: AccessLedger,
        cipher: Optional[HybridCipher] = None,
        retry: Optional[RetryPolicy] = None
    ):
        self.store = store
        self.ledger = ledger
        self.cipher = cipher or HybridCipher()
        self.retry = retry or RetryPolicy()

    async def request_access(self, claim: AccessClaim) -> RetrievalResult:
        """
        Submit a claim and, if authorized, return the decrypted document.

        Raises:
            ValidationError: the claim is malformed (no ledger call was made)
            LedgerUnavailable / StorageUnavailable: transport failed after retries
            NotFound: a stored locator does not resolve
            KeyUnwrapError / AuthenticationError: the stored data does not decrypt
        """
        claim.validate()
        with claim_scope(claim.claim_id):
            return await self._request_access(claim)

    async def _request_access(self, claim: AccessClaim) -> RetrievalResult:
        audit_log.claim_submitted(
            claimant=claim.claimant.value,
            will_owner=claim.will_owner.value,
            certificate_locator=claim.certificate_locator,
        )

        decision = await self.retry.execute(lambda: self.ledger.evaluate(claim), operation="ledger.evaluate")

        if isinstance(decision, Denied):
            audit_log.claim_decision(decision.decision.value, decision.record_id, decision.reason.value)
            return AccessDenied(
                reason=decision.reason,
                detail=decision.detail,
                claim_id=claim.claim_id,
                record_id=decision.record_id,
            )
        if not isinstance(decision, Authorized):
            raise ValidationError(f"ledger returned an unknown decision type {type(decision).__name__}")

        audit_log.claim_decision(decision.decision.value, decision.record_id)
        audit_log.capability_released(decision.record_id, claim.claimant.value)

        try:
            return await self._retrieve(decision)
        except WillVaultError as e:
            audit_log.retrieval_failed(decision.record_id, type(e).__name__)
            raise

    async def _read(self, locator: str) -> bytes:
        return await self.retry.execute(lambda: self.store.get(locator), operation="store.get")

    async def _retrieve(self, decision: Authorized) -> RetrievedDocument:
        record = await self.retry.execute(
            lambda: self.ledger.get_record(decision.record_id), operation="ledger.get_record"
        )

        reads = [
            asyncio.create_task(self._read(locator))
            for locator in (record.document_locator, record.wrapped_key_locator)
        ]
        try:
            payload, wrapped_key = await asyncio.gather(*reads)
        finally:
            # A failed read stops its sibling; nothing outlives this call
            for task in reads:
                task.cancel()
            await asyncio.gather(*reads, return_exceptions=True)

        content = await asyncio.to_thread(
            self.cipher.decrypt, payload, wrapped_key, decision.key_material
        )
        audit_log.retrieval_complete(decision.record_id, len(content))
        return RetrievedDocument(
            record_id=decision.record_id,
            content=content,
            content_type=record.content_type,
        )
