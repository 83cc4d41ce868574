"""
WillVault Custody - owner side of the protocol.

Publishing a will:
1. validate document, content type and parties locally
2. generate a fresh key pair and encrypt the document (worker thread)
3. store the ciphertext payload and the wrapped key under separate locators
4. seal the private key to the ledger's escrow key
5. publish the record and the sealed key to the ledger

Nothing reaches the network until step 1 has passed. The private key exists
in cleartext only inside this call and is never logged.
"""

import asyncio
from dataclasses import dataclass
from typing import FrozenSet, Iterable, List, Optional, Union

from .cipher import HybridCipher
from .config import ACCEPTED_CONTENT_TYPES, MAX_DOCUMENT_BYTES
from .errors import ValidationError
from .escrow import seal_for_escrow
from .keys import KeyPair, KeyPairService
from .ledger import AccessLedger
from .logging_config import audit_log
from .record import Identity, RoleSummary, WillRecord
from .retry import RetryPolicy
from .store import DEFAULT_CONTENT_TYPE, DurableStore


@dataclass(frozen=True)
class PublishReceipt:
    """What the owner keeps after publishing."""
    record_id: str
    document_locator: str
    wrapped_key_locator: str
    key_fingerprint: str

    def to_dict(self):
        return {
            "record_id": self.record_id,
            "document_locator": self.document_locator,
            "wrapped_key_locator": self.wrapped_key_locator,
            "key_fingerprint": self.key_fingerprint,
        }


class WillCustodian:
    """
    Encrypts, stores and registers wills on behalf of their owners.

    Usage:
        custodian = WillCustodian(store, ledger)
        receipt = await custodian.publish_will(pdf_bytes, "alice@example.com",
                                               ["bob@example.com"])
    """

    def __init__(
        self,
        store: DurableStore,
        ledger: AccessLedger,
        cipher: Optional[HybridCipher] = None,
        key_service: Optional[KeyPairService] = None,
        retry: Optional[RetryPolicy] = None,
        accepted_content_types: Iterable[str] = ACCEPTED_CONTENT_TYPES,
        max_document_bytes: int = MAX_DOCUMENT_BYTES
    ):
        self.store = store
        self.ledger = ledger
        self.cipher = cipher or HybridCipher(max_plaintext_bytes=max_document_bytes)
        self.key_service = key_service or KeyPairService()
        self.retry = retry or RetryPolicy()
        self.accepted_content_types: FrozenSet[str] = frozenset(accepted_content_types)
        self.max_document_bytes = max_document_bytes

    def _validate(
        self,
        document: bytes,
        owner: Identity,
        beneficiaries: FrozenSet[Identity],
        power_of_attorney: Optional[Identity],
        content_type: str
    ) -> None:
        if not document:
            raise ValidationError("document is empty")
        if len(document) > self.max_document_bytes:
            raise ValidationError(
                f"document is {len(document)} bytes, limit is {self.max_document_bytes}"
            )
        if content_type not in self.accepted_content_types:
            raise ValidationError(f"content type {content_type!r} is not accepted")
        if not beneficiaries:
            raise ValidationError("a will must name at least one beneficiary")
        if owner in beneficiaries or owner == power_of_attorney:
            raise ValidationError("the owner cannot be a party to their own will")

    async def publish_will(
        self,
        document: bytes,
        owner: Union[Identity, str],
        beneficiaries: Iterable[Union[Identity, str]],
        power_of_attorney: Optional[Union[Identity, str]] = None,
        content_type: str = "application/pdf"
    ) -> PublishReceipt:
        """
        Encrypt and publish a will.

        Raises:
            ValidationError: the document or its parties were rejected locally
            StorageUnavailable / LedgerUnavailable: transport failed after retries
        """
        owner = Identity.of(owner)
        parties = frozenset(Identity.of(b) for b in beneficiaries)
        poa = Identity.of(power_of_attorney) if power_of_attorney is not None else None
        content_type = content_type.strip().lower()
        self._validate(document, owner, parties, poa, content_type)

        key_pair: KeyPair = await asyncio.to_thread(self.key_service.generate)
        result = await asyncio.to_thread(self.cipher.encrypt, document, key_pair.public_key)
        payload = result.payload.to_bytes()

        document_locator = await self.retry.execute(
            lambda: self.store.put(payload, content_type), operation="store.put"
        )
        wrapped_key_locator = await self.retry.execute(
            lambda: self.store.put(result.wrapped_key, DEFAULT_CONTENT_TYPE), operation="store.put"
        )

        record = WillRecord(
            owner=owner,
            document_locator=document_locator,
            wrapped_key_locator=wrapped_key_locator,
            beneficiaries=parties,
            power_of_attorney=poa,
            content_type=content_type,
        )

        escrow_key = await self.retry.execute(self.ledger.escrow_public_key, operation="ledger.escrow_key")
        sealed_key = seal_for_escrow(escrow_key, key_pair.private_key)
        record_id = await self.retry.execute(
            lambda: self.ledger.publish(record, sealed_key), operation="ledger.publish"
        )

        audit_log.will_published(
            record_id=record_id,
            owner=owner.value,
            document_locator=document_locator,
            wrapped_key_locator=wrapped_key_locator,
            key_fingerprint=key_pair.fingerprint,
        )
        return PublishReceipt(
            record_id=record_id,
            document_locator=document_locator,
            wrapped_key_locator=wrapped_key_locator,
            key_fingerprint=key_pair.fingerprint,
        )

    async def my_wills(self, owner: Union[Identity, str]) -> List[WillRecord]:
        """Wills the owner has published, oldest first."""
        return await self.retry.execute(
            lambda: self.ledger.records_by_owner(Identity.of(owner)), operation="ledger.records_by_owner"
        )

    async def my_roles(self, identity: Union[Identity, str]) -> RoleSummary:
        """Wills on which the identity is a beneficiary or power of attorney."""
        return await self.retry.execute(
            lambda: self.ledger.roles_for(Identity.of(identity)), operation="ledger.roles_for"
        )
