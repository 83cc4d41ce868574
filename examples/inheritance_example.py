#!/usr/bin/env python3
"""
WillVault Example - Publish a will, then claim it

An owner publishes a will naming one beneficiary. After the owner's death
the beneficiary submits a claim with a death certificate and receives the
document. A stranger's claim for the same will is denied.

Run with: python examples/inheritance_example.py
"""

import asyncio

from willvault import (
    AccessClaim,
    AccessDenied,
    InMemoryAccessLedger,
    InMemoryDurableStore,
    RetrievalProtocol,
    RetrievedDocument,
    WillCustodian,
)

OWNER = "alice@example.com"
BENEFICIARY = "bob@example.com"
STRANGER = "mallory@example.com"


def certificate_on_file(store: InMemoryDurableStore):
    """
    Accept any certificate that was uploaded to the store.

    In production, this would call:
    - a civil registry / vital records lookup
    - a notary or court attestation service
    """
    async def verify(claim, record) -> bool:
        return await store.exists(claim.certificate_locator)
    return verify


async def main():
    store = InMemoryDurableStore()
    ledger = InMemoryAccessLedger(certificate_verifier=certificate_on_file(store))

    print("=" * 60)
    print("WillVault Example")
    print("=" * 60)

    document = b"%PDF-1.7\nLast will and testament of Alice.\n%%EOF\n"
    receipt = await WillCustodian(store, ledger).publish_will(
        document, owner=OWNER, beneficiaries=[BENEFICIARY]
    )
    print(f"\nPublished: {receipt.record_id}")
    print(f"  Document locator:    {receipt.document_locator}")
    print(f"  Wrapped key locator: {receipt.wrapped_key_locator}")
    print(f"  Key fingerprint:     {receipt.key_fingerprint}")

    certificate = await store.put(b"%PDF-1.7\nCertificate of death: Alice\n%%EOF\n", "application/pdf")
    protocol = RetrievalProtocol(store, ledger)

    print("\n" + "-" * 60)
    print("Claim 1: stranger")
    print("-" * 60)
    result = await protocol.request_access(
        AccessClaim(claimant=STRANGER, will_owner=OWNER, certificate_locator=certificate)
    )
    assert isinstance(result, AccessDenied)
    print(f"Denied: {result.reason.value}")

    print("\n" + "-" * 60)
    print("Claim 2: beneficiary")
    print("-" * 60)
    result = await protocol.request_access(
        AccessClaim(claimant=BENEFICIARY, will_owner=OWNER, certificate_locator=certificate)
    )
    assert isinstance(result, RetrievedDocument)
    print(f"Released {len(result)} bytes ({result.content_type})")
    print(f"Matches original: {result.content == document}")

    status = await ledger.status_for(receipt.record_id, BENEFICIARY)
    print(f"Status for beneficiary: {status.value}")
    print(f"Decision log intact: {ledger.verify_decision_chain()}")


if __name__ == "__main__":
    asyncio.run(main())
