"""
WillVault reference node.

Serves a durable store and an access ledger over HTTP for local development,
in place of a public permanent-storage network. HttpDurableStore and
HttpAccessLedger are its clients.

Run:
    uvicorn --factory willvault.service.main:create_app --port 8484
"""

import logging
import os
from typing import Optional

from fastapi import FastAPI, HTTPException, Request, Response

from .. import __version__
from ..cipher import HEADER_BYTES
from ..config import ESCROW_KEY_PATH, EVALUATE_RPM, MAX_DOCUMENT_BYTES, is_debug
from ..errors import (
    EscrowError,
    LedgerUnavailable,
    NotFound,
    StorageUnavailable,
    UnknownRecordError,
    ValidationError,
)
from ..escrow import KeyEscrow
from ..ledger import AccessLedger, Authorized, InMemoryAccessLedger
from ..logging_config import audit_log, claim_scope
from ..record import AccessClaim, Identity, WillRecord
from ..store import DEFAULT_CONTENT_TYPE, DurableStore
from ..util import b64d, b64e
from .db import SqliteDurableStore
from .models import (
    BlobResponse,
    ClaimRequest,
    DecisionResponse,
    EscrowKeyResponse,
    OwnerWillsResponse,
    PublishWillRequest,
    PublishWillResponse,
    StatusResponse,
)
from .rate_limit import ClaimThrottle

logger = logging.getLogger("willvault.service")

MAX_BLOB_BYTES = MAX_DOCUMENT_BYTES + HEADER_BYTES


def store_certificate_verifier(store: DurableStore):
    """
    Accept a certificate whose locator resolves in the node's own store.

    Judging whether the certificate is genuine is left to the operator.
    """
    async def verify(claim: AccessClaim, record: WillRecord) -> bool:
        return await store.exists(claim.certificate_locator)
    return verify


def load_escrow(path: str = ESCROW_KEY_PATH) -> KeyEscrow:
    if os.path.exists(path):
        return KeyEscrow.from_file(path)
    escrow = KeyEscrow.generate()
    escrow.save(path)
    logger.warning("generated new escrow key %s at %s", escrow.key_id, path)
    return escrow


def create_app(
    store: Optional[DurableStore] = None,
    ledger: Optional[AccessLedger] = None,
    evaluate_rpm: int = EVALUATE_RPM
) -> FastAPI:
    """Build the node. Collaborators default to SQLite storage and an in-memory ledger."""
    store = store or SqliteDurableStore()
    if ledger is None:
        ledger = InMemoryAccessLedger(
            certificate_verifier=store_certificate_verifier(store),
            escrow=load_escrow(),
        )
    claim_throttle = ClaimThrottle(per_client=evaluate_rpm)

    app = FastAPI(title="WillVault Reference Node", version=__version__, debug=is_debug())
    app.state.store = store
    app.state.ledger = ledger
    app.state.claim_throttle = claim_throttle

    # ------------------------------------------------------------------
    # Durable store
    # ------------------------------------------------------------------

    @app.post("/blobs", response_model=BlobResponse)
    async def put_blob(request: Request):
        data = await request.body()
        if not data:
            raise HTTPException(400, "EMPTY_BLOB")
        if len(data) > MAX_BLOB_BYTES:
            raise HTTPException(413, "BLOB_TOO_LARGE")
        content_type = request.headers.get("content-type", DEFAULT_CONTENT_TYPE)
        try:
            locator = await store.put(data, content_type)
        except StorageUnavailable:
            raise HTTPException(503, "STORE_UNAVAILABLE")
        return BlobResponse(locator=locator, size=len(data))

    @app.get("/blobs/{locator}")
    async def get_blob(locator: str):
        try:
            data = await store.get(locator)
        except NotFound:
            raise HTTPException(404, "NOT_FOUND")
        except StorageUnavailable:
            raise HTTPException(503, "STORE_UNAVAILABLE")
        return Response(content=data, media_type=DEFAULT_CONTENT_TYPE)

    # ------------------------------------------------------------------
    # Ledger
    # ------------------------------------------------------------------

    @app.get("/ledger/escrow-key", response_model=EscrowKeyResponse)
    async def escrow_key():
        return EscrowKeyResponse(public_key_b64=b64e(await ledger.escrow_public_key()))

    @app.post("/ledger/wills", response_model=PublishWillResponse)
    async def publish_will(req: PublishWillRequest):
        try:
            record = WillRecord.from_dict(req.record)
            sealed_key = b64d(req.sealed_key_b64)
        except ValueError as e:
            raise HTTPException(400, f"INVALID_RECORD: {e}")
        for locator in (record.document_locator, record.wrapped_key_locator):
            if not await store.exists(locator):
                raise HTTPException(400, "LOCATOR_NOT_STORED")
        try:
            record_id = await ledger.publish(record, sealed_key)
        except ValidationError as e:
            raise HTTPException(400, f"INVALID_RECORD: {e}")
        audit_log.will_published(
            record_id=record_id,
            owner=record.owner.value,
            document_locator=record.document_locator,
            wrapped_key_locator=record.wrapped_key_locator,
        )
        return PublishWillResponse(record_id=record_id, status=record.status.value)

    @app.get("/ledger/wills/{record_id}")
    async def get_will(record_id: str):
        try:
            record = await ledger.get_record(record_id)
        except UnknownRecordError:
            raise HTTPException(404, "UNKNOWN_RECORD")
        return record.to_dict()

    @app.get("/ledger/owners/{owner}/wills", response_model=OwnerWillsResponse)
    async def owner_wills(owner: str):
        identity = _identity(owner)
        records = await ledger.records_by_owner(identity)
        return OwnerWillsResponse(owner=identity.value, records=[r.to_dict() for r in records])

    @app.get("/ledger/roles/{identity}")
    async def roles(identity: str):
        summary = await ledger.roles_for(_identity(identity))
        return summary.to_dict()

    @app.get("/ledger/wills/{record_id}/status/{claimant}", response_model=StatusResponse)
    async def will_status(record_id: str, claimant: str):
        who = _identity(claimant)
        try:
            status = await ledger.status_for(record_id, who)
        except UnknownRecordError:
            raise HTTPException(404, "UNKNOWN_RECORD")
        return StatusResponse(record_id=record_id, claimant=who.value, status=status.value)

    @app.post("/ledger/claims", response_model=DecisionResponse)
    async def submit_claim(req: ClaimRequest, request: Request):
        try:
            claim = AccessClaim.from_dict(req.model_dump())
        except ValidationError as e:
            raise HTTPException(400, f"INVALID_CLAIM: {e}")
        client_id = request.client.host if request.client else "unknown"
        verdict = claim_throttle.admit(client_id, claim.claimant.value)
        if not verdict.allowed:
            audit_log.rate_limit_exceeded(client_id, f"/ledger/claims ({verdict.scope})")
            raise HTTPException(429, "RATE_LIMIT", headers={"Retry-After": verdict.retry_after_header})
        with claim_scope(claim.claim_id):
            try:
                decision = await ledger.evaluate(claim)
            except (StorageUnavailable, LedgerUnavailable, EscrowError) as e:
                logger.error("claim could not be evaluated: %s", type(e).__name__)
                raise HTTPException(503, "LEDGER_UNAVAILABLE")

            audit_log.claim_decision(
                decision.decision.value,
                decision.record_id,
                None if isinstance(decision, Authorized) else decision.reason.value,
            )
        if isinstance(decision, Authorized):
            return DecisionResponse(
                decision=decision.decision.value,
                record_id=decision.record_id,
                claimant=decision.claimant.value,
                key_material_b64=b64e(decision.key_material),
            )
        return DecisionResponse(
            decision=decision.decision.value,
            record_id=decision.record_id,
            reason=decision.reason.value,
            detail=decision.detail,
        )

    @app.get("/ledger/decisions")
    async def decisions():
        if not isinstance(ledger, InMemoryAccessLedger):
            raise HTTPException(404, "NOT_AVAILABLE")
        return {"entries": list(ledger.decision_log), "chain_valid": ledger.verify_decision_chain()}

    @app.get("/health")
    async def health():
        body = {"status": "ok", "version": __version__}
        if isinstance(store, SqliteDurableStore):
            body["store"] = store.get_stats()
        return body

    return app


def _identity(value: str) -> Identity:
    try:
        return Identity.of(value)
    except ValidationError as e:
        raise HTTPException(400, f"INVALID_IDENTITY: {e}")
