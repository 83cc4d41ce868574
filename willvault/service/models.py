from pydantic import BaseModel, Field
from typing import Any, Dict, List, Optional


class PublishWillRequest(BaseModel):
    record: Dict[str, Any]
    sealed_key_b64: str


class PublishWillResponse(BaseModel):
    record_id: str
    status: str


class ClaimRequest(BaseModel):
    claim_id: str
    claimant: str
    will_owner: str
    certificate_locator: str
    record_id: Optional[str] = None
    submitted_at: str


class DecisionResponse(BaseModel):
    decision: str
    record_id: Optional[str] = None
    claimant: Optional[str] = None
    key_material_b64: Optional[str] = None
    reason: Optional[str] = None
    detail: str = ""


class BlobResponse(BaseModel):
    locator: str
    size: int


class EscrowKeyResponse(BaseModel):
    alg: str = "X25519-SealedBox"
    public_key_b64: str


class OwnerWillsResponse(BaseModel):
    owner: str
    records: List[Dict[str, Any]] = Field(default_factory=list)


class StatusResponse(BaseModel):
    record_id: str
    claimant: str
    status: str
