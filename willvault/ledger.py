"""
WillVault Access Ledger

The ledger is the authorization process of record. It owns:
- role membership (who counts as beneficiary / power of attorney),
- certificate judgment (whether a submitted death certificate is genuine),
- ordering of concurrent claims against the same record,
- custody of the sealed private key.

The core only consumes its binary answer:

    evaluate(claim) -> Authorized(key_material) | Denied(reason)

There is no third outcome. A ledger that cannot answer raises
LedgerUnavailable, which callers retry; it never guesses.

Release is scoped: authorizing one claimant releases the capability to that
claimant for that record only. Other parties still need their own claim.
"""

import asyncio
import inspect
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set, Tuple, Union

import requests

from .config import HTTP_TIMEOUT_SECONDS, LEDGER_URL
from .errors import LedgerUnavailable, UnknownRecordError, ValidationError, WillVaultError
from .escrow import KeyEscrow
from .hashing import canonicalize, chain_entry_hash, sha256_hex, verify_chain
from .logging_config import audit_log
from .record import AccessClaim, Identity, RoleSummary, WillRecord, WillStatus
from .util import b64d, b64e, utc_now, utc_rfc3339


class Decision(str, Enum):
    """Binary ledger decision."""
    AUTHORIZED = "AUTHORIZED"
    DENIED = "DENIED"


class DenialReason(str, Enum):
    """Why the ledger refused a claim."""
    INVALID_CLAIM = "INVALID_CLAIM"
    CLAIM_REPLAYED = "CLAIM_REPLAYED"
    UNKNOWN_RECORD = "UNKNOWN_RECORD"
    OWNER_MISMATCH = "OWNER_MISMATCH"
    NOT_A_DESIGNATED_PARTY = "NOT_A_DESIGNATED_PARTY"
    CERTIFICATE_REJECTED = "CERTIFICATE_REJECTED"


@dataclass(frozen=True)
class Authorized:
    """Positive decision. Carries the released capability for one claimant."""
    record_id: str
    claimant: Identity
    key_material: bytes = field(repr=False)
    decision: Decision = field(default=Decision.AUTHORIZED, init=False)

    def authorized(self) -> bool:
        return True


@dataclass(frozen=True)
class Denied:
    """Negative decision. Terminal for the claim; never retried."""
    reason: DenialReason
    detail: str = ""
    record_id: Optional[str] = None
    decision: Decision = field(default=Decision.DENIED, init=False)

    def authorized(self) -> bool:
        return False


LedgerDecision = Union[Authorized, Denied]

CertificateVerifier = Callable[[AccessClaim, WillRecord], Union[bool, Awaitable[bool]]]


class AccessLedger(ABC):
    """Abstract interface to the authorization ledger."""

    @abstractmethod
    async def escrow_public_key(self) -> bytes:
        """X25519 public key that private keys are sealed to before publish."""

    @abstractmethod
    async def publish(self, record: WillRecord, sealed_key: bytes) -> str:
        """Record a will and take custody of its sealed private key. Returns record_id."""

    @abstractmethod
    async def evaluate(self, claim: AccessClaim) -> LedgerDecision:
        """Consume a claim and decide it."""

    @abstractmethod
    async def get_record(self, record_id: str) -> WillRecord:
        """Current version of a record. Raises UnknownRecordError."""

    @abstractmethod
    async def records_by_owner(self, owner: Identity) -> List[WillRecord]:
        """Records published by an owner, oldest first."""

    @abstractmethod
    async def roles_for(self, identity: Identity) -> RoleSummary:
        """Wills on which the identity is a beneficiary or power of attorney."""

    @abstractmethod
    async def status_for(self, record_id: str, claimant: Identity) -> WillStatus:
        """Status of a record as seen by one claimant."""


class InMemoryAccessLedger(AccessLedger):
    """
    Reference ledger for development/testing.

    WARNING: Not persistent and not distributed.

    Rules:
    - a claim is consumed once; resubmitting the identical claim returns the
      same decision, any other claim reusing its claim_id is denied
    - the claimant must be a beneficiary or the power of attorney
    - the certificate is judged by the injected `certificate_verifier`;
      a verifier that raises counts as a rejection
    - claims against the same record are serialized
    - every decision is appended to a hash-chained decision log

    Usage:
        ledger = InMemoryAccessLedger(certificate_verifier=lambda claim, record: True)
    """

    def __init__(
        self,
        certificate_verifier: CertificateVerifier,
        escrow: Optional[KeyEscrow] = None
    ):
        self._verify_certificate = certificate_verifier
        self._escrow = escrow or KeyEscrow.generate()
        self._versions: Dict[str, List[WillRecord]] = {}
        self._sealed_keys: Dict[str, bytes] = {}
        self._owner_index: Dict[Identity, List[str]] = {}
        self._releases: Dict[str, Set[Identity]] = {}
        self._consumed_claims: Dict[str, Tuple[str, "asyncio.Future[LedgerDecision]"]] = {}
        self._record_locks: Dict[str, asyncio.Lock] = {}
        self._log_lock = threading.Lock()
        self.decision_log: List[Dict[str, Any]] = []
        self.evaluate_count = 0

    # ------------------------------------------------------------------
    # Publication
    # ------------------------------------------------------------------

    async def escrow_public_key(self) -> bytes:
        return self._escrow.public_key

    async def publish(self, record: WillRecord, sealed_key: bytes) -> str:
        """
        Record a will.

        Publishing the same record twice returns the same id and leaves the
        stored sealed key untouched.

        Raises:
            ValidationError: the record is not ACTIVE or the sealed key is empty
        """
        record.validate()
        if record.status != WillStatus.ACTIVE:
            raise ValidationError("only ACTIVE records can be published")
        if not sealed_key:
            raise ValidationError("a sealed key is required")

        record_id = record.record_id
        if record_id in self._versions:
            return record_id

        self._versions[record_id] = [record]
        self._sealed_keys[record_id] = bytes(sealed_key)
        self._owner_index.setdefault(record.owner, []).append(record_id)
        self._releases[record_id] = set()
        return record_id

    # ------------------------------------------------------------------
    # Evaluation
    # ------------------------------------------------------------------

    async def evaluate(self, claim: AccessClaim) -> LedgerDecision:
        """
        Decide a claim.

        A claim id is consumed on first sight. Resubmitting the identical
        claim returns the decision for the first submission, waiting for it
        if it is still being made, so a caller retrying after a lost response
        gets its answer. Any other claim reusing the id is denied as a replay.
        """
        self.evaluate_count += 1
        try:
            claim.validate()
        except ValidationError as e:
            return self._decide(claim, Denied(DenialReason.INVALID_CLAIM, str(e)))

        fp = sha256_hex(canonicalize(claim.to_dict()))
        consumed = self._consumed_claims.get(claim.claim_id)
        if consumed is not None:
            seen_fp, pending = consumed
            if seen_fp != fp:
                return self._decide(claim, Denied(DenialReason.CLAIM_REPLAYED, "claim already consumed"))
            # Cancelling this caller must not cancel the first submission
            return await asyncio.shield(pending)

        pending = asyncio.get_running_loop().create_future()
        self._consumed_claims[claim.claim_id] = (fp, pending)
        try:
            decision = await self._evaluate_once(claim)
        except BaseException as e:
            # Undecided claims may be submitted again
            del self._consumed_claims[claim.claim_id]
            failure = e if isinstance(e, Exception) else LedgerUnavailable("claim evaluation was interrupted")
            pending.set_exception(failure)
            pending.exception()
            raise
        pending.set_result(decision)
        return decision

    async def _evaluate_once(self, claim: AccessClaim) -> LedgerDecision:
        record_id = self._resolve_record_id(claim)
        if record_id is None:
            return self._decide(claim, Denied(DenialReason.UNKNOWN_RECORD, "no will found for owner"))

        async with self._lock_for(record_id):
            record = self._current(record_id)
            if record.owner != claim.will_owner:
                return self._decide(claim, Denied(
                    DenialReason.OWNER_MISMATCH, "record belongs to a different owner", record_id
                ))

            if record.status == WillStatus.ACTIVE:
                self._versions[record_id].append(record.with_status(WillStatus.CERTIFICATE_SUBMITTED))

            if record.role_of(claim.claimant) is None:
                return self._decide(claim, Denied(
                    DenialReason.NOT_A_DESIGNATED_PARTY, "claimant holds no role on this will", record_id
                ))

            if not await self._certificate_accepted(claim, record):
                return self._decide(claim, Denied(
                    DenialReason.CERTIFICATE_REJECTED, "certificate was not accepted", record_id
                ))

            key_material = self._escrow.unseal(self._sealed_keys[record_id])
            self._releases[record_id].add(claim.claimant)
            decision = Authorized(record_id=record_id, claimant=claim.claimant, key_material=key_material)
            return self._decide(claim, decision)

    async def _certificate_accepted(self, claim: AccessClaim, record: WillRecord) -> bool:
        try:
            verdict = self._verify_certificate(claim, record)
            if inspect.isawaitable(verdict):
                verdict = await verdict
        except asyncio.CancelledError:
            raise
        except Exception as e:
            audit_log.security_event(
                "CERTIFICATE_VERIFIER_ERROR", severity="high",
                record_id=record.record_id, error_type=type(e).__name__
            )
            return False
        return verdict is True

    def _resolve_record_id(self, claim: AccessClaim) -> Optional[str]:
        if claim.record_id is not None:
            return claim.record_id if claim.record_id in self._versions else None
        published = self._owner_index.get(claim.will_owner)
        return published[-1] if published else None

    def _lock_for(self, record_id: str) -> asyncio.Lock:
        lock = self._record_locks.get(record_id)
        if lock is None:
            lock = self._record_locks[record_id] = asyncio.Lock()
        return lock

    def _decide(self, claim: AccessClaim, decision: LedgerDecision) -> LedgerDecision:
        """Append the decision to the hash-chained log. No key material is logged."""
        body = {
            "claim_id": claim.claim_id,
            "claimant": claim.claimant.value,
            "record_id": decision.record_id,
            "decision": decision.decision.value,
            "reason": decision.reason.value if isinstance(decision, Denied) else None,
            "decided_at": utc_rfc3339(utc_now()),
        }
        payload_hash = sha256_hex(canonicalize(body))
        with self._log_lock:
            prev = self.decision_log[-1]["entry_hash"] if self.decision_log else None
            entry = dict(body)
            entry.update({
                "seq": len(self.decision_log) + 1,
                "payload_hash": payload_hash,
                "prev_entry_hash": prev,
                "entry_hash": chain_entry_hash(prev, payload_hash),
            })
            self.decision_log.append(entry)
        return decision

    def verify_decision_chain(self) -> bool:
        with self._log_lock:
            return verify_chain(list(self.decision_log))

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def _current(self, record_id: str) -> WillRecord:
        versions = self._versions.get(record_id)
        if not versions:
            raise UnknownRecordError(record_id)
        return versions[-1]

    def history(self, record_id: str) -> List[WillRecord]:
        """Every version of a record, oldest first."""
        if record_id not in self._versions:
            raise UnknownRecordError(record_id)
        return list(self._versions[record_id])

    async def get_record(self, record_id: str) -> WillRecord:
        return self._current(record_id)

    async def records_by_owner(self, owner: Identity) -> List[WillRecord]:
        owner = Identity.of(owner)
        return [self._current(rid) for rid in self._owner_index.get(owner, [])]

    async def roles_for(self, identity: Identity) -> RoleSummary:
        identity = Identity.of(identity)
        return RoleSummary.build(identity, (v[-1] for v in self._versions.values()))

    async def status_for(self, record_id: str, claimant: Identity) -> WillStatus:
        record = self._current(record_id)
        if Identity.of(claimant) in self._releases[record_id]:
            return WillStatus.RELEASED
        return record.status


class HttpAccessLedger(AccessLedger):
    """
    Client of a ledger node (see willvault.service).

    Connection errors, timeouts, 429 and 5xx map to LedgerUnavailable.
    A denial is a normal 200 response, never an exception.
    """

    def __init__(
        self,
        base_url: str = LEDGER_URL,
        timeout: float = HTTP_TIMEOUT_SECONDS,
        session: Optional[requests.Session] = None
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._session = session or requests.Session()

    def _request(self, method: str, path: str, **kwargs) -> Dict[str, Any]:
        try:
            r = self._session.request(method, f"{self.base_url}{path}", timeout=self.timeout, **kwargs)
        except (requests.ConnectionError, requests.Timeout) as e:
            raise LedgerUnavailable(f"ledger unreachable: {type(e).__name__}") from None
        if r.status_code == 429 or r.status_code >= 500:
            raise LedgerUnavailable(f"ledger returned HTTP {r.status_code}")
        if r.status_code in (400, 422):
            raise ValidationError(f"ledger rejected request: {self._detail(r)}")
        if r.status_code == 404:
            raise UnknownRecordError(path.rsplit("/", 1)[-1])
        if r.status_code >= 400:
            raise WillVaultError(f"ledger returned HTTP {r.status_code}")
        try:
            return r.json()
        except ValueError:
            raise LedgerUnavailable("ledger returned a malformed response") from None

    @staticmethod
    def _detail(r: requests.Response) -> str:
        try:
            return str(r.json().get("detail", r.status_code))
        except ValueError:
            return str(r.status_code)

    @staticmethod
    def _q(value: str) -> str:
        return requests.utils.quote(value, safe=":")

    async def escrow_public_key(self) -> bytes:
        data = await asyncio.to_thread(self._request, "GET", "/ledger/escrow-key")
        return b64d(data["public_key_b64"])

    async def publish(self, record: WillRecord, sealed_key: bytes) -> str:
        body = {"record": record.to_dict(), "sealed_key_b64": b64e(sealed_key)}
        data = await asyncio.to_thread(self._request, "POST", "/ledger/wills", json=body)
        return data["record_id"]

    async def evaluate(self, claim: AccessClaim) -> LedgerDecision:
        data = await asyncio.to_thread(self._request, "POST", "/ledger/claims", json=claim.to_dict())
        try:
            if data["decision"] == Decision.AUTHORIZED.value:
                return Authorized(
                    record_id=data["record_id"],
                    claimant=Identity.of(data["claimant"]),
                    key_material=b64d(data["key_material_b64"]),
                )
            return Denied(
                reason=DenialReason(data["reason"]),
                detail=data.get("detail", ""),
                record_id=data.get("record_id"),
            )
        except (KeyError, ValueError, TypeError):
            raise LedgerUnavailable("ledger returned a malformed decision") from None

    async def get_record(self, record_id: str) -> WillRecord:
        data = await asyncio.to_thread(self._request, "GET", f"/ledger/wills/{self._q(record_id)}")
        return WillRecord.from_dict(data)

    async def records_by_owner(self, owner: Identity) -> List[WillRecord]:
        owner = Identity.of(owner)
        data = await asyncio.to_thread(self._request, "GET", f"/ledger/owners/{self._q(owner.value)}/wills")
        return [WillRecord.from_dict(r) for r in data.get("records", [])]

    async def roles_for(self, identity: Identity) -> RoleSummary:
        identity = Identity.of(identity)
        data = await asyncio.to_thread(self._request, "GET", f"/ledger/roles/{self._q(identity.value)}")
        return RoleSummary.from_dict(data)

    async def status_for(self, record_id: str, claimant: Identity) -> WillStatus:
        claimant = Identity.of(claimant)
        path = f"/ledger/wills/{self._q(record_id)}/status/{self._q(claimant.value)}"
        data = await asyncio.to_thread(self._request, "GET", path)
        return WillStatus(data["status"])
