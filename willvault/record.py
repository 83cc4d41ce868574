"""
WillVault Records

Data model for one custodial relationship and the claims made against it.

A WillRecord is immutable. The ledger reflects a state change by appending
a superseding version of the record (same record_id, new status). Nothing
is ever deleted.

Lifecycle:

    ACTIVE ──(any claim recorded)──> CERTIFICATE_SUBMITTED ──(authorized)──> RELEASED

RELEASED is scoped to one (record, claimant) pair. Authorizing one claimant
does not release the record to anyone else.
"""

import re
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Dict, FrozenSet, Iterable, List, Optional, Union

from .errors import ValidationError
from .hashing import record_hash
from .util import generate_id, parse_rfc3339, utc_now, utc_rfc3339

MAX_IDENTITY_LENGTH = 320
_WHITESPACE_RE = re.compile(r"\s")


@dataclass(frozen=True, order=True)
class Identity:
    """
    A party to a will: an email address or a wallet address.

    Normalized on construction: surrounding whitespace is stripped and email
    addresses are lower-cased, so the same person always compares equal.
    """
    value: str

    def __post_init__(self):
        if not isinstance(self.value, str):
            raise ValidationError("identity must be a string")
        v = self.value.strip()
        if not v:
            raise ValidationError("identity must not be empty")
        if len(v) > MAX_IDENTITY_LENGTH:
            raise ValidationError(f"identity longer than {MAX_IDENTITY_LENGTH} characters")
        if _WHITESPACE_RE.search(v):
            raise ValidationError("identity must not contain whitespace")
        if "@" in v:
            v = v.lower()
        object.__setattr__(self, "value", v)

    @classmethod
    def of(cls, value: Union["Identity", str]) -> "Identity":
        return value if isinstance(value, Identity) else cls(value)

    def __str__(self) -> str:
        return self.value


class WillStatus(str, Enum):
    """Record status. Only the ledger moves a record out of ACTIVE."""
    ACTIVE = "ACTIVE"
    CERTIFICATE_SUBMITTED = "CERTIFICATE_SUBMITTED"
    RELEASED = "RELEASED"

    @staticmethod
    def can_transition(src: "WillStatus", dst: "WillStatus") -> bool:
        return dst in _TRANSITIONS[src]


_TRANSITIONS = {
    WillStatus.ACTIVE: {WillStatus.CERTIFICATE_SUBMITTED},
    WillStatus.CERTIFICATE_SUBMITTED: {WillStatus.CERTIFICATE_SUBMITTED, WillStatus.RELEASED},
    WillStatus.RELEASED: set(),
}


class ClaimantRole(str, Enum):
    BENEFICIARY = "BENEFICIARY"
    POWER_OF_ATTORNEY = "POWER_OF_ATTORNEY"


def _now_str() -> str:
    return utc_rfc3339(utc_now())


def _check_timestamp(name: str, value: str) -> None:
    try:
        parse_rfc3339(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{name} must be an RFC3339 UTC timestamp, got {value!r}") from None


@dataclass(frozen=True)
class WillRecord:
    """
    Durable metadata for one will.

    Only the two storage locators and the parties are persisted; the key
    material lives in escrow and never appears here.
    """
    owner: Identity
    document_locator: str
    wrapped_key_locator: str
    beneficiaries: FrozenSet[Identity]
    power_of_attorney: Optional[Identity] = None
    status: WillStatus = WillStatus.ACTIVE
    content_type: str = "application/pdf"
    created_at: str = field(default_factory=_now_str)

    def __post_init__(self):
        object.__setattr__(self, "owner", Identity.of(self.owner))
        object.__setattr__(
            self, "beneficiaries", frozenset(Identity.of(b) for b in self.beneficiaries)
        )
        if self.power_of_attorney is not None:
            object.__setattr__(self, "power_of_attorney", Identity.of(self.power_of_attorney))
        object.__setattr__(self, "status", WillStatus(self.status))
        self.validate()

    def validate(self) -> None:
        """
        Raises:
            ValidationError: empty beneficiaries, missing or conflated locators
        """
        if not self.beneficiaries:
            raise ValidationError("a will must name at least one beneficiary")
        if not self.document_locator or not self.wrapped_key_locator:
            raise ValidationError("document and wrapped key locators are required")
        if self.document_locator == self.wrapped_key_locator:
            raise ValidationError("document and wrapped key must be stored under distinct locators")
        if not self.content_type:
            raise ValidationError("content_type is required")
        _check_timestamp("created_at", self.created_at)

    def publish_body(self) -> Dict[str, Any]:
        """The immutable part of the record. Status is excluded."""
        return {
            "owner": self.owner.value,
            "document_locator": self.document_locator,
            "wrapped_key_locator": self.wrapped_key_locator,
            "beneficiaries": sorted(b.value for b in self.beneficiaries),
            "power_of_attorney": self.power_of_attorney.value if self.power_of_attorney else None,
            "content_type": self.content_type,
            "created_at": self.created_at,
        }

    @property
    def record_id(self) -> str:
        return record_hash(self.publish_body())

    def role_of(self, identity: Identity) -> Optional[ClaimantRole]:
        """Role the identity holds on this will, if any."""
        if identity in self.beneficiaries:
            return ClaimantRole.BENEFICIARY
        if self.power_of_attorney is not None and identity == self.power_of_attorney:
            return ClaimantRole.POWER_OF_ATTORNEY
        return None

    def with_status(self, status: WillStatus) -> "WillRecord":
        """
        Superseding version of this record with a new status.

        Raises:
            ValidationError: the transition is not allowed
        """
        if not WillStatus.can_transition(self.status, status):
            raise ValidationError(f"illegal transition {self.status.value} -> {status.value}")
        return replace(self, status=status)

    def to_dict(self) -> Dict[str, Any]:
        d = self.publish_body()
        d["record_id"] = self.record_id
        d["status"] = self.status.value
        return d

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "WillRecord":
        try:
            record = cls(
                owner=data["owner"],
                document_locator=data["document_locator"],
                wrapped_key_locator=data["wrapped_key_locator"],
                beneficiaries=data["beneficiaries"],
                power_of_attorney=data.get("power_of_attorney"),
                status=WillStatus(data.get("status", WillStatus.ACTIVE.value)),
                content_type=data.get("content_type", "application/pdf"),
                created_at=data["created_at"],
            )
        except KeyError as e:
            raise ValidationError(f"will record is missing field {e.args[0]!r}") from None
        except (TypeError, ValueError) as e:
            if isinstance(e, ValidationError):
                raise
            raise ValidationError(f"malformed will record: {e}") from None
        declared = data.get("record_id")
        if declared is not None and declared != record.record_id:
            raise ValidationError("record_id does not match record contents")
        return record


@dataclass(frozen=True)
class AccessClaim:
    """
    A request, with a death certificate as evidence, for release of a will.

    Consumed exactly once by the ledger. `record_id` may be omitted, in which
    case the ledger resolves the owner's most recently published record.
    """
    claimant: Identity
    will_owner: Identity
    certificate_locator: str
    record_id: Optional[str] = None
    submitted_at: str = field(default_factory=_now_str)
    claim_id: str = field(default_factory=generate_id)

    def __post_init__(self):
        object.__setattr__(self, "claimant", Identity.of(self.claimant))
        object.__setattr__(self, "will_owner", Identity.of(self.will_owner))

    def validate(self) -> None:
        """
        Raises:
            ValidationError: the claim is malformed
        """
        if not self.certificate_locator or not self.certificate_locator.strip():
            raise ValidationError("a claim must reference a certificate")
        if self.claimant == self.will_owner:
            raise ValidationError("an owner cannot claim their own will")
        if not self.claim_id:
            raise ValidationError("claim_id is required")
        if self.record_id is not None and not self.record_id:
            raise ValidationError("record_id must not be empty when given")
        _check_timestamp("submitted_at", self.submitted_at)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "claim_id": self.claim_id,
            "claimant": self.claimant.value,
            "will_owner": self.will_owner.value,
            "certificate_locator": self.certificate_locator,
            "record_id": self.record_id,
            "submitted_at": self.submitted_at,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AccessClaim":
        try:
            claim = cls(
                claimant=data["claimant"],
                will_owner=data["will_owner"],
                certificate_locator=data["certificate_locator"],
                record_id=data.get("record_id"),
                submitted_at=data["submitted_at"],
                claim_id=data["claim_id"],
            )
        except KeyError as e:
            raise ValidationError(f"claim is missing field {e.args[0]!r}") from None
        claim.validate()
        return claim


@dataclass(frozen=True)
class RoleEntry:
    """One will on which an identity holds a role."""
    owner: Identity
    record_id: str
    document_locator: str

    def to_dict(self) -> Dict[str, str]:
        return {
            "owner": self.owner.value,
            "record_id": self.record_id,
            "document_locator": self.document_locator,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RoleEntry":
        return cls(
            owner=Identity.of(data["owner"]),
            record_id=data["record_id"],
            document_locator=data["document_locator"],
        )


@dataclass
class RoleSummary:
    """Wills on which an identity is a beneficiary or holds power of attorney."""
    beneficiary_of: List[RoleEntry] = field(default_factory=list)
    power_of_attorney_for: List[RoleEntry] = field(default_factory=list)

    @classmethod
    def build(cls, identity: Identity, records: Iterable[WillRecord]) -> "RoleSummary":
        summary = cls()
        for record in records:
            entry = RoleEntry(record.owner, record.record_id, record.document_locator)
            if identity in record.beneficiaries:
                summary.beneficiary_of.append(entry)
            if record.power_of_attorney == identity:
                summary.power_of_attorney_for.append(entry)
        return summary

    def to_dict(self) -> Dict[str, Any]:
        return {
            "beneficiary_of": [e.to_dict() for e in self.beneficiary_of],
            "power_of_attorney_for": [e.to_dict() for e in self.power_of_attorney_for],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RoleSummary":
        return cls(
            beneficiary_of=[RoleEntry.from_dict(e) for e in data.get("beneficiary_of", [])],
            power_of_attorney_for=[RoleEntry.from_dict(e) for e in data.get("power_of_attorney_for", [])],
        )
