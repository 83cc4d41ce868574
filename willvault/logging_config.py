"""
Logging configuration for WillVault.

Log lines are JSON objects carrying identifiers only: claim ids, record ids,
locators, key fingerprints and masked identities. Keys and document bytes
are never logged; fields that could carry them are redacted by the formatter
as a last line.
"""

import json
import logging
import sys
import uuid
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any, Dict, Iterator, List, Optional

from .util import mask_identity

claim_id_var: ContextVar[str] = ContextVar('claim_id', default='')

# Never emitted, whatever a caller passes
REDACTED_FIELDS = frozenset({
    "key_material", "private_key", "sealed_key", "symmetric_key", "plaintext", "content",
})

# Transport libraries that log request lines at INFO
NOISY_LOGGERS = ("urllib3", "botocore", "boto3", "httpx", "uvicorn.access")


def _redact(fields: Dict[str, Any]) -> Dict[str, Any]:
    return {k: ("[REDACTED]" if k in REDACTED_FIELDS else v) for k, v in fields.items()}


class StructuredFormatter(logging.Formatter):
    """One JSON object per line. Audit fields ride on `record.extra_fields`."""

    def format(self, record: logging.LogRecord) -> str:
        created = datetime.fromtimestamp(record.created, timezone.utc)
        entry: Dict[str, Any] = {
            "ts": created.strftime('%Y-%m-%dT%H:%M:%S.') + f"{created.microsecond // 1000:03d}Z",
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
        }
        if record.levelno >= logging.WARNING:
            entry["where"] = f"{record.module}:{record.lineno}"

        claim_id = claim_id_var.get()
        if claim_id:
            entry["claim_id"] = claim_id

        # Exception text can quote arguments, so only the type is kept
        if record.exc_info and record.exc_info[0] is not None:
            entry["error_type"] = record.exc_info[0].__name__

        entry.update(_redact(getattr(record, "extra_fields", {})))
        return json.dumps(entry, default=str, sort_keys=True)


class AuditLogger:
    """
    Specialized logger for custody audit events.

    One method per event in the will lifecycle: publication, claim
    submission, ledger decision, capability release and retrieval outcome.
    """

    def __init__(self, name: str = "willvault.audit"):
        self._logger = logging.getLogger(name)

    def _log(self, level: int, event_type: str, message: str = "", **fields) -> None:
        if not self._logger.isEnabledFor(level):
            return
        fields["event_type"] = event_type
        self._logger.log(level, "%s: %s", event_type, message, extra={"extra_fields": fields})

    def will_published(
        self,
        record_id: str,
        owner: str,
        document_locator: str,
        wrapped_key_locator: str,
        key_fingerprint: Optional[str] = None
    ) -> None:
        """Log publication of a will record."""
        self._log(
            logging.INFO,
            "WILL_PUBLISHED",
            record_id=record_id,
            owner=mask_identity(owner),
            document_locator=document_locator,
            wrapped_key_locator=wrapped_key_locator,
            key_fingerprint=key_fingerprint,
            message=f"Will record {record_id} published"
        )

    def claim_submitted(self, claimant: str, will_owner: str, certificate_locator: str) -> None:
        """Log a claim being submitted to the ledger."""
        self._log(
            logging.INFO,
            "CLAIM_SUBMITTED",
            claimant=mask_identity(claimant),
            will_owner=mask_identity(will_owner),
            certificate_locator=certificate_locator,
            message="Access claim submitted"
        )

    def claim_decision(
        self,
        decision: str,
        record_id: Optional[str] = None,
        reason: Optional[str] = None
    ) -> None:
        """Log the ledger's decision on a claim."""
        level = logging.INFO if decision == "AUTHORIZED" else logging.WARNING
        self._log(
            level,
            "CLAIM_DECISION",
            decision=decision,
            record_id=record_id,
            reason=reason,
            message=f"Claim decision: {decision}"
        )

    def capability_released(self, record_id: str, claimant: str) -> None:
        """Log the release of a decryption capability to one claimant."""
        self._log(
            logging.INFO,
            "CAPABILITY_RELEASED",
            record_id=record_id,
            claimant=mask_identity(claimant),
            message=f"Capability for {record_id} released"
        )

    def retrieval_complete(self, record_id: str, size: int) -> None:
        """Log a completed retrieval."""
        self._log(
            logging.INFO,
            "RETRIEVAL_COMPLETE",
            record_id=record_id,
            size=size,
            message=f"Document {record_id} retrieved"
        )

    def retrieval_failed(self, record_id: Optional[str], error_type: str) -> None:
        """Log a failed retrieval. Only the error type is recorded."""
        self._log(
            logging.ERROR,
            "RETRIEVAL_FAILED",
            record_id=record_id,
            error_type=error_type,
            message=f"Retrieval failed: {error_type}"
        )

    def transport_retry(self, operation: str, attempt: int, delay: float, error_type: str) -> None:
        """Log a transport retry."""
        self._log(
            logging.WARNING,
            "TRANSPORT_RETRY",
            operation=operation,
            attempt=attempt,
            delay=round(delay, 3),
            error_type=error_type,
            message=f"Retrying {operation} after {error_type}"
        )

    def security_event(
        self,
        event: str,
        severity: str = "medium",
        **details
    ) -> None:
        """Log a security-relevant event."""
        level = {
            "low": logging.INFO,
            "medium": logging.WARNING,
            "high": logging.ERROR,
            "critical": logging.CRITICAL
        }.get(severity, logging.WARNING)

        self._log(
            level,
            "SECURITY_EVENT",
            security_event=event,
            severity=severity,
            **details,
            message=f"Security event: {event}"
        )

    def rate_limit_exceeded(self, client_id: str, endpoint: str) -> None:
        """Log rate limit exceeded."""
        self._log(
            logging.WARNING,
            "RATE_LIMIT_EXCEEDED",
            client_id=client_id,
            endpoint=endpoint,
            message=f"Rate limit exceeded for {client_id} on {endpoint}"
        )


def configure_logging(
    level: str = "INFO",
    json_format: bool = True,
    log_file: Optional[str] = None
) -> logging.Handler:
    """
    Route WillVault logging to stderr (and optionally a file).

    Only the `willvault` logger tree is configured; handlers installed on the
    root logger by a host application are left alone. Calling again replaces
    the handlers from the previous call.

    Returns:
        The stderr handler
    """
    formatter: logging.Formatter = (
        StructuredFormatter() if json_format
        else logging.Formatter('%(asctime)s %(levelname)-7s [%(name)s] %(message)s')
    )
    handlers: List[logging.Handler] = [logging.StreamHandler(sys.stderr)]
    if log_file:
        handlers.append(logging.FileHandler(log_file, encoding="utf-8"))

    package_logger = logging.getLogger("willvault")
    for old in [h for h in package_logger.handlers if getattr(h, "_willvault", False)]:
        package_logger.removeHandler(old)
        old.close()
    for handler in handlers:
        handler.setFormatter(formatter)
        handler._willvault = True
        package_logger.addHandler(handler)
    package_logger.setLevel(level.upper())
    package_logger.propagate = False

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
    return handlers[0]


def set_claim_id(claim_id: Optional[str] = None) -> str:
    """
    Set the claim ID for the current context.

    Args:
        claim_id: Claim ID to set, or None to generate one

    Returns:
        The claim ID that was set
    """
    if claim_id is None:
        claim_id = str(uuid.uuid4())
    claim_id_var.set(claim_id)
    return claim_id


@contextmanager
def claim_scope(claim_id: str) -> Iterator[str]:
    """Tag log records with `claim_id` for the duration of the block."""
    token = claim_id_var.set(claim_id)
    try:
        yield claim_id
    finally:
        claim_id_var.reset(token)


def get_claim_id() -> str:
    """Get the current claim ID."""
    return claim_id_var.get()


# Global audit logger instance
audit_log = AuditLogger()
