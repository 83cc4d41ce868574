import io
import json
import logging

from willvault.logging_config import (
    AuditLogger,
    StructuredFormatter,
    get_claim_id,
    set_claim_id,
)


def capture(name):
    stream = io.StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    logger = logging.getLogger(name)
    logger.addHandler(handler)
    logger.setLevel(logging.INFO)
    logger.propagate = False
    return logger, handler, stream


def lines(stream):
    return [json.loads(line) for line in stream.getvalue().splitlines()]


def test_set_claim_id_generates_when_missing():
    claim_id = set_claim_id()
    assert claim_id
    assert get_claim_id() == claim_id
    assert set_claim_id("claim-1") == "claim-1"
    assert get_claim_id() == "claim-1"


def test_structured_formatter_includes_claim_id():
    logger, handler, stream = capture("willvault.test.formatter")
    try:
        set_claim_id("claim-42")
        logger.info("hello %s", "world")
    finally:
        logger.removeHandler(handler)

    entry = lines(stream)[0]
    assert entry["msg"] == "hello world"
    assert entry["level"] == "INFO"
    assert entry["claim_id"] == "claim-42"


def test_audit_events_mask_identities():
    logger, handler, stream = capture("willvault.test.audit")
    audit = AuditLogger("willvault.test.audit")
    try:
        audit.claim_submitted("bob@example.com", "alice@example.com", "sha256:" + "a" * 64)
        audit.claim_decision("DENIED", None, "NOT_A_DESIGNATED_PARTY")
    finally:
        logger.removeHandler(handler)

    submitted, decision = lines(stream)
    assert submitted["event_type"] == "CLAIM_SUBMITTED"
    assert "bob@example.com" not in json.dumps(submitted)
    assert decision["level"] == "WARNING"
    assert decision["reason"] == "NOT_A_DESIGNATED_PARTY"


def test_secret_fields_are_redacted():
    logger, handler, stream = capture("willvault.test.redact")
    try:
        logger.info("released", extra={"extra_fields": {"record_id": "r1", "key_material": b"secret"}})
        try:
            raise ValueError("contains secret bytes")
        except ValueError:
            logger.exception("failed")
    finally:
        logger.removeHandler(handler)

    released, failed = lines(stream)
    assert released["key_material"] == "[REDACTED]"
    assert released["record_id"] == "r1"
    assert failed["error_type"] == "ValueError"
    assert "contains secret bytes" not in stream.getvalue()


def test_mask_identity():
    from willvault.util import mask_identity

    assert mask_identity("bob@example.com") == "b**@example.com"
    assert mask_identity("a@example.com") == "a*@example.com"
    assert mask_identity("0x52908400098527886E0F7030069857D2E4169EE7") == "0x5290" + "*" * 32 + "9EE7"
    assert mask_identity("short") == "*****"
