"""
Small helpers shared by the core and the reference node: timestamps in the
one wire format WillVault uses, strict base64 for key material on the wire,
random identifiers, and identity masking for log records.
"""

import base64
import binascii
import secrets
import time
from datetime import datetime, timezone

RFC3339_FORMAT = '%Y-%m-%dT%H:%M:%SZ'


def now_epoch() -> int:
    return int(time.time())


def utc_now() -> datetime:
    """Current time as an aware UTC datetime, truncated to seconds."""
    return datetime.now(timezone.utc).replace(microsecond=0)


def utc_rfc3339(dt: datetime) -> str:
    return dt.astimezone(timezone.utc).strftime(RFC3339_FORMAT)


def parse_rfc3339(s: str) -> datetime:
    """Inverse of utc_rfc3339. Only the Z-suffixed, second-precision form is accepted."""
    return datetime.strptime(s, RFC3339_FORMAT).replace(tzinfo=timezone.utc)


def b64e(b: bytes) -> str:
    return base64.b64encode(b).decode('ascii')


def b64d(s: str) -> bytes:
    """
    Strict base64 decode.

    Raises:
        ValueError: non-alphabet characters or bad padding
    """
    try:
        return base64.b64decode(s.encode('ascii'), validate=True)
    except (UnicodeEncodeError, binascii.Error) as e:
        raise ValueError(f"invalid base64: {e}") from None


def generate_id(nbytes: int = 16) -> str:
    """Random hex identifier (claim ids, escrow key ids)."""
    return secrets.token_hex(nbytes)


def mask_identity(value: str) -> str:
    """
    Mask an identity for log records.

    Email addresses keep the first character of the local part and the
    domain (`b**@example.com`); wallet addresses keep the first six and
    last four characters.
    """
    if "@" in value:
        local, _, domain = value.partition("@")
        return f"{local[:1]}{'*' * max(len(local) - 1, 1)}@{domain}"
    if len(value) <= 10:
        return '*' * len(value)
    return f"{value[:6]}{'*' * (len(value) - 10)}{value[-4:]}"
