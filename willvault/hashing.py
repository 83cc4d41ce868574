"""
WillVault Hashing and Canonical JSON

Record identifiers and content-addressed locators are SHA-256 digests with a
`sha256:` prefix and lowercase hex output. Structured values are hashed over
their canonical JSON encoding so that semantically identical records produce
identical identifiers.
"""

import hashlib
import json
import re
from typing import Any, Dict, List, Union

SHA256_LOCATOR_RE = re.compile(r"^sha256:[a-f0-9]{64}$")


def canonicalize(obj: Any) -> bytes:
    """
    Convert an object to canonical JSON bytes.

    Rules:
    - Object keys sorted lexicographically
    - No whitespace between tokens
    - UTF-8 encoding
    - Arrays preserve order; sets are rejected (sort them first)
    - Only JSON scalar types, lists, tuples and dicts are accepted
    """
    canonical = _canonicalize_value(obj)
    return json.dumps(canonical, separators=(',', ':'), ensure_ascii=False).encode('utf-8')


def _canonicalize_value(value: Any) -> Any:
    if value is None or isinstance(value, (bool, int, float, str)):
        return value
    if isinstance(value, dict):
        return {k: _canonicalize_value(value[k]) for k in sorted(value.keys())}
    if isinstance(value, (list, tuple)):
        return [_canonicalize_value(item) for item in value]
    raise ValueError(f"Cannot canonicalize type: {type(value)}")


def sha256_hex(data: Union[bytes, str]) -> str:
    """Compute SHA-256 hash and return as hex string."""
    if isinstance(data, str):
        data = data.encode('utf-8')
    return hashlib.sha256(data).hexdigest()


def content_locator(data: bytes) -> str:
    """
    Content-addressed locator for a blob.

    Returns:
        Locator in format "sha256:abcdef..."
    """
    return f"sha256:{sha256_hex(data)}"


def is_content_locator(locator: str) -> bool:
    """True if the locator has the content-addressed `sha256:` form."""
    return bool(SHA256_LOCATOR_RE.match(locator or ""))


def verify_content(locator: str, data: bytes) -> bool:
    """Recompute the content address of `data` and compare with `locator`."""
    return content_locator(data) == locator


def record_hash(body: Dict[str, Any]) -> str:
    """
    Identifier of a will record.

    record_id = SHA-256(canonical(publish body))
    """
    return f"sha256:{sha256_hex(canonicalize(body))}"


def chain_entry_hash(prev_entry_hash: str, payload_hash: str) -> str:
    """Link a decision log entry to its predecessor."""
    return sha256_hex(f"{prev_entry_hash or ''}|{payload_hash}")


def verify_chain(entries: List[Dict[str, Any]]) -> bool:
    """
    Verify a hash-chained log.

    Each entry must carry `payload_hash`, `prev_entry_hash` and `entry_hash`.
    """
    prev = None
    for entry in entries:
        if entry.get("prev_entry_hash") != prev:
            return False
        if chain_entry_hash(prev, entry["payload_hash"]) != entry.get("entry_hash"):
            return False
        prev = entry["entry_hash"]
    return True
