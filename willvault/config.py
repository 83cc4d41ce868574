"""
Configuration module for WillVault.

Centralizes configuration with environment variable support. Values are
read once at import time and used only as constructor defaults: every
component also accepts its settings explicitly.
"""

import os
from pathlib import Path
from typing import Dict, FrozenSet

# ============================================================
# Environment Configuration
# ============================================================

ENV = os.getenv("WILLVAULT_ENV", "dev")  # dev|stage|prod

# Documents
MAX_DOCUMENT_BYTES = int(os.getenv("MAX_DOCUMENT_BYTES", str(5 * 1024 * 1024)))
ACCEPTED_CONTENT_TYPES: FrozenSet[str] = frozenset(
    t.strip().lower()
    for t in os.getenv("ACCEPTED_CONTENT_TYPES", "application/pdf").split(",")
    if t.strip()
)

# Key generation
RSA_KEY_BITS = int(os.getenv("RSA_KEY_BITS", "2048"))
MIN_RSA_KEY_BITS = 2048

# Retry policy for store and ledger transport
RETRY_MAX_ATTEMPTS = int(os.getenv("RETRY_MAX_ATTEMPTS", "4"))
RETRY_BASE_DELAY_SECONDS = float(os.getenv("RETRY_BASE_DELAY_SECONDS", "0.25"))
RETRY_MAX_DELAY_SECONDS = float(os.getenv("RETRY_MAX_DELAY_SECONDS", "8"))

# Remote endpoints
STORE_URL = os.getenv("STORE_URL", "http://localhost:8484")
LEDGER_URL = os.getenv("LEDGER_URL", "http://localhost:8484")
HTTP_TIMEOUT_SECONDS = float(os.getenv("HTTP_TIMEOUT_SECONDS", "20"))

# Reference node
EVALUATE_RPM = int(os.getenv("EVALUATE_RPM", "60"))
DB_PATH = os.getenv("WILLVAULT_DB_PATH", "data/willvault.db")
ESCROW_KEY_PATH = os.getenv("ESCROW_KEY_PATH", "secrets/escrow_key.json")


# ============================================================
# Validation
# ============================================================

def validate_config() -> Dict[str, bool]:
    """
    Validate configuration values.
    Returns dict of check name -> passed.
    """
    return {
        "max_document_bytes": MAX_DOCUMENT_BYTES > 0,
        "accepted_content_types": bool(ACCEPTED_CONTENT_TYPES),
        "rsa_key_bits": RSA_KEY_BITS >= MIN_RSA_KEY_BITS,
        "retry_max_attempts": RETRY_MAX_ATTEMPTS >= 1,
        "retry_delays": 0 <= RETRY_BASE_DELAY_SECONDS <= RETRY_MAX_DELAY_SECONDS,
        "escrow_key": Path(ESCROW_KEY_PATH).exists() or not is_production(),
    }


# ============================================================
# Feature Flags
# ============================================================

def is_production() -> bool:
    """Check if running in production mode."""
    return ENV == "prod"


def is_debug() -> bool:
    """Check if debug mode is enabled."""
    return os.getenv("WILLVAULT_DEBUG", "").lower() in ("1", "true", "yes")
