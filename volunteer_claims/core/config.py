"""
Claim lifecycle engine configuration.
Environment driven; values are read once at import unless exposed through a helper.
"""

import os
from pathlib import Path
from typing import List

from dotenv import load_dotenv

load_dotenv()

# Database path configuration
DB_PATH = os.getenv("DB_PATH", "./data/claims.db")
DB_TIMEOUT_SEC = float(os.getenv("DB_TIMEOUT_SEC", "5.0"))

DEBUG = os.getenv("DEBUG", "false").lower() == "true"

# Submission rules
PROOF_REQUIRED_KINDS = [
    kind.strip()
    for kind in os.getenv("PROOF_REQUIRED_KINDS", "donation,ad_hoc_service,other").split(",")
    if kind.strip()
]
REVIEW_COMMENT_MAX_LENGTH = int(os.getenv("REVIEW_COMMENT_MAX_LENGTH", "500"))

# Listing
DEFAULT_PAGE_SIZE = int(os.getenv("DEFAULT_PAGE_SIZE", "10"))
MAX_PAGE_SIZE = int(os.getenv("MAX_PAGE_SIZE", "100"))

# Audit trail
CLAIM_AUDIT_ENABLED = os.getenv("CLAIM_AUDIT_ENABLED", "true").lower() == "true"

VERSION = "1.0.0"

_KNOWN_KINDS = ["scheduled_event", "donation", "ad_hoc_service", "other"]


def debug_enabled():
    """Check if debug mode is enabled."""
    return os.getenv("DEBUG", "false").lower() == "true"


def get_db_path() -> str:
    """Current database path (re-read so tests can point at a temp file)."""
    return os.getenv("DB_PATH", DB_PATH)


def ensure_db_directory(db_path: str = None):
    """Ensure the database directory exists."""
    Path(db_path or get_db_path()).parent.mkdir(parents=True, exist_ok=True)


def proof_required_kinds() -> List[str]:
    return list(PROOF_REQUIRED_KINDS)


def is_audit_enabled() -> bool:
    return CLAIM_AUDIT_ENABLED


def validate_config() -> List[str]:
    """Validate configuration and return any issues."""
    issues = []

    for kind in PROOF_REQUIRED_KINDS:
        if kind not in _KNOWN_KINDS:
            issues.append(f"Invalid PROOF_REQUIRED_KINDS entry: {kind}")

    if REVIEW_COMMENT_MAX_LENGTH < 1:
        issues.append("REVIEW_COMMENT_MAX_LENGTH must be >= 1")

    if DEFAULT_PAGE_SIZE < 1:
        issues.append("DEFAULT_PAGE_SIZE must be >= 1")

    if MAX_PAGE_SIZE < DEFAULT_PAGE_SIZE:
        issues.append("MAX_PAGE_SIZE must be >= DEFAULT_PAGE_SIZE")

    if DB_TIMEOUT_SEC <= 0:
        issues.append("DB_TIMEOUT_SEC must be > 0")

    return issues
