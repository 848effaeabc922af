"""
Structured logging for the claim lifecycle engine.
Audit helpers redact free-text fields so descriptions and comments written by minors never reach log output.
"""

import logging
from datetime import datetime
from typing import Any, Dict, List

DEFAULT_SENSITIVE_FIELDS = ['description', 'comment', 'review_comment', 'proof_reference', 'guardian_note']


class StructuredLogger:
    """Structured logger for claim submissions, reviews and delegation changes."""

    def __init__(self, name: str = "volunteer_claims"):
        self.logger = logging.getLogger(name)
        self.logger.setLevel(logging.INFO)

        # Create handler if not already set
        if not self.logger.handlers:
            handler = logging.StreamHandler()
            formatter = logging.Formatter(
                '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
            )
            handler.setFormatter(formatter)
            self.logger.addHandler(handler)

    def log_operation(self, operation: str, status: str, details: Dict[str, Any] = None):
        """Log a structured operation."""
        message = f"Operation: {operation}, Status: {status}"
        if details:
            message += f", Details: {details}"

        self.logger.info(message)

    def log_claim_submitted(self, claim_id: str, owner_id: str, kind: str, hours: float):
        """Log a claim entering the pending state."""
        self.log_operation("claim.submitted", "pending", {
            "claim_id": claim_id,
            "owner_id": owner_id,
            "kind": kind,
            "hours": hours
        })

    def log_claim_review(self, claim_id: str, decision: str, reviewer_id: str, status: str = "success"):
        """Log a review attempt outcome."""
        self.log_operation("claim.review", status, {
            "claim_id": claim_id,
            "decision": decision,
            "reviewer_id": reviewer_id
        })

    def log_authorization_denied(self, operation: str, actor_id: str, role: str, target_id: str, reason: str):
        """Log the concrete rule that denied an actor.

        Callers only ever see a generic Forbidden; the reason lives here.
        """
        self.log_operation(f"authz.{operation}", "denied", {
            "actor_id": actor_id,
            "role": role,
            "target_id": target_id,
            "reason": reason
        })

    def log_delegation_change(self, event_id: str, actor_id: str, change: str, promoted: bool = False):
        """Log a delegate being added to or removed from an event."""
        details = {"event_id": event_id, "actor_id": actor_id}
        if promoted:
            details["promoted"] = True
        self.log_operation(f"delegation.{change}", "success", details)

    def log_consent_block(self, actor_id: str):
        """Log a submission blocked by the minor-consent gate."""
        self.log_operation("claim.submit", "consent_required", {"actor_id": actor_id})

    # Standard logging methods for compatibility
    def info(self, message: str) -> None:
        """Log an info message."""
        self.logger.info(message)

    def warning(self, message: str) -> None:
        """Log a warning message."""
        self.logger.warning(message)

    def error(self, message: str) -> None:
        """Log an error message."""
        self.logger.error(message)

    def debug(self, message: str) -> None:
        """Log a debug message."""
        self.logger.debug(message)


# Global logger instance
logger = StructuredLogger()


def audit_event(event_type: str, identifiers: Dict[str, Any], payload: Dict[str, Any] = None, sensitive_fields: List[str] = None):
    """Audit log line for a claim or event change.

    Free text from claim owners and reviewers is replaced by its length, so the
    log shows that a comment or proof was given without repeating it.
    """
    if sensitive_fields is None:
        sensitive_fields = DEFAULT_SENSITIVE_FIELDS

    log_details = {k: v for k, v in (identifiers or {}).items() if v is not None}

    if payload:
        redacted = {}
        for k, v in payload.items():
            if k not in sensitive_fields or v is None:
                redacted[k] = v.isoformat() if isinstance(v, datetime) else v
            elif isinstance(v, str):
                redacted[k] = f"[REDACTED {len(v)} chars]"
            else:
                redacted[k] = "[REDACTED]"
        log_details["payload"] = redacted

    # claim_audit.claim_approved -> claim_approved
    operation = event_type.split(".", 1)[-1]
    logger.log_operation(operation, "audit", log_details)
