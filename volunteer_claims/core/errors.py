"""Error taxonomy for the claim lifecycle engine.

Every failure here is a business-rule violation, never a transient fault,
so nothing in this package retries.
"""

from typing import Any, Dict, Optional


class ClaimsError(Exception):
    """Base class for claim engine errors."""

    error_type = "CLAIMS_ERROR"

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for responses and logging."""
        return {
            "error_type": self.error_type,
            "message": self.message,
            "details": self.details,
        }


class NotFound(ClaimsError):
    """Unknown claim or event id."""

    error_type = "NOT_FOUND"


class InvalidTransition(ClaimsError):
    """Claim is not pending, or the requested target state is not a decision."""

    error_type = "INVALID_TRANSITION"


class MissingComment(ClaimsError):
    """Rejection attempted without a reason."""

    error_type = "MISSING_COMMENT"


class ClaimValidationError(ClaimsError):
    """Draft or review input that breaks a kind-specific field rule."""

    error_type = "VALIDATION_ERROR"


class EventFull(ClaimsError):
    """Registration refused because the event is at capacity."""

    error_type = "EVENT_FULL"


class ConsentRequired(ClaimsError):
    """A minor without approved guardian consent tried to submit."""

    error_type = "CONSENT_REQUIRED"

    def __init__(self, actor_id: str):
        super().__init__(
            "Guardian consent must be approved before claims can be submitted",
            {"actor_id": actor_id, "guidance": "Upload a signed consent form and wait for approval"},
        )


class NotAuthorized(ClaimsError):
    """A visibility or transition rule failed. Internal only."""

    error_type = "NOT_AUTHORIZED"


class Forbidden(ClaimsError):
    """The single outcome callers see for any authorization failure."""

    error_type = "FORBIDDEN"

    def __init__(self, message: str = "Forbidden"):
        super().__init__(message)
