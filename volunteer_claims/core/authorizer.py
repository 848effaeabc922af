"""
Transition authorizer - decides whether an actor may move a claim out of pending.

Self-review is refused before any role rule runs. The precondition checks here
repeat the ones the store enforces inside its conditional write; the store's
check is the one that wins a race.
"""

from datetime import datetime
from typing import Callable, Dict, Optional

from .claim_store import ClaimStore
from .errors import ClaimValidationError, InvalidTransition, MissingComment, NotAuthorized
from .registry import EventRegistry
from .schema import Actor, Claim, ClaimKind, ClaimState, DECIDED_STATES, Role
from .visibility import DelegationSnapshot, VisibilityResolver, coordinator_sees
from ..util.logging import logger

# Returns None when the actor holds review authority, else the denial reason
AuthorityRule = Callable[[Actor, Claim, DelegationSnapshot], Optional[str]]


def _delegate_authority(actor: Actor, claim: Claim, snapshot: DelegationSnapshot) -> Optional[str]:
    if claim.kind != ClaimKind.SCHEDULED_EVENT or not claim.event_id:
        return "delegates only review scheduled-event claims"
    if not snapshot.is_delegate(claim.event_id, actor.id):
        return "actor is not a delegate for this event"
    return None


def _coordinator_authority(actor: Actor, claim: Claim, snapshot: DelegationSnapshot) -> Optional[str]:
    if not coordinator_sees(claim, actor, snapshot):
        return "claim is outside the coordinator's review scope"
    return None


def _admin_authority(actor: Actor, claim: Claim, snapshot: DelegationSnapshot) -> Optional[str]:
    return "admins never transition claims"


# A Student can hold a delegation before the directory reflects the promotion
_AUTHORITY: Dict[Role, AuthorityRule] = {
    Role.STUDENT: _delegate_authority,
    Role.STUDENT_COORDINATOR: _delegate_authority,
    Role.COORDINATOR: _coordinator_authority,
    Role.ADMIN: _admin_authority,
}

_missing = set(Role) - set(_AUTHORITY)
if _missing:
    raise RuntimeError(f"Review authority missing for roles: {sorted(r.value for r in _missing)}")


class TransitionAuthorizer:
    """Role-scoped review authority over claims."""

    def __init__(self, store: ClaimStore, registry: EventRegistry,
                 resolver: Optional[VisibilityResolver] = None):
        self.store = store
        self.registry = registry
        self.resolver = resolver or VisibilityResolver(registry)

    def denial_reason(self, actor: Actor, claim: Claim,
                      snapshot: Optional[DelegationSnapshot] = None) -> Optional[str]:
        """Why actor lacks review authority over claim, ignoring claim state; None if they have it."""
        if claim.owner_id == actor.id:
            return "self-review is not allowed"
        if snapshot is None:
            snapshot = self.resolver.snapshot()
        return _AUTHORITY[Role(actor.role)](actor, claim, snapshot)

    def has_authority(self, actor: Actor, claim: Claim,
                      snapshot: Optional[DelegationSnapshot] = None) -> bool:
        return self.denial_reason(actor, claim, snapshot) is None

    def can_review(self, actor: Actor, claim: Claim) -> bool:
        """True if actor may decide this claim right now."""
        return claim.is_pending and self.has_authority(actor, claim)

    def authorize(self, actor: Actor, claim: Claim, new_state: ClaimState,
                  comment: Optional[str] = None, hours: Optional[float] = None,
                  timestamp: Optional[datetime] = None) -> Claim:
        """Check authority and preconditions, then hand the write to the store."""
        reason = self.denial_reason(actor, claim)
        if reason is not None:
            logger.log_authorization_denied("review", actor.id, Role(actor.role).value, claim.id, reason)
            raise NotAuthorized(reason, {"claim_id": claim.id})

        try:
            new_state = ClaimState(new_state)
        except ValueError:
            raise InvalidTransition(f"Unknown decision: {new_state}", {"claim_id": claim.id})
        if new_state not in DECIDED_STATES:
            raise InvalidTransition("A decision must be approved or rejected", {"claim_id": claim.id})

        if not claim.is_pending:
            raise InvalidTransition(f"Claim {claim.id} is already {claim.state.value}",
                                    {"claim_id": claim.id, "state": claim.state.value})

        if new_state == ClaimState.REJECTED and not (comment and comment.strip()):
            raise MissingComment("A rejection needs a comment", {"claim_id": claim.id})

        if hours is not None:
            if new_state != ClaimState.APPROVED or claim.kind != ClaimKind.OTHER:
                raise ClaimValidationError("Hours can only be assigned when approving an 'other' claim",
                                           {"claim_id": claim.id})

        return self.store.set_claim_state(
            claim.id, new_state, actor.id, comment=comment, timestamp=timestamp, hours=hours
        )
