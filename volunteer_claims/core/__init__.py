"""
Claim lifecycle core - storage, delegation registry, visibility and review authority.
"""

# Package initialization for core module
from .schema import (
    Actor,
    Claim,
    ClaimChanges,
    ClaimDraft,
    ClaimFilters,
    ClaimKind,
    ClaimState,
    ClaimSummary,
    Delegation,
    Event,
    Role,
)
from .errors import (
    ClaimsError,
    ClaimValidationError,
    ConsentRequired,
    EventFull,
    Forbidden,
    InvalidTransition,
    MissingComment,
    NotAuthorized,
    NotFound,
)
from .claim_store import ClaimStore
from .registry import EventRegistry
from .visibility import VisibilityResolver
from .authorizer import TransitionAuthorizer
from .engine import ClaimLifecycleEngine, build_engine

__all__ = [
    'Actor',
    'Claim',
    'ClaimChanges',
    'ClaimDraft',
    'ClaimFilters',
    'ClaimKind',
    'ClaimState',
    'ClaimSummary',
    'Delegation',
    'Event',
    'Role',
    'ClaimsError',
    'ClaimValidationError',
    'ConsentRequired',
    'EventFull',
    'Forbidden',
    'InvalidTransition',
    'MissingComment',
    'NotAuthorized',
    'NotFound',
    'ClaimStore',
    'EventRegistry',
    'VisibilityResolver',
    'TransitionAuthorizer',
    'ClaimLifecycleEngine',
    'build_engine',
]
