"""
Domain records for claims, events, delegations and actors.
Storage rows map onto these dataclasses; nothing here talks to the database.
"""

from dataclasses import dataclass, asdict, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, FrozenSet, Optional


class Role(str, Enum):
    STUDENT = "STUDENT"
    STUDENT_COORDINATOR = "STUDENT_COORDINATOR"
    COORDINATOR = "COORDINATOR"
    ADMIN = "ADMIN"


class ClaimKind(str, Enum):
    SCHEDULED_EVENT = "scheduled_event"
    DONATION = "donation"
    AD_HOC_SERVICE = "ad_hoc_service"
    OTHER = "other"


class ClaimState(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


DECIDED_STATES: FrozenSet[ClaimState] = frozenset({ClaimState.APPROVED, ClaimState.REJECTED})


@dataclass(frozen=True)
class Actor:
    id: str
    role: Role
    organization_id: Optional[str] = None  # None for Admin


@dataclass
class Claim:
    id: str
    owner_id: str
    organization_id: str
    kind: ClaimKind
    hours: float
    description: str
    state: ClaimState
    created_at: datetime
    event_id: Optional[str] = None
    proof_reference: Optional[str] = None
    service_date: Optional[datetime] = None
    donation_items: Optional[float] = None
    reviewer_id: Optional[str] = None
    review_comment: Optional[str] = None
    reviewed_at: Optional[datetime] = None

    @property
    def is_pending(self) -> bool:
        return self.state == ClaimState.PENDING

    @property
    def has_proof(self) -> bool:
        return bool(self.proof_reference and self.proof_reference.strip())

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for responses and audit payloads."""
        data = asdict(self)
        data['kind'] = self.kind.value
        data['state'] = self.state.value
        for key in ('created_at', 'reviewed_at', 'service_date'):
            if data[key] is not None:
                data[key] = data[key].isoformat()
        return data


@dataclass
class ClaimDraft:
    """What a submitter provides. Owner and organization are filled in by the engine."""
    kind: ClaimKind
    description: str = ""
    event_id: Optional[str] = None
    hours: Optional[float] = None
    proof_reference: Optional[str] = None
    service_date: Optional[datetime] = None
    donation_items: Optional[float] = None
    owner_id: Optional[str] = None
    organization_id: Optional[str] = None


@dataclass
class ClaimChanges:
    """Owner edits allowed while a claim is still pending."""
    hours: Optional[float] = None
    description: Optional[str] = None
    service_date: Optional[datetime] = None
    proof_reference: Optional[str] = None

    def as_columns(self) -> Dict[str, Any]:
        return {k: v for k, v in asdict(self).items() if v is not None}


@dataclass
class Event:
    id: str
    coordinator_id: str
    organization_id: str
    title: str
    scheduled_at: datetime
    capacity: int
    duration: Optional[float] = None
    location: Optional[str] = None
    created_at: Optional[datetime] = None


@dataclass(frozen=True)
class Delegation:
    event_id: str
    actor_id: str


@dataclass
class ClaimFilters:
    """Caller-supplied narrowing applied on top of visibility."""
    state: Optional[ClaimState] = None
    organization_id: Optional[str] = None
    kind: Optional[ClaimKind] = None
    event_id: Optional[str] = None
    search: Optional[str] = None
    page: Optional[int] = None
    limit: Optional[int] = None

    def matches(self, claim: Claim) -> bool:
        if self.state is not None and claim.state != self.state:
            return False
        if self.organization_id is not None and claim.organization_id != self.organization_id:
            return False
        if self.kind is not None and claim.kind != self.kind:
            return False
        if self.event_id is not None and claim.event_id != self.event_id:
            return False
        if self.search and self.search.strip().lower() not in (claim.description or "").lower():
            return False
        return True


@dataclass
class ClaimSummary:
    pending: int = 0
    approved: int = 0
    rejected: int = 0
    approved_hours: float = 0.0
    by_kind: Dict[str, int] = field(default_factory=dict)

    @property
    def total(self) -> int:
        return self.pending + self.approved + self.rejected
