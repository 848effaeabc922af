"""
Request/response models for the claims HTTP surface.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from ..core.config import REVIEW_COMMENT_MAX_LENGTH
from ..core.schema import ClaimKind, ClaimState


class ClaimCreateRequest(BaseModel):
    kind: ClaimKind
    description: str = ""
    event_id: Optional[str] = None
    hours: Optional[float] = Field(default=None, ge=0)
    proof_reference: Optional[str] = None
    service_date: Optional[datetime] = None
    donation_items: Optional[float] = Field(default=None, ge=0)


class ClaimUpdateRequest(BaseModel):
    hours: Optional[float] = Field(default=None, ge=0)
    description: Optional[str] = None
    service_date: Optional[datetime] = None
    proof_reference: Optional[str] = None


class ReviewRequest(BaseModel):
    decision: ClaimState
    comment: Optional[str] = None
    hours: Optional[float] = Field(default=None, ge=0)

    @field_validator('decision')
    @classmethod
    def decision_must_be_final(cls, v):
        if v == ClaimState.PENDING:
            raise ValueError('decision must be approved or rejected')
        return v

    @field_validator('comment')
    @classmethod
    def comment_length(cls, v):
        if v is not None and len(v.strip()) > REVIEW_COMMENT_MAX_LENGTH:
            raise ValueError(f'comment cannot exceed {REVIEW_COMMENT_MAX_LENGTH} characters')
        return v


class ClaimResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    owner_id: str
    organization_id: str
    kind: ClaimKind
    event_id: Optional[str] = None
    hours: float
    description: str
    state: ClaimState
    proof_reference: Optional[str] = None
    service_date: Optional[datetime] = None
    donation_items: Optional[float] = None
    reviewer_id: Optional[str] = None
    review_comment: Optional[str] = None
    created_at: datetime
    reviewed_at: Optional[datetime] = None


class ClaimListResponse(BaseModel):
    claims: List[ClaimResponse]
    page: int
    limit: int
    total: int


class ClaimSummaryResponse(BaseModel):
    pending: int
    approved: int
    rejected: int
    total: int
    approved_hours: float
    by_kind: Dict[str, int]


class ProofResponse(BaseModel):
    claim_id: str
    proof_reference: str


class EventCreateRequest(BaseModel):
    title: str
    scheduled_at: datetime
    capacity: int = Field(ge=0)
    duration: Optional[float] = Field(default=None, ge=0)
    location: Optional[str] = None
    delegate_ids: List[str] = []

    @field_validator('title')
    @classmethod
    def title_must_not_be_empty(cls, v):
        if not v.strip():
            raise ValueError('title cannot be empty')
        return v


class EventUpdateRequest(BaseModel):
    title: Optional[str] = None
    scheduled_at: Optional[datetime] = None
    capacity: Optional[int] = Field(default=None, ge=0)
    duration: Optional[float] = Field(default=None, ge=0)
    location: Optional[str] = None


class EventResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    coordinator_id: str
    organization_id: str
    title: str
    scheduled_at: datetime
    capacity: int
    duration: Optional[float] = None
    location: Optional[str] = None
    delegate_ids: List[str] = []
    registered_count: int = 0


class EventListResponse(BaseModel):
    events: List[EventResponse]
    total: int


class DelegationResponse(BaseModel):
    event_id: str
    actor_id: str
    created: bool


class RegistrationResponse(BaseModel):
    event_id: str
    actor_id: str
    created: bool
    registered_count: int


class HealthResponse(BaseModel):
    status: str
    version: str
    db_health: bool
    claim_count: int


class ErrorResponse(BaseModel):
    error_type: str
    message: str
    timestamp: Optional[datetime] = None
    details: Optional[Dict[str, Any]] = None

    def __init__(self, **data):
        super().__init__(timestamp=datetime.now(), **data)
