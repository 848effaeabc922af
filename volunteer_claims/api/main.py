"""
HTTP surface for the claim lifecycle engine.
The caller identifies itself with the X-Actor-Id header; the engine does the rest.
"""

from typing import Optional

from fastapi import Depends, FastAPI, Header, HTTPException, Query, Response
from fastapi.responses import JSONResponse

from .schemas import (
    ClaimCreateRequest,
    ClaimListResponse,
    ClaimResponse,
    ClaimSummaryResponse,
    ClaimUpdateRequest,
    DelegationResponse,
    EventListResponse,
    ErrorResponse,
    EventCreateRequest,
    EventResponse,
    EventUpdateRequest,
    HealthResponse,
    ProofResponse,
    RegistrationResponse,
    ReviewRequest,
)
from ..core.collaborators import InMemoryActorDirectory
from ..core.config import DEFAULT_PAGE_SIZE, MAX_PAGE_SIZE, VERSION, debug_enabled
from ..core.db import health_check
from ..core.engine import ClaimLifecycleEngine, build_engine
from ..core.errors import (
    ClaimsError,
    ClaimValidationError,
    ConsentRequired,
    EventFull,
    Forbidden,
    InvalidTransition,
    MissingComment,
    NotFound,
)
from ..core.schema import Actor, ClaimChanges, ClaimDraft, ClaimFilters, ClaimKind, ClaimState, Event
from ..util.logging import logger

app = FastAPI(
    title="Volunteer Claims API",
    version=VERSION,
    description="Claim lifecycle and role-scoped review for volunteer hours",
    docs_url="/docs" if debug_enabled() else None,
    redoc_url="/redoc" if debug_enabled() else None
)

_STATUS_CODES = {
    Forbidden: 403,
    ConsentRequired: 403,
    NotFound: 404,
    InvalidTransition: 409,
    EventFull: 409,
    MissingComment: 422,
    ClaimValidationError: 422,
}

_engine: Optional[ClaimLifecycleEngine] = None


def configure_engine(engine: ClaimLifecycleEngine) -> None:
    """Install the engine (and with it the actor directory) the routes use."""
    global _engine
    _engine = engine


def get_engine() -> ClaimLifecycleEngine:
    global _engine
    if _engine is None:
        logger.warning("No engine configured, using an empty in-memory actor directory")
        _engine = build_engine(InMemoryActorDirectory())
    return _engine


def get_actor(x_actor_id: str = Header(...), engine: ClaimLifecycleEngine = Depends(get_engine)) -> Actor:
    try:
        return engine.directory.get_actor(x_actor_id)
    except NotFound:
        raise HTTPException(status_code=401, detail="Unknown actor")


@app.exception_handler(ClaimsError)
def claims_error_handler(request, exc: ClaimsError):
    status_code = 400
    for error_class, code in _STATUS_CODES.items():
        if isinstance(exc, error_class):
            status_code = code
            break
    body = ErrorResponse(error_type=exc.error_type, message=exc.message, details=exc.details or None)
    return JSONResponse(status_code=status_code, content=body.model_dump(mode="json"))


def _event_response(engine: ClaimLifecycleEngine, event: Event) -> EventResponse:
    return EventResponse(
        id=event.id,
        coordinator_id=event.coordinator_id,
        organization_id=event.organization_id,
        title=event.title,
        scheduled_at=event.scheduled_at,
        capacity=event.capacity,
        duration=event.duration,
        location=event.location,
        delegate_ids=sorted(engine.registry.list_delegates_for(event.id)),
        registered_count=engine.registry.registration_count(event.id),
    )


@app.get("/health", response_model=HealthResponse)
def health_check_endpoint(engine: ClaimLifecycleEngine = Depends(get_engine)):
    """Check system health."""
    db_health = health_check(engine.store.db_path)
    return HealthResponse(
        status="healthy" if db_health else "unhealthy",
        version=VERSION,
        db_health=db_health,
        claim_count=engine.store.count_claims() if db_health else 0
    )


@app.post("/claims", response_model=ClaimResponse, status_code=201)
def submit_claim(req: ClaimCreateRequest, actor: Actor = Depends(get_actor),
                 engine: ClaimLifecycleEngine = Depends(get_engine)):
    claim = engine.submit(actor, ClaimDraft(
        kind=req.kind,
        description=req.description,
        event_id=req.event_id,
        hours=req.hours,
        proof_reference=req.proof_reference,
        service_date=req.service_date,
        donation_items=req.donation_items,
    ))
    return ClaimResponse.model_validate(claim)


# Define fixed paths BEFORE /claims/{claim_id} to avoid path parameter conflict
@app.get("/claims", response_model=ClaimListResponse)
def list_claims(state: Optional[ClaimState] = None,
                organization_id: Optional[str] = None,
                kind: Optional[ClaimKind] = None,
                event_id: Optional[str] = None,
                search: Optional[str] = None,
                page: int = Query(1, ge=1),
                limit: int = Query(DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE),
                actor: Actor = Depends(get_actor),
                engine: ClaimLifecycleEngine = Depends(get_engine)):
    filters = ClaimFilters(state=state, organization_id=organization_id, kind=kind,
                           event_id=event_id, search=search, page=page, limit=limit)
    listing = engine.list(actor, filters)
    return ClaimListResponse(
        claims=[ClaimResponse.model_validate(c) for c in listing],
        page=page,
        limit=limit,
        total=listing.count(),
    )


@app.get("/claims/review-queue", response_model=ClaimListResponse)
def review_queue(state: str = Query(ClaimState.PENDING.value, description="pending, approved, rejected or all"),
                 actor: Actor = Depends(get_actor),
                 engine: ClaimLifecycleEngine = Depends(get_engine)):
    if state == "all":
        wanted = None
    else:
        try:
            wanted = ClaimState(state)
        except ValueError:
            raise HTTPException(status_code=422, detail=f"Unknown state filter: {state}")
    claims = engine.review_queue(actor, wanted)
    return ClaimListResponse(
        claims=[ClaimResponse.model_validate(c) for c in claims],
        page=1,
        limit=max(len(claims), 1),
        total=len(claims),
    )


@app.get("/claims/summary", response_model=ClaimSummaryResponse)
def claim_summary(organization_id: Optional[str] = None,
                  actor: Actor = Depends(get_actor),
                  engine: ClaimLifecycleEngine = Depends(get_engine)):
    summary = engine.summary(actor, ClaimFilters(organization_id=organization_id))
    return ClaimSummaryResponse(
        pending=summary.pending,
        approved=summary.approved,
        rejected=summary.rejected,
        total=summary.total,
        approved_hours=summary.approved_hours,
        by_kind=summary.by_kind,
    )


@app.get("/claims/{claim_id}", response_model=ClaimResponse)
def get_claim(claim_id: str, actor: Actor = Depends(get_actor),
              engine: ClaimLifecycleEngine = Depends(get_engine)):
    return ClaimResponse.model_validate(engine.get(actor, claim_id))


@app.patch("/claims/{claim_id}", response_model=ClaimResponse)
def update_claim(claim_id: str, req: ClaimUpdateRequest, actor: Actor = Depends(get_actor),
                 engine: ClaimLifecycleEngine = Depends(get_engine)):
    changes = ClaimChanges(
        hours=req.hours,
        description=req.description,
        service_date=req.service_date,
        proof_reference=req.proof_reference,
    )
    return ClaimResponse.model_validate(engine.update(actor, claim_id, changes))


@app.delete("/claims/{claim_id}", status_code=204)
def withdraw_claim(claim_id: str, actor: Actor = Depends(get_actor),
                   engine: ClaimLifecycleEngine = Depends(get_engine)):
    engine.withdraw(actor, claim_id)
    return Response(status_code=204)


@app.post("/claims/{claim_id}/review", response_model=ClaimResponse)
def review_claim(claim_id: str, req: ReviewRequest, actor: Actor = Depends(get_actor),
                 engine: ClaimLifecycleEngine = Depends(get_engine)):
    claim = engine.review(actor, claim_id, req.decision, comment=req.comment, hours=req.hours)
    return ClaimResponse.model_validate(claim)


@app.get("/claims/{claim_id}/proof", response_model=ProofResponse)
def claim_proof(claim_id: str, actor: Actor = Depends(get_actor),
                engine: ClaimLifecycleEngine = Depends(get_engine)):
    return ProofResponse(claim_id=claim_id, proof_reference=engine.proof_reference(actor, claim_id))


# Fixed event paths before /events/{event_id}
@app.get("/events", response_model=EventListResponse)
def list_events(upcoming: bool = False, actor: Actor = Depends(get_actor),
                engine: ClaimLifecycleEngine = Depends(get_engine)):
    events = engine.list_events(actor, upcoming=upcoming)
    return EventListResponse(events=[_event_response(engine, e) for e in events], total=len(events))


@app.get("/events/registered", response_model=EventListResponse)
def registered_events(actor: Actor = Depends(get_actor),
                      engine: ClaimLifecycleEngine = Depends(get_engine)):
    events = engine.registered_events(actor)
    return EventListResponse(events=[_event_response(engine, e) for e in events], total=len(events))


@app.get("/events/{event_id}", response_model=EventResponse)
def get_event(event_id: str, actor: Actor = Depends(get_actor),
              engine: ClaimLifecycleEngine = Depends(get_engine)):
    return _event_response(engine, engine.get_event(actor, event_id))


@app.post("/events", response_model=EventResponse, status_code=201)
def create_event(req: EventCreateRequest, actor: Actor = Depends(get_actor),
                 engine: ClaimLifecycleEngine = Depends(get_engine)):
    event = engine.create_event(
        actor,
        title=req.title,
        scheduled_at=req.scheduled_at,
        capacity=req.capacity,
        duration=req.duration,
        location=req.location,
        delegate_ids=req.delegate_ids,
    )
    return _event_response(engine, event)


@app.patch("/events/{event_id}", response_model=EventResponse)
def update_event(event_id: str, req: EventUpdateRequest, actor: Actor = Depends(get_actor),
                 engine: ClaimLifecycleEngine = Depends(get_engine)):
    event = engine.update_event(actor, event_id, **req.model_dump(exclude_none=True))
    return _event_response(engine, event)


@app.delete("/events/{event_id}", status_code=204)
def delete_event(event_id: str, actor: Actor = Depends(get_actor),
                 engine: ClaimLifecycleEngine = Depends(get_engine)):
    engine.delete_event(actor, event_id)
    return Response(status_code=204)


@app.put("/events/{event_id}/registration", response_model=RegistrationResponse)
def register_for_event(event_id: str, actor: Actor = Depends(get_actor),
                       engine: ClaimLifecycleEngine = Depends(get_engine)):
    created = engine.register(actor, event_id)
    return RegistrationResponse(
        event_id=event_id,
        actor_id=actor.id,
        created=created,
        registered_count=engine.registry.registration_count(event_id),
    )


@app.delete("/events/{event_id}/registration", status_code=204)
def unregister_from_event(event_id: str, actor: Actor = Depends(get_actor),
                          engine: ClaimLifecycleEngine = Depends(get_engine)):
    engine.unregister(actor, event_id)
    return Response(status_code=204)


@app.put("/events/{event_id}/delegates/{delegate_id}", response_model=DelegationResponse)
def assign_delegate(event_id: str, delegate_id: str, actor: Actor = Depends(get_actor),
                    engine: ClaimLifecycleEngine = Depends(get_engine)):
    created = engine.assign_delegate(actor, event_id, delegate_id)
    return DelegationResponse(event_id=event_id, actor_id=delegate_id, created=created)


@app.delete("/events/{event_id}/delegates/{delegate_id}", status_code=204)
def remove_delegate(event_id: str, delegate_id: str, actor: Actor = Depends(get_actor),
                    engine: ClaimLifecycleEngine = Depends(get_engine)):
    engine.remove_delegate(actor, event_id, delegate_id)
    return Response(status_code=204)
