"""
Claim lifecycle engine - submit, list and review claims on behalf of an explicit actor.

The resolved Actor is passed into every call; nothing here reads ambient identity.
Every authorization failure on a claim, including an unknown claim id, leaves
this module as the same Forbidden so callers cannot discover which claims exist.
"""

from dataclasses import replace
from datetime import datetime
from itertools import islice
from typing import Iterable, Iterator, List, Optional

from .audit import add_audit_event
from .authorizer import TransitionAuthorizer
from .claim_store import ClaimQuery, ClaimStore, SqlPrefilter
from .collaborators import AllowAllConsentGate, IActorDirectory, IConsentGate, IOutcomeSink, NullOutcomeSink
from .config import DEFAULT_PAGE_SIZE, MAX_PAGE_SIZE
from .errors import ClaimValidationError, ConsentRequired, Forbidden, NotAuthorized, NotFound
from .registry import EventRegistry
from .schema import (
    Actor, Claim, ClaimChanges, ClaimDraft, ClaimFilters, ClaimKind, ClaimState, ClaimSummary, Event, Role
)
from .visibility import VisibilityResolver
from ..util.logging import logger

_SUBMITTING_ROLES = {Role.STUDENT, Role.STUDENT_COORDINATOR, Role.COORDINATOR}
_CONSENT_CHECKED_ROLES = {Role.STUDENT, Role.STUDENT_COORDINATOR}
_DELEGATE_ROLES = {Role.STUDENT, Role.STUDENT_COORDINATOR}
_VOLUNTEER_ROLES = {Role.STUDENT, Role.STUDENT_COORDINATOR}


def _page_bounds(filters: Optional[ClaimFilters]):
    """(offset, limit) for a listing, or (0, None) when unpaginated."""
    if filters is None or (filters.page is None and filters.limit is None):
        return 0, None
    limit = filters.limit if filters.limit is not None else DEFAULT_PAGE_SIZE
    limit = max(1, min(limit, MAX_PAGE_SIZE))
    page = max(1, filters.page or 1)
    return (page - 1) * limit, limit


class ClaimListing:
    """Lazy, restartable result of ClaimLifecycleEngine.list.

    Each iteration takes a fresh delegation snapshot and re-reads the store,
    so delegation changes made between iterations are observed.
    """

    def __init__(self, engine: "ClaimLifecycleEngine", actor: Actor, filters: Optional[ClaimFilters]):
        self._engine = engine
        self._actor = actor
        self._filters = filters

    def _query(self) -> ClaimQuery:
        predicate = self._engine.resolver.predicate_for(self._actor, self._filters)
        return self._engine.store.list_claims(predicate, predicate.prefilter)

    def __iter__(self) -> Iterator[Claim]:
        offset, limit = _page_bounds(self._filters)
        claims = iter(self._query())
        if limit is None:
            return islice(claims, offset, None)
        return islice(claims, offset, offset + limit)

    def all(self) -> Iterable[Claim]:
        """Every visible claim, ignoring pagination."""
        return self._query()

    def count(self) -> int:
        return self._query().count()


class ClaimLifecycleEngine:
    """Orchestrates the claim store, registry, visibility resolver and authorizer."""

    def __init__(self, store: ClaimStore, registry: EventRegistry, directory: IActorDirectory,
                 consent_gate: Optional[IConsentGate] = None,
                 outcome_sink: Optional[IOutcomeSink] = None):
        self.store = store
        self.registry = registry
        self.directory = directory
        self.consent_gate = consent_gate or AllowAllConsentGate()
        self.outcome_sink = outcome_sink or NullOutcomeSink()
        self.resolver = VisibilityResolver(registry)
        self.authorizer = TransitionAuthorizer(store, registry, self.resolver)

    # Claims

    def submit(self, actor: Actor, draft: ClaimDraft) -> Claim:
        """Create a pending claim owned by actor in actor's organization."""
        role = Role(actor.role)
        if role not in _SUBMITTING_ROLES or not actor.organization_id:
            self._deny("submit", actor, "-", "actor cannot own claims")

        if role in _CONSENT_CHECKED_ROLES and not self.consent_gate.can_submit(actor.id):
            logger.log_consent_block(actor.id)
            raise ConsentRequired(actor.id)

        draft = replace(draft, owner_id=actor.id, organization_id=actor.organization_id)
        claim = self.store.create_claim(draft)

        logger.log_claim_submitted(claim.id, actor.id, claim.kind.value, claim.hours)
        add_audit_event(actor.id, "claim_submitted", claim_id=claim.id, event_id=claim.event_id,
                        payload={"kind": claim.kind.value, "hours": claim.hours,
                                 "description": claim.description},
                        db_path=self.store.db_path)
        self._publish("claim_submitted", claim)
        return claim

    def list(self, actor: Actor, filters: Optional[ClaimFilters] = None) -> ClaimListing:
        """Claims visible to actor, narrowed (never widened) by filters, newest first."""
        return ClaimListing(self, actor, filters)

    def get(self, actor: Actor, claim_id: str) -> Claim:
        """A single claim the actor may see or review."""
        claim = self._load(actor, claim_id, "get")
        snapshot = self.resolver.snapshot()
        if self.resolver.is_visible(claim, actor, snapshot):
            return claim
        if self.authorizer.has_authority(actor, claim, snapshot):
            return claim
        self._deny("get", actor, claim_id, "claim not visible to actor")

    def review(self, actor: Actor, claim_id: str, decision: ClaimState,
               comment: Optional[str] = None, hours: Optional[float] = None) -> Claim:
        """Approve or reject a pending claim."""
        claim = self._load(actor, claim_id, "review")
        try:
            reviewed = self.authorizer.authorize(actor, claim, decision, comment=comment, hours=hours,
                                                 timestamp=datetime.now())
        except NotAuthorized:
            raise Forbidden()
        except NotFound:
            # Withdrawn between load and write
            raise Forbidden()

        logger.log_claim_review(reviewed.id, reviewed.state.value, actor.id)
        add_audit_event(actor.id, f"claim_{reviewed.state.value}", claim_id=reviewed.id,
                        event_id=reviewed.event_id,
                        payload={"hours": reviewed.hours, "comment": reviewed.review_comment},
                        db_path=self.store.db_path)
        self._publish("claim_reviewed", reviewed)
        return reviewed

    def update(self, actor: Actor, claim_id: str, changes: ClaimChanges) -> Claim:
        """Owner edits a claim that is still pending."""
        claim = self._load(actor, claim_id, "update")
        if claim.owner_id != actor.id:
            self._deny("update", actor, claim_id, "only the owner may edit a claim")
        try:
            updated = self.store.update_pending_claim(claim_id, actor.id, changes)
        except (NotAuthorized, NotFound):
            raise Forbidden()

        add_audit_event(actor.id, "claim_updated", claim_id=claim_id,
                        payload=changes.as_columns(), db_path=self.store.db_path)
        return updated

    def withdraw(self, actor: Actor, claim_id: str) -> None:
        """Owner deletes a claim that is still pending."""
        claim = self._load(actor, claim_id, "withdraw")
        if claim.owner_id != actor.id:
            self._deny("withdraw", actor, claim_id, "only the owner may withdraw a claim")
        try:
            self.store.delete_pending_claim(claim_id, actor.id)
        except (NotAuthorized, NotFound):
            raise Forbidden()

        add_audit_event(actor.id, "claim_withdrawn", claim_id=claim_id, event_id=claim.event_id,
                        db_path=self.store.db_path)

    def review_queue(self, actor: Actor, state: Optional[ClaimState] = ClaimState.PENDING) -> List[Claim]:
        """Claims the actor holds review authority over, excluding their own, newest first.

        state=None returns decided claims too.
        """
        role = Role(actor.role)
        snapshot = self.resolver.snapshot()
        states = [ClaimState(state)] if state is not None else None

        if role == Role.ADMIN:
            return []
        if role == Role.COORDINATOR:
            prefilter = SqlPrefilter(organization_id=actor.organization_id or "", states=states)
        else:
            prefilter = SqlPrefilter(event_ids=sorted(snapshot.events_for(actor.id)), states=states,
                                     kind=ClaimKind.SCHEDULED_EVENT)

        query = self.store.list_claims(
            lambda claim: self.authorizer.has_authority(actor, claim, snapshot), prefilter
        )
        return list(query)

    def proof_reference(self, actor: Actor, claim_id: str) -> str:
        """The recorded proof reference, for actors allowed to read the claim."""
        claim = self.get(actor, claim_id)
        if not claim.has_proof:
            raise NotFound(f"Claim {claim_id} has no proof", {"claim_id": claim_id})
        return claim.proof_reference

    def summary(self, actor: Actor, filters: Optional[ClaimFilters] = None) -> ClaimSummary:
        """Per-state counts and approved hours over what list() would return."""
        if filters is not None:
            filters = replace(filters, page=None, limit=None)
        result = ClaimSummary()
        for claim in self.list(actor, filters):
            if claim.state == ClaimState.PENDING:
                result.pending += 1
            elif claim.state == ClaimState.APPROVED:
                result.approved += 1
                result.approved_hours += claim.hours
            else:
                result.rejected += 1
            result.by_kind[claim.kind.value] = result.by_kind.get(claim.kind.value, 0) + 1
        return result

    # Events and delegation

    def create_event(self, actor: Actor, title: str, scheduled_at: datetime, capacity: int,
                     duration: Optional[float] = None, location: Optional[str] = None,
                     delegate_ids: Iterable[str] = ()) -> Event:
        """Coordinator creates an event in their organization, optionally with delegates.

        Every initial delegate is checked before the event is written.
        """
        if Role(actor.role) != Role.COORDINATOR or not actor.organization_id:
            self._deny("create_event", actor, "-", "only coordinators create events")

        delegate_ids = sorted(set(delegate_ids))
        for delegate_id in delegate_ids:
            self._check_delegate(actor.organization_id, delegate_id)

        event = self.registry.create_event(
            coordinator_id=actor.id,
            organization_id=actor.organization_id,
            title=title,
            scheduled_at=scheduled_at,
            capacity=capacity,
            duration=duration,
            location=location,
        )
        add_audit_event(actor.id, "event_created", event_id=event.id,
                        payload={"title": event.title, "duration": event.duration},
                        db_path=self.store.db_path)

        if delegate_ids:
            self.registry.set_delegates(event.id, delegate_ids)
            for delegate_id in delegate_ids:
                add_audit_event(actor.id, "delegate_assigned", event_id=event.id,
                                payload={"delegate_id": delegate_id}, db_path=self.store.db_path)
        return event

    def list_events(self, actor: Actor, upcoming: bool = False) -> List[Event]:
        """Events the actor can browse, soonest first.

        Coordinators list the events they created, students their organization's
        events and Admin every event.
        """
        role = Role(actor.role)
        upcoming_after = datetime.now() if upcoming else None
        if role == Role.ADMIN:
            return self.registry.list_events(upcoming_after=upcoming_after)
        if not actor.organization_id:
            return []
        if role == Role.COORDINATOR:
            return self.registry.list_events(coordinator_id=actor.id, upcoming_after=upcoming_after)
        return self.registry.list_events(organization_id=actor.organization_id, upcoming_after=upcoming_after)

    def get_event(self, actor: Actor, event_id: str) -> Event:
        event = self.registry.get_event(event_id)
        if Role(actor.role) != Role.ADMIN and event.organization_id != actor.organization_id:
            self._deny("get_event", actor, event_id, "event belongs to another organization")
        return event

    def delete_event(self, actor: Actor, event_id: str) -> None:
        """Owner deletes an event. Claims that referenced it keep the dangling id."""
        event = self._owned_event(actor, event_id, "delete_event")
        self.registry.delete_event(event_id)
        add_audit_event(actor.id, "event_deleted", event_id=event_id,
                        payload={"title": event.title}, db_path=self.store.db_path)

    def register(self, actor: Actor, event_id: str) -> bool:
        """Student signs up for an event in their organization; capacity is enforced."""
        event = self.get_event(actor, event_id)
        if Role(actor.role) not in _VOLUNTEER_ROLES:
            self._deny("register", actor, event_id, "only students register for events")

        created = self.registry.register_volunteer(event.id, actor.id)
        if created:
            add_audit_event(actor.id, "event_registered", event_id=event.id, db_path=self.store.db_path)
        return created

    def unregister(self, actor: Actor, event_id: str) -> None:
        if not self.registry.unregister_volunteer(event_id, actor.id):
            raise NotFound(f"Not registered for event {event_id}", {"event_id": event_id})
        add_audit_event(actor.id, "event_unregistered", event_id=event_id, db_path=self.store.db_path)

    def registered_events(self, actor: Actor) -> List[Event]:
        """Events the actor is registered for, soonest first."""
        return self._events_by_id(self.registry.events_registered_by(actor.id))

    def update_event(self, actor: Actor, event_id: str, **fields) -> Event:
        self._owned_event(actor, event_id, "update_event")
        event = self.registry.update_event(event_id, **fields)
        add_audit_event(actor.id, "event_updated", event_id=event_id,
                        payload={k: v for k, v in fields.items() if v is not None},
                        db_path=self.store.db_path)
        return event

    def assign_delegate(self, actor: Actor, event_id: str, delegate_id: str) -> bool:
        """Owner gives a student review authority over one event's claims."""
        event = self._owned_event(actor, event_id, "assign_delegate")

        self._check_delegate(event.organization_id, delegate_id)

        created = self.registry.add_delegation(event_id, delegate_id)
        if created:
            add_audit_event(actor.id, "delegate_assigned", event_id=event_id,
                            payload={"delegate_id": delegate_id}, db_path=self.store.db_path)
        return created

    def remove_delegate(self, actor: Actor, event_id: str, delegate_id: str) -> bool:
        self._owned_event(actor, event_id, "remove_delegate")
        removed = self.registry.remove_delegation(event_id, delegate_id)
        if removed:
            add_audit_event(actor.id, "delegate_removed", event_id=event_id,
                            payload={"delegate_id": delegate_id}, db_path=self.store.db_path)
        return removed

    def delegated_events(self, actor: Actor) -> List[Event]:
        """Events the actor reviews as a delegate."""
        return self._events_by_id(self.registry.events_delegated_to(actor.id))

    # Internals

    def _load(self, actor: Actor, claim_id: str, operation: str) -> Claim:
        try:
            return self.store.get_claim(claim_id)
        except NotFound:
            self._deny(operation, actor, claim_id, "unknown claim id")

    def _events_by_id(self, event_ids: Iterable[str]) -> List[Event]:
        events = [self.registry.find_event(event_id) for event_id in event_ids]
        return sorted((e for e in events if e is not None), key=lambda e: e.scheduled_at)

    def _check_delegate(self, organization_id: str, delegate_id: str) -> None:
        delegate = self.directory.get_actor(delegate_id)
        if Role(delegate.role) not in _DELEGATE_ROLES:
            raise ClaimValidationError("Only students can be event delegates",
                                       {"actor_id": delegate_id, "role": Role(delegate.role).value})
        if delegate.organization_id != organization_id:
            raise ClaimValidationError("Delegate must belong to the event's organization",
                                       {"actor_id": delegate_id, "organization_id": organization_id})

    def _owned_event(self, actor: Actor, event_id: str, operation: str) -> Event:
        event = self.registry.get_event(event_id)
        if Role(actor.role) != Role.COORDINATOR or event.coordinator_id != actor.id:
            self._deny(operation, actor, event_id, "only the owning coordinator may change an event")
        return event

    def _deny(self, operation: str, actor: Actor, target_id: str, reason: str):
        logger.log_authorization_denied(operation, actor.id, Role(actor.role).value, target_id, reason)
        raise Forbidden()

    def _publish(self, hook: str, claim: Claim):
        try:
            getattr(self.outcome_sink, hook)(claim)
        except Exception as e:
            logger.error(f"Outcome sink {hook} failed for claim {claim.id}: {e}")


def build_engine(directory: IActorDirectory, db_path: Optional[str] = None,
                 consent_gate: Optional[IConsentGate] = None,
                 outcome_sink: Optional[IOutcomeSink] = None) -> ClaimLifecycleEngine:
    """Wire a store and registry sharing one database."""
    registry = EventRegistry(db_path, directory=directory)
    store = ClaimStore(db_path, registry=registry)
    return ClaimLifecycleEngine(store, registry, directory, consent_gate, outcome_sink)
