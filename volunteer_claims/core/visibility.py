"""
Visibility resolver - decides which claims an actor may see.

Rules are one branch per role, evaluated against a delegation snapshot so a
predicate is pure and deterministic for the lifetime of one listing pass:

- Student / StudentCoordinator: only their own claims.
- Coordinator: claims of their organization, except scheduled-event claims
  on events that have delegates, unless the claim owner is one of those
  delegates (delegate self-submissions stay under coordinator oversight).
- Admin: only decided claims (approved or rejected), never pending ones.
"""

from dataclasses import dataclass, field, replace
from typing import Callable, Dict, FrozenSet, Mapping, Optional

from .claim_store import SqlPrefilter
from .registry import EventRegistry
from .schema import Actor, Claim, ClaimFilters, ClaimKind, DECIDED_STATES, Role


@dataclass(frozen=True)
class DelegationSnapshot:
    """Immutable copy of the delegation relation."""
    delegates: Mapping[str, FrozenSet[str]] = field(default_factory=dict)

    def delegates_for(self, event_id: Optional[str]) -> FrozenSet[str]:
        if not event_id:
            return frozenset()
        return self.delegates.get(event_id, frozenset())

    def has_delegates(self, event_id: Optional[str]) -> bool:
        return bool(self.delegates_for(event_id))

    def is_delegate(self, event_id: Optional[str], actor_id: str) -> bool:
        return actor_id in self.delegates_for(event_id)

    def events_for(self, actor_id: str) -> FrozenSet[str]:
        return frozenset(event_id for event_id, actors in self.delegates.items() if actor_id in actors)


def is_delegation_shadowed(claim: Claim, snapshot: DelegationSnapshot) -> bool:
    """True when day-to-day review of this claim belongs to the event's delegates."""
    if claim.kind != ClaimKind.SCHEDULED_EVENT:
        return False
    if not claim.event_id:
        return False
    delegates = snapshot.delegates_for(claim.event_id)
    if not delegates:
        return False
    return claim.owner_id not in delegates


def _own_claims(claim: Claim, actor: Actor, snapshot: DelegationSnapshot) -> bool:
    return claim.owner_id == actor.id


def coordinator_sees(claim: Claim, actor: Actor, snapshot: DelegationSnapshot) -> bool:
    if not actor.organization_id:
        return False
    if claim.organization_id != actor.organization_id:
        return False
    return not is_delegation_shadowed(claim, snapshot)


def _decided_only(claim: Claim, actor: Actor, snapshot: DelegationSnapshot) -> bool:
    return claim.state in DECIDED_STATES


VisibilityRule = Callable[[Claim, Actor, DelegationSnapshot], bool]

_RULES: Dict[Role, VisibilityRule] = {
    Role.STUDENT: _own_claims,
    Role.STUDENT_COORDINATOR: _own_claims,
    Role.COORDINATOR: coordinator_sees,
    Role.ADMIN: _decided_only,
}

_PREFILTERS: Dict[Role, Callable[[Actor], SqlPrefilter]] = {
    Role.STUDENT: lambda actor: SqlPrefilter(owner_id=actor.id),
    Role.STUDENT_COORDINATOR: lambda actor: SqlPrefilter(owner_id=actor.id),
    Role.COORDINATOR: lambda actor: SqlPrefilter(organization_id=actor.organization_id or ""),
    Role.ADMIN: lambda actor: SqlPrefilter(states=sorted(DECIDED_STATES, key=lambda s: s.value)),
}

for _table in (_RULES, _PREFILTERS):
    _missing = set(Role) - set(_table)
    if _missing:
        raise RuntimeError(f"Visibility rules missing for roles: {sorted(r.value for r in _missing)}")


class VisibilityPredicate:
    """Callable claim filter bound to one actor, one snapshot and optional caller filters.

    Caller filters are intersected with the visibility rule, never used in place of it.
    """

    def __init__(self, actor: Actor, snapshot: DelegationSnapshot,
                 filters: Optional[ClaimFilters] = None):
        self.actor = actor
        self.snapshot = snapshot
        self.filters = filters
        self._rule = _RULES[Role(actor.role)]
        base = _PREFILTERS[Role(actor.role)](actor)
        if filters is not None and filters.kind is not None:
            base = replace(base, kind=filters.kind)
        self.prefilter = base

    def __call__(self, claim: Claim) -> bool:
        if not self._rule(claim, self.actor, self.snapshot):
            return False
        if self.filters is not None and not self.filters.matches(claim):
            return False
        return True


class VisibilityResolver:
    """Builds visibility predicates from the current delegation registry."""

    def __init__(self, registry: EventRegistry):
        self.registry = registry

    def snapshot(self) -> DelegationSnapshot:
        return DelegationSnapshot(self.registry.delegation_map())

    def predicate_for(self, actor: Actor, filters: Optional[ClaimFilters] = None,
                      snapshot: Optional[DelegationSnapshot] = None) -> VisibilityPredicate:
        if snapshot is None:
            snapshot = self.snapshot()
        return VisibilityPredicate(actor, snapshot, filters)

    def is_visible(self, claim: Claim, actor: Actor,
                   snapshot: Optional[DelegationSnapshot] = None) -> bool:
        rule = _RULES[Role(actor.role)]
        if snapshot is None:
            snapshot = self.snapshot()
        return rule(claim, actor, snapshot)
