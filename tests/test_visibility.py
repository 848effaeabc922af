"""
Visibility rule tests against synthetic claims and delegation snapshots.
"""

from datetime import datetime

import pytest

from volunteer_claims.core.schema import Actor, Claim, ClaimFilters, ClaimKind, ClaimState, Role
from volunteer_claims.core.visibility import (
    DelegationSnapshot,
    VisibilityPredicate,
    VisibilityResolver,
    is_delegation_shadowed,
)

STUDENT = Actor("x", Role.STUDENT, "school-s")
DELEGATE = Actor("y", Role.STUDENT_COORDINATOR, "school-s")
COORDINATOR = Actor("c1", Role.COORDINATOR, "school-s")
ADMIN = Actor("admin", Role.ADMIN)


def make_claim(owner_id="x", kind=ClaimKind.SCHEDULED_EVENT, event_id="e1",
               state=ClaimState.PENDING, organization_id="school-s", description=""):
    return Claim(
        id=f"{owner_id}-{kind.value}-{event_id}-{state.value}",
        owner_id=owner_id,
        organization_id=organization_id,
        kind=kind,
        hours=1.0,
        description=description,
        state=state,
        created_at=datetime(2030, 1, 1),
        event_id=event_id if kind == ClaimKind.SCHEDULED_EVENT else None,
        reviewer_id=None if state == ClaimState.PENDING else "c1",
    )


@pytest.fixture
def snapshot():
    return DelegationSnapshot({"e1": frozenset({"y"})})


class TestDelegationShadowing:

    def test_claims_on_delegated_events_are_shadowed(self, snapshot):
        assert is_delegation_shadowed(make_claim(), snapshot)

    def test_delegate_self_submission_is_not_shadowed(self, snapshot):
        assert not is_delegation_shadowed(make_claim(owner_id="y"), snapshot)

    def test_events_without_delegates(self, snapshot):
        assert not is_delegation_shadowed(make_claim(event_id="e2"), snapshot)

    def test_other_kinds_never_shadowed(self, snapshot):
        assert not is_delegation_shadowed(make_claim(kind=ClaimKind.DONATION), snapshot)

    def test_scheduled_claim_without_event_is_not_shadowed(self, snapshot):
        claim = make_claim(event_id=None)

        assert not is_delegation_shadowed(claim, snapshot)
        assert VisibilityPredicate(COORDINATOR, snapshot)(claim)

    def test_snapshot_lookups(self, snapshot):
        assert snapshot.is_delegate("e1", "y")
        assert not snapshot.is_delegate(None, "y")
        assert snapshot.events_for("y") == frozenset({"e1"})
        assert snapshot.delegates_for("e9") == frozenset()


class TestRoleRules:

    def test_student_sees_only_own(self, snapshot):
        predicate = VisibilityPredicate(STUDENT, snapshot)
        assert predicate(make_claim())
        assert not predicate(make_claim(owner_id="w"))

    def test_delegate_listing_is_own_claims_only(self, snapshot):
        predicate = VisibilityPredicate(DELEGATE, snapshot)
        assert predicate(make_claim(owner_id="y"))
        assert not predicate(make_claim())

    def test_coordinator_scope(self, snapshot):
        predicate = VisibilityPredicate(COORDINATOR, snapshot)

        assert predicate(make_claim(event_id="e2"))
        assert predicate(make_claim(owner_id="y"))
        assert predicate(make_claim(kind=ClaimKind.AD_HOC_SERVICE))
        assert not predicate(make_claim())
        assert not predicate(make_claim(event_id="e2", organization_id="school-t"))

    def test_coordinator_without_organization_sees_nothing(self, snapshot):
        predicate = VisibilityPredicate(Actor("c9", Role.COORDINATOR, None), snapshot)
        assert not predicate(make_claim(event_id="e2"))

    @pytest.mark.parametrize("state,visible", [
        (ClaimState.PENDING, False),
        (ClaimState.APPROVED, True),
        (ClaimState.REJECTED, True),
    ])
    def test_admin_sees_decided_claims(self, snapshot, state, visible):
        predicate = VisibilityPredicate(ADMIN, snapshot)
        assert predicate(make_claim(state=state, organization_id="school-t")) is visible


class TestFilters:

    def test_filters_only_narrow(self, snapshot):
        filters = ClaimFilters(state=ClaimState.PENDING)
        predicate = VisibilityPredicate(ADMIN, snapshot, filters)
        assert not predicate(make_claim(state=ClaimState.PENDING))
        assert not predicate(make_claim(state=ClaimState.APPROVED))

    def test_search_is_case_insensitive(self, snapshot):
        predicate = VisibilityPredicate(STUDENT, snapshot, ClaimFilters(search="food"))
        assert predicate(make_claim(description="Sorted FOOD donations"))
        assert not predicate(make_claim(description="Tutoring"))

    def test_prefilter_per_role(self, snapshot):
        assert VisibilityPredicate(STUDENT, snapshot).prefilter.owner_id == "x"
        assert VisibilityPredicate(COORDINATOR, snapshot).prefilter.organization_id == "school-s"
        assert set(VisibilityPredicate(ADMIN, snapshot).prefilter.states) == {
            ClaimState.APPROVED, ClaimState.REJECTED
        }
        kind_prefilter = VisibilityPredicate(STUDENT, snapshot, ClaimFilters(kind=ClaimKind.OTHER)).prefilter
        assert kind_prefilter.kind == ClaimKind.OTHER
        assert kind_prefilter.owner_id == "x"


class TestResolver:

    def test_snapshot_reads_registry(self, registry):
        event = registry.create_event("c1", "school-s", "Drive", datetime(2030, 1, 1), 5)
        registry.add_delegation(event.id, "w")
        resolver = VisibilityResolver(registry)

        snapshot = resolver.snapshot()
        registry.remove_delegation(event.id, "w")

        # The snapshot does not move with the registry
        assert snapshot.is_delegate(event.id, "w")
        assert not resolver.snapshot().is_delegate(event.id, "w")

    def test_is_visible(self, registry):
        resolver = VisibilityResolver(registry)
        assert resolver.is_visible(make_claim(event_id="e2"), COORDINATOR)
        assert not resolver.is_visible(make_claim(), ADMIN)
