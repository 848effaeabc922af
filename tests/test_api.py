"""
HTTP surface tests - routes, actor header and error status mapping.
"""

from datetime import datetime, timedelta

import pytest
from fastapi.testclient import TestClient

from volunteer_claims.api import main


def headers(actor_id):
    return {"X-Actor-Id": actor_id}


class TestClaimsAPI:
    """Test cases for the claims endpoints."""

    @pytest.fixture
    def client(self, engine):
        main.configure_engine(engine)
        with TestClient(main.app) as test_client:
            yield test_client
        main.configure_engine(None)

    @pytest.fixture
    def claim_id(self, client):
        response = client.post("/claims", headers=headers("x"), json={
            "kind": "ad_hoc_service",
            "hours": 2,
            "description": "Library tutoring",
            "proof_reference": "proof/abc.jpg",
        })
        assert response.status_code == 201
        return response.json()["id"]

    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert data["db_health"] is True

    def test_unknown_actor(self, client):
        assert client.get("/claims", headers=headers("nobody")).status_code == 401

    def test_missing_actor_header(self, client):
        assert client.get("/claims").status_code == 422

    def test_submit_and_list(self, client, claim_id):
        response = client.get("/claims", headers=headers("x"))
        assert response.status_code == 200
        data = response.json()
        assert data["total"] == 1
        assert data["claims"][0]["id"] == claim_id
        assert data["claims"][0]["state"] == "pending"

        assert client.get("/claims", headers=headers("admin")).json()["total"] == 0

    def test_list_filters_and_pages(self, client, claim_id):
        response = client.get("/claims", headers=headers("c1"),
                              params={"state": "approved", "page": 1, "limit": 5})
        assert response.json()["claims"] == []

        assert client.get("/claims", headers=headers("c1"), params={"limit": 0}).status_code == 422

    def test_review_flow(self, client, claim_id):
        missing = client.post(f"/claims/{claim_id}/review", headers=headers("c1"), json={"decision": "rejected"})
        assert missing.status_code == 422
        assert missing.json()["error_type"] == "MISSING_COMMENT"

        approved = client.post(f"/claims/{claim_id}/review", headers=headers("c1"),
                               json={"decision": "approved", "comment": "Good"})
        assert approved.status_code == 200
        assert approved.json()["reviewer_id"] == "c1"

        again = client.post(f"/claims/{claim_id}/review", headers=headers("c1"),
                            json={"decision": "rejected", "comment": "bad"})
        assert again.status_code == 409
        assert again.json()["error_type"] == "INVALID_TRANSITION"

        admin_view = client.get(f"/claims/{claim_id}", headers=headers("admin"))
        assert admin_view.status_code == 200

    def test_forbidden_hides_existence(self, client, claim_id):
        own = client.post(f"/claims/{claim_id}/review", headers=headers("x"), json={"decision": "approved"})
        unknown = client.post("/claims/no-such-claim/review", headers=headers("x"), json={"decision": "approved"})

        assert own.status_code == unknown.status_code == 403
        assert own.json()["message"] == unknown.json()["message"] == "Forbidden"

    def test_pending_is_not_a_decision(self, client, claim_id):
        response = client.post(f"/claims/{claim_id}/review", headers=headers("c1"), json={"decision": "pending"})
        assert response.status_code == 422

    def test_consent_required(self, client, consent_gate):
        consent_gate.register_minor("z")
        response = client.post("/claims", headers=headers("z"), json={
            "kind": "ad_hoc_service", "hours": 1, "proof_reference": "p"
        })
        assert response.status_code == 403
        assert response.json()["error_type"] == "CONSENT_REQUIRED"

    def test_validation_error(self, client):
        response = client.post("/claims", headers=headers("x"), json={"kind": "donation", "donation_items": 2})
        assert response.status_code == 422
        assert response.json()["error_type"] == "VALIDATION_ERROR"

    def test_update_proof_and_withdraw(self, client, claim_id):
        updated = client.patch(f"/claims/{claim_id}", headers=headers("x"), json={"hours": 3})
        assert updated.status_code == 200
        assert updated.json()["hours"] == 3

        proof = client.get(f"/claims/{claim_id}/proof", headers=headers("c1"))
        assert proof.json()["proof_reference"] == "proof/abc.jpg"

        assert client.delete(f"/claims/{claim_id}", headers=headers("y")).status_code == 403
        assert client.delete(f"/claims/{claim_id}", headers=headers("x")).status_code == 204
        assert client.get(f"/claims/{claim_id}", headers=headers("x")).status_code == 403

    def test_queue_and_summary(self, client, claim_id):
        queue = client.get("/claims/review-queue", headers=headers("c1"))
        assert [c["id"] for c in queue.json()["claims"]] == [claim_id]

        summary = client.get("/claims/summary", headers=headers("c1")).json()
        assert summary["pending"] == 1
        assert summary["total"] == 1
        assert summary["by_kind"] == {"ad_hoc_service": 1}

    def test_review_queue_state_filter(self, client, claim_id):
        client.post(f"/claims/{claim_id}/review", headers=headers("c1"), json={"decision": "approved"})

        pending = client.get("/claims/review-queue", headers=headers("c1"))
        assert pending.json()["claims"] == []

        everything = client.get("/claims/review-queue", headers=headers("c1"), params={"state": "all"})
        assert [c["id"] for c in everything.json()["claims"]] == [claim_id]

        approved = client.get("/claims/review-queue", headers=headers("c1"), params={"state": "approved"})
        assert approved.json()["total"] == 1

        bogus = client.get("/claims/review-queue", headers=headers("c1"), params={"state": "archived"})
        assert bogus.status_code == 422


class TestEventsAPI:

    @pytest.fixture
    def client(self, engine):
        main.configure_engine(engine)
        with TestClient(main.app) as test_client:
            yield test_client
        main.configure_engine(None)

    @pytest.fixture
    def event_id(self, client):
        response = client.post("/events", headers=headers("c1"), json={
            "title": "Beach clean-up",
            "scheduled_at": (datetime.now() + timedelta(days=3)).isoformat(),
            "capacity": 20,
            "duration": 3,
            "delegate_ids": ["y"],
        })
        assert response.status_code == 201
        assert response.json()["delegate_ids"] == ["y"]
        return response.json()["id"]

    def test_students_cannot_create_events(self, client):
        response = client.post("/events", headers=headers("x"), json={
            "title": "My event", "scheduled_at": "2030-01-01T10:00:00", "capacity": 5
        })
        assert response.status_code == 403

    def test_delegate_reviews_event_claims(self, client, event_id):
        claim = client.post("/claims", headers=headers("x"),
                            json={"kind": "scheduled_event", "event_id": event_id}).json()
        assert claim["hours"] == 3

        hidden = client.post(f"/claims/{claim['id']}/review", headers=headers("c1"), json={"decision": "approved"})
        assert hidden.status_code == 403

        reviewed = client.post(f"/claims/{claim['id']}/review", headers=headers("y"), json={"decision": "approved"})
        assert reviewed.status_code == 200

    def test_update_and_delegates(self, client, event_id):
        updated = client.patch(f"/events/{event_id}", headers=headers("c1"), json={"capacity": 35})
        assert updated.json()["capacity"] == 35

        assert client.patch(f"/events/{event_id}", headers=headers("c2"), json={"capacity": 1}).status_code == 403

        added = client.put(f"/events/{event_id}/delegates/w", headers=headers("c1"))
        assert added.json() == {"event_id": event_id, "actor_id": "w", "created": True}

        assert client.delete(f"/events/{event_id}/delegates/w", headers=headers("c1")).status_code == 204

    def test_unknown_event(self, client):
        response = client.patch("/events/missing", headers=headers("c1"), json={"title": "x"})
        assert response.status_code == 404

    def test_list_and_get_events(self, client, event_id):
        listing = client.get("/events", headers=headers("x"))
        assert listing.status_code == 200
        assert listing.json()["total"] == 1
        assert listing.json()["events"][0]["id"] == event_id

        assert client.get("/events", headers=headers("c2")).json()["total"] == 0

        event = client.get(f"/events/{event_id}", headers=headers("x"))
        assert event.json()["title"] == "Beach clean-up"
        assert event.json()["registered_count"] == 0

        assert client.get(f"/events/{event_id}", headers=headers("t1")).status_code == 403
        assert client.get("/events/missing", headers=headers("x")).status_code == 404

    def test_delete_event(self, client, event_id):
        claim = client.post("/claims", headers=headers("x"),
                            json={"kind": "scheduled_event", "event_id": event_id}).json()

        assert client.delete(f"/events/{event_id}", headers=headers("c2")).status_code == 403
        assert client.delete(f"/events/{event_id}", headers=headers("c1")).status_code == 204
        assert client.get(f"/events/{event_id}", headers=headers("c1")).status_code == 404

        reviewed = client.post(f"/claims/{claim['id']}/review", headers=headers("c1"), json={"decision": "approved"})
        assert reviewed.status_code == 200

    def test_registration(self, client):
        small = client.post("/events", headers=headers("c1"), json={
            "title": "Soup kitchen", "scheduled_at": "2030-06-01T10:00:00", "capacity": 1
        }).json()

        joined = client.put(f"/events/{small['id']}/registration", headers=headers("x"))
        assert joined.status_code == 200
        assert joined.json() == {"event_id": small["id"], "actor_id": "x", "created": True, "registered_count": 1}

        again = client.put(f"/events/{small['id']}/registration", headers=headers("x"))
        assert again.json()["created"] is False

        full = client.put(f"/events/{small['id']}/registration", headers=headers("w"))
        assert full.status_code == 409
        assert full.json()["error_type"] == "EVENT_FULL"

        mine = client.get("/events/registered", headers=headers("x")).json()
        assert [e["id"] for e in mine["events"]] == [small["id"]]

        assert client.delete(f"/events/{small['id']}/registration", headers=headers("x")).status_code == 204
        assert client.delete(f"/events/{small['id']}/registration", headers=headers("x")).status_code == 404
        assert client.put(f"/events/{small['id']}/registration", headers=headers("c1")).status_code == 403
