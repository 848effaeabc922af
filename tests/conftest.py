"""
Shared fixtures: a temporary database per test and a small school with one
coordinator per organization, students and an admin.
"""

import os
import tempfile
from datetime import datetime, timedelta

import pytest

# Keep the module-level default database out of the working tree
os.environ.setdefault('DB_PATH', os.path.join(tempfile.mkdtemp(), 'claims.db'))

from volunteer_claims.core.claim_store import ClaimStore
from volunteer_claims.core.collaborators import InMemoryActorDirectory, InMemoryConsentGate, RecordingOutcomeSink
from volunteer_claims.core.engine import build_engine
from volunteer_claims.core.registry import EventRegistry
from volunteer_claims.core.schema import Actor, ClaimDraft, ClaimKind, Role


@pytest.fixture
def db_path(tmp_path):
    return str(tmp_path / "claims.db")


@pytest.fixture
def directory():
    return InMemoryActorDirectory([
        Actor("c1", Role.COORDINATOR, "school-s"),
        Actor("c2", Role.COORDINATOR, "school-t"),
        Actor("x", Role.STUDENT, "school-s"),
        Actor("y", Role.STUDENT, "school-s"),
        Actor("w", Role.STUDENT, "school-s"),
        Actor("z", Role.STUDENT, "school-s"),
        Actor("t1", Role.STUDENT, "school-t"),
        Actor("admin", Role.ADMIN, None),
    ])


@pytest.fixture
def registry(db_path, directory):
    return EventRegistry(db_path, directory=directory)


@pytest.fixture
def store(db_path, registry):
    return ClaimStore(db_path, registry=registry)


@pytest.fixture
def consent_gate():
    return InMemoryConsentGate()


@pytest.fixture
def sink():
    return RecordingOutcomeSink()


@pytest.fixture
def engine(db_path, directory, consent_gate, sink):
    return build_engine(directory, db_path=db_path, consent_gate=consent_gate, outcome_sink=sink)


@pytest.fixture
def actor(directory):
    """Look up the current version of an actor (roles change on promotion)."""
    return directory.get_actor


@pytest.fixture
def event_factory(engine, actor):
    def make(owner="c1", duration=3.0, delegates=(), title="Beach clean-up", capacity=20):
        return engine.create_event(
            actor(owner),
            title=title,
            scheduled_at=datetime.now() + timedelta(days=7),
            capacity=capacity,
            duration=duration,
            delegate_ids=delegates,
        )
    return make


@pytest.fixture
def event_draft():
    def make(event_id, hours=None, description="Helped at the event"):
        return ClaimDraft(kind=ClaimKind.SCHEDULED_EVENT, event_id=event_id, hours=hours, description=description)
    return make


@pytest.fixture
def service_draft():
    def make(hours=2.0, description="Tutored at the library", proof="proof/abc.jpg"):
        return ClaimDraft(kind=ClaimKind.AD_HOC_SERVICE, hours=hours, description=description,
                          proof_reference=proof)
    return make
