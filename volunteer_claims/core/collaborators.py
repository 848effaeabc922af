"""
External collaborators consumed by the engine: actor directory, minor-consent gate and outcome sink.
The in-memory implementations back tests and single-process deployments.
"""

import threading
from abc import ABC, abstractmethod
from typing import Dict, List, Optional, Set

from .errors import NotFound
from .schema import Actor, Claim, Role
from ..util.logging import logger


class IActorDirectory(ABC):
    """Abstract interface for actor lookups and role promotion."""

    @abstractmethod
    def get_actor(self, actor_id: str) -> Actor:
        """Return the actor or raise NotFound."""
        pass

    @abstractmethod
    def promote_to_coordinator_role(self, actor_id: str) -> None:
        """Promote a Student to StudentCoordinator. Fire-and-forget."""
        pass


class InMemoryActorDirectory(IActorDirectory):
    """Dictionary-backed actor directory."""

    def __init__(self, actors: Optional[List[Actor]] = None):
        self._lock = threading.Lock()
        self._actors: Dict[str, Actor] = {a.id: a for a in (actors or [])}

    def add(self, actor: Actor) -> Actor:
        with self._lock:
            self._actors[actor.id] = actor
        return actor

    def get_actor(self, actor_id: str) -> Actor:
        with self._lock:
            actor = self._actors.get(actor_id)
        if actor is None:
            raise NotFound(f"Actor {actor_id} not found", {"actor_id": actor_id})
        return actor

    def promote_to_coordinator_role(self, actor_id: str) -> None:
        with self._lock:
            actor = self._actors.get(actor_id)
            if actor is None or actor.role != Role.STUDENT:
                return
            self._actors[actor_id] = Actor(actor.id, Role.STUDENT_COORDINATOR, actor.organization_id)
        logger.info(f"Promoted actor {actor_id} to {Role.STUDENT_COORDINATOR.value}")


class IConsentGate(ABC):
    """Abstract interface for the minor-consent check."""

    @abstractmethod
    def can_submit(self, actor_id: str) -> bool:
        """True unless the actor is a minor without approved guardian consent."""
        pass


class InMemoryConsentGate(IConsentGate):
    """Tracks which actors are minors and which of them have approved consent."""

    def __init__(self):
        self._lock = threading.Lock()
        self._minors: Set[str] = set()
        self._consent: Dict[str, str] = {}  # actor_id -> pending|approved|rejected

    def register_minor(self, actor_id: str, consent_status: str = "pending") -> None:
        with self._lock:
            self._minors.add(actor_id)
            self._consent[actor_id] = consent_status

    def set_consent_status(self, actor_id: str, consent_status: str) -> None:
        with self._lock:
            self._consent[actor_id] = consent_status

    def can_submit(self, actor_id: str) -> bool:
        with self._lock:
            if actor_id not in self._minors:
                return True
            return self._consent.get(actor_id) == "approved"


class AllowAllConsentGate(IConsentGate):
    def can_submit(self, actor_id: str) -> bool:
        return True


class IOutcomeSink(ABC):
    """Downstream consumer of claim facts (badges, leaderboards, notifications)."""

    @abstractmethod
    def claim_submitted(self, claim: Claim) -> None:
        pass

    @abstractmethod
    def claim_reviewed(self, claim: Claim) -> None:
        pass


class NullOutcomeSink(IOutcomeSink):
    def claim_submitted(self, claim: Claim) -> None:
        pass

    def claim_reviewed(self, claim: Claim) -> None:
        pass


class RecordingOutcomeSink(IOutcomeSink):
    """Keeps every published claim; approved hours are what the badge aggregator consumes."""

    def __init__(self):
        self._lock = threading.Lock()
        self.submitted: List[Claim] = []
        self.reviewed: List[Claim] = []

    def claim_submitted(self, claim: Claim) -> None:
        with self._lock:
            self.submitted.append(claim)

    def claim_reviewed(self, claim: Claim) -> None:
        with self._lock:
            self.reviewed.append(claim)

    def approved_hours_by_owner(self) -> Dict[str, float]:
        totals: Dict[str, float] = {}
        with self._lock:
            for claim in self.reviewed:
                if claim.state.value == "approved":
                    totals[claim.owner_id] = totals.get(claim.owner_id, 0.0) + claim.hours
        return totals
