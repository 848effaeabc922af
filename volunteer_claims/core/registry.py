"""
Event/Delegation registry.
Events are reference data owned by the coordinator who created them; delegations are an
explicit (event_id, actor_id) relation kept apart from event rows.
"""

import sqlite3
import uuid
from datetime import datetime
from typing import Dict, FrozenSet, Iterable, List, Optional, Set

from .collaborators import IActorDirectory
from .db import get_db, init_db
from .errors import ClaimValidationError, EventFull, NotFound
from .schema import Delegation, Event, Role
from ..util.logging import logger


def _ts(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat(timespec='microseconds') if value is not None else None


def _parse_ts(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


def _row_to_event(row: sqlite3.Row) -> Event:
    return Event(
        id=row["id"],
        coordinator_id=row["coordinator_id"],
        organization_id=row["organization_id"],
        title=row["title"],
        scheduled_at=_parse_ts(row["scheduled_at"]),
        capacity=row["capacity"],
        duration=row["duration"],
        location=row["location"],
        created_at=_parse_ts(row["created_at"]),
    )


_EVENT_COLUMNS = "id, coordinator_id, organization_id, title, scheduled_at, capacity, duration, location, created_at"
_UPDATABLE_EVENT_FIELDS = ("title", "scheduled_at", "capacity", "duration", "location")


class EventRegistry:
    """SQLite-backed events and delegations."""

    def __init__(self, db_path: Optional[str] = None, directory: Optional[IActorDirectory] = None):
        self.db_path = db_path
        self.directory = directory
        init_db(db_path)

    # Events

    def create_event(self, coordinator_id: str, organization_id: str, title: str,
                     scheduled_at: datetime, capacity: int, duration: Optional[float] = None,
                     location: Optional[str] = None) -> Event:
        """Create an event owned by coordinator_id."""
        self._validate_event_fields(capacity=capacity, duration=duration, title=title)

        event = Event(
            id=str(uuid.uuid4()),
            coordinator_id=coordinator_id,
            organization_id=organization_id,
            title=title.strip(),
            scheduled_at=scheduled_at,
            capacity=capacity,
            duration=duration,
            location=location,
            created_at=datetime.now(),
        )

        with get_db(self.db_path) as conn:
            conn.execute(
                f"INSERT INTO events ({_EVENT_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)",
                (event.id, event.coordinator_id, event.organization_id, event.title,
                 _ts(event.scheduled_at), event.capacity, event.duration, event.location,
                 _ts(event.created_at))
            )
            conn.commit()

        logger.info(f"Created event {event.id} for organization {organization_id} by {coordinator_id}")
        return event

    def get_event(self, event_id: str) -> Event:
        """Get an event by id or raise NotFound."""
        with get_db(self.db_path) as conn:
            row = conn.execute(
                f"SELECT {_EVENT_COLUMNS} FROM events WHERE id = ?", (event_id,)
            ).fetchone()

        if row is None:
            raise NotFound(f"Event {event_id} not found", {"event_id": event_id})
        return _row_to_event(row)

    def find_event(self, event_id: Optional[str]) -> Optional[Event]:
        """Like get_event but returns None for a missing or null reference."""
        if not event_id:
            return None
        try:
            return self.get_event(event_id)
        except NotFound:
            return None

    def update_event(self, event_id: str, **fields) -> Event:
        """Update mutable event fields. Ownership is checked by the caller."""
        unknown = set(fields) - set(_UPDATABLE_EVENT_FIELDS)
        if unknown:
            raise ClaimValidationError(f"Cannot update event fields: {sorted(unknown)}")

        changes = {k: v for k, v in fields.items() if v is not None}
        self._validate_event_fields(
            capacity=changes.get("capacity"), duration=changes.get("duration"), title=changes.get("title")
        )
        if not changes:
            return self.get_event(event_id)

        if "capacity" in changes and changes["capacity"] < self.registration_count(event_id):
            raise ClaimValidationError("capacity cannot drop below current registrations",
                                       {"event_id": event_id, "capacity": changes["capacity"]})

        if "scheduled_at" in changes:
            changes["scheduled_at"] = _ts(changes["scheduled_at"])

        assignments = ", ".join(f"{column} = ?" for column in changes)
        with get_db(self.db_path) as conn:
            cursor = conn.execute(
                f"UPDATE events SET {assignments} WHERE id = ?",
                (*changes.values(), event_id)
            )
            conn.commit()
            if cursor.rowcount == 0:
                raise NotFound(f"Event {event_id} not found", {"event_id": event_id})

        return self.get_event(event_id)

    def list_events(self, organization_id: Optional[str] = None, coordinator_id: Optional[str] = None,
                    upcoming_after: Optional[datetime] = None) -> List[Event]:
        """Events in date order, soonest first."""
        clauses, params = [], []
        if organization_id is not None:
            clauses.append("organization_id = ?")
            params.append(organization_id)
        if coordinator_id is not None:
            clauses.append("coordinator_id = ?")
            params.append(coordinator_id)
        if upcoming_after is not None:
            clauses.append("scheduled_at >= ?")
            params.append(_ts(upcoming_after))

        query = f"SELECT {_EVENT_COLUMNS} FROM events"
        if clauses:
            query += " WHERE " + " AND ".join(clauses)
        query += " ORDER BY scheduled_at ASC"

        with get_db(self.db_path) as conn:
            rows = conn.execute(query, params).fetchall()
        return [_row_to_event(row) for row in rows]

    def delete_event(self, event_id: str) -> None:
        """Delete an event with its delegations and registrations.

        Claims keep their event_id; a dangling reference is never shadowed.
        """
        with get_db(self.db_path) as conn:
            cursor = conn.execute("DELETE FROM events WHERE id = ?", (event_id,))
            conn.commit()
            if cursor.rowcount == 0:
                raise NotFound(f"Event {event_id} not found", {"event_id": event_id})

        logger.info(f"Deleted event {event_id}")

    # Delegations

    def list_delegates_for(self, event_id: str) -> Set[str]:
        with get_db(self.db_path) as conn:
            rows = conn.execute(
                "SELECT actor_id FROM delegations WHERE event_id = ?", (event_id,)
            ).fetchall()
        return {row["actor_id"] for row in rows}

    def is_delegate(self, event_id: Optional[str], actor_id: str) -> bool:
        if not event_id:
            return False
        with get_db(self.db_path) as conn:
            row = conn.execute(
                "SELECT 1 FROM delegations WHERE event_id = ? AND actor_id = ?", (event_id, actor_id)
            ).fetchone()
        return row is not None

    def events_with_any_delegate(self) -> Set[str]:
        with get_db(self.db_path) as conn:
            rows = conn.execute("SELECT DISTINCT event_id FROM delegations").fetchall()
        return {row["event_id"] for row in rows}

    def events_delegated_to(self, actor_id: str) -> Set[str]:
        with get_db(self.db_path) as conn:
            rows = conn.execute(
                "SELECT event_id FROM delegations WHERE actor_id = ?", (actor_id,)
            ).fetchall()
        return {row["event_id"] for row in rows}

    def list_delegations(self, event_id: Optional[str] = None) -> List[Delegation]:
        query = "SELECT event_id, actor_id FROM delegations"
        params = ()
        if event_id is not None:
            query += " WHERE event_id = ?"
            params = (event_id,)
        with get_db(self.db_path) as conn:
            rows = conn.execute(query + " ORDER BY created_at", params).fetchall()
        return [Delegation(row["event_id"], row["actor_id"]) for row in rows]

    def delegation_map(self) -> Dict[str, FrozenSet[str]]:
        """Snapshot of event_id -> delegate ids, read in one query."""
        mapping: Dict[str, Set[str]] = {}
        for delegation in self.list_delegations():
            mapping.setdefault(delegation.event_id, set()).add(delegation.actor_id)
        return {event_id: frozenset(actors) for event_id, actors in mapping.items()}

    def add_delegation(self, event_id: str, actor_id: str) -> bool:
        """Make actor_id a reviewer for event_id.

        A plain Student is promoted through the actor directory; the role itself
        is never stored here. Returns True if the delegation row is new.
        """
        self.get_event(event_id)

        with get_db(self.db_path) as conn:
            cursor = conn.execute(
                "INSERT OR IGNORE INTO delegations (event_id, actor_id, created_at) VALUES (?, ?, ?)",
                (event_id, actor_id, _ts(datetime.now()))
            )
            conn.commit()
            created = cursor.rowcount > 0

        promoted = self._promote_if_student(actor_id)
        logger.log_delegation_change(event_id, actor_id, "added" if created else "unchanged", promoted)
        return created

    def remove_delegation(self, event_id: str, actor_id: str) -> bool:
        with get_db(self.db_path) as conn:
            cursor = conn.execute(
                "DELETE FROM delegations WHERE event_id = ? AND actor_id = ?", (event_id, actor_id)
            )
            conn.commit()
            removed = cursor.rowcount > 0

        if removed:
            logger.log_delegation_change(event_id, actor_id, "removed")
        return removed

    def set_delegates(self, event_id: str, actor_ids: Iterable[str]) -> Set[str]:
        """Replace the delegate set of an event."""
        wanted = set(actor_ids)
        current = self.list_delegates_for(event_id)
        for actor_id in current - wanted:
            self.remove_delegation(event_id, actor_id)
        for actor_id in wanted - current:
            self.add_delegation(event_id, actor_id)
        return self.list_delegates_for(event_id)

    # Registrations

    def register_volunteer(self, event_id: str, actor_id: str) -> bool:
        """Register actor_id for event_id while seats remain.

        The capacity check and the insert are one statement, so concurrent
        registrations never overfill an event. Returns False if already registered.
        """
        self.get_event(event_id)

        now = _ts(datetime.now())
        with get_db(self.db_path) as conn:
            cursor = conn.execute(
                """
                INSERT INTO event_registrations (event_id, actor_id, created_at)
                SELECT ?, ?, ?
                WHERE NOT EXISTS (SELECT 1 FROM event_registrations WHERE event_id = ? AND actor_id = ?)
                  AND (SELECT COUNT(*) FROM event_registrations WHERE event_id = ?)
                      < (SELECT capacity FROM events WHERE id = ?)
                """,
                (event_id, actor_id, now, event_id, actor_id, event_id, event_id)
            )
            conn.commit()
            created = cursor.rowcount > 0

        if created:
            logger.log_operation("event.register", "success", {"event_id": event_id, "actor_id": actor_id})
            return True
        if self.is_registered(event_id, actor_id):
            return False

        logger.log_operation("event.register", "full", {"event_id": event_id, "actor_id": actor_id})
        raise EventFull(f"Event {event_id} is full", {"event_id": event_id})

    def unregister_volunteer(self, event_id: str, actor_id: str) -> bool:
        with get_db(self.db_path) as conn:
            cursor = conn.execute(
                "DELETE FROM event_registrations WHERE event_id = ? AND actor_id = ?", (event_id, actor_id)
            )
            conn.commit()
            removed = cursor.rowcount > 0

        if removed:
            logger.log_operation("event.unregister", "success", {"event_id": event_id, "actor_id": actor_id})
        return removed

    def is_registered(self, event_id: str, actor_id: str) -> bool:
        with get_db(self.db_path) as conn:
            row = conn.execute(
                "SELECT 1 FROM event_registrations WHERE event_id = ? AND actor_id = ?", (event_id, actor_id)
            ).fetchone()
        return row is not None

    def list_registrations(self, event_id: str) -> Set[str]:
        with get_db(self.db_path) as conn:
            rows = conn.execute(
                "SELECT actor_id FROM event_registrations WHERE event_id = ?", (event_id,)
            ).fetchall()
        return {row["actor_id"] for row in rows}

    def registration_count(self, event_id: str) -> int:
        with get_db(self.db_path) as conn:
            return conn.execute(
                "SELECT COUNT(*) FROM event_registrations WHERE event_id = ?", (event_id,)
            ).fetchone()[0]

    def events_registered_by(self, actor_id: str) -> Set[str]:
        with get_db(self.db_path) as conn:
            rows = conn.execute(
                "SELECT event_id FROM event_registrations WHERE actor_id = ?", (actor_id,)
            ).fetchall()
        return {row["event_id"] for row in rows}

    def _promote_if_student(self, actor_id: str) -> bool:
        if self.directory is None:
            return False
        try:
            actor = self.directory.get_actor(actor_id)
        except NotFound:
            logger.warning(f"Delegate {actor_id} unknown to actor directory, promotion skipped")
            return False
        if actor.role != Role.STUDENT:
            return False
        self.directory.promote_to_coordinator_role(actor_id)
        return True

    @staticmethod
    def _validate_event_fields(capacity: Optional[int] = None, duration: Optional[float] = None,
                               title: Optional[str] = None):
        if capacity is not None and capacity < 0:
            raise ClaimValidationError("capacity must be >= 0", {"capacity": capacity})
        if duration is not None and duration < 0:
            raise ClaimValidationError("duration must be >= 0", {"duration": duration})
        if title is not None and not title.strip():
            raise ClaimValidationError("title cannot be empty")
