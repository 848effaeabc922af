"""
Claim store - holds claim records and their state, no authorization logic.

State changes are single conditional UPDATEs ("only if still pending"), so two
reviewers racing on one claim resolve to exactly one winner.
"""

import sqlite3
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Iterator, Optional, Sequence

from .config import REVIEW_COMMENT_MAX_LENGTH, proof_required_kinds
from .db import get_db, init_db
from .errors import ClaimValidationError, InvalidTransition, MissingComment, NotAuthorized, NotFound
from .registry import EventRegistry
from .schema import Claim, ClaimChanges, ClaimDraft, ClaimKind, ClaimState, DECIDED_STATES, Event
from ..util.logging import logger

ClaimPredicate = Callable[[Claim], bool]

_CLAIM_COLUMNS = (
    "id, owner_id, organization_id, kind, event_id, hours, proof_reference, description, "
    "service_date, donation_items, state, reviewer_id, review_comment, created_at, reviewed_at"
)


def _ts(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat(timespec='microseconds') if value is not None else None


def _parse_ts(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


def _row_to_claim(row: sqlite3.Row) -> Claim:
    return Claim(
        id=row["id"],
        owner_id=row["owner_id"],
        organization_id=row["organization_id"],
        kind=ClaimKind(row["kind"]),
        event_id=row["event_id"],
        hours=row["hours"],
        proof_reference=row["proof_reference"],
        description=row["description"],
        service_date=_parse_ts(row["service_date"]),
        donation_items=row["donation_items"],
        state=ClaimState(row["state"]),
        reviewer_id=row["reviewer_id"],
        review_comment=row["review_comment"],
        created_at=_parse_ts(row["created_at"]),
        reviewed_at=_parse_ts(row["reviewed_at"]),
    )


@dataclass(frozen=True)
class SqlPrefilter:
    """Conditions pushed down into the SELECT before the Python predicate runs.

    Purely an index hint: the predicate alone decides visibility.
    """
    owner_id: Optional[str] = None
    organization_id: Optional[str] = None
    states: Optional[Sequence[ClaimState]] = None
    event_ids: Optional[Sequence[str]] = None
    kind: Optional[ClaimKind] = None

    def to_sql(self):
        clauses, params = [], []
        if self.owner_id is not None:
            clauses.append("owner_id = ?")
            params.append(self.owner_id)
        if self.organization_id is not None:
            clauses.append("organization_id = ?")
            params.append(self.organization_id)
        if self.states is not None:
            states = list(self.states)
            if not states:
                clauses.append("0")
            else:
                clauses.append(f"state IN ({', '.join('?' for _ in states)})")
                params.extend(ClaimState(s).value for s in states)
        if self.event_ids is not None:
            event_ids = list(self.event_ids)
            if not event_ids:
                clauses.append("0")
            else:
                clauses.append(f"event_id IN ({', '.join('?' for _ in event_ids)})")
                params.extend(event_ids)
        if self.kind is not None:
            clauses.append("kind = ?")
            params.append(ClaimKind(self.kind).value)
        where = (" WHERE " + " AND ".join(clauses)) if clauses else ""
        return where, params


class ClaimQuery:
    """Lazy, finite, restartable view over the store.

    Every iteration runs a fresh SELECT, so re-iterating observes the
    current store state.
    """

    def __init__(self, db_path: Optional[str], predicate: ClaimPredicate,
                 prefilter: Optional[SqlPrefilter] = None):
        self._db_path = db_path
        self._predicate = predicate
        self._prefilter = prefilter or SqlPrefilter()

    def __iter__(self) -> Iterator[Claim]:
        where, params = self._prefilter.to_sql()
        query = f"SELECT {_CLAIM_COLUMNS} FROM claims{where} ORDER BY created_at DESC, rowid DESC"
        with get_db(self._db_path) as conn:
            for row in conn.execute(query, params):
                claim = _row_to_claim(row)
                if self._predicate(claim):
                    yield claim

    def count(self) -> int:
        return sum(1 for _ in self)


class ClaimStore:
    """SQLite-backed claim records."""

    def __init__(self, db_path: Optional[str] = None, registry: Optional[EventRegistry] = None):
        self.db_path = db_path
        self.registry = registry or EventRegistry(db_path)
        init_db(db_path)

    def create_claim(self, draft: ClaimDraft) -> Claim:
        """Validate a draft and store it as a new pending claim."""
        if not draft.owner_id or not draft.organization_id:
            raise ClaimValidationError("Claim needs an owner and an organization")

        try:
            kind = ClaimKind(draft.kind)
        except ValueError:
            raise ClaimValidationError(f"Invalid claim kind: {draft.kind}", {"kind": draft.kind})

        if draft.hours is not None and draft.hours < 0:
            raise ClaimValidationError("hours must be >= 0", {"hours": draft.hours})

        event = None
        if draft.event_id:
            if kind != ClaimKind.SCHEDULED_EVENT:
                raise ClaimValidationError("Only scheduled-event claims may reference an event",
                                           {"kind": kind.value, "event_id": draft.event_id})
            event = self.registry.get_event(draft.event_id)
            if event.organization_id != draft.organization_id:
                raise ClaimValidationError("Event belongs to another organization",
                                           {"event_id": event.id, "organization_id": draft.organization_id})

        if draft.donation_items is not None:
            if kind != ClaimKind.DONATION:
                raise ClaimValidationError("donation_items only applies to donation claims")
            if draft.donation_items < 0:
                raise ClaimValidationError("donation_items must be >= 0")

        hours = self._resolve_hours(kind, draft, event)

        proof = draft.proof_reference.strip() if draft.proof_reference else None
        if kind.value in proof_required_kinds() and not proof:
            raise ClaimValidationError(f"Proof is required for {kind.value} claims", {"kind": kind.value})

        claim = Claim(
            id=str(uuid.uuid4()),
            owner_id=draft.owner_id,
            organization_id=draft.organization_id,
            kind=kind,
            event_id=draft.event_id or None,
            hours=hours,
            proof_reference=proof,
            description=(draft.description or "").strip(),
            service_date=draft.service_date,
            donation_items=draft.donation_items,
            state=ClaimState.PENDING,
            created_at=datetime.now(),
        )

        with get_db(self.db_path) as conn:
            conn.execute(
                f"INSERT INTO claims ({_CLAIM_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                (claim.id, claim.owner_id, claim.organization_id, claim.kind.value, claim.event_id,
                 claim.hours, claim.proof_reference, claim.description, _ts(claim.service_date),
                 claim.donation_items, claim.state.value, None, None, _ts(claim.created_at), None)
            )
            conn.commit()

        return claim

    def _resolve_hours(self, kind: ClaimKind, draft: ClaimDraft, event: Optional[Event]) -> float:
        if kind == ClaimKind.OTHER:
            # Reviewer assigns hours when approving
            return 0.0

        if kind == ClaimKind.SCHEDULED_EVENT:
            if draft.hours is not None:
                return float(draft.hours)
            if event is None:
                raise ClaimValidationError("hours are required for a scheduled-event claim without an event")
            if event.duration is None:
                raise ClaimValidationError(
                    "hours are required: the event has no configured duration", {"event_id": event.id}
                )
            return float(event.duration)

        if kind == ClaimKind.AD_HOC_SERVICE:
            if draft.hours is None:
                raise ClaimValidationError("hours are required for ad-hoc service claims")
            return float(draft.hours)

        return float(draft.hours) if draft.hours is not None else 0.0

    def get_claim(self, claim_id: str) -> Claim:
        """Get a claim by id or raise NotFound."""
        with get_db(self.db_path) as conn:
            row = conn.execute(
                f"SELECT {_CLAIM_COLUMNS} FROM claims WHERE id = ?", (claim_id,)
            ).fetchone()

        if row is None:
            raise NotFound(f"Claim {claim_id} not found", {"claim_id": claim_id})
        return _row_to_claim(row)

    def list_claims(self, predicate: Optional[ClaimPredicate] = None,
                    prefilter: Optional[SqlPrefilter] = None) -> ClaimQuery:
        return ClaimQuery(self.db_path, predicate or (lambda claim: True), prefilter)

    def set_claim_state(self, claim_id: str, new_state: ClaimState, reviewer_id: str,
                        comment: Optional[str] = None, timestamp: Optional[datetime] = None,
                        hours: Optional[float] = None) -> Claim:
        """Move a pending claim to approved or rejected, exactly once."""
        try:
            new_state = ClaimState(new_state)
        except ValueError:
            raise InvalidTransition(f"Unknown target state: {new_state}", {"claim_id": claim_id})
        if new_state not in DECIDED_STATES:
            raise InvalidTransition("A claim can only move to approved or rejected", {"claim_id": claim_id})

        comment = comment.strip() if comment else None
        if comment and len(comment) > REVIEW_COMMENT_MAX_LENGTH:
            raise ClaimValidationError(f"Comment longer than {REVIEW_COMMENT_MAX_LENGTH} characters")
        if hours is not None and hours < 0:
            raise ClaimValidationError("hours must be >= 0", {"hours": hours})

        if new_state == ClaimState.REJECTED and not comment:
            current = self.get_claim(claim_id)
            if not current.is_pending:
                raise InvalidTransition(f"Claim {claim_id} is already {current.state.value}",
                                        {"claim_id": claim_id, "state": current.state.value})
            raise MissingComment("A rejection needs a comment", {"claim_id": claim_id})

        assignments = "state = ?, reviewer_id = ?, review_comment = ?, reviewed_at = ?"
        params = [new_state.value, reviewer_id, comment, _ts(timestamp or datetime.now())]
        if hours is not None:
            assignments += ", hours = ?"
            params.append(float(hours))

        try:
            with get_db(self.db_path) as conn:
                cursor = conn.execute(
                    f"UPDATE claims SET {assignments} WHERE id = ? AND state = 'pending'",
                    (*params, claim_id)
                )
                conn.commit()
                updated = cursor.rowcount
        except sqlite3.IntegrityError as e:
            logger.error(f"Claim {claim_id} state write rejected by constraint: {e}")
            raise MissingComment("A rejection needs a comment", {"claim_id": claim_id})

        if updated == 0:
            current = self.get_claim(claim_id)
            raise InvalidTransition(f"Claim {claim_id} is already {current.state.value}",
                                    {"claim_id": claim_id, "state": current.state.value})

        return self.get_claim(claim_id)

    def update_pending_claim(self, claim_id: str, owner_id: str, changes: ClaimChanges) -> Claim:
        """Apply owner edits while the claim is still pending."""
        columns = changes.as_columns()
        current = self.get_claim(claim_id)

        if "hours" in columns:
            if columns["hours"] < 0:
                raise ClaimValidationError("hours must be >= 0", {"hours": columns["hours"]})
            if current.kind == ClaimKind.OTHER:
                raise ClaimValidationError("hours for other claims are set by the reviewer")
        if "proof_reference" in columns:
            columns["proof_reference"] = columns["proof_reference"].strip() or None
            if columns["proof_reference"] is None and current.kind.value in proof_required_kinds():
                raise ClaimValidationError(f"Proof is required for {current.kind.value} claims")
        if "description" in columns:
            columns["description"] = columns["description"].strip()
        if "service_date" in columns:
            columns["service_date"] = _ts(columns["service_date"])

        if not columns:
            return self._pending_owned(claim_id, owner_id)

        assignments = ", ".join(f"{column} = ?" for column in columns)
        with get_db(self.db_path) as conn:
            cursor = conn.execute(
                f"UPDATE claims SET {assignments} WHERE id = ? AND owner_id = ? AND state = 'pending'",
                (*columns.values(), claim_id, owner_id)
            )
            conn.commit()
            updated = cursor.rowcount

        if updated == 0:
            self._pending_owned(claim_id, owner_id)
        return self.get_claim(claim_id)

    def delete_pending_claim(self, claim_id: str, owner_id: str) -> None:
        """Withdraw a pending claim on behalf of its owner."""
        with get_db(self.db_path) as conn:
            cursor = conn.execute(
                "DELETE FROM claims WHERE id = ? AND owner_id = ? AND state = 'pending'",
                (claim_id, owner_id)
            )
            conn.commit()
            deleted = cursor.rowcount

        if deleted == 0:
            self._pending_owned(claim_id, owner_id)

    def _pending_owned(self, claim_id: str, owner_id: str) -> Claim:
        """Explain why an owner-conditional write matched nothing."""
        current = self.get_claim(claim_id)
        if current.owner_id != owner_id:
            raise NotAuthorized(f"Claim {claim_id} is not owned by {owner_id}")
        if not current.is_pending:
            raise InvalidTransition(f"Claim {claim_id} is already {current.state.value}",
                                    {"claim_id": claim_id, "state": current.state.value})
        return current

    def count_claims(self, prefilter: Optional[SqlPrefilter] = None) -> int:
        where, params = (prefilter or SqlPrefilter()).to_sql()
        with get_db(self.db_path) as conn:
            return conn.execute(f"SELECT COUNT(*) FROM claims{where}", params).fetchone()[0]

