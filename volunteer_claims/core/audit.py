"""
Claim audit trail - append-only record of who did what to which claim or event.
"""

import json
import sqlite3
from datetime import datetime
from typing import Any, Dict, List, Optional

from .config import is_audit_enabled
from .db import get_db
from ..util.logging import logger, audit_event


class AuditEntry:
    """Data class for audit rows."""
    def __init__(self, id: int, ts: datetime, actor_id: str, action: str,
                 claim_id: Optional[str], event_id: Optional[str], payload: Dict[str, Any]):
        self.id = id
        self.ts = ts
        self.actor_id = actor_id
        self.action = action
        self.claim_id = claim_id
        self.event_id = event_id
        self.payload = payload


def add_audit_event(actor_id: str, action: str, claim_id: Optional[str] = None,
                    event_id: Optional[str] = None, payload: Optional[Dict[str, Any]] = None,
                    db_path: Optional[str] = None) -> bool:
    """Append an audit row. Audit failures are logged and never undo the audited write."""
    if not is_audit_enabled():
        return False

    audit_event(
        event_type=f"claim_audit.{action}",
        identifiers={"actor_id": actor_id, "claim_id": claim_id, "event_id": event_id},
        payload=payload,
    )

    try:
        with get_db(db_path) as conn:
            conn.execute(
                "INSERT INTO claim_audit (ts, actor_id, action, claim_id, event_id, payload) VALUES (?, ?, ?, ?, ?, ?)",
                (datetime.now().isoformat(timespec='microseconds'), actor_id, action, claim_id, event_id,
                 json.dumps(payload or {}, default=str))
            )
            conn.commit()
            return True
    except sqlite3.Error as e:
        logger.error(f"Failed to write audit event {action} by '{actor_id}': {e}")
        return False


def list_audit_events(claim_id: Optional[str] = None, event_id: Optional[str] = None,
                      limit: int = 100, db_path: Optional[str] = None) -> List[AuditEntry]:
    """Most recent audit rows, optionally for one claim or event."""
    query = "SELECT id, ts, actor_id, action, claim_id, event_id, payload FROM claim_audit"
    clauses, params = [], []
    if claim_id is not None:
        clauses.append("claim_id = ?")
        params.append(claim_id)
    if event_id is not None:
        clauses.append("event_id = ?")
        params.append(event_id)
    if clauses:
        query += " WHERE " + " AND ".join(clauses)
    query += " ORDER BY id DESC LIMIT ?"
    params.append(limit)

    with get_db(db_path) as conn:
        rows = conn.execute(query, params).fetchall()

    return [
        AuditEntry(
            id=row["id"],
            ts=datetime.fromisoformat(row["ts"]),
            actor_id=row["actor_id"],
            action=row["action"],
            claim_id=row["claim_id"],
            event_id=row["event_id"],
            payload=json.loads(row["payload"]) if row["payload"] else {},
        )
        for row in rows
    ]
