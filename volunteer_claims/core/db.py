"""
SQLite layer for claims, events, delegations and the claim audit trail.
Table constraints carry the claim state invariants so no writer can persist a half-reviewed claim.
"""

import sqlite3
from contextlib import contextmanager
from typing import Generator, Optional

from .config import DB_TIMEOUT_SEC, ensure_db_directory, get_db_path


@contextmanager
def get_db(db_path: Optional[str] = None) -> Generator[sqlite3.Connection, None, None]:
    """Get a SQLite database connection."""
    conn = sqlite3.connect(db_path or get_db_path(), timeout=DB_TIMEOUT_SEC)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON")
    try:
        yield conn
    finally:
        conn.close()


def init_db(db_path: Optional[str] = None):
    """Initialize the database with required tables."""
    ensure_db_directory(db_path)
    with get_db(db_path) as conn:
        cursor = conn.cursor()

        # Readers never block the single writer
        cursor.execute("PRAGMA journal_mode = WAL")

        cursor.execute('''
            CREATE TABLE IF NOT EXISTS events (
                id TEXT PRIMARY KEY,
                coordinator_id TEXT NOT NULL,
                organization_id TEXT NOT NULL,
                title TEXT NOT NULL,
                scheduled_at TEXT NOT NULL,
                capacity INTEGER NOT NULL CHECK (capacity >= 0),
                duration REAL CHECK (duration IS NULL OR duration >= 0),
                location TEXT,
                created_at TEXT NOT NULL
            )
        ''')

        cursor.execute('''
            CREATE TABLE IF NOT EXISTS delegations (
                event_id TEXT NOT NULL REFERENCES events(id) ON DELETE CASCADE,
                actor_id TEXT NOT NULL,
                created_at TEXT NOT NULL,
                PRIMARY KEY (event_id, actor_id)
            )
        ''')

        cursor.execute('''
            CREATE TABLE IF NOT EXISTS event_registrations (
                event_id TEXT NOT NULL REFERENCES events(id) ON DELETE CASCADE,
                actor_id TEXT NOT NULL,
                created_at TEXT NOT NULL,
                PRIMARY KEY (event_id, actor_id)
            )
        ''')

        cursor.execute('''
            CREATE TABLE IF NOT EXISTS claims (
                id TEXT PRIMARY KEY,
                owner_id TEXT NOT NULL,
                organization_id TEXT NOT NULL,
                kind TEXT NOT NULL CHECK (kind IN ('scheduled_event', 'donation', 'ad_hoc_service', 'other')),
                event_id TEXT,
                hours REAL NOT NULL CHECK (hours >= 0),
                proof_reference TEXT,
                description TEXT NOT NULL DEFAULT '',
                service_date TEXT,
                donation_items REAL,
                state TEXT NOT NULL DEFAULT 'pending' CHECK (state IN ('pending', 'approved', 'rejected')),
                reviewer_id TEXT,
                review_comment TEXT,
                created_at TEXT NOT NULL,
                reviewed_at TEXT,
                CHECK (
                    (state = 'pending' AND reviewer_id IS NULL AND reviewed_at IS NULL)
                    OR (state != 'pending' AND reviewer_id IS NOT NULL AND reviewed_at IS NOT NULL)
                ),
                CHECK (state != 'rejected' OR length(trim(coalesce(review_comment, ''))) > 0)
            )
        ''')

        cursor.execute('''
            CREATE TABLE IF NOT EXISTS claim_audit (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                ts TEXT NOT NULL,
                actor_id TEXT NOT NULL,
                action TEXT NOT NULL,
                claim_id TEXT,
                event_id TEXT,
                payload TEXT
            )
        ''')

        # Indexes for the visibility prefilters
        cursor.execute('CREATE INDEX IF NOT EXISTS idx_claims_owner ON claims(owner_id, created_at DESC)')
        cursor.execute('CREATE INDEX IF NOT EXISTS idx_claims_org_state ON claims(organization_id, state)')
        cursor.execute('CREATE INDEX IF NOT EXISTS idx_claims_event ON claims(event_id)')
        cursor.execute('CREATE INDEX IF NOT EXISTS idx_delegations_actor ON delegations(actor_id)')
        cursor.execute('CREATE INDEX IF NOT EXISTS idx_registrations_actor ON event_registrations(actor_id)')

        conn.commit()


def health_check(db_path: Optional[str] = None) -> bool:
    """Check database health."""
    try:
        with get_db(db_path) as conn:
            cursor = conn.cursor()
            cursor.execute("SELECT name FROM sqlite_master WHERE type='table';")
            table_names = [row[0] for row in cursor.fetchall()]
            required_tables = ['claims', 'events', 'delegations', 'event_registrations', 'claim_audit']
            return all(table in table_names for table in required_tables)
    except sqlite3.Error:
        return False
