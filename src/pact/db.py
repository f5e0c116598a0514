from __future__ import annotations

import sqlite3
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from .settings import settings

# app_state key holding the highest atom sequence number ever handed out.
ATOM_SEQUENCE_KEY = "atom_sequence"

# Columns an atom UPDATE may touch. row_version and updated_at are managed here.
ATOM_COLUMNS = (
    "description",
    "category",
    "status",
    "quality_score",
    "intent_identity",
    "intent_version",
    "superseded_by",
    "parent_intent",
    "change_set_id",
    "tags",
    "observable_outcomes",
    "falsifiability_criteria",
    "refinement_history",
    "created_by",
    "committed_at",
    "promoted_to_main_at",
)


class Database:
    """Local SQLite database for atoms, molecules, audit log and events."""

    def __init__(self, db_path: Path | None = None) -> None:
        self.db_path = db_path or settings.db_path
        self._local = threading.local()

    def connect(self) -> sqlite3.Connection:
        """Open or return an existing connection."""
        conn = getattr(self._local, "conn", None)
        if conn is not None:
            return conn
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(
            str(self.db_path),
            timeout=5.0,
            check_same_thread=False,
        )
        conn.row_factory = sqlite3.Row
        # Enforce ON DELETE RESTRICT for molecule membership
        conn.execute("PRAGMA foreign_keys = ON")
        self._local.conn = conn
        return conn

    def close(self) -> None:
        """Close the database connection."""
        conn = getattr(self._local, "conn", None)
        if conn is not None:
            conn.close()
            self._local.conn = None

    def _execute(self, query: str, params: tuple[object, ...] | None = None) -> sqlite3.Cursor:
        """Execute a query and return the cursor."""
        conn = self.connect()
        if params is None:
            return conn.execute(query)
        return conn.execute(query, params)

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """Run a block under a write lock (BEGIN IMMEDIATE).

        Nested use joins the outer transaction; only the outermost block
        commits or rolls back.
        """
        conn = self.connect()
        if conn.in_transaction:
            yield conn
            return
        conn.execute("BEGIN IMMEDIATE")
        try:
            yield conn
        except BaseException:
            conn.rollback()
            raise
        else:
            conn.commit()

    def migrate(self) -> None:
        """Create tables if they don't exist."""
        conn = self.connect()

        # Atoms: the governed catalog. human_seq backs the IA-NNN identifier.
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS atoms (
                id TEXT PRIMARY KEY,
                human_seq INTEGER NOT NULL UNIQUE,
                human_id TEXT NOT NULL UNIQUE,
                description TEXT NOT NULL,
                category TEXT NOT NULL,
                status TEXT NOT NULL,
                quality_score REAL,
                intent_identity TEXT,
                intent_version INTEGER NOT NULL DEFAULT 1,
                superseded_by TEXT,
                parent_intent TEXT,
                change_set_id TEXT,
                tags TEXT NOT NULL DEFAULT '[]',
                observable_outcomes TEXT NOT NULL DEFAULT '[]',
                falsifiability_criteria TEXT NOT NULL DEFAULT '[]',
                refinement_history TEXT NOT NULL DEFAULT '[]',
                created_by TEXT,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL,
                committed_at TEXT,
                promoted_to_main_at TEXT,
                row_version INTEGER NOT NULL DEFAULT 1,
                UNIQUE (intent_identity, intent_version),
                CHECK ((superseded_by IS NULL) = (status != 'superseded'))
            )
            """
        )

        # Molecules group atoms; membership must be removed before an atom is.
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS molecules (
                id TEXT PRIMARY KEY,
                name TEXT NOT NULL,
                created_at TEXT NOT NULL
            )
            """
        )
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS molecule_atoms (
                molecule_id TEXT NOT NULL,
                atom_id TEXT NOT NULL,
                added_at TEXT NOT NULL,
                PRIMARY KEY (molecule_id, atom_id),
                FOREIGN KEY (molecule_id) REFERENCES molecules(id) ON DELETE CASCADE,
                FOREIGN KEY (atom_id) REFERENCES atoms(id) ON DELETE RESTRICT
            )
            """
        )

        # Events table: metadata-only error and diagnostics records.
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS events (
                id TEXT PRIMARY KEY,
                source TEXT NOT NULL,
                kind TEXT,
                ts TEXT NOT NULL,
                payload_metadata TEXT,
                note TEXT,
                created_at TEXT NOT NULL,
                ingested_at TEXT NOT NULL
            )
            """
        )

        # Audit log: all mutations with context (for transparency + replay).
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS audit_log (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                action TEXT NOT NULL,
                resource_type TEXT,
                resource_id TEXT,
                before_state TEXT,
                after_state TEXT,
                timestamp TEXT NOT NULL
            )
            """
        )

        # App state: small key/value store (atom sequence high-water mark).
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS app_state (
                key TEXT PRIMARY KEY,
                value TEXT,
                updated_at TEXT NOT NULL
            )
            """
        )

        conn.execute("CREATE INDEX IF NOT EXISTS idx_atoms_status ON atoms(status)")
        conn.execute(
            "CREATE INDEX IF NOT EXISTS idx_atoms_intent_identity ON atoms(intent_identity)"
        )
        conn.execute(
            "CREATE INDEX IF NOT EXISTS idx_atoms_change_set_id ON atoms(change_set_id)"
        )
        conn.execute(
            "CREATE INDEX IF NOT EXISTS idx_molecule_atoms_atom_id ON molecule_atoms(atom_id)"
        )

        conn.commit()

    # ------------------------------------------------------------------
    # App state
    # ------------------------------------------------------------------

    def set_state(self, *, key: str, value: str | None) -> None:
        """Set a small piece of app state."""
        now = datetime.now(UTC).isoformat()
        with self.transaction():
            self._execute(
                """
                INSERT INTO app_state (key, value, updated_at)
                VALUES (?, ?, ?)
                ON CONFLICT(key) DO UPDATE SET value = excluded.value, updated_at = excluded.updated_at
                """,
                (key, value, now),
            )

    def get_state(self, *, key: str) -> str | None:
        """Get a small piece of app state."""
        row = self._execute("SELECT value FROM app_state WHERE key = ?", (key,)).fetchone()
        if row is None:
            return None
        return row["value"]

    # ------------------------------------------------------------------
    # Atoms
    # ------------------------------------------------------------------

    def allocate_atom_sequence(self) -> int:
        """Reserve the next atom sequence number.

        Must run inside `transaction()`: the write lock taken by BEGIN
        IMMEDIATE serializes concurrent creators. The high-water mark lives
        in app_state, so numbers of deleted drafts are never handed out again.
        """
        row = self._execute("SELECT MAX(human_seq) AS max_seq FROM atoms").fetchone()
        max_seq = int(row["max_seq"]) if row is not None and row["max_seq"] is not None else 0
        stored = self.get_state(key=ATOM_SEQUENCE_KEY)
        high_water = int(stored) if stored else 0
        next_seq = max(max_seq, high_water) + 1
        self._execute(
            """
            INSERT INTO app_state (key, value, updated_at)
            VALUES (?, ?, ?)
            ON CONFLICT(key) DO UPDATE SET value = excluded.value, updated_at = excluded.updated_at
            """,
            (ATOM_SEQUENCE_KEY, str(next_seq), datetime.now(UTC).isoformat()),
        )
        return next_seq

    def insert_atom(self, *, record: dict[str, Any]) -> None:
        """Insert a fully-formed atom row. `record` keys are column names."""
        columns = list(record.keys())
        placeholders = ", ".join("?" for _ in columns)
        with self.transaction():
            self._execute(
                f"INSERT INTO atoms ({', '.join(columns)}) VALUES ({placeholders})",
                tuple(record[c] for c in columns),
            )

    def get_atom(self, *, atom_id: str) -> dict[str, object] | None:
        row = self._execute("SELECT * FROM atoms WHERE id = ?", (atom_id,)).fetchone()
        return dict(row) if row is not None else None

    def get_atom_by_human_id(self, *, human_id: str) -> dict[str, object] | None:
        row = self._execute("SELECT * FROM atoms WHERE human_id = ?", (human_id,)).fetchone()
        return dict(row) if row is not None else None

    def iter_atoms(
        self,
        *,
        status: str | None = None,
        category: str | None = None,
        intent_identity: str | None = None,
        change_set_id: str | None = None,
    ) -> list[dict[str, object]]:
        """Return atoms in catalog order (ascending human id)."""
        clauses: list[str] = []
        params: list[object] = []
        for column, value in (
            ("status", status),
            ("category", category),
            ("intent_identity", intent_identity),
            ("change_set_id", change_set_id),
        ):
            if value is not None:
                clauses.append(f"{column} = ?")
                params.append(value)
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        rows = self._execute(
            f"SELECT * FROM atoms {where} ORDER BY human_seq ASC",
            tuple(params),
        ).fetchall()
        return [dict(row) for row in rows]

    def count_atoms(self) -> int:
        row = self._execute("SELECT COUNT(*) AS n FROM atoms").fetchone()
        return int(row["n"]) if row is not None else 0

    def update_atom(
        self,
        *,
        atom_id: str,
        changes: dict[str, Any],
        expected_version: int,
    ) -> bool:
        """Apply `changes` if the row still carries `expected_version`.

        Returns False when another writer got there first (optimistic
        concurrency); the caller decides how to surface that.
        """
        unknown = set(changes) - set(ATOM_COLUMNS)
        if unknown:
            raise ValueError(f"Not updatable atom columns: {sorted(unknown)}")

        assignments = [f"{column} = ?" for column in changes]
        assignments.append("updated_at = ?")
        assignments.append("row_version = row_version + 1")
        params = [*changes.values(), datetime.now(UTC).isoformat(), atom_id, expected_version]

        with self.transaction():
            cursor = self._execute(
                f"UPDATE atoms SET {', '.join(assignments)} WHERE id = ? AND row_version = ?",
                tuple(params),
            )
        return cursor.rowcount == 1

    def delete_atom(self, *, atom_id: str) -> None:
        with self.transaction():
            self._execute("DELETE FROM atoms WHERE id = ?", (atom_id,))

    # ------------------------------------------------------------------
    # Molecules
    # ------------------------------------------------------------------

    def insert_molecule(self, *, molecule_id: str, name: str) -> None:
        now = datetime.now(UTC).isoformat()
        with self.transaction():
            self._execute(
                "INSERT INTO molecules (id, name, created_at) VALUES (?, ?, ?)",
                (molecule_id, name, now),
            )

    def add_molecule_atom(self, *, molecule_id: str, atom_id: str) -> None:
        now = datetime.now(UTC).isoformat()
        with self.transaction():
            self._execute(
                """
                INSERT OR IGNORE INTO molecule_atoms (molecule_id, atom_id, added_at)
                VALUES (?, ?, ?)
                """,
                (molecule_id, atom_id, now),
            )

    def iter_molecule_ids_for_atom(self, *, atom_id: str) -> list[str]:
        rows = self._execute(
            "SELECT molecule_id FROM molecule_atoms WHERE atom_id = ? ORDER BY molecule_id",
            (atom_id,),
        ).fetchall()
        return [str(row["molecule_id"]) for row in rows]

    def delete_molecule_memberships(self, *, atom_id: str) -> int:
        with self.transaction():
            cursor = self._execute("DELETE FROM molecule_atoms WHERE atom_id = ?", (atom_id,))
        return cursor.rowcount

    # ------------------------------------------------------------------
    # Audit log + events
    # ------------------------------------------------------------------

    def insert_audit(
        self,
        *,
        action: str,
        resource_type: str,
        resource_id: str,
        before_state: str | None,
        after_state: str | None,
    ) -> None:
        now = datetime.now(UTC).isoformat()
        with self.transaction():
            self._execute(
                """
                INSERT INTO audit_log
                (action, resource_type, resource_id, before_state, after_state, timestamp)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (action, resource_type, resource_id, before_state, after_state, now),
            )

    def iter_audit_log(self, *, resource_id: str | None = None) -> list[dict[str, object]]:
        if resource_id is None:
            rows = self._execute("SELECT * FROM audit_log ORDER BY id ASC").fetchall()
        else:
            rows = self._execute(
                "SELECT * FROM audit_log WHERE resource_id = ? ORDER BY id ASC",
                (resource_id,),
            ).fetchall()
        return [dict(row) for row in rows]

    def insert_event(
        self,
        event_id: str,
        source: str,
        kind: str | None,
        ts: str,
        payload_metadata: str | None,
        note: str | None,
    ) -> None:
        """Insert an event into the database."""
        now = datetime.now(UTC).isoformat()
        with self.transaction():
            self._execute(
                """
                INSERT INTO events
                (id, source, kind, ts, payload_metadata, note, created_at, ingested_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (event_id, source, kind, ts, payload_metadata, note, now, now),
            )

    def iter_events_recent(self, limit: int | None = None) -> list[dict[str, object]]:
        """Retrieve recent events from the database."""
        if limit is None:
            limit = 1000

        rows = self._execute(
            "SELECT * FROM events ORDER BY ts DESC LIMIT ?",
            (limit,),
        ).fetchall()

        return [dict(row) for row in rows]


_db_instance: Database | None = None


def get_db() -> Database:
    """Get or create the global database instance."""
    global _db_instance
    if _db_instance is None:
        _db_instance = Database()
        _db_instance.migrate()
    return _db_instance
