"""
Record store for the IntakeFlow workflow engine.

Provides keyed CRUD access to every workflow entity on a SQLite database,
with conditional updates ("update only if current fields match") and explicit
transaction management. The store is the only shared mutable resource of the
engine; all components go through it.
"""

import logging
import os
import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Tuple

from models.errors import (
    WorkflowError,
    create_store_error,
    create_validation_error,
)
from models.status import AssignmentStatus

logger = logging.getLogger(__name__)

# Default database path relative to repository root
DEFAULT_DB_PATH = "data/intake.db"

DEFAULT_BUSY_TIMEOUT_SECONDS = 5.0

# entity type -> (table, allowed columns)
ENTITY_TABLES: Dict[str, Tuple[str, Tuple[str, ...]]] = {
    "user": (
        "users",
        (
            "id", "employee_id", "first_name", "last_name", "email", "role",
            "department", "tier", "capacity", "is_active", "created_at",
        ),
    ),
    "candidate": (
        "candidates",
        (
            "id", "first_name", "last_name", "email", "phone", "institution",
            "course", "preferred_department", "requested_duration_weeks",
            "application_number", "user_id", "created_at",
        ),
    ),
    "request": (
        "requests",
        (
            "id", "candidate_id", "status", "department", "submitted_by",
            "submitted_at", "reviewed_at", "reviewer_id", "review_comment",
            "final_approved_by", "final_approved_at", "updated_at",
        ),
    ),
    "batch": (
        "forwarded_batches",
        ("id", "department", "forwarded_by", "forwarded_to", "comment", "created_at", "updated_at"),
    ),
    "batch_candidate": (
        "batch_candidates",
        (
            "id", "batch_id", "position", "candidate_id", "request_id",
            "decision", "decided_by", "decided_at", "comment",
        ),
    ),
    "assignment": (
        "assignments",
        (
            "id", "request_id", "mentor_id", "status", "assigned_at",
            "assigned_by", "start_date", "end_date", "notes", "updated_at",
        ),
    ),
    "audit_entry": (
        "audit_entries",
        ("id", "entity_type", "entity_id", "action", "actor_id", "created_at", "before_json", "after_json"),
    ),
    "notification": (
        "notifications",
        ("id", "recipient_id", "title", "message", "priority", "is_read", "created_at"),
    ),
    "progress_report": (
        "progress_reports",
        (
            "id", "assignment_id", "submitted_by", "report_type", "title",
            "content", "progress_percentage", "created_at",
        ),
    ),
}

# Entity types that only ever receive inserts
APPEND_ONLY_ENTITIES = {"audit_entry"}

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS users (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    employee_id TEXT UNIQUE,
    first_name TEXT NOT NULL,
    last_name TEXT NOT NULL,
    email TEXT,
    role TEXT NOT NULL,
    department TEXT,
    tier TEXT,
    capacity INTEGER,
    is_active INTEGER NOT NULL DEFAULT 1,
    created_at TEXT
);
CREATE INDEX IF NOT EXISTS idx_users_role_department ON users(role, department);

CREATE TABLE IF NOT EXISTS candidates (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    first_name TEXT NOT NULL,
    last_name TEXT NOT NULL,
    email TEXT NOT NULL UNIQUE,
    phone TEXT,
    institution TEXT,
    course TEXT,
    preferred_department TEXT,
    requested_duration_weeks INTEGER,
    application_number TEXT UNIQUE,
    user_id INTEGER REFERENCES users(id),
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS requests (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    candidate_id INTEGER NOT NULL REFERENCES candidates(id),
    status TEXT NOT NULL,
    department TEXT NOT NULL,
    submitted_by INTEGER,
    submitted_at TEXT NOT NULL,
    reviewed_at TEXT,
    reviewer_id INTEGER,
    review_comment TEXT,
    final_approved_by INTEGER,
    final_approved_at TEXT,
    updated_at TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_requests_status ON requests(status);
CREATE UNIQUE INDEX IF NOT EXISTS idx_requests_open_candidate
    ON requests(candidate_id) WHERE status NOT IN ('REJECTED', 'COMPLETED');

CREATE TABLE IF NOT EXISTS forwarded_batches (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    department TEXT NOT NULL,
    forwarded_by INTEGER NOT NULL,
    forwarded_to INTEGER NOT NULL,
    comment TEXT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS batch_candidates (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    batch_id INTEGER NOT NULL REFERENCES forwarded_batches(id),
    position INTEGER NOT NULL,
    candidate_id INTEGER NOT NULL REFERENCES candidates(id),
    request_id INTEGER NOT NULL REFERENCES requests(id),
    decision TEXT,
    decided_by INTEGER,
    decided_at TEXT,
    comment TEXT,
    UNIQUE (batch_id, candidate_id),
    UNIQUE (batch_id, position)
);

CREATE TABLE IF NOT EXISTS assignments (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    request_id INTEGER NOT NULL REFERENCES requests(id),
    mentor_id INTEGER NOT NULL REFERENCES users(id),
    status TEXT NOT NULL,
    assigned_at TEXT NOT NULL,
    assigned_by INTEGER,
    start_date TEXT,
    end_date TEXT,
    notes TEXT,
    updated_at TEXT
);
CREATE UNIQUE INDEX IF NOT EXISTS idx_assignments_active_request
    ON assignments(request_id) WHERE status = 'ACTIVE';
CREATE INDEX IF NOT EXISTS idx_assignments_mentor_status ON assignments(mentor_id, status);

CREATE TABLE IF NOT EXISTS audit_entries (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    entity_type TEXT NOT NULL,
    entity_id INTEGER NOT NULL,
    action TEXT NOT NULL,
    actor_id INTEGER,
    created_at TEXT NOT NULL,
    before_json TEXT,
    after_json TEXT
);
CREATE INDEX IF NOT EXISTS idx_audit_entity ON audit_entries(entity_type, entity_id);
CREATE TRIGGER IF NOT EXISTS audit_entries_no_update BEFORE UPDATE ON audit_entries
BEGIN
    SELECT RAISE(ABORT, 'audit entries are append-only');
END;
CREATE TRIGGER IF NOT EXISTS audit_entries_no_delete BEFORE DELETE ON audit_entries
BEGIN
    SELECT RAISE(ABORT, 'audit entries are append-only');
END;

CREATE TABLE IF NOT EXISTS notifications (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    recipient_id INTEGER NOT NULL,
    title TEXT NOT NULL,
    message TEXT NOT NULL,
    priority TEXT NOT NULL DEFAULT 'MEDIUM',
    is_read INTEGER NOT NULL DEFAULT 0,
    created_at TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_notifications_recipient ON notifications(recipient_id);

CREATE TABLE IF NOT EXISTS progress_reports (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    assignment_id INTEGER NOT NULL REFERENCES assignments(id),
    submitted_by INTEGER NOT NULL,
    report_type TEXT NOT NULL,
    title TEXT NOT NULL,
    content TEXT NOT NULL,
    progress_percentage INTEGER NOT NULL,
    created_at TEXT NOT NULL
);
"""


def resolve_db_path(db_path: Optional[str] = None) -> Path:
    """
    Resolve the database path with support for overrides and defaults.

    Resolution order:
    1. Provided db_path parameter
    2. INTAKEFLOW_DB environment variable
    3. INTAKEFLOW_ROOT/data/intake.db
    4. Default path: data/intake.db

    Args:
        db_path: Optional database path override

    Returns:
        Resolved absolute Path to the database
    """
    if db_path is not None:
        path_str = db_path
    else:
        db_env = os.getenv("INTAKEFLOW_DB")
        if db_env:
            path_str = db_env
        else:
            root_env = os.getenv("INTAKEFLOW_ROOT")
            if root_env:
                return Path(root_env) / "data" / "intake.db"
            path_str = DEFAULT_DB_PATH

    path = Path(path_str)

    # If relative, resolve from repository root
    if not path.is_absolute():
        repo_root = Path(__file__).resolve().parents[1]  # db/ -> repo/
        path = repo_root / path

    return path


def bootstrap_schema(conn: sqlite3.Connection) -> None:
    """
    Create all workflow tables, indexes and triggers if they don't exist.

    This operation is idempotent - safe to call on existing databases.

    Raises:
        WorkflowError: If schema creation fails
    """
    try:
        conn.executescript(SCHEMA_SQL)
    except sqlite3.Error as e:
        raise create_store_error(
            f"Failed to bootstrap schema: {str(e)}", retryable=_is_locked(e), original_error=e
        ) from e


def _is_locked(error: sqlite3.Error) -> bool:
    message = str(error).lower()
    return "locked" in message or "busy" in message


def _map_sqlite_error(error: sqlite3.Error):
    if isinstance(error, sqlite3.IntegrityError):
        return create_validation_error(f"Conflicting record: {str(error)}")
    return create_store_error(str(error), retryable=_is_locked(error), original_error=error)


def _build_where(filters: Dict[str, Any]) -> Tuple[str, List[Any]]:
    """
    Build a parameterized WHERE clause from field filters.

    A None value matches NULL, a list/tuple/set/frozenset matches any member,
    anything else matches by equality.
    """
    clauses: List[str] = []
    params: List[Any] = []
    for column, value in filters.items():
        if value is None:
            clauses.append(f"{column} IS NULL")
        elif isinstance(value, (list, tuple, set, frozenset)):
            values = list(value)
            if not values:
                clauses.append("0")
                continue
            placeholders = ",".join("?" * len(values))
            clauses.append(f"{column} IN ({placeholders})")
            params.extend(values)
        else:
            clauses.append(f"{column} = ?")
            params.append(value)
    return " AND ".join(clauses), params


class RecordStore:
    """
    Context manager for reads and conditional writes on the workflow database.

    Reads run outside of a transaction. Writes must run inside ``begin()`` /
    ``commit()`` (or the ``transaction()`` helper), which takes the SQLite
    write lock up front with ``BEGIN IMMEDIATE``.

    Usage:
        with RecordStore(db_path) as store:
            request = store.get("request", 1)
            with store.transaction():
                if not store.update_where("request", 1, {"status": "SUBMITTED"},
                                          {"status": "UNDER_REVIEW"}):
                    ...
    """

    def __init__(self, db_path: Optional[str] = None, busy_timeout: Optional[float] = None):
        """
        Initialize store with database path.

        Args:
            db_path: Optional database path override
            busy_timeout: Seconds to wait for the write lock
        """
        self.db_path = db_path
        self.busy_timeout = busy_timeout if busy_timeout is not None else DEFAULT_BUSY_TIMEOUT_SECONDS
        self.resolved_path: Optional[Path] = None
        self.conn: Optional[sqlite3.Connection] = None
        self._in_transaction = False

    def __enter__(self):
        """
        Open connection and ensure schema.

        Returns:
            self: The RecordStore instance

        Raises:
            WorkflowError: If the database cannot be opened
        """
        self.resolved_path = resolve_db_path(self.db_path)

        try:
            self.resolved_path.parent.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise create_store_error(
                f"Failed to create parent directories: {str(e)}", original_error=e
            ) from e

        try:
            # Autocommit mode; transactions are explicit
            self.conn = sqlite3.connect(
                str(self.resolved_path),
                timeout=self.busy_timeout,
                isolation_level=None,
            )
            self.conn.row_factory = sqlite3.Row
            self.conn.execute("PRAGMA foreign_keys = ON")

            bootstrap_schema(self.conn)

            return self

        except sqlite3.Error as e:
            if self.conn is not None:
                self.conn.close()
                self.conn = None
            raise create_store_error(str(e), retryable=_is_locked(e), original_error=e) from e

        except WorkflowError:
            self.conn.close()
            self.conn = None
            raise

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Rollback on exception, close connection always."""
        try:
            if exc_type is not None and self._in_transaction:
                self.rollback()
        finally:
            if self.conn is not None:
                self.conn.close()
                self.conn = None

        return False

    def _require_conn(self) -> sqlite3.Connection:
        if self.conn is None:
            raise create_store_error("Connection not established", retryable=False)
        return self.conn

    @staticmethod
    def _table(entity_type: str) -> Tuple[str, Tuple[str, ...]]:
        try:
            return ENTITY_TABLES[entity_type]
        except KeyError:
            raise create_store_error(f"Unknown entity type: {entity_type}") from None

    @staticmethod
    def _check_columns(entity_type: str, columns, allowed: Tuple[str, ...]) -> None:
        unknown = [c for c in columns if c not in allowed]
        if unknown:
            raise create_store_error(
                f"Unknown field(s) for {entity_type}: {', '.join(sorted(unknown))}"
            )

    # ------------------------------------------------------------------
    # Transactions
    # ------------------------------------------------------------------

    def begin(self) -> None:
        """
        Begin a write transaction, acquiring the write lock immediately.

        Raises:
            WorkflowError: STORE_ERROR (retryable) if the lock cannot be taken
        """
        conn = self._require_conn()
        if self._in_transaction:
            return
        try:
            conn.execute("BEGIN IMMEDIATE")
            self._in_transaction = True
        except sqlite3.Error as e:
            raise create_store_error(
                f"Failed to begin transaction: {str(e)}", retryable=_is_locked(e), original_error=e
            ) from e

    def commit(self) -> None:
        """
        Commit the transaction.

        Raises:
            WorkflowError: If commit fails
        """
        conn = self._require_conn()
        if not self._in_transaction:
            return
        try:
            conn.execute("COMMIT")
            self._in_transaction = False
        except sqlite3.Error as e:
            raise create_store_error(
                f"Failed to commit transaction: {str(e)}", retryable=True, original_error=e
            ) from e

    def rollback(self) -> None:
        """
        Rollback the transaction.

        Does not raise: rollback is called during error handling and the
        original error is the one worth propagating.
        """
        if self.conn is None or not self._in_transaction:
            return
        try:
            self.conn.execute("ROLLBACK")
        except sqlite3.Error as e:
            logger.warning("Rollback failed: %s", e)
        finally:
            self._in_transaction = False

    @contextmanager
    def transaction(self) -> Iterator["RecordStore"]:
        """Run the block in one write transaction; roll back on any exception."""
        self.begin()
        try:
            yield self
        except BaseException:
            self.rollback()
            raise
        self.commit()

    @property
    def in_transaction(self) -> bool:
        return self._in_transaction

    # ------------------------------------------------------------------
    # CRUD
    # ------------------------------------------------------------------

    def get(self, entity_type: str, entity_id: int) -> Optional[Dict[str, Any]]:
        """
        Fetch one record by id.

        Returns:
            Record as a dict, or None when no row has that id
        """
        conn = self._require_conn()
        table, _ = self._table(entity_type)
        try:
            row = conn.execute(f"SELECT * FROM {table} WHERE id = ?", (entity_id,)).fetchone()
        except sqlite3.Error as e:
            raise _map_sqlite_error(e) from e
        return dict(row) if row is not None else None

    def create(self, entity_type: str, data: Dict[str, Any]) -> Dict[str, Any]:
        """
        Insert one record.

        Args:
            entity_type: Entity type key (see ENTITY_TABLES)
            data: Column values; id is assigned by the store

        Returns:
            The stored record including its id

        Raises:
            WorkflowError: VALIDATION_ERROR on constraint violations,
                STORE_ERROR on other database failures
        """
        conn = self._require_conn()
        table, allowed = self._table(entity_type)
        self._check_columns(entity_type, data.keys(), allowed)

        columns = list(data.keys())
        placeholders = ",".join("?" * len(columns))
        query = f"INSERT INTO {table} ({', '.join(columns)}) VALUES ({placeholders})"
        try:
            cursor = conn.execute(query, [data[c] for c in columns])
        except sqlite3.Error as e:
            raise _map_sqlite_error(e) from e

        record = dict(data)
        record["id"] = cursor.lastrowid
        return self.get(entity_type, cursor.lastrowid) or record

    def update_where(
        self,
        entity_type: str,
        entity_id: int,
        expected: Dict[str, Any],
        new_fields: Dict[str, Any],
    ) -> bool:
        """
        Conditionally update one record.

        The update applies only if the record's current values match
        ``expected`` (same matching rules as ``list`` filters).

        Returns:
            True if exactly one row was updated, False if the record is
            missing or its current values no longer match
        """
        conn = self._require_conn()
        table, allowed = self._table(entity_type)
        if entity_type in APPEND_ONLY_ENTITIES:
            raise create_store_error(f"{entity_type} records are append-only")
        self._check_columns(entity_type, expected.keys(), allowed)
        self._check_columns(entity_type, new_fields.keys(), allowed)
        if not new_fields:
            raise create_store_error("update_where requires at least one field to set")

        set_clause = ", ".join(f"{c} = ?" for c in new_fields)
        params: List[Any] = list(new_fields.values())
        where = "id = ?"
        params.append(entity_id)
        if expected:
            extra, extra_params = _build_where(expected)
            where = f"{where} AND {extra}"
            params.extend(extra_params)

        try:
            cursor = conn.execute(f"UPDATE {table} SET {set_clause} WHERE {where}", params)
        except sqlite3.Error as e:
            raise _map_sqlite_error(e) from e
        return cursor.rowcount == 1

    def list(
        self,
        entity_type: str,
        filters: Optional[Dict[str, Any]] = None,
        order_by: str = "id",
    ) -> List[Dict[str, Any]]:
        """
        List records matching all filters, ordered by a column (ascending).
        """
        conn = self._require_conn()
        table, allowed = self._table(entity_type)
        filters = filters or {}
        self._check_columns(entity_type, filters.keys(), allowed)
        self._check_columns(entity_type, [order_by], allowed)

        query = f"SELECT * FROM {table}"
        params: List[Any] = []
        if filters:
            where, params = _build_where(filters)
            query += f" WHERE {where}"
        query += f" ORDER BY {order_by} ASC, id ASC"

        try:
            rows = conn.execute(query, params).fetchall()
        except sqlite3.Error as e:
            raise _map_sqlite_error(e) from e
        return [dict(row) for row in rows]

    def count(self, entity_type: str, filters: Optional[Dict[str, Any]] = None) -> int:
        conn = self._require_conn()
        table, allowed = self._table(entity_type)
        filters = filters or {}
        self._check_columns(entity_type, filters.keys(), allowed)

        query = f"SELECT COUNT(*) FROM {table}"
        params: List[Any] = []
        if filters:
            where, params = _build_where(filters)
            query += f" WHERE {where}"
        try:
            return conn.execute(query, params).fetchone()[0]
        except sqlite3.Error as e:
            raise _map_sqlite_error(e) from e

    # ------------------------------------------------------------------
    # Mentor capacity
    # ------------------------------------------------------------------

    def list_mentor_loads(self, department: str) -> List[Dict[str, Any]]:
        """
        List active mentors of a department with their ACTIVE assignment count.

        Returns:
            Dicts with id, employee_id, first_name, last_name, tier, capacity
            (raw, may be None) and active_count
        """
        conn = self._require_conn()
        query = """
            SELECT u.id, u.employee_id, u.first_name, u.last_name, u.tier, u.capacity,
                   (SELECT COUNT(*) FROM assignments a
                     WHERE a.mentor_id = u.id AND a.status = ?) AS active_count
            FROM users u
            WHERE u.role = 'MENTOR' AND u.is_active = 1 AND u.department = ?
            ORDER BY u.id ASC
        """
        try:
            rows = conn.execute(query, (AssignmentStatus.ACTIVE.value, department)).fetchall()
        except sqlite3.Error as e:
            raise _map_sqlite_error(e) from e
        return [dict(row) for row in rows]

    def insert_assignment_within_capacity(
        self,
        request_id: int,
        mentor_id: int,
        capacity: int,
        assigned_at: str,
        assigned_by: Optional[int] = None,
        notes: Optional[str] = None,
    ) -> Optional[Dict[str, Any]]:
        """
        Insert an ACTIVE assignment only if the mentor is still under capacity.

        The capacity check and the insert are one statement, so two
        allocations racing for the last slot cannot both succeed.

        Returns:
            The created assignment, or None if the mentor was already full
        """
        conn = self._require_conn()
        query = """
            INSERT INTO assignments (
                request_id, mentor_id, status, assigned_at, assigned_by, notes, updated_at
            )
            SELECT ?, ?, ?, ?, ?, ?, ?
            WHERE (SELECT COUNT(*) FROM assignments
                    WHERE mentor_id = ? AND status = ?) < ?
        """
        active = AssignmentStatus.ACTIVE.value
        try:
            cursor = conn.execute(
                query,
                (
                    request_id, mentor_id, active, assigned_at, assigned_by, notes, assigned_at,
                    mentor_id, active, capacity,
                ),
            )
        except sqlite3.Error as e:
            raise _map_sqlite_error(e) from e

        if cursor.rowcount != 1:
            return None
        return self.get("assignment", cursor.lastrowid)
