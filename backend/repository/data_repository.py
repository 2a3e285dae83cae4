"""Repository layer responsible for all database access."""

from __future__ import annotations

import json
import sqlite3
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Iterator, Optional, Sequence

from backend.domain.constraints import validate_resource, validate_venue
from backend.domain.models import (
    ApprovalAction,
    ApprovalStage,
    ApprovalStep,
    AuditEntry,
    BookingStatus,
    Event,
    EventStatus,
    Notification,
    Resource,
    ResourceBooking,
    ResourceRequest,
    Role,
    User,
    Venue,
    VenueBooking,
)
from backend.utils.config import Settings, get_settings
from backend.utils.logger import fields, get_logger


logger = get_logger(__name__)

_TIMESTAMP_FORMAT = "%Y-%m-%dT%H:%M:%S.%f"

# SQLite serializes writers once a RESERVED lock is held, so taking it up
# front with BEGIN IMMEDIATE gives serializable read-then-write behaviour.
_BEGIN_MODES = {
    "SERIALIZABLE": "IMMEDIATE",
    "READ_COMMITTED": "DEFERRED",
}

_ACTIVE_BOOKING_STATUSES = (BookingStatus.CONFIRMED.value, BookingStatus.PROVISIONAL.value)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def to_db_timestamp(value: datetime) -> str:
    """Fixed-width UTC text so lexical order equals chronological order."""
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value.strftime(_TIMESTAMP_FORMAT)


def from_db_timestamp(raw: str) -> datetime:
    return datetime.strptime(raw, _TIMESTAMP_FORMAT).replace(tzinfo=timezone.utc)


class Savepoint:
    """Nested rollback scope inside a :class:`Transaction`."""

    def __init__(self, transaction: "Transaction", name: str) -> None:
        self._transaction = transaction
        self._name = name
        self._callback_mark = 0
        self.rolled_back = False

    def __enter__(self) -> "Savepoint":
        self._transaction.connection.execute(f"SAVEPOINT {self._name};")
        self._callback_mark = len(self._transaction._after_commit)
        return self

    def rollback(self) -> None:
        """Undo every write since the savepoint; the transaction itself stays open."""
        self._transaction.connection.execute(f"ROLLBACK TO SAVEPOINT {self._name};")
        del self._transaction._after_commit[self._callback_mark:]
        self.rolled_back = True

    def __exit__(self, exc_type, exc_val, exc_tb) -> bool:
        if exc_type is not None and not self.rolled_back:
            self.rollback()
        self._transaction.connection.execute(f"RELEASE SAVEPOINT {self._name};")
        return False


class Transaction:
    """Explicit handle to one open database transaction.

    Services pass the same instance through every nested call so that
    approval, allocation and ledger writes share one atomic scope.
    """

    def __init__(self, connection: sqlite3.Connection, isolation_level: str) -> None:
        self.connection = connection
        self.isolation_level = isolation_level
        self._after_commit: list[Callable[[], None]] = []
        self._savepoint_counter = 0

    def savepoint(self, label: str = "sp") -> Savepoint:
        self._savepoint_counter += 1
        return Savepoint(self, f"{label}_{self._savepoint_counter}")

    def after_commit(self, callback: Callable[[], None]) -> None:
        """Queue ``callback`` to run once the transaction commits; dropped on rollback."""
        self._after_commit.append(callback)

    def _run_after_commit(self) -> None:
        callbacks, self._after_commit = self._after_commit, []
        for callback in callbacks:
            try:
                callback()
            except Exception:
                logger.exception("After-commit callback failed")


class DataRepository:
    """Encapsulates SQLite access so business logic stays storage-agnostic."""

    def __init__(self, settings: Optional[Settings] = None) -> None:
        self._settings = settings or get_settings()
        self._db_path = Path(self._settings.database_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)

    @property
    def database_path(self) -> Path:
        return self._db_path

    def _connect(self) -> sqlite3.Connection:
        connection = sqlite3.connect(
            self._db_path,
            timeout=self._settings.database_busy_timeout_seconds,
            isolation_level=None,
        )
        connection.row_factory = sqlite3.Row
        connection.execute("PRAGMA foreign_keys = ON;")
        return connection

    @contextmanager
    def transaction(
        self,
        isolation_level: Optional[str] = None,
    ) -> Iterator[Transaction]:
        """Open a transaction; commit on clean exit, roll back on any exception."""
        level = (isolation_level or self._settings.database_isolation_level).upper()
        if level not in _BEGIN_MODES:
            raise ValueError(f"Unsupported isolation level: {level}")
        connection = self._connect()
        tx = Transaction(connection, level)
        try:
            connection.execute(f"BEGIN {_BEGIN_MODES[level]};")
            yield tx
            connection.execute("COMMIT;")
        except BaseException:
            if connection.in_transaction:
                connection.execute("ROLLBACK;")
            raise
        finally:
            connection.close()
        tx._run_after_commit()

    @contextmanager
    def _session(self, tx: Optional[Transaction]) -> Iterator[sqlite3.Connection]:
        if tx is not None:
            yield tx.connection
            return
        with self.transaction() as own:
            yield own.connection

    # ------------------------------------------------------------------
    # Schema and seed data
    # ------------------------------------------------------------------

    def initialize_database(self) -> None:
        """Create all persistence artifacts before API startup."""
        try:
            connection = self._connect()
            try:
                connection.executescript(_SCHEMA_SQL)
            finally:
                connection.close()
            logger.info("Database initialized at %s", self._db_path)
        except sqlite3.Error as exc:
            raise RuntimeError(f"Database initialization failed: {exc}") from exc

    def seed_demo_data(self) -> int:
        """Seed a small institution only when no users exist. Returns rows created."""
        try:
            with self.transaction() as tx:
                cursor = tx.connection.cursor()
                cursor.execute("SELECT COUNT(*) AS count FROM Users;")
                if int(cursor.fetchone()["count"]) > 0:
                    logger.info("Demo data already present; skipping seed")
                    return 0

                school_id = self.create_school("School of Engineering", "SOE", tx=tx)
                cs_id = self.create_department(school_id, "Computer Science", "CSE", tx=tx)
                me_id = self.create_department(school_id, "Mechanical Engineering", "MECH", tx=tx)
                users = [
                    ("Asha", "Rao", "coordinator@campus.edu", Role.COORDINATOR, school_id, cs_id),
                    ("Vikram", "Iyer", "hod.cse@campus.edu", Role.HOD, school_id, cs_id),
                    ("Meera", "Nair", "hod.mech@campus.edu", Role.HOD, school_id, me_id),
                    ("Rahul", "Menon", "dean.soe@campus.edu", Role.DEAN, school_id, None),
                    ("Latha", "Krishnan", "head@campus.edu", Role.INSTITUTIONAL_HEAD, None, None),
                ]
                for first_name, last_name, email, role, user_school, user_department in users:
                    self.create_user(
                        first_name=first_name,
                        last_name=last_name,
                        email=email,
                        role=role,
                        school_id=user_school,
                        department_id=user_department,
                        tx=tx,
                    )
                venues = [
                    ("Conference Room 1", "conference", 20, "Admin Block"),
                    ("Seminar Hall A", "seminar", 60, "Block 1"),
                    ("Seminar Hall B", "seminar", 80, "Block 2"),
                    ("Main Auditorium", "auditorium", 400, "Central Block"),
                    ("Computing Lab 3", "lab", 40, "Block 3"),
                ]
                for name, venue_type, capacity, location in venues:
                    self.create_venue(name, venue_type, capacity, location, tx=tx)
                resources = [
                    ("Chairs", "furniture", 300, "piece"),
                    ("Wireless Microphones", "audio", 12, "unit"),
                    ("Projectors", "av", 6, "unit"),
                    ("Extension Boards", "electrical", 25, "piece"),
                ]
                for name, category, total_quantity, unit in resources:
                    self.create_resource(name, category, total_quantity, unit, tx=tx)
                created = 1 + 2 + len(users) + len(venues) + len(resources)
            logger.info("Demo seed completed with %s records", created)
            return created
        except sqlite3.Error as exc:
            raise RuntimeError(f"Demo data seeding failed: {exc}") from exc

    # ------------------------------------------------------------------
    # Organisation and users
    # ------------------------------------------------------------------

    def create_school(self, name: str, code: str, tx: Optional[Transaction] = None) -> int:
        with self._session(tx) as conn:
            cursor = conn.execute(
                "INSERT INTO Schools (name, code) VALUES (?, ?);",
                (name, code),
            )
            return int(cursor.lastrowid)

    def create_department(
        self,
        school_id: int,
        name: str,
        code: str,
        tx: Optional[Transaction] = None,
    ) -> int:
        with self._session(tx) as conn:
            cursor = conn.execute(
                "INSERT INTO Departments (school_id, name, code) VALUES (?, ?, ?);",
                (school_id, name, code),
            )
            return int(cursor.lastrowid)

    def create_user(
        self,
        *,
        first_name: str,
        last_name: str,
        email: str,
        role: Role,
        school_id: Optional[int] = None,
        department_id: Optional[int] = None,
        is_active: bool = True,
        tx: Optional[Transaction] = None,
    ) -> int:
        with self._session(tx) as conn:
            cursor = conn.execute(
                """
                INSERT INTO Users (
                    first_name, last_name, email, role, school_id, department_id, is_active
                )
                VALUES (?, ?, ?, ?, ?, ?, ?);
                """,
                (
                    first_name,
                    last_name,
                    email,
                    role.value,
                    school_id,
                    department_id,
                    int(is_active),
                ),
            )
            return int(cursor.lastrowid)

    def get_user(self, user_id: int, tx: Optional[Transaction] = None) -> Optional[User]:
        with self._session(tx) as conn:
            row = conn.execute("SELECT * FROM Users WHERE id = ?;", (user_id,)).fetchone()
            return _row_to_user(row) if row is not None else None

    def list_active_users_by_role(
        self,
        role: Role,
        *,
        school_id: Optional[int] = None,
        department_id: Optional[int] = None,
        tx: Optional[Transaction] = None,
    ) -> list[User]:
        clauses = ["role = ?", "is_active = 1"]
        params: list[Any] = [role.value]
        if school_id is not None:
            clauses.append("school_id = ?")
            params.append(school_id)
        if department_id is not None:
            clauses.append("department_id = ?")
            params.append(department_id)
        with self._session(tx) as conn:
            rows = conn.execute(
                f"SELECT * FROM Users WHERE {' AND '.join(clauses)} ORDER BY id ASC;",
                tuple(params),
            ).fetchall()
            return [_row_to_user(row) for row in rows]

    # ------------------------------------------------------------------
    # Venues and resources
    # ------------------------------------------------------------------

    def create_venue(
        self,
        name: str,
        venue_type: str,
        capacity: int,
        location: str = "",
        *,
        is_active: bool = True,
        maintenance_mode: bool = False,
        tx: Optional[Transaction] = None,
    ) -> int:
        validate_venue(capacity, name, venue_type)
        with self._session(tx) as conn:
            cursor = conn.execute(
                """
                INSERT INTO Venues (name, venue_type, capacity, location, is_active, maintenance_mode)
                VALUES (?, ?, ?, ?, ?, ?);
                """,
                (name, venue_type, capacity, location, int(is_active), int(maintenance_mode)),
            )
            return int(cursor.lastrowid)

    def list_candidate_venues(
        self,
        min_capacity: int,
        venue_type: Optional[str] = None,
        tx: Optional[Transaction] = None,
    ) -> list[Venue]:
        """Active, non-maintenance venues large enough, smallest first then by name."""
        query = """
            SELECT * FROM Venues
            WHERE is_active = 1
              AND maintenance_mode = 0
              AND capacity >= ?
        """
        params: list[Any] = [min_capacity]
        if venue_type is not None:
            query += " AND venue_type = ?"
            params.append(venue_type)
        query += " ORDER BY capacity ASC, name ASC;"
        with self._session(tx) as conn:
            rows = conn.execute(query, tuple(params)).fetchall()
            return [_row_to_venue(row) for row in rows]

    def create_resource(
        self,
        name: str,
        category: str,
        total_quantity: int,
        unit: str,
        tx: Optional[Transaction] = None,
    ) -> int:
        validate_resource(total_quantity, name, unit)
        with self._session(tx) as conn:
            cursor = conn.execute(
                """
                INSERT INTO Resources (name, category, total_quantity, unit)
                VALUES (?, ?, ?, ?);
                """,
                (name, category, total_quantity, unit),
            )
            return int(cursor.lastrowid)

    def get_resource(self, resource_id: int, tx: Optional[Transaction] = None) -> Optional[Resource]:
        with self._session(tx) as conn:
            row = conn.execute("SELECT * FROM Resources WHERE id = ?;", (resource_id,)).fetchone()
            if row is None:
                return None
            return Resource(
                resource_id=int(row["id"]),
                name=str(row["name"]),
                category=str(row["category"]),
                total_quantity=int(row["total_quantity"]),
                unit=str(row["unit"]),
            )

    # ------------------------------------------------------------------
    # Events and resource requests
    # ------------------------------------------------------------------

    def create_event(
        self,
        *,
        title: str,
        schedule_start: datetime,
        schedule_end: datetime,
        participant_count: int,
        school_id: int,
        department_id: int,
        coordinator_id: int,
        venue_type_preference: Optional[str] = None,
        description: Optional[str] = None,
        tx: Optional[Transaction] = None,
    ) -> int:
        now = to_db_timestamp(utc_now())
        with self._session(tx) as conn:
            cursor = conn.execute(
                """
                INSERT INTO Events (
                    title, description, schedule_start, schedule_end, participant_count,
                    venue_type_preference, school_id, department_id, coordinator_id,
                    status, approval_stage, created_at, updated_at
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?);
                """,
                (
                    title,
                    description,
                    to_db_timestamp(schedule_start),
                    to_db_timestamp(schedule_end),
                    participant_count,
                    venue_type_preference,
                    school_id,
                    department_id,
                    coordinator_id,
                    EventStatus.DRAFT.value,
                    ApprovalStage.DRAFT.value,
                    now,
                    now,
                ),
            )
            return int(cursor.lastrowid)

    def get_event(self, event_id: int, tx: Optional[Transaction] = None) -> Optional[Event]:
        with self._session(tx) as conn:
            row = conn.execute("SELECT * FROM Events WHERE id = ?;", (event_id,)).fetchone()
            return _row_to_event(row) if row is not None else None

    def update_event_stage(
        self,
        event_id: int,
        *,
        stage: ApprovalStage,
        status: EventStatus,
        rejection_reason: Optional[str] = None,
        tx: Optional[Transaction] = None,
    ) -> None:
        with self._session(tx) as conn:
            conn.execute(
                """
                UPDATE Events
                SET approval_stage = ?, status = ?, rejection_reason = ?, updated_at = ?
                WHERE id = ?;
                """,
                (
                    stage.value,
                    status.value,
                    rejection_reason,
                    to_db_timestamp(utc_now()),
                    event_id,
                ),
            )

    def list_events_awaiting_stage(
        self,
        stage: ApprovalStage,
        *,
        school_id: Optional[int] = None,
        department_id: Optional[int] = None,
        tx: Optional[Transaction] = None,
    ) -> list[Event]:
        clauses = ["status = ?", "approval_stage = ?"]
        params: list[Any] = [EventStatus.SUBMITTED.value, stage.value]
        if school_id is not None:
            clauses.append("school_id = ?")
            params.append(school_id)
        if department_id is not None:
            clauses.append("department_id = ?")
            params.append(department_id)
        with self._session(tx) as conn:
            rows = conn.execute(
                f"""
                SELECT * FROM Events
                WHERE {' AND '.join(clauses)}
                ORDER BY created_at ASC, id ASC;
                """,
                tuple(params),
            ).fetchall()
            return [_row_to_event(row) for row in rows]

    def add_resource_request(
        self,
        event_id: int,
        resource_id: int,
        quantity_needed: int,
        *,
        priority: str = "normal",
        justification: Optional[str] = None,
        tx: Optional[Transaction] = None,
    ) -> int:
        with self._session(tx) as conn:
            cursor = conn.execute(
                """
                INSERT INTO ResourceRequests (
                    event_id, resource_id, quantity_needed, priority, justification
                )
                VALUES (?, ?, ?, ?, ?);
                """,
                (event_id, resource_id, quantity_needed, priority, justification),
            )
            return int(cursor.lastrowid)

    def list_resource_requests(
        self,
        event_id: int,
        tx: Optional[Transaction] = None,
    ) -> list[ResourceRequest]:
        with self._session(tx) as conn:
            rows = conn.execute(
                "SELECT * FROM ResourceRequests WHERE event_id = ? ORDER BY id ASC;",
                (event_id,),
            ).fetchall()
            return [
                ResourceRequest(
                    request_id=int(row["id"]),
                    event_id=int(row["event_id"]),
                    resource_id=int(row["resource_id"]),
                    quantity_needed=int(row["quantity_needed"]),
                    is_allocated=bool(row["is_allocated"]),
                    allocated_quantity=int(row["allocated_quantity"]),
                    priority=str(row["priority"]),
                    justification=row["justification"],
                )
                for row in rows
            ]

    def mark_resource_request_allocated(
        self,
        request_id: int,
        allocated_quantity: int,
        tx: Optional[Transaction] = None,
    ) -> None:
        with self._session(tx) as conn:
            conn.execute(
                """
                UPDATE ResourceRequests
                SET is_allocated = 1, allocated_quantity = ?
                WHERE id = ?;
                """,
                (allocated_quantity, request_id),
            )

    # ------------------------------------------------------------------
    # Bookings
    # ------------------------------------------------------------------

    def create_venue_booking(
        self,
        *,
        venue_id: int,
        event_id: int,
        start_time: datetime,
        end_time: datetime,
        status: BookingStatus = BookingStatus.CONFIRMED,
        created_at: Optional[datetime] = None,
        tx: Optional[Transaction] = None,
    ) -> int:
        with self._session(tx) as conn:
            cursor = conn.execute(
                """
                INSERT INTO VenueBookings (venue_id, event_id, start_time, end_time, status, created_at)
                VALUES (?, ?, ?, ?, ?, ?);
                """,
                (
                    venue_id,
                    event_id,
                    to_db_timestamp(start_time),
                    to_db_timestamp(end_time),
                    status.value,
                    to_db_timestamp(created_at or utc_now()),
                ),
            )
            return int(cursor.lastrowid)

    def create_resource_booking(
        self,
        *,
        resource_id: int,
        event_id: int,
        quantity: int,
        start_time: datetime,
        end_time: datetime,
        status: BookingStatus = BookingStatus.CONFIRMED,
        created_at: Optional[datetime] = None,
        tx: Optional[Transaction] = None,
    ) -> int:
        with self._session(tx) as conn:
            cursor = conn.execute(
                """
                INSERT INTO ResourceBookings (
                    resource_id, event_id, quantity, start_time, end_time, status, created_at
                )
                VALUES (?, ?, ?, ?, ?, ?, ?);
                """,
                (
                    resource_id,
                    event_id,
                    quantity,
                    to_db_timestamp(start_time),
                    to_db_timestamp(end_time),
                    status.value,
                    to_db_timestamp(created_at or utc_now()),
                ),
            )
            return int(cursor.lastrowid)

    def list_overlapping_venue_bookings(
        self,
        venue_id: int,
        start_time: datetime,
        end_time: datetime,
        tx: Optional[Transaction] = None,
    ) -> list[VenueBooking]:
        """Confirmed bookings of a venue with ``start < end_time AND end > start_time``."""
        with self._session(tx) as conn:
            rows = conn.execute(
                """
                SELECT * FROM VenueBookings
                WHERE venue_id = ?
                  AND status = ?
                  AND start_time < ?
                  AND end_time > ?
                ORDER BY start_time ASC, id ASC;
                """,
                (
                    venue_id,
                    BookingStatus.CONFIRMED.value,
                    to_db_timestamp(end_time),
                    to_db_timestamp(start_time),
                ),
            ).fetchall()
            return [_row_to_venue_booking(row) for row in rows]

    def list_overlapping_resource_bookings(
        self,
        resource_id: int,
        start_time: datetime,
        end_time: datetime,
        tx: Optional[Transaction] = None,
    ) -> list[ResourceBooking]:
        with self._session(tx) as conn:
            rows = conn.execute(
                """
                SELECT * FROM ResourceBookings
                WHERE resource_id = ?
                  AND status = ?
                  AND start_time < ?
                  AND end_time > ?
                ORDER BY start_time ASC, id ASC;
                """,
                (
                    resource_id,
                    BookingStatus.CONFIRMED.value,
                    to_db_timestamp(end_time),
                    to_db_timestamp(start_time),
                ),
            ).fetchall()
            return [_row_to_resource_booking(row) for row in rows]

    def list_venue_bookings(
        self,
        *,
        venue_id: Optional[int] = None,
        event_id: Optional[int] = None,
        status: Optional[BookingStatus] = None,
        tx: Optional[Transaction] = None,
    ) -> list[VenueBooking]:
        query, params = _booking_filter("VenueBookings", "venue_id", venue_id, event_id, status)
        with self._session(tx) as conn:
            rows = conn.execute(query, params).fetchall()
            return [_row_to_venue_booking(row) for row in rows]

    def list_resource_bookings(
        self,
        *,
        resource_id: Optional[int] = None,
        event_id: Optional[int] = None,
        status: Optional[BookingStatus] = None,
        tx: Optional[Transaction] = None,
    ) -> list[ResourceBooking]:
        query, params = _booking_filter(
            "ResourceBookings", "resource_id", resource_id, event_id, status
        )
        with self._session(tx) as conn:
            rows = conn.execute(query, params).fetchall()
            return [_row_to_resource_booking(row) for row in rows]

    def cancel_bookings_for_event(
        self,
        event_id: int,
        tx: Optional[Transaction] = None,
    ) -> tuple[int, int]:
        """Cancel the event's confirmed/provisional bookings; returns (venue, resource) counts."""
        placeholders = ",".join("?" for _ in _ACTIVE_BOOKING_STATUSES)
        with self._session(tx) as conn:
            venue_cursor = conn.execute(
                f"""
                UPDATE VenueBookings SET status = ?
                WHERE event_id = ? AND status IN ({placeholders});
                """,
                (BookingStatus.CANCELLED.value, event_id, *_ACTIVE_BOOKING_STATUSES),
            )
            resource_cursor = conn.execute(
                f"""
                UPDATE ResourceBookings SET status = ?
                WHERE event_id = ? AND status IN ({placeholders});
                """,
                (BookingStatus.CANCELLED.value, event_id, *_ACTIVE_BOOKING_STATUSES),
            )
            return int(venue_cursor.rowcount), int(resource_cursor.rowcount)

    def delete_stale_provisional_bookings(
        self,
        cutoff: datetime,
        tx: Optional[Transaction] = None,
    ) -> tuple[int, int]:
        """Remove provisional holds created before ``cutoff``; returns (venue, resource) counts."""
        params = (BookingStatus.PROVISIONAL.value, to_db_timestamp(cutoff))
        with self._session(tx) as conn:
            venue_cursor = conn.execute(
                "DELETE FROM VenueBookings WHERE status = ? AND created_at < ?;",
                params,
            )
            resource_cursor = conn.execute(
                "DELETE FROM ResourceBookings WHERE status = ? AND created_at < ?;",
                params,
            )
            return int(venue_cursor.rowcount), int(resource_cursor.rowcount)

    # ------------------------------------------------------------------
    # Approval steps and audit ledger (append-only)
    # ------------------------------------------------------------------

    def insert_approval_step(
        self,
        *,
        event_id: int,
        approver_id: Optional[int],
        stage: ApprovalStage,
        action: ApprovalAction,
        comments: Optional[str],
        tx: Optional[Transaction] = None,
    ) -> int:
        with self._session(tx) as conn:
            cursor = conn.execute(
                """
                INSERT INTO ApprovalSteps (event_id, approver_id, stage, action, comments, timestamp)
                VALUES (?, ?, ?, ?, ?, ?);
                """,
                (
                    event_id,
                    approver_id,
                    stage.value,
                    action.value,
                    comments,
                    to_db_timestamp(utc_now()),
                ),
            )
            return int(cursor.lastrowid)

    def list_approval_steps(
        self,
        event_id: int,
        tx: Optional[Transaction] = None,
    ) -> list[ApprovalStep]:
        with self._session(tx) as conn:
            rows = conn.execute(
                "SELECT * FROM ApprovalSteps WHERE event_id = ? ORDER BY id ASC;",
                (event_id,),
            ).fetchall()
            return [
                ApprovalStep(
                    step_id=int(row["id"]),
                    event_id=int(row["event_id"]),
                    approver_id=_optional_int(row["approver_id"]),
                    stage=ApprovalStage(row["stage"]),
                    action=ApprovalAction(row["action"]),
                    comments=row["comments"],
                    timestamp=from_db_timestamp(row["timestamp"]),
                )
                for row in rows
            ]

    def append_audit_log(
        self,
        *,
        actor: str,
        action: str,
        entity_type: str,
        entity_id: str,
        data: dict[str, Any],
        event_id: Optional[int] = None,
        tx: Optional[Transaction] = None,
    ) -> int:
        with self._session(tx) as conn:
            cursor = conn.execute(
                """
                INSERT INTO AuditLogs (event_id, actor, action, entity_type, entity_id, data, timestamp)
                VALUES (?, ?, ?, ?, ?, ?, ?);
                """,
                (
                    event_id,
                    actor,
                    action,
                    entity_type,
                    entity_id,
                    json.dumps(data, sort_keys=True, default=str),
                    to_db_timestamp(utc_now()),
                ),
            )
            return int(cursor.lastrowid)

    def list_audit_logs(
        self,
        *,
        event_id: Optional[int] = None,
        action: Optional[str] = None,
        tx: Optional[Transaction] = None,
    ) -> list[AuditEntry]:
        clauses: list[str] = []
        params: list[Any] = []
        if event_id is not None:
            clauses.append("event_id = ?")
            params.append(event_id)
        if action is not None:
            clauses.append("action = ?")
            params.append(action)
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        with self._session(tx) as conn:
            rows = conn.execute(
                f"SELECT * FROM AuditLogs {where} ORDER BY id ASC;",
                tuple(params),
            ).fetchall()
            return [
                AuditEntry(
                    entry_id=int(row["id"]),
                    event_id=_optional_int(row["event_id"]),
                    actor=str(row["actor"]),
                    action=str(row["action"]),
                    entity_type=str(row["entity_type"]),
                    entity_id=str(row["entity_id"]),
                    data=json.loads(row["data"]),
                    timestamp=from_db_timestamp(row["timestamp"]),
                )
                for row in rows
            ]

    # ------------------------------------------------------------------
    # Notifications
    # ------------------------------------------------------------------

    def insert_notification(
        self,
        *,
        user_id: int,
        event_id: Optional[int],
        notification_type: str,
        title: str,
        message: str,
        data: dict[str, Any],
        tx: Optional[Transaction] = None,
    ) -> int:
        with self._session(tx) as conn:
            cursor = conn.execute(
                """
                INSERT INTO Notifications (
                    user_id, event_id, type, title, message, data, is_read, created_at
                )
                VALUES (?, ?, ?, ?, ?, ?, 0, ?);
                """,
                (
                    user_id,
                    event_id,
                    notification_type,
                    title,
                    message,
                    json.dumps(data, sort_keys=True, default=str),
                    to_db_timestamp(utc_now()),
                ),
            )
            return int(cursor.lastrowid)

    def list_notifications(
        self,
        user_id: int,
        *,
        unread_only: bool = False,
        limit: int = 50,
        offset: int = 0,
        tx: Optional[Transaction] = None,
    ) -> list[Notification]:
        query = "SELECT * FROM Notifications WHERE user_id = ?"
        if unread_only:
            query += " AND is_read = 0"
        query += " ORDER BY created_at DESC, id DESC LIMIT ? OFFSET ?;"
        with self._session(tx) as conn:
            rows = conn.execute(query, (user_id, limit, offset)).fetchall()
            return [
                Notification(
                    notification_id=int(row["id"]),
                    user_id=int(row["user_id"]),
                    event_id=_optional_int(row["event_id"]),
                    notification_type=str(row["type"]),
                    title=str(row["title"]),
                    message=str(row["message"]),
                    data=json.loads(row["data"]),
                    is_read=bool(row["is_read"]),
                    created_at=from_db_timestamp(row["created_at"]),
                )
                for row in rows
            ]

    def mark_notifications_read(
        self,
        user_id: int,
        notification_ids: Optional[Sequence[int]] = None,
        tx: Optional[Transaction] = None,
    ) -> int:
        """Mark the given (or all) unread notifications of ``user_id`` as read."""
        query = "UPDATE Notifications SET is_read = 1 WHERE user_id = ? AND is_read = 0"
        params: list[Any] = [user_id]
        if notification_ids is not None:
            if not notification_ids:
                return 0
            query += f" AND id IN ({','.join('?' for _ in notification_ids)})"
            params.extend(notification_ids)
        with self._session(tx) as conn:
            cursor = conn.execute(query + ";", tuple(params))
            return int(cursor.rowcount)

    def count_unread_notifications(self, user_id: int, tx: Optional[Transaction] = None) -> int:
        with self._session(tx) as conn:
            row = conn.execute(
                "SELECT COUNT(*) AS count FROM Notifications WHERE user_id = ? AND is_read = 0;",
                (user_id,),
            ).fetchone()
            return int(row["count"])

    def notification_exists(
        self,
        notification_id: int,
        user_id: int,
        tx: Optional[Transaction] = None,
    ) -> bool:
        with self._session(tx) as conn:
            row = conn.execute(
                "SELECT 1 FROM Notifications WHERE id = ? AND user_id = ?;",
                (notification_id, user_id),
            ).fetchone()
            return row is not None


def _optional_int(value: Any) -> Optional[int]:
    return int(value) if value is not None else None


def _booking_filter(
    table: str,
    owner_column: str,
    owner_id: Optional[int],
    event_id: Optional[int],
    status: Optional[BookingStatus],
) -> tuple[str, tuple[Any, ...]]:
    clauses: list[str] = []
    params: list[Any] = []
    if owner_id is not None:
        clauses.append(f"{owner_column} = ?")
        params.append(owner_id)
    if event_id is not None:
        clauses.append("event_id = ?")
        params.append(event_id)
    if status is not None:
        clauses.append("status = ?")
        params.append(status.value)
    where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
    return f"SELECT * FROM {table} {where} ORDER BY start_time ASC, id ASC;", tuple(params)


def _row_to_user(row: sqlite3.Row) -> User:
    return User(
        user_id=int(row["id"]),
        first_name=str(row["first_name"]),
        last_name=str(row["last_name"]),
        email=str(row["email"]),
        role=Role(row["role"]),
        school_id=_optional_int(row["school_id"]),
        department_id=_optional_int(row["department_id"]),
        is_active=bool(row["is_active"]),
    )


def _row_to_venue(row: sqlite3.Row) -> Venue:
    return Venue(
        venue_id=int(row["id"]),
        name=str(row["name"]),
        venue_type=str(row["venue_type"]),
        capacity=int(row["capacity"]),
        location=str(row["location"]),
        is_active=bool(row["is_active"]),
        maintenance_mode=bool(row["maintenance_mode"]),
    )


def _row_to_event(row: sqlite3.Row) -> Event:
    return Event(
        event_id=int(row["id"]),
        title=str(row["title"]),
        description=row["description"],
        schedule_start=from_db_timestamp(row["schedule_start"]),
        schedule_end=from_db_timestamp(row["schedule_end"]),
        participant_count=int(row["participant_count"]),
        venue_type_preference=row["venue_type_preference"],
        school_id=int(row["school_id"]),
        department_id=int(row["department_id"]),
        coordinator_id=int(row["coordinator_id"]),
        status=EventStatus(row["status"]),
        approval_stage=ApprovalStage(row["approval_stage"]),
        rejection_reason=row["rejection_reason"],
        created_at=from_db_timestamp(row["created_at"]),
        updated_at=from_db_timestamp(row["updated_at"]),
    )


def _row_to_venue_booking(row: sqlite3.Row) -> VenueBooking:
    return VenueBooking(
        booking_id=int(row["id"]),
        venue_id=int(row["venue_id"]),
        event_id=int(row["event_id"]),
        start_time=from_db_timestamp(row["start_time"]),
        end_time=from_db_timestamp(row["end_time"]),
        status=BookingStatus(row["status"]),
        created_at=from_db_timestamp(row["created_at"]),
    )


def _row_to_resource_booking(row: sqlite3.Row) -> ResourceBooking:
    return ResourceBooking(
        booking_id=int(row["id"]),
        resource_id=int(row["resource_id"]),
        event_id=int(row["event_id"]),
        quantity=int(row["quantity"]),
        start_time=from_db_timestamp(row["start_time"]),
        end_time=from_db_timestamp(row["end_time"]),
        status=BookingStatus(row["status"]),
        created_at=from_db_timestamp(row["created_at"]),
    )


_SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS Schools (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    name TEXT NOT NULL,
    code TEXT NOT NULL UNIQUE
);

CREATE TABLE IF NOT EXISTS Departments (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    school_id INTEGER NOT NULL,
    name TEXT NOT NULL,
    code TEXT NOT NULL UNIQUE,
    FOREIGN KEY (school_id) REFERENCES Schools(id)
);

CREATE TABLE IF NOT EXISTS Users (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    first_name TEXT NOT NULL,
    last_name TEXT NOT NULL,
    email TEXT NOT NULL UNIQUE,
    role TEXT NOT NULL,
    school_id INTEGER,
    department_id INTEGER,
    is_active INTEGER NOT NULL DEFAULT 1 CHECK (is_active IN (0,1)),
    FOREIGN KEY (school_id) REFERENCES Schools(id),
    FOREIGN KEY (department_id) REFERENCES Departments(id)
);

CREATE TABLE IF NOT EXISTS Venues (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    name TEXT NOT NULL,
    venue_type TEXT NOT NULL,
    capacity INTEGER NOT NULL CHECK (capacity >= 1),
    location TEXT NOT NULL DEFAULT '',
    is_active INTEGER NOT NULL DEFAULT 1 CHECK (is_active IN (0,1)),
    maintenance_mode INTEGER NOT NULL DEFAULT 0 CHECK (maintenance_mode IN (0,1))
);

CREATE TABLE IF NOT EXISTS Resources (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    name TEXT NOT NULL,
    category TEXT NOT NULL,
    total_quantity INTEGER NOT NULL CHECK (total_quantity >= 0),
    unit TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS Events (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    title TEXT NOT NULL,
    description TEXT,
    schedule_start TEXT NOT NULL,
    schedule_end TEXT NOT NULL,
    participant_count INTEGER NOT NULL CHECK (participant_count >= 1),
    venue_type_preference TEXT,
    school_id INTEGER NOT NULL,
    department_id INTEGER NOT NULL,
    coordinator_id INTEGER NOT NULL,
    status TEXT NOT NULL,
    approval_stage TEXT NOT NULL,
    rejection_reason TEXT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    CHECK (schedule_start < schedule_end),
    FOREIGN KEY (school_id) REFERENCES Schools(id),
    FOREIGN KEY (department_id) REFERENCES Departments(id),
    FOREIGN KEY (coordinator_id) REFERENCES Users(id)
);

CREATE TABLE IF NOT EXISTS ResourceRequests (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    event_id INTEGER NOT NULL,
    resource_id INTEGER NOT NULL,
    quantity_needed INTEGER NOT NULL CHECK (quantity_needed >= 1),
    priority TEXT NOT NULL DEFAULT 'normal',
    justification TEXT,
    is_allocated INTEGER NOT NULL DEFAULT 0 CHECK (is_allocated IN (0,1)),
    allocated_quantity INTEGER NOT NULL DEFAULT 0,
    FOREIGN KEY (event_id) REFERENCES Events(id),
    FOREIGN KEY (resource_id) REFERENCES Resources(id)
);

CREATE TABLE IF NOT EXISTS VenueBookings (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    venue_id INTEGER NOT NULL,
    event_id INTEGER NOT NULL,
    start_time TEXT NOT NULL,
    end_time TEXT NOT NULL,
    status TEXT NOT NULL,
    created_at TEXT NOT NULL,
    CHECK (start_time < end_time),
    FOREIGN KEY (venue_id) REFERENCES Venues(id),
    FOREIGN KEY (event_id) REFERENCES Events(id)
);

CREATE TABLE IF NOT EXISTS ResourceBookings (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    resource_id INTEGER NOT NULL,
    event_id INTEGER NOT NULL,
    quantity INTEGER NOT NULL CHECK (quantity >= 1),
    start_time TEXT NOT NULL,
    end_time TEXT NOT NULL,
    status TEXT NOT NULL,
    created_at TEXT NOT NULL,
    CHECK (start_time < end_time),
    FOREIGN KEY (resource_id) REFERENCES Resources(id),
    FOREIGN KEY (event_id) REFERENCES Events(id)
);

CREATE TABLE IF NOT EXISTS ApprovalSteps (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    event_id INTEGER NOT NULL,
    approver_id INTEGER,
    stage TEXT NOT NULL,
    action TEXT NOT NULL,
    comments TEXT,
    timestamp TEXT NOT NULL,
    FOREIGN KEY (event_id) REFERENCES Events(id),
    FOREIGN KEY (approver_id) REFERENCES Users(id)
);

CREATE TABLE IF NOT EXISTS AuditLogs (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    event_id INTEGER,
    actor TEXT NOT NULL,
    action TEXT NOT NULL,
    entity_type TEXT NOT NULL,
    entity_id TEXT NOT NULL,
    data TEXT NOT NULL DEFAULT '{}',
    timestamp TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS Notifications (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id INTEGER NOT NULL,
    event_id INTEGER,
    type TEXT NOT NULL,
    title TEXT NOT NULL,
    message TEXT NOT NULL,
    data TEXT NOT NULL DEFAULT '{}',
    is_read INTEGER NOT NULL DEFAULT 0 CHECK (is_read IN (0,1)),
    created_at TEXT NOT NULL,
    FOREIGN KEY (user_id) REFERENCES Users(id)
);

CREATE INDEX IF NOT EXISTS idx_venue_bookings_overlap
ON VenueBookings(venue_id, status, start_time, end_time);

CREATE INDEX IF NOT EXISTS idx_resource_bookings_overlap
ON ResourceBookings(resource_id, status, start_time, end_time);

CREATE INDEX IF NOT EXISTS idx_events_stage_status
ON Events(approval_stage, status);

CREATE INDEX IF NOT EXISTS idx_approval_steps_event
ON ApprovalSteps(event_id);

CREATE INDEX IF NOT EXISTS idx_notifications_user_read
ON Notifications(user_id, is_read);

CREATE TRIGGER IF NOT EXISTS trg_approval_steps_no_update
BEFORE UPDATE ON ApprovalSteps
BEGIN
    SELECT RAISE(ABORT, 'ApprovalSteps is append-only');
END;

CREATE TRIGGER IF NOT EXISTS trg_approval_steps_no_delete
BEFORE DELETE ON ApprovalSteps
BEGIN
    SELECT RAISE(ABORT, 'ApprovalSteps is append-only');
END;

CREATE TRIGGER IF NOT EXISTS trg_audit_logs_no_update
BEFORE UPDATE ON AuditLogs
BEGIN
    SELECT RAISE(ABORT, 'AuditLogs is append-only');
END;

CREATE TRIGGER IF NOT EXISTS trg_audit_logs_no_delete
BEFORE DELETE ON AuditLogs
BEGIN
    SELECT RAISE(ABORT, 'AuditLogs is append-only');
END;
"""
