"""SQLite persistence for accounts, requests and prescriptions.

``CareStore`` is an explicitly constructed handle: call ``open()`` once at
startup and ``close()`` on shutdown. Every unit of work gets its own
connection and is committed or rolled back as a whole.
"""
from __future__ import annotations

import logging
import sqlite3
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterator, List, Optional, Union

from care_routing.errors import DuplicateAccountError, StoreClosedError, StoreError
from care_routing.models import (
    CareRequest,
    Coordinates,
    Facility,
    FacilityStatus,
    Prescription,
    RequestKind,
    RequestStatus,
)

logger = logging.getLogger(__name__)

ROLE_HOSPITAL = "hospital"
ROLE_ADMIN = "admin"

SCHEMA = (
    """
    CREATE TABLE IF NOT EXISTS accounts (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        username TEXT UNIQUE NOT NULL,
        password_hash TEXT NOT NULL,
        role TEXT NOT NULL,
        status TEXT NOT NULL DEFAULT 'PENDING',
        latitude REAL,
        longitude REAL,
        created_at TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS requests (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        kind TEXT NOT NULL,
        requester_name TEXT NOT NULL,
        reason TEXT NOT NULL,
        criticality TEXT NOT NULL,
        latitude REAL NOT NULL,
        longitude REAL NOT NULL,
        facility_id INTEGER NOT NULL,
        facility_name TEXT NOT NULL,
        distance_km REAL NOT NULL,
        status TEXT NOT NULL DEFAULT 'PENDING',
        created_at TEXT NOT NULL,
        resolved_at TEXT
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS prescriptions (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        request_id INTEGER NOT NULL,
        requester_name TEXT NOT NULL,
        content TEXT NOT NULL,
        author_name TEXT NOT NULL,
        created_at TEXT NOT NULL
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_requests_status ON requests (status, facility_id)",
    "CREATE INDEX IF NOT EXISTS idx_prescriptions_requester ON prescriptions (requester_name)",
)


def _facility_from_row(row: sqlite3.Row) -> Facility:
    location = None
    if row["latitude"] is not None and row["longitude"] is not None:
        location = Coordinates(float(row["latitude"]), float(row["longitude"]))
    return Facility(
        facility_id=row["id"],
        name=row["username"],
        status=FacilityStatus(row["status"]),
        location=location,
    )


def _request_from_row(row: sqlite3.Row) -> CareRequest:
    return CareRequest(
        request_id=row["id"],
        kind=RequestKind(row["kind"]),
        requester_name=row["requester_name"],
        reason=row["reason"],
        criticality=row["criticality"],
        location=Coordinates(row["latitude"], row["longitude"]),
        facility_id=row["facility_id"],
        facility_name=row["facility_name"],
        distance_km=row["distance_km"],
        created_at=datetime.fromisoformat(row["created_at"]),
        status=RequestStatus(row["status"]),
    )


def _prescription_from_row(row: sqlite3.Row) -> Prescription:
    return Prescription(
        prescription_id=row["id"],
        request_id=row["request_id"],
        requester_name=row["requester_name"],
        content=row["content"],
        author_name=row["author_name"],
        created_at=datetime.fromisoformat(row["created_at"]),
    )


class CareStore:
    def __init__(self, db_path: Union[str, Path]) -> None:
        self.db_path = Path(db_path)
        self._opened = False

    @property
    def is_open(self) -> bool:
        return self._opened

    def open(self) -> None:
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._opened = True
        with self._connect() as conn:
            for statement in SCHEMA:
                conn.execute(statement)
        logger.info("Opened care store at %s", self.db_path)

    def close(self) -> None:
        if self._opened:
            self._opened = False
            logger.info("Closed care store at %s", self.db_path)

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        if not self._opened:
            raise StoreClosedError("Care store is not open")
        try:
            conn = sqlite3.connect(self.db_path, timeout=10)
        except sqlite3.Error as exc:
            logger.error("Could not connect to %s: %s", self.db_path, exc)
            raise StoreError("Backing store unavailable") from exc
        conn.row_factory = sqlite3.Row
        try:
            yield conn
            conn.commit()
        except sqlite3.Error as exc:
            conn.rollback()
            logger.error("Store operation failed: %s", exc)
            raise StoreError("Backing store failure") from exc
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    # --- accounts / facility directory ---

    def add_account(
        self,
        username: str,
        password_hash: str,
        role: str,
        status: FacilityStatus = FacilityStatus.PENDING,
        location: Optional[Coordinates] = None,
        created_at: Optional[datetime] = None,
    ) -> int:
        created_at = created_at or datetime.now(timezone.utc)
        with self._connect() as conn:
            try:
                cur = conn.execute(
                    "INSERT INTO accounts (username,password_hash,role,status,latitude,longitude,created_at) "
                    "VALUES (?,?,?,?,?,?,?)",
                    (
                        username,
                        password_hash,
                        role,
                        FacilityStatus(status).value,
                        location.latitude if location else None,
                        location.longitude if location else None,
                        created_at.isoformat(),
                    ),
                )
            except sqlite3.IntegrityError as exc:
                raise DuplicateAccountError("Username already exists.") from exc
            return int(cur.lastrowid)

    def get_account(self, username: str, role: Optional[str] = None) -> Optional[dict]:
        query = "SELECT * FROM accounts WHERE username=?"
        params: list = [username]
        if role is not None:
            query += " AND role=?"
            params.append(role)
        with self._connect() as conn:
            row = conn.execute(query, params).fetchone()
        return dict(row) if row else None

    def get_facility(self, facility_id: int) -> Optional[Facility]:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM accounts WHERE id=? AND role=?", (facility_id, ROLE_HOSPITAL)
            ).fetchone()
        return _facility_from_row(row) if row else None

    def approve_facility(self, facility_id: int) -> bool:
        with self._connect() as conn:
            cur = conn.execute(
                "UPDATE accounts SET status=? WHERE id=? AND role=?",
                (FacilityStatus.APPROVED.value, facility_id, ROLE_HOSPITAL),
            )
        return cur.rowcount == 1

    def update_location(self, account_id: int, location: Coordinates) -> None:
        with self._connect() as conn:
            conn.execute(
                "UPDATE accounts SET latitude=?, longitude=? WHERE id=?",
                (location.latitude, location.longitude, account_id),
            )

    def list_approved_facilities_with_location(self) -> List[Facility]:
        with self._connect() as conn:
            rows = conn.execute(
                """
                SELECT * FROM accounts
                WHERE role=? AND status=? AND latitude IS NOT NULL AND longitude IS NOT NULL
                ORDER BY id
                """,
                (ROLE_HOSPITAL, FacilityStatus.APPROVED.value),
            ).fetchall()
        return [_facility_from_row(r) for r in rows]

    # --- requests ---

    def insert_request(
        self,
        kind: RequestKind,
        requester_name: str,
        reason: str,
        criticality: str,
        location: Coordinates,
        facility: Facility,
        distance_km: float,
        created_at: datetime,
    ) -> CareRequest:
        with self._connect() as conn:
            cur = conn.execute(
                """
                INSERT INTO requests (
                    kind,requester_name,reason,criticality,latitude,longitude,
                    facility_id,facility_name,distance_km,status,created_at
                ) VALUES (?,?,?,?,?,?,?,?,?,?,?)
                """,
                (
                    RequestKind(kind).value,
                    requester_name,
                    reason,
                    criticality,
                    location.latitude,
                    location.longitude,
                    facility.facility_id,
                    facility.name,
                    distance_km,
                    RequestStatus.PENDING.value,
                    created_at.isoformat(),
                ),
            )
            request_id = int(cur.lastrowid)
        return CareRequest(
            request_id=request_id,
            kind=RequestKind(kind),
            requester_name=requester_name,
            reason=reason,
            criticality=criticality,
            location=location,
            facility_id=facility.facility_id,
            facility_name=facility.name,
            distance_km=distance_km,
            created_at=created_at,
        )

    def get_request(self, request_id: int) -> Optional[CareRequest]:
        with self._connect() as conn:
            row = conn.execute("SELECT * FROM requests WHERE id=?", (request_id,)).fetchone()
        return _request_from_row(row) if row else None

    def list_requests(
        self,
        status: Optional[RequestStatus] = None,
        facility_id: Optional[int] = None,
    ) -> List[CareRequest]:
        clauses = []
        params: list = []
        if status is not None:
            clauses.append("status=?")
            params.append(RequestStatus(status).value)
        if facility_id is not None:
            clauses.append("facility_id=?")
            params.append(facility_id)
        query = "SELECT * FROM requests"
        if clauses:
            query += " WHERE " + " AND ".join(clauses)
        query += " ORDER BY id"
        with self._connect() as conn:
            rows = conn.execute(query, params).fetchall()
        return [_request_from_row(r) for r in rows]

    # --- resolution / prescriptions ---

    def resolve_with_prescription(
        self,
        request_id: int,
        content: str,
        author_name: str,
        resolved_at: datetime,
        facility_id: Optional[int] = None,
    ) -> Optional[Prescription]:
        """Flip a pending request to RESOLVED and record its prescription.

        Both writes share one transaction. Returns ``None`` when the request
        does not exist, is no longer pending, or was routed to a facility
        other than ``facility_id``.
        """
        query = "UPDATE requests SET status=?, resolved_at=? WHERE id=? AND status=?"
        params: list = [
            RequestStatus.RESOLVED.value,
            resolved_at.isoformat(),
            request_id,
            RequestStatus.PENDING.value,
        ]
        if facility_id is not None:
            query += " AND facility_id=?"
            params.append(facility_id)
        with self._connect() as conn:
            cur = conn.execute(query, params)
            if cur.rowcount != 1:
                return None
            requester_name = conn.execute(
                "SELECT requester_name FROM requests WHERE id=?", (request_id,)
            ).fetchone()["requester_name"]
            cur = conn.execute(
                "INSERT INTO prescriptions (request_id,requester_name,content,author_name,created_at) "
                "VALUES (?,?,?,?,?)",
                (request_id, requester_name, content, author_name, resolved_at.isoformat()),
            )
            prescription_id = int(cur.lastrowid)
        return Prescription(
            prescription_id=prescription_id,
            request_id=request_id,
            requester_name=requester_name,
            content=content,
            author_name=author_name,
            created_at=resolved_at,
        )

    def get_prescription(self, prescription_id: int) -> Optional[Prescription]:
        with self._connect() as conn:
            row = conn.execute("SELECT * FROM prescriptions WHERE id=?", (prescription_id,)).fetchone()
        return _prescription_from_row(row) if row else None

    def list_prescriptions(self, requester_name: str, facility_id: Optional[int] = None) -> List[Prescription]:
        query = "SELECT p.* FROM prescriptions p JOIN requests r ON r.id = p.request_id WHERE p.requester_name=?"
        params: list = [requester_name]
        if facility_id is not None:
            query += " AND r.facility_id=?"
            params.append(facility_id)
        query += " ORDER BY p.id DESC"
        with self._connect() as conn:
            rows = conn.execute(query, params).fetchall()
        return [_prescription_from_row(r) for r in rows]
