"""SQLite helpers backing the clinic manager's record store."""
from __future__ import annotations

import sqlite3
from contextlib import closing, contextmanager
from datetime import date
from decimal import Decimal
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional
from uuid import uuid4

from .money import to_cents
from .settings import get_settings
from .timezone import clinic_now_iso

DB_PATH: Path = get_settings().database_path

PATIENT_ORDERINGS: Dict[str, str] = {
    "created_at": "created_at DESC, rowid DESC",
    "name": "name COLLATE NOCASE ASC, created_at ASC",
}


class RecordStoreError(RuntimeError):
    """The store rejected an operation; ``str(exc)`` is safe to show to the user."""


def _new_id() -> str:
    return str(uuid4())


def _money_text(value: Any) -> str:
    return str(to_cents(value))


def get_connection() -> sqlite3.Connection:
    """Return a connection with row results as dictionaries."""
    conn = sqlite3.connect(DB_PATH)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON")
    return conn


@contextmanager
def _connection() -> Iterator[sqlite3.Connection]:
    """Yield a connection and translate driver errors into ``RecordStoreError``."""
    try:
        with closing(get_connection()) as conn:
            yield conn
    except sqlite3.Error as exc:
        raise RecordStoreError(str(exc)) from exc


def _create_users(conn: sqlite3.Connection) -> None:
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS users (
            id TEXT PRIMARY KEY,
            email TEXT NOT NULL UNIQUE COLLATE NOCASE,
            password_hash TEXT NOT NULL,
            created_at TEXT NOT NULL
        )
        """
    )


def _create_patients(conn: sqlite3.Connection) -> None:
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS patients (
            id TEXT PRIMARY KEY,
            name TEXT NOT NULL,
            phone TEXT NOT NULL,
            email TEXT NOT NULL,
            created_at TEXT NOT NULL,
            created_by TEXT NOT NULL,
            FOREIGN KEY(created_by) REFERENCES users(id)
        )
        """
    )
    conn.execute("CREATE INDEX IF NOT EXISTS idx_patients_owner ON patients(created_by)")


def _create_appointment_types(conn: sqlite3.Connection) -> None:
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS appointment_types (
            id TEXT PRIMARY KEY,
            name TEXT NOT NULL,
            value TEXT NOT NULL,
            user_id TEXT NOT NULL,
            FOREIGN KEY(user_id) REFERENCES users(id)
        )
        """
    )


def _create_appointments(conn: sqlite3.Connection) -> None:
    # patient_id has no foreign key: appointments of a deleted patient remain
    # as orphans and every listing hides them.
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS appointments (
            id TEXT PRIMARY KEY,
            patient_id TEXT NOT NULL,
            date TEXT NOT NULL,
            time TEXT NOT NULL,
            value TEXT NOT NULL,
            appointment_type_id TEXT,
            user_id TEXT NOT NULL,
            created_at TEXT NOT NULL,
            FOREIGN KEY(appointment_type_id) REFERENCES appointment_types(id),
            FOREIGN KEY(user_id) REFERENCES users(id)
        )
        """
    )
    conn.execute("CREATE INDEX IF NOT EXISTS idx_appointments_owner_date ON appointments(user_id, date)")
    conn.execute("CREATE INDEX IF NOT EXISTS idx_appointments_type ON appointments(appointment_type_id)")


def init_db() -> None:
    """Create the tables for users, patients, appointment types and appointments."""
    DB_PATH.parent.mkdir(parents=True, exist_ok=True)
    with closing(sqlite3.connect(DB_PATH)) as conn:
        _create_users(conn)
        _create_patients(conn)
        _create_appointment_types(conn)
        _create_appointments(conn)
        conn.commit()


# --- users -----------------------------------------------------------------


def _row_to_user(row: sqlite3.Row) -> Dict[str, Any]:
    return {
        "id": row["id"],
        "email": row["email"],
        "password_hash": row["password_hash"],
        "created_at": row["created_at"],
    }


def get_user(user_id: str) -> Optional[Dict[str, Any]]:
    with _connection() as conn:
        cursor = conn.execute("SELECT * FROM users WHERE id = ?", (user_id,))
        row = cursor.fetchone()
        return _row_to_user(row) if row else None


def get_user_by_email(email: str) -> Optional[Dict[str, Any]]:
    with _connection() as conn:
        cursor = conn.execute("SELECT * FROM users WHERE email = ?", (email.strip(),))
        row = cursor.fetchone()
        return _row_to_user(row) if row else None


def create_user(email: str, password_hash: str) -> Dict[str, Any]:
    user_id = _new_id()
    with _connection() as conn:
        conn.execute(
            "INSERT INTO users (id, email, password_hash, created_at) VALUES (?, ?, ?, ?)",
            (user_id, email.strip(), password_hash, clinic_now_iso()),
        )
        conn.commit()
    created = get_user(user_id)
    if not created:
        raise RecordStoreError("Failed to fetch user after creation")
    return created


def update_user_password(user_id: str, password_hash: str) -> bool:
    with _connection() as conn:
        cursor = conn.execute(
            "UPDATE users SET password_hash = ? WHERE id = ?",
            (password_hash, user_id),
        )
        conn.commit()
        return cursor.rowcount > 0


# --- patients --------------------------------------------------------------


def _row_to_patient(row: sqlite3.Row) -> Dict[str, Any]:
    return {
        "id": row["id"],
        "name": row["name"],
        "phone": row["phone"],
        "email": row["email"],
        "created_at": row["created_at"],
        "created_by": row["created_by"],
    }


def _serialize_patient_payload(data: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "name": (data.get("name") or "").strip(),
        "phone": (data.get("phone") or "").strip(),
        "email": (data.get("email") or "").strip(),
    }


def list_patients(owner_id: str, order: str = "created_at") -> List[Dict[str, Any]]:
    """Return the owner's patients, newest first or alphabetically."""
    try:
        order_clause = PATIENT_ORDERINGS[order]
    except KeyError:
        raise ValueError(f"Unsupported patient ordering: {order}") from None
    with _connection() as conn:
        cursor = conn.execute(
            f"SELECT * FROM patients WHERE created_by = ? ORDER BY {order_clause}",
            (owner_id,),
        )
        return [_row_to_patient(row) for row in cursor.fetchall()]


def fetch_patient(owner_id: str, patient_id: str) -> Optional[Dict[str, Any]]:
    with _connection() as conn:
        cursor = conn.execute(
            "SELECT * FROM patients WHERE id = ? AND created_by = ?",
            (patient_id, owner_id),
        )
        row = cursor.fetchone()
        return _row_to_patient(row) if row else None


def create_patient(owner_id: str, data: Dict[str, Any]) -> Dict[str, Any]:
    payload = _serialize_patient_payload(data)
    patient_id = _new_id()
    with _connection() as conn:
        conn.execute(
            """
            INSERT INTO patients (id, name, phone, email, created_at, created_by)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            (
                patient_id,
                payload["name"],
                payload["phone"],
                payload["email"],
                clinic_now_iso(),
                owner_id,
            ),
        )
        conn.commit()
    created = fetch_patient(owner_id, patient_id)
    if not created:
        raise RecordStoreError("Failed to fetch patient after creation")
    return created


def update_patient(owner_id: str, patient_id: str, data: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    payload = _serialize_patient_payload(data)
    with _connection() as conn:
        cursor = conn.execute(
            """
            UPDATE patients
            SET name = ?, phone = ?, email = ?
            WHERE id = ? AND created_by = ?
            """,
            (payload["name"], payload["phone"], payload["email"], patient_id, owner_id),
        )
        conn.commit()
        if cursor.rowcount == 0:
            return None
    return fetch_patient(owner_id, patient_id)


def delete_patient(owner_id: str, patient_id: str) -> bool:
    """Delete the patient; its appointments stay behind as hidden orphans."""
    with _connection() as conn:
        cursor = conn.execute(
            "DELETE FROM patients WHERE id = ? AND created_by = ?",
            (patient_id, owner_id),
        )
        conn.commit()
        return cursor.rowcount > 0


# --- appointment types -----------------------------------------------------


def _row_to_appointment_type(row: sqlite3.Row) -> Dict[str, Any]:
    return {
        "id": row["id"],
        "name": row["name"],
        "value": Decimal(row["value"]),
        "user_id": row["user_id"],
    }


def list_appointment_types(owner_id: str) -> List[Dict[str, Any]]:
    with _connection() as conn:
        cursor = conn.execute(
            "SELECT * FROM appointment_types WHERE user_id = ? ORDER BY name COLLATE NOCASE ASC",
            (owner_id,),
        )
        return [_row_to_appointment_type(row) for row in cursor.fetchall()]


def fetch_appointment_type(owner_id: str, type_id: str) -> Optional[Dict[str, Any]]:
    with _connection() as conn:
        cursor = conn.execute(
            "SELECT * FROM appointment_types WHERE id = ? AND user_id = ?",
            (type_id, owner_id),
        )
        row = cursor.fetchone()
        return _row_to_appointment_type(row) if row else None


def create_appointment_type(owner_id: str, data: Dict[str, Any]) -> Dict[str, Any]:
    type_id = _new_id()
    with _connection() as conn:
        conn.execute(
            "INSERT INTO appointment_types (id, name, value, user_id) VALUES (?, ?, ?, ?)",
            (type_id, (data.get("name") or "").strip(), _money_text(data.get("value")), owner_id),
        )
        conn.commit()
    created = fetch_appointment_type(owner_id, type_id)
    if not created:
        raise RecordStoreError("Failed to fetch appointment type after creation")
    return created


def update_appointment_type(owner_id: str, type_id: str, data: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    with _connection() as conn:
        cursor = conn.execute(
            "UPDATE appointment_types SET name = ?, value = ? WHERE id = ? AND user_id = ?",
            ((data.get("name") or "").strip(), _money_text(data.get("value")), type_id, owner_id),
        )
        conn.commit()
        if cursor.rowcount == 0:
            return None
    return fetch_appointment_type(owner_id, type_id)


def appointment_type_in_use(type_id: str) -> bool:
    """Return True when at least one appointment references ``type_id``."""
    with _connection() as conn:
        cursor = conn.execute(
            "SELECT id FROM appointments WHERE appointment_type_id = ? LIMIT 1",
            (type_id,),
        )
        return cursor.fetchone() is not None


def delete_appointment_type(owner_id: str, type_id: str) -> bool:
    with _connection() as conn:
        cursor = conn.execute(
            "DELETE FROM appointment_types WHERE id = ? AND user_id = ?",
            (type_id, owner_id),
        )
        conn.commit()
        return cursor.rowcount > 0


# --- appointments ----------------------------------------------------------

_APPOINTMENT_SELECT = """
    SELECT
        appointments.*,
        patients.id AS joined_patient_id,
        patients.name AS joined_patient_name,
        appointment_types.id AS joined_type_id,
        appointment_types.name AS joined_type_name,
        appointment_types.value AS joined_type_value
    FROM appointments
    LEFT JOIN patients
        ON patients.id = appointments.patient_id
        AND patients.created_by = appointments.user_id
    LEFT JOIN appointment_types
        ON appointment_types.id = appointments.appointment_type_id
        AND appointment_types.user_id = appointments.user_id
"""


def _row_to_appointment(row: sqlite3.Row) -> Dict[str, Any]:
    """Convert an appointment row, embedding its patient and type like a join select."""
    patient = None
    if row["joined_patient_id"] is not None:
        patient = {"id": row["joined_patient_id"], "name": row["joined_patient_name"]}
    appointment_type = None
    if row["joined_type_id"] is not None:
        appointment_type = {
            "id": row["joined_type_id"],
            "name": row["joined_type_name"],
            "value": Decimal(row["joined_type_value"]),
        }
    return {
        "id": row["id"],
        "patient_id": row["patient_id"],
        "date": row["date"],
        "time": row["time"],
        "value": Decimal(row["value"]),
        "appointment_type_id": row["appointment_type_id"],
        "user_id": row["user_id"],
        "patient": patient,
        "appointment_type": appointment_type,
    }


def list_appointments(
    owner_id: str,
    *,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    include_orphans: bool = False,
) -> List[Dict[str, Any]]:
    """Return the owner's appointments ordered by date and time.

    ``start_date``/``end_date`` are inclusive bounds. Appointments whose patient
    can no longer be resolved are dropped unless ``include_orphans`` is set.
    """
    clauses = ["appointments.user_id = ?"]
    params: List[Any] = [owner_id]
    if start_date is not None:
        clauses.append("appointments.date >= ?")
        params.append(start_date.isoformat())
    if end_date is not None:
        clauses.append("appointments.date <= ?")
        params.append(end_date.isoformat())
    query = (
        f"{_APPOINTMENT_SELECT} WHERE {' AND '.join(clauses)} "
        "ORDER BY appointments.date ASC, appointments.time ASC"
    )
    with _connection() as conn:
        cursor = conn.execute(query, params)
        records = [_row_to_appointment(row) for row in cursor.fetchall()]
    if include_orphans:
        return records
    return [record for record in records if record["patient"] is not None]


def fetch_appointment(owner_id: str, appointment_id: str) -> Optional[Dict[str, Any]]:
    with _connection() as conn:
        cursor = conn.execute(
            f"{_APPOINTMENT_SELECT} WHERE appointments.id = ? AND appointments.user_id = ?",
            (appointment_id, owner_id),
        )
        row = cursor.fetchone()
        return _row_to_appointment(row) if row else None


def _serialize_appointment_payload(data: Dict[str, Any]) -> Dict[str, Any]:
    appointment_date = data.get("date")
    if isinstance(appointment_date, date):
        appointment_date = appointment_date.isoformat()
    appointment_time = data.get("time")
    if hasattr(appointment_time, "strftime"):
        appointment_time = appointment_time.strftime("%H:%M")
    if not appointment_date:
        raise ValueError("date is required")
    if not appointment_time:
        raise ValueError("time is required")
    return {
        "patient_id": data.get("patient_id"),
        "date": appointment_date,
        "time": appointment_time,
        "value": _money_text(data.get("value")),
        "appointment_type_id": data.get("appointment_type_id") or None,
    }


def create_appointment(owner_id: str, data: Dict[str, Any]) -> Dict[str, Any]:
    payload = _serialize_appointment_payload(data)
    appointment_id = _new_id()
    with _connection() as conn:
        conn.execute(
            """
            INSERT INTO appointments (
                id, patient_id, date, time, value, appointment_type_id, user_id, created_at
            )
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                appointment_id,
                payload["patient_id"],
                payload["date"],
                payload["time"],
                payload["value"],
                payload["appointment_type_id"],
                owner_id,
                clinic_now_iso(),
            ),
        )
        conn.commit()
    created = fetch_appointment(owner_id, appointment_id)
    if not created:
        raise RecordStoreError("Failed to fetch appointment after creation")
    return created


def update_appointment(
    owner_id: str, appointment_id: str, data: Dict[str, Any]
) -> Optional[Dict[str, Any]]:
    payload = _serialize_appointment_payload(data)
    with _connection() as conn:
        cursor = conn.execute(
            """
            UPDATE appointments
            SET patient_id = ?, date = ?, time = ?, value = ?, appointment_type_id = ?
            WHERE id = ? AND user_id = ?
            """,
            (
                payload["patient_id"],
                payload["date"],
                payload["time"],
                payload["value"],
                payload["appointment_type_id"],
                appointment_id,
                owner_id,
            ),
        )
        conn.commit()
        if cursor.rowcount == 0:
            return None
    return fetch_appointment(owner_id, appointment_id)


def delete_appointment(owner_id: str, appointment_id: str) -> bool:
    with _connection() as conn:
        cursor = conn.execute(
            "DELETE FROM appointments WHERE id = ? AND user_id = ?",
            (appointment_id, owner_id),
        )
        conn.commit()
        return cursor.rowcount > 0
