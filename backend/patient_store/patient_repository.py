from __future__ import annotations

import sqlite3
import uuid
from typing import Any

from .database import SQLiteEngagementDB
from .time_utils import to_iso, utc_now

VERIFICATION_STATUSES = {"PENDING", "VERIFIED", "DECLINED", "EXPIRED"}


def _row_to_patient(row: sqlite3.Row | None) -> dict[str, Any] | None:
    if row is None:
        return None
    patient = dict(row)
    patient["is_active"] = bool(patient.get("is_active"))
    patient["requires_extra_consent"] = bool(patient.get("requires_extra_consent"))
    return patient


class PatientRepository:
    def __init__(self, db: SQLiteEngagementDB) -> None:
        self._db = db

    def create_patient(
        self,
        *,
        name: str,
        phone_number: str,
        verification_status: str = "PENDING",
        is_active: bool = True,
        requires_extra_consent: bool = False,
    ) -> dict[str, Any]:
        status = verification_status.upper()
        if status not in VERIFICATION_STATUSES:
            raise ValueError(f"Unknown verification status: {verification_status}")
        now = to_iso(utc_now())
        patient_id = uuid.uuid4().hex
        with self._db.connection() as conn:
            conn.execute(
                """
                INSERT INTO patients (
                  id, name, phone_number, verification_status, is_active,
                  requires_extra_consent, created_at, updated_at
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    patient_id,
                    name,
                    phone_number,
                    status,
                    1 if is_active else 0,
                    1 if requires_extra_consent else 0,
                    now,
                    now,
                ),
            )
            row = conn.execute("SELECT * FROM patients WHERE id = ?", (patient_id,)).fetchone()
        return _row_to_patient(row) or {}

    def get_patient(self, patient_id: str) -> dict[str, Any] | None:
        with self._db.connection() as conn:
            row = conn.execute(
                "SELECT * FROM patients WHERE id = ? AND deleted_at IS NULL",
                (patient_id,),
            ).fetchone()
        return _row_to_patient(row)

    def find_active_by_phone(self, phone_number: str, status: str | None = None) -> dict[str, Any] | None:
        query = """
            SELECT *
            FROM patients
            WHERE phone_number = ? AND is_active = 1 AND deleted_at IS NULL
        """
        params: list[Any] = [phone_number]
        if status:
            query += " AND verification_status = ?"
            params.append(status)
        query += " ORDER BY created_at DESC LIMIT 1"
        with self._db.connection() as conn:
            row = conn.execute(query, params).fetchone()
        return _row_to_patient(row)

    def update_verification(
        self,
        *,
        patient_id: str,
        status: str,
        message: str,
    ) -> dict[str, Any] | None:
        now = to_iso(utc_now())
        with self._db.connection() as conn:
            conn.execute(
                """
                UPDATE patients
                SET verification_status = ?,
                    verification_response_at = ?,
                    verification_message = ?,
                    updated_at = ?
                WHERE id = ? AND deleted_at IS NULL
                """,
                (status, now, message, now, patient_id),
            )
            row = conn.execute("SELECT * FROM patients WHERE id = ?", (patient_id,)).fetchone()
        return _row_to_patient(row)

    def set_active(self, patient_id: str, is_active: bool) -> None:
        now = to_iso(utc_now())
        with self._db.connection() as conn:
            conn.execute(
                "UPDATE patients SET is_active = ?, updated_at = ? WHERE id = ?",
                (1 if is_active else 0, now, patient_id),
            )

    def soft_delete(self, patient_id: str) -> None:
        now = to_iso(utc_now())
        with self._db.connection() as conn:
            conn.execute(
                "UPDATE patients SET deleted_at = ?, updated_at = ? WHERE id = ?",
                (now, now, patient_id),
            )
