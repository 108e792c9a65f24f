from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any

from .database import SQLiteEngagementDB
from .time_utils import to_iso, utc_now


class HealthNoteStore:
    def __init__(self, db: SQLiteEngagementDB) -> None:
        self._db = db

    def add_note(
        self,
        *,
        patient_id: str,
        note: str,
        note_date: datetime | None = None,
        recorded_by: str | None = None,
    ) -> dict[str, Any]:
        now = utc_now()
        note_id = uuid.uuid4().hex
        with self._db.connection() as conn:
            conn.execute(
                """
                INSERT INTO health_notes (id, patient_id, note, note_date, recorded_by, created_at)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (note_id, patient_id, note, to_iso(note_date or now), recorded_by, to_iso(now)),
            )
            row = conn.execute("SELECT * FROM health_notes WHERE id = ?", (note_id,)).fetchone()
        return dict(row)

    def recent_notes(self, patient_id: str, limit: int = 5) -> list[dict[str, Any]]:
        with self._db.connection() as conn:
            rows = conn.execute(
                """
                SELECT *
                FROM health_notes
                WHERE patient_id = ? AND deleted_at IS NULL
                ORDER BY note_date DESC
                LIMIT ?
                """,
                (patient_id, limit),
            ).fetchall()
        return [dict(row) for row in rows]

    def query_notes(
        self,
        *,
        patient_id: str,
        since: datetime | None = None,
        keywords: list[str] | None = None,
        limit: int = 10,
    ) -> list[dict[str, Any]]:
        query = "SELECT * FROM health_notes WHERE patient_id = ? AND deleted_at IS NULL"
        params: list[Any] = [patient_id]
        if since is not None:
            query += " AND note_date >= ?"
            params.append(to_iso(since))
        if keywords:
            query += " AND (" + " OR ".join("LOWER(note) LIKE ?" for _ in keywords) + ")"
            params.extend(f"%{keyword.lower()}%" for keyword in keywords)
        query += " ORDER BY note_date DESC LIMIT ?"
        params.append(limit)
        with self._db.connection() as conn:
            rows = conn.execute(query, params).fetchall()
        return [dict(row) for row in rows]


class PatientVariableStore:
    def __init__(self, db: SQLiteEngagementDB) -> None:
        self._db = db

    def set_variable(self, *, patient_id: str, name: str, value: str) -> None:
        now = to_iso(utc_now())
        with self._db.connection() as conn:
            conn.execute(
                "UPDATE patient_variables SET is_active = 0 WHERE patient_id = ? AND name = ?",
                (patient_id, name),
            )
            conn.execute(
                """
                INSERT INTO patient_variables (id, patient_id, name, value, is_active, created_at)
                VALUES (?, ?, ?, ?, 1, ?)
                """,
                (uuid.uuid4().hex, patient_id, name, value, now),
            )

    def active_variables(self, patient_id: str, limit: int = 10) -> list[dict[str, Any]]:
        with self._db.connection() as conn:
            rows = conn.execute(
                """
                SELECT name, value, created_at
                FROM patient_variables
                WHERE patient_id = ? AND is_active = 1
                ORDER BY created_at DESC
                LIMIT ?
                """,
                (patient_id, limit),
            ).fetchall()
        return [dict(row) for row in rows]
