from __future__ import annotations

import sqlite3
import uuid
from datetime import datetime
from typing import Any

from .database import SQLiteEngagementDB
from .time_utils import day_window, to_iso, utc_now

DELIVERY_STATUSES = {"PENDING", "SENT", "DELIVERED", "FAILED"}
CONFIRMATION_STATUSES = {"PENDING", "CONFIRMED", "MISSED"}


def _row_to_reminder(row: sqlite3.Row) -> dict[str, Any]:
    reminder = dict(row)
    reminder["is_active"] = bool(reminder.get("is_active"))
    return reminder


class ReminderStore:
    def __init__(self, db: SQLiteEngagementDB) -> None:
        self._db = db

    def create_reminder(
        self,
        *,
        patient_id: str,
        message: str,
        scheduled_time: str = "08:00",
        frequency: str = "daily",
        start_date: datetime | None = None,
        end_date: datetime | None = None,
        status: str = "PENDING",
        sent_at: datetime | None = None,
        confirmation_status: str | None = None,
        is_active: bool = True,
    ) -> dict[str, Any]:
        if status not in DELIVERY_STATUSES:
            raise ValueError(f"Unknown reminder status: {status}")
        if confirmation_status is not None and confirmation_status not in CONFIRMATION_STATUSES:
            raise ValueError(f"Unknown confirmation status: {confirmation_status}")
        now = utc_now()
        reminder_id = uuid.uuid4().hex
        with self._db.connection() as conn:
            conn.execute(
                """
                INSERT INTO reminders (
                  id, patient_id, scheduled_time, frequency, start_date, end_date, message,
                  is_active, status, sent_at, confirmation_status, created_at, updated_at
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    reminder_id,
                    patient_id,
                    scheduled_time,
                    frequency,
                    to_iso(start_date or now),
                    to_iso(end_date) if end_date else None,
                    message,
                    1 if is_active else 0,
                    status,
                    to_iso(sent_at) if sent_at else None,
                    confirmation_status,
                    to_iso(now),
                    to_iso(now),
                ),
            )
            row = conn.execute("SELECT * FROM reminders WHERE id = ?", (reminder_id,)).fetchone()
        return _row_to_reminder(row)

    def get_reminder(self, reminder_id: str) -> dict[str, Any] | None:
        with self._db.connection() as conn:
            row = conn.execute(
                "SELECT * FROM reminders WHERE id = ? AND deleted_at IS NULL",
                (reminder_id,),
            ).fetchone()
        return _row_to_reminder(row) if row else None

    def todays_reminders(self, patient_id: str, now: datetime | None = None) -> list[dict[str, Any]]:
        day_start, day_end = day_window(now or utc_now())
        with self._db.connection() as conn:
            rows = conn.execute(
                """
                SELECT *
                FROM reminders
                WHERE patient_id = ?
                  AND is_active = 1
                  AND deleted_at IS NULL
                  AND start_date < ?
                  AND (end_date IS NULL OR end_date >= ?)
                ORDER BY scheduled_time ASC
                """,
                (patient_id, to_iso(day_end), to_iso(day_start)),
            ).fetchall()
        return [_row_to_reminder(row) for row in rows]

    def active_reminders(self, patient_id: str, now: datetime | None = None, limit: int = 10) -> list[dict[str, Any]]:
        current = to_iso(now or utc_now())
        with self._db.connection() as conn:
            rows = conn.execute(
                """
                SELECT *
                FROM reminders
                WHERE patient_id = ?
                  AND is_active = 1
                  AND deleted_at IS NULL
                  AND (end_date IS NULL OR end_date >= ?)
                ORDER BY scheduled_time ASC
                LIMIT ?
                """,
                (patient_id, current, limit),
            ).fetchall()
        return [_row_to_reminder(row) for row in rows]

    def oldest_awaiting_confirmation(self, patient_id: str) -> dict[str, Any] | None:
        with self._db.connection() as conn:
            row = conn.execute(
                """
                SELECT *
                FROM reminders
                WHERE patient_id = ?
                  AND is_active = 1
                  AND deleted_at IS NULL
                  AND status IN ('SENT', 'DELIVERED')
                  AND (confirmation_status IS NULL OR confirmation_status = 'PENDING')
                ORDER BY sent_at ASC, created_at ASC
                LIMIT 1
                """,
                (patient_id,),
            ).fetchone()
        return _row_to_reminder(row) if row else None

    def record_confirmation(self, *, reminder_id: str, confirmation_status: str, response: str) -> dict[str, Any] | None:
        if confirmation_status not in CONFIRMATION_STATUSES:
            raise ValueError(f"Unknown confirmation status: {confirmation_status}")
        now = to_iso(utc_now())
        with self._db.connection() as conn:
            conn.execute(
                """
                UPDATE reminders
                SET confirmation_status = ?,
                    confirmation_response = ?,
                    confirmation_response_at = ?,
                    updated_at = ?
                WHERE id = ? AND deleted_at IS NULL
                """,
                (confirmation_status, response, now, now, reminder_id),
            )
            row = conn.execute("SELECT * FROM reminders WHERE id = ?", (reminder_id,)).fetchone()
        return _row_to_reminder(row) if row else None

    def mark_delivery(self, *, reminder_id: str, status: str) -> None:
        if status not in DELIVERY_STATUSES:
            raise ValueError(f"Unknown reminder status: {status}")
        now = to_iso(utc_now())
        with self._db.connection() as conn:
            conn.execute(
                """
                UPDATE reminders
                SET status = ?,
                    sent_at = CASE WHEN ? IN ('SENT', 'DELIVERED') THEN COALESCE(sent_at, ?) ELSE sent_at END,
                    updated_at = ?
                WHERE id = ?
                """,
                (status, status, now, now, reminder_id),
            )

    def compliance_rows(self, patient_id: str) -> list[dict[str, Any]]:
        """Active reminders joined with whether a manual confirmation exists."""
        with self._db.connection() as conn:
            rows = conn.execute(
                """
                SELECT r.id, r.status, r.confirmation_status,
                       EXISTS (
                         SELECT 1 FROM manual_confirmations mc WHERE mc.reminder_id = r.id
                       ) AS has_manual_confirmation
                FROM reminders r
                WHERE r.patient_id = ? AND r.is_active = 1 AND r.deleted_at IS NULL
                """,
                (patient_id,),
            ).fetchall()
        return [
            {
                "id": row["id"],
                "status": row["status"],
                "confirmation_status": row["confirmation_status"],
                "has_manual_confirmation": bool(row["has_manual_confirmation"]),
            }
            for row in rows
        ]

    def add_manual_confirmation(
        self,
        *,
        reminder_id: str,
        confirmed_by: str | None = None,
        notes: str | None = None,
    ) -> dict[str, Any] | None:
        reminder = self.get_reminder(reminder_id)
        if not reminder:
            return None
        confirmation_id = uuid.uuid4().hex
        now = to_iso(utc_now())
        with self._db.connection() as conn:
            conn.execute(
                """
                INSERT INTO manual_confirmations (id, patient_id, reminder_id, confirmed_by, notes, confirmed_at)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (confirmation_id, reminder["patient_id"], reminder_id, confirmed_by, notes, now),
            )
        return {
            "id": confirmation_id,
            "patient_id": reminder["patient_id"],
            "reminder_id": reminder_id,
            "confirmed_by": confirmed_by,
            "notes": notes,
            "confirmed_at": now,
        }
