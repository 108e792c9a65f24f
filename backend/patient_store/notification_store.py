from __future__ import annotations

import json
import sqlite3
import uuid
from typing import Any

from .database import SQLiteEngagementDB
from .time_utils import to_iso, utc_now


def _json_dumps(value: Any) -> str:
    return json.dumps(value, sort_keys=True, separators=(",", ":"), default=str)


def _row_to_notification(row: sqlite3.Row | None) -> dict[str, Any] | None:
    if row is None:
        return None
    notification = dict(row)
    context_blob = notification.pop("patient_context_json", None)
    notification["patient_context"] = json.loads(context_blob) if context_blob else None
    return notification


class NotificationStore:
    def __init__(self, db: SQLiteEngagementDB) -> None:
        self._db = db

    def insert(
        self,
        *,
        patient_id: str,
        message: str,
        reason: str,
        priority: str,
        confidence: int | None,
        intent: str | None,
        patient_context: dict[str, Any] | None,
    ) -> dict[str, Any]:
        now = to_iso(utc_now())
        notification_id = uuid.uuid4().hex
        with self._db.connection() as conn:
            conn.execute(
                """
                INSERT INTO escalation_notifications (
                  id, patient_id, message, reason, priority, status, confidence, intent,
                  patient_context_json, created_at, updated_at
                )
                VALUES (?, ?, ?, ?, ?, 'pending', ?, ?, ?, ?, ?)
                """,
                (
                    notification_id,
                    patient_id,
                    message,
                    reason,
                    priority,
                    confidence,
                    intent,
                    _json_dumps(patient_context) if patient_context is not None else None,
                    now,
                    now,
                ),
            )
            row = conn.execute("SELECT * FROM escalation_notifications WHERE id = ?", (notification_id,)).fetchone()
        return _row_to_notification(row) or {}

    def get(self, notification_id: str) -> dict[str, Any] | None:
        with self._db.connection() as conn:
            row = conn.execute("SELECT * FROM escalation_notifications WHERE id = ?", (notification_id,)).fetchone()
        return _row_to_notification(row)

    def update(
        self,
        *,
        notification_id: str,
        status: str,
        assignee_id: str | None = None,
        response: str | None = None,
        responded: bool = False,
    ) -> dict[str, Any] | None:
        now = to_iso(utc_now())
        with self._db.connection() as conn:
            conn.execute(
                """
                UPDATE escalation_notifications
                SET status = ?,
                    assignee_id = COALESCE(?, assignee_id),
                    response = COALESCE(?, response),
                    responded_at = CASE WHEN ? THEN ? ELSE responded_at END,
                    updated_at = ?
                WHERE id = ?
                """,
                (status, assignee_id, response, 1 if responded else 0, now, now, notification_id),
            )
            row = conn.execute("SELECT * FROM escalation_notifications WHERE id = ?", (notification_id,)).fetchone()
        return _row_to_notification(row)

    def list_notifications(
        self,
        *,
        status: str | None = None,
        priority: str | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[dict[str, Any]]:
        query = "SELECT * FROM escalation_notifications WHERE 1 = 1"
        params: list[Any] = []
        if status:
            query += " AND status = ?"
            params.append(status)
        if priority:
            query += " AND priority = ?"
            params.append(priority)
        query += " ORDER BY created_at DESC LIMIT ? OFFSET ?"
        params.extend([limit, offset])
        with self._db.connection() as conn:
            rows = conn.execute(query, params).fetchall()
        return [_row_to_notification(row) or {} for row in rows]

    def responded_intervals(self) -> list[tuple[str, str]]:
        with self._db.connection() as conn:
            rows = conn.execute(
                """
                SELECT created_at, responded_at
                FROM escalation_notifications
                WHERE status = 'responded' AND responded_at IS NOT NULL
                """
            ).fetchall()
        return [(row["created_at"], row["responded_at"]) for row in rows]

    def counts(self) -> dict[str, int]:
        with self._db.connection() as conn:
            row = conn.execute(
                """
                SELECT
                  COUNT(*) AS total,
                  COALESCE(SUM(CASE WHEN status = 'pending' THEN 1 ELSE 0 END), 0) AS pending,
                  COALESCE(SUM(CASE WHEN priority = 'emergency' THEN 1 ELSE 0 END), 0) AS emergency,
                  COALESCE(SUM(CASE WHEN priority = 'high' THEN 1 ELSE 0 END), 0) AS high
                FROM escalation_notifications
                """
            ).fetchone()
        return {key: int(row[key] or 0) for key in ("total", "pending", "emergency", "high")}


class DataAccessAuditStore:
    def __init__(self, db: SQLiteEngagementDB) -> None:
        self._db = db

    def append(
        self,
        *,
        patient_id: str,
        requested_data_type: str,
        request_context: str,
        authorized: bool,
        risk_level: str,
        violations: list[dict[str, Any]],
    ) -> None:
        with self._db.connection() as conn:
            conn.execute(
                """
                INSERT INTO data_access_events (
                  id, patient_id, requested_data_type, request_context, authorized,
                  risk_level, violations_json, created_at
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    uuid.uuid4().hex,
                    patient_id,
                    requested_data_type,
                    request_context,
                    1 if authorized else 0,
                    risk_level,
                    _json_dumps(violations),
                    to_iso(utc_now()),
                ),
            )

    def events_for(self, patient_id: str, limit: int = 20) -> list[dict[str, Any]]:
        with self._db.connection() as conn:
            rows = conn.execute(
                """
                SELECT *
                FROM data_access_events
                WHERE patient_id = ?
                ORDER BY created_at DESC
                LIMIT ?
                """,
                (patient_id, limit),
            ).fetchall()
        events = []
        for row in rows:
            event = dict(row)
            event["authorized"] = bool(event["authorized"])
            event["violations"] = json.loads(event.pop("violations_json") or "[]")
            events.append(event)
        return events
