from __future__ import annotations

import uuid
from typing import Any

from .database import SQLiteEngagementDB
from .time_utils import to_iso, utc_now


class ConversationStore:
    """Conversation threads and messages. Written by the transport surface, read by the context aggregator."""

    def __init__(self, db: SQLiteEngagementDB) -> None:
        self._db = db

    def ensure_thread(self, *, patient_id: str, phone_number: str, current_context: str = "general_inquiry") -> str:
        now = to_iso(utc_now())
        with self._db.connection() as conn:
            existing = conn.execute(
                """
                SELECT id
                FROM conversation_threads
                WHERE patient_id = ?
                ORDER BY updated_at DESC
                LIMIT 1
                """,
                (patient_id,),
            ).fetchone()
            if existing:
                conn.execute(
                    "UPDATE conversation_threads SET current_context = ?, updated_at = ? WHERE id = ?",
                    (current_context, now, existing["id"]),
                )
                return existing["id"]
            thread_id = uuid.uuid4().hex
            conn.execute(
                """
                INSERT INTO conversation_threads (id, patient_id, phone_number, current_context, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (thread_id, patient_id, phone_number, current_context, now, now),
            )
            return thread_id

    def record_message(
        self,
        *,
        thread_id: str,
        message: str,
        direction: str,
        message_type: str = "general",
        intent: str | None = None,
        confidence: float | None = None,
    ) -> str:
        if direction not in {"inbound", "outbound"}:
            raise ValueError(f"Unknown message direction: {direction}")
        message_id = uuid.uuid4().hex
        now = to_iso(utc_now())
        with self._db.connection() as conn:
            conn.execute(
                """
                INSERT INTO conversation_messages (
                  id, thread_id, message, direction, message_type, intent, confidence, created_at
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (message_id, thread_id, message, direction, message_type, intent, confidence, now),
            )
            conn.execute("UPDATE conversation_threads SET updated_at = ? WHERE id = ?", (now, thread_id))
        return message_id

    def recent_messages(self, patient_id: str, *, thread_limit: int = 5, message_limit: int = 20) -> list[dict[str, Any]]:
        with self._db.connection() as conn:
            threads = conn.execute(
                """
                SELECT id
                FROM conversation_threads
                WHERE patient_id = ?
                ORDER BY updated_at DESC
                LIMIT ?
                """,
                (patient_id, thread_limit),
            ).fetchall()
            thread_ids = [row["id"] for row in threads]
            if not thread_ids:
                return []
            placeholders = ",".join("?" for _ in thread_ids)
            rows = conn.execute(
                f"""
                SELECT id, thread_id, message, direction, message_type, intent, confidence, created_at
                FROM conversation_messages
                WHERE thread_id IN ({placeholders})
                ORDER BY created_at DESC
                LIMIT ?
                """,
                (*thread_ids, message_limit),
            ).fetchall()
        return [dict(row) for row in rows]
