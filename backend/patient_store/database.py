from __future__ import annotations

import sqlite3
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator


class SQLiteEngagementDB:
    def __init__(self, db_path: str) -> None:
        self._path = Path(db_path).expanduser().resolve()
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()
        self._init_schema()

    @property
    def path(self) -> str:
        return str(self._path)

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(str(self._path), timeout=30.0, check_same_thread=False)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        return conn

    @contextmanager
    def connection(self) -> Iterator[sqlite3.Connection]:
        conn = self._connect()
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def _init_schema(self) -> None:
        with self._lock, self.connection() as conn:
            conn.executescript(
                """
                CREATE TABLE IF NOT EXISTS patients (
                  id TEXT PRIMARY KEY,
                  name TEXT NOT NULL,
                  phone_number TEXT NOT NULL,
                  verification_status TEXT NOT NULL DEFAULT 'PENDING',
                  verification_response_at TEXT,
                  verification_message TEXT,
                  is_active INTEGER NOT NULL DEFAULT 1,
                  requires_extra_consent INTEGER NOT NULL DEFAULT 0,
                  deleted_at TEXT,
                  created_at TEXT NOT NULL,
                  updated_at TEXT NOT NULL
                );

                CREATE TABLE IF NOT EXISTS reminders (
                  id TEXT PRIMARY KEY,
                  patient_id TEXT NOT NULL REFERENCES patients(id),
                  scheduled_time TEXT NOT NULL,
                  frequency TEXT NOT NULL DEFAULT 'daily',
                  start_date TEXT NOT NULL,
                  end_date TEXT,
                  message TEXT NOT NULL,
                  is_active INTEGER NOT NULL DEFAULT 1,
                  deleted_at TEXT,
                  status TEXT NOT NULL DEFAULT 'PENDING',
                  sent_at TEXT,
                  confirmation_status TEXT,
                  confirmation_response TEXT,
                  confirmation_response_at TEXT,
                  created_at TEXT NOT NULL,
                  updated_at TEXT NOT NULL
                );

                CREATE TABLE IF NOT EXISTS manual_confirmations (
                  id TEXT PRIMARY KEY,
                  patient_id TEXT NOT NULL REFERENCES patients(id),
                  reminder_id TEXT NOT NULL REFERENCES reminders(id),
                  confirmed_by TEXT,
                  notes TEXT,
                  confirmed_at TEXT NOT NULL
                );

                CREATE TABLE IF NOT EXISTS health_notes (
                  id TEXT PRIMARY KEY,
                  patient_id TEXT NOT NULL REFERENCES patients(id),
                  note TEXT NOT NULL,
                  note_date TEXT NOT NULL,
                  recorded_by TEXT,
                  deleted_at TEXT,
                  created_at TEXT NOT NULL
                );

                CREATE TABLE IF NOT EXISTS patient_variables (
                  id TEXT PRIMARY KEY,
                  patient_id TEXT NOT NULL REFERENCES patients(id),
                  name TEXT NOT NULL,
                  value TEXT NOT NULL,
                  is_active INTEGER NOT NULL DEFAULT 1,
                  created_at TEXT NOT NULL
                );

                CREATE TABLE IF NOT EXISTS conversation_threads (
                  id TEXT PRIMARY KEY,
                  patient_id TEXT NOT NULL REFERENCES patients(id),
                  phone_number TEXT NOT NULL,
                  current_context TEXT NOT NULL DEFAULT 'general_inquiry',
                  created_at TEXT NOT NULL,
                  updated_at TEXT NOT NULL
                );

                CREATE TABLE IF NOT EXISTS conversation_messages (
                  id TEXT PRIMARY KEY,
                  thread_id TEXT NOT NULL REFERENCES conversation_threads(id),
                  message TEXT NOT NULL,
                  direction TEXT NOT NULL,
                  message_type TEXT NOT NULL DEFAULT 'general',
                  intent TEXT,
                  confidence REAL,
                  created_at TEXT NOT NULL
                );

                CREATE TABLE IF NOT EXISTS escalation_notifications (
                  id TEXT PRIMARY KEY,
                  patient_id TEXT NOT NULL REFERENCES patients(id),
                  message TEXT NOT NULL,
                  reason TEXT NOT NULL,
                  priority TEXT NOT NULL,
                  status TEXT NOT NULL DEFAULT 'pending',
                  confidence INTEGER,
                  intent TEXT,
                  patient_context_json TEXT,
                  assignee_id TEXT,
                  response TEXT,
                  created_at TEXT NOT NULL,
                  updated_at TEXT NOT NULL,
                  responded_at TEXT
                );

                CREATE TABLE IF NOT EXISTS data_access_events (
                  id TEXT PRIMARY KEY,
                  patient_id TEXT NOT NULL,
                  requested_data_type TEXT NOT NULL,
                  request_context TEXT NOT NULL,
                  authorized INTEGER NOT NULL,
                  risk_level TEXT NOT NULL,
                  violations_json TEXT NOT NULL,
                  created_at TEXT NOT NULL
                );

                CREATE INDEX IF NOT EXISTS idx_patients_phone ON patients(phone_number, verification_status);
                CREATE INDEX IF NOT EXISTS idx_reminders_patient ON reminders(patient_id, is_active);
                CREATE INDEX IF NOT EXISTS idx_manual_confirmations_reminder ON manual_confirmations(reminder_id);
                CREATE INDEX IF NOT EXISTS idx_health_notes_patient ON health_notes(patient_id, note_date);
                CREATE INDEX IF NOT EXISTS idx_threads_patient ON conversation_threads(patient_id, updated_at);
                CREATE INDEX IF NOT EXISTS idx_messages_thread ON conversation_messages(thread_id, created_at);
                CREATE INDEX IF NOT EXISTS idx_notifications_status ON escalation_notifications(status, priority);
                CREATE INDEX IF NOT EXISTS idx_access_events_patient ON data_access_events(patient_id, created_at);
                """
            )
