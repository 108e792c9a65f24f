from __future__ import annotations

import asyncio
import re
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any

import structlog

from engagement_core.models import PatientDataResult
from patient_store.compliance import ComplianceCalculator, compliance_category
from patient_store.context_service import PatientContext
from patient_store.notes_store import HealthNoteStore
from patient_store.time_utils import start_of_day, utc_now

logger = structlog.get_logger(__name__)

MAX_NOTES_LIMIT = 50
DEFAULT_NOTES_LIMIT = 10

_KEYWORD_PATTERNS = (
    re.compile(r"tentang\s+([a-z0-9\s]+)"),
    re.compile(r"mengenai\s+([a-z0-9\s]+)"),
    re.compile(r"kondisi\s+([a-z0-9\s]+)"),
    re.compile(r"gejala\s+([a-z0-9\s]+)"),
)
_LIMIT_PATTERN = re.compile(r"(\d+)\s*(catatan|note|terakhir|akhir)")
HEALTH_TERMS = (
    "demam", "mual", "pusing", "nyeri", "sakit", "batuk", "pilek",
    "sesak", "lemas", "capek", "alergi", "ruam", "gatal", "muntah",
    "diare", "sembelit", "nafsu makan", "tidur", "kontrol", "cek",
    "dokter", "rumah sakit", "obat", "vitamin", "suplemen",
)
_TIME_RANGE_LABELS = {
    "hari_ini": "hari ini",
    "minggu_ini": "minggu ini",
    "bulan_ini": "bulan ini",
    "semuanya": "semuanya",
}


@dataclass
class HealthNotesQuery:
    time_range: str | None = None
    keywords: list[str] = field(default_factory=list)
    limit: int = DEFAULT_NOTES_LIMIT


def parse_health_notes_query(message: str) -> HealthNotesQuery:
    text = (message or "").lower()
    query = HealthNotesQuery()

    if "hari ini" in text:
        query.time_range = "hari_ini"
    elif "minggu ini" in text:
        query.time_range = "minggu_ini"
    elif "bulan ini" in text:
        query.time_range = "bulan_ini"
    elif "semua" in text or "seluruh" in text:
        query.time_range = "semuanya"

    for pattern in _KEYWORD_PATTERNS:
        match = pattern.search(text)
        if match:
            query.keywords = match.group(1).split()
            break
    if not query.keywords:
        query.keywords = [term for term in HEALTH_TERMS if term in text]

    limit_match = _LIMIT_PATTERN.search(text)
    if limit_match:
        query.limit = min(int(limit_match.group(1)), MAX_NOTES_LIMIT)
    return query


def time_range_start(time_range: str | None, now: datetime | None = None) -> datetime | None:
    today = start_of_day(now or utc_now())
    if time_range == "hari_ini":
        return today
    if time_range == "minggu_ini":
        # Week starts on Sunday.
        return today - timedelta(days=(today.weekday() + 1) % 7)
    if time_range == "bulan_ini":
        return today.replace(day=1)
    return None


def format_health_notes(notes: list[dict[str, Any]]) -> str:
    if not notes:
        return "Tidak ada catatan kesehatan yang ditemukan untuk periode ini."
    lines = [f"{index}. {str(note.get('note_date') or '')[:10]}: {note.get('note')}" for index, note in enumerate(notes, 1)]
    return "Catatan Kesehatan:\n" + "\n".join(lines)


def format_reminders(todays: list[dict[str, Any]], active: list[dict[str, Any]]) -> str:
    if todays:
        lines = [f"- {row.get('scheduled_time')}: {row.get('message')}" for row in todays]
        return "Pengingat Hari Ini:\n" + "\n".join(lines)
    if active:
        lines = [f"- {row.get('message')} ({row.get('frequency') or 'harian'}, {row.get('scheduled_time')})" for row in active]
        return "Pengingat Aktif:\n" + "\n".join(lines)
    return "Tidak ada pengingat obat terjadwal."


class HealthNotesQueryService:
    def __init__(self, notes: HealthNoteStore) -> None:
        self._notes = notes

    async def query(self, patient_id: str, message: str) -> PatientDataResult:
        parsed = parse_health_notes_query(message)
        since = time_range_start(parsed.time_range)
        notes = await asyncio.to_thread(
            self._notes.query_notes,
            patient_id=patient_id,
            since=since,
            keywords=parsed.keywords or None,
            limit=parsed.limit,
        )
        logger.info(
            "health_notes_queried",
            patient_id=patient_id,
            time_range=parsed.time_range,
            keyword_count=len(parsed.keywords),
            found=len(notes),
        )
        return PatientDataResult(
            data_type="health_notes",
            summary=format_health_notes(notes),
            payload={
                "notes": notes,
                "time_range": _TIME_RANGE_LABELS.get(parsed.time_range or "semuanya"),
                "keywords": parsed.keywords,
            },
        )


class MedicationQueryService:
    def __init__(self, compliance: ComplianceCalculator) -> None:
        self._compliance = compliance

    def medication_info(self, context: PatientContext) -> PatientDataResult:
        medications = [
            {
                "reminder_id": row.get("id"),
                "medication": row.get("message"),
                "frequency": row.get("frequency"),
                "scheduled_time": row.get("scheduled_time"),
            }
            for row in context.active_reminders
        ]
        if not medications:
            summary = "Tidak ada obat yang ditemukan untuk periode ini."
        else:
            lines = [
                f"{index}. {item['medication']} - {item['frequency'] or 'harian'}, pukul {item['scheduled_time']}"
                for index, item in enumerate(medications, 1)
            ]
            summary = "Informasi Obat:\n" + "\n".join(lines)
        return PatientDataResult(data_type="medication_info", summary=summary, payload={"medications": medications})

    def schedule(self, context: PatientContext) -> PatientDataResult:
        by_time: dict[str, list[str]] = {}
        for row in context.todays_reminders or context.active_reminders:
            by_time.setdefault(str(row.get("scheduled_time") or "-"), []).append(str(row.get("message") or ""))
        if not by_time:
            summary = "Tidak ada jadwal obat aktif saat ini."
        else:
            lines = [f"{time_label}: {', '.join(items)}" for time_label, items in sorted(by_time.items())]
            summary = "Jadwal Obat Hari Ini:\n" + "\n".join(lines)
        return PatientDataResult(data_type="medication_schedule", summary=summary, payload={"schedule": by_time})

    async def compliance(self, patient_id: str) -> PatientDataResult:
        stats = await self._compliance.rate(patient_id)
        category = compliance_category(stats.compliance_rate)
        if stats.total_reminders == 0:
            summary = "Tidak ada obat aktif untuk dipantau kepatuhannya."
        else:
            summary = (
                "Ringkasan Kepatuhan Obat:\n"
                f"- Pengingat terkirim: {stats.delivered_reminders}\n"
                f"- Diminum: {stats.completed_reminders}\n"
                f"- Tingkat kepatuhan: {stats.compliance_rate}% ({category['label']})"
            )
        return PatientDataResult(
            data_type="medication_compliance",
            summary=summary,
            payload={**stats.as_dict(), **category},
        )


class PatientDataQueryService:
    """Runs the sub-query that matches an authorized patient-data request."""

    def __init__(self, *, health_notes: HealthNotesQueryService, medications: MedicationQueryService) -> None:
        self._health_notes = health_notes
        self._medications = medications

    async def fetch(
        self,
        data_type: str,
        *,
        patient_id: str,
        message: str,
        context: PatientContext,
    ) -> PatientDataResult | None:
        if data_type == "health_notes":
            return await self._health_notes.query(patient_id, message)
        if data_type == "medication_info":
            return self._medications.medication_info(context)
        if data_type == "medication_schedule":
            return self._medications.schedule(context)
        if data_type == "medication_compliance":
            return await self._medications.compliance(patient_id)
        if data_type == "reminder":
            return PatientDataResult(
                data_type="reminder",
                summary=format_reminders(context.todays_reminders, context.active_reminders),
                payload={
                    "todays_reminders": context.todays_reminders,
                    "active_reminders": context.active_reminders,
                },
            )
        return None
