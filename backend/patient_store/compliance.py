from __future__ import annotations

import asyncio
from dataclasses import asdict, dataclass, field
from typing import Any

import structlog

from .reminder_store import ReminderStore
from .time_utils import to_iso, utc_now

logger = structlog.get_logger(__name__)

_CATEGORY_THRESHOLDS = (
    (80, "excellent", "Sangat Baik"),
    (60, "good", "Baik"),
    (40, "fair", "Cukup"),
)


@dataclass
class ComplianceStats:
    total_reminders: int = 0
    delivered_reminders: int = 0
    confirmed_reminders: int = 0
    completed_reminders: int = 0
    pending_reminders: int = 0
    failed_reminders: int = 0
    automated_completions: int = 0
    manual_completions: int = 0
    compliance_rate: int = 0
    last_calculated: str = field(default_factory=lambda: to_iso(utc_now()))

    def as_dict(self) -> dict[str, Any]:
        return asdict(self)


def compute_compliance_rate(complied: int, not_complied: int) -> int:
    denominator = complied + not_complied
    if denominator <= 0:
        return 0
    rate = round(100 * complied / denominator)
    return max(0, min(100, int(rate)))


def compliance_category(rate: int) -> dict[str, str]:
    for threshold, category, label in _CATEGORY_THRESHOLDS:
        if rate >= threshold:
            return {"category": category, "label": label}
    return {"category": "poor", "label": "Perlu Perhatian Khusus"}


def summarize_reminders(rows: list[dict[str, Any]]) -> ComplianceStats:
    stats = ComplianceStats(total_reminders=len(rows))
    for row in rows:
        status = str(row.get("status") or "").upper()
        confirmation = str(row.get("confirmation_status") or "").upper()
        if status in {"SENT", "DELIVERED"}:
            stats.delivered_reminders += 1
        if confirmation == "CONFIRMED":
            stats.confirmed_reminders += 1

        if row.get("has_manual_confirmation"):
            stats.completed_reminders += 1
            stats.manual_completions += 1
        elif confirmation == "CONFIRMED":
            stats.completed_reminders += 1
            stats.automated_completions += 1
        elif status == "FAILED":
            stats.failed_reminders += 1
        elif status == "PENDING":
            stats.pending_reminders += 1

    # Explicit non-compliance is not tracked anywhere yet, so it contributes nothing.
    not_complied = 0
    stats.compliance_rate = compute_compliance_rate(stats.completed_reminders, not_complied)
    return stats


class ComplianceCalculator:
    def __init__(self, reminders: ReminderStore) -> None:
        self._reminders = reminders

    def rate_sync(self, patient_id: str) -> ComplianceStats:
        try:
            rows = self._reminders.compliance_rows(patient_id)
        except Exception:
            logger.exception("compliance_calculation_failed", patient_id=patient_id)
            return ComplianceStats()
        stats = summarize_reminders(rows)
        logger.info(
            "compliance_calculated",
            patient_id=patient_id,
            total_reminders=stats.total_reminders,
            completed_reminders=stats.completed_reminders,
            compliance_rate=stats.compliance_rate,
        )
        return stats

    async def rate(self, patient_id: str) -> ComplianceStats:
        return await asyncio.to_thread(self.rate_sync, patient_id)

    async def bulk(self, patient_ids: list[str]) -> dict[str, ComplianceStats]:
        unique_ids = list(dict.fromkeys(patient_ids))
        results = await asyncio.gather(*(self.rate(patient_id) for patient_id in unique_ids))
        return dict(zip(unique_ids, results))
