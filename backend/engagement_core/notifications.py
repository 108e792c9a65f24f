from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Any, Protocol

import structlog

from patient_store.notification_store import NotificationStore
from patient_store.patient_repository import PatientRepository
from patient_store.phone_utils import mask_phone
from patient_store.time_utils import parse_iso

from .errors import NotFoundError

logger = structlog.get_logger(__name__)

ESCALATION_REASONS = ("emergency_detection", "low_confidence", "complex_inquiry", "other")
PRIORITIES = ("emergency", "high", "medium", "low")
LOW_CONFIDENCE_HIGH_PRIORITY_BELOW = 30

_PRIORITY_EMOJI = {"emergency": "🚨", "high": "⚠️", "medium": "📋", "low": "ℹ️"}
_REASON_TEXT = {
    "emergency_detection": "Deteksi Darurat",
    "low_confidence": "Respons Tidak Yakin",
    "complex_inquiry": "Pertanyaan Kompleks",
}


@dataclass(frozen=True)
class SendOutcome:
    recipient: str
    ok: bool
    error: str | None = None


class MessagingTransport(Protocol):
    async def send(self, recipient: str, text: str) -> SendOutcome: ...


@dataclass
class EscalationData:
    patient_id: str
    message: str
    reason: str
    confidence: int | None = None
    intent: str | None = None
    patient_context: dict[str, Any] | None = None
    priority_override: str | None = None


@dataclass
class ChannelResult:
    channel: str
    ok: bool
    sends: list[SendOutcome] = field(default_factory=list)
    error: str | None = None


@dataclass
class EscalationNotification:
    id: str
    patient_id: str
    reason: str
    priority: str
    status: str
    message: str
    created_at: str
    confidence: int | None = None
    intent: str | None = None
    channel_results: list[ChannelResult] = field(default_factory=list)


def determine_priority(reason: str, confidence: int | None = None) -> str:
    if reason == "emergency_detection":
        return "emergency"
    if reason == "low_confidence":
        if confidence is not None and confidence < LOW_CONFIDENCE_HIGH_PRIORITY_BELOW:
            return "high"
        return "medium"
    if reason == "complex_inquiry":
        return "medium"
    return "low"


def format_staff_alert(notification: dict[str, Any], patient: dict[str, Any]) -> str:
    emoji = _PRIORITY_EMOJI.get(notification["priority"], "📢")
    reason_text = _REASON_TEXT.get(notification["reason"], "Lainnya")
    lines = [
        f"{emoji} *NOTIFIKASI VOLUNTEER* {emoji}",
        "",
        f"*Pasien:* {patient.get('name') or '-'}",
        f"*No. HP:* {patient.get('phone_number') or '-'}",
        f"*Alasan:* {reason_text}",
        f"*Prioritas:* {str(notification['priority']).upper()}",
    ]
    if notification.get("confidence"):
        lines.append(f"*Tingkat Keyakinan:* {notification['confidence']}%")
    if notification.get("intent"):
        lines.append(f"*Intent:* {notification['intent']}")
    lines.extend(
        [
            "",
            "*Pesan Pasien:*",
            f"\"{notification['message']}\"",
            "",
            "Silakan periksa dashboard untuk detail lengkap dan respons yang sesuai.",
        ]
    )
    return "\n".join(lines)


def average_response_minutes(intervals: list[tuple[str, str]]) -> float:
    durations: list[float] = []
    for created_at, responded_at in intervals:
        created = parse_iso(created_at)
        responded = parse_iso(responded_at)
        if created is None or responded is None:
            continue
        durations.append((responded - created).total_seconds() / 60.0)
    if not durations:
        return 0.0
    return round(sum(durations) / len(durations), 2)


class NotificationFanout:
    def __init__(
        self,
        *,
        patients: PatientRepository,
        store: NotificationStore,
        transport: MessagingTransport,
        staff_recipients: tuple[str, ...] = (),
        email_enabled: bool = False,
    ) -> None:
        self._patients = patients
        self._store = store
        self._transport = transport
        self._staff_recipients = tuple(staff_recipients)
        self._email_enabled = email_enabled

    async def create(self, data: EscalationData) -> EscalationNotification:
        patient = await asyncio.to_thread(self._patients.get_patient, data.patient_id)
        if not patient:
            raise NotFoundError(f"Patient not found: {data.patient_id}")

        priority = data.priority_override or determine_priority(data.reason, data.confidence)
        record = await asyncio.to_thread(
            self._store.insert,
            patient_id=data.patient_id,
            message=data.message,
            reason=data.reason,
            priority=priority,
            confidence=data.confidence,
            intent=data.intent,
            patient_context=data.patient_context,
        )
        logger.info(
            "escalation_notification_created",
            notification_id=record["id"],
            patient_id=data.patient_id,
            reason=data.reason,
            priority=priority,
        )

        channel_results = await self._deliver(record, patient)
        return EscalationNotification(
            id=record["id"],
            patient_id=record["patient_id"],
            reason=record["reason"],
            priority=record["priority"],
            status=record["status"],
            message=record["message"],
            created_at=record["created_at"],
            confidence=record.get("confidence"),
            intent=record.get("intent"),
            channel_results=channel_results,
        )

    async def _deliver(self, record: dict[str, Any], patient: dict[str, Any]) -> list[ChannelResult]:
        channels: list[tuple[str, Any]] = [
            ("dashboard", self._deliver_dashboard(record)),
            ("messaging", self._deliver_messaging(record, patient)),
        ]
        if self._email_enabled:
            channels.append(("email", self._deliver_email(record)))

        outcomes = await asyncio.gather(*(coro for _, coro in channels), return_exceptions=True)
        results: list[ChannelResult] = []
        for (channel, _), outcome in zip(channels, outcomes):
            if isinstance(outcome, BaseException):
                logger.error(
                    "notification_channel_failed",
                    notification_id=record["id"],
                    channel=channel,
                    error=str(outcome),
                )
                results.append(ChannelResult(channel=channel, ok=False, error=str(outcome)))
            else:
                results.append(outcome)
        return results

    async def _deliver_dashboard(self, record: dict[str, Any]) -> ChannelResult:
        # The persisted row is what the dashboard reads.
        return ChannelResult(channel="dashboard", ok=True)

    async def _send_one(self, recipient: str, text: str) -> SendOutcome:
        try:
            outcome = await self._transport.send(recipient, text)
        except Exception as exc:
            logger.error("staff_alert_send_failed", recipient=mask_phone(recipient), error=str(exc))
            return SendOutcome(recipient=recipient, ok=False, error=str(exc))
        if not outcome.ok:
            logger.warning("staff_alert_not_delivered", recipient=mask_phone(recipient), error=outcome.error)
        return outcome

    async def _deliver_messaging(self, record: dict[str, Any], patient: dict[str, Any]) -> ChannelResult:
        if not self._staff_recipients:
            logger.info("staff_alert_skipped_no_recipients", notification_id=record["id"])
            return ChannelResult(channel="messaging", ok=True)
        text = format_staff_alert(record, patient)
        sends = await asyncio.gather(*(self._send_one(recipient, text) for recipient in self._staff_recipients))
        return ChannelResult(channel="messaging", ok=all(send.ok for send in sends), sends=list(sends))

    async def _deliver_email(self, record: dict[str, Any]) -> ChannelResult:
        # TODO: wire an SMTP/email provider once staff email addresses are stored.
        logger.info("email_notification_placeholder", notification_id=record["id"], priority=record["priority"])
        return ChannelResult(channel="email", ok=True)

    async def average_response_minutes(self) -> float:
        intervals = await asyncio.to_thread(self._store.responded_intervals)
        return average_response_minutes(intervals)

    async def stats(self) -> dict[str, Any]:
        counts = await asyncio.to_thread(self._store.counts)
        counts["avg_response_minutes"] = await self.average_response_minutes()
        return counts
