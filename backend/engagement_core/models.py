from __future__ import annotations

import uuid
from dataclasses import asdict, dataclass, field
from typing import Any

from patient_store.time_utils import to_iso, utc_now

INTERACTION_TYPES = {
    "verification",
    "reminder_confirmation",
    "general_inquiry",
    "emergency",
    "unsubscribe",
}
RESPONSE_TYPES = {"verification", "reminder_confirmation", "general_inquiry", "emergency", "unknown"}


@dataclass
class InboundMessage:
    phone: str
    message: str
    interaction_type: str | None = None
    conversation_id: str | None = None
    request_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    received_at: str = field(default_factory=lambda: to_iso(utc_now()))


@dataclass
class InteractionContext:
    patient: dict[str, Any]
    phone: str
    message: str
    interaction_type: str
    request_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    conversation_id: str | None = None

    @property
    def patient_id(self) -> str:
        return str(self.patient.get("id") or "")

    @property
    def verification_status(self) -> str:
        return str(self.patient.get("verification_status") or "").upper()

    @property
    def normalized_message(self) -> str:
        return " ".join((self.message or "").lower().split())


@dataclass
class ResponseMetadata:
    source: str
    action: str
    patient_id: str | None = None
    timestamp: str = field(default_factory=lambda: to_iso(utc_now()))
    processing_time_ms: int = 0
    emergency_detected: bool = False
    escalated: bool = False
    notification_id: str | None = None


@dataclass
class InteractionResponse:
    success: bool
    processed: bool
    type: str
    action: str
    message: str
    metadata: ResponseMetadata
    data: dict[str, Any] = field(default_factory=dict)
    errors: list[dict[str, Any]] = field(default_factory=list)

    @property
    def emergency_detected(self) -> bool:
        return self.metadata.emergency_detected

    @property
    def escalated(self) -> bool:
        return self.metadata.escalated

    def as_envelope(self) -> dict[str, Any]:
        return {
            "status": "succeeded" if self.success else "failed",
            "processed": self.processed,
            "type": self.type,
            "action": self.action,
            "message": self.message,
            "data": self.data,
            "errors": self.errors,
            "metadata": asdict(self.metadata),
        }


@dataclass
class PatientDataResult:
    """Output of one authorized patient-data sub-query."""

    data_type: str
    summary: str
    payload: dict[str, Any] = field(default_factory=dict)
