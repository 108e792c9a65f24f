from __future__ import annotations

import time
from typing import Any

import structlog

from ..models import InteractionResponse, ResponseMetadata
from ..notifications import EscalationData, NotificationFanout

logger = structlog.get_logger(__name__)

SIGN_OFF = "💙 Tim Pendamping"


def elapsed_ms(started: float) -> int:
    return int((time.perf_counter() - started) * 1000)


def success_response(
    *,
    kind: str,
    action: str,
    message: str,
    source: str,
    patient_id: str | None,
    started: float,
    data: dict[str, Any] | None = None,
    escalated: bool = False,
    notification_id: str | None = None,
) -> InteractionResponse:
    return InteractionResponse(
        success=True,
        processed=True,
        type=kind,
        action=action,
        message=message,
        data=data or {},
        metadata=ResponseMetadata(
            source=source,
            action=action,
            patient_id=patient_id,
            processing_time_ms=elapsed_ms(started),
            escalated=escalated,
            notification_id=notification_id,
        ),
    )


def error_response(
    *,
    kind: str,
    code: str,
    message: str,
    source: str,
    patient_id: str | None,
    started: float,
    action: str = "none",
    processed: bool = False,
    data: dict[str, Any] | None = None,
    escalated: bool = False,
    notification_id: str | None = None,
) -> InteractionResponse:
    return InteractionResponse(
        success=False,
        processed=processed,
        type=kind,
        action=action,
        message=message,
        data=data or {},
        errors=[{"code": code, "message": message}],
        metadata=ResponseMetadata(
            source=source,
            action=action,
            patient_id=patient_id,
            processing_time_ms=elapsed_ms(started),
            escalated=escalated,
            notification_id=notification_id,
        ),
    )


def not_processed_response(*, kind: str, source: str, patient_id: str | None, started: float, reason: str) -> InteractionResponse:
    return InteractionResponse(
        success=True,
        processed=False,
        type=kind,
        action="none",
        message="",
        data={"reason": reason},
        metadata=ResponseMetadata(
            source=source,
            action="none",
            patient_id=patient_id,
            processing_time_ms=elapsed_ms(started),
        ),
    )


def emergency_response(
    *,
    patient_id: str | None,
    started: float,
    indicators: list[str],
    notification_id: str | None,
    source: str = "emergency_handler",
) -> InteractionResponse:
    return InteractionResponse(
        success=True,
        processed=True,
        type="emergency",
        action="emergency_detected",
        message=(
            "🚨 Pesan Anda terdeteksi sebagai kondisi darurat. Segera hubungi 119 atau datang ke IGD terdekat. "
            "Tim kami sudah diberi tahu dan akan segera menghubungi Anda.\n\n" + SIGN_OFF
        ),
        data={"indicators": indicators},
        metadata=ResponseMetadata(
            source=source,
            action="emergency_detected",
            patient_id=patient_id,
            processing_time_ms=elapsed_ms(started),
            emergency_detected=True,
            escalated=True,
            notification_id=notification_id,
        ),
    )


async def escalate(fanout: NotificationFanout, data: EscalationData) -> str | None:
    """Create a staff notification; failures are logged and reported as ``None``."""
    try:
        notification = await fanout.create(data)
    except Exception:
        logger.exception("escalation_failed", patient_id=data.patient_id, reason=data.reason)
        return None
    return notification.id
