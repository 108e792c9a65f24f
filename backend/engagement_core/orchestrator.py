from __future__ import annotations

import time
from typing import Any

import structlog

from patient_store.patient_lookup import PatientLookupService
from patient_store.phone_utils import mask_phone

from .handlers.base import emergency_response, error_response, escalate
from .keyword_rules import looks_like_confirmation_reply
from .models import INTERACTION_TYPES, InboundMessage, InteractionContext, InteractionResponse
from .notifications import EscalationData, NotificationFanout
from .registry import HandlerRegistry
from .safety import SafetyScreen

logger = structlog.get_logger(__name__)

SOURCE = "orchestrator"
NOT_FOUND_REPLY = "Maaf, nomor Anda belum terdaftar. Silakan hubungi relawan kami untuk pendaftaran."
FAILURE_REPLY = "Maaf, terjadi kendala saat memproses pesan Anda. Silakan coba lagi nanti."


def route_interaction(patient: dict[str, Any], message: str, explicit_type: str | None = None) -> str:
    if explicit_type and explicit_type in INTERACTION_TYPES:
        return explicit_type
    status = str(patient.get("verification_status") or "").upper()
    if status == "PENDING":
        return "verification"
    if status == "VERIFIED" and looks_like_confirmation_reply(message):
        return "reminder_confirmation"
    return "general_inquiry"


class InteractionOrchestrator:
    """Runs one inbound message through lookup, the safety screen and the matching handler."""

    def __init__(
        self,
        *,
        lookup: PatientLookupService,
        safety: SafetyScreen,
        registry: HandlerRegistry,
        fanout: NotificationFanout,
    ) -> None:
        self.lookup = lookup
        self.safety = safety
        self.registry = registry
        self.fanout = fanout

    async def process(self, inbound: InboundMessage) -> InteractionResponse:
        structlog.contextvars.bind_contextvars(request_id=inbound.request_id)
        try:
            return await self._process(inbound)
        finally:
            structlog.contextvars.unbind_contextvars("request_id", "patient_id")

    async def _process(self, inbound: InboundMessage) -> InteractionResponse:
        started = time.perf_counter()
        phone = (inbound.phone or "").strip()
        message = (inbound.message or "").strip()
        if not phone or not message:
            return error_response(
                kind="unknown",
                code="validation_error",
                message="phone and message are required",
                source=SOURCE,
                patient_id=None,
                started=started,
            )

        lookup = await self.lookup.find_patient_by_phone(phone)
        if lookup.error:
            return error_response(
                kind="unknown",
                code="lookup_failed",
                message=FAILURE_REPLY,
                source=SOURCE,
                patient_id=None,
                started=started,
            )
        if not lookup.found or not lookup.patient:
            logger.info("inbound_from_unknown_patient", phone=mask_phone(phone), alternatives=len(lookup.alternatives))
            return error_response(
                kind="unknown",
                code="patient_not_found",
                message=NOT_FOUND_REPLY,
                source=SOURCE,
                patient_id=None,
                started=started,
                data={"alternatives_tried": len(lookup.alternatives)},
            )

        patient = lookup.patient
        patient_id = str(patient["id"])
        structlog.contextvars.bind_contextvars(patient_id=patient_id)

        screen = self.safety.screen(message, {"patient_id": patient_id})
        if screen.is_emergency:
            notification_id = await escalate(
                self.fanout,
                EscalationData(
                    patient_id=patient_id,
                    message=message,
                    reason="emergency_detection",
                    confidence=screen.confidence,
                    intent="emergency",
                    patient_context={"indicators": list(screen.indicators)},
                    priority_override="emergency",
                ),
            )
            if notification_id is None:
                logger.critical("emergency_escalation_not_persisted", patient_id=patient_id)
            return emergency_response(
                patient_id=patient_id,
                started=started,
                indicators=list(screen.indicators),
                notification_id=notification_id,
            )

        interaction_type = route_interaction(patient, message, inbound.interaction_type)
        entry = self.registry.dispatch(interaction_type)
        if entry is None:
            logger.info("no_handler_for_interaction", interaction_type=interaction_type)
            return error_response(
                kind="unknown",
                code="unhandled_interaction",
                message="",
                source=SOURCE,
                patient_id=patient_id,
                started=started,
                action="unhandled",
                data={"interaction_type": interaction_type},
            )

        ctx = InteractionContext(
            patient=patient,
            phone=phone,
            message=message,
            interaction_type=interaction_type,
            request_id=inbound.request_id,
            conversation_id=inbound.conversation_id,
        )
        try:
            response = await entry.handler(ctx)
        except Exception:
            logger.exception("interaction_handler_failed", handler=entry.name)
            response = error_response(
                kind=interaction_type,
                code="handler_error",
                message=FAILURE_REPLY,
                source=SOURCE,
                patient_id=patient_id,
                started=started,
            )

        if screen.escalation_required and not response.metadata.escalated:
            notification_id = await escalate(
                self.fanout,
                EscalationData(
                    patient_id=patient_id,
                    message=message,
                    reason="complex_inquiry",
                    intent="inappropriate_content",
                    patient_context={"violations": [v.keyword for v in screen.violations]},
                ),
            )
            if notification_id is not None:
                response.metadata.escalated = True
                response.metadata.notification_id = notification_id

        logger.info(
            "interaction_processed",
            handler=entry.name,
            interaction_type=interaction_type,
            processed=response.processed,
            action=response.action,
            escalated=response.metadata.escalated,
        )
        return response
