from __future__ import annotations

import time
from typing import Any, Protocol

import structlog

from patient_store.context_service import PatientContext, PatientContextService

from ..classification import ClassificationGateway, GeneralInquiryClassification
from ..models import InteractionContext, InteractionResponse, PatientDataResult
from ..notifications import EscalationData, NotificationFanout
from ..policy import DataAccessPolicyEngine, DataAccessRequest, denial_message
from ..safety import SafetyScreen
from .base import SIGN_OFF, emergency_response, error_response, escalate, not_processed_response, success_response

logger = structlog.get_logger(__name__)

SOURCE = "general_inquiry_handler"
DEFAULT_LOW_CONFIDENCE_THRESHOLD = 0.6

GENERAL_REPLY = (
    "Terima kasih atas pertanyaan Anda, {name}. Untuk informasi medis yang lebih spesifik, "
    "silakan konsultasikan dengan dokter atau relawan kami.\n\n" + SIGN_OFF
)
ESCALATED_REPLY = (
    "Terima kasih {name}. Pertanyaan Anda sudah kami teruskan ke relawan, "
    "mereka akan segera menghubungi Anda.\n\n" + SIGN_OFF
)
CONTEXT_UNAVAILABLE_REPLY = "Maaf, data Anda sedang tidak dapat diakses. Silakan coba beberapa saat lagi.\n\n" + SIGN_OFF


class PatientDataQueries(Protocol):
    async def fetch(
        self,
        data_type: str,
        *,
        patient_id: str,
        message: str,
        context: PatientContext,
    ) -> PatientDataResult | None: ...


def build_classifier_context(context: PatientContext) -> dict[str, Any]:
    """Model-facing context. Note, variable and outbound-derived fields stay out; only policy-granted data may be added."""
    recent = [
        {"direction": "inbound", "message": str(row.get("message") or "")[:300]}
        for row in context.recent_messages
        if row.get("direction") == "inbound"
    ][:5]
    return {
        "stage": "general_inquiry",
        "patient_name": context.patient.get("name"),
        "verification_status": context.patient.get("verification_status"),
        "active_reminder_count": len(context.active_reminders),
        "todays_reminder_count": len(context.todays_reminders),
        "recent_messages": list(reversed(recent)),
    }


class GeneralInquiryHandler:
    name = "general_inquiry"
    priority = 30

    def __init__(
        self,
        *,
        context_service: PatientContextService,
        gateway: ClassificationGateway,
        policy: DataAccessPolicyEngine,
        fanout: NotificationFanout,
        safety: SafetyScreen,
        queries: PatientDataQueries,
        low_confidence_threshold: float = DEFAULT_LOW_CONFIDENCE_THRESHOLD,
    ) -> None:
        self._context_service = context_service
        self._gateway = gateway
        self._policy = policy
        self._fanout = fanout
        self._safety = safety
        self._queries = queries
        self._low_confidence_threshold = low_confidence_threshold

    async def _escalate_if_needed(
        self,
        ctx: InteractionContext,
        analysis: GeneralInquiryClassification,
        context: PatientContext,
    ) -> str | None:
        confidence_pct = round(analysis.confidence * 100)
        if analysis.needs_human_help:
            reason = "complex_inquiry"
        elif analysis.confidence < self._low_confidence_threshold:
            reason = "low_confidence"
        else:
            return None
        return await escalate(
            self._fanout,
            EscalationData(
                patient_id=ctx.patient_id,
                message=ctx.message,
                reason=reason,
                confidence=confidence_pct,
                intent=analysis.intent,
                patient_context={
                    "topic": analysis.topic,
                    "symptom_mentions": context.symptom_mentions,
                    "active_reminder_count": len(context.active_reminders),
                },
            ),
        )

    async def handle(self, ctx: InteractionContext) -> InteractionResponse:
        started = time.perf_counter()
        if ctx.verification_status != "VERIFIED":
            return not_processed_response(
                kind="general_inquiry",
                source=SOURCE,
                patient_id=ctx.patient_id,
                started=started,
                reason="patient_not_verified",
            )

        screen = self._safety.screen(ctx.message, {"patient_id": ctx.patient_id})
        if screen.is_emergency:
            notification_id = await escalate(
                self._fanout,
                EscalationData(
                    patient_id=ctx.patient_id,
                    message=ctx.message,
                    reason="emergency_detection",
                    confidence=screen.confidence,
                    intent="emergency",
                    priority_override="emergency",
                ),
            )
            return emergency_response(
                patient_id=ctx.patient_id,
                started=started,
                indicators=list(screen.indicators),
                notification_id=notification_id,
                source=SOURCE,
            )

        context_result = await self._context_service.get_context(ctx.phone, patient=ctx.patient)
        if not context_result.found or context_result.context is None:
            return error_response(
                kind="general_inquiry",
                code="context_unavailable",
                message=CONTEXT_UNAVAILABLE_REPLY,
                source=SOURCE,
                patient_id=ctx.patient_id,
                started=started,
            )
        context = context_result.context
        classifier_context = build_classifier_context(context)
        analysis = await self._gateway.classify_general_inquiry(ctx.message, classifier_context)
        notification_id = await self._escalate_if_needed(ctx, analysis, context)
        escalated = notification_id is not None
        name = ctx.patient.get("name") or ""
        analysis_summary = {
            "intent": analysis.intent,
            "topic": analysis.topic,
            "response_type": analysis.response_type,
            "confidence": analysis.confidence,
            "classified_by": analysis.source,
        }

        data_result: PatientDataResult | None = None
        if analysis.data_access_required and analysis.patient_data_type:
            recent_inbound = [
                str(row.get("message") or "") for row in context.recent_messages if row.get("direction") == "inbound"
            ]
            decision = await self._policy.validate(
                DataAccessRequest(
                    patient_id=ctx.patient_id,
                    requested_data_type=analysis.patient_data_type,
                    request_context="patient_initiated",
                    recent_messages=tuple([ctx.message, *recent_inbound][:5]),
                )
            )
            denial = denial_message(decision)
            if denial is not None:
                if decision.requires_escalation and not escalated:
                    notification_id = await escalate(
                        self._fanout,
                        EscalationData(
                            patient_id=ctx.patient_id,
                            message=ctx.message,
                            reason="complex_inquiry",
                            intent="data_access_denied",
                            patient_context={
                                "requested_data_type": analysis.patient_data_type,
                                "risk_level": decision.risk_level,
                            },
                            priority_override="high" if decision.risk_level == "critical" else None,
                        ),
                    )
                    escalated = notification_id is not None
                return error_response(
                    kind="general_inquiry",
                    code="data_access_denied",
                    message=denial,
                    source=SOURCE,
                    patient_id=ctx.patient_id,
                    started=started,
                    action="data_access_denied",
                    processed=True,
                    data={
                        "analysis": analysis_summary,
                        "requested_data_type": analysis.patient_data_type,
                        "risk_level": decision.risk_level,
                    },
                    escalated=escalated,
                    notification_id=notification_id,
                )
            try:
                data_result = await self._queries.fetch(
                    analysis.patient_data_type,
                    patient_id=ctx.patient_id,
                    message=ctx.message,
                    context=context,
                )
            except Exception:
                logger.exception(
                    "patient_data_query_failed",
                    patient_id=ctx.patient_id,
                    requested_data_type=analysis.patient_data_type,
                )
                data_result = None

        if data_result is not None:
            fallback_text = f"{data_result.summary}\n\n{SIGN_OFF}"
            reply_context = {**classifier_context, "authorized_data": data_result.summary}
        elif escalated:
            fallback_text = ESCALATED_REPLY.format(name=name)
            reply_context = {**classifier_context, "escalated": True}
        else:
            fallback_text = GENERAL_REPLY.format(name=name)
            reply_context = classifier_context
        reply = await self._gateway.compose_reply(ctx.message, reply_context, fallback_text)

        data: dict[str, Any] = {"analysis": analysis_summary}
        if data_result is not None:
            data["patient_data"] = {data_result.data_type: data_result.payload}
        return success_response(
            kind="general_inquiry",
            action="escalated" if escalated else "answered",
            message=reply,
            source=SOURCE,
            patient_id=ctx.patient_id,
            started=started,
            data=data,
            escalated=escalated,
            notification_id=notification_id,
        )
