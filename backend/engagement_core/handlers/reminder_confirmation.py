from __future__ import annotations

import asyncio
import time

import structlog

from patient_store.context_service import PatientContextService
from patient_store.reminder_store import ReminderStore

from ..classification import ClassificationGateway
from ..keyword_rules import match_confirmation
from ..models import InteractionContext, InteractionResponse
from ..notifications import EscalationData, NotificationFanout
from .base import SIGN_OFF, error_response, escalate, not_processed_response, success_response

logger = structlog.get_logger(__name__)

SOURCE = "reminder_confirmation_handler"
MODEL_ACCEPT_CONFIDENCE = 0.8

CONFIRMED_REPLY = "Terima kasih {name}! ✅ Catatan minum obat *{medication}* sudah kami simpan. Tetap jaga kesehatan ya.\n\n" + SIGN_OFF
MISSED_REPLY = (
    "Baik {name}, kami catat obat *{medication}* belum diminum. "
    "Jika masih memungkinkan, segera minum sesuai anjuran dokter.\n\n" + SIGN_OFF
)
HELP_REPLY = "Baik {name}, pesan Anda sudah kami teruskan ke relawan. Mereka akan segera menghubungi Anda.\n\n" + SIGN_OFF
RETRY_REPLY = "Mohon balas *SUDAH* jika obat sudah diminum atau *BELUM* jika belum.\n\n" + SIGN_OFF

_MODEL_OUTCOMES = {"CONFIRMED": "confirmed", "MISSED": "missed", "HELP": "help_needed"}


class ReminderConfirmationHandler:
    name = "reminder_confirmation"
    priority = 20

    def __init__(
        self,
        *,
        reminders: ReminderStore,
        context_service: PatientContextService,
        gateway: ClassificationGateway,
        fanout: NotificationFanout,
    ) -> None:
        self._reminders = reminders
        self._context_service = context_service
        self._gateway = gateway
        self._fanout = fanout

    async def _classify(self, ctx: InteractionContext, medication: str) -> tuple[str | None, str]:
        outcome = match_confirmation(ctx.message)
        if outcome:
            return outcome, "keyword"
        result = await self._gateway.classify_confirmation(
            ctx.message,
            {"stage": "reminder_confirmation", "medication": medication},
        )
        if result.needs_human_help:
            return "help_needed", result.source
        if result.confidence >= MODEL_ACCEPT_CONFIDENCE:
            return _MODEL_OUTCOMES.get(result.response), result.source
        return None, result.source

    async def handle(self, ctx: InteractionContext) -> InteractionResponse:
        started = time.perf_counter()
        if ctx.verification_status != "VERIFIED":
            return not_processed_response(
                kind="reminder_confirmation",
                source=SOURCE,
                patient_id=ctx.patient_id,
                started=started,
                reason="patient_not_verified",
            )

        try:
            reminder = await asyncio.to_thread(self._reminders.oldest_awaiting_confirmation, ctx.patient_id)
        except Exception:
            logger.exception("awaiting_reminder_lookup_failed", patient_id=ctx.patient_id)
            return error_response(
                kind="reminder_confirmation",
                code="persistence_error",
                message="Maaf, terjadi kendala saat memeriksa pengingat Anda. Silakan coba lagi.",
                source=SOURCE,
                patient_id=ctx.patient_id,
                started=started,
            )
        if reminder is None:
            return not_processed_response(
                kind="reminder_confirmation",
                source=SOURCE,
                patient_id=ctx.patient_id,
                started=started,
                reason="no_reminder_awaiting_confirmation",
            )

        name = ctx.patient.get("name") or ""
        medication = reminder.get("message") or "obat"
        outcome, classified_by = await self._classify(ctx, medication)

        if outcome == "help_needed":
            notification_id = await escalate(
                self._fanout,
                EscalationData(
                    patient_id=ctx.patient_id,
                    message=ctx.message,
                    reason="complex_inquiry",
                    intent="reminder_help",
                    patient_context={"reminder_id": reminder["id"], "medication": medication},
                ),
            )
            return success_response(
                kind="reminder_confirmation",
                action="help_requested",
                message=HELP_REPLY.format(name=name),
                source=SOURCE,
                patient_id=ctx.patient_id,
                started=started,
                data={"reminder_id": reminder["id"], "classified_by": classified_by},
                escalated=notification_id is not None,
                notification_id=notification_id,
            )

        if outcome not in {"confirmed", "missed"}:
            return error_response(
                kind="reminder_confirmation",
                code="unrecognized_reply",
                message=RETRY_REPLY,
                source=SOURCE,
                patient_id=ctx.patient_id,
                started=started,
                data={"reminder_id": reminder["id"]},
            )

        confirmation_status = "CONFIRMED" if outcome == "confirmed" else "MISSED"
        try:
            await asyncio.to_thread(
                self._reminders.record_confirmation,
                reminder_id=reminder["id"],
                confirmation_status=confirmation_status,
                response=ctx.message,
            )
        except Exception:
            logger.exception("reminder_confirmation_update_failed", patient_id=ctx.patient_id, reminder_id=reminder["id"])
            return error_response(
                kind="reminder_confirmation",
                code="persistence_error",
                message="Maaf, terjadi kendala saat menyimpan jawaban Anda. Silakan coba lagi.",
                source=SOURCE,
                patient_id=ctx.patient_id,
                started=started,
            )
        self._context_service.invalidate_patient(ctx.patient, ctx.phone)

        logger.info(
            "reminder_confirmation_recorded",
            patient_id=ctx.patient_id,
            reminder_id=reminder["id"],
            confirmation_status=confirmation_status,
            classified_by=classified_by,
        )
        template = CONFIRMED_REPLY if outcome == "confirmed" else MISSED_REPLY
        return success_response(
            kind="reminder_confirmation",
            action=outcome,
            message=template.format(name=name, medication=medication),
            source=SOURCE,
            patient_id=ctx.patient_id,
            started=started,
            data={
                "reminder_id": reminder["id"],
                "confirmation_status": confirmation_status,
                "classified_by": classified_by,
            },
        )
