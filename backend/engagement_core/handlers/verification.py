from __future__ import annotations

import asyncio
import time

import structlog

from patient_store.context_service import PatientContextService
from patient_store.patient_repository import PatientRepository

from ..classification import ClassificationGateway
from ..keyword_rules import match_verification_reply
from ..models import InteractionContext, InteractionResponse
from .base import SIGN_OFF, error_response, not_processed_response, success_response

logger = structlog.get_logger(__name__)

SOURCE = "verification_handler"
MODEL_ACCEPT_CONFIDENCE = 0.8

VERIFIED_REPLY = (
    "Terima kasih {name}! ✅\n\n"
    "Nomor Anda sudah terverifikasi. Mulai sekarang Anda akan menerima pengingat obat melalui WhatsApp ini.\n\n"
    + SIGN_OFF
)
DECLINED_REPLY = (
    "Baik {name}, kami menghormati keputusan Anda. Anda tidak akan menerima pengingat obat.\n\n"
    "Jika berubah pikiran, silakan hubungi relawan kami.\n\n" + SIGN_OFF
)
RETRY_REPLY = "Mohon balas dengan *YA* untuk menerima pengingat atau *TIDAK* untuk menolak.\n\n" + SIGN_OFF

_STATUS_BY_OUTCOME = {"affirmative": ("VERIFIED", "verified"), "negative": ("DECLINED", "declined")}


class VerificationHandler:
    name = "verification"
    priority = 10

    def __init__(
        self,
        *,
        patients: PatientRepository,
        context_service: PatientContextService,
        gateway: ClassificationGateway,
    ) -> None:
        self._patients = patients
        self._context_service = context_service
        self._gateway = gateway

    async def _classify(self, ctx: InteractionContext) -> tuple[str | None, str]:
        outcome = match_verification_reply(ctx.message)
        if outcome:
            return outcome, "keyword"
        result = await self._gateway.classify_verification(
            ctx.message,
            {"stage": "verification", "patient_name": ctx.patient.get("name")},
        )
        if result.confidence >= MODEL_ACCEPT_CONFIDENCE:
            if result.response == "YES":
                return "affirmative", result.source
            if result.response == "NO":
                return "negative", result.source
        return None, result.source

    async def handle(self, ctx: InteractionContext) -> InteractionResponse:
        started = time.perf_counter()
        if ctx.verification_status != "PENDING":
            return not_processed_response(
                kind="verification",
                source=SOURCE,
                patient_id=ctx.patient_id,
                started=started,
                reason="patient_not_pending_verification",
            )

        outcome, classified_by = await self._classify(ctx)
        if outcome is None:
            logger.info("verification_reply_unrecognized", patient_id=ctx.patient_id)
            return error_response(
                kind="verification",
                code="unrecognized_reply",
                message=RETRY_REPLY,
                source=SOURCE,
                patient_id=ctx.patient_id,
                started=started,
            )

        new_status, action = _STATUS_BY_OUTCOME[outcome]
        try:
            await asyncio.to_thread(
                self._patients.update_verification,
                patient_id=ctx.patient_id,
                status=new_status,
                message=ctx.message,
            )
        except Exception:
            logger.exception("verification_update_failed", patient_id=ctx.patient_id)
            return error_response(
                kind="verification",
                code="persistence_error",
                message="Maaf, terjadi kendala saat menyimpan jawaban Anda. Silakan coba lagi.",
                source=SOURCE,
                patient_id=ctx.patient_id,
                started=started,
            )
        self._context_service.invalidate_patient(ctx.patient, ctx.phone)

        logger.info(
            "verification_recorded",
            patient_id=ctx.patient_id,
            verification_status=new_status,
            classified_by=classified_by,
        )
        template = VERIFIED_REPLY if new_status == "VERIFIED" else DECLINED_REPLY
        return success_response(
            kind="verification",
            action=action,
            message=template.format(name=ctx.patient.get("name") or ""),
            source=SOURCE,
            patient_id=ctx.patient_id,
            started=started,
            data={"verification_status": new_status, "classified_by": classified_by},
        )
