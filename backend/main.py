from __future__ import annotations

import asyncio
import os
from typing import Any

import structlog
from fastapi import FastAPI, HTTPException, Query
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field

from engagement_core import (
    ClassificationGateway,
    ClassificationService,
    DataAccessPolicyEngine,
    EngagementError,
    HandlerRegistry,
    InboundMessage,
    InteractionOrchestrator,
    InvalidTransitionError,
    MessagingTransport,
    NotFoundError,
    NotificationFanout,
    NotificationLifecycle,
    SafetyScreen,
    SendOutcome,
    entry_for,
)
from engagement_core.handlers import GeneralInquiryHandler, ReminderConfirmationHandler, VerificationHandler
from engagement_core.policy import AccessRateLimiter
from engagement_tools import (
    HealthNotesQueryService,
    HttpMessagingTransport,
    LLMClassificationClient,
    LoggingMessagingTransport,
    MedicationQueryService,
    PatientDataQueryService,
    provider_candidates,
)
from logging_config import configure_logging
from patient_store import (
    ComplianceCalculator,
    ConversationStore,
    DataAccessAuditStore,
    HealthNoteStore,
    InMemoryTTLCache,
    NotificationStore,
    PatientContextService,
    PatientLookupService,
    PatientRepository,
    PatientVariableStore,
    ReminderStore,
    SQLiteEngagementDB,
    compliance_category,
)
from settings import Settings, bootstrap_local_env

bootstrap_local_env()
settings = Settings.from_env()
configure_logging(settings.log_level, json_logs=settings.json_logs)
logger = structlog.get_logger(__name__)


class InboundWebhookRequest(BaseModel):
    phone: str
    message: str
    interaction_type: str | None = None
    conversation_id: str | None = None


class BulkComplianceRequest(BaseModel):
    patient_ids: list[str] = Field(default_factory=list)


class ManualConfirmationRequest(BaseModel):
    confirmed_by: str | None = None
    notes: str | None = None


class AssignRequest(BaseModel):
    assignee_id: str


class RespondRequest(BaseModel):
    response: str


class EngagementApp:
    def __init__(
        self,
        config: Settings,
        *,
        classifier: ClassificationService | None = None,
        transport: MessagingTransport | None = None,
    ) -> None:
        self.settings = config
        self.db = SQLiteEngagementDB(config.db_path)
        self.patients = PatientRepository(self.db)
        self.reminders = ReminderStore(self.db)
        self.notes = HealthNoteStore(self.db)
        self.variables = PatientVariableStore(self.db)
        self.conversations = ConversationStore(self.db)
        self.notification_store = NotificationStore(self.db)
        self.audit = DataAccessAuditStore(self.db)

        self.lookup = PatientLookupService(self.patients)
        self.context_service = PatientContextService(
            lookup=self.lookup,
            reminders=self.reminders,
            notes=self.notes,
            variables=self.variables,
            conversations=self.conversations,
            cache=InMemoryTTLCache(),
            ttl_seconds=config.context_ttl_seconds,
        )
        self.compliance = ComplianceCalculator(self.reminders)
        self.safety = SafetyScreen()
        self.policy = DataAccessPolicyEngine(
            patients=self.patients,
            audit=self.audit,
            rate_limiter=AccessRateLimiter(
                max_requests=config.access_rate_limit_max,
                window_seconds=config.access_rate_limit_window_seconds,
            ),
        )

        if classifier is None and not config.disable_external_calls:
            providers = provider_candidates(config.classification_provider)
            if providers:
                classifier = LLMClassificationClient(
                    providers=providers,
                    timeout_seconds=config.classification_timeout_seconds,
                )
        self.gateway = ClassificationGateway(classifier)

        if transport is not None:
            self.transport = transport
        elif config.messaging_gateway_url and config.messaging_gateway_token and not config.disable_external_calls:
            self.transport = HttpMessagingTransport(
                base_url=config.messaging_gateway_url,
                token=config.messaging_gateway_token,
            )
        else:
            self.transport = LoggingMessagingTransport()

        self.fanout = NotificationFanout(
            patients=self.patients,
            store=self.notification_store,
            transport=self.transport,
            staff_recipients=config.staff_alert_recipients,
            email_enabled=config.email_alerts_enabled,
        )
        self.lifecycle = NotificationLifecycle(self.notification_store)

        queries = PatientDataQueryService(
            health_notes=HealthNotesQueryService(self.notes),
            medications=MedicationQueryService(self.compliance),
        )
        self.registry = HandlerRegistry(
            [
                entry_for(
                    VerificationHandler(patients=self.patients, context_service=self.context_service, gateway=self.gateway)
                ),
                entry_for(
                    ReminderConfirmationHandler(
                        reminders=self.reminders,
                        context_service=self.context_service,
                        gateway=self.gateway,
                        fanout=self.fanout,
                    )
                ),
                entry_for(
                    GeneralInquiryHandler(
                        context_service=self.context_service,
                        gateway=self.gateway,
                        policy=self.policy,
                        fanout=self.fanout,
                        safety=self.safety,
                        queries=queries,
                        low_confidence_threshold=config.low_confidence_threshold,
                    )
                ),
            ]
        )
        self.orchestrator = InteractionOrchestrator(
            lookup=self.lookup,
            safety=self.safety,
            registry=self.registry,
            fanout=self.fanout,
        )

    async def _record(self, *, patient: dict[str, Any], phone: str, message: str, direction: str, **fields: Any) -> None:
        def _write() -> None:
            thread_id = self.conversations.ensure_thread(patient_id=str(patient["id"]), phone_number=phone)
            self.conversations.record_message(thread_id=thread_id, message=message, direction=direction, **fields)

        try:
            await asyncio.to_thread(_write)
        except Exception:
            logger.exception("conversation_record_failed", patient_id=patient.get("id"), direction=direction)

    async def handle_inbound(self, payload: InboundWebhookRequest) -> dict[str, Any]:
        lookup = await self.lookup.find_patient_by_phone(payload.phone)
        patient = lookup.patient if lookup.found else None
        if patient:
            await self._record(patient=patient, phone=payload.phone, message=payload.message, direction="inbound")
            self.context_service.invalidate_patient(patient, payload.phone)

        response = await self.orchestrator.process(
            InboundMessage(
                phone=payload.phone,
                message=payload.message,
                interaction_type=payload.interaction_type,
                conversation_id=payload.conversation_id,
            )
        )

        if response.message:
            try:
                outcome = await self.transport.send(payload.phone, response.message)
            except Exception as exc:
                outcome = SendOutcome(recipient=payload.phone, ok=False, error=str(exc))
            if not outcome.ok:
                logger.warning("reply_send_failed", patient_id=response.metadata.patient_id, error=outcome.error)
            if patient:
                analysis = response.data.get("analysis") or {}
                await self._record(
                    patient=patient,
                    phone=payload.phone,
                    message=response.message,
                    direction="outbound",
                    message_type=response.type,
                    intent=analysis.get("intent"),
                    confidence=analysis.get("confidence"),
                )
        return response.as_envelope()


container = EngagementApp(settings)
app = FastAPI(title="Patient Engagement Backend")

allowed_origins = os.getenv("ALLOWED_ORIGINS", "http://localhost:3000").split(",")
app.add_middleware(
    CORSMiddleware,
    allow_origins=[origin.strip() for origin in allowed_origins],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def _http_error(exc: EngagementError) -> HTTPException:
    if isinstance(exc, NotFoundError):
        return HTTPException(status_code=404, detail=str(exc))
    if isinstance(exc, InvalidTransitionError):
        return HTTPException(status_code=409, detail=str(exc))
    return HTTPException(status_code=400, detail=str(exc))


@app.get("/health")
def health():
    return {
        "status": "ok",
        "handlers": container.registry.list_names(),
        "classifier": "model" if container.gateway.has_service else "keyword_rules",
    }


@app.post("/webhooks/inbound")
async def inbound_webhook(payload: InboundWebhookRequest):
    return await container.handle_inbound(payload)


@app.get("/patients/context")
async def patient_context(phone: str = Query(..., min_length=1)):
    result = await container.context_service.get_context(phone)
    if result.error:
        raise HTTPException(status_code=503, detail="Patient context is unavailable.")
    if not result.found or result.context is None:
        raise HTTPException(status_code=404, detail="Patient not found")
    return {"cache_hit": result.cache_hit, "context": result.context.as_dict()}


@app.get("/patients/{patient_id}/compliance")
async def patient_compliance(patient_id: str):
    patient = await asyncio.to_thread(container.patients.get_patient, patient_id)
    if not patient:
        raise HTTPException(status_code=404, detail="Patient not found")
    stats = await container.compliance.rate(patient_id)
    return {"patient_id": patient_id, **stats.as_dict(), **compliance_category(stats.compliance_rate)}


@app.post("/compliance/bulk")
async def bulk_compliance(payload: BulkComplianceRequest):
    results = await container.compliance.bulk(payload.patient_ids)
    return {"results": {patient_id: stats.as_dict() for patient_id, stats in results.items()}}


@app.post("/reminders/{reminder_id}/manual-confirmation")
async def manual_confirmation(reminder_id: str, payload: ManualConfirmationRequest):
    record = await asyncio.to_thread(
        container.reminders.add_manual_confirmation,
        reminder_id=reminder_id,
        confirmed_by=payload.confirmed_by,
        notes=payload.notes,
    )
    if record is None:
        raise HTTPException(status_code=404, detail="Reminder not found")
    patient = await asyncio.to_thread(container.patients.get_patient, record["patient_id"])
    if patient:
        container.context_service.invalidate_patient(patient)
    return record


@app.get("/notifications")
async def list_notifications(
    status: str | None = None,
    priority: str | None = None,
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
):
    items = await container.lifecycle.list_notifications(status=status, priority=priority, limit=limit, offset=offset)
    return {"items": items}


@app.get("/notifications/stats")
async def notification_stats():
    return await container.fanout.stats()


@app.post("/notifications/{notification_id}/assign")
async def assign_notification(notification_id: str, payload: AssignRequest):
    try:
        return await container.lifecycle.assign(notification_id, payload.assignee_id)
    except EngagementError as exc:
        raise _http_error(exc) from exc


@app.post("/notifications/{notification_id}/respond")
async def respond_notification(notification_id: str, payload: RespondRequest):
    try:
        return await container.lifecycle.respond(notification_id, payload.response)
    except EngagementError as exc:
        raise _http_error(exc) from exc


@app.post("/notifications/{notification_id}/resolve")
async def resolve_notification(notification_id: str):
    try:
        return await container.lifecycle.resolve(notification_id)
    except EngagementError as exc:
        raise _http_error(exc) from exc


@app.post("/notifications/{notification_id}/dismiss")
async def dismiss_notification(notification_id: str):
    try:
        return await container.lifecycle.dismiss(notification_id)
    except EngagementError as exc:
        raise _http_error(exc) from exc


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("main:app", host=os.getenv("ENGAGE_HOST", "127.0.0.1"), port=int(os.getenv("ENGAGE_PORT", "8000")))
