from __future__ import annotations

import json
from datetime import timedelta

import pytest

from conftest import ScriptedClassifier
from engagement_core import HandlerEntry, HandlerRegistry, InboundMessage, handles
from patient_store.time_utils import utc_now


def _pending_patient(engagement, phone="6281400000001", name="Sari"):
    return engagement.patients.create_patient(name=name, phone_number=phone, verification_status="PENDING")


def _verified_patient(engagement, phone="6281400000002", name="Joko"):
    return engagement.patients.create_patient(name=name, phone_number=phone, verification_status="VERIFIED")


@pytest.mark.asyncio
async def test_ya_from_pending_patient_verifies(make_engagement):
    engagement = make_engagement()
    patient = _pending_patient(engagement)

    response = await engagement.orchestrator.process(InboundMessage(phone=patient["phone_number"], message="ya"))

    assert response.processed is True
    assert response.type == "verification"
    assert response.action == "verified"
    assert response.data["classified_by"] == "keyword"
    assert engagement.patients.get_patient(patient["id"])["verification_status"] == "VERIFIED"
    assert "Sari" in response.message


@pytest.mark.asyncio
async def test_tidak_from_pending_patient_declines(make_engagement):
    engagement = make_engagement()
    patient = _pending_patient(engagement)

    response = await engagement.orchestrator.process(InboundMessage(phone=patient["phone_number"], message="tidak"))

    assert response.action == "declined"
    stored = engagement.patients.get_patient(patient["id"])
    assert stored["verification_status"] == "DECLINED"
    assert stored["verification_message"] == "tidak"


@pytest.mark.asyncio
async def test_ambiguous_verification_reply_uses_model_then_retries(make_engagement):
    classifier = ScriptedClassifier({"verification": json.dumps({"response": "YES", "confidence": 0.4})})
    engagement = make_engagement(classifier=classifier)
    patient = _pending_patient(engagement)

    response = await engagement.orchestrator.process(
        InboundMessage(phone=patient["phone_number"], message="hmm siapa ini ya")
    )

    assert response.processed is False
    assert response.errors[0]["code"] == "unrecognized_reply"
    assert engagement.patients.get_patient(patient["id"])["verification_status"] == "PENDING"
    assert classifier.calls == [("verification", "hmm siapa ini ya")]


@pytest.mark.asyncio
async def test_confident_model_reply_verifies(make_engagement):
    classifier = ScriptedClassifier({"verification": json.dumps({"response": "YES", "confidence": 0.95})})
    engagement = make_engagement(classifier=classifier)
    patient = _pending_patient(engagement)

    response = await engagement.orchestrator.process(
        InboundMessage(phone=patient["phone_number"], message="boleh deh, kirim saja")
    )

    assert response.action == "verified"
    assert response.data["classified_by"] == "model"


@pytest.mark.asyncio
async def test_sudah_confirms_the_pending_reminder(make_engagement):
    engagement = make_engagement()
    patient = _verified_patient(engagement)
    reminder = engagement.reminders.create_reminder(
        patient_id=patient["id"],
        message="Amlodipine 5mg",
        status="SENT",
        sent_at=utc_now(),
        confirmation_status="PENDING",
    )
    other = engagement.reminders.create_reminder(patient_id=patient["id"], message="Vitamin D", status="PENDING")

    response = await engagement.orchestrator.process(InboundMessage(phone=patient["phone_number"], message="sudah"))

    assert response.processed is True
    assert response.type == "reminder_confirmation"
    assert response.action == "confirmed"
    assert response.data["reminder_id"] == reminder["id"]
    assert engagement.reminders.get_reminder(reminder["id"])["confirmation_status"] == "CONFIRMED"
    assert engagement.reminders.get_reminder(reminder["id"])["confirmation_response"] == "sudah"
    assert engagement.reminders.get_reminder(other["id"])["confirmation_status"] is None


@pytest.mark.asyncio
async def test_sudah_without_pending_reminder_is_not_processed(make_engagement):
    engagement = make_engagement()
    patient = _verified_patient(engagement)
    engagement.reminders.create_reminder(patient_id=patient["id"], message="Vitamin D", status="PENDING")

    response = await engagement.orchestrator.process(InboundMessage(phone=patient["phone_number"], message="sudah"))

    assert response.processed is False
    assert response.data["reason"] == "no_reminder_awaiting_confirmation"
    assert response.message == ""
    assert [r["confirmation_status"] for r in engagement.reminders.active_reminders(patient["id"])] == [None]


@pytest.mark.asyncio
async def test_oldest_awaiting_reminder_is_confirmed_first(make_engagement):
    engagement = make_engagement()
    patient = _verified_patient(engagement)
    newer = engagement.reminders.create_reminder(
        patient_id=patient["id"], message="Malam", status="SENT", sent_at=utc_now()
    )
    older = engagement.reminders.create_reminder(
        patient_id=patient["id"], message="Pagi", status="DELIVERED", sent_at=utc_now() - timedelta(hours=6)
    )

    response = await engagement.orchestrator.process(InboundMessage(phone=patient["phone_number"], message="belum"))

    assert response.action == "missed"
    assert engagement.reminders.get_reminder(older["id"])["confirmation_status"] == "MISSED"
    assert engagement.reminders.get_reminder(newer["id"])["confirmation_status"] is None


@pytest.mark.asyncio
async def test_help_request_during_confirmation_escalates(make_engagement):
    engagement = make_engagement()
    patient = _verified_patient(engagement)
    engagement.reminders.create_reminder(patient_id=patient["id"], message="Obat A", status="SENT", sent_at=utc_now())

    response = await engagement.orchestrator.process(
        InboundMessage(phone=patient["phone_number"], message="sudah minum tapi perut sakit")
    )

    assert response.action == "help_requested"
    assert response.metadata.escalated is True
    notifications = engagement.notification_store.list_notifications()
    assert [(n["reason"], n["priority"]) for n in notifications] == [("complex_inquiry", "medium")]


@pytest.mark.asyncio
async def test_verified_patient_reply_does_not_reach_verification(make_engagement):
    engagement = make_engagement()
    patient = _verified_patient(engagement)

    response = await engagement.orchestrator.process(
        InboundMessage(phone=patient["phone_number"], message="ya", interaction_type="verification")
    )

    assert response.processed is False
    assert response.data["reason"] == "patient_not_pending_verification"


@pytest.mark.asyncio
async def test_handler_exception_becomes_error_response(make_engagement):
    engagement = make_engagement()
    patient = _verified_patient(engagement)

    async def _explode(ctx):
        raise RuntimeError("boom")

    engagement.orchestrator.registry = HandlerRegistry(
        [HandlerEntry(name="general_inquiry", priority=30, predicate=handles("general_inquiry"), handler=_explode)]
    )

    response = await engagement.orchestrator.process(
        InboundMessage(phone=patient["phone_number"], message="apa kabar tim?")
    )

    assert response.success is False
    assert response.errors[0]["code"] == "handler_error"
    assert response.metadata.patient_id == patient["id"]


@pytest.mark.asyncio
async def test_unknown_phone_and_blank_input(make_engagement):
    engagement = make_engagement()

    unknown = await engagement.orchestrator.process(InboundMessage(phone="6289900000000", message="halo"))
    blank = await engagement.orchestrator.process(InboundMessage(phone="6289900000000", message="   "))

    assert unknown.errors[0]["code"] == "patient_not_found"
    assert unknown.processed is False
    assert blank.errors[0]["code"] == "validation_error"


@pytest.mark.asyncio
async def test_explicit_type_without_handler_is_unhandled(make_engagement):
    engagement = make_engagement()
    patient = _verified_patient(engagement)

    response = await engagement.orchestrator.process(
        InboundMessage(phone=patient["phone_number"], message="stop", interaction_type="unsubscribe")
    )

    assert response.processed is False
    assert response.action == "unhandled"
