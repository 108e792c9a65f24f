from __future__ import annotations

import json

import pytest

from conftest import ScriptedClassifier
from engagement_core import InboundMessage
from engagement_core.policy import CONSENT_REQUIRED_MESSAGE


def _patient(engagement, **overrides):
    fields = {"name": "Budi", "phone_number": "6281900000001", "verification_status": "VERIFIED", **overrides}
    return engagement.patients.create_patient(**fields)


@pytest.mark.asyncio
async def test_schedule_question_returns_authorized_schedule(make_engagement):
    engagement = make_engagement()
    patient = _patient(engagement)
    engagement.reminders.create_reminder(patient_id=patient["id"], message="Amlodipine 5mg", scheduled_time="08:00")

    response = await engagement.orchestrator.process(
        InboundMessage(phone=patient["phone_number"], message="Bagaimana jadwal obat saya?")
    )

    assert response.processed is True
    assert response.type == "general_inquiry"
    assert response.action == "answered"
    assert response.metadata.escalated is False
    assert response.data["patient_data"]["medication_schedule"] == {"schedule": {"08:00": ["Amlodipine 5mg"]}}
    assert "Jadwal Obat Hari Ini:" in response.message
    assert engagement.audit.events_for(patient["id"])[0]["authorized"] == 1


@pytest.mark.asyncio
async def test_sensitive_notes_need_consent_and_are_not_disclosed(make_engagement):
    engagement = make_engagement()
    patient = _patient(engagement, requires_extra_consent=True)
    engagement.notes.add_note(patient_id=patient["id"], note="Tekanan darah 160/100")

    response = await engagement.orchestrator.process(
        InboundMessage(phone=patient["phone_number"], message="lihat catatan kesehatan saya")
    )

    assert response.action == "data_access_denied"
    assert response.errors[0]["code"] == "data_access_denied"
    assert response.message == CONSENT_REQUIRED_MESSAGE
    assert "patient_data" not in response.data
    assert "160/100" not in response.message
    assert response.data["risk_level"] == "medium"
    assert engagement.notification_store.list_notifications() == []


@pytest.mark.asyncio
async def test_low_confidence_model_answer_escalates_with_high_priority(make_engagement):
    classifier = ScriptedClassifier(
        {"general_inquiry": json.dumps({"intent": "tidak_jelas", "confidence": 0.2, "response_type": "informasi"})}
    )
    engagement = make_engagement(classifier=classifier)
    patient = _patient(engagement)

    response = await engagement.orchestrator.process(
        InboundMessage(phone=patient["phone_number"], message="kalau begitu yang kemarin bagaimana?")
    )

    assert response.action == "escalated"
    assert response.metadata.escalated is True
    assert response.data["analysis"]["classified_by"] == "model"
    notifications = engagement.notification_store.list_notifications()
    assert [(n["reason"], n["priority"], n["confidence"]) for n in notifications] == [("low_confidence", "high", 20)]
    assert "teruskan ke relawan" in response.message


@pytest.mark.asyncio
async def test_help_request_escalates_as_complex_inquiry(make_engagement):
    engagement = make_engagement()
    patient = _patient(engagement)

    response = await engagement.orchestrator.process(
        InboundMessage(phone=patient["phone_number"], message="bisakah relawan memberi bantuan untuk saya?")
    )

    assert response.metadata.escalated is True
    notifications = engagement.notification_store.list_notifications()
    assert [(n["reason"], n["priority"]) for n in notifications] == [("complex_inquiry", "medium")]


@pytest.mark.asyncio
async def test_plain_question_is_answered_without_escalation(make_engagement):
    engagement = make_engagement()
    patient = _patient(engagement)

    response = await engagement.orchestrator.process(
        InboundMessage(phone=patient["phone_number"], message="apakah boleh olahraga pagi?")
    )

    assert response.action == "answered"
    assert response.metadata.escalated is False
    assert "Budi" in response.message
    assert engagement.notification_store.list_notifications() == []


class EchoingClassifier:
    """Answers with a fixed classification and replies with the context it was given."""

    def __init__(self) -> None:
        self.contexts: list[tuple[str, dict]] = []

    async def classify(self, prompt_kind, context, message):
        self.contexts.append((prompt_kind, context))
        if prompt_kind == "general_inquiry":
            return {"content": json.dumps({"intent": "sapaan", "confidence": 0.9, "response_type": "informasi"})}
        return {"content": json.dumps({"message": "Konteks: " + json.dumps(context, ensure_ascii=False)})}


@pytest.mark.asyncio
async def test_reply_model_never_sees_unauthorized_note_content(make_engagement):
    classifier = EchoingClassifier()
    engagement = make_engagement(classifier=classifier)
    patient = _patient(engagement, requires_extra_consent=True)
    engagement.notes.add_note(patient_id=patient["id"], note="Pasien mengeluh demam dan mual")

    response = await engagement.orchestrator.process(
        InboundMessage(phone=patient["phone_number"], message="Terima kasih tim, ada kabar apa?")
    )

    assert response.action == "answered"
    assert response.message.startswith("Konteks: ")
    assert "demam" not in response.message
    assert "mual" not in response.message
    assert [kind for kind, _ in classifier.contexts] == ["general_inquiry", "response"]
    for _, context in classifier.contexts:
        serialized = json.dumps(context, ensure_ascii=False)
        assert "demam" not in serialized and "mual" not in serialized
    assert engagement.audit.events_for(patient["id"]) == []
