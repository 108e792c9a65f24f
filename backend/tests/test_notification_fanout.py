from __future__ import annotations

import pytest

from conftest import RecordingTransport
from engagement_core import EscalationData, NotFoundError, NotificationFanout, determine_priority
from engagement_core.notifications import average_response_minutes, format_staff_alert
from patient_store import NotificationStore, PatientRepository

STAFF = ("6281700000001", "6281700000002", "6281700000003")


def _fanout(db, transport, recipients=STAFF, email_enabled=False):
    return NotificationFanout(
        patients=PatientRepository(db),
        store=NotificationStore(db),
        transport=transport,
        staff_recipients=recipients,
        email_enabled=email_enabled,
    )


def _patient(db):
    return PatientRepository(db).create_patient(name="Agus", phone_number="6281600000001", verification_status="VERIFIED")


@pytest.mark.parametrize(
    ("reason", "confidence", "priority"),
    [
        ("emergency_detection", 90, "emergency"),
        ("low_confidence", 20, "high"),
        ("low_confidence", 45, "medium"),
        ("low_confidence", None, "medium"),
        ("complex_inquiry", None, "medium"),
        ("other", None, "low"),
    ],
)
def test_priority_rules(reason, confidence, priority):
    assert determine_priority(reason, confidence) == priority


@pytest.mark.asyncio
async def test_one_failing_recipient_does_not_block_the_others(db):
    patient = _patient(db)
    transport = RecordingTransport(raising={STAFF[0]}, failing={STAFF[1]})
    fanout = _fanout(db, transport)

    notification = await fanout.create(
        EscalationData(patient_id=patient["id"], message="Saya bingung dosisnya", reason="complex_inquiry")
    )

    stored = NotificationStore(db).get(notification.id)
    assert stored["status"] == "pending"
    assert [recipient for recipient, _ in transport.sent] == [STAFF[1], STAFF[2]]
    messaging = next(result for result in notification.channel_results if result.channel == "messaging")
    assert messaging.ok is False
    assert [(send.recipient, send.ok) for send in messaging.sends] == [
        (STAFF[0], False),
        (STAFF[1], False),
        (STAFF[2], True),
    ]


@pytest.mark.asyncio
async def test_channels_are_reported_independently(db):
    patient = _patient(db)
    fanout = _fanout(db, RecordingTransport(), email_enabled=True)

    notification = await fanout.create(
        EscalationData(patient_id=patient["id"], message="halo", reason="low_confidence", confidence=10)
    )

    assert notification.priority == "high"
    assert [(r.channel, r.ok) for r in notification.channel_results] == [
        ("dashboard", True),
        ("messaging", True),
        ("email", True),
    ]


@pytest.mark.asyncio
async def test_priority_override_wins(db):
    patient = _patient(db)

    notification = await _fanout(db, RecordingTransport(), recipients=()).create(
        EscalationData(
            patient_id=patient["id"],
            message="tidak sadar",
            reason="complex_inquiry",
            priority_override="emergency",
        )
    )

    assert notification.priority == "emergency"


@pytest.mark.asyncio
async def test_unknown_patient_is_rejected_before_persisting(db):
    transport = RecordingTransport()
    fanout = _fanout(db, transport)

    with pytest.raises(NotFoundError):
        await fanout.create(EscalationData(patient_id="missing", message="x", reason="other"))

    assert NotificationStore(db).list_notifications() == []
    assert transport.sent == []


def test_staff_alert_text():
    text = format_staff_alert(
        {"priority": "emergency", "reason": "emergency_detection", "confidence": 75, "intent": "emergency", "message": "pingsan"},
        {"name": "Agus", "phone_number": "6281600000001"},
    )

    assert text.startswith("🚨 *NOTIFIKASI VOLUNTEER* 🚨")
    assert "*Alasan:* Deteksi Darurat" in text
    assert "*Prioritas:* EMERGENCY" in text
    assert "*Tingkat Keyakinan:* 75%" in text
    assert '"pingsan"' in text


def test_average_response_minutes_skips_bad_rows():
    intervals = [
        ("2026-01-01T08:00:00+00:00", "2026-01-01T08:10:00+00:00"),
        ("2026-01-01T09:00:00+00:00", "2026-01-01T09:30:00+00:00"),
        ("garbage", "2026-01-01T09:30:00+00:00"),
    ]

    assert average_response_minutes(intervals) == 20.0
    assert average_response_minutes([]) == 0.0
