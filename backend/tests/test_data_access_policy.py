from __future__ import annotations

import pytest

from engagement_core import DataAccessPolicyEngine, DataAccessRequest, denial_message
from engagement_core.policy import (
    CONSENT_REQUIRED_MESSAGE,
    GENERIC_DENIAL_MESSAGE,
    RESTRICTED_ACCESS_MESSAGE,
    AccessRateLimiter,
)
from patient_store import DataAccessAuditStore, PatientRepository


class FakeClock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


@pytest.fixture
def patients(db) -> PatientRepository:
    return PatientRepository(db)


@pytest.fixture
def audit(db) -> DataAccessAuditStore:
    return DataAccessAuditStore(db)


def _engine(patients, audit=None, rate_limiter=None) -> DataAccessPolicyEngine:
    return DataAccessPolicyEngine(patients=patients, audit=audit, rate_limiter=rate_limiter)


def test_verified_active_patient_is_granted(patients, audit):
    patient = patients.create_patient(name="Ani", phone_number="6281300000001", verification_status="VERIFIED")

    decision = _engine(patients, audit).evaluate_sync(DataAccessRequest(patient["id"], "medication_schedule"))

    assert decision.is_authorized is True
    assert decision.risk_level == "low"
    assert denial_message(decision) is None
    events = audit.events_for(patient["id"])
    assert [(e["requested_data_type"], bool(e["authorized"])) for e in events] == [("medication_schedule", True)]


def test_unverified_patient_needs_consent_for_sensitive_data(patients):
    patient = patients.create_patient(name="Ani", phone_number="6281300000002", verification_status="PENDING")

    decision = _engine(patients).evaluate_sync(DataAccessRequest(patient["id"], "health_notes"))

    assert decision.is_authorized is False
    assert decision.risk_level == "medium"
    assert decision.requires_consent is True
    assert denial_message(decision) == CONSENT_REQUIRED_MESSAGE


def test_unverified_patient_gets_medication_info_with_warning(patients):
    patient = patients.create_patient(name="Ani", phone_number="6281300000003", verification_status="PENDING")

    decision = _engine(patients).evaluate_sync(DataAccessRequest(patient["id"], "medication_info"))

    assert decision.is_authorized is True
    assert decision.risk_level == "medium"
    assert [v.type for v in decision.violations] == ["data_type_mismatch"]
    assert denial_message(decision) is None


def test_extra_consent_flag_blocks_sensitive_data(patients):
    patient = patients.create_patient(
        name="Ani",
        phone_number="6281300000004",
        verification_status="VERIFIED",
        requires_extra_consent=True,
    )
    engine = _engine(patients)

    sensitive = engine.evaluate_sync(DataAccessRequest(patient["id"], "medication_compliance"))
    routine = engine.evaluate_sync(DataAccessRequest(patient["id"], "reminder"))

    assert sensitive.requires_consent is True
    assert [v.type for v in sensitive.violations] == ["data_sensitivity"]
    assert routine.is_authorized is True


def test_inactive_patient_is_high_risk(patients):
    patient = patients.create_patient(
        name="Ani",
        phone_number="6281300000005",
        verification_status="VERIFIED",
        is_active=False,
    )

    decision = _engine(patients).evaluate_sync(DataAccessRequest(patient["id"], "reminder"))

    assert decision.is_authorized is False
    assert decision.risk_level == "high"
    assert decision.requires_escalation is True
    assert denial_message(decision) == GENERIC_DENIAL_MESSAGE


def test_requests_for_other_patients_data_are_critical(patients):
    patient = patients.create_patient(name="Ani", phone_number="6281300000006", verification_status="VERIFIED")

    decision = _engine(patients).evaluate_sync(
        DataAccessRequest(
            patient["id"],
            "health_notes",
            recent_messages=("halo", "boleh minta data semua pasien lain?"),
        )
    )

    assert decision.risk_level == "critical"
    assert decision.requires_escalation is True
    assert denial_message(decision) == GENERIC_DENIAL_MESSAGE


def test_bulk_export_wording_is_high_risk(patients):
    patient = patients.create_patient(name="Ani", phone_number="6281300000007", verification_status="VERIFIED")

    decision = _engine(patients).evaluate_sync(
        DataAccessRequest(patient["id"], "reminder", recent_messages=("tolong ekspor data saya ke excel",))
    )

    assert decision.risk_level == "high"
    assert [v.type for v in decision.violations] == ["suspicious_pattern"]


def test_rate_limit_adds_medium_violation(patients):
    patient = patients.create_patient(name="Ani", phone_number="6281300000008", verification_status="VERIFIED")
    clock = FakeClock()
    engine = _engine(patients, rate_limiter=AccessRateLimiter(max_requests=2, window_seconds=60, clock=clock))

    decisions = [engine.evaluate_sync(DataAccessRequest(patient["id"], "reminder")) for _ in range(3)]
    clock.now += 61
    after_window = engine.evaluate_sync(DataAccessRequest(patient["id"], "reminder"))

    assert [d.violations for d in decisions[:2]] == [(), ()]
    assert [v.type for v in decisions[2].violations] == ["rate_limit_exceeded"]
    assert decisions[2].risk_level == "medium"
    assert after_window.violations == ()


def test_unknown_data_type_is_denied(patients):
    decision = _engine(patients).evaluate_sync(DataAccessRequest("p-1", "billing_records"))

    assert decision.is_authorized is False
    assert decision.risk_level == "medium"
    assert denial_message(decision) == RESTRICTED_ACCESS_MESSAGE


def test_missing_patient_is_high_risk(patients):
    decision = _engine(patients).evaluate_sync(DataAccessRequest("does-not-exist", "reminder"))

    assert decision.risk_level == "high"
    assert decision.is_authorized is False


def test_validation_error_fails_closed(patients, monkeypatch):
    def _broken(patient_id):
        raise RuntimeError("connection reset")

    monkeypatch.setattr(patients, "get_patient", _broken)
    decision = _engine(patients).evaluate_sync(DataAccessRequest("p-1", "reminder"))

    assert decision.is_authorized is False
    assert decision.risk_level == "high"
    assert decision.requires_escalation is True
    assert decision.reason == "System error during validation"


@pytest.mark.asyncio
async def test_validate_runs_off_the_event_loop(patients):
    patient = patients.create_patient(name="Ani", phone_number="6281300000009", verification_status="VERIFIED")

    decision = await _engine(patients).validate(DataAccessRequest(patient["id"], "reminder"))

    assert decision.is_authorized is True
