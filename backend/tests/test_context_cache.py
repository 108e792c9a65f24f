from __future__ import annotations

import pytest

from patient_store import (
    ConversationStore,
    HealthNoteStore,
    InMemoryTTLCache,
    PatientContextService,
    PatientLookupService,
    PatientRepository,
    PatientVariableStore,
    ReminderStore,
)
from patient_store.time_utils import utc_now


class FakeClock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


def _service(db, cache, ttl_seconds: float = 30.0) -> PatientContextService:
    patients = PatientRepository(db)
    return PatientContextService(
        lookup=PatientLookupService(patients),
        reminders=ReminderStore(db),
        notes=HealthNoteStore(db),
        variables=PatientVariableStore(db),
        conversations=ConversationStore(db),
        cache=cache,
        ttl_seconds=ttl_seconds,
    )


def test_ttl_cache_expires_entries():
    clock = FakeClock()
    cache = InMemoryTTLCache(clock=clock)
    cache.set("k", {"v": 1}, ttl_seconds=5)

    assert cache.get("k") == {"v": 1}
    clock.now += 5
    assert cache.get("k") is None
    assert len(cache) == 0


def test_ttl_cache_invalidate_is_idempotent():
    cache = InMemoryTTLCache()
    cache.set("k", 1, ttl_seconds=30)
    cache.invalidate("k")
    cache.invalidate("k")
    assert cache.get("k") is None


@pytest.mark.asyncio
async def test_second_read_within_ttl_is_a_hit_with_identical_payload(db):
    patients = PatientRepository(db)
    patient = patients.create_patient(name="Budi", phone_number="6281234500001", verification_status="VERIFIED")
    ReminderStore(db).create_reminder(patient_id=patient["id"], message="Metformin 500mg", scheduled_time="07:00")
    service = _service(db, InMemoryTTLCache())

    first = await service.get_context("081234500001")
    second = await service.get_context("+62 812 3450 0001")

    assert first.found is True and first.cache_hit is False
    assert second.cache_hit is True
    assert second.context.as_dict() == first.context.as_dict()
    assert [r["message"] for r in first.context.active_reminders] == ["Metformin 500mg"]


@pytest.mark.asyncio
async def test_read_after_invalidation_rebuilds(db):
    patients = PatientRepository(db)
    patients.create_patient(name="Budi", phone_number="6281234500002", verification_status="VERIFIED")
    service = _service(db, InMemoryTTLCache())

    await service.get_context("6281234500002")
    service.invalidate("6281234500002")
    result = await service.get_context("6281234500002")

    assert result.cache_hit is False


@pytest.mark.asyncio
async def test_expired_entry_is_rebuilt(db):
    clock = FakeClock()
    patients = PatientRepository(db)
    patients.create_patient(name="Budi", phone_number="6281234500003", verification_status="VERIFIED")
    service = _service(db, InMemoryTTLCache(clock=clock), ttl_seconds=10)

    await service.get_context("6281234500003")
    clock.now += 11
    result = await service.get_context("6281234500003")

    assert result.cache_hit is False


@pytest.mark.asyncio
async def test_unknown_patient_is_not_cached(db):
    cache = InMemoryTTLCache()
    service = _service(db, cache)

    result = await service.get_context("6289999999999")

    assert result.found is False
    assert result.error == "patient_not_found"
    assert len(cache) == 0


@pytest.mark.asyncio
async def test_failed_sub_query_degrades_to_empty_section(db, monkeypatch):
    patients = PatientRepository(db)
    patient = patients.create_patient(name="Budi", phone_number="6281234500004", verification_status="VERIFIED")
    HealthNoteStore(db).add_note(patient_id=patient["id"], note="Pusing sejak pagi", note_date=utc_now())
    notes = HealthNoteStore(db)

    def _broken(*args, **kwargs):
        raise RuntimeError("notes table unavailable")

    monkeypatch.setattr(notes, "recent_notes", _broken)
    service = PatientContextService(
        lookup=PatientLookupService(patients),
        reminders=ReminderStore(db),
        notes=notes,
        variables=PatientVariableStore(db),
        conversations=ConversationStore(db),
        cache=InMemoryTTLCache(),
    )

    result = await service.get_context("6281234500004")

    assert result.found is True
    assert result.context.recent_health_notes == []


@pytest.mark.asyncio
async def test_symptom_mentions_come_from_inbound_messages(db):
    patients = PatientRepository(db)
    patient = patients.create_patient(name="Budi", phone_number="6281234500005", verification_status="VERIFIED")
    conversations = ConversationStore(db)
    thread_id = conversations.ensure_thread(patient_id=patient["id"], phone_number=patient["phone_number"])
    conversations.record_message(thread_id=thread_id, message="Saya agak pusing dan mual", direction="inbound")
    conversations.record_message(thread_id=thread_id, message="Semoga lekas demam turun", direction="outbound")

    result = await _service(db, InMemoryTTLCache()).get_context(patient["phone_number"])

    assert result.context.symptom_mentions == ["mual", "pusing"]
