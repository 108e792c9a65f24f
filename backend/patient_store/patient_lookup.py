from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Any

import structlog

from .patient_repository import PatientRepository
from .phone_utils import generate_phone_alternatives, mask_phone, normalize_phone

logger = structlog.get_logger(__name__)

# PENDING first so a re-registered number reaches verification before an older verified record.
_STATUS_PRIORITY: tuple[str | None, ...] = ("PENDING", "VERIFIED", None)


@dataclass
class PatientLookupResult:
    found: bool
    patient: dict[str, Any] | None = None
    matched_phone: str | None = None
    alternatives: list[str] = field(default_factory=list)
    error: str | None = None


class PatientLookupService:
    def __init__(self, patients: PatientRepository) -> None:
        self._patients = patients

    def _search(self, phone: str) -> dict[str, Any] | None:
        for status in _STATUS_PRIORITY:
            patient = self._patients.find_active_by_phone(phone, status)
            if patient:
                return patient
        return None

    def lookup_sync(self, raw_phone: str) -> PatientLookupResult:
        phone = (raw_phone or "").strip()
        alternatives = generate_phone_alternatives(phone)
        if not phone:
            return PatientLookupResult(found=False, alternatives=alternatives, error="missing_phone")
        try:
            patient = self._search(phone)
            if patient:
                return PatientLookupResult(found=True, patient=patient, matched_phone=phone, alternatives=alternatives)
            for alternative in alternatives:
                patient = self._search(alternative)
                if patient:
                    logger.info(
                        "patient_found_by_alternative_phone",
                        phone=mask_phone(phone),
                        patient_id=patient["id"],
                    )
                    return PatientLookupResult(
                        found=True,
                        patient=patient,
                        matched_phone=alternative,
                        alternatives=alternatives,
                    )
        except Exception:
            logger.exception("patient_lookup_failed", phone=mask_phone(phone))
            return PatientLookupResult(found=False, alternatives=alternatives, error="lookup_failed")
        return PatientLookupResult(found=False, alternatives=alternatives)

    async def find_patient_by_phone(self, raw_phone: str) -> PatientLookupResult:
        return await asyncio.to_thread(self.lookup_sync, raw_phone)

    async def find_or_create_for_onboarding(self, raw_phone: str, name: str) -> tuple[dict[str, Any], bool]:
        """Return ``(patient, created)``; new patients start in PENDING verification.

        Storage errors propagate: onboarding must not silently create duplicates.
        """

        def _find_or_create() -> tuple[dict[str, Any], bool]:
            for phone in [raw_phone.strip(), *generate_phone_alternatives(raw_phone)]:
                existing = self._search(phone)
                if existing:
                    return existing, False
            created = self._patients.create_patient(name=name, phone_number=normalize_phone(raw_phone))
            return created, True

        patient, created = await asyncio.to_thread(_find_or_create)
        if created:
            logger.info("patient_created_for_onboarding", patient_id=patient["id"], phone=mask_phone(raw_phone))
        return patient, created
