from __future__ import annotations

import asyncio
import re
import threading
import time
from collections import defaultdict, deque
from dataclasses import dataclass, field
from typing import Any, Callable

import structlog

from patient_store.notification_store import DataAccessAuditStore
from patient_store.patient_repository import PatientRepository

logger = structlog.get_logger(__name__)

DATA_TYPES = (
    "health_notes",
    "medication_info",
    "medication_schedule",
    "medication_compliance",
    "reminder",
    "general",
)
REQUEST_CONTEXTS = ("patient_initiated", "system_initiated", "staff_initiated")
SENSITIVE_DATA_TYPES = {"health_notes", "medication_compliance"}
RECENT_MESSAGE_WINDOW = 5

# data type -> (requires verification, requires active)
_PERMISSIONS: dict[str, tuple[bool, bool]] = {
    "health_notes": (True, True),
    "medication_info": (True, True),
    "medication_schedule": (True, True),
    "medication_compliance": (True, True),
    "reminder": (False, True),
    "general": (False, True),
}

_HIGH_RISK_PATTERNS = [
    re.compile(r"data.*pasien.*lain", re.IGNORECASE),
    re.compile(r"bocoran.*data", re.IGNORECASE),
    re.compile(r"hack.*data", re.IGNORECASE),
    re.compile(r"password.*data", re.IGNORECASE),
]
_SUSPICIOUS_PATTERNS = [
    re.compile(r"semua.*data", re.IGNORECASE),
    re.compile(r"ekspor.*data", re.IGNORECASE),
    re.compile(r"download.*data", re.IGNORECASE),
    re.compile(r"bulk.*data", re.IGNORECASE),
]

_CONSENT_VIOLATIONS = {"consent_required", "data_sensitivity"}

GENERIC_DENIAL_MESSAGE = "Your request cannot be processed at this time. Please contact support."
CONSENT_REQUIRED_MESSAGE = (
    "This type of information requires additional consent. Please contact your healthcare provider."
)
RESTRICTED_ACCESS_MESSAGE = (
    "You don't have permission to access this information. Please verify your account or contact support."
)


@dataclass(frozen=True)
class DataAccessRequest:
    patient_id: str
    requested_data_type: str
    request_context: str = "patient_initiated"
    recent_messages: tuple[str, ...] = ()


@dataclass(frozen=True)
class PolicyViolation:
    type: str
    severity: str
    description: str


@dataclass(frozen=True)
class DataAccessDecision:
    is_authorized: bool
    risk_level: str
    requires_consent: bool = False
    requires_escalation: bool = False
    violations: tuple[PolicyViolation, ...] = field(default_factory=tuple)
    reason: str = ""

    def as_dict(self) -> dict[str, Any]:
        return {
            "is_authorized": self.is_authorized,
            "risk_level": self.risk_level,
            "requires_consent": self.requires_consent,
            "requires_escalation": self.requires_escalation,
            "violations": [
                {"type": v.type, "severity": v.severity, "description": v.description} for v in self.violations
            ],
            "reason": self.reason,
        }


def denial_message(decision: DataAccessDecision) -> str | None:
    """Patient-facing text for a denied decision; ``None`` when access was granted."""
    if decision.risk_level in {"critical", "high"}:
        return GENERIC_DENIAL_MESSAGE
    if decision.requires_consent:
        return CONSENT_REQUIRED_MESSAGE
    if not decision.is_authorized:
        return RESTRICTED_ACCESS_MESSAGE
    return None


def determine_decision(violations: list[PolicyViolation]) -> DataAccessDecision:
    if not violations:
        return DataAccessDecision(is_authorized=True, risk_level="low", reason="Access granted")
    frozen = tuple(violations)
    severities = {v.severity for v in violations}
    if "critical" in severities:
        return DataAccessDecision(
            is_authorized=False,
            risk_level="critical",
            requires_escalation=True,
            violations=frozen,
            reason="Critical security violations detected",
        )
    if "high" in severities:
        return DataAccessDecision(
            is_authorized=False,
            risk_level="high",
            requires_escalation=True,
            violations=frozen,
            reason="High-risk access pattern detected",
        )
    if "medium" in severities:
        consent_required = any(v.type in _CONSENT_VIOLATIONS for v in violations)
        return DataAccessDecision(
            is_authorized=not consent_required,
            risk_level="medium",
            requires_consent=consent_required,
            violations=frozen,
            reason="Additional consent required" if consent_required else "Access granted with warnings",
        )
    return DataAccessDecision(is_authorized=True, risk_level="low", violations=frozen, reason="Minor issues detected")


class AccessRateLimiter:
    """Sliding-window request counter per patient."""

    def __init__(self, max_requests: int, window_seconds: float, clock: Callable[[], float] = time.monotonic) -> None:
        self._max_requests = max_requests
        self._window_seconds = window_seconds
        self._clock = clock
        self._hits: dict[str, deque[float]] = defaultdict(deque)
        self._lock = threading.Lock()

    def hit(self, patient_id: str) -> bool:
        """Record a request; return True when the patient is over the limit."""
        now = self._clock()
        with self._lock:
            hits = self._hits[patient_id]
            while hits and hits[0] <= now - self._window_seconds:
                hits.popleft()
            hits.append(now)
            return len(hits) > self._max_requests


class DataAccessPolicyEngine:
    def __init__(
        self,
        *,
        patients: PatientRepository,
        audit: DataAccessAuditStore | None = None,
        rate_limiter: AccessRateLimiter | None = None,
    ) -> None:
        self._patients = patients
        self._audit = audit
        self._rate_limiter = rate_limiter or AccessRateLimiter(max_requests=10, window_seconds=300.0)

    def _collect_violations(self, request: DataAccessRequest, patient: dict[str, Any]) -> list[PolicyViolation]:
        violations: list[PolicyViolation] = []
        requires_verification, requires_active = _PERMISSIONS[request.requested_data_type]
        is_active = bool(patient.get("is_active"))
        is_verified = str(patient.get("verification_status") or "").upper() == "VERIFIED"

        if not is_active:
            violations.append(PolicyViolation("inactive_patient", "high", "Patient account is not active"))
        if (requires_verification and not is_verified) or (requires_active and not is_active):
            violations.append(
                PolicyViolation(
                    "data_type_mismatch",
                    "medium",
                    f"Patient lacks permission for {request.requested_data_type}",
                )
            )
        if request.requested_data_type in SENSITIVE_DATA_TYPES and not is_verified:
            violations.append(
                PolicyViolation("consent_required", "medium", "Verification required for sensitive data")
            )

        recent_text = " ".join(request.recent_messages[-RECENT_MESSAGE_WINDOW:])
        if any(pattern.search(recent_text) for pattern in _HIGH_RISK_PATTERNS):
            violations.append(
                PolicyViolation("suspicious_pattern", "critical", "High-risk data request pattern detected")
            )
        elif any(pattern.search(recent_text) for pattern in _SUSPICIOUS_PATTERNS):
            violations.append(PolicyViolation("suspicious_pattern", "high", "Bulk data request pattern detected"))

        if self._rate_limiter.hit(request.patient_id):
            violations.append(PolicyViolation("rate_limit_exceeded", "medium", "Too many data requests"))

        if request.requested_data_type in SENSITIVE_DATA_TYPES and patient.get("requires_extra_consent"):
            violations.append(
                PolicyViolation("data_sensitivity", "medium", "Sensitive data requires additional consent")
            )
        return violations

    def evaluate_sync(self, request: DataAccessRequest) -> DataAccessDecision:
        if request.requested_data_type not in _PERMISSIONS or request.request_context not in REQUEST_CONTEXTS:
            decision = DataAccessDecision(
                is_authorized=False,
                risk_level="medium",
                violations=(PolicyViolation("invalid_request", "medium", "Unknown data type or request context"),),
                reason="Invalid data access request",
            )
        else:
            try:
                patient = self._patients.get_patient(request.patient_id)
                if patient is None:
                    violations = [PolicyViolation("patient_not_found", "high", "Patient record not found")]
                else:
                    violations = self._collect_violations(request, patient)
                decision = determine_decision(violations)
            except Exception:
                logger.exception("data_access_validation_failed", patient_id=request.patient_id)
                decision = DataAccessDecision(
                    is_authorized=False,
                    risk_level="high",
                    requires_escalation=True,
                    reason="System error during validation",
                )

        self._record(request, decision)
        return decision

    async def validate(self, request: DataAccessRequest) -> DataAccessDecision:
        return await asyncio.to_thread(self.evaluate_sync, request)

    def _record(self, request: DataAccessRequest, decision: DataAccessDecision) -> None:
        log = logger.bind(
            patient_id=request.patient_id,
            requested_data_type=request.requested_data_type,
            request_context=request.request_context,
            risk_level=decision.risk_level,
        )
        if decision.is_authorized and not decision.requires_consent:
            log.info("data_access_granted")
        else:
            log.warning(
                "data_access_denied",
                reason=decision.reason,
                violations=[v.type for v in decision.violations],
            )
        if self._audit is None:
            return
        try:
            self._audit.append(
                patient_id=request.patient_id,
                requested_data_type=request.requested_data_type,
                request_context=request.request_context,
                authorized=decision.is_authorized,
                risk_level=decision.risk_level,
                violations=decision.as_dict()["violations"],
            )
        except Exception:
            logger.exception("data_access_audit_failed", patient_id=request.patient_id)
