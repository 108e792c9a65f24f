from __future__ import annotations

import asyncio
import re
from dataclasses import asdict, dataclass, field
from typing import Any, Callable

import structlog

from .cache import ContextCache
from .conversation_store import ConversationStore
from .notes_store import HealthNoteStore, PatientVariableStore
from .patient_lookup import PatientLookupService
from .phone_utils import mask_phone, normalize_phone
from .reminder_store import ReminderStore
from .time_utils import to_iso, utc_now

logger = structlog.get_logger(__name__)

DEFAULT_CONTEXT_TTL_SECONDS = 30.0
ACTIVE_REMINDER_LIMIT = 10
RECENT_NOTE_LIMIT = 5
VARIABLE_LIMIT = 10
THREAD_LIMIT = 5
MESSAGE_LIMIT = 20

SYMPTOM_TERMS = (
    "demam",
    "mual",
    "pusing",
    "nyeri",
    "sakit",
    "batuk",
    "pilek",
    "sesak",
    "lemas",
    "alergi",
    "ruam",
    "gatal",
    "muntah",
    "diare",
    "sembelit",
    "fever",
    "nausea",
    "dizzy",
    "pain",
    "cough",
)
_MEDICATION_STOPWORDS = {"minum", "obat", "jangan", "lupa", "pagi", "siang", "malam", "sesudah", "sebelum", "makan"}
_TOKEN_RE = re.compile(r"[a-z0-9]+")


@dataclass
class PatientContext:
    patient: dict[str, Any]
    todays_reminders: list[dict[str, Any]] = field(default_factory=list)
    active_reminders: list[dict[str, Any]] = field(default_factory=list)
    recent_health_notes: list[dict[str, Any]] = field(default_factory=list)
    patient_variables: list[dict[str, Any]] = field(default_factory=list)
    recent_messages: list[dict[str, Any]] = field(default_factory=list)
    symptom_mentions: list[str] = field(default_factory=list)
    medication_mentions: list[str] = field(default_factory=list)
    built_at: str = ""

    @property
    def patient_id(self) -> str:
        return str(self.patient.get("id") or "")

    def as_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class ContextResult:
    found: bool
    context: PatientContext | None = None
    cache_hit: bool = False
    error: str | None = None


def _medication_tokens(reminder_message: str) -> set[str]:
    return {
        token
        for token in _TOKEN_RE.findall((reminder_message or "").lower())
        if len(token) >= 4 and token not in _MEDICATION_STOPWORDS and not token.isdigit()
    }


def derive_mentions(
    messages: list[dict[str, Any]],
    notes: list[dict[str, Any]],
    reminders: list[dict[str, Any]],
) -> tuple[list[str], list[str]]:
    corpus_parts = [str(row.get("message") or "") for row in messages if row.get("direction") == "inbound"]
    corpus_parts.extend(str(row.get("note") or "") for row in notes)
    corpus = " ".join(corpus_parts).lower()
    words = set(_TOKEN_RE.findall(corpus))

    symptoms = [term for term in SYMPTOM_TERMS if term in words]
    medications: list[str] = []
    for reminder in reminders:
        label = str(reminder.get("message") or "").strip()
        if label and label not in medications and _medication_tokens(label) & words:
            medications.append(label)
    return symptoms, medications


class PatientContextService:
    def __init__(
        self,
        *,
        lookup: PatientLookupService,
        reminders: ReminderStore,
        notes: HealthNoteStore,
        variables: PatientVariableStore,
        conversations: ConversationStore,
        cache: ContextCache,
        ttl_seconds: float = DEFAULT_CONTEXT_TTL_SECONDS,
    ) -> None:
        self._lookup = lookup
        self._reminders = reminders
        self._notes = notes
        self._variables = variables
        self._conversations = conversations
        self._cache = cache
        self._ttl_seconds = ttl_seconds

    @staticmethod
    def cache_key(phone: str) -> str:
        return f"patient:{normalize_phone(phone)}"

    async def _sub_query(self, name: str, fn: Callable[[], Any], default: Any) -> Any:
        try:
            return await asyncio.to_thread(fn)
        except Exception:
            logger.exception("context_sub_query_failed", sub_query=name)
            return default

    async def _build(self, patient: dict[str, Any]) -> PatientContext:
        patient_id = patient["id"]
        now = utc_now()
        todays, active, notes, variables, messages = await asyncio.gather(
            self._sub_query("todays_reminders", lambda: self._reminders.todays_reminders(patient_id, now), []),
            self._sub_query(
                "active_reminders",
                lambda: self._reminders.active_reminders(patient_id, now, limit=ACTIVE_REMINDER_LIMIT),
                [],
            ),
            self._sub_query("recent_notes", lambda: self._notes.recent_notes(patient_id, limit=RECENT_NOTE_LIMIT), []),
            self._sub_query(
                "patient_variables",
                lambda: self._variables.active_variables(patient_id, limit=VARIABLE_LIMIT),
                [],
            ),
            self._sub_query(
                "recent_messages",
                lambda: self._conversations.recent_messages(
                    patient_id,
                    thread_limit=THREAD_LIMIT,
                    message_limit=MESSAGE_LIMIT,
                ),
                [],
            ),
        )
        symptoms, medications = derive_mentions(messages, notes, active)
        return PatientContext(
            patient={
                "id": patient_id,
                "name": patient.get("name"),
                "phone_number": patient.get("phone_number"),
                "verification_status": patient.get("verification_status"),
                "is_active": bool(patient.get("is_active")),
                "requires_extra_consent": bool(patient.get("requires_extra_consent")),
            },
            todays_reminders=todays,
            active_reminders=active,
            recent_health_notes=notes,
            patient_variables=variables,
            recent_messages=messages,
            symptom_mentions=symptoms,
            medication_mentions=medications,
            built_at=to_iso(now),
        )

    async def get_context(self, phone: str, *, patient: dict[str, Any] | None = None) -> ContextResult:
        key = self.cache_key(phone)
        cached = self._cache.get(key)
        if cached is not None:
            return ContextResult(found=True, context=cached, cache_hit=True)

        if patient is None:
            lookup = await self._lookup.find_patient_by_phone(phone)
            if not lookup.found or not lookup.patient:
                return ContextResult(found=False, error=lookup.error or "patient_not_found")
            patient = lookup.patient

        context = await self._build(patient)
        self._cache.set(key, context, self._ttl_seconds)
        logger.info(
            "patient_context_built",
            patient_id=context.patient_id,
            phone=mask_phone(phone),
            active_reminders=len(context.active_reminders),
            recent_messages=len(context.recent_messages),
        )
        return ContextResult(found=True, context=context, cache_hit=False)

    def invalidate(self, phone: str) -> None:
        self._cache.invalidate(self.cache_key(phone))

    def invalidate_patient(self, patient: dict[str, Any], *phones: str) -> None:
        """Drop every cache key a patient could be reached under."""
        keys = {self.cache_key(phone) for phone in (patient.get("phone_number"), *phones) if phone}
        for key in keys:
            self._cache.invalidate(key)

    async def refresh(self, phone: str) -> ContextResult:
        self.invalidate(phone)
        return await self.get_context(phone)
